from __future__ import annotations

from typing import Any, Optional


class WorkflowError(Exception):
    """
    工作流异常基类。

    中文注释:
    - Service 层只抛出这些领域异常，不直接依赖 FastAPI 的 HTTPException。
    - status_code 仅作为“HTTP 等价语义”，由 main.py 中注册的 handler 统一转换。
    """

    status_code: int = 500
    code: str = "workflow_error"
    retryable: bool = False

    def __init__(self, message: str, *, details: Optional[Any] = None) -> None:
        super().__init__(message)
        self.message = message
        self.details = details

    def to_dict(self) -> dict[str, Any]:
        body: dict[str, Any] = {"detail": self.message, "code": self.code}
        if self.details is not None:
            body["details"] = self.details
        return body


class ValidationError(WorkflowError):
    status_code = 400
    code = "validation_error"


class NotFoundError(WorkflowError):
    status_code = 404
    code = "not_found"


class ForbiddenError(WorkflowError):
    status_code = 403
    code = "forbidden"


class ConflictError(WorkflowError):
    """乐观并发冲突（version 不匹配），调用方可重试"""

    status_code = 409
    code = "conflict"
    retryable = True


class StateError(WorkflowError):
    """当前状态不允许该操作（例如非 revision-requested 状态下修回）"""

    status_code = 409
    code = "invalid_state"


class DependencyError(WorkflowError):
    """存储事务因基础设施原因中止（超时 / 连接失败），可重试"""

    status_code = 503
    code = "dependency_error"
    retryable = True
