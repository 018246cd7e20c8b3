from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field


ADMIN_ROLE = "admin"


class Actor(BaseModel):
    """
    当前请求的调用者身份

    中文注释:
    - id 为 auth 用户 id；reviewer 的 id 与 assigned_reviewers 中的值一致。
    - registration_id 仅对作者有意义（摘要归属校验）。
    """

    id: str
    email: Optional[str] = None
    roles: List[str] = Field(default_factory=list)
    registration_id: Optional[str] = None

    model_config = ConfigDict(from_attributes=True, frozen=True)

    @property
    def is_admin(self) -> bool:
        return ADMIN_ROLE in self.roles
