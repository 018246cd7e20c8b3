"""
Reviewer Assignment: 为摘要分配审稿人

中文注释:
1. 摘要写入与审稿人工作量计数器 +1 在同一个事务内完成，任一失败整体回滚。
2. “是否已分配”的判断也在事务内（锁定后的记录上）进行，并发重复分配不会重复计数。
3. 幂等：已分配的审稿人不会重复写入、不会重复计数、也不会重复通知。
"""

from __future__ import annotations

import logging
from typing import Any, Iterable, Optional

from app.core.errors import NotFoundError, ValidationError, WorkflowError
from app.models.abstract import AbstractStatus
from app.schemas.abstract import (
    AssignmentResult,
    BulkAssignmentItem,
    BulkAssignmentResult,
    InvalidReviewer,
)
from app.services.abstract_store import UnitOfWork
from app.services.workflow_common import WorkflowService

logger = logging.getLogger("abstractflow.assignment")

_FINAL_STATUSES = {AbstractStatus.APPROVED.value, AbstractStatus.REJECTED.value}


def normalize_reviewer_ids(reviewer_ids: Any) -> list[str]:
    """
    校验并去重（保持首次出现顺序）。空列表 / 非字符串 / 空白 id 直接报错，不进入事务。
    """
    if not isinstance(reviewer_ids, (list, tuple)) or not reviewer_ids:
        raise ValidationError("Reviewer IDs must be provided as a non-empty array.")

    bad = [rid for rid in reviewer_ids if not isinstance(rid, str) or not rid.strip()]
    if bad:
        raise ValidationError(
            "Reviewer IDs must be non-empty strings.", details={"invalid": [repr(b) for b in bad]}
        )
    return list(dict.fromkeys(rid.strip() for rid in reviewer_ids))


class ReviewerAssignmentService(WorkflowService):
    def _assign_in_uow(
        self,
        uow: UnitOfWork,
        abstract_id: str,
        reviewer_ids: list[str],
        *,
        event_id: Optional[str] = None,
        force_under_review: bool = False,
    ) -> AssignmentResult:
        record = self._load(uow, abstract_id)
        if event_id is not None and record.event_id != str(event_id):
            raise NotFoundError("Abstract not found", details={"abstract_id": abstract_id})

        newly: list[str] = []
        already: list[str] = []
        invalid: list[InvalidReviewer] = []
        for rid in reviewer_ids:
            if record.is_assigned(rid):
                already.append(rid)
                continue
            profile = uow.get_reviewer(rid)
            if profile is None:
                invalid.append(InvalidReviewer(id=rid, reason="User not found"))
                continue
            if not profile.is_contactable:
                invalid.append(InvalidReviewer(id=rid, reason="User email not found"))
                continue
            newly.append(rid)

        if not newly and not already:
            raise ValidationError(
                "No valid reviewers provided for assignment.",
                details={"invalid": [i.model_dump() for i in invalid]},
            )

        status = record.status
        if newly and status in AbstractStatus.auto_advance_sources():
            status = AbstractStatus.UNDER_REVIEW.value
        if force_under_review and status not in _FINAL_STATUSES:
            status = AbstractStatus.UNDER_REVIEW.value

        if not newly and status == record.status:
            # 无新增：不写入
            return AssignmentResult(abstract=record, already_assigned=already, invalid=invalid)

        updated = record.model_copy(
            update={
                "assigned_reviewers": [*record.assigned_reviewers, *newly],
                "status": status,
            },
            deep=True,
        )
        saved = uow.save_abstract(updated, expected_version=record.version)
        for rid in newly:
            uow.increment_reviewer_workload(rid)

        return AssignmentResult(
            abstract=saved, newly_assigned=newly, already_assigned=already, invalid=invalid
        )

    def _notify_assigned(self, result: AssignmentResult) -> None:
        if not result.newly_assigned:
            return
        record = result.abstract
        if self._email_settings(record.event_id, purpose="reviewer assignment emails") is None:
            return
        for rid in result.newly_assigned:
            self._dispatch(record, kind="reviewer_assigned", audience="reviewer", recipient_ids=[rid])

    def assign_reviewers(self, abstract_id: str, reviewer_ids: Any) -> AssignmentResult:
        ids = normalize_reviewer_ids(reviewer_ids)
        result = self.store.execute(lambda uow: self._assign_in_uow(uow, abstract_id, ids))

        logger.info(
            "[Assign] abstract %s: new=%s already=%s invalid=%s",
            abstract_id,
            len(result.newly_assigned),
            len(result.already_assigned),
            len(result.invalid),
        )
        self._notify_assigned(result)
        return result

    def assign_reviewers_to_abstracts(
        self,
        abstract_ids: Iterable[str],
        reviewer_ids: Any,
        *,
        event_id: Optional[str] = None,
    ) -> BulkAssignmentResult:
        """
        批量分配：每个摘要独立事务，单个失败不影响其他摘要（multi-status）。

        中文注释: 分配后未处于 approved / rejected 的摘要统一推进到 under-review。
        """
        ids = normalize_reviewer_ids(reviewer_ids)
        abstract_ids = list(dict.fromkeys(str(a) for a in abstract_ids or []))
        if not abstract_ids:
            raise ValidationError("Abstract IDs must be a non-empty array.")

        items: list[BulkAssignmentItem] = []
        for abstract_id in abstract_ids:
            try:
                result = self.store.execute(
                    lambda uow, aid=abstract_id: self._assign_in_uow(
                        uow, aid, ids, event_id=event_id, force_under_review=True
                    )
                )
            except WorkflowError as e:
                logger.warning("[Assign] bulk assignment failed for abstract %s: %s", abstract_id, e.message)
                items.append(BulkAssignmentItem(abstract_id=abstract_id, success=False, message=e.message))
                continue

            self._notify_assigned(result)
            items.append(BulkAssignmentItem(abstract_id=abstract_id, success=True, message=result.message))

        successful = sum(1 for i in items if i.success)
        failed = len(items) - successful
        if failed:
            logger.error(
                "[Assign] %s failure(s) during bulk reviewer assignment for event %s", failed, event_id
            )
        return BulkAssignmentResult(results=items, successful=successful, failed=failed)
