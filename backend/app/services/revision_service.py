"""
Revision Service: 退修 / 修回工作流

中文注释:
1. 退修（request_revision）只允许管理员发起，可从任意状态进入 revision-requested（人工覆盖权）。
2. 修回（resubmit_revision）只允许摘要作者本人，在 revision-requested 状态且未超过截止时间时进行。
3. 修回不清空已有评审，审稿人在新一轮评审中覆盖自己的记录。
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

from app.core.errors import ForbiddenError, StateError
from app.models.abstract import AbstractRecord, AbstractStatus, utc_now
from app.models.user import Actor
from app.services.abstract_store import UnitOfWork
from app.services.workflow_common import WorkflowService

logger = logging.getLogger("abstractflow.revision")

DEFAULT_REVISION_REASON = "Revision requested by admin."


def _as_utc(value: datetime) -> datetime:
    # 历史数据里的 naive datetime 一律按 UTC 处理
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def deadline_passed(deadline: Optional[datetime], *, now: Optional[datetime] = None) -> bool:
    if deadline is None:
        return False
    return (now or utc_now()) > _as_utc(deadline)


class RevisionCycleService(WorkflowService):
    """Revision 工作流的核心服务类"""

    def request_revision(
        self,
        abstract_id: str,
        actor: Actor,
        reason: Optional[str] = None,
        deadline: Optional[datetime] = None,
    ) -> AbstractRecord:
        self._require_admin(actor, "request revisions")
        reason = (reason or "").strip() or DEFAULT_REVISION_REASON

        def _tx(uow: UnitOfWork) -> AbstractRecord:
            record = self._load(uow, abstract_id)
            update = {
                "status": AbstractStatus.REVISION_REQUESTED.value,
                "final_decision": AbstractStatus.REVISION_REQUESTED.value,
                "decision_reason": reason,
                "decision_by": actor.id,
                "decision_date": utc_now(),
            }
            # 截止时间只在显式提供时覆盖
            if deadline is not None:
                update["revision_deadline"] = _as_utc(deadline)
            logger.info(
                "[Revision] abstract %s: %s -> revision-requested by %s",
                record.id,
                record.status,
                actor.id,
            )
            return uow.save_abstract(
                record.model_copy(update=update, deep=True), expected_version=record.version
            )

        saved = self.store.execute(_tx)

        if self._email_settings(saved.event_id, purpose="revision request email") is not None:
            self._dispatch(
                saved,
                kind="revision_requested",
                audience="author",
                recipient_ids=[saved.registration_id],
                payload={
                    "reason": saved.decision_reason,
                    "deadline": saved.revision_deadline.isoformat() if saved.revision_deadline else None,
                },
            )
        return saved

    def resubmit_revision(self, abstract_id: str, author_id: str) -> AbstractRecord:
        """
        作者提交修回稿。

        Raises:
            NotFoundError: 摘要不存在
            ForbiddenError: 调用者不是摘要作者
            StateError: 当前状态不是 revision-requested，或已超过修回截止时间
        """

        def _tx(uow: UnitOfWork) -> AbstractRecord:
            record = self._load(uow, abstract_id)
            if record.registration_id != str(author_id):
                raise ForbiddenError("You can only resubmit your own abstract.")
            if record.status != AbstractStatus.REVISION_REQUESTED.value:
                raise StateError(
                    f"Abstract cannot be resubmitted in its current status: {record.status}",
                    details={"status": record.status},
                )
            if deadline_passed(record.revision_deadline):
                raise StateError(
                    "The revision deadline has passed.",
                    details={"revision_deadline": _as_utc(record.revision_deadline).isoformat()},
                )
            return uow.save_abstract(
                record.model_copy(
                    update={"status": AbstractStatus.REVISED_PENDING_REVIEW.value}, deep=True
                ),
                expected_version=record.version,
            )

        saved = self.store.execute(_tx)
        logger.info("[Revision] abstract %s resubmitted by %s", saved.id, author_id)

        if saved.assigned_reviewers and self._email_settings(
            saved.event_id, purpose="resubmission emails"
        ):
            self._dispatch(
                saved,
                kind="revision_resubmitted",
                audience="reviewer",
                recipient_ids=list(saved.assigned_reviewers),
            )
        return saved
