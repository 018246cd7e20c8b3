from __future__ import annotations

import logging
from typing import Optional

from app.core.errors import ValidationError
from app.models.abstract import AbstractRecord, AbstractStatus, normalize_status, utc_now
from app.models.user import Actor
from app.services.abstract_store import UnitOfWork
from app.services.workflow_common import WorkflowService

logger = logging.getLogger("abstractflow.decision")

DEFAULT_APPROVE_REASON = "Approved by admin."
DEFAULT_REJECT_REASON = "Rejected by admin."


class AbstractDecisionService(WorkflowService):
    """
    管理员最终决定（approve / reject）与状态纠正

    中文注释:
    - 管理员决定可从任意状态执行（人工覆盖权），不受审稿人“最后写入者生效”规则约束。
    - update_status 只用于纠错，不写 final_decision，也不发通知。
    """

    def _decide(
        self, abstract_id: str, actor: Actor, *, status: str, reason: str
    ) -> AbstractRecord:
        def _tx(uow: UnitOfWork) -> AbstractRecord:
            record = self._load(uow, abstract_id)
            logger.info(
                "[Decision] abstract %s: %s -> %s by %s", record.id, record.status, status, actor.id
            )
            return uow.save_abstract(
                record.model_copy(
                    update={
                        "status": status,
                        "final_decision": status,
                        "decision_reason": reason,
                        "decision_by": actor.id,
                        "decision_date": utc_now(),
                    },
                    deep=True,
                ),
                expected_version=record.version,
            )

        return self.store.execute(_tx)

    def approve_abstract(
        self, abstract_id: str, actor: Actor, reason: Optional[str] = None
    ) -> AbstractRecord:
        self._require_admin(actor, "approve abstracts")
        saved = self._decide(
            abstract_id,
            actor,
            status=AbstractStatus.APPROVED.value,
            reason=(reason or "").strip() or DEFAULT_APPROVE_REASON,
        )
        if self._email_settings(saved.event_id, purpose="approval email"):
            self._dispatch(
                saved,
                kind="abstract_approved",
                audience="author",
                recipient_ids=[saved.registration_id],
                payload={"reason": saved.decision_reason},
            )
        return saved

    def reject_abstract(
        self, abstract_id: str, actor: Actor, reason: Optional[str] = None
    ) -> AbstractRecord:
        self._require_admin(actor, "reject abstracts")
        saved = self._decide(
            abstract_id,
            actor,
            status=AbstractStatus.REJECTED.value,
            reason=(reason or "").strip() or DEFAULT_REJECT_REASON,
        )
        if self._email_settings(saved.event_id, purpose="rejection email"):
            self._dispatch(
                saved,
                kind="abstract_rejected",
                audience="author",
                recipient_ids=[saved.registration_id],
                payload={"reason": saved.decision_reason},
            )
        return saved

    def update_status(self, abstract_id: str, actor: Actor, status: str) -> AbstractRecord:
        self._require_admin(actor, "change abstract status")
        target = normalize_status(status)
        if target not in AbstractStatus.admin_correctable():
            raise ValidationError(
                f"Invalid status: {status}",
                details={"allowed": sorted(AbstractStatus.admin_correctable())},
            )

        def _tx(uow: UnitOfWork) -> AbstractRecord:
            record = self._load(uow, abstract_id)
            if record.status == target:
                return record
            logger.info(
                "[Decision] abstract %s status corrected: %s -> %s by %s",
                record.id,
                record.status,
                target,
                actor.id,
            )
            return uow.save_abstract(
                record.model_copy(update={"status": target}, deep=True),
                expected_version=record.version,
            )

        return self.store.execute(_tx)
