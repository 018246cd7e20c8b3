"""
Review Submission: 单个审稿人提交 / 更新评审

中文注释:
1. 读-改-写全部在一个事务内完成：upsert 评审 -> 重算平均分 -> 按决定推进全局状态 -> 按 version 保存。
2. 不同审稿人并发提交不会丢失更新：内存实现串行执行，Postgres 实现行锁 + version 冲突自动重试。
3. 状态规则为“最后写入者生效”，见 review_decision_policy。
"""

from __future__ import annotations

import logging

from app.core.errors import ForbiddenError
from app.models.abstract import AbstractRecord, AbstractStatus, ReviewDecision, utc_now
from app.models.user import Actor
from app.schemas.abstract import ReviewSubmission
from app.services.abstract_store import UnitOfWork
from app.services.review_decision_policy import (
    compute_average_score,
    next_status_for_decision,
    upsert_review,
)
from app.services.workflow_common import WorkflowService

logger = logging.getLogger("abstractflow.review_submission")


class ReviewSubmissionService(WorkflowService):
    def submit_review(
        self, abstract_id: str, actor: Actor, submission: ReviewSubmission
    ) -> AbstractRecord:
        decision = ReviewDecision(submission.decision).value

        def _tx(uow: UnitOfWork) -> AbstractRecord:
            record = self._load(uow, abstract_id)
            if not record.is_assigned(actor.id) and not actor.is_admin:
                raise ForbiddenError("You are not assigned to review this abstract.")

            reviews, created = upsert_review(
                record.reviews,
                reviewer_id=actor.id,
                decision=decision,
                score=submission.score,
                comments=submission.comments,
                now=utc_now(),
            )
            update: dict = {
                "reviews": reviews,
                "average_score": compute_average_score(reviews),
            }
            new_status = next_status_for_decision(record.status, decision)
            if new_status is not None:
                update["status"] = new_status

            logger.info(
                "[Review] %s review by %s on abstract %s (decision=%s, status %s -> %s)",
                "new" if created else "updated",
                actor.id,
                record.id,
                decision,
                record.status,
                new_status or record.status,
            )
            return uow.save_abstract(
                record.model_copy(update=update, deep=True), expected_version=record.version
            )

        saved = self.store.execute(_tx)

        if decision == ReviewDecision.ACCEPT.value and saved.status == AbstractStatus.APPROVED.value:
            self._notify_approved(saved, actor, submission)
        return saved

    def _notify_approved(self, record: AbstractRecord, actor: Actor, submission: ReviewSubmission) -> None:
        settings = self._email_settings(record.event_id, purpose="approval emails")
        if settings is None:
            return
        payload = {"comments": submission.comments}
        self._dispatch(
            record,
            kind="abstract_approved",
            audience="author",
            recipient_ids=[record.registration_id],
            payload=payload,
        )
        if settings.notify_admins_on_approval:
            self._dispatch(
                record,
                kind="abstract_approved_staff",
                audience="staff",
                recipient_ids=[],
                payload={**payload, "reviewer_id": actor.id},
            )
