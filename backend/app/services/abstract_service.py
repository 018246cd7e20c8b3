"""
Abstract Service: 单篇摘要读取与评审讨论区

中文注释:
1. 读取：admin / staff / reviewer 角色可读任意摘要，作者只能读自己的摘要。
2. 对无权读取的调用者一律返回 404（不暴露摘要是否存在）。
3. 评论只追加到 review_comments，不影响评分、状态与通知。
"""

from __future__ import annotations

import logging

from app.core.errors import ForbiddenError, NotFoundError, ValidationError
from app.models.abstract import AbstractRecord, ReviewComment, utc_now
from app.models.user import Actor
from app.services.abstract_store import UnitOfWork
from app.services.workflow_common import WorkflowService

logger = logging.getLogger("abstractflow.abstracts")

READER_ROLES = ("admin", "staff", "reviewer")
COMMENTER_ROLES = ("admin", "reviewer")


class AbstractService(WorkflowService):
    @staticmethod
    def can_read(record: AbstractRecord, actor: Actor) -> bool:
        if any(role in actor.roles for role in READER_ROLES):
            return True
        return bool(actor.registration_id) and actor.registration_id == record.registration_id

    def get_abstract(self, abstract_id: str, actor: Actor) -> AbstractRecord:
        record = self.store.find_abstract_by_id(abstract_id)
        if record is None:
            raise NotFoundError("Abstract not found", details={"abstract_id": abstract_id})
        if not self.can_read(record, actor):
            logger.warning("[Abstracts] user %s denied read of abstract %s", actor.id, abstract_id)
            raise NotFoundError("Abstract not found", details={"abstract_id": abstract_id})
        return record

    def add_review_comment(self, abstract_id: str, actor: Actor, comment: str) -> AbstractRecord:
        if not any(role in actor.roles for role in COMMENTER_ROLES):
            raise ForbiddenError("Only admins and reviewers can comment on abstracts.")
        text = (comment or "").strip()
        if not text:
            raise ValidationError("Please provide a comment")

        def _tx(uow: UnitOfWork) -> AbstractRecord:
            record = self._load(uow, abstract_id)
            entry = ReviewComment(user_id=actor.id, comment=text, created_at=utc_now())
            return uow.save_abstract(
                record.model_copy(
                    update={"review_comments": [*record.review_comments, entry]}, deep=True
                ),
                expected_version=record.version,
            )

        saved = self.store.execute(_tx)
        logger.info(
            "[Abstracts] comment added to abstract %s by %s (%s total)",
            saved.id,
            actor.id,
            len(saved.review_comments),
        )
        return saved
