from __future__ import annotations

import logging
from typing import Any, Optional

from app.core.errors import ForbiddenError, NotFoundError
from app.models.abstract import AbstractRecord
from app.models.notification import EventNotificationSettings, NotificationIntent
from app.models.user import Actor
from app.services.abstract_store import AbstractStore, UnitOfWork
from app.services.event_config import EventConfigProvider
from app.services.notification_service import NotificationDispatcher

logger = logging.getLogger("abstractflow.workflow")


class WorkflowService:
    """
    工作流服务公共基类

    中文注释:
    - 所有写操作通过 store.execute(fn) 完成；fn 内只做读-改-写，不做通知。
    - 通知在事务提交后调用 _dispatch，失败只记日志。
    """

    def __init__(
        self,
        *,
        store: AbstractStore,
        event_config: EventConfigProvider,
        dispatcher: NotificationDispatcher,
    ) -> None:
        self.store = store
        self.event_config = event_config
        self.dispatcher = dispatcher

    @staticmethod
    def _load(uow: UnitOfWork, abstract_id: str) -> AbstractRecord:
        record = uow.get_abstract(abstract_id)
        if record is None:
            raise NotFoundError("Abstract not found", details={"abstract_id": abstract_id})
        return record

    @staticmethod
    def _require_admin(actor: Actor, action: str) -> None:
        if not actor.is_admin:
            raise ForbiddenError(f"Only admins can {action}.")

    def _email_settings(self, event_id: str, *, purpose: str) -> Optional[EventNotificationSettings]:
        """活动邮件总开关打开时返回配置，否则记录 warning 并返回 None"""
        try:
            settings = self.event_config.get_settings(event_id)
        except Exception as e:
            logger.error("[Workflow] load event settings %s failed, skip %s: %s", event_id, purpose, e)
            return None
        if not settings.email_enabled:
            logger.warning(
                "[Workflow] email notifications disabled for event %s, skip %s", event_id, purpose
            )
            return None
        return settings

    def _dispatch(
        self,
        record: AbstractRecord,
        *,
        kind: str,
        audience: str,
        recipient_ids: list[str],
        payload: Optional[dict[str, Any]] = None,
    ) -> bool:
        try:
            intent = NotificationIntent(
                kind=kind,
                abstract_id=record.id,
                event_id=record.event_id,
                audience=audience,
                recipient_ids=recipient_ids,
                payload={"title": record.title, **(payload or {})},
            )
            self.dispatcher.notify(intent)
            return True
        except Exception as e:
            logger.error(
                "[Workflow] dispatch %s for abstract %s failed (ignored): %s", kind, record.id, e
            )
            return False
