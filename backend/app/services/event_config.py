from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Optional

from app.lib.api_client import supabase_admin
from app.models.notification import EventNotificationSettings

logger = logging.getLogger("abstractflow.event_config")


class EventConfigProvider(ABC):
    @abstractmethod
    def get_settings(self, event_id: str) -> EventNotificationSettings:
        """活动不存在或读取失败时返回“邮件关闭”的默认配置"""


def settings_from_row(row: dict[str, Any]) -> EventNotificationSettings:
    """
    把 events.email_settings（历史上为驼峰 JSON）映射为显式结构。
    """
    raw = row.get("email_settings") if isinstance(row.get("email_settings"), dict) else {}
    automatic = raw.get("automaticEmails") if isinstance(raw.get("automaticEmails"), dict) else {}
    notify_admins = raw.get("notify_admins_on_approval")
    if notify_admins is None:
        notify_admins = automatic.get("reviewSubmittedNotificationToAdmin")
    return EventNotificationSettings(
        event_id=str(row.get("id")),
        event_name=str(row.get("name") or "Event"),
        email_enabled=bool(raw.get("enabled")),
        notify_admins_on_approval=bool(notify_admins),
        sender_name=raw.get("senderName") or raw.get("sender_name"),
        sender_email=raw.get("senderEmail") or raw.get("sender_email"),
    )


class SupabaseEventConfigProvider(EventConfigProvider):
    def __init__(self, *, client: Any | None = None) -> None:
        self.client = client or supabase_admin

    def get_settings(self, event_id: str) -> EventNotificationSettings:
        try:
            resp = (
                self.client.table("events")
                .select("id,name,email_settings")
                .eq("id", str(event_id))
                .limit(1)
                .execute()
            )
            rows = getattr(resp, "data", None) or []
        except Exception as e:
            logger.warning("[EventConfig] load event %s failed, notifications disabled: %s", event_id, e)
            rows = []
        if not rows:
            return EventNotificationSettings(event_id=str(event_id))
        return settings_from_row(rows[0])


class StaticEventConfigProvider(EventConfigProvider):
    def __init__(self, settings: Optional[list[EventNotificationSettings]] = None) -> None:
        self._settings = {s.event_id: s for s in settings or []}

    def set(self, settings: EventNotificationSettings) -> None:
        self._settings[settings.event_id] = settings

    def get_settings(self, event_id: str) -> EventNotificationSettings:
        return self._settings.get(str(event_id)) or EventNotificationSettings(event_id=str(event_id))
