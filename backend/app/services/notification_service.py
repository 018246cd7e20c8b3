"""
通知投递

中文注释:
1. 工作流只在事务提交后调用 `dispatcher.notify(intent)`，请求内该调用不做任何 I/O。
2. API 请求内由 BackgroundTaskDispatcher 把投递挂到 BackgroundTasks，响应发出后由
   NotificationDeliveryService 投递：
   - reviewer / staff：写站内信（notifications 表）+ 发邮件；
   - author：只发邮件（registration 不一定对应登录用户）。
3. 投递失败只记录日志，永远不会影响已提交的工作流结果。
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import Any, Dict, Optional

from fastapi import BackgroundTasks
from postgrest.exceptions import APIError

from app.core.mail import EmailService
from app.lib.api_client import supabase_admin
from app.models.notification import NotificationIntent
from app.services.event_config import EventConfigProvider
from app.services.reviewer_directory import ReviewerDirectory

logger = logging.getLogger("abstractflow.notifications")


class NotificationDispatcher(ABC):
    @abstractmethod
    def notify(self, intent: NotificationIntent) -> None:
        """fire-and-forget；实现方不得抛出异常给调用方"""


class NotificationService:
    """
    站内通知：封装 notifications 表的写入

    中文注释: 写入使用 supabase_admin（service_role），避免 RLS 导致写入失败。
    """

    def __init__(self, *, client: Any | None = None) -> None:
        self._client = client

    @property
    def client(self) -> Any:
        return self._client or supabase_admin

    def create_notification(
        self,
        *,
        user_id: str,
        abstract_id: Optional[str],
        type: str,
        title: str,
        content: str,
    ) -> Optional[Dict[str, Any]]:
        try:
            payload = {
                "user_id": user_id,
                "abstract_id": abstract_id,
                "type": type,
                "title": title[:255],
                "content": content[:2000],
                "is_read": False,
            }
            res = self.client.table("notifications").insert(payload).execute()
            rows = getattr(res, "data", None) or []
            return rows[0] if rows else None
        except APIError as e:
            # 中文注释:
            # - notifications.user_id 有外键指向 auth.users(id)；
            #   对仅存在于 user_profiles 的演示账号写通知会触发 23503，直接忽略。
            text = str(e).lower()
            code = str(getattr(e, "code", "") or "").lower()
            if "23503" in code or "23503" in text:
                if "notifications_user_id_fkey" in text or "foreign key" in text:
                    return None
            logger.warning("[Notifications] 创建失败: %s", e)
            return None
        except Exception as e:
            logger.warning("[Notifications] 创建失败: %s", e)
            return None


# kind -> (模板, 邮件主题, 站内信标题)
_KIND_TEMPLATES: dict[str, tuple[str, str, str]] = {
    "reviewer_assigned": (
        "reviewer_assigned.html",
        "New Abstract Assigned for Review - {event_name}",
        "New abstract assigned for review",
    ),
    "abstract_approved": (
        "abstract_approved.html",
        "Abstract Approved - {event_name}",
        "Your abstract was approved",
    ),
    "abstract_approved_staff": (
        "abstract_approved_staff.html",
        "Abstract Approved by Reviewer - {event_name}",
        "Abstract approved by reviewer",
    ),
    "abstract_rejected": (
        "abstract_rejected.html",
        "Abstract Submission Update - {event_name}",
        "Abstract submission update",
    ),
    "revision_requested": (
        "revision_requested.html",
        "Revision Requested for Your Abstract - {event_name}",
        "Revision requested",
    ),
    "revision_resubmitted": (
        "revision_resubmitted.html",
        "Revised Abstract Submitted for Re-review - {event_name}",
        "Revised abstract ready for re-review",
    ),
}


class NotificationDeliveryService:
    """
    把 NotificationIntent 解析为具体收件人并投递（BackgroundTasks 内调用）
    """

    def __init__(
        self,
        *,
        directory: ReviewerDirectory,
        event_config: EventConfigProvider,
        email_service: EmailService | None = None,
        inbox: NotificationService | None = None,
    ) -> None:
        self.directory = directory
        self.event_config = event_config
        self.email_service = email_service or EmailService()
        self.inbox = inbox or NotificationService()

    def _recipients(self, intent: NotificationIntent) -> list[tuple[Optional[str], Optional[str], str]]:
        """返回 [(user_id | None, email | None, name)]"""
        if intent.audience == "author":
            out = []
            for registration_id in intent.recipient_ids:
                contact = self.directory.find_author_contact(registration_id)
                if contact is None:
                    logger.warning("[Notifications] author %s not found, skip", registration_id)
                    continue
                out.append((None, contact.email, contact.name))
            return out

        if intent.audience == "staff" and not intent.recipient_ids:
            return [(p.id, p.email, p.name) for p in self.directory.list_staff()]

        out = []
        for user_id in intent.recipient_ids:
            profile = self.directory.find_reviewer_by_id(user_id)
            if profile is None:
                logger.warning("[Notifications] user %s not found, skip", user_id)
                continue
            out.append((profile.id, profile.email, profile.name))
        return out

    def _reviewer_context(self, intent: NotificationIntent) -> dict[str, Any]:
        # payload 只带 reviewer_id，姓名 / 邮箱在投递时按目录解析
        reviewer_id = intent.payload.get("reviewer_id")
        if not reviewer_id:
            return {}
        profile = self.directory.find_reviewer_by_id(str(reviewer_id))
        if profile is None:
            logger.warning("[Notifications] reviewer %s not found for %s", reviewer_id, intent.kind)
            return {}
        return {"reviewer_name": profile.name, "reviewer_email": profile.email}

    def deliver(self, intent: NotificationIntent) -> int:
        """投递一个意图，返回成功发送的邮件数"""
        template_name, subject_fmt, inbox_title = _KIND_TEMPLATES[intent.kind]
        settings = self.event_config.get_settings(intent.event_id or "")
        subject = subject_fmt.format(event_name=settings.event_name)
        extra = self._reviewer_context(intent)

        sent = 0
        for user_id, email, name in self._recipients(intent):
            context = {
                **intent.payload,
                **extra,
                "recipient_name": name,
                "event_name": settings.event_name,
                "abstract_id": intent.abstract_id,
            }
            if user_id:
                self.inbox.create_notification(
                    user_id=user_id,
                    abstract_id=intent.abstract_id,
                    type=intent.kind,
                    title=inbox_title,
                    content=str(intent.payload.get("title") or intent.abstract_id),
                )
            if not email:
                logger.warning(
                    "[Notifications] %s recipient %s has no email, skip",
                    intent.kind,
                    user_id or name,
                )
                continue
            ok = self.email_service.deliver(
                to_email=email,
                subject=subject,
                template_name=template_name,
                context=context,
                abstract_id=intent.abstract_id,
                notification_kind=intent.kind,
                from_name=settings.sender_name,
                from_email=settings.sender_email,
            )
            if ok:
                sent += 1
        logger.info("[Notifications] %s for abstract %s: %s email(s) sent", intent.kind, intent.abstract_id, sent)
        return sent


def deliver_safely(delivery: NotificationDeliveryService, intent: NotificationIntent) -> int:
    """
    给 BackgroundTasks 用的安全包装：任何异常都吞掉，避免在响应发出后把进程打断。
    """
    try:
        return delivery.deliver(intent)
    except Exception as e:
        logger.error(
            "[Notifications] delivery failed for %s (abstract %s): %s",
            intent.kind,
            intent.abstract_id,
            e,
            exc_info=True,
        )
        return 0


class BackgroundTaskDispatcher(NotificationDispatcher):
    """
    请求级 dispatcher：投递挂到 FastAPI BackgroundTasks，响应发出后执行
    """

    def __init__(self, background_tasks: BackgroundTasks, delivery: NotificationDeliveryService) -> None:
        self.background_tasks = background_tasks
        self.delivery = delivery

    def notify(self, intent: NotificationIntent) -> None:
        self.background_tasks.add_task(deliver_safely, self.delivery, intent)


class InlineNotificationDispatcher(NotificationDispatcher):
    """请求上下文之外（脚本 / 单测）使用：在当前线程同步投递"""

    def __init__(self, delivery: NotificationDeliveryService) -> None:
        self.delivery = delivery

    def notify(self, intent: NotificationIntent) -> None:
        deliver_safely(self.delivery, intent)
