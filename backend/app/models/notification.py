from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, Field


NotificationKind = Literal[
    "reviewer_assigned",
    "abstract_approved",
    "abstract_approved_staff",
    "abstract_rejected",
    "revision_requested",
    "revision_resubmitted",
]

NotificationAudience = Literal["author", "reviewer", "staff"]


class NotificationIntent(BaseModel):
    """
    通知意图（工作流提交后交给 dispatcher，请求结束后投递）

    中文注释:
    - 工作流只决定“是否通知、通知谁”，不关心投递方式（站内信 / 邮件）。
    - recipient_ids 的含义由 audience 决定：author 为 registration_id，其余为 user id。
    """

    kind: NotificationKind
    abstract_id: str
    event_id: Optional[str] = None
    audience: NotificationAudience
    recipient_ids: List[str] = Field(default_factory=list)
    payload: Dict[str, Any] = Field(default_factory=dict)
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class EventNotificationSettings(BaseModel):
    """
    活动级通知开关（只读）

    中文注释:
    - email_enabled 为总开关；关闭时工作流不产生任何通知意图。
    - notify_admins_on_approval 对应原 automaticEmails.reviewSubmittedNotificationToAdmin。
    """

    event_id: str
    event_name: str = "Event"
    email_enabled: bool = False
    notify_admins_on_approval: bool = False
    sender_name: Optional[str] = None
    sender_email: Optional[str] = None
