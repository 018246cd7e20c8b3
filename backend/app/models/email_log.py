from datetime import datetime
from typing import Optional
from enum import Enum
from pydantic import BaseModel, ConfigDict


class EmailStatus(str, Enum):
    SENT = "sent"
    FAILED = "failed"
    SKIPPED = "skipped"


class EmailLog(BaseModel):
    """
    Model for public.email_logs
    """
    id: Optional[str] = None  # DB generated
    recipient: str
    subject: str
    template_name: str
    status: EmailStatus
    abstract_id: Optional[str] = None
    notification_kind: Optional[str] = None
    error_message: Optional[str] = None
    created_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)
