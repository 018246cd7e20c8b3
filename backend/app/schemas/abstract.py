from __future__ import annotations

from datetime import datetime
from typing import Any, Optional

from pydantic import BaseModel, Field, field_validator

from app.models.abstract import AbstractRecord, AbstractStatus, ReviewDecision


def _clean_ids(value: Any) -> Any:
    # 去掉首尾空白；非字符串 / 空字符串留给 service 层统一报 ValidationError
    if not isinstance(value, list):
        return value
    return [v.strip() if isinstance(v, str) else v for v in value]


class AssignReviewersRequest(BaseModel):
    reviewer_ids: list[Any] = Field(default_factory=list)

    @field_validator("reviewer_ids", mode="before")
    @classmethod
    def _strip_ids(cls, value: Any) -> Any:
        return _clean_ids(value)


class BulkAssignRequest(BaseModel):
    abstract_ids: list[str] = Field(min_length=1)
    reviewer_ids: list[Any] = Field(min_length=1)

    @field_validator("reviewer_ids", mode="before")
    @classmethod
    def _strip_ids(cls, value: Any) -> Any:
        return _clean_ids(value)


class ReviewSubmission(BaseModel):
    score: Optional[float] = Field(default=None, allow_inf_nan=False)
    comments: Optional[str] = Field(default=None, max_length=20000)
    decision: ReviewDecision


class RevisionRequestPayload(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=5000)
    deadline: Optional[datetime] = None


class ReviewCommentPayload(BaseModel):
    # 空评论由 service 层统一报 "Please provide a comment"
    comment: Optional[str] = Field(default=None, max_length=5000)


class AdminDecisionPayload(BaseModel):
    reason: Optional[str] = Field(default=None, max_length=5000)


class StatusUpdatePayload(BaseModel):
    status: str

    @field_validator("status")
    @classmethod
    def _strip_status(cls, v: str) -> str:
        return v.strip()


class InvalidReviewer(BaseModel):
    id: Any
    reason: str


class AssignmentResult(BaseModel):
    abstract: AbstractRecord
    newly_assigned: list[str] = Field(default_factory=list)
    already_assigned: list[str] = Field(default_factory=list)
    invalid: list[InvalidReviewer] = Field(default_factory=list)

    @property
    def message(self) -> str:
        parts = []
        if self.newly_assigned:
            parts.append(f"Successfully assigned {len(self.newly_assigned)} new reviewer(s).")
        if self.already_assigned:
            parts.append(f"{len(self.already_assigned)} reviewer(s) were already assigned.")
        if self.invalid:
            parts.append(f"{len(self.invalid)} reviewer(s) could not be assigned.")
        return " ".join(parts) or "No changes made to reviewer assignments."


class BulkAssignmentItem(BaseModel):
    abstract_id: str
    success: bool
    message: str


class BulkAssignmentResult(BaseModel):
    results: list[BulkAssignmentItem] = Field(default_factory=list)
    successful: int = 0
    failed: int = 0


class ReviewProgress(BaseModel):
    total_assigned: int
    completed_reviews: int
    pending_reviews: int
    completion_percentage: float


class PendingReviewItem(BaseModel):
    id: str
    title: str
    status: AbstractStatus
    category_id: Optional[str] = None
    assigned_reviewers: list[str] = Field(default_factory=list)
    average_score: Optional[float] = None
    updated_at: datetime
    review_progress: ReviewProgress

    model_config = {"use_enum_values": True}


class ReviewerPerformance(BaseModel):
    reviewer_id: str
    name: str
    email: str
    review_count: int
    completed_reviews: int
    average_score: Optional[float] = None


class EventReviewStatistics(BaseModel):
    event_id: str
    total_abstracts: int
    by_status: dict[str, int] = Field(default_factory=dict)
    reviewer_performance: list[ReviewerPerformance] = Field(default_factory=list)
