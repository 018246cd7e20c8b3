from __future__ import annotations

import re
from datetime import datetime, timezone
from enum import Enum
from typing import Literal, Optional

from pydantic import BaseModel, Field, field_validator, model_validator
from pydantic.config import ConfigDict


class AbstractStatus(str, Enum):
    """
    摘要（Abstract）生命周期状态。

    中文注释:
    - 单一状态字段是下游（导出、看板）唯一的事实来源。
    - 数据库存储为字符串；读取时统一 normalize，兼容历史数据。
    """

    DRAFT = "draft"
    SUBMITTED = "submitted"
    UNDER_REVIEW = "under-review"
    REVISION_REQUESTED = "revision-requested"
    REVISED_PENDING_REVIEW = "revised-pending-review"
    APPROVED = "approved"
    REJECTED = "rejected"

    @classmethod
    def auto_advance_sources(cls) -> set[str]:
        """
        首次分配审稿人时，会自动推进到 under-review 的来源状态。

        中文注释: 历史数据里的 `pending` 在 normalize 后等价于 submitted。
        """
        return {cls.SUBMITTED.value, cls.REVISED_PENDING_REVIEW.value}

    @classmethod
    def awaiting_review(cls) -> set[str]:
        return {cls.UNDER_REVIEW.value, cls.REVISED_PENDING_REVIEW.value}

    @classmethod
    def admin_correctable(cls) -> set[str]:
        # 管理员手动纠正状态时允许的目标值（与历史接口保持一致）
        return {
            cls.DRAFT.value,
            cls.SUBMITTED.value,
            cls.UNDER_REVIEW.value,
            cls.APPROVED.value,
            cls.REJECTED.value,
        }


class ReviewDecision(str, Enum):
    ACCEPT = "accept"
    REJECT = "reject"
    REVISE = "revise"
    UNDECIDED = "undecided"


FinalDecision = Literal["approved", "rejected", "revision-requested"]


def normalize_status(value: str | None) -> str | None:
    if value is None:
        return None
    v = str(value).strip().lower()
    if not v:
        return None
    v = v.replace("_", "-")
    # 兼容旧状态（历史数据）
    legacy_map = {
        "pending": AbstractStatus.SUBMITTED.value,
        "revised": AbstractStatus.REVISED_PENDING_REVIEW.value,
    }
    v = legacy_map.get(v, v)

    try:
        return AbstractStatus(v).value
    except ValueError:
        return None


def count_words(content: str | None) -> int:
    text = str(content or "").strip()
    if not text:
        return 0
    return len(re.split(r"\s+", text))


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


class ReviewEntry(BaseModel):
    """单个审稿人的评审记录（每个 reviewer 至多一条）"""

    reviewer_id: str
    score: Optional[float] = None
    comments: Optional[str] = None
    decision: ReviewDecision = ReviewDecision.UNDECIDED
    is_complete: bool = False
    reviewed_at: Optional[datetime] = None

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)


class ReviewComment(BaseModel):
    """评审讨论区的一条评论（不影响评分与状态）"""

    user_id: str
    comment: str
    created_at: datetime = Field(default_factory=utc_now)


class AbstractRecord(BaseModel):
    """
    摘要实体（持久化状态）

    中文注释:
    1) reviews / assigned_reviewers 由工作流服务在事务内统一修改，API 层不得直接写。
    2) average_score 为派生字段，每次 reviews 变化后重新计算。
    3) version 用于乐观并发控制：每次提交 +1。
    4) word_count 始终由 content 推导，传入的值会被覆盖。
    """

    id: str
    event_id: str
    registration_id: str
    category_id: Optional[str] = None
    title: str = "Untitled Abstract"
    content: str = ""
    word_count: int = 0
    status: AbstractStatus = AbstractStatus.SUBMITTED

    assigned_reviewers: list[str] = Field(default_factory=list)
    reviews: list[ReviewEntry] = Field(default_factory=list)
    review_comments: list[ReviewComment] = Field(default_factory=list)
    average_score: Optional[float] = None

    final_decision: Optional[FinalDecision] = None
    decision_by: Optional[str] = None
    decision_date: Optional[datetime] = None
    decision_reason: Optional[str] = None
    revision_deadline: Optional[datetime] = None

    version: int = Field(1, ge=1)
    created_at: datetime = Field(default_factory=utc_now)
    updated_at: datetime = Field(default_factory=utc_now)

    model_config = ConfigDict(from_attributes=True, use_enum_values=True)

    @field_validator("status", mode="before")
    @classmethod
    def _normalize_status(cls, value):
        normalized = normalize_status(value)
        if normalized is None:
            raise ValueError(f"Unknown abstract status: {value!r}")
        return normalized

    @field_validator("assigned_reviewers", mode="before")
    @classmethod
    def _dedupe_reviewers(cls, value):
        # 去重保持顺序
        seen: set[str] = set()
        out: list[str] = []
        for rid in value or []:
            key = str(rid)
            if key not in seen:
                seen.add(key)
                out.append(key)
        return out

    @model_validator(mode="after")
    def _derive_word_count(self):
        self.word_count = count_words(self.content)
        return self

    def is_assigned(self, reviewer_id: str) -> bool:
        return str(reviewer_id) in self.assigned_reviewers

    def review_for(self, reviewer_id: str) -> ReviewEntry | None:
        for entry in self.reviews:
            if entry.reviewer_id == str(reviewer_id):
                return entry
        return None


class ReviewerProfile(BaseModel):
    """审稿人 / 用户档案（user_profiles 表的子集）"""

    id: str
    email: Optional[str] = None
    name: str = "Reviewer"
    roles: list[str] = Field(default_factory=list)
    assigned_abstracts_count: int = Field(0, ge=0)

    model_config = ConfigDict(from_attributes=True)

    @property
    def is_contactable(self) -> bool:
        return bool((self.email or "").strip())
