from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from typing import TYPE_CHECKING, Any, Optional

from pydantic import BaseModel

from app.lib.api_client import supabase_admin
from app.models.abstract import ReviewerProfile

if TYPE_CHECKING:
    from app.services.abstract_store import InMemoryAbstractStore

logger = logging.getLogger("abstractflow.directory")

STAFF_ROLES = ("admin", "staff")


class AuthorContact(BaseModel):
    registration_id: str
    email: Optional[str] = None
    name: str = "Author"


class ReviewerDirectory(ABC):
    """
    用户目录（只读）：审稿人 / 管理员 / 作者联系方式

    中文注释: 工作流事务内的审稿人校验走 UnitOfWork.get_reviewer（需要行锁），
    这里只服务于通知投递与统计展示。
    """

    @abstractmethod
    def find_reviewer_by_id(self, reviewer_id: str) -> Optional[ReviewerProfile]:
        ...

    @abstractmethod
    def list_staff(self) -> list[ReviewerProfile]:
        """所有带 admin / staff 角色且有邮箱的用户"""

    @abstractmethod
    def find_author_contact(self, registration_id: str) -> Optional[AuthorContact]:
        ...


def _profile_from_row(row: dict[str, Any]) -> ReviewerProfile:
    return ReviewerProfile(
        id=str(row.get("id")),
        email=row.get("email"),
        name=row.get("full_name") or "Reviewer",
        roles=list(row.get("roles") or []),
        assigned_abstracts_count=int(row.get("assigned_abstracts_count") or 0),
    )


class SupabaseReviewerDirectory(ReviewerDirectory):
    """
    基于 user_profiles / registrations 表的目录实现

    中文注释: 使用 service_role client 读取，避免 RLS 导致查不到其他用户的档案。
    """

    _PROFILE_COLUMNS = "id,email,full_name,roles,assigned_abstracts_count"

    def __init__(self, *, client: Any | None = None) -> None:
        self.client = client or supabase_admin

    def find_reviewer_by_id(self, reviewer_id: str) -> Optional[ReviewerProfile]:
        try:
            resp = (
                self.client.table("user_profiles")
                .select(self._PROFILE_COLUMNS)
                .eq("id", str(reviewer_id))
                .limit(1)
                .execute()
            )
            rows = getattr(resp, "data", None) or []
        except Exception as e:
            logger.warning("[Directory] load reviewer %s failed: %s", reviewer_id, e)
            return None
        return _profile_from_row(rows[0]) if rows else None

    def list_staff(self) -> list[ReviewerProfile]:
        seen: dict[str, ReviewerProfile] = {}
        for role in STAFF_ROLES:
            try:
                resp = (
                    self.client.table("user_profiles")
                    .select(self._PROFILE_COLUMNS)
                    .contains("roles", [role])
                    .execute()
                )
                rows = getattr(resp, "data", None) or []
            except Exception as e:
                logger.warning("[Directory] list %s users failed (ignored): %s", role, e)
                continue
            for row in rows:
                profile = _profile_from_row(row)
                if profile.is_contactable and profile.id not in seen:
                    seen[profile.id] = profile
        return list(seen.values())

    def find_author_contact(self, registration_id: str) -> Optional[AuthorContact]:
        try:
            resp = (
                self.client.table("registrations")
                .select("id,email,personal_info")
                .eq("id", str(registration_id))
                .limit(1)
                .execute()
            )
            rows = getattr(resp, "data", None) or []
        except Exception as e:
            logger.warning("[Directory] load registration %s failed: %s", registration_id, e)
            return None
        if not rows:
            return None

        row = rows[0]
        info = row.get("personal_info") if isinstance(row.get("personal_info"), dict) else {}
        email = info.get("email") or row.get("email")
        name = info.get("first_name") or info.get("firstName") or "Author"
        return AuthorContact(registration_id=str(row.get("id")), email=email, name=name)


class InMemoryReviewerDirectory(ReviewerDirectory):
    """
    内存目录（测试 / 本地开发）

    中文注释: 传入 InMemoryAbstractStore 时，审稿人档案直接复用 store 中的数据，无需重复 seed。
    """

    def __init__(
        self,
        profiles: Optional[list[ReviewerProfile]] = None,
        authors: Optional[list[AuthorContact]] = None,
        *,
        store: Optional["InMemoryAbstractStore"] = None,
    ) -> None:
        self._profiles: dict[str, ReviewerProfile] = {p.id: p for p in profiles or []}
        self._authors: dict[str, AuthorContact] = {a.registration_id: a for a in authors or []}
        self._store = store

    def _all_profiles(self) -> dict[str, ReviewerProfile]:
        merged = {p.id: p for p in self._store.list_reviewers()} if self._store else {}
        merged.update(self._profiles)
        return merged

    def add_profile(self, profile: ReviewerProfile) -> None:
        self._profiles[profile.id] = profile

    def add_author(self, author: AuthorContact) -> None:
        self._authors[author.registration_id] = author

    def find_reviewer_by_id(self, reviewer_id: str) -> Optional[ReviewerProfile]:
        return self._all_profiles().get(str(reviewer_id))

    def list_staff(self) -> list[ReviewerProfile]:
        return [
            p
            for p in self._all_profiles().values()
            if p.is_contactable and set(p.roles) & set(STAFF_ROLES)
        ]

    def find_author_contact(self, registration_id: str) -> Optional[AuthorContact]:
        return self._authors.get(str(registration_id))
