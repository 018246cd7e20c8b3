import os
import sys
from datetime import datetime, timedelta, timezone
from typing import AsyncGenerator, Optional

import jwt
import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient

# Import app from the correct location
sys.path.insert(0, os.path.dirname(os.path.dirname(os.path.abspath(__file__))))

from app.models.abstract import AbstractRecord, ReviewerProfile
from app.models.notification import EventNotificationSettings, NotificationIntent
from app.services.abstract_store import InMemoryAbstractStore
from app.services.event_config import StaticEventConfigProvider
from app.services.notification_service import NotificationDispatcher
from app.services.reviewer_directory import AuthorContact, InMemoryReviewerDirectory
from app.services.workflow import build_workflow, get_workflow

# === 全局测试配置 ===
# 中文注释:
# 1. 默认全部使用内存实现（store / 目录 / 活动配置），不依赖 Supabase 或 Postgres。
# 2. 通知用 RecordingDispatcher 记录意图，断言“发给谁、发了几次”。
# 3. JWT 令牌用本地 HS256 密钥签发，与 auth_utils 的默认密钥一致。

EVENT_ID = "evt-1"
AUTHOR_REG_ID = "reg-1"
ADMIN_ID = "admin-1"


class RecordingDispatcher(NotificationDispatcher):
    def __init__(self) -> None:
        self.intents: list[NotificationIntent] = []

    def notify(self, intent: NotificationIntent) -> None:
        self.intents.append(intent)

    def kinds(self) -> list[str]:
        return [i.kind for i in self.intents]


class FailingDispatcher(NotificationDispatcher):
    def notify(self, intent: NotificationIntent) -> None:
        raise RuntimeError("dispatcher unavailable")


def _make_abstract(abstract_id: str = "A1", **overrides) -> AbstractRecord:
    data = {
        "id": abstract_id,
        "event_id": EVENT_ID,
        "registration_id": AUTHOR_REG_ID,
        "title": f"Abstract {abstract_id}",
        "content": "Deep learning for protein folding",
        "status": "submitted",
    }
    data.update(overrides)
    return AbstractRecord(**data)


@pytest.fixture
def make_abstract():
    return _make_abstract


@pytest.fixture
def seed_abstract(store):
    def _seed(abstract_id: str = "A1", **overrides) -> AbstractRecord:
        return store.add_abstract(_make_abstract(abstract_id, **overrides))

    return _seed


@pytest.fixture
def store() -> InMemoryAbstractStore:
    s = InMemoryAbstractStore(max_retries=3, timeout_seconds=2)
    s.add_reviewer(ReviewerProfile(id="R1", email="r1@example.com", name="Reviewer One", roles=["reviewer"]))
    s.add_reviewer(ReviewerProfile(id="R2", email="r2@example.com", name="Reviewer Two", roles=["reviewer"]))
    s.add_reviewer(ReviewerProfile(id="R3", email=None, name="No Email", roles=["reviewer"]))
    s.add_reviewer(ReviewerProfile(id=ADMIN_ID, email="admin@example.com", name="Admin", roles=["admin"]))
    return s


@pytest.fixture
def event_config() -> StaticEventConfigProvider:
    return StaticEventConfigProvider(
        [
            EventNotificationSettings(
                event_id=EVENT_ID,
                event_name="BioConf 2026",
                email_enabled=True,
                notify_admins_on_approval=True,
            )
        ]
    )


@pytest.fixture
def directory(store) -> InMemoryReviewerDirectory:
    return InMemoryReviewerDirectory(
        authors=[AuthorContact(registration_id=AUTHOR_REG_ID, email="author@example.com", name="Alice")],
        store=store,
    )


@pytest.fixture
def recorder() -> RecordingDispatcher:
    return RecordingDispatcher()


@pytest.fixture
def failing_dispatcher() -> FailingDispatcher:
    return FailingDispatcher()


@pytest.fixture
def workflow(store, directory, event_config, recorder):
    return build_workflow(
        store=store, directory=directory, event_config=event_config, dispatcher=recorder
    )


def generate_test_token(
    user_id: str = "00000000-0000-0000-0000-000000000000",
    *,
    roles: Optional[list[str]] = None,
    registration_id: Optional[str] = None,
    expires_in: timedelta = timedelta(hours=1),
) -> str:
    """
    生成用于测试的JWT令牌（与 auth_utils 默认密钥一致）
    """
    secret = os.environ.get("SUPABASE_JWT_SECRET", "mock-secret-replace-later")
    now = datetime.now(timezone.utc)

    payload = {
        "sub": user_id,
        "email": f"{user_id}@example.com",
        "aud": "authenticated",
        "exp": now + expires_in,
        "iat": now,
        "role": "authenticated",
        "app_metadata": {"roles": roles or []},
        "user_metadata": {"registration_id": registration_id} if registration_id else {},
    }

    return jwt.encode(payload, secret, algorithm="HS256")


def auth_headers(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def admin_headers() -> dict[str, str]:
    return auth_headers(generate_test_token(ADMIN_ID, roles=["admin"]))


@pytest.fixture
def author_headers() -> dict[str, str]:
    return auth_headers(generate_test_token("author-user", roles=["author"], registration_id=AUTHOR_REG_ID))


@pytest.fixture
def reviewer_headers():
    def _headers(reviewer_id: str) -> dict[str, str]:
        return auth_headers(generate_test_token(reviewer_id, roles=["reviewer"]))

    return _headers


@pytest.fixture
def token_factory():
    return generate_test_token


@pytest_asyncio.fixture
async def client(workflow) -> AsyncGenerator:
    """
    提供一个模拟的异步测试客户端（工作流依赖替换为内存实现）
    """
    from main import app

    app.dependency_overrides[get_workflow] = lambda: workflow
    try:
        async with AsyncClient(
            transport=ASGITransport(app=app),
            base_url="http://testserver"
        ) as ac:
            yield ac
    finally:
        app.dependency_overrides.pop(get_workflow, None)
