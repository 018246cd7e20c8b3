import logging
import os
from typing import Any, Callable, Optional

from supabase import Client, create_client

from app.core.config import app_config

logger = logging.getLogger("abstractflow.supabase")

url: str = app_config.supabase_url

# 中文注释:
# - 历史原因：部署环境里同时存在 SUPABASE_KEY 与 SUPABASE_ANON_KEY，优先读后者。
# - service_role key 只用于后端读取目录 / 活动配置与写入 notifications、email_logs。
key: str = os.environ.get("SUPABASE_ANON_KEY") or os.environ.get("SUPABASE_KEY") or ""

service_role_key: str = app_config.supabase_key or os.environ.get(
    "SUPABASE_SERVICE_ROLE_KEY", ""
)


class _LazySupabaseClient:
    """
    延迟初始化 Supabase Client，避免 import 时因缺少环境变量导致整个应用无法启动。

    中文注释:
    - 内存 store 模式（本地 / 单测）下从不访问这些 client。
    - 真实运行时，缺少 URL/KEY 会在第一次访问时抛出清晰错误。
    """

    def __init__(self, factory: Callable[[], Client], *, name: str):
        self._factory = factory
        self._name = name
        self._client: Optional[Client] = None

    def _get(self) -> Client:
        if self._client is None:
            self._client = self._factory()
            logger.info("[Supabase] %s client initialized", self._name)
        return self._client

    def __getattr__(self, item: str) -> Any:
        return getattr(self._get(), item)


def _require_supabase_url() -> str:
    if not url:
        raise RuntimeError("SUPABASE_URL is required")
    return url


def _require_anon_key() -> str:
    if not key:
        raise RuntimeError("SUPABASE_ANON_KEY or SUPABASE_KEY is required")
    return key


def _create_supabase() -> Client:
    return create_client(_require_supabase_url(), _require_anon_key())


def _create_supabase_admin() -> Client:
    admin_key = service_role_key or key
    if not admin_key:
        raise RuntimeError("SUPABASE_SERVICE_ROLE_KEY (or SUPABASE_KEY) is required")
    return create_client(_require_supabase_url(), admin_key)


# 用户态 client：仅用于 Auth API 校验非 HS256 的 token
supabase: Client = _LazySupabaseClient(_create_supabase, name="supabase")  # type: ignore[assignment]

# 管理端 client（service_role）
supabase_admin: Client = _LazySupabaseClient(_create_supabase_admin, name="supabase_admin")  # type: ignore[assignment]
