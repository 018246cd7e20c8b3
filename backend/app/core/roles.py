import logging
import os
from typing import Optional, Set

from fastapi import Depends, HTTPException

from app.core.auth_utils import get_current_user
from app.lib.api_client import supabase_admin
from app.models.user import ADMIN_ROLE, Actor

logger = logging.getLogger("abstractflow.auth")


def _parse_admin_emails() -> Set[str]:
    raw = os.environ.get("ADMIN_EMAILS", "")
    return {e.strip().lower() for e in raw.split(",") if e.strip()}


def _is_admin_email(email: Optional[str]) -> bool:
    if not email:
        return False
    return email.strip().lower() in _parse_admin_emails()


def _profile_roles(user_id: str) -> list[str]:
    try:
        resp = (
            supabase_admin.table("user_profiles")
            .select("roles")
            .eq("id", user_id)
            .limit(1)
            .execute()
        )
        rows = getattr(resp, "data", None) or []
    except Exception as e:
        logger.warning("[Auth] load roles for %s failed (token roles only): %s", user_id, e)
        return []
    return list((rows[0].get("roles") if rows else None) or [])


async def get_current_actor(current_user: dict = Depends(get_current_user)) -> Actor:
    """
    组装调用者身份（token 角色 + user_profiles.roles）。

    中文注释:
    1) token 中没有角色时才查询 user_profiles，避免每个请求都访问数据库。
    2) 若 email 在 ADMIN_EMAILS 中，则自动补齐 admin 权限，便于本地/演示测试。
    """
    roles = list(current_user.get("roles") or [])
    if not roles:
        roles = _profile_roles(current_user["id"])
    if _is_admin_email(current_user.get("email")) and ADMIN_ROLE not in roles:
        roles.append(ADMIN_ROLE)
    return Actor(
        id=current_user["id"],
        email=current_user.get("email"),
        roles=list(dict.fromkeys(roles)),
        registration_id=current_user.get("registration_id"),
    )


async def require_admin(actor: Actor = Depends(get_current_actor)) -> Actor:
    if not actor.is_admin:
        raise HTTPException(status_code=403, detail="Insufficient role")
    return actor
