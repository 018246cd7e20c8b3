import logging
import os
from typing import Any, Optional

from fastapi import Depends, HTTPException
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from jose import JWTError, jwt

from app.lib.api_client import supabase

logger = logging.getLogger("abstractflow.auth")

# === Auth 核心配置 ===
# 中文注释:
# 1. 密钥来源于 Supabase Project Settings 中的 JWT Secret。
# 2. 我们使用 HTTPBearer 作为验证头。
SUPABASE_JWT_SECRET = os.environ.get("SUPABASE_JWT_SECRET", "mock-secret-replace-later")
ALGORITHM = "HS256"

security = HTTPBearer()


def _claim_roles(payload: dict[str, Any]) -> list[str]:
    """
    从 token 中提取角色：app_metadata.roles（数组）或 role（单值，忽略 Supabase 内置的 authenticated）
    """
    app_meta = payload.get("app_metadata") if isinstance(payload.get("app_metadata"), dict) else {}
    roles = app_meta.get("roles")
    if isinstance(roles, list):
        return [str(r) for r in roles if r]
    role = app_meta.get("role") or payload.get("role")
    if role and role not in {"authenticated", "anon"}:
        return [str(role)]
    return []


def _claim_registration_id(payload: dict[str, Any]) -> Optional[str]:
    user_meta = payload.get("user_metadata") if isinstance(payload.get("user_metadata"), dict) else {}
    value = user_meta.get("registration_id") or payload.get("registration_id")
    return str(value) if value else None


async def get_current_user(credentials: HTTPAuthorizationCredentials = Depends(security)) -> dict:
    """
    解码并验证 Supabase JWT Token
    返回 {id, email, roles, registration_id}
    """
    token = credentials.credentials
    try:
        # 中文注释:
        # 1. Supabase 新版可能使用 JWT Signing Keys（非 HS256），需要走 Auth API 获取用户。
        # 2. 若仍为 HS256，则用本地密钥校验以减少外部请求。
        header = jwt.get_unverified_header(token)
        if header.get("alg") == ALGORITHM and SUPABASE_JWT_SECRET:
            payload = jwt.decode(token, SUPABASE_JWT_SECRET, algorithms=[ALGORITHM], audience="authenticated")
            user_id = payload.get("sub")
            if user_id is None:
                raise HTTPException(status_code=401, detail="无效的身份载荷")
            return {
                "id": str(user_id),
                "email": payload.get("email"),
                "roles": _claim_roles(payload),
                "registration_id": _claim_registration_id(payload),
            }

        # fallback: 通过 Supabase Auth API 校验并获取用户信息
        try:
            response = supabase.auth.get_user(token)
            user = response.user if response else None
        except Exception as e:
            # 中文注释: 若 Supabase 配置缺失/网络异常，不应返回 500 泄露内部错误，统一视为鉴权失败
            logger.warning("[Auth] JWT fallback 校验失败: %s", e)
            raise HTTPException(status_code=401, detail="Token 验证失败或已过期")

        if not user:
            raise HTTPException(status_code=401, detail="无效的身份载荷")
        claims = {
            "app_metadata": getattr(user, "app_metadata", None) or {},
            "user_metadata": getattr(user, "user_metadata", None) or {},
        }
        return {
            "id": str(user.id),
            "email": user.email,
            "roles": _claim_roles(claims),
            "registration_id": _claim_registration_id(claims),
        }
    except JWTError as e:
        logger.info("[Auth] JWT 验证失败: %s", e)
        raise HTTPException(status_code=401, detail="Token 验证失败或已过期")
