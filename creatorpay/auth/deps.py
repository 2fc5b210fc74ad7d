from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Callable, Dict, Optional

import jwt
from fastapi import Depends, HTTPException, Request

from creatorpay.core.settings import S

ROLES = ("user", "creator", "admin")


@dataclass(frozen=True)
class CurrentUser:
    user_id: str
    role: str = "user"


def extract_bearer_token(auth_header: Optional[str]) -> str:
    if not auth_header:
        raise HTTPException(401, "Missing Authorization header")
    scheme, _, token = auth_header.partition(" ")
    if scheme.lower() != "bearer" or not token.strip():
        raise HTTPException(401, "Invalid Authorization header")
    return token.strip()


def _decode_session_token(token: str) -> Dict[str, Any]:
    try:
        return jwt.decode(token, S.session_jwt_secret, algorithms=["HS256"], options={"require": ["sub"]})
    except jwt.ExpiredSignatureError as exc:
        raise HTTPException(401, "Token expired") from exc
    except jwt.PyJWTError as exc:
        raise HTTPException(401, "Invalid token") from exc


def _normalize_role(role: Any) -> str:
    role = str(role or "user").strip().lower()
    return role if role in ROLES else "user"


async def get_current_user(request: Request) -> CurrentUser:
    """
    The session layer issues HS256 tokens carrying ``sub`` and ``role``.

    Dev fallback (no SESSION_JWT_SECRET): X-User-Id / X-User-Role headers.
    """
    if S.session_jwt_secret:
        token = extract_bearer_token(request.headers.get("authorization"))
        payload = _decode_session_token(token)
        sub = payload.get("sub")
        if not isinstance(sub, str) or not sub.strip():
            raise HTTPException(401, "Token missing subject")
        return CurrentUser(user_id=sub, role=_normalize_role(payload.get("role")))

    fallback_user = request.headers.get("x-user-id")
    if not fallback_user:
        raise HTTPException(401, "Not authenticated")
    return CurrentUser(user_id=fallback_user, role=_normalize_role(request.headers.get("x-user-role")))


def require_role(*roles: str) -> Callable[..., Any]:
    async def _dep(user: CurrentUser = Depends(get_current_user)) -> CurrentUser:
        if user.role not in roles:
            raise HTTPException(403, "Forbidden")
        return user

    return _dep
