"""
auth/dependencies.py -- FastAPI Depends() helpers for authentication.

Two credential sources are checked in priority order:
  1. Session cookie (Settings.session_cookie_name) -- set by the login flow.
  2. Authorization: Bearer <token> header -- API clients holding the same token.

try_get_current_user() is the soft variant (returns None on failure).
get_current_user() wraps it and raises HTTP 401 if unauthenticated.
require_superadmin() wraps get_current_user() and raises HTTP 403 otherwise.

The user record is re-read on every request, so deactivation and superadmin
changes take effect immediately rather than at token expiry.
"""

from __future__ import annotations

from fastapi import HTTPException, Request

from auth.models import User
from auth.tokens import decode_access_token
from core.config import get_settings


def try_get_current_user(request: Request) -> User | None:
    """Attempt to authenticate the request via session cookie or Bearer token.

    Returns the authenticated User on success, None on any failure.
    Never raises.
    """
    user_store = request.app.state.user_store

    token: str | None = request.cookies.get(get_settings().session_cookie_name)

    if not token:
        auth_header = request.headers.get("Authorization", "")
        if auth_header.startswith("Bearer "):
            token = auth_header[7:]

    if not token:
        return None

    payload = decode_access_token(token)
    if payload is None:
        return None
    user = user_store.get_by_id(payload["user_id"])
    if user is None or not user.is_active:
        return None
    return user


def get_current_user(request: Request) -> User:
    """Require authentication. Raises HTTP 401 if the request is not authenticated.

    Use as a FastAPI dependency:
        @router.get("/protected")
        async def route(user: User = Depends(get_current_user)): ...
    """
    user = try_get_current_user(request)
    if user is None:
        raise HTTPException(
            status_code=401,
            detail={"code": "unauthorized", "message": "Authentication required."},
        )
    return user


def require_superadmin(request: Request) -> User:
    """Require the superadmin flag. 401 if unauthenticated, 403 otherwise."""
    user = get_current_user(request)
    if not user.superadmin:
        raise HTTPException(
            status_code=403,
            detail={"code": "forbidden", "message": "Superadmin access required."},
        )
    return user
