"""
api/routes/v1/auth.py -- Session and password endpoints.

Routes:
  POST /api/v1/auth/login            -- password login; sets the session cookie
  GET  /api/v1/auth/logout           -- clears the session cookie
  POST /api/v1/auth/logout           -- same, for clients that prefer POST
  POST /api/v1/auth/check-password   -- verify the current password -> {auth}
  POST /api/v1/auth/change-password  -- change password under auth.policy

Security:
  [H2] login and check-password are rate-limited per IP.
  [C1] authenticate_user() provides timing equalization -- use it, never inline.
  [M5] Cache-Control: no-store on login responses.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit
from api.models import (
    Acknowledged,
    ChangePasswordRequest,
    CheckPasswordRequest,
    CheckPasswordResponse,
    LoginRequest,
    LoginResponse,
)
from auth.dependencies import get_current_user
from auth.models import User
from auth.policy import PasswordPolicyError, validate_password_change
from auth.store import UserStore
from auth.tokens import (
    authenticate_user,
    clear_auth_cookie,
    create_access_token,
    hash_password,
    set_auth_cookie,
    verify_password,
)
from core.config import get_settings

logger = logging.getLogger("crewroster.auth")

router = APIRouter()


@router.post("/auth/login", response_model=LoginResponse)
@limiter.limit(login_rate_limit)  # [H2] must be BELOW @router so the registered endpoint is the limited one
def login(request: Request, body: LoginRequest) -> JSONResponse:
    """Authenticate with username (or email) and password; set the session cookie.

    Returns the same generic error for an unknown account and a wrong password.
    """
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, body.username, body.password)
    if user is None:
        logger.info("Failed login for %r", body.username[:40])
        resp = JSONResponse(
            status_code=401,
            content={"error": {"code": "bad_credentials", "message": "Invalid username or password."}},
        )
        resp.headers["Cache-Control"] = "no-store"  # [M5]
        return resp

    user_store.update_last_login(user.id)
    expires_in = get_settings().token_expire_seconds
    token = create_access_token(user.id, user.username, user.superadmin)
    resp = JSONResponse(
        status_code=200,
        content=LoginResponse(
            access_token=token,
            token_type="bearer",  # noqa: S106 -- token type, not a password
            expires_in=expires_in,
            user_id=user.id,
            username=user.username,
        ).model_dump(),
    )
    set_auth_cookie(resp, token)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.get("/auth/logout")
@router.post("/auth/logout")
async def logout() -> JSONResponse:
    """Clear the session cookie. Needs no prior auth."""
    resp = JSONResponse(content={"message": "Logged out."})
    clear_auth_cookie(resp)
    return resp


@router.post("/auth/check-password", response_model=CheckPasswordResponse)
@limiter.limit(login_rate_limit)  # [H2] same budget as login -- this is a password oracle
def check_password(
    request: Request,
    body: CheckPasswordRequest,
    current_user: User = Depends(get_current_user),
) -> CheckPasswordResponse:
    """Return whether password matches the current user's password."""
    ok = bool(current_user.hashed_password) and verify_password(body.password, current_user.hashed_password)
    return CheckPasswordResponse(auth=ok)


@router.post("/auth/change-password", response_model=Acknowledged)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
) -> Acknowledged:
    """Change the current user's password.

    The full policy runs server-side (auth.policy.validate_password_change);
    the first failing rule is returned as a 400 with its code.
    """
    user_store: UserStore = request.app.state.user_store
    old_ok = bool(body.old_password) and verify_password(body.old_password, current_user.hashed_password or "")
    try:
        validate_password_change(
            body.old_password,
            body.new_password,
            body.new_password_confirm,
            username=current_user.username,
            old_password_ok=old_ok,
        )
    except PasswordPolicyError as exc:
        raise HTTPException(status_code=400, detail={"code": exc.code, "message": exc.message}) from exc

    user_store.set_password(current_user.id, hash_password(body.new_password))
    logger.info("User %d changed their password", current_user.id)
    return Acknowledged(acknowledged=True)
