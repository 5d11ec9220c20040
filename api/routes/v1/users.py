"""
api/routes/v1/users.py -- Profile and account endpoints.

Routes:
  GET  /api/v1/me             -- own profile plus team context
  POST /api/v1/user           -- update own username / email / about
  POST /api/v1/avatar         -- upload a new avatar (base64 data URL)
  POST /api/v1/users/lookup   -- public profiles by ID, in request order
  POST /api/v1/users          -- create an account (superadmin only)
  GET  /api/v1/users          -- list accounts (superadmin only)

Profile updates re-issue the session cookie when the username changes, and
answer refresh=true so the client reloads its cached identity.
"""

from __future__ import annotations

import logging
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Request
from fastapi.responses import JSONResponse
from sqlalchemy.exc import IntegrityError

from api.models import (
    AvatarResponse,
    AvatarUpload,
    MeResponse,
    ProfileUpdate,
    ProfileUpdateResponse,
    PublicUser,
    RightsModel,
    UserCreate,
    UserLookupRequest,
    UserResponse,
)
from auth.dependencies import get_current_user, require_superadmin
from auth.models import User
from auth.policy import PasswordPolicyError, check_password_strength
from auth.store import UserStore
from auth.tokens import hash_password, issue_session
from avatars.store import AvatarError, AvatarStore, parse_data_url
from teams.service import TeamService
from teams.store import TeamStore

logger = logging.getLogger("crewroster.api")

router = APIRouter()


@router.get("/me", response_model=MeResponse)
async def me(request: Request, current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return the current user's profile, team, role and rights."""
    team_store: TeamStore = request.app.state.team_store
    membership = team_store.get_membership(current_user.id)
    return MeResponse(
        id=current_user.id,
        username=current_user.username,
        email=current_user.email,
        about=current_user.about or "",
        avatar=current_user.avatar,
        superadmin=current_user.superadmin,
        team_id=membership.team_id if membership else None,
        role=membership.role if membership else None,
        rights=RightsModel.from_rights(membership.rights) if membership else None,
    )


@router.post("/user", response_model=ProfileUpdateResponse)
def update_profile(
    request: Request,
    body: ProfileUpdate,
    current_user: User = Depends(get_current_user),
) -> JSONResponse:
    """Update the current user's username, email and about text.

    An unchanged submission answers acknowledged=false without writing.
    """
    user_store: UserStore = request.app.state.user_store

    username_changed = body.username != current_user.username
    email_changed = body.email != current_user.email
    about_changed = body.about != (current_user.about or "")
    if not (username_changed or email_changed or about_changed):
        return JSONResponse(content=ProfileUpdateResponse(acknowledged=False, refresh=False).model_dump())

    try:
        user_store.update_profile(
            current_user.id,
            username=body.username if username_changed else None,
            email=body.email if email_changed else None,
            about=body.about if about_changed else None,
        )
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "That username or email is already taken."},
        ) from exc

    refresh = username_changed or email_changed
    resp = JSONResponse(content=ProfileUpdateResponse(acknowledged=True, refresh=refresh).model_dump())
    if username_changed:
        updated = user_store.get_by_id(current_user.id)
        issue_session(resp, updated)
        logger.info("User %d renamed to %s", current_user.id, updated.username)
    return resp


@router.post("/avatar", response_model=AvatarResponse)
def change_avatar(
    request: Request,
    body: AvatarUpload,
    current_user: User = Depends(get_current_user),
) -> AvatarResponse:
    """Replace the current user's avatar with a validated, resized upload."""
    avatar_store: AvatarStore = request.app.state.avatar_store
    user_store: UserStore = request.app.state.user_store
    try:
        mime, raw = parse_data_url(body.file)
        prefix = avatar_store.save(current_user.id, raw, mime or body.type)
    except AvatarError as exc:
        raise HTTPException(status_code=400, detail={"code": exc.code, "message": exc.message}) from exc
    user_store.set_avatar(current_user.id, prefix)
    return AvatarResponse(acknowledged=True, avatar=prefix)


@router.post("/users/lookup", response_model=list[Optional[PublicUser]])
async def lookup_users(
    request: Request,
    body: UserLookupRequest,
    current_user: User = Depends(get_current_user),
) -> list[Optional[PublicUser]]:
    """Return profiles for body.ids in the same order; hidden or unknown IDs are null."""
    service: TeamService = request.app.state.team_service
    users = service.lookup_users(current_user, body.ids)
    return [PublicUser.from_user(u) if u is not None else None for u in users]


# ---------------------------------------------------------------------------
# Account administration (superadmin only)
# ---------------------------------------------------------------------------


@router.post("/users", response_model=UserResponse, status_code=201)
async def create_user(
    request: Request,
    body: UserCreate,
    current_user: User = Depends(require_superadmin),
) -> UserResponse:
    """Create a new account. The password must pass the strength rules."""
    user_store: UserStore = request.app.state.user_store
    try:
        check_password_strength(body.password, body.username.lower())
    except PasswordPolicyError as exc:
        raise HTTPException(status_code=400, detail={"code": exc.code, "message": exc.message}) from exc

    new_user = User(
        username=body.username,
        email=body.email,
        hashed_password=hash_password(body.password),
        about=body.about or None,
        superadmin=body.superadmin,
    )
    try:
        user_id = user_store.create_user(new_user)
    except IntegrityError as exc:
        raise HTTPException(
            status_code=409,
            detail={"code": "conflict", "message": "A user with that username or email already exists."},
        ) from exc
    logger.info("Superadmin %d created user %d", current_user.id, user_id)
    return _user_to_response(user_store.get_by_id(user_id))


@router.get("/users", response_model=list[UserResponse])
async def list_users(
    request: Request,
    current_user: User = Depends(require_superadmin),
) -> list[UserResponse]:
    user_store: UserStore = request.app.state.user_store
    return [_user_to_response(u) for u in user_store.list_users()]


def _user_to_response(user: User | None) -> UserResponse:
    if user is None:
        raise HTTPException(
            status_code=500,
            detail={"code": "internal_error", "message": "User not found after write."},
        )
    return UserResponse(
        id=user.id,
        username=user.username,
        email=user.email,
        superadmin=user.superadmin,
        is_active=user.is_active,
        created_at=user.created_at or "",
        last_login=user.last_login,
    )
