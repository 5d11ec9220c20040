"""
web/routes.py -- Jinja2 template routes for the Crewroster web UI.

These routes serve server-rendered HTML. They share app.state with the API
routes (same user store, team service, avatar store) but return HTML instead
of JSON. Every mutation goes through the same policy / service / avatar code
as the API and finishes with a 303 redirect back to the profile page carrying
a whitelisted ?msg= code (POST-redirect-GET), so a reload never re-submits.

Route registration order matters: /login/... sub-paths would have to precede
GET /login; /profile/team/members precedes /profile/team/{user_id}/...

Routes:
  GET  /                                  -- redirect to /profile
  GET  /profile                           -- tabs: account | password | team
  POST /profile/account                   -- update username / email / about
  POST /profile/password                  -- change password (auth.policy)
  POST /profile/avatar                    -- upload avatar (multipart)
  POST /profile/team/members              -- add member by username or email
  POST /profile/team/{user_id}/rights     -- save rights toggles
  POST /profile/team/{user_id}/role       -- assign a role template
  POST /profile/team/{user_id}/remove     -- remove a member
  GET  /login                             -- login form
  POST /login                             -- handle password login
  POST /logout                            -- clear cookie, redirect /login
  GET  /setup                             -- first-run wizard
  POST /setup                             -- create first superadmin
"""

import logging
from pathlib import Path
from typing import Optional
from urllib.parse import urlencode

from fastapi import APIRouter, Form, HTTPException, Request, UploadFile
from fastapi.responses import HTMLResponse, RedirectResponse
from fastapi.templating import Jinja2Templates
from sqlalchemy.exc import IntegrityError

from auth.dependencies import try_get_current_user
from auth.models import (
    ABOUT_MAX_LENGTH,
    USERNAME_MAX_LENGTH,
    USERNAME_MIN_LENGTH,
    User,
    clean_email,
    clean_username,
)
from auth.policy import (
    PASSWORD_MAX_LENGTH,
    PASSWORD_MIN_LENGTH,
    PasswordPolicyError,
    check_password_strength,
    validate_password_change,
)
from auth.store import UserStore
from auth.tokens import (
    authenticate_user,
    clear_auth_cookie,
    hash_password,
    issue_session,
    verify_password,
)
from avatars.store import AvatarError, AvatarStore, rendition_name
from teams.errors import TeamError
from teams.models import RIGHT_DESCRIPTIONS, RIGHT_LABELS, RIGHT_NAMES, Rights
from teams.service import TeamService

logger = logging.getLogger("crewroster.web")

templates = Jinja2Templates(directory=str(Path(__file__).parent / "templates"))
templates.env.globals["try_get_current_user"] = try_get_current_user
templates.env.globals["rendition_name"] = rendition_name
router = APIRouter()

_TABS = ("account", "password", "team")

# ---------------------------------------------------------------------------
# Flash messages
#
# The raw ?msg= / ?error= query params are NEVER passed to templates -- only
# the text from these dicts is [M3]. Domain error codes (TeamError.code,
# PasswordPolicyError.code, AvatarError.code) are listed here so a redirect
# can carry the code alone.
# ---------------------------------------------------------------------------

_ERROR_MESSAGES: dict[str, str] = {
    "bad_credentials": "Invalid username or password.",
    "setup_complete": "Setup already complete. Please log in.",
}

_FLASH_MESSAGES: dict[str, tuple[str, str]] = {
    # success
    "profile_saved": ("success", "Changes saved."),
    "profile_unchanged": ("neutral", "Change user details to trigger an update."),
    "password_changed": ("success", "Password changed successfully."),
    "avatar_changed": ("success", "Avatar changed successfully."),
    "member_added": ("success", "Member added."),
    "member_removed": ("success", "Member removed."),
    "rights_saved": ("success", "Rights updated."),
    "role_assigned": ("success", "Role assigned."),
    # profile
    "conflict": ("danger", "That username or email is already taken."),
    "invalid_profile": ("warning", "Username must be 3-20 letters, digits, dots, dashes or underscores."),
    "invalid_email": ("warning", "Please enter a valid email address."),
    "about_too_long": ("warning", f"About text is limited to {ABOUT_MAX_LENGTH} characters."),
    # password policy
    "missing_fields": ("warning", "Please fill out all fields."),
    "mismatch": ("warning", "New password doesn't match."),
    "unchanged": ("warning", "Old password and new password are the same."),
    "wrong_password": ("warning", "Old password is wrong."),
    "too_short": ("warning", f"New password is too short, min {PASSWORD_MIN_LENGTH} characters."),
    "too_long": ("warning", f"New password is too long, max {PASSWORD_MAX_LENGTH} characters."),
    "contains_space": ("warning", "New password cannot contain spaces."),
    "same_as_username": ("warning", "New password cannot be the same as your username."),
    "missing_digit": ("warning", "New password must contain at least one number."),
    "missing_lowercase": ("warning", "New password must contain at least one lowercase letter."),
    "missing_uppercase": ("warning", "New password must contain at least one uppercase letter."),
    # avatar
    "unsupported_type": ("warning", "Avatar must be a JPEG, PNG or WebP image."),
    "too_large": ("warning", "Avatar file is too large."),
    "unreadable": ("warning", "Avatar could not be read as an image."),
    "too_small": ("warning", "Image is too small, min 224x224."),
    # team
    "no_team": ("neutral", "You are not a member of any team yet."),
    "not_team_member": ("danger", "You are not a member of this team."),
    "missing_right": ("danger", "You do not have the right to do this."),
    "self_remove": ("warning", "You cannot remove yourself from the team."),
    "self_rights": ("warning", "You cannot change your own rights."),
    "last_rights_holder": ("warning", "At least one member must keep the right to change rights."),
    "member_not_found": ("warning", "That member is not in this team."),
    "user_not_found": ("warning", "No active user with that name or email."),
    "already_member": ("warning", "That user already belongs to a team."),
    "team_full": ("warning", "The team is full."),
    "role_not_found": ("warning", "That role does not exist."),
}


def _flash(code: Optional[str]) -> Optional[dict]:
    if not code or code not in _FLASH_MESSAGES:
        return None
    variant, text = _FLASH_MESSAGES[code]
    return {"variant": variant, "text": text}


def _back(tab: str, msg: str, member: Optional[int] = None) -> RedirectResponse:
    """303 back to the profile tab with a flash code (POST-redirect-GET)."""
    params: dict = {"tab": tab, "msg": msg}
    if member is not None:
        params["member"] = member
    return RedirectResponse(f"/profile?{urlencode(params)}", status_code=303)


def _safe_next(next_url: Optional[str]) -> str:
    """Validate a post-login redirect target. Only accept relative paths. [C2]"""
    if next_url and next_url.startswith("/") and not next_url.startswith("//"):
        return next_url
    return "/profile"


def _require_user(request: Request) -> User | RedirectResponse:
    """Return the current user, or a redirect to /login?next=<path>."""
    user = try_get_current_user(request)
    if user is None:
        return RedirectResponse(f"/login?next={request.url.path}", status_code=302)
    return user


# ---------------------------------------------------------------------------
# Profile page
# ---------------------------------------------------------------------------


@router.get("/", response_class=HTMLResponse)
def index(request: Request) -> RedirectResponse:
    return RedirectResponse("/profile", status_code=302)


@router.get("/profile", response_class=HTMLResponse)
def profile(
    request: Request,
    tab: str = "account",
    member: Optional[int] = None,
    q: Optional[str] = None,
    msg: Optional[str] = None,
) -> HTMLResponse:
    """Render the three-tab profile page.

    The team tab shows the roster (optionally filtered by q), the selected
    member (defaulting to the first roster entry), and rights toggles that are
    disabled for the viewer's own row or without change_team_member_rights.
    """
    user = _require_user(request)
    if isinstance(user, RedirectResponse):
        return user
    if tab not in _TABS:
        tab = "account"

    service: TeamService = request.app.state.team_service
    roster = None
    selected = None
    roles = []
    team_notice = None
    try:
        roster = service.get_roster(user, query=q)
        roles = service.teams.list_roles(roster.team.id)
    except TeamError as exc:
        team_notice = _flash(exc.code)
    if roster is not None and roster.entries:
        selected = next((e for e in roster.entries if e.user.id == member), roster.entries[0])

    my_rights = roster.my_rights if roster is not None and roster.my_rights else Rights()
    return templates.TemplateResponse(
        request,
        "profile.html",
        {
            "user": user,
            "tab": tab,
            "flash": _flash(msg),
            "roster": roster,
            "selected": selected,
            "roles": roles,
            "query": q or "",
            "team_notice": team_notice,
            "my_rights": my_rights,
            "right_names": RIGHT_NAMES,
            "right_labels": RIGHT_LABELS,
            "right_descriptions": RIGHT_DESCRIPTIONS,
            "limits": {
                "username_min": USERNAME_MIN_LENGTH,
                "username_max": USERNAME_MAX_LENGTH,
                "about_max": ABOUT_MAX_LENGTH,
                "password_min": PASSWORD_MIN_LENGTH,
                "password_max": PASSWORD_MAX_LENGTH,
            },
        },
    )


@router.post("/profile/account", response_class=HTMLResponse)
def profile_account(
    request: Request,
    username: str = Form(default=""),
    email: str = Form(default=""),
    about: str = Form(default=""),
) -> RedirectResponse:
    """Save account details. A username change re-issues the session cookie."""
    user = _require_user(request)
    if isinstance(user, RedirectResponse):
        return user
    user_store: UserStore = request.app.state.user_store

    try:
        new_username = clean_username(username)
    except ValueError:
        return _back("account", "invalid_profile")
    try:
        new_email = clean_email(email)
    except ValueError:
        return _back("account", "invalid_email")
    new_about = about.strip()
    if len(new_about) > ABOUT_MAX_LENGTH:
        return _back("account", "about_too_long")

    username_changed = new_username != user.username
    email_changed = new_email != user.email
    about_changed = new_about != (user.about or "")
    if not (username_changed or email_changed or about_changed):
        return _back("account", "profile_unchanged")

    try:
        user_store.update_profile(
            user.id,
            username=new_username if username_changed else None,
            email=new_email if email_changed else None,
            about=new_about if about_changed else None,
        )
    except IntegrityError:
        return _back("account", "conflict")

    resp = _back("account", "profile_saved")
    if username_changed:
        issue_session(resp, user_store.get_by_id(user.id))
    return resp


@router.post("/profile/password", response_class=HTMLResponse)
def profile_password(
    request: Request,
    old_password: str = Form(default=""),
    new_password: str = Form(default=""),
    new_password_confirm: str = Form(default=""),
) -> RedirectResponse:
    user = _require_user(request)
    if isinstance(user, RedirectResponse):
        return user
    user_store: UserStore = request.app.state.user_store

    old_ok = bool(old_password) and verify_password(old_password, user.hashed_password or "")
    try:
        validate_password_change(old_password, new_password, new_password_confirm, user.username, old_ok)
    except PasswordPolicyError as exc:
        return _back("password", exc.code)

    user_store.set_password(user.id, hash_password(new_password))
    logger.info("User %d changed their password", user.id)
    return _back("password", "password_changed")


@router.post("/profile/avatar", response_class=HTMLResponse)
async def profile_avatar(request: Request, avatar: UploadFile) -> RedirectResponse:
    """Accept a multipart avatar upload and write its renditions."""
    user = _require_user(request)
    if isinstance(user, RedirectResponse):
        return user
    avatar_store: AvatarStore = request.app.state.avatar_store
    user_store: UserStore = request.app.state.user_store

    # Read one byte past the cap so oversize uploads are rejected without
    # buffering the whole file.
    raw = await avatar.read(avatar_store.max_bytes + 1)
    try:
        prefix = avatar_store.save(user.id, raw, avatar.content_type or "")
    except AvatarError as exc:
        return _back("account", exc.code)
    user_store.set_avatar(user.id, prefix)
    return _back("account", "avatar_changed")


# ---------------------------------------------------------------------------
# Team tab forms
# ---------------------------------------------------------------------------


@router.post("/profile/team/members", response_class=HTMLResponse)
def team_add_member(
    request: Request,
    login: str = Form(default=""),
    role: str = Form(default="member"),
) -> RedirectResponse:
    user = _require_user(request)
    if isinstance(user, RedirectResponse):
        return user
    service: TeamService = request.app.state.team_service
    try:
        team_id = service.resolve_team_id(user)
        member = service.add_member(user, team_id, login.strip(), role.strip() or "member")
    except TeamError as exc:
        return _back("team", exc.code)
    return _back("team", "member_added", member.user_id)


@router.post("/profile/team/{user_id}/rights", response_class=HTMLResponse)
async def team_member_rights(request: Request, user_id: int) -> RedirectResponse:
    """Save the rights checkboxes; an unchecked box is simply absent from the form."""
    user = _require_user(request)
    if isinstance(user, RedirectResponse):
        return user
    service: TeamService = request.app.state.team_service
    form = await request.form()
    rights = Rights.from_dict({name: name in form for name in RIGHT_NAMES})
    try:
        team_id = service.resolve_team_id(user)
        service.change_member_rights(user, team_id, user_id, rights)
    except TeamError as exc:
        return _back("team", exc.code, user_id)
    return _back("team", "rights_saved", user_id)


@router.post("/profile/team/{user_id}/role", response_class=HTMLResponse)
def team_member_role(request: Request, user_id: int, role: str = Form(default="")) -> RedirectResponse:
    user = _require_user(request)
    if isinstance(user, RedirectResponse):
        return user
    service: TeamService = request.app.state.team_service
    try:
        team_id = service.resolve_team_id(user)
        service.change_member_role(user, team_id, user_id, role.strip())
    except TeamError as exc:
        return _back("team", exc.code, user_id)
    return _back("team", "role_assigned", user_id)


@router.post("/profile/team/{user_id}/remove", response_class=HTMLResponse)
def team_member_remove(request: Request, user_id: int) -> RedirectResponse:
    user = _require_user(request)
    if isinstance(user, RedirectResponse):
        return user
    service: TeamService = request.app.state.team_service
    try:
        team_id = service.resolve_team_id(user)
        service.remove_member(user, team_id, user_id)
    except TeamError as exc:
        return _back("team", exc.code, user_id)
    return _back("team", "member_removed")


# ---------------------------------------------------------------------------
# Login / logout / setup
# ---------------------------------------------------------------------------


@router.get("/login", response_class=HTMLResponse)
def login_form(request: Request) -> HTMLResponse:
    if try_get_current_user(request) is not None:
        return RedirectResponse("/profile", status_code=302)
    error_msg = _ERROR_MESSAGES.get(request.query_params.get("error", ""), None)  # [M3]
    return templates.TemplateResponse(
        request,
        "login.html",
        {"error_msg": error_msg, "next": _safe_next(request.query_params.get("next"))},
    )


@router.post("/login", response_class=HTMLResponse)
def login_post(
    request: Request,
    username: str = Form(...),
    password: str = Form(...),
) -> RedirectResponse:
    """Handle username/password login form submission."""
    user_store: UserStore = request.app.state.user_store
    user = authenticate_user(user_store, username, password)  # [C1]
    if user is None:
        return RedirectResponse("/login?error=bad_credentials", status_code=302)

    user_store.update_last_login(user.id)
    next_url = _safe_next(request.query_params.get("next"))  # [C2]
    resp = RedirectResponse(next_url, status_code=302)
    issue_session(resp, user)
    resp.headers["Cache-Control"] = "no-store"  # [M5]
    return resp


@router.post("/logout")
def logout(request: Request) -> RedirectResponse:
    resp = RedirectResponse("/login", status_code=302)
    clear_auth_cookie(resp)
    return resp


@router.get("/setup", response_class=HTMLResponse)
def setup_form(request: Request) -> HTMLResponse:
    """Render the first-run wizard; 404 once an account exists."""
    if not getattr(request.app.state, "setup_required", True):
        raise HTTPException(status_code=404)
    return templates.TemplateResponse(request, "setup.html", {"error_msg": None})


@router.post("/setup", response_class=HTMLResponse)
def setup_post(
    request: Request,
    username: str = Form(...),
    email: str = Form(...),
    password: str = Form(...),
    confirm_password: str = Form(...),
) -> HTMLResponse:
    """Create the first superadmin account.

    [M1] Re-checks has_users() even though the middleware checked
    setup_required; two concurrent requests could both pass the flag.
    """
    user_store: UserStore = request.app.state.user_store

    if user_store.has_users():
        return RedirectResponse("/login?error=setup_complete", status_code=302)

    def _fail(message: str) -> HTMLResponse:
        return templates.TemplateResponse(request, "setup.html", {"error_msg": message}, status_code=400)

    try:
        new_username = clean_username(username)
    except ValueError as exc:
        return _fail(str(exc))
    try:
        new_email = clean_email(email)
    except ValueError:
        return _fail("Please enter a valid email address.")
    if password != confirm_password:
        return _fail("Passwords do not match.")
    try:
        check_password_strength(password, new_username)
    except PasswordPolicyError as exc:
        return _fail(exc.message)

    try:
        user_store.create_user(
            User(
                username=new_username,
                email=new_email,
                hashed_password=hash_password(password),
                superadmin=True,
            )
        )
    except IntegrityError:
        return RedirectResponse("/login?error=setup_complete", status_code=302)
    request.app.state.setup_required = False
    logger.info("First-run setup created superadmin %s", new_username)
    return RedirectResponse("/login", status_code=302)
