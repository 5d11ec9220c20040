"""
auth/tokens.py -- Session token, password hashing, and cookie utilities.

Security design decisions:
  Session token: python-jose with HS256. Tokens are signed with SECRET_KEY and
       carry user_id, username, superadmin, and expiry. Verification returns
       None on any failure -- the route layer turns that into a 401.

  Passwords: bcrypt used directly. The _DUMMY_HASH constant enables timing
       equalization in authenticate_user() so response time does not reveal
       whether an account exists [C1].

  Session cookie: httpOnly, samesite=lax, secure when SECURE_COOKIES=true.
       The cookie name comes from Settings.session_cookie_name.

Layer rule: no imports from api/, web/, teams/, or avatars/. Import from core/
is allowed -- core/ is the kernel and has no reverse dependencies.
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import bcrypt
from jose import JWTError, jwt

from core.config import get_settings

if TYPE_CHECKING:
    from auth.models import User
    from auth.store import UserStore

logger = logging.getLogger("crewroster.auth")

_settings = get_settings()

_ALGORITHM = "HS256"

# ---------------------------------------------------------------------------
# Password hashing
# ---------------------------------------------------------------------------


def hash_password(plain: str) -> str:
    """Return a bcrypt hash of the given plaintext password.

    bcrypt truncates input past 72 bytes; the password policy caps new
    passwords at 35 characters, well below that.
    """
    return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt()).decode("utf-8")


def verify_password(plain: str, hashed: str) -> bool:
    """Return True if the plaintext password matches the bcrypt hash."""
    try:
        return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
    except ValueError:
        return False


# Timing equalization dummy hash [C1], computed once at module load.
_DUMMY_HASH: str = hash_password("crewroster_timing_dummy")


# ---------------------------------------------------------------------------
# Token encode / decode
# ---------------------------------------------------------------------------


def create_access_token(user_id: int, username: str, superadmin: bool = False, expire_seconds: int = 0) -> str:
    """Encode a signed session token.

    Args:
        user_id:        Numeric user ID stored in the DB.
        username:       Username stored as the subject claim.
        superadmin:     Carried for display only; authorization always re-reads
                        the user record.
        expire_seconds: Session duration. 0 uses Settings.token_expire_seconds.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    expire = datetime.now(timezone.utc) + timedelta(seconds=duration)
    payload = {
        "sub": username,
        "user_id": user_id,
        "superadmin": superadmin,
        "exp": expire,
    }
    return jwt.encode(payload, _settings.secret_key, algorithm=_ALGORITHM)


def decode_access_token(token: str) -> dict | None:
    """Decode and verify a session token. Returns the payload dict or None on any failure."""
    try:
        payload = jwt.decode(token, _settings.secret_key, algorithms=[_ALGORITHM])
    except JWTError:
        return None
    if "user_id" not in payload:
        return None
    return payload


# ---------------------------------------------------------------------------
# User authentication (constant-time) [C1]
# ---------------------------------------------------------------------------


def authenticate_user(store: UserStore, login: str, password: str) -> User | None:
    """Authenticate a username-or-email / password pair with timing equalization.

    Always runs bcrypt whether or not the account exists:
    - Unknown login: bcrypt runs against _DUMMY_HASH
    - Wrong password: bcrypt runs against the real hash

    Returns the User on success, None on any failure (including inactive accounts).
    """
    user = store.get_by_login(login)
    if user is None or not user.hashed_password:
        verify_password(password, _DUMMY_HASH)
        return None
    if not verify_password(password, user.hashed_password):
        return None
    if not user.is_active:
        return None
    return user


# ---------------------------------------------------------------------------
# Cookie helpers
# ---------------------------------------------------------------------------


def set_auth_cookie(response, token: str, expire_seconds: int = 0) -> None:
    """Write the session token as an httpOnly cookie on the response.

    max_age matches the token expiry so both expire together.
    """
    duration = expire_seconds if expire_seconds > 0 else _settings.token_expire_seconds
    response.set_cookie(
        _settings.session_cookie_name,
        value=token,
        httponly=True,
        samesite="lax",
        secure=_settings.secure_cookies,
        max_age=duration,
    )


def clear_auth_cookie(response) -> None:
    response.delete_cookie(_settings.session_cookie_name)


def issue_session(response, user: User) -> str:
    """Create a token for user, attach it as the session cookie, and return it."""
    token = create_access_token(user.id, user.username, user.superadmin)
    set_auth_cookie(response, token)
    return token
