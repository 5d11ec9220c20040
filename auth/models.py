"""
auth/models.py -- Domain dataclasses for user accounts.

Pattern: Data class (pure data container). Stores and routes do the work;
these dataclasses own the domain shape. The two clean_* helpers are the only
logic here: every path that writes a username or email (API models, web
forms, first-run setup, the CLI) runs them so all surfaces accept exactly
the same values.

Layer rule: no imports from api/, web/, teams/, or avatars/.
"""

from __future__ import annotations

import re
from dataclasses import dataclass

from email_validator import EmailNotValidError, validate_email

USERNAME_MIN_LENGTH = 3
USERNAME_MAX_LENGTH = 20
ABOUT_MAX_LENGTH = 560

# ASCII only; str.isalnum() would let "mäx" through.
_USERNAME_RE = re.compile(r"^[a-z0-9_.-]+$")


def clean_username(value: str) -> str:
    """Return the stored form of a username (stripped, lowercased).

    Raises ValueError unless it is USERNAME_MIN_LENGTH-USERNAME_MAX_LENGTH
    characters drawn from letters, digits, "_", "." and "-".
    """
    username = value.strip().lower()
    if not USERNAME_MIN_LENGTH <= len(username) <= USERNAME_MAX_LENGTH:
        raise ValueError(f"Username must be {USERNAME_MIN_LENGTH}-{USERNAME_MAX_LENGTH} characters.")
    if not _USERNAME_RE.match(username):
        raise ValueError("Username may only contain letters, digits, '_', '.' and '-'.")
    return username


def clean_email(value: str) -> str:
    """Return the stored form of an email address (normalized, lowercased).

    Syntax only; deliverability is not checked so no DNS lookup happens.
    """
    try:
        result = validate_email(value.strip(), check_deliverability=False)
    except EmailNotValidError as exc:
        raise ValueError(str(exc)) from exc
    return result.normalized.lower()


@dataclass
class User:
    """A Crewroster account.

    username is always stored lowercased; lookups are case-insensitive.
    avatar is the public URL prefix of the rendition directory (ends with "/")
    or None when the user never uploaded one. Clients append the rendition
    file name, e.g. avatar + "avatar_large.webp".

    superadmin bypasses team rights checks (see teams/service.py), but not the
    self-protection guards.
    """

    username: str
    email: str
    id: int | None = None
    hashed_password: str | None = None
    avatar: str | None = None
    about: str | None = None
    superadmin: bool = False
    created_at: str | None = None
    last_login: str | None = None
    is_active: bool = True
