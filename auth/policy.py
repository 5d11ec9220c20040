"""
auth/policy.py -- Password policy for account creation and password changes.

The checks run in a fixed order and stop at the first failure, so a user
always sees one actionable message at a time. The same order is used by the
JSON API (api/routes/v1/auth.py) and the profile page (web/routes.py).

Layer rule: pure functions, stdlib only.
"""

from __future__ import annotations

import re

PASSWORD_MIN_LENGTH = 8
PASSWORD_MAX_LENGTH = 35

_DIGIT_RE = re.compile(r"\d")
_LOWER_RE = re.compile(r"[a-z]")
_UPPER_RE = re.compile(r"[A-Z]")


class PasswordPolicyError(ValueError):
    """Raised when a password fails a policy rule. code is machine-readable."""

    def __init__(self, code: str, message: str) -> None:
        super().__init__(message)
        self.code = code
        self.message = message


def check_password_strength(password: str, username: str = "") -> None:
    """Validate the strength rules alone (length, spaces, character classes).

    Raises PasswordPolicyError on the first failing rule.
    """
    if len(password) < PASSWORD_MIN_LENGTH:
        raise PasswordPolicyError(
            "too_short", f"New password is too short, min {PASSWORD_MIN_LENGTH} characters"
        )
    if len(password) > PASSWORD_MAX_LENGTH:
        raise PasswordPolicyError("too_long", f"New password is too long, max {PASSWORD_MAX_LENGTH} characters")
    if " " in password:
        raise PasswordPolicyError("contains_space", "New password cannot contain spaces")
    if username and password == username:
        raise PasswordPolicyError("same_as_username", "New password cannot be the same as your username")
    if not _DIGIT_RE.search(password):
        raise PasswordPolicyError("missing_digit", "New password must contain at least one number")
    if not _LOWER_RE.search(password):
        raise PasswordPolicyError("missing_lowercase", "New password must contain at least one lowercase letter")
    if not _UPPER_RE.search(password):
        raise PasswordPolicyError("missing_uppercase", "New password must contain at least one uppercase letter")


def validate_password_change(
    old_password: str,
    new_password: str,
    new_password_confirm: str,
    username: str,
    old_password_ok: bool,
) -> None:
    """Validate a password change request.

    old_password_ok is the result of verifying old_password against the stored
    hash. The caller computes it so this module stays free of bcrypt.
    """
    if not old_password or not new_password or not new_password_confirm:
        raise PasswordPolicyError("missing_fields", "Please fill out all fields")
    if new_password != new_password_confirm:
        raise PasswordPolicyError("mismatch", "New password doesn't match")
    if old_password == new_password:
        raise PasswordPolicyError("unchanged", "Old password and new password are the same")
    if not old_password_ok:
        raise PasswordPolicyError("wrong_password", "Old password is wrong")
    check_password_strength(new_password, username)
