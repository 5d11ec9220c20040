"""
teams/errors.py -- Domain errors raised by the team store and service.

Each error carries an HTTP status so api/main.py can render it with the shared
ErrorResponse envelope, and a machine-readable code so web/routes.py can map
it to a fixed flash message without echoing user input.
"""

from __future__ import annotations


class TeamError(Exception):
    status_code: int = 400
    code: str = "team_error"

    def __init__(self, message: str, code: str | None = None) -> None:
        super().__init__(message)
        self.message = message
        if code is not None:
            self.code = code


class InvalidRequest(TeamError):
    status_code = 400
    code = "invalid_request"


class PermissionDenied(TeamError):
    status_code = 403
    code = "forbidden"


class NotFound(TeamError):
    status_code = 404
    code = "not_found"


class Conflict(TeamError):
    status_code = 409
    code = "conflict"


class TeamFull(Conflict):
    code = "team_full"
