"""
api/limiter.py -- Shared slowapi rate limiter instance.

Mounted in api/main.py and applied per-route in api/routes/v1/auth.py
(login and password verification) with @limiter.limit(). A single instance
means every route shares one in-memory counter store.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    """Budget for login and password checks, read from settings on every request."""
    return get_settings().login_rate_limit
