"""
api/limiter.py -- Shared slowapi rate limiter instance.

Import this in both api/main.py (to mount as middleware) and
api/routes/auth.py (to apply per-route limits with @limiter.limit()).

A single shared instance keeps one in-memory counter store for every route.
Separate instances per module would each count alone and never trigger.
"""

from slowapi import Limiter
from slowapi.util import get_remote_address

from core.config import get_settings

limiter = Limiter(key_func=get_remote_address, storage_uri="memory://")


def login_rate_limit() -> str:
    """Limit string for POST /auth/login, read from LOGIN_RATE_LIMIT on each request."""
    return get_settings().login_rate_limit


def verification_rate_limit() -> str:
    """Limit string for POST /auth/verify/reset-password, read from VERIFICATION_RATE_LIMIT."""
    return get_settings().verification_rate_limit
