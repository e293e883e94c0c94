"""
auth/csrf.py -- Anti-forgery tokens bound to a browser session id.

The token is HMAC-SHA256(SECRET_KEY, "csrf:" + session_id), so nothing is
stored server-side: GET /auth/csrf hands out a random session id in an
HTTP-only cookie plus the derived token, and every POST must echo the token
in the X-CSRF-Token header. A cross-site form can send the cookie but cannot
read the token, so it cannot produce the header.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets


class CsrfGuard:
    def __init__(self, secret_key: str) -> None:
        self._secret_key = secret_key

    @staticmethod
    def new_session_id() -> str:
        return secrets.token_urlsafe(32)

    def issue(self, session_id: str) -> str:
        return hmac.new(self._secret_key.encode(), f"csrf:{session_id}".encode(), hashlib.sha256).hexdigest()

    def validate(self, session_id: str | None, presented: str | None) -> bool:
        """Constant-time check. Missing session id or token fails closed."""
        if not session_id or not presented:
            return False
        return hmac.compare_digest(self.issue(session_id).encode(), presented.encode("utf-8"))
