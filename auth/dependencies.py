"""
auth/dependencies.py -- FastAPI Depends() helpers and cookie plumbing.

  get_auth_service()  -- the AuthService built at startup (app.state).
  get_current_user()  -- requires "Authorization: Bearer <access token>".
  require_csrf()      -- rejects unsafe methods without a valid X-CSRF-Token.

Cookies:
  refresh_token  -- HTTP-only, SameSite=strict, Path=/auth, Secure unless
                    SECURE_COOKIES is off. Max-age matches the session TTL.
  csrf_session   -- HTTP-only random id the CSRF token is derived from.

Access tokens are never put in cookies; they travel in response bodies and
Authorization headers only.

Layer rule: no imports from api/ or web code. This module may import from
fastapi because it is part of the FastAPI dependency injection system.
"""

from __future__ import annotations

from fastapi import Request, Response

from auth.errors import AuthenticationError, CsrfError
from auth.models import IssuedSession, User
from auth.service import AuthService

REFRESH_COOKIE = "refresh_token"
REFRESH_COOKIE_PATH = "/auth"
CSRF_COOKIE = "csrf_session"
CSRF_HEADER = "X-CSRF-Token"

_SAFE_METHODS = frozenset({"GET", "HEAD", "OPTIONS"})


def get_auth_service(request: Request) -> AuthService:
    return request.app.state.auth_service


def _bearer_token(request: Request) -> str | None:
    auth_header = request.headers.get("Authorization", "")
    if auth_header[:7].lower() == "bearer ":
        return auth_header[7:].strip() or None
    return None


def get_current_user(request: Request) -> User:
    """Require a valid bearer access token. Raises AuthenticationError (401) otherwise.

    Use as a FastAPI dependency:
        @router.get("/protected")
        def route(user: User = Depends(get_current_user)): ...
    """
    token = _bearer_token(request)
    if token is None:
        raise AuthenticationError()
    return get_auth_service(request).authenticate(token)


def require_csrf(request: Request) -> None:
    """Check the double-submit pair (csrf_session cookie, X-CSRF-Token header).

    Safe methods pass through. Disabled entirely when CSRF_ENABLED=false.
    """
    if request.method in _SAFE_METHODS or not request.app.state.settings.csrf_enabled:
        return
    guard = request.app.state.csrf_guard
    if not guard.validate(request.cookies.get(CSRF_COOKIE), request.headers.get(CSRF_HEADER)):
        raise CsrfError()


def set_refresh_cookie(response: Response, session: IssuedSession, secure: bool) -> None:
    response.set_cookie(
        REFRESH_COOKIE,
        value=session.token,
        max_age=session.expires_in,
        path=REFRESH_COOKIE_PATH,
        httponly=True,
        secure=secure,
        samesite="strict",
    )


def clear_refresh_cookie(response: Response, secure: bool) -> None:
    response.delete_cookie(REFRESH_COOKIE, path=REFRESH_COOKIE_PATH, httponly=True, secure=secure, samesite="strict")
