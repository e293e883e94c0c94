"""
api/routes/auth.py -- Authentication REST endpoints.

Routes:
  GET  /auth/csrf                  -- issue CSRF token + csrf_session cookie
  POST /auth/login                 -- password login; access token in body, refresh cookie
  POST /auth/register              -- create unverified account; 201 {id}
  POST /auth/reset-password        -- request reset link; always 200
  POST /auth/verify/email          -- redeem email verification token
  POST /auth/verify/email/resend   -- request a new verification link; always 200
  POST /auth/verify/reset-password -- redeem reset token and set new password
  POST /auth/token/refresh         -- rotate refresh cookie, new access token
  POST /auth/logout                -- revoke refresh session; always 200
  POST /auth/password              -- change password (bearer auth)
  GET  /auth/me                    -- current user (bearer auth)

Security:
  Every POST passes require_csrf (router-level dependency).
  POST /login is rate-limited per IP (LOGIN_RATE_LIMIT) on top of the
  per-account lockout inside AuthService.
  Cache-Control: no-store on every response that carries a token.
  Handlers are sync def: bcrypt and the store are blocking, so FastAPI runs
  them in its worker thread pool.

Errors are raised as AuthError subclasses by AuthService; api/main.py turns
them into the standard error envelope. Handlers never pick status codes for
failures themselves.
"""

from __future__ import annotations

from fastapi import APIRouter, Depends, Request
from fastapi.responses import JSONResponse

from api.limiter import limiter, login_rate_limit, verification_rate_limit
from api.models import (
    ChangePasswordRequest,
    CsrfResponse,
    EmailRequest,
    LoginRequest,
    MeResponse,
    MessageResponse,
    RegisterRequest,
    RegisterResponse,
    ResetPasswordConfirm,
    TokenRequest,
    TokenResponse,
)
from auth.dependencies import (
    CSRF_COOKIE,
    CSRF_HEADER,
    REFRESH_COOKIE,
    clear_refresh_cookie,
    get_auth_service,
    get_current_user,
    require_csrf,
    set_refresh_cookie,
)
from auth.models import TokenPair, User
from auth.service import AuthService

router = APIRouter(prefix="/auth", dependencies=[Depends(require_csrf)])


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _secure(request: Request) -> bool:
    return bool(request.app.state.settings.secure_cookies)


def _no_store(resp: JSONResponse) -> JSONResponse:
    resp.headers["Cache-Control"] = "no-store"
    return resp


def _token_response(request: Request, pair: TokenPair) -> JSONResponse:
    resp = JSONResponse(
        status_code=200,
        content=TokenResponse(
            access_token=pair.access.token,
            token_type="bearer",  # noqa: S106 # nosec B106 -- OAuth token type, not a password
            expires_in=pair.access.expires_in,
        ).model_dump(),
    )
    set_refresh_cookie(resp, pair.refresh, secure=_secure(request))
    return _no_store(resp)


def _message(text: str) -> JSONResponse:
    return JSONResponse(status_code=200, content=MessageResponse(message=text).model_dump())


# ---------------------------------------------------------------------------
# CSRF
# ---------------------------------------------------------------------------


@router.get("/csrf", response_model=CsrfResponse)
def csrf(request: Request) -> JSONResponse:
    """Issue an anti-forgery token bound to the caller's csrf_session cookie.

    An existing csrf_session cookie is reused so tokens already handed to
    other tabs stay valid.
    """
    guard = request.app.state.csrf_guard
    session_id = request.cookies.get(CSRF_COOKIE) or guard.new_session_id()
    token = guard.issue(session_id)
    resp = JSONResponse(content=CsrfResponse(csrf_token=token).model_dump())
    resp.set_cookie(CSRF_COOKIE, session_id, httponly=True, samesite="strict", secure=_secure(request))
    resp.headers[CSRF_HEADER] = token
    return _no_store(resp)


# ---------------------------------------------------------------------------
# Login / register
# ---------------------------------------------------------------------------


@limiter.limit(login_rate_limit)  # must be ABOVE @router to preserve FastAPI introspection
@router.post("/login", response_model=TokenResponse)
def login(
    request: Request,
    body: LoginRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Authenticate with email and password.

    Unknown email, unverified account, locked account and wrong password all
    produce the same invalid_credentials error.
    """
    pair = service.login(body.email, body.password)
    return _token_response(request, pair)


@router.post("/register", response_model=RegisterResponse, status_code=201)
def register(
    body: RegisterRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Create an unverified account and send the verification link."""
    user_id = service.register(body.email, body.password, first_name=body.first_name, last_name=body.last_name)
    return JSONResponse(status_code=201, content=RegisterResponse(id=user_id).model_dump())


# ---------------------------------------------------------------------------
# Out-of-band verification
# ---------------------------------------------------------------------------


@router.post("/reset-password", response_model=MessageResponse)
def reset_password(
    body: EmailRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Request a password reset link. Same response whether or not the email exists."""
    service.request_password_reset(body.email)
    return _message("If the account exists, a password reset link has been sent.")


@router.post("/verify/email", response_model=MessageResponse)
def verify_email(
    body: TokenRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    service.verify_email(body.token)
    return _message("Email verified.")


@router.post("/verify/email/resend", response_model=MessageResponse)
def resend_verification(
    body: EmailRequest,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    service.resend_verification(body.email)
    return _message("If the account is awaiting verification, a new link has been sent.")


@limiter.limit(verification_rate_limit)
@router.post("/verify/reset-password", response_model=MessageResponse)
def verify_reset_password(
    request: Request,
    body: ResetPasswordConfirm,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Set a new password from a reset token. Every existing session is revoked."""
    service.reset_password(body.token, body.new_password)
    resp = _message("Password updated. Please log in again.")
    clear_refresh_cookie(resp, secure=_secure(request))
    return _no_store(resp)


# ---------------------------------------------------------------------------
# Sessions
# ---------------------------------------------------------------------------


@router.post("/token/refresh", response_model=TokenResponse)
def token_refresh(
    request: Request,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Exchange the refresh cookie for a new access token and a rotated cookie."""
    pair = service.refresh(request.cookies.get(REFRESH_COOKIE))
    return _token_response(request, pair)


@router.post("/logout", response_model=MessageResponse)
def logout(
    request: Request,
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Revoke the current refresh session and clear its cookie. Always 200."""
    service.logout(request.cookies.get(REFRESH_COOKIE))
    resp = _message("Logged out.")
    clear_refresh_cookie(resp, secure=_secure(request))
    return resp


# ---------------------------------------------------------------------------
# Authenticated endpoints
# ---------------------------------------------------------------------------


@router.post("/password", response_model=TokenResponse)
def change_password(
    request: Request,
    body: ChangePasswordRequest,
    current_user: User = Depends(get_current_user),
    service: AuthService = Depends(get_auth_service),
) -> JSONResponse:
    """Change password. Other sessions are revoked; this client gets a fresh pair."""
    pair = service.change_password(current_user.id, body.current_password, body.new_password)
    return _token_response(request, pair)


@router.get("/me", response_model=MeResponse)
def me(current_user: User = Depends(get_current_user)) -> MeResponse:
    """Return identity information for the currently authenticated user."""
    return MeResponse(
        id=current_user.id,
        email=current_user.email,
        first_name=current_user.first_name,
        last_name=current_user.last_name,
        verified=current_user.verified,
        created_at=current_user.created_at or "",
    )
