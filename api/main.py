"""
api/main.py -- FastAPI application entry point for the Bennu auth service.

Run with:  uvicorn asgi:app --reload

Middleware:
  CORSMiddleware    -- adds CORS headers for the configured browser origins
  SlowAPIMiddleware -- enforces per-route rate limits from api.limiter
  log_requests      -- one log line per request with status and latency

Lifespan builds the Database, the AuthService and the CsrfGuard into
app.state on startup and disposes the engine on shutdown.
"""

from __future__ import annotations

import logging
import time
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from fastapi import FastAPI, Request
from fastapi.exceptions import RequestValidationError
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from slowapi.errors import RateLimitExceeded
from slowapi.middleware import SlowAPIMiddleware
from starlette.exceptions import HTTPException

from api.limiter import limiter
from api.models import ErrorDetail, ErrorResponse, HealthResponse
from api.routes.auth import router as auth_router
from auth.csrf import CsrfGuard
from auth.db import Database
from auth.errors import AuthError, ValidationError
from auth.service import build_auth_service
from core.config import get_settings

VERSION = "0.1.0"

# ---------------------------------------------------------------------------
# Logging
# ---------------------------------------------------------------------------

logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s %(levelname)-5s %(name)s %(message)s",
    datefmt="%Y-%m-%d %H:%M:%S",
)
logger = logging.getLogger("bennu.api")


def _error_response(status_code: int, code: str, message: str, detail: str | None = None) -> JSONResponse:
    return JSONResponse(
        status_code=status_code,
        content=ErrorResponse(error=ErrorDetail(code=code, message=message, detail=detail)).model_dump(
            exclude_none=True
        ),
    )


# ---------------------------------------------------------------------------
# Lifespan
# ---------------------------------------------------------------------------


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncIterator[None]:
    """Build the store and the auth components; dispose the engine on shutdown."""
    settings = get_settings()
    logger.info("%s auth service starting up", settings.service_name)
    db = Database(settings.database_url, timeout_seconds=settings.store_timeout_seconds)
    app.state.settings = settings
    app.state.db = db
    app.state.auth_service = build_auth_service(settings, db)
    app.state.csrf_guard = CsrfGuard(settings.secret_key)
    logger.info(
        "Auth initialized (csrf_enabled=%s, secure_cookies=%s, bcrypt_rounds=%d)",
        settings.csrf_enabled,
        settings.secure_cookies,
        settings.bcrypt_rounds,
    )

    yield

    db.close()
    logger.info("%s auth service shutdown complete", settings.service_name)


# ---------------------------------------------------------------------------
# App instantiation
# ---------------------------------------------------------------------------

app = FastAPI(
    title="Bennu Auth API",
    description="Credential and session authentication: login, registration, verification and token refresh.",
    version=VERSION,
    lifespan=lifespan,
)

# ---------------------------------------------------------------------------
# Middleware stack
#
# CORS values come from settings. get_settings() is called here at import
# time; every field it reads has a safe default.
# ---------------------------------------------------------------------------

_cors = get_settings()
app.add_middleware(
    CORSMiddleware,
    allow_origins=_cors.cors_allowed_origins,
    allow_methods=_cors.cors_allowed_methods,
    allow_headers=_cors.cors_allowed_headers,
    allow_credentials=_cors.cors_allow_credentials,
    expose_headers=["X-CSRF-Token"],
    max_age=3600,
)

app.add_middleware(SlowAPIMiddleware)

# SlowAPI looks for app.state.limiter by convention.
app.state.limiter = limiter


@app.middleware("http")
async def log_requests(request: Request, call_next):
    start = time.perf_counter()
    response = await call_next(request)
    ms = (time.perf_counter() - start) * 1000
    logger.info(
        "%s %s %d %.1fms %s",
        request.method,
        request.url.path,
        response.status_code,
        ms,
        request.client.host if request.client else "unknown",
    )
    return response


# ---------------------------------------------------------------------------
# Router registration
# ---------------------------------------------------------------------------

app.include_router(auth_router, tags=["Auth"])


# ---------------------------------------------------------------------------
# Exception handlers
#
# All handlers return the same ErrorResponse envelope so API clients can parse
# errors uniformly without inspecting status codes to choose a schema.
# ---------------------------------------------------------------------------


@app.exception_handler(AuthError)
async def auth_error_handler(request: Request, exc: AuthError) -> JSONResponse:
    """Map any AuthError subclass to its status and public message.

    The message is the class's generic text; internal detail was logged where
    the error was raised.
    """
    resp = _error_response(exc.status_code, exc.code, exc.message)
    if exc.status_code == 401:
        resp.headers["WWW-Authenticate"] = "Bearer"
    resp.headers["Cache-Control"] = "no-store"
    return resp


@app.exception_handler(RateLimitExceeded)
async def rate_limit_handler(request: Request, exc: RateLimitExceeded) -> JSONResponse:
    """Return 429 with a structured error when a rate limit is exceeded."""
    retry_after = int(getattr(exc, "retry_after", 60))
    response = _error_response(429, "rate_limited", "Too many requests.", detail=str(exc.detail))
    response.headers["Retry-After"] = str(retry_after)
    return response


@app.exception_handler(RequestValidationError)
async def validation_error_handler(request: Request, exc: RequestValidationError) -> JSONResponse:
    """Return 400 when the body fails validation.

    Only field locations and messages are echoed back; submitted values
    (passwords) are never included.
    """
    fields = "; ".join(
        f"{'.'.join(str(p) for p in err.get('loc', ()) if p != 'body')}: {err.get('msg', 'invalid')}"
        for err in exc.errors()
    )
    return _error_response(ValidationError.status_code, ValidationError.code, ValidationError.message, fields)


@app.exception_handler(HTTPException)
async def http_exception_handler(request: Request, exc: HTTPException) -> JSONResponse:
    """Unknown routes (404) and wrong methods (405) get the same envelope."""
    return _error_response(exc.status_code, f"http_{exc.status_code}", str(exc.detail))


@app.exception_handler(Exception)
async def generic_exception_handler(request: Request, exc: Exception) -> JSONResponse:
    """Catch-all handler for unexpected server errors.

    The traceback goes to the log only; the client receives a generic message.
    """
    logger.exception("Unhandled exception on %s %s", request.method, request.url.path)
    return _error_response(500, "internal_error", "An unexpected error occurred.")


# ---------------------------------------------------------------------------
# Health endpoint
#
# Defined directly in main.py so it is always reachable regardless of router
# registration state. No rate limit or CSRF check applies.
# ---------------------------------------------------------------------------


@app.get("/health", tags=["Health"])
async def health() -> HealthResponse:
    """Return API liveness and current version."""
    return HealthResponse(version=VERSION)
