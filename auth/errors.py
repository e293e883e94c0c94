"""
auth/errors.py -- Error taxonomy for the auth subsystem.

Two families live here:

  Store-level errors (StoreError and subclasses) are raised by auth/db.py when
  the backing store misbehaves. Components let them propagate; they never
  carry user-facing text.

  AuthError and subclasses are raised by AuthService only. Each one carries
  the HTTP status, a stable machine-readable code and a deliberately generic
  public message. api/main.py has a single exception handler that turns any
  AuthError into the standard error envelope, so no route maps statuses by hand.

Layer rule: stdlib only.
"""

from __future__ import annotations


# ---------------------------------------------------------------------------
# Store-level errors
# ---------------------------------------------------------------------------


class StoreError(Exception):
    """Base class for backing-store failures."""


class DuplicateRecordError(StoreError):
    """An insert violated a uniqueness constraint."""


class TransientStoreError(StoreError):
    """The store timed out or was unavailable. Safe for the caller to retry."""


# ---------------------------------------------------------------------------
# Orchestrator errors (mapped to HTTP by api/main.py)
# ---------------------------------------------------------------------------


class AuthError(Exception):
    status_code: int = 500
    code: str = "internal_error"
    message: str = "An unexpected error occurred."

    def __init__(self, message: str | None = None, *, status_code: int | None = None) -> None:
        if message is not None:
            self.message = message
        if status_code is not None:
            self.status_code = status_code
        super().__init__(self.message)


class ValidationError(AuthError):
    status_code = 400
    code = "validation_error"
    message = "Request validation failed."


class AuthenticationError(AuthError):
    status_code = 401
    code = "unauthorized"
    message = "Authentication required."


class InvalidCredentials(AuthenticationError):
    """Uniform login failure. Never says which check failed."""

    status_code = 404
    code = "invalid_credentials"
    message = "Invalid email or password."


class InvalidToken(AuthenticationError):
    """Unknown, expired, consumed or wrong-purpose verification token."""

    status_code = 400
    code = "invalid_token"
    message = "Invalid or expired token."


class CsrfError(AuthError):
    status_code = 403
    code = "csrf_failed"
    message = "CSRF token missing or invalid."


class ConflictError(AuthError):
    status_code = 409
    code = "conflict"
    message = "A user with that email already exists."


class ServiceUnavailableError(AuthError):
    status_code = 503
    code = "service_unavailable"
    message = "Service temporarily unavailable. Please retry."


class InternalError(AuthError):
    """Hashing or signing failure."""
