"""
API request and response models for the Bennu auth endpoints.

These Pydantic v2 models define the HTTP transport contract. They are
intentionally separate from the dataclasses in auth/models.py, which own the
internal domain representation. Route handlers map between the two.

Input field names are snake_case; the camelCase spellings JavaScript
clients tend to send (newPassword, currentPassword, firstName, lastName) are
accepted as aliases.
"""

from typing import Annotated, Optional

from pydantic import AfterValidator, AliasChoices, BaseModel, ConfigDict, Field, field_validator

from auth.passwords import MAX_PASSWORD_BYTES

# ---------------------------------------------------------------------------
# Constants and reusable field types
# ---------------------------------------------------------------------------

EMAIL_PATTERN = r"^[^@\s]+@[^@\s]+\.[^@\s]+$"


def _within_bcrypt_limit(value: str) -> str:
    """Reject passwords bcrypt would truncate. The limit is in bytes, not characters."""
    if len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"password must be at most {MAX_PASSWORD_BYTES} bytes")
    return value


# Used where a password is being set. Login accepts anything up to 255 chars:
# an over-long login password simply fails to match.
NewPassword = Annotated[str, Field(min_length=1), AfterValidator(_within_bcrypt_limit)]


class _EmailBody(BaseModel):
    email: str = Field(max_length=255, pattern=EMAIL_PATTERN)

    @field_validator("email", mode="before")
    @classmethod
    def strip_email(cls, value):
        return value.strip() if isinstance(value, str) else value


# ---------------------------------------------------------------------------
# Request models
# ---------------------------------------------------------------------------


class LoginRequest(_EmailBody):
    """Request body for POST /auth/login."""

    password: str = Field(min_length=1, max_length=255)


class RegisterRequest(_EmailBody):
    """Request body for POST /auth/register."""

    password: NewPassword
    first_name: Optional[str] = Field(
        default=None, max_length=100, validation_alias=AliasChoices("first_name", "firstName")
    )
    last_name: Optional[str] = Field(
        default=None, max_length=100, validation_alias=AliasChoices("last_name", "lastName")
    )


class EmailRequest(_EmailBody):
    """Request body for POST /auth/reset-password and /auth/verify/email/resend."""


class TokenRequest(BaseModel):
    """Request body for POST /auth/verify/email."""

    token: str = Field(min_length=1, max_length=512)


class ResetPasswordConfirm(BaseModel):
    """Request body for POST /auth/verify/reset-password."""

    token: str = Field(min_length=1, max_length=512)
    new_password: NewPassword = Field(validation_alias=AliasChoices("new_password", "newPassword"))


class ChangePasswordRequest(BaseModel):
    """Request body for POST /auth/password."""

    current_password: str = Field(
        min_length=1, max_length=255, validation_alias=AliasChoices("current_password", "currentPassword")
    )
    new_password: NewPassword = Field(validation_alias=AliasChoices("new_password", "newPassword"))


# ---------------------------------------------------------------------------
# Response models
# ---------------------------------------------------------------------------


class TokenResponse(BaseModel):
    """Access token returned by login, refresh and password change.

    The refresh token is never in the body -- it travels only in the
    HTTP-only refresh_token cookie.
    """

    model_config = ConfigDict(frozen=True)

    access_token: str
    token_type: str = "bearer"
    expires_in: int


class RegisterResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: str


class CsrfResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    csrf_token: str


class MessageResponse(BaseModel):
    model_config = ConfigDict(frozen=True)

    message: str


class MeResponse(BaseModel):
    """Response for GET /auth/me."""

    model_config = ConfigDict(frozen=True)

    id: str
    email: str
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    verified: bool
    created_at: str


class ErrorDetail(BaseModel):
    """Machine-readable error payload."""

    model_config = ConfigDict(frozen=True)

    code: str
    message: str
    detail: Optional[str] = None


class ErrorResponse(BaseModel):
    """Top-level error envelope returned on 4xx/5xx responses."""

    model_config = ConfigDict(frozen=True)

    error: ErrorDetail


class HealthResponse(BaseModel):
    """Response for GET /health."""

    model_config = ConfigDict(frozen=True)

    status: str = "ok"
    version: str
