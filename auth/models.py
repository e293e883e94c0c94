"""
auth/models.py -- Domain dataclasses for authentication entities.

Pattern: Data class (pure data container, zero logic). Stores own persistence,
the service owns behaviour.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class TokenPurpose(str, Enum):
    email_verify = "email_verify"
    password_reset = "password_reset"


@dataclass
class User:
    """A user credential record.

    email is stored lower-cased and stripped; every lookup normalizes the same
    way, so "A@B.com" and "a@b.com " are the same account.

    hashed_password always holds bcrypt output from PasswordHasher, never the
    submitted plaintext.

    is_active=False is the terminal "deactivated" state. Records are never
    deleted by the auth subsystem.
    """

    email: str
    hashed_password: str
    id: str | None = None
    first_name: str | None = None
    last_name: str | None = None
    verified: bool = False
    is_active: bool = True
    failed_login_count: int = 0
    locked_until: int = 0  # epoch seconds, 0 = not locked
    created_at: str | None = None
    updated_at: str | None = None

    def is_locked(self, now: int) -> bool:
        return self.locked_until > now


@dataclass
class Session:
    """One login session, identified by the hash of its refresh token.

    family_id ties together every refresh token rotated out of the same login.
    Presenting a revoked member of a family revokes the whole family.
    """

    token_hash: str
    user_id: str
    family_id: str
    issued_at: int
    expires_at: int
    revoked: bool = False
    revoked_at: int | None = None


@dataclass
class VerificationToken:
    """A pending out-of-band confirmation (email verification or password reset)."""

    token_hash: str
    user_id: str
    purpose: TokenPurpose
    created_at: int
    expires_at: int
    consumed: bool = False
    consumed_at: int | None = None


@dataclass(frozen=True)
class AccessToken:
    token: str
    expires_at: int
    expires_in: int


@dataclass(frozen=True)
class IssuedSession:
    """Raw refresh token handed to the client. Only its hash is persisted."""

    token: str
    user_id: str
    family_id: str
    expires_at: int
    expires_in: int


@dataclass(frozen=True)
class TokenPair:
    access: AccessToken
    refresh: IssuedSession
