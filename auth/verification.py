"""
auth/verification.py -- Single-use verification tokens (email confirmation, password reset).

Each token is bound to a user, a purpose and an expiry. Only the HMAC of the
raw value is stored, same as refresh tokens.

redeem() is one conditional UPDATE:

    UPDATE verification_tokens SET consumed = 1
    WHERE token_hash = :h AND purpose = :p AND consumed = 0 AND expires_at > :now

The store serializes concurrent writers, so for N simultaneous redemptions of
the same value exactly one sees rowcount == 1. Unknown, expired, consumed and
wrong-purpose tokens all come back as None; callers cannot tell which.
"""

from __future__ import annotations

import hashlib
import hmac
import secrets
import time

from auth.db import Database, verification_tokens
from auth.models import TokenPurpose, VerificationToken


class VerificationRegistry:
    def __init__(self, db: Database, secret_key: str) -> None:
        self._tokens = db.dao(verification_tokens)
        self._secret_key = secret_key

    def _hash(self, raw_token: str) -> str:
        return hmac.new(self._secret_key.encode(), raw_token.encode(), hashlib.sha256).hexdigest()

    def issue(self, user_id: str, purpose: TokenPurpose, ttl: int) -> str:
        """Store a fresh unconsumed token and return its raw value (shown once)."""
        raw = secrets.token_urlsafe(32)
        now = int(time.time())
        self._tokens.create(
            {
                "token_hash": self._hash(raw),
                "user_id": user_id,
                "purpose": purpose,
                "created_at": now,
                "expires_at": now + ttl,
                "consumed": False,
            }
        )
        return raw

    def redeem(self, token: str | None, purpose: TokenPurpose) -> str | None:
        """Consume the token and return its user id, or None if it cannot be redeemed."""
        if not token:
            return None
        token_hash = self._hash(token)
        now = int(time.time())
        won = self._tokens.update(
            {"token_hash": token_hash, "purpose": purpose, "consumed": False, "expires_at": {"$gt": now}},
            {"consumed": True, "consumed_at": now},
        )
        if not won:
            return None
        row = self._tokens.find_one({"token_hash": token_hash})
        return _row_to_token(row).user_id if row is not None else None

    def is_pending(self, token: str | None, purpose: TokenPurpose) -> bool:
        """True if the token could be redeemed right now. Does not consume it."""
        if not token:
            return False
        row = self._tokens.find_one(
            {
                "token_hash": self._hash(token),
                "purpose": purpose,
                "consumed": False,
                "expires_at": {"$gt": int(time.time())},
            }
        )
        return row is not None

    def pending(self, user_id: str, purpose: TokenPurpose) -> list[VerificationToken]:
        """Unconsumed, unexpired tokens of a purpose, oldest first."""
        rows = self._tokens.find(
            {"user_id": user_id, "purpose": purpose, "consumed": False, "expires_at": {"$gt": int(time.time())}},
            order_by="created_at",
        )
        return [_row_to_token(row) for row in rows]

    def revoke_pending(self, user_id: str, purpose: TokenPurpose) -> int:
        """Consume every outstanding token of this purpose so only a newer one works."""
        return self._tokens.update(
            {"user_id": user_id, "purpose": purpose, "consumed": False},
            {"consumed": True, "consumed_at": int(time.time())},
        )


def _row_to_token(row) -> VerificationToken:
    return VerificationToken(
        token_hash=row.token_hash,
        user_id=row.user_id,
        purpose=TokenPurpose(row.purpose),
        created_at=row.created_at,
        expires_at=row.expires_at,
        consumed=bool(row.consumed),
        consumed_at=row.consumed_at,
    )
