"""
auth/tokens.py -- Access tokens (JWT) and refresh-token sessions.

Security design decisions:
  Access tokens: python-jose with HS256, signed with SECRET_KEY. They carry
       the user id (sub), a type claim and a short expiry, and are checked by
       signature and expiry alone -- no store lookup. verify_access_token()
       returns None on any failure; the route layer turns that into a 401.

  Refresh tokens: secrets.token_urlsafe(32) gives 256 bits of entropy. The raw
       value goes to the client once (HTTP-only cookie). The store keeps
       HMAC-SHA256(SECRET_KEY, raw) so a leaked database cannot be replayed and
       lookup stays O(1) via the primary key.

  Rotation: every successful refresh revokes the presented token and issues a
       new one in the same family. The revoke is a conditional UPDATE guarded by
       revoked=0 and expires_at>now, so two concurrent refreshes with one value
       cannot both win.

  Reuse detection: presenting a token that is already revoked (not merely
       expired) means either a replay or a stolen token. Every session in that
       token's family is revoked. The legitimate client then has to log in
       again, which is the point.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import hashlib
import hmac
import logging
import secrets
import time
import uuid

from jose import JWTError, jwt

from auth.db import Database, sessions
from auth.errors import InternalError
from auth.models import AccessToken, IssuedSession, Session, TokenPair

logger = logging.getLogger("bennu.auth")

_ALGORITHM = "HS256"
_ACCESS_TYPE = "access"


class TokenIssuer:
    """Mints and checks access tokens; owns Session records.

    Usage:
        issuer = TokenIssuer(db, secret_key=settings.secret_key)
        pair = issuer.rotate_session(cookie_value)   # TokenPair or None
    """

    def __init__(
        self,
        db: Database,
        secret_key: str,
        access_ttl: int = 900,
        refresh_ttl: int = 7 * 24 * 3600,
    ) -> None:
        self._sessions = db.dao(sessions)
        self._secret_key = secret_key
        self.access_ttl = access_ttl
        self.refresh_ttl = refresh_ttl

    def hash_token(self, raw_token: str) -> str:
        """HMAC-SHA256(SECRET_KEY, raw_token) as hex. Deterministic, so usable as a lookup key."""
        return hmac.new(self._secret_key.encode(), raw_token.encode(), hashlib.sha256).hexdigest()

    # ------------------------------------------------------------------
    # Access tokens
    # ------------------------------------------------------------------

    def issue_access_token(self, user_id: str) -> AccessToken:
        now = int(time.time())
        expires_at = now + self.access_ttl
        payload = {
            "sub": user_id,
            "type": _ACCESS_TYPE,
            "iat": now,
            "exp": expires_at,
            "jti": uuid.uuid4().hex,
        }
        try:
            token = jwt.encode(payload, self._secret_key, algorithm=_ALGORITHM)
        except JWTError as exc:
            logger.error("Access token signing failed: %s", exc)
            raise InternalError() from exc
        return AccessToken(token=token, expires_at=expires_at, expires_in=self.access_ttl)

    def verify_access_token(self, token: str) -> str | None:
        """Return the user id for a valid access token, None for anything else."""
        if not token:
            return None
        try:
            payload = jwt.decode(token, self._secret_key, algorithms=[_ALGORITHM])
        except JWTError:
            return None
        if payload.get("type") != _ACCESS_TYPE:
            return None
        user_id = payload.get("sub")
        if not isinstance(user_id, str) or not user_id:
            return None
        return user_id

    # ------------------------------------------------------------------
    # Refresh sessions
    # ------------------------------------------------------------------

    def issue_session(self, user_id: str, family_id: str | None = None) -> IssuedSession:
        """Create a Session record and return the raw refresh token for the cookie.

        family_id is None for a fresh login (a new family starts); rotation
        passes the parent's family_id.
        """
        raw = secrets.token_urlsafe(32)
        now = int(time.time())
        family_id = family_id or uuid.uuid4().hex
        self._sessions.create(self._session_values(raw, user_id, family_id, now))
        return self._issued(raw, user_id, family_id, now)

    def _session_values(self, raw: str, user_id: str, family_id: str, now: int) -> dict:
        return {
            "token_hash": self.hash_token(raw),
            "user_id": user_id,
            "family_id": family_id,
            "issued_at": now,
            "expires_at": now + self.refresh_ttl,
            "revoked": False,
        }

    def _issued(self, raw: str, user_id: str, family_id: str, now: int) -> IssuedSession:
        return IssuedSession(
            token=raw,
            user_id=user_id,
            family_id=family_id,
            expires_at=now + self.refresh_ttl,
            expires_in=self.refresh_ttl,
        )

    def rotate_session(self, refresh_token: str | None) -> TokenPair | None:
        """Redeem a refresh token: revoke it and return a new access + refresh pair.

        Returns None if the token is unknown, expired or revoked. A revoked
        token additionally triggers family revocation.
        """
        if not refresh_token:
            return None
        token_hash = self.hash_token(refresh_token)
        now = int(time.time())
        raw = secrets.token_urlsafe(32)
        # Revoke and successor insert commit together: a concurrent replay that
        # loses the revoke always finds the successor and revokes it too.
        parent_row = self._sessions.update_and_create(
            {"token_hash": token_hash, "revoked": False, "expires_at": {"$gt": now}},
            {"revoked": True, "revoked_at": now},
            lookup={"token_hash": token_hash},
            successor=lambda parent: self._session_values(raw, parent.user_id, parent.family_id, now),
        )
        if parent_row is None:
            row = self._sessions.find_one({"token_hash": token_hash})
            if row is not None and row.revoked:
                record = _row_to_session(row)
                count = self.revoke_family(record.family_id)
                logger.warning(
                    "Refresh token reuse detected for user %s; revoked %d session(s) in family %s",
                    record.user_id,
                    count,
                    record.family_id,
                )
            return None

        parent = _row_to_session(parent_row)
        refresh = self._issued(raw, parent.user_id, parent.family_id, now)
        access = self.issue_access_token(parent.user_id)
        return TokenPair(access=access, refresh=refresh)

    def revoke_session(self, refresh_token: str | None) -> None:
        """Revoke one session. Unknown or already-revoked tokens are a no-op."""
        if not refresh_token:
            return
        self._sessions.update(
            {"token_hash": self.hash_token(refresh_token), "revoked": False},
            {"revoked": True, "revoked_at": int(time.time())},
        )

    def revoke_family(self, family_id: str) -> int:
        return self._sessions.update(
            {"family_id": family_id, "revoked": False},
            {"revoked": True, "revoked_at": int(time.time())},
        )

    def revoke_all_sessions(self, user_id: str) -> int:
        """Revoke every live session of a user. Returns how many were revoked."""
        return self._sessions.update(
            {"user_id": user_id, "revoked": False},
            {"revoked": True, "revoked_at": int(time.time())},
        )


def _row_to_session(row) -> Session:
    return Session(
        token_hash=row.token_hash,
        user_id=row.user_id,
        family_id=row.family_id,
        issued_at=row.issued_at,
        expires_at=row.expires_at,
        revoked=bool(row.revoked),
        revoked_at=row.revoked_at,
    )
