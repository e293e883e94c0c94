"""
auth/passwords.py -- Password hashing policy (bcrypt, direct usage).

bcrypt is the right choice for low-entropy secrets because its cost factor
makes brute-force expensive. The cost factor comes from BCRYPT_ROUNDS.

Using bcrypt directly rather than passlib[bcrypt]: passlib's wrap-bug
detection feeds bcrypt a password longer than 72 bytes, which bcrypt 4.x
rejects with an explicit error.

hash() is CPU-bound. A semaphore caps how many hashes run at once so a burst
of logins cannot occupy every worker thread in the pool.
"""

from __future__ import annotations

import logging
import threading

import bcrypt

from auth.errors import InternalError

logger = logging.getLogger("bennu.auth")

# bcrypt only looks at the first 72 bytes; longer input is rejected upstream.
MAX_PASSWORD_BYTES = 72


class PasswordHasher:
    def __init__(self, rounds: int = 14, max_concurrency: int = 4) -> None:
        self.rounds = rounds
        self._slots = threading.BoundedSemaphore(max_concurrency)
        # Timing equalization: unknown-email logins still pay for one bcrypt
        # check, so response time does not reveal whether the email exists.
        self._dummy_hash = self.hash("bennu_timing_dummy")

    def hash(self, plain: str) -> str:
        """Return a salted bcrypt hash. Raises InternalError if bcrypt fails."""
        try:
            with self._slots:
                return bcrypt.hashpw(plain.encode("utf-8"), bcrypt.gensalt(rounds=self.rounds)).decode("utf-8")
        except (ValueError, TypeError) as exc:
            logger.error("Password hashing failed: %s", exc)
            raise InternalError() from exc

    def verify(self, plain: str, hashed: str) -> bool:
        """Return True if plain matches hashed. Malformed hashes give False."""
        try:
            with self._slots:
                return bcrypt.checkpw(plain.encode("utf-8"), hashed.encode("utf-8"))
        except (ValueError, TypeError):
            return False

    def verify_dummy(self, plain: str) -> bool:
        """Burn one bcrypt check against the dummy hash. Always False."""
        self.verify(plain, self._dummy_hash)
        return False
