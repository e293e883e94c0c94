"""
auth/store.py -- Credential store adapter for user records.

Pattern: Repository + Data Mapper. UserStore is the repository over the
`users` table; _row_to_user is the mapper. UserStore is the only component
that writes user records -- the service asks it, it never touches the Dao.

Email normalization: every write and every lookup goes through
normalize_email(), so the UNIQUE constraint on the column is also a
case-insensitive uniqueness guarantee.

Lockout counters are updated with SQL expressions (failed_login_count + 1)
rather than read-modify-write, so concurrent failed logins are all counted.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timezone

from auth.db import Database, users
from auth.models import User


def normalize_email(email: str) -> str:
    return email.strip().lower()


def _now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


class UserStore:
    """Repository for User credential records.

    Usage:
        store = UserStore(Database("sqlite:///:memory:"))
        user_id = store.create_user(User(email="a@b.com", hashed_password=hasher.hash("secret")))
        user = store.get_by_email("A@B.com")
    """

    def __init__(self, db: Database) -> None:
        self._dao = db.dao(users)

    # ------------------------------------------------------------------
    # Queries
    # ------------------------------------------------------------------

    def get_by_email(self, email: str) -> User | None:
        row = self._dao.find_one({"email": normalize_email(email)})
        return _row_to_user(row) if row is not None else None

    def get_by_id(self, user_id: str) -> User | None:
        row = self._dao.find_one({"id": user_id})
        return _row_to_user(row) if row is not None else None

    # ------------------------------------------------------------------
    # Writes
    # ------------------------------------------------------------------

    def create_user(self, user: User) -> str:
        """Insert a new unverified user and return its generated id.

        Raises DuplicateRecordError if the (normalized) email is taken. Two
        concurrent registrations for the same address are decided by the
        UNIQUE constraint, not by a prior lookup.
        """
        user_id = uuid.uuid4().hex
        now = _now_iso()
        self._dao.create(
            {
                "id": user_id,
                "email": normalize_email(user.email),
                "hashed_password": user.hashed_password,
                "first_name": user.first_name,
                "last_name": user.last_name,
                "verified": False,
                "is_active": user.is_active,
                "failed_login_count": 0,
                "locked_until": 0,
                "created_at": now,
                "updated_at": now,
            }
        )
        return user_id

    def mark_verified(self, user_id: str) -> bool:
        """Flip verified to True. Returns False if the user does not exist."""
        return self._dao.update({"id": user_id}, {"verified": True, "updated_at": _now_iso()}) > 0

    def set_password(self, user_id: str, hashed_password: str) -> bool:
        """Replace the password hash and clear any lockout."""
        changed = self._dao.update(
            {"id": user_id},
            {
                "hashed_password": hashed_password,
                "failed_login_count": 0,
                "locked_until": 0,
                "updated_at": _now_iso(),
            },
        )
        return changed > 0

    def record_login_failure(self, user_id: str, *, max_attempts: int, lockout_seconds: int, now: int) -> bool:
        """Count a failed password check; lock the account once max_attempts is reached.

        Returns True if this failure locked the account.
        """
        self._dao.update(
            {"id": user_id},
            {"failed_login_count": users.c.failed_login_count + 1},
        )
        locked = self._dao.update(
            {"id": user_id, "failed_login_count": {"$gte": max_attempts}},
            {"failed_login_count": 0, "locked_until": now + lockout_seconds, "updated_at": _now_iso()},
        )
        return locked > 0

    def record_login_success(self, user_id: str) -> None:
        """Reset lockout bookkeeping. No write when there is nothing to reset."""
        self._dao.update(
            {"id": user_id, "$or": [{"failed_login_count": {"$gt": 0}}, {"locked_until": {"$gt": 0}}]},
            {"failed_login_count": 0, "locked_until": 0},
        )


# ---------------------------------------------------------------------------
# Row mapper (Data Mapper pattern)
# ---------------------------------------------------------------------------


def _row_to_user(row) -> User:
    return User(
        id=row.id,
        email=row.email,
        hashed_password=row.hashed_password,
        first_name=row.first_name,
        last_name=row.last_name,
        verified=bool(row.verified),
        is_active=bool(row.is_active),
        failed_login_count=row.failed_login_count,
        locked_until=row.locked_until,
        created_at=row.created_at,
        updated_at=row.updated_at,
    )
