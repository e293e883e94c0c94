"""
auth/db.py -- SQLAlchemy Core schema and the generic data-access object.

Pattern: Table Data Gateway. Dao wraps one Table and exposes the operations
the auth components need: find, find_one, create, update. Filters
are plain dicts so callers never build SQL:

    {"email": "a@b.com", "verified": True}           -- equality, ANDed
    {"$or": [{"revoked": True}, {"expires_at": {"$lte": now}}]}
    {"expires_at": {"$gt": now}}                      -- $gt $gte $lt $lte $ne $in

update() returns the number of rows changed. A conditional update (the
current state in the filter, the new state in the values) is the atomic
check-and-set used for single-use tokens and refresh rotation: the store
serializes the writes and exactly one caller sees rowcount == 1.

update_and_create() runs that check-and-set and an insert derived from the
updated row in one transaction, so the replacement row exists before any
other writer can observe the old one as changed.

Errors:
  IntegrityError -> DuplicateRecordError
  OperationalError / pool TimeoutError / DisconnectionError -> TransientStoreError
  Nothing is retried here.

Security:
  All queries use bound parameters. Column names in filters are checked
  against the Table, never interpolated.

Layer rule: no imports from api/ or core/.
"""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from enum import Enum
from typing import Any

from sqlalchemy import (
    Column,
    Index,
    Integer,
    MetaData,
    String,
    Table,
    Text,
    and_,
    create_engine,
    event,
    or_,
    true,
)
from sqlalchemy.engine import Engine, Row
from sqlalchemy.exc import DisconnectionError, IntegrityError, OperationalError
from sqlalchemy.exc import TimeoutError as PoolTimeoutError
from sqlalchemy.sql.elements import ColumnElement

from auth.errors import DuplicateRecordError, TransientStoreError

logger = logging.getLogger("bennu.auth.db")

# ---------------------------------------------------------------------------
# Schema
# ---------------------------------------------------------------------------

metadata = MetaData()

users = Table(
    "users",
    metadata,
    Column("id", String(32), primary_key=True),
    Column("email", String(255), nullable=False, unique=True),  # lower-cased
    Column("hashed_password", Text, nullable=False),
    Column("first_name", String(100)),
    Column("last_name", String(100)),
    Column("verified", Integer, nullable=False, server_default="0"),
    Column("is_active", Integer, nullable=False, server_default="1"),
    Column("failed_login_count", Integer, nullable=False, server_default="0"),
    Column("locked_until", Integer, nullable=False, server_default="0"),
    Column("created_at", String(32), nullable=False),
    Column("updated_at", String(32), nullable=False),
)

sessions = Table(
    "sessions",
    metadata,
    Column("token_hash", String(64), primary_key=True),  # HMAC-SHA256 hex
    Column("user_id", String(32), nullable=False),
    Column("family_id", String(32), nullable=False),
    Column("issued_at", Integer, nullable=False),
    Column("expires_at", Integer, nullable=False),
    Column("revoked", Integer, nullable=False, server_default="0"),
    Column("revoked_at", Integer),
    Index("ix_sessions_user_id", "user_id"),
    Index("ix_sessions_family_id", "family_id"),
)

verification_tokens = Table(
    "verification_tokens",
    metadata,
    Column("token_hash", String(64), primary_key=True),  # HMAC-SHA256 hex
    Column("user_id", String(32), nullable=False),
    Column("purpose", String(20), nullable=False),
    Column("created_at", Integer, nullable=False),
    Column("expires_at", Integer, nullable=False),
    Column("consumed", Integer, nullable=False, server_default="0"),
    Column("consumed_at", Integer),
    Index("ix_verification_tokens_user_purpose", "user_id", "purpose"),
)


# ---------------------------------------------------------------------------
# WAL mode
# ---------------------------------------------------------------------------


def _set_wal_mode(dbapi_conn, connection_record) -> None:
    """Enable WAL journal mode so readers do not block behind the single writer.

    Set per-connection because SQLite PRAGMAs are not inherited by new
    connections from the pool.
    """
    dbapi_conn.execute("PRAGMA journal_mode=WAL")


# ---------------------------------------------------------------------------
# Database
# ---------------------------------------------------------------------------


class Database:
    """Owns the engine and the schema.

    timeout_seconds bounds every wait on the store: the SQLite busy timeout
    for file databases, the pool checkout timeout for server databases.
    Exceeding it surfaces as TransientStoreError from Dao calls.

    Usage:
        db = Database("sqlite:///bennu_auth.db")
        user_dao = db.dao(users)
        db.close()
    """

    def __init__(self, db_url: str, timeout_seconds: float = 5.0) -> None:
        connect_args: dict = {}
        engine_kwargs: dict = {}
        is_sqlite = db_url.startswith("sqlite")
        if is_sqlite:
            connect_args["check_same_thread"] = False
            connect_args["timeout"] = timeout_seconds
        else:
            engine_kwargs["pool_timeout"] = timeout_seconds
            engine_kwargs["pool_pre_ping"] = True
        self.engine: Engine = create_engine(db_url, connect_args=connect_args, **engine_kwargs)
        if is_sqlite:
            event.listen(self.engine, "connect", _set_wal_mode)
        metadata.create_all(self.engine)

    def dao(self, table: Table) -> Dao:
        return Dao(self.engine, table)

    def close(self) -> None:
        self.engine.dispose()


# ---------------------------------------------------------------------------
# Filter compilation
# ---------------------------------------------------------------------------

_OPERATORS = {
    "$gt": lambda col, v: col > v,
    "$gte": lambda col, v: col >= v,
    "$lt": lambda col, v: col < v,
    "$lte": lambda col, v: col <= v,
    "$ne": lambda col, v: col != v,
    "$in": lambda col, v: col.in_(list(v)),
}


def _coerce(value: Any) -> Any:
    # Flags are stored as 0/1 integers.
    if isinstance(value, bool):
        return 1 if value else 0
    if isinstance(value, Enum):
        return value.value
    return value


def compile_where(table: Table, where: dict | None) -> ColumnElement:
    """Translate a filter dict into a SQLAlchemy boolean clause."""
    if not where:
        return true()
    clauses: list[ColumnElement] = []
    for key, value in where.items():
        if key == "$and":
            clauses.append(and_(true(), *(compile_where(table, w) for w in value)))
        elif key == "$or":
            if not value:
                raise ValueError("$or requires at least one filter")
            clauses.append(or_(*(compile_where(table, w) for w in value)))
        elif key not in table.c:
            raise ValueError(f"Unknown column {key!r} for table {table.name!r}")
        elif isinstance(value, dict):
            col = table.c[key]
            for op, operand in value.items():
                if op not in _OPERATORS:
                    raise ValueError(f"Unknown filter operator {op!r}")
                if op == "$in":
                    operand = [_coerce(v) for v in operand]
                else:
                    operand = _coerce(operand)
                clauses.append(_OPERATORS[op](col, operand))
        else:
            clauses.append(table.c[key] == _coerce(value))
    return and_(true(), *clauses)


# ---------------------------------------------------------------------------
# Dao
# ---------------------------------------------------------------------------


class Dao:
    """Generic find / find_one / create / update over one table."""

    def __init__(self, engine: Engine, table: Table) -> None:
        self.engine = engine
        self.table = table

    @contextmanager
    def _errors(self, operation: str) -> Iterator[None]:
        try:
            yield
        except IntegrityError as exc:
            raise DuplicateRecordError(f"{self.table.name}: duplicate record") from exc
        except (OperationalError, PoolTimeoutError, DisconnectionError) as exc:
            logger.error("Store %s on %s failed: %s", operation, self.table.name, exc)
            raise TransientStoreError(f"{self.table.name}: {operation} failed") from exc

    def find(self, where: dict | None = None, order_by: str | None = None) -> list[Row]:
        stmt = self.table.select().where(compile_where(self.table, where))
        if order_by is not None:
            stmt = stmt.order_by(self.table.c[order_by])
        with self._errors("find"), self.engine.connect() as conn:
            return list(conn.execute(stmt).fetchall())

    def find_one(self, where: dict) -> Row | None:
        stmt = self.table.select().where(compile_where(self.table, where)).limit(1)
        with self._errors("find_one"), self.engine.connect() as conn:
            return conn.execute(stmt).fetchone()

    def create(self, values: dict) -> None:
        """Insert one record. Raises DuplicateRecordError on a unique-key clash."""
        row = {k: _coerce(v) for k, v in values.items()}
        with self._errors("create"), self.engine.begin() as conn:
            conn.execute(self.table.insert().values(**row))

    def update(self, where: dict, values: dict) -> int:
        """Apply values to every row matching where. Returns the number of rows changed."""
        row = {k: _coerce(v) for k, v in values.items()}
        stmt = self.table.update().where(compile_where(self.table, where)).values(**row)
        with self._errors("update"), self.engine.begin() as conn:
            result = conn.execute(stmt)
        return result.rowcount

    def update_and_create(
        self,
        where: dict,
        values: dict,
        lookup: dict,
        successor: Callable[[Row], dict],
    ) -> Row | None:
        """Conditionally update one row and insert successor(row) in the same transaction.

        Returns the updated row (re-read through lookup) when the update
        matched exactly one row, else None and nothing is inserted. Writers
        that lose the update see the successor already committed.
        """
        row_values = {k: _coerce(v) for k, v in values.items()}
        stmt = self.table.update().where(compile_where(self.table, where)).values(**row_values)
        with self._errors("update_and_create"), self.engine.begin() as conn:
            if conn.execute(stmt).rowcount != 1:
                return None
            row = conn.execute(self.table.select().where(compile_where(self.table, lookup)).limit(1)).fetchone()
            new_row = {k: _coerce(v) for k, v in successor(row).items()}
            conn.execute(self.table.insert().values(**new_row))
        return row
