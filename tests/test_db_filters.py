"""
tests/test_db_filters.py -- Tests for the filter-dict DAO (auth/db.py).

Coverage:
  - equality, comparison operators, $in, $ne
  - $and / $or nesting
  - booleans and enums are stored as their column representation
  - update() row counts drive conditional updates
  - update_and_create() commits the update and its successor row together
  - duplicate primary key -> DuplicateRecordError
  - unknown columns / operators are rejected
"""

from __future__ import annotations

import pytest

from auth.db import Dao, Database, compile_where, verification_tokens
from auth.errors import DuplicateRecordError
from auth.models import TokenPurpose


def _seed(db: Database) -> Dao:
    dao = db.dao(verification_tokens)
    for i, purpose in enumerate([TokenPurpose.email_verify, TokenPurpose.password_reset] * 3):
        dao.create(
            {
                "token_hash": f"h{i}",
                "user_id": f"u{i % 2}",
                "purpose": purpose,
                "created_at": 100 + i,
                "expires_at": 200 + i,
                "consumed": i >= 4,
            }
        )
    return dao


class TestFind:
    def test_equality_is_anded(self, db: Database) -> None:
        dao = _seed(db)
        rows = dao.find({"user_id": "u0", "purpose": TokenPurpose.email_verify})
        assert {r.token_hash for r in rows} == {"h0", "h2", "h4"}

    def test_bool_filter(self, db: Database) -> None:
        dao = _seed(db)
        assert {r.token_hash for r in dao.find({"consumed": True})} == {"h4", "h5"}

    def test_comparison_operators(self, db: Database) -> None:
        dao = _seed(db)
        assert len(dao.find({"expires_at": {"$gt": 202}})) == 3
        assert len(dao.find({"expires_at": {"$gte": 202}})) == 4
        assert len(dao.find({"expires_at": {"$lt": 202}})) == 2
        assert len(dao.find({"expires_at": {"$lte": 202, "$gte": 201}})) == 2

    def test_in_and_ne(self, db: Database) -> None:
        dao = _seed(db)
        assert len(dao.find({"token_hash": {"$in": ["h1", "h3", "missing"]}})) == 2
        assert len(dao.find({"token_hash": {"$ne": "h1"}})) == 5

    def test_or_and_nesting(self, db: Database) -> None:
        dao = _seed(db)
        rows = dao.find(
            {
                "$or": [
                    {"token_hash": "h0"},
                    {"$and": [{"user_id": "u1"}, {"consumed": True}]},
                ]
            }
        )
        assert {r.token_hash for r in rows} == {"h0", "h5"}

    def test_order_by(self, db: Database) -> None:
        dao = _seed(db)
        rows = dao.find({"user_id": "u1"}, order_by="created_at")
        assert [r.token_hash for r in rows] == ["h1", "h3", "h5"]

    def test_find_one_none(self, db: Database) -> None:
        assert _seed(db).find_one({"token_hash": "missing"}) is None


class TestWrites:
    def test_conditional_update_rowcount(self, db: Database) -> None:
        dao = _seed(db)
        assert dao.update({"token_hash": "h0", "consumed": False}, {"consumed": True}) == 1
        assert dao.update({"token_hash": "h0", "consumed": False}, {"consumed": True}) == 0

    def test_duplicate_key(self, db: Database) -> None:
        dao = _seed(db)
        with pytest.raises(DuplicateRecordError):
            dao.create(
                {
                    "token_hash": "h0",
                    "user_id": "u9",
                    "purpose": TokenPurpose.email_verify,
                    "created_at": 1,
                    "expires_at": 2,
                }
            )

    def test_update_and_create_inserts_successor(self, db: Database) -> None:
        dao = _seed(db)
        row = dao.update_and_create(
            {"token_hash": "h0", "consumed": False},
            {"consumed": True},
            lookup={"token_hash": "h0"},
            successor=lambda parent: {**parent._asdict(), "token_hash": "h0-next", "consumed": False},
        )
        assert row is not None and row.consumed == 1
        assert dao.find_one({"token_hash": "h0-next"}).user_id == "u0"

    def test_update_and_create_skips_insert_when_nothing_matched(self, db: Database) -> None:
        dao = _seed(db)
        row = dao.update_and_create(
            {"token_hash": "h4", "consumed": False},
            {"consumed": True},
            lookup={"token_hash": "h4"},
            successor=lambda parent: {**parent._asdict(), "token_hash": "h4-next"},
        )
        assert row is None
        assert dao.find_one({"token_hash": "h4-next"}) is None

    def test_update_and_create_rolls_back_on_failed_insert(self, db: Database) -> None:
        dao = _seed(db)
        with pytest.raises(DuplicateRecordError):
            dao.update_and_create(
                {"token_hash": "h0", "consumed": False},
                {"consumed": True},
                lookup={"token_hash": "h0"},
                successor=lambda parent: {**parent._asdict(), "token_hash": "h1"},
            )
        assert dao.find_one({"token_hash": "h0"}).consumed == 0


class TestCompileWhere:
    def test_unknown_column(self) -> None:
        with pytest.raises(ValueError, match="Unknown column"):
            compile_where(verification_tokens, {"nope": 1})

    def test_unknown_operator(self) -> None:
        with pytest.raises(ValueError, match="Unknown filter operator"):
            compile_where(verification_tokens, {"expires_at": {"$regex": "x"}})

    def test_empty_or_rejected(self) -> None:
        with pytest.raises(ValueError):
            compile_where(verification_tokens, {"$or": []})
