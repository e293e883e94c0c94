"""
tests/test_csrf.py -- Unit tests for CsrfGuard (auth/csrf.py).
"""

from __future__ import annotations

import pytest

from auth.csrf import CsrfGuard


@pytest.fixture()
def guard() -> CsrfGuard:
    return CsrfGuard("c" * 48)


def test_issue_is_deterministic_per_session(guard: CsrfGuard) -> None:
    assert guard.issue("session-a") == guard.issue("session-a")
    assert guard.issue("session-a") != guard.issue("session-b")


def test_validate_accepts_matching_token(guard: CsrfGuard) -> None:
    sid = guard.new_session_id()
    assert guard.validate(sid, guard.issue(sid)) is True


def test_token_bound_to_session(guard: CsrfGuard) -> None:
    """A token minted for one browser session is useless with another."""
    assert guard.validate("session-b", guard.issue("session-a")) is False


def test_token_bound_to_key(guard: CsrfGuard) -> None:
    other = CsrfGuard("d" * 48)
    assert guard.validate("session-a", other.issue("session-a")) is False


@pytest.mark.parametrize(
    "sid,token",
    [(None, "x"), ("", "x"), ("session-a", None), ("session-a", ""), ("session-a", "ünïcode")],
)
def test_missing_or_malformed_fails_closed(guard: CsrfGuard, sid, token) -> None:
    assert guard.validate(sid, token) is False


def test_new_session_ids_are_random() -> None:
    assert len({CsrfGuard.new_session_id() for _ in range(50)}) == 50
