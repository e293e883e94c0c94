"""
tests/conftest.py -- Shared test fixtures for the Bennu auth tests.

This module provides:
  - CaptureMailer: records outgoing mail so tests can pull tokens out of links
  - db / hasher / service: component fixtures on a fresh file-backed SQLite DB
  - _make_test_db(): named shared-memory DB for the HTTP tests
  - _patch_lifespan(): wires test components into app.state, bypassing real startup
  - auth_client: TestClient with a CSRF token already attached

Design: unit fixtures use a SQLite file under tmp_path. Threaded tests need
real concurrent connections, and a file DB with WAL plus a busy timeout
serializes writers the way a server database would. The HTTP fixture uses a
named shared-memory URI (file:name?mode=memory&cache=shared&uri=true) so every
worker thread in TestClient's pool sees the same schema.

DEBUG, BCRYPT_ROUNDS and LOGIN_RATE_LIMIT must be set before any auth/core
import: get_settings() is cached on first call.
"""

from __future__ import annotations

import os
import re
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from dataclasses import dataclass, field

# CRITICAL: Set env before any auth/core import so get_settings() auto-generates
# SECRET_KEY in dev mode and hashes cheaply.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("VERIFICATION_RATE_LIMIT", "1000/minute")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.csrf import CsrfGuard
from auth.db import Database
from auth.passwords import PasswordHasher
from auth.service import AuthService, build_auth_service
from core.config import get_settings

_TOKEN_RE = re.compile(r"token=([A-Za-z0-9_\-]+)")


# ---------------------------------------------------------------------------
# Mail capture
# ---------------------------------------------------------------------------


@dataclass
class SentMail:
    to: str
    subject: str
    body: str

    @property
    def token(self) -> str:
        match = _TOKEN_RE.search(self.body)
        assert match is not None, f"no token link in mail body: {self.body!r}"
        return match.group(1)


@dataclass
class CaptureMailer:
    """Mailer that keeps every message in memory instead of sending it."""

    sent: list[SentMail] = field(default_factory=list)

    def send(self, to: str, subject: str, body: str) -> None:
        self.sent.append(SentMail(to=to, subject=subject, body=body))

    def last_to(self, email: str) -> SentMail:
        for mail in reversed(self.sent):
            if mail.to == email.strip().lower():
                return mail
        raise AssertionError(f"no mail sent to {email}")


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture()
def db(tmp_path) -> Generator[Database, None, None]:
    database = Database(f"sqlite:///{tmp_path / 'auth.db'}", timeout_seconds=10.0)
    yield database
    database.close()


@pytest.fixture(scope="session")
def hasher() -> PasswordHasher:
    return PasswordHasher(rounds=4, max_concurrency=4)


@pytest.fixture()
def mailer() -> CaptureMailer:
    return CaptureMailer()


@pytest.fixture()
def service(db: Database, mailer: CaptureMailer) -> AuthService:
    return build_auth_service(get_settings(), db, mailer=mailer)


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


def _make_test_db(db_suffix: str) -> Database:
    """Create an isolated named shared-memory SQLite database.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    return Database(f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true")


def _patch_lifespan(database: Database, mailer: CaptureMailer):
    """Return an async context manager that replaces the real lifespan.

    Wires the test database and a capturing mailer into app.state so routes
    run against isolated stores and tests can read the mailed tokens.
    """
    settings = get_settings()

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.settings = settings
        app.state.db = database
        app.state.auth_service = build_auth_service(settings, database, mailer=mailer)
        app.state.csrf_guard = CsrfGuard(settings.secret_key)
        yield

    return test_lifespan


@pytest.fixture(scope="module")
def auth_client() -> Generator[tuple[TestClient, CaptureMailer], None, None]:
    """Yield (client, mailer) for HTTP integration tests.

    The client has already called GET /auth/csrf: its cookie jar holds the
    csrf_session cookie and X-CSRF-Token is set as a default header, so
    every POST passes the CSRF check unless a test removes it.
    """
    database = _make_test_db(uuid.uuid4().hex[:8])
    mailer = CaptureMailer()
    app.router.lifespan_context = _patch_lifespan(database, mailer)

    with TestClient(app, raise_server_exceptions=True) as client:
        resp = client.get("/auth/csrf")
        assert resp.status_code == 200, resp.text
        client.headers["X-CSRF-Token"] = resp.json()["csrf_token"]
        yield client, mailer

    database.close()
