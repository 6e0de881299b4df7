"""
tests/conftest.py -- Shared test fixtures for boardkeep.

This module provides:
  - FakeClock: a controllable nanosecond clock injected into AuthStore
  - store / service: an AuthStore + AuthService on a fresh SQLite file per test
  - make_user(): inserts a user directly, reusing one precomputed bcrypt hash
  - api_client: TestClient wired to a test service via a patched lifespan

Design: each test gets its own SQLite *file* under tmp_path rather than an
in-memory database. The store serializes writers with BEGIN IMMEDIATE, and the
concurrency tests and TestClient run work on several threads; an in-memory
SQLite database is private to one connection, so threads would each see an
empty schema.

Environment variables must be set before any api/ import so get_settings()
picks them up on first call.
"""

from __future__ import annotations

import os
import time
from collections.abc import Generator
from contextlib import asynccontextmanager

# Signin is rate-limited per IP and TestClient always presents the same IP.
os.environ.setdefault("SIGNIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("SWEEP_INTERVAL_SECONDS", "0")

import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.models import NS_PER_SECOND, Permission, User
from auth.service import AuthService
from auth.store import AuthStore
from auth.tokens import hash_password

PASSWORD = "correct-horse-battery"
# bcrypt is deliberately slow; hash once for every test user.
PASSHASH = hash_password(PASSWORD)

HOUR = 3600


class FakeClock:
    """Nanosecond clock that only moves when told to."""

    def __init__(self, start: int | None = None) -> None:
        self.now = start if start is not None else time.time_ns()

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * NS_PER_SECOND)


def make_user(store: AuthStore, username: str, permission: Permission = Permission.NORMAL) -> User:
    user = User(username=username, passhash=PASSHASH, permission=permission)
    with store.transaction() as conn:
        store.insert_user(conn, user)
    return user


# ---------------------------------------------------------------------------
# Store / service fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def store(tmp_path, clock: FakeClock) -> Generator[AuthStore, None, None]:
    s = AuthStore(f"sqlite:///{tmp_path / 'auth.db'}", clock=clock)
    yield s
    s.close()


@pytest.fixture
def service(store: AuthStore) -> AuthService:
    """Service with a 1h initial lifespan and a 1h renew window."""
    return AuthService(store, token_lifespan=HOUR, renew_ttl=HOUR, min_password_length=8)


# ---------------------------------------------------------------------------
# API fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(service: AuthService):
    """Return a lifespan that installs the test service instead of building one from settings."""

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.auth_service = service
        app.state.sweep_task = None
        yield

    return test_lifespan


@pytest.fixture
def api_client(tmp_path) -> Generator[tuple[TestClient, AuthService], None, None]:
    """Yield (client, service) for API integration tests.

    Users created up front, all with password PASSWORD:
      - alice  (NORMAL)
      - bob    (NORMAL)
      - owner  (OWNER)
    """
    store = AuthStore(f"sqlite:///{tmp_path / 'api.db'}")
    service = AuthService(store, token_lifespan=HOUR, renew_ttl=HOUR)
    make_user(store, "alice")
    make_user(store, "bob")
    make_user(store, "owner", Permission.OWNER)

    app.router.lifespan_context = _patch_lifespan(service)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, service

    store.close()
