"""
tests/conftest.py -- Shared test fixtures for Shelfguard.

This module provides:
  - FrozenClock: a controllable clock injected wherever "now" matters
  - settings / hasher / tokens / user_store / sessions / auth_service:
    real components wired with cheap Argon2 parameters and isolated stores
  - _patch_lifespan(): wires test components into app.state, bypassing real startup
  - api_client: TestClient over the real FastAPI app, plus its clock and store

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because the service runs store calls on worker threads. Plain :memory: DBs
are per-connection and would present a blank schema to each worker thread.
Every fixture uses a fresh name, so no test sees another's rows.

Redis is replaced with fakeredis. Each test gets its own FakeServer; clients
built on different servers never share keys.

The environment variables below must be set before any api/auth/core import
so get_settings() (called at import time by api/main.py) sees them.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone

# CRITICAL: set before any project import so get_settings() auto-generates
# the signing secrets in dev mode and uses test-friendly limits.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("LOGIN_RATE_LIMIT", "1000/minute")
os.environ.setdefault("ARGON2_MEMORY_COST", "1024")
os.environ.setdefault("ARGON2_TIME_COST", "1")

import fakeredis
import fakeredis.aioredis
import pytest
from fastapi.testclient import TestClient

from api.main import app
from auth.passwords import CredentialHasher
from auth.service import AuthService
from auth.sessions import RedisRefreshTokenStore
from auth.store import UserStore
from auth.tokens import TokenService
from core.config import Settings

ACCESS_SECRET = "access-secret-for-tests-0123456789abcdef"
REFRESH_SECRET = "refresh-secret-for-tests-0123456789abcdef"


class FrozenClock:
    """Callable clock that only moves when told to."""

    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


def make_settings(**overrides) -> Settings:
    values = {
        "debug": True,
        "environment": "development",
        "access_token_secret": ACCESS_SECRET,
        "refresh_token_secret": REFRESH_SECRET,
        "argon2_memory_cost": 1024,
        "argon2_time_cost": 1,
        "argon2_parallelism": 1,
        "password_hash_workers": 2,
        "login_rate_limit": "1000/minute",
    }
    values.update(overrides)
    return Settings(**values)


def memory_db_url() -> str:
    return f"sqlite:///file:test_auth_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


# ---------------------------------------------------------------------------
# Component fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def clock() -> FrozenClock:
    return FrozenClock(datetime(2026, 1, 5, 12, 0, 0, tzinfo=timezone.utc))


@pytest.fixture
def settings() -> Settings:
    return make_settings()


@pytest.fixture
def hasher(settings: Settings) -> Generator[CredentialHasher, None, None]:
    hasher = CredentialHasher.from_settings(settings)
    yield hasher
    hasher.close()


@pytest.fixture
def tokens(settings: Settings, clock: FrozenClock) -> TokenService:
    return TokenService(settings, clock=clock)


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore(db_url=memory_db_url())
    yield store
    store.close()


@pytest.fixture
def redis_client():
    """fakeredis client on a private FakeServer."""
    return fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)


@pytest.fixture
def sessions(redis_client, clock: FrozenClock) -> RedisRefreshTokenStore:
    return RedisRefreshTokenStore(redis_client, clock=clock)


@pytest.fixture
def auth_service(user_store, hasher, tokens, sessions, clock) -> AuthService:
    return AuthService(user_store, hasher, tokens, sessions, clock=clock)


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(settings: Settings, user_store: UserStore, clock: FrozenClock):
    """Return an async context manager that replaces the real lifespan.

    The fakeredis client is created inside the lifespan so it binds to the
    event loop TestClient runs the app on.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        redis = fakeredis.aioredis.FakeRedis(server=fakeredis.FakeServer(), decode_responses=True)
        app.state.settings = settings
        app.state.user_store = user_store
        app.state.hasher = CredentialHasher.from_settings(settings)
        app.state.tokens = TokenService(settings, clock=clock)
        app.state.sessions = RedisRefreshTokenStore(redis, clock=clock)
        app.state.auth_service = AuthService(
            user_store,
            app.state.hasher,
            app.state.tokens,
            app.state.sessions,
            clock=clock,
        )
        yield
        await app.state.sessions.close()
        app.state.hasher.close()

    return test_lifespan


@pytest.fixture
def api_client(
    settings: Settings, user_store: UserStore, clock: FrozenClock
) -> Generator[tuple[TestClient, FrozenClock, UserStore], None, None]:
    """Yield (client, clock, user_store) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers and gates but use isolated stores.
    """
    app.router.lifespan_context = _patch_lifespan(settings, user_store, clock)
    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, clock, user_store
