"""
tests/conftest.py -- Shared test fixtures for ResumeLens auth tests.

This module provides:
  - FakeGoogleOAuthClient: real authorization-URL building, scripted code exchange
  - engine: isolated in-memory SQLite engine with the auth schema
  - auth_client: TestClient wired to in-memory stores and the fake provider
  - no_db_client: TestClient whose AuthService has no database at all

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for the TestClient fixtures because route handlers run in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. Each fixture gets a unique name so tests never share rows.

DEBUG must be set before any project import so get_settings() auto-generates
SECRET_KEY instead of raising ValueError. ALLOWED_HOSTS must include the
TestClient's "testserver" host, and the rate limit is raised so the suite
never trips it.
"""

from __future__ import annotations

import asyncio
import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager
from typing import NamedTuple

# CRITICAL: Set env before any project import -- settings are read at import.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ALLOWED_HOSTS", '["testserver", "localhost"]')
os.environ.setdefault("AUTH_RATE_LIMIT", "1000/minute")
os.environ.pop("DATABASE_URL", None)

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from asgi import app
from auth.models import OAuthIdentity
from auth.oauth import GoogleOAuthClient
from auth.service import AuthService
from auth.store import SessionStore, UserStore, create_db_engine
from kv.store import KVStore
from resumes.store import ResumeStore

# ---------------------------------------------------------------------------
# Fake provider
# ---------------------------------------------------------------------------


class FakeGoogleOAuthClient(GoogleOAuthClient):
    """GoogleOAuthClient with a scripted code exchange and no network.

    build_authorization_url() is the real implementation. Set `identity` or
    `error` to control what exchange_code_for_identity() does; `exchanged`
    records every code it was called with.
    """

    def __init__(self) -> None:
        super().__init__(
            client_id="test-client-id",
            client_secret="test-client-secret",
            redirect_uri="http://testserver/auth?action=callback",
        )
        self.identity = OAuthIdentity(provider_id="google-123", name="Ada Lovelace", email="ada@example.com")
        self.error: Exception | None = None
        self.exchanged: list[str] = []

    async def exchange_code_for_identity(self, code: str) -> OAuthIdentity:
        self.exchanged.append(code)
        if self.error is not None:
            raise self.error
        return self.identity


class AuthClient(NamedTuple):
    client: TestClient
    service: AuthService
    oauth: FakeGoogleOAuthClient


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _shared_memory_url(prefix: str) -> str:
    return f"sqlite:///file:{prefix}_{uuid.uuid4().hex}?mode=memory&cache=shared&uri=true"


def _patch_lifespan(engine: Engine | None, service: AuthService):
    """Return an async context manager that replaces the real lifespan.

    The purge_task is a long-sleeping coroutine so shutdown has a real
    asyncio.Task to cancel (a MagicMock would fail on .cancel()).
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.engine = engine
        app.state.kv_store = KVStore(engine) if engine is not None else None
        app.state.resume_store = ResumeStore(engine) if engine is not None else None
        app.state.auth_service = service
        app.state.purge_task = asyncio.create_task(asyncio.sleep(99999))
        yield
        app.state.purge_task.cancel()

    return test_lifespan


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    """Isolated in-memory engine with users and sessions tables."""
    eng = create_db_engine(_shared_memory_url("test_store"))
    yield eng
    eng.dispose()


@pytest.fixture
def auth_client() -> Generator[AuthClient, None, None]:
    """Yield (client, service, oauth) for /auth integration tests.

    follow_redirects=False is essential: the tests assert on redirect
    Location headers, which disappear once the client follows them.
    """
    eng = create_db_engine(_shared_memory_url("test_api"))
    oauth = FakeGoogleOAuthClient()
    service = AuthService(UserStore(eng), SessionStore(eng), oauth)
    app.router.lifespan_context = _patch_lifespan(eng, service)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield AuthClient(client, service, oauth)

    eng.dispose()


@pytest.fixture
def no_db_client() -> Generator[AuthClient, None, None]:
    """Yield (client, service, oauth) for an app started without DATABASE_URL."""
    oauth = FakeGoogleOAuthClient()
    service = AuthService(None, None, oauth)
    app.router.lifespan_context = _patch_lifespan(None, service)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield AuthClient(client, service, oauth)
