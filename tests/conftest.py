"""
tests/conftest.py -- Shared test fixtures for Airlock unit and integration tests.

This module provides:
  - FakeClock: a settable epoch-ms clock injected into time-aware components
  - engine: a migrated, file-backed SQLite engine per test (unit tests)
  - _make_test_engine(): a named shared-memory engine for integration tests
  - _patch_lifespan(): wires test components into app.state, bypassing real startup
  - api_client / web_client: module-scoped TestClients over the full ASGI app

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
for the TestClient fixtures because route handlers run in a thread pool.
Plain :memory: DBs are per-connection and would present a blank schema to
each worker thread. The named URI format
(file:name?mode=memory&cache=shared&uri=true) shares one in-memory instance
across all connections in the same process.

Environment must be set before any core/api import so the cached Settings
sees it: DEBUG auto-generates JWT_SECRET, MAIL_BACKEND=memory keeps boto3
out of the tests, and the IP rate limit is raised so per-user debounce is
what the tests observe.
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

# CRITICAL: Set env before any core/api import so get_settings() picks it up.
os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("MAIL_BACKEND", "memory")
os.environ.setdefault("EMAIL_REQUEST_RATE_LIMIT", "1000/minute")
os.environ.setdefault("MAINTENANCE_API_KEY", "test-maintenance-key")
os.environ.setdefault("ALLOWED_REDIRECT_HOSTS", '["app.example.com"]')
os.environ.setdefault("SERVICE_URL", "auth.example.com")

import pytest
from fastapi.testclient import TestClient

from api.main import wire_app_state
from asgi import app
from core.config import get_settings
from mail.sender import MemoryMailer
from storage.database import create_db_engine
from storage.migrator import SchemaMigrator

MAINTENANCE_HEADERS = {"X-API-Key": "test-maintenance-key"}


# ---------------------------------------------------------------------------
# Clock
# ---------------------------------------------------------------------------


class FakeClock:
    """Callable returning a settable epoch-ms time.

    Starts from the real current time by default so bearer credentials
    minted during a test are not already past their exp claim.
    """

    def __init__(self, start_ms: int | None = None) -> None:
        from core.models import now_ms

        self.now = now_ms() if start_ms is None else start_ms

    def __call__(self) -> int:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += int(seconds * 1000)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


# ---------------------------------------------------------------------------
# Engines
# ---------------------------------------------------------------------------


@pytest.fixture
def engine(tmp_path):
    """A migrated file-backed SQLite engine, unique to each test."""
    eng = create_db_engine(f"sqlite:///{tmp_path / 'airlock.db'}")
    SchemaMigrator(eng).ensure()
    yield eng
    eng.dispose()


def _make_test_engine(db_suffix: str):
    """Create an isolated named shared-memory engine with the current schema.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state (e.g. 'api', 'web').
    """
    name = f"test_airlock_{db_suffix}_{uuid.uuid4().hex[:8]}"
    eng = create_db_engine(f"sqlite:///file:{name}?mode=memory&cache=shared&uri=true")
    SchemaMigrator(eng).ensure()
    return eng


def _patch_lifespan(engine, mailer: MemoryMailer):
    """Return an async context manager that replaces the real lifespan.

    Builds the same components as the production lifespan, but over the test
    engine and an in-memory mailer so no mail leaves the process.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        wire_app_state(app, get_settings(), engine, mailer)
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped fixtures -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client() -> Generator[tuple[TestClient, MemoryMailer], None, None]:
    """Yield (client, mailer) for API integration tests.

    The TestClient uses the real FastAPI app with a patched lifespan so
    tests hit real route handlers but use an isolated in-memory store.
    Users are created by each test through client.app.state.user_store.
    """
    engine = _make_test_engine("api")
    mailer = MemoryMailer()
    app.router.lifespan_context = _patch_lifespan(engine, mailer)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client, mailer

    engine.dispose()


@pytest.fixture(scope="module")
def web_client() -> Generator[tuple[TestClient, MemoryMailer], None, None]:
    """Yield (client, mailer) for web route integration tests.

    follow_redirects=False is essential for web route tests: we assert on
    redirect *locations*, which are invisible once the client follows the
    redirect and returns the final 200 response.
    """
    engine = _make_test_engine("web")
    mailer = MemoryMailer()
    app.router.lifespan_context = _patch_lifespan(engine, mailer)

    with TestClient(app, follow_redirects=False, raise_server_exceptions=True) as client:
        yield client, mailer

    engine.dispose()


# ---------------------------------------------------------------------------
# Helpers shared by integration tests
# ---------------------------------------------------------------------------


def unique_email(prefix: str = "user") -> str:
    return f"{prefix}-{uuid.uuid4().hex[:10]}@example.com"


def link_path(link: str) -> str:
    """Strip scheme and host from an emailed link so TestClient can GET it."""
    from urllib.parse import urlsplit

    parts = urlsplit(link)
    return f"{parts.path}?{parts.query}"


def link_params(link: str) -> dict[str, str]:
    from urllib.parse import parse_qs, urlsplit

    return {k: v[0] for k, v in parse_qs(urlsplit(link).query).items()}
