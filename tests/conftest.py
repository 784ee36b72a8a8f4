"""
tests/conftest.py -- Shared test fixtures for RoleGate.

This module provides:
  - engine:       isolated named shared-memory SQLite Engine per test
  - clock:        controllable UTC clock for SessionStore expiry tests
  - stores:       (UserStore, SessionStore, AccessStore) over engine, seeded
  - auth_engine:  AuthEngine over stores
  - client:       TestClient with a patched lifespan wired to engine
  - served_client: same, but unhandled errors come back as HTTP 500
  - helpers for the CSRF/registration dance the SPA performs

Design: Named shared-memory SQLite URIs (not plain :memory:) are required
because TestClient runs sync route handlers in a thread pool. Plain :memory:
DBs are per-connection and would present a blank schema to each worker
thread. The named URI format shares one in-memory instance across all
connections in the same process; a uuid suffix keeps tests isolated.

The DEBUG env var must be set before any api/core import so get_settings()
auto-generates SECRET_KEY in dev mode rather than raising ValueError.
"""

from __future__ import annotations

import os
from collections.abc import Generator
from contextlib import asynccontextmanager
from datetime import datetime, timedelta, timezone
from uuid import uuid4

# CRITICAL: Set DEBUG before any core import so get_settings() can
# auto-generate SECRET_KEY in dev mode instead of raising ValueError.
os.environ.setdefault("DEBUG", "true")

import pytest
from fastapi.testclient import TestClient
from sqlalchemy.engine import Engine

from api.main import app, install_services
from auth.access import AccessStore
from auth.engine import AuthEngine
from auth.schema import create_store_engine
from auth.sessions import SessionStore
from auth.store import UserStore
from core.config import get_settings

API = get_settings().api_prefix
PASSWORD = "password1"


class FakeClock:
    """Callable clock that only moves when told to."""

    def __init__(self) -> None:
        self.now = datetime(2026, 1, 15, 12, 0, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now += timedelta(**kwargs)


# ---------------------------------------------------------------------------
# Store fixtures
# ---------------------------------------------------------------------------


@pytest.fixture
def engine() -> Generator[Engine, None, None]:
    eng = create_store_engine(f"sqlite:///file:rolegate_{uuid4().hex}?mode=memory&cache=shared&uri=true")
    yield eng
    eng.dispose()


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def stores(engine: Engine, clock: FakeClock) -> tuple[UserStore, SessionStore, AccessStore]:
    """Stores over a fresh DB seeded with admin/user roles and manage_users."""
    access = AccessStore(engine)
    access.seed()
    return UserStore(engine), SessionStore(engine, clock=clock), access


@pytest.fixture
def auth_engine(stores) -> AuthEngine:
    users, sessions, access = stores
    return AuthEngine(users, sessions, access, session_days=7, default_role_key="user")


# ---------------------------------------------------------------------------
# HTTP fixtures
# ---------------------------------------------------------------------------


def _patch_lifespan(engine: Engine):
    """Return a lifespan that wires the test engine into app.state.

    No purge task and no default-role check: tests seed what they need.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        install_services(app, engine, get_settings())
        yield

    return test_lifespan


def _open_client(engine: Engine, raise_server_exceptions: bool) -> TestClient:
    AccessStore(engine).seed()
    app.router.lifespan_context = _patch_lifespan(engine)
    return TestClient(app, raise_server_exceptions=raise_server_exceptions)


@pytest.fixture
def client(engine: Engine) -> Generator[TestClient, None, None]:
    """TestClient over the real app with an isolated, seeded store.

    Function-scoped so every test starts with an empty cookie jar.
    """
    with _open_client(engine, raise_server_exceptions=True) as c:
        yield c


@pytest.fixture
def served_client(engine: Engine) -> Generator[TestClient, None, None]:
    """Like client, but unhandled exceptions come back as the 500 response
    a real browser would see instead of being re-raised into the test.
    """
    with _open_client(engine, raise_server_exceptions=False) as c:
        yield c


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def fetch_csrf(client: TestClient) -> str:
    resp = client.get(f"{API}/csrf")
    assert resp.status_code == 200
    return resp.json()["csrfToken"]


def register(client: TestClient, email: str, password: str = PASSWORD, name: str = "Tester") -> dict:
    """Register through the API and return the user object."""
    token = fetch_csrf(client)
    resp = client.post(
        f"{API}/register",
        json={"name": name, "email": email, "password": password, "csrfToken": token},
    )
    assert resp.status_code == 201, resp.text
    return resp.json()["user"]


def make_admin(client: TestClient, email: str = "boss@corp.io") -> dict:
    """Register a user, grant it the admin role, and return the refreshed user object."""
    user = register(client, email)
    client.app.state.access_store.assign_role(user["id"], "admin")
    return client.get(f"{API}/me").json()["user"]
