"""
tests/conftest.py -- Shared test fixtures for the CRM auth service.

This module provides:
  - _make_test_stores(): creates isolated in-memory DBs for auth + licensing
  - _patch_lifespan(): wires test stores into app.state, bypassing real startup
  - api_client: TestClient over the real app with test stores and no rate limit
  - user_store / license_store: per-test in-memory stores for unit tests
  - signup / signin helpers for integration tests

Design: Named shared-memory SQLite URIs (not plain :memory:) are required for
the TestClient fixtures because route handlers run in a thread pool. Plain
:memory: DBs are per-connection and would present a blank schema to each
worker thread. Unit-test stores stay on one thread and use plain :memory:.

Environment variables must be set before any auth/core import:
  DEBUG=true            -- get_settings() auto-generates SECRET_KEY
  ENVIRONMENT=development -- reset tokens are echoed so tests can redeem them
  BCRYPT_ROUNDS=4       -- keeps hashing fast
  TRUSTED_HOSTS         -- TestClient sends Host: testserver
"""

from __future__ import annotations

import os
import uuid
from collections.abc import Generator
from contextlib import asynccontextmanager

os.environ.setdefault("DEBUG", "true")
os.environ.setdefault("ENVIRONMENT", "development")
os.environ.setdefault("BCRYPT_ROUNDS", "4")
os.environ.setdefault("TRUSTED_HOSTS", "testserver,localhost")

import pytest
from fastapi.testclient import TestClient

from api.limiter import AllowAll
from api.main import app
from auth.store import UserStore
from licensing.store import LicenseStore

DEFAULT_PASSWORD = "longpass1"


# ---------------------------------------------------------------------------
# Store helpers
# ---------------------------------------------------------------------------


def _make_test_stores(db_suffix: str) -> tuple[UserStore, LicenseStore]:
    """Create isolated named shared-memory SQLite stores for test isolation.

    Args:
        db_suffix: Unique string appended to the DB name so test modules
                   don't share state.
    """
    auth_url = f"sqlite:///file:test_auth_{db_suffix}?mode=memory&cache=shared&uri=true"
    license_url = f"sqlite:///file:test_license_{db_suffix}?mode=memory&cache=shared&uri=true"
    return UserStore(db_url=auth_url), LicenseStore(db_url=license_url)


def _patch_lifespan(user_store: UserStore, license_store: LicenseStore):
    """Return an async context manager that replaces the real lifespan.

    Rate limiting starts disabled (AllowAll); tests that exercise the gate
    swap app.state.quota_checker themselves.
    """

    @asynccontextmanager
    async def test_lifespan(app):
        app.state.user_store = user_store
        app.state.license_store = license_store
        app.state.quota_checker = AllowAll()
        yield

    return test_lifespan


# ---------------------------------------------------------------------------
# Module-scoped client -- one TestClient per test module for speed
# ---------------------------------------------------------------------------


@pytest.fixture(scope="module")
def api_client(request) -> Generator[TestClient, None, None]:
    """Yield a TestClient over the real app backed by fresh in-memory stores.

    Stores are shared by every test in the module, so tests use unique
    e-mail addresses (see the `email` fixture).
    """
    suffix = f"{request.module.__name__.rsplit('.', 1)[-1]}_{uuid.uuid4().hex[:8]}"
    user_store, license_store = _make_test_stores(suffix)
    app.router.lifespan_context = _patch_lifespan(user_store, license_store)

    with TestClient(app, raise_server_exceptions=True) as client:
        yield client

    app.dependency_overrides.clear()
    user_store.close()
    license_store.close()


@pytest.fixture
def email() -> str:
    """A fresh, unused e-mail address."""
    return f"user-{uuid.uuid4().hex[:12]}@example.com"


# ---------------------------------------------------------------------------
# Unit-test stores
# ---------------------------------------------------------------------------


@pytest.fixture
def user_store() -> Generator[UserStore, None, None]:
    store = UserStore("sqlite:///:memory:")
    yield store
    store.close()


@pytest.fixture
def license_store() -> Generator[LicenseStore, None, None]:
    store = LicenseStore("sqlite:///:memory:")
    yield store
    store.close()


# ---------------------------------------------------------------------------
# Request helpers
# ---------------------------------------------------------------------------


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


def signup(client: TestClient, email: str, password: str = DEFAULT_PASSWORD, **extra) -> dict:
    """Sign up and return the created user payload. Fails the test on non-200."""
    resp = client.post("/api/auth/signup", json={"email": email, "password": password, **extra})
    assert resp.status_code == 200, resp.text
    return resp.json()["user"]


def signin(client: TestClient, email: str, password: str = DEFAULT_PASSWORD, headers: dict | None = None) -> str:
    """Sign in and return the session token. Fails the test on non-200."""
    resp = client.post("/api/auth/signin", json={"email": email, "password": password}, headers=headers or {})
    assert resp.status_code == 200, resp.text
    return resp.json()["session"]["token"]
