"""
tests/test_admin_users.py -- Integration tests for GET /api/users.

Covers:
  - 401 without a bearer token
  - 403 for ordinary users, including ones who set role=admin in user_metadata
  - Admin via ADMIN_EMAILS (case-insensitive) and via app_metadata.role
  - Rows joined with licenses, nulls when the user has none, newest first
"""

from __future__ import annotations

import pytest

from conftest import bearer, signin, signup
from core.config import get_settings


@pytest.fixture
def admin_emails(api_client):
    """Install an ADMIN_EMAILS override; yields a setter taking a comma list."""

    def install(value: str) -> None:
        settings = get_settings().model_copy(update={"admin_emails": value})
        api_client.app.dependency_overrides[get_settings] = lambda: settings

    yield install
    api_client.app.dependency_overrides.pop(get_settings, None)


def test_requires_bearer(api_client):
    resp = api_client.get("/api/users")
    assert resp.status_code == 401


def test_ordinary_user_is_forbidden(api_client, email):
    signup(api_client, email, metadata={"role": "admin", "is_admin": True})
    token = signin(api_client, email)
    resp = api_client.get("/api/users", headers=bearer(token))
    assert resp.status_code == 403
    assert resp.json()["error"]["code"] == "forbidden"


def test_admin_by_email_list(api_client, email, admin_emails):
    signup(api_client, email)
    token = signin(api_client, email)
    admin_emails(f"someone@example.com, {email.upper()}")
    resp = api_client.get("/api/users", headers=bearer(token))
    assert resp.status_code == 200, resp.text
    emails = [row["email"] for row in resp.json()["users"]]
    assert email in emails


def test_admin_by_app_metadata_role(api_client, email):
    user = signup(api_client, email)
    api_client.app.state.user_store.update_user(user["id"], app_metadata={"role": "admin"})
    token = signin(api_client, email)
    assert api_client.get("/api/users", headers=bearer(token)).status_code == 200


def test_rows_join_licenses_newest_first(api_client, email, admin_emails):
    admin = signup(api_client, email)
    licensed = signup(api_client, f"licensed-{email}")
    unlicensed = signup(api_client, f"unlicensed-{email}")
    api_client.post("/api/license", json={"user_id": licensed["id"], "plan": "pro", "status": "active"})

    token = signin(api_client, email)
    admin_emails(email)
    rows = api_client.get("/api/users", headers=bearer(token)).json()["users"]

    ids = [row["user_id"] for row in rows]
    assert ids == sorted(ids, reverse=True)
    by_id = {row["user_id"]: row for row in rows}
    assert by_id[licensed["id"]]["plan"] == "pro"
    assert by_id[licensed["id"]]["status"] == "active"
    assert by_id[licensed["id"]]["license_id"] is not None
    assert by_id[unlicensed["id"]]["license_id"] is None
    assert by_id[unlicensed["id"]]["plan"] is None
    assert by_id[admin["id"]]["is_active"] is True
    assert "password_hash" not in by_id[admin["id"]]
