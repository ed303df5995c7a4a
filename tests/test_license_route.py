"""
tests/test_license_route.py -- Integration tests for POST /api/license.

Covers:
  - Defaults: plan/status "trial", expiry about LICENSE_TRIAL_DAYS from now
  - Explicit values are stored; explicit null expiry falls back to the default
  - Idempotency: a second call returns the existing license unchanged
  - Missing user_id -> 400
  - Storage failure -> 500 carrying the database message
"""

from __future__ import annotations

import itertools
from datetime import datetime, timedelta, timezone

import pytest
from sqlalchemy.exc import OperationalError


_user_ids = itertools.count(1000)


@pytest.fixture
def user_id() -> int:
    """A user id no other test in the module uses."""
    return next(_user_ids)


def _days_from_now(iso: str) -> float:
    expiry = datetime.fromisoformat(iso)
    return (expiry - datetime.now(timezone.utc)) / timedelta(days=1)


def test_create_license_with_defaults(api_client, user_id):
    resp = api_client.post("/api/license", json={"user_id": user_id})
    assert resp.status_code == 200, resp.text
    data = resp.json()
    assert data["message"] == "License created."
    lic = data["license"]
    assert lic["user_id"] == user_id
    assert lic["plan"] == "trial"
    assert lic["status"] == "trial"
    assert 29.9 < _days_from_now(lic["expires_at"]) <= 30.0


def test_explicit_values_are_stored(api_client, user_id):
    resp = api_client.post(
        "/api/license",
        json={"user_id": user_id, "plan": "pro", "status": "active", "expires_at": "2031-06-01T12:00:00Z"},
    )
    assert resp.status_code == 200
    lic = resp.json()["license"]
    assert lic["plan"] == "pro"
    assert lic["status"] == "active"
    assert datetime.fromisoformat(lic["expires_at"]) == datetime(2031, 6, 1, 12, tzinfo=timezone.utc)


def test_naive_expiry_is_treated_as_utc(api_client, user_id):
    resp = api_client.post("/api/license", json={"user_id": user_id, "expires_at": "2031-06-01T12:00:00"})
    assert resp.status_code == 200
    assert resp.json()["license"]["expires_at"].startswith("2031-06-01T12:00:00")


def test_explicit_null_expiry_uses_default(api_client, user_id):
    resp = api_client.post("/api/license", json={"user_id": user_id, "expires_at": None})
    assert resp.status_code == 200
    assert 29.9 < _days_from_now(resp.json()["license"]["expires_at"]) <= 30.0


def test_second_call_returns_existing_license_unchanged(api_client, user_id):
    first = api_client.post("/api/license", json={"user_id": user_id, "plan": "trial"}).json()["license"]
    resp = api_client.post("/api/license", json={"user_id": user_id, "plan": "enterprise", "status": "active"})
    assert resp.status_code == 200
    data = resp.json()
    assert data["message"] == "License already exists."
    assert data["license"] == first
    assert len([lic for lic in api_client.app.state.license_store.list_licenses() if lic.user_id == user_id]) == 1


def test_missing_user_id_is_400(api_client):
    resp = api_client.post("/api/license", json={"plan": "trial"})
    assert resp.status_code == 400
    assert resp.json()["error"]["code"] == "validation_error"


def test_storage_failure_is_500_with_reason(api_client, user_id, monkeypatch):
    store = api_client.app.state.license_store

    def failing_create(lic):
        raise OperationalError("INSERT INTO licenses", {}, Exception("database is locked"))

    monkeypatch.setattr(store, "create_if_absent", failing_create)
    resp = api_client.post("/api/license", json={"user_id": user_id})
    assert resp.status_code == 500
    error = resp.json()["error"]
    assert error["code"] == "storage_error"
    assert "database is locked" in error["message"]
