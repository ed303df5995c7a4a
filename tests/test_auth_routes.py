"""
tests/test_auth_routes.py -- Integration tests for the /api/auth routes.

These tests exercise the full stack: FastAPI routing -> dependency injection
-> auth services -> UserStore -> response model serialization.

Coverage:
  - Sign-up: success, short password creates nothing, duplicate e-mail, missing fields
  - Sign-in: success + client context, uniform 401 for wrong password / unknown e-mail / inactive
  - Session round trip: sign-up -> sign-in -> GET /session resolves to the same user
  - Bearer handling: missing / malformed header -> 401, unknown token -> 401
  - PATCH /user: own record only, e-mail collision, short password, unknown fields, 401 before body
  - Sign-out: revokes exactly one session, idempotent
"""

from __future__ import annotations

from fastapi.testclient import TestClient

from conftest import DEFAULT_PASSWORD, bearer, signin, signup


class TestSignUp:
    def test_signup_returns_user_without_hash(self, api_client: TestClient, email: str) -> None:
        resp = api_client.post(
            "/api/auth/signup",
            json={"email": email, "password": DEFAULT_PASSWORD, "metadata": {"first_name": "Ada", "team": "north"}},
        )
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["message"]
        user = data["user"]
        assert user["email"] == email
        assert user["first_name"] == "Ada"
        assert user["user_metadata"] == {"first_name": "Ada", "team": "north"}
        assert user["is_active"] is True
        assert "password_hash" not in user
        assert "password" not in user

    def test_signup_normalizes_email(self, api_client: TestClient, email: str) -> None:
        user = signup(api_client, f"  {email.upper()} ")
        assert user["email"] == email

    def test_short_password_rejected_and_nothing_created(self, api_client: TestClient, email: str) -> None:
        resp = api_client.post("/api/auth/signup", json={"email": email, "password": "short7!"})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "password_too_short"
        assert api_client.app.state.user_store.get_by_email(email) is None

    def test_duplicate_email_rejected(self, api_client: TestClient, email: str) -> None:
        signup(api_client, email)
        resp = api_client.post("/api/auth/signup", json={"email": email.upper(), "password": DEFAULT_PASSWORD})
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "email_taken"

    def test_missing_password_is_400(self, api_client: TestClient, email: str) -> None:
        resp = api_client.post("/api/auth/signup", json={"email": email})
        assert resp.status_code == 400
        assert "error" in resp.json()

    def test_blank_email_is_400(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/auth/signup", json={"email": "   ", "password": DEFAULT_PASSWORD})
        assert resp.status_code == 400


class TestSignIn:
    def test_signin_returns_user_and_session(self, api_client: TestClient, email: str) -> None:
        signup(api_client, email)
        resp = api_client.post(
            "/api/auth/signin",
            json={"email": email, "password": DEFAULT_PASSWORD},
            headers={"User-Agent": "pytest-agent", "X-Forwarded-For": " 203.0.113.9 , 10.0.0.1"},
        )
        assert resp.status_code == 200, resp.text
        assert resp.headers["cache-control"] == "no-store"
        data = resp.json()
        assert data["user"]["email"] == email
        assert data["user"]["last_sign_in_at"]
        session = data["session"]
        assert len(session["token"]) == 64
        assert session["user_id"] == data["user"]["id"]
        assert session["user_agent"] == "pytest-agent"
        assert session["ip_address"] == "203.0.113.9"

    def test_wrong_password_and_unknown_email_are_indistinguishable(self, api_client: TestClient, email: str) -> None:
        signup(api_client, email)
        wrong = api_client.post("/api/auth/signin", json={"email": email, "password": "not-the-password"})
        unknown = api_client.post(
            "/api/auth/signin", json={"email": f"nobody-{email}", "password": DEFAULT_PASSWORD}
        )
        assert wrong.status_code == 401
        assert unknown.status_code == 401
        assert wrong.json() == unknown.json()

    def test_inactive_user_gets_same_401(self, api_client: TestClient, email: str) -> None:
        user = signup(api_client, email)
        api_client.app.state.user_store.update_user(user["id"], is_active=False)
        resp = api_client.post("/api/auth/signin", json={"email": email, "password": DEFAULT_PASSWORD})
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Invalid email or password."

    def test_failed_signin_is_audited_without_detail_in_response(self, api_client: TestClient, email: str) -> None:
        user = signup(api_client, email)
        api_client.post("/api/auth/signin", json={"email": email, "password": "wrong-password"})
        events = api_client.app.state.user_store.list_events(user_id=user["id"])
        failed = [e for e in events if e.event_type == "login_failed"]
        assert failed and failed[0].metadata == {"reason": "wrong_password"}

    def test_missing_fields_is_400(self, api_client: TestClient) -> None:
        resp = api_client.post("/api/auth/signin", json={"email": "a@example.com"})
        assert resp.status_code == 400


class TestSessionResolution:
    def test_signup_signin_session_round_trip(self, api_client: TestClient, email: str) -> None:
        user = signup(api_client, email)
        token = signin(api_client, email)
        resp = api_client.get("/api/auth/session", headers=bearer(token))
        assert resp.status_code == 200, resp.text
        data = resp.json()
        assert data["user"]["id"] == user["id"]
        assert data["session"]["token"] == token
        assert data["session"]["last_activity_at"]

    def test_get_user_returns_only_user(self, api_client: TestClient, email: str) -> None:
        signup(api_client, email)
        token = signin(api_client, email)
        resp = api_client.get("/api/auth/user", headers=bearer(token))
        assert resp.status_code == 200
        assert set(resp.json()) == {"user"}
        assert resp.json()["user"]["email"] == email

    def test_missing_header_is_401(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/auth/session")
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "missing_token"

    def test_malformed_header_is_401(self, api_client: TestClient) -> None:
        for value in ("Token abc", "Bearer", "Bearer   ", "abc"):
            resp = api_client.get("/api/auth/user", headers={"Authorization": value})
            assert resp.status_code == 401, value

    def test_unknown_token_is_401(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/auth/session", headers=bearer("f" * 64))
        assert resp.status_code == 401
        assert resp.json()["error"]["message"] == "Invalid or expired session."

    def test_expired_session_is_401(self, api_client: TestClient, email: str) -> None:
        from datetime import timedelta

        from auth.sessions import issue_session

        user = signup(api_client, email)
        session = issue_session(api_client.app.state.user_store, user["id"], timedelta(seconds=-1))
        resp = api_client.get("/api/auth/session", headers=bearer(session.token))
        assert resp.status_code == 401


class TestUpdateUser:
    def test_update_names_and_metadata(self, api_client: TestClient, email: str) -> None:
        signup(api_client, email)
        token = signin(api_client, email)
        resp = api_client.patch(
            "/api/auth/user",
            json={"first_name": "Grace", "last_name": "Hopper", "user_metadata": {"theme": "dark"}},
            headers=bearer(token),
        )
        assert resp.status_code == 200, resp.text
        user = resp.json()["user"]
        assert user["first_name"] == "Grace"
        assert user["last_name"] == "Hopper"
        assert user["user_metadata"] == {"theme": "dark"}

    def test_email_change_clears_verification(self, api_client: TestClient, email: str) -> None:
        signup(api_client, email)
        token = signin(api_client, email)
        new_email = f"new-{email}"
        resp = api_client.patch("/api/auth/user", json={"email": new_email.upper()}, headers=bearer(token))
        assert resp.status_code == 200
        user = resp.json()["user"]
        assert user["email"] == new_email
        assert user["email_verified"] is False

    def test_email_in_use_is_400(self, api_client: TestClient, email: str) -> None:
        other = f"other-{email}"
        signup(api_client, other)
        signup(api_client, email)
        token = signin(api_client, email)
        resp = api_client.patch("/api/auth/user", json={"email": other}, headers=bearer(token))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "email_taken"

    def test_password_change_applies(self, api_client: TestClient, email: str) -> None:
        signup(api_client, email)
        token = signin(api_client, email)
        resp = api_client.patch("/api/auth/user", json={"password": "brand-new-pass"}, headers=bearer(token))
        assert resp.status_code == 200
        signin(api_client, email, "brand-new-pass")

    def test_short_password_is_400(self, api_client: TestClient, email: str) -> None:
        signup(api_client, email)
        token = signin(api_client, email)
        resp = api_client.patch("/api/auth/user", json={"password": "short"}, headers=bearer(token))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "password_too_short"

    def test_unknown_or_privileged_fields_are_400(self, api_client: TestClient, email: str) -> None:
        signup(api_client, email)
        token = signin(api_client, email)
        for body in ({"id": 999}, {"is_active": False}, {"app_metadata": {"role": "admin"}}):
            resp = api_client.patch("/api/auth/user", json=body, headers=bearer(token))
            assert resp.status_code == 400, body

    def test_empty_update_is_400(self, api_client: TestClient, email: str) -> None:
        signup(api_client, email)
        token = signin(api_client, email)
        resp = api_client.patch("/api/auth/user", json={}, headers=bearer(token))
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "no_changes"

    def test_unauthenticated_is_401_even_with_bad_body(self, api_client: TestClient) -> None:
        resp = api_client.patch(
            "/api/auth/user", content=b"{not json", headers={"Content-Type": "application/json"}
        )
        assert resp.status_code == 401


class TestSignOut:
    def test_signout_revokes_only_presented_session(self, api_client: TestClient, email: str) -> None:
        signup(api_client, email)
        first = signin(api_client, email)
        second = signin(api_client, email)

        resp = api_client.post("/api/auth/signout", headers=bearer(first))
        assert resp.status_code == 200
        assert resp.json()["message"]

        assert api_client.get("/api/auth/session", headers=bearer(first)).status_code == 401
        assert api_client.get("/api/auth/session", headers=bearer(second)).status_code == 200

    def test_signout_is_idempotent(self, api_client: TestClient, email: str) -> None:
        signup(api_client, email)
        token = signin(api_client, email)
        assert api_client.post("/api/auth/signout", headers=bearer(token)).status_code == 200
        assert api_client.post("/api/auth/signout", headers=bearer(token)).status_code == 200
        assert api_client.post("/api/auth/signout", headers=bearer("0" * 64)).status_code == 200

    def test_signout_without_header_is_401(self, api_client: TestClient) -> None:
        assert api_client.post("/api/auth/signout").status_code == 401


class TestUnexpectedErrors:
    def test_internal_error_is_generic_500(self, api_client: TestClient, email: str, monkeypatch) -> None:
        import api.routes.v1.auth as auth_routes

        def boom(*args, **kwargs):
            raise RuntimeError("database exploded: secret detail")

        monkeypatch.setattr(auth_routes, "sign_up", boom)
        client = TestClient(api_client.app, raise_server_exceptions=False)
        resp = client.post("/api/auth/signup", json={"email": email, "password": DEFAULT_PASSWORD})
        assert resp.status_code == 500
        assert resp.json()["error"]["code"] == "internal_error"
        assert "secret detail" not in resp.text

    def test_unknown_route_uses_error_envelope(self, api_client: TestClient) -> None:
        resp = api_client.get("/api/does-not-exist")
        assert resp.status_code == 404
        assert resp.json()["error"]["code"] == "http_404"
