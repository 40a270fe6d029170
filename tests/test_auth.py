"""Tests for the auth blueprint — login, logout, current user.

Covers:
- Login with valid credentials (case-insensitive email)
- Login with invalid credentials
- Login with deactivated account
- Missing fields
- Login creates audit event
- Logout ends the session
- /api routes reject anonymous requests with JSON 401
- With CSRF protection on, POSTs need the token from /auth/csrf-token
"""

import pytest

from app.models.audit import AuditEvent


@pytest.fixture
def csrf_on(app):
    app.config["WTF_CSRF_ENABLED"] = True
    yield
    app.config["WTF_CSRF_ENABLED"] = False


class TestLogin:
    """Tests for POST /auth/login."""

    def test_login_success(self, client, seed_data):
        resp = client.post(
            "/auth/login",
            json={"email": "Staff@Harbour.test ", "password": "staff123"},
        )
        assert resp.status_code == 200
        data = resp.get_json()
        assert data["id"] == seed_data["staff_id"]
        assert data["org_id"] == seed_data["org_id"]

    def test_login_wrong_password(self, client, seed_data):
        resp = client.post(
            "/auth/login",
            json={"email": "staff@harbour.test", "password": "wrong"},
        )
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Invalid email or password."

    def test_login_unknown_email(self, client, seed_data):
        resp = client.post(
            "/auth/login",
            json={"email": "nobody@harbour.test", "password": "staff123"},
        )
        assert resp.status_code == 401

    def test_login_deactivated_account(self, client, seed_data):
        resp = client.post(
            "/auth/login",
            json={"email": "gone@harbour.test", "password": "gone123"},
        )
        assert resp.status_code == 403
        assert "deactivated" in resp.get_json()["error"]

    def test_login_missing_fields(self, client, seed_data):
        resp = client.post("/auth/login", json={"email": "staff@harbour.test"})
        assert resp.status_code == 400

    def test_login_creates_audit_event(self, client, seed_data):
        client.post(
            "/auth/login",
            json={"email": "staff@harbour.test", "password": "staff123"},
        )
        audit = AuditEvent.query.filter_by(action="user.logged_in").first()
        assert audit is not None
        assert audit.actor_user_id == seed_data["staff_id"]
        assert audit.org_id == seed_data["org_id"]


class TestSession:
    """Tests for /auth/me and /auth/logout."""

    def test_me_returns_current_user(self, staff_client, seed_data):
        resp = staff_client.get("/auth/me")
        assert resp.status_code == 200
        assert resp.get_json()["email"] == "staff@harbour.test"

    def test_me_requires_login(self, client, seed_data):
        resp = client.get("/auth/me")
        assert resp.status_code == 401
        assert resp.get_json()["error"] == "Unauthorized"

    def test_logout(self, staff_client, seed_data):
        resp = staff_client.post("/auth/logout")
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "logged_out"


class TestCsrf:
    """Tests for CSRF protection on the JSON API."""

    def _token(self, client):
        resp = client.get("/auth/csrf-token")
        assert resp.status_code == 200
        return resp.get_json()["csrfToken"]

    def test_login_without_token_is_rejected(self, client, seed_data, csrf_on):
        resp = client.post(
            "/auth/login",
            json={"email": "staff@harbour.test", "password": "staff123"},
        )
        assert resp.status_code == 400
        assert resp.get_json()["error"] == "The CSRF token is missing."

    def test_login_with_token_header(self, client, seed_data, csrf_on):
        token = self._token(client)

        resp = client.post(
            "/auth/login",
            json={"email": "staff@harbour.test", "password": "staff123"},
            headers={"X-CSRFToken": token},
        )
        assert resp.status_code == 200
        assert resp.get_json()["id"] == seed_data["staff_id"]

    def test_staff_post_with_token_header(self, client, seed_data, csrf_on):
        token = self._token(client)
        client.post(
            "/auth/login",
            json={"email": "staff@harbour.test", "password": "staff123"},
            headers={"X-CSRFToken": token},
        )

        assert client.post("/auth/logout").status_code == 400

        resp = client.post("/auth/logout", headers={"X-CSRFToken": token})
        assert resp.status_code == 200
        assert resp.get_json()["status"] == "logged_out"

    def test_payment_links_are_exempt(self, client, seed_data, csrf_on):
        resp = client.post(
            f"/pay/{seed_data['transaction_id']}/checkout",
            json={"amount": 500, "token": "forged"},
        )
        assert resp.status_code == 401
