"""Tests for staff auth and the app shell.

Covers:
- JSON login / me / logout
- Invalid credentials, deactivated account
- Health check, JSON error pages, security headers
"""

import json

from backoffice.extensions import db
from backoffice.models.audit import AuditEvent
from backoffice.models.user import User


def login(client, email, password):
    return client.post("/auth/login", json={"email": email, "password": password})


# ══════════════════════════════════════════════
#  LOGIN / LOGOUT
# ══════════════════════════════════════════════

class TestLogin:

    def test_login_success(self, client, seed_data):
        resp = login(client, "Admin@Backoffice.local", "admin123")
        assert resp.status_code == 200
        data = json.loads(resp.data)
        assert data["user"]["isAdmin"] is True
        assert AuditEvent.query.filter_by(action="user.login").count() == 1

    def test_me_after_login(self, client, seed_data):
        login(client, "tech@backoffice.local", "tech123")
        resp = client.get("/auth/me")
        assert resp.status_code == 200
        assert json.loads(resp.data)["user"]["fullName"] == "Tom Tech"

    def test_wrong_password(self, client, seed_data):
        resp = login(client, "admin@backoffice.local", "wrong")
        assert resp.status_code == 401
        assert json.loads(resp.data)["error"] == "Invalid email or password."

    def test_missing_fields(self, client, seed_data):
        resp = client.post("/auth/login", json={"email": "admin@backoffice.local"})
        assert resp.status_code == 400

    def test_deactivated_account(self, client, seed_data):
        user = User.query.filter_by(email="tech@backoffice.local").one()
        user.is_active = False
        db.session.commit()
        resp = login(client, "tech@backoffice.local", "tech123")
        assert resp.status_code == 403

    def test_me_requires_login(self, client, seed_data):
        assert client.get("/auth/me").status_code == 401

    def test_logout(self, client, seed_data):
        login(client, "admin@backoffice.local", "admin123")
        resp = client.post("/auth/logout")
        assert resp.status_code == 200


# ══════════════════════════════════════════════
#  APP SHELL
# ══════════════════════════════════════════════

class TestAppShell:

    def test_health(self, client):
        resp = client.get("/health")
        assert resp.status_code == 200

    def test_unknown_route_is_json_404(self, client):
        resp = client.get("/nope")
        assert resp.status_code == 404
        assert json.loads(resp.data) == {"success": False, "error": "Not found."}

    def test_security_headers(self, client):
        resp = client.get("/health")
        assert resp.headers["X-Content-Type-Options"] == "nosniff"
        assert resp.headers["X-Frame-Options"] == "DENY"
        assert "frame-ancestors 'none'" in resp.headers["Content-Security-Policy"]
