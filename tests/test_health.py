"""
Tests for system endpoints, configuration and the super-admin bootstrap script.
"""

from __future__ import annotations

import pytest

from gymsync.core.config import Settings
from gymsync.core.middleware import SECURITY_HEADERS
from gymsync.scripts.create_super_admin import create_super_admin

from conftest import bearer, login


class TestSystemEndpoints:
    async def test_health(self, client):
        resp = await client.get("/health")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ok"}

    async def test_ready(self, client):
        resp = await client.get("/ready")
        assert resp.status_code == 200
        assert resp.json() == {"status": "ready"}

    async def test_security_headers_on_app(self, client):
        resp = await client.get("/health")
        assert resp.headers["Content-Security-Policy"] == SECURITY_HEADERS["Content-Security-Policy"]
        assert resp.headers["Cache-Control"] == "no-store"

    async def test_api_root(self, client):
        resp = await client.get("/api/v1/")
        assert resp.status_code == 200
        assert resp.json()["api"] == "v1"


class TestSettings:
    def test_defaults(self):
        settings = Settings(_env_file=None)
        assert settings.session_ttl_minutes == 1440
        assert settings.lockout_max_attempts == 5
        assert settings.lockout_window_seconds == 900
        assert settings.session_cookie_name == "gym_session"

    def test_env_prefix(self, monkeypatch):
        monkeypatch.setenv("GYM_STORE_TIMEOUT_SECONDS", "0.5")
        monkeypatch.setenv("GYM_LOCKOUT_MAX_ATTEMPTS", "3")
        settings = Settings(_env_file=None)
        assert settings.store_timeout_seconds == 0.5
        assert settings.lockout_max_attempts == 3

    def test_rejects_unknown_log_format(self, monkeypatch):
        monkeypatch.setenv("GYM_LOG_FORMAT", "xml")
        with pytest.raises(Exception):
            Settings(_env_file=None)


class TestCreateSuperAdmin:
    async def test_creates_a_super_admin(self, client, session_factory, seed):
        user = await create_super_admin("Boss@X.com", "bootstrap-pass", factory=session_factory)
        assert user.email == "boss@x.com"
        assert user.user_type == "super-admin"

        data = await login(client, "boss@x.com", "bootstrap-pass")
        resp = await client.get("/api/v1/admin/gyms", headers=bearer(data["token"]))
        assert resp.status_code == 200

    async def test_promotes_an_existing_user(self, session_factory, seed):
        user = await create_super_admin("member@x.com", "new-password", factory=session_factory)
        assert user.id == seed.member.id
        assert user.user_type == "super-admin"
