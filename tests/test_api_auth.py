"""
Integration tests for /auth/* endpoints.

Tests cover:
- Registration rules (self-service types only, password length, duplicates)
- Login outcomes: selection required, auto-resolved gym, generic failures, lockout
- Logout idempotence and the session it leaves behind
- The error envelope on unauthenticated requests
"""

from __future__ import annotations

from conftest import PASSWORD, bearer, login


# ---------------------------------------------------------------------------
# Registration
# ---------------------------------------------------------------------------

class TestRegister:
    async def test_register_member(self, client, seed):
        resp = await client.post(
            "/auth/register", json={"email": "New@X.com", "password": "long-enough", "name": "New"}
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["user"]["email"] == "new@x.com"
        assert data["user"]["user_type"] == "member"

        await login(client, "new@x.com", "long-enough")

    async def test_register_trainer(self, client, seed):
        resp = await client.post(
            "/auth/register",
            json={"email": "coach@x.com", "password": "long-enough", "user_type": "trainer"},
        )
        assert resp.status_code == 201
        assert resp.json()["user"]["user_type"] == "trainer"

    async def test_admin_types_cannot_self_register(self, client, seed):
        for user_type in ("organization-admin", "super-admin"):
            resp = await client.post(
                "/auth/register",
                json={"email": "boss@x.com", "password": "long-enough", "user_type": user_type},
            )
            assert resp.status_code == 403

    async def test_short_password(self, client, seed):
        resp = await client.post("/auth/register", json={"email": "new@x.com", "password": "short"})
        assert resp.status_code == 400

    async def test_duplicate_email(self, client, seed):
        resp = await client.post("/auth/register", json={"email": "ADMIN@x.com", "password": "long-enough"})
        assert resp.status_code == 409

    async def test_invalid_email(self, client, seed):
        resp = await client.post("/auth/register", json={"email": "not-an-email", "password": "long-enough"})
        assert resp.status_code == 422


# ---------------------------------------------------------------------------
# Login
# ---------------------------------------------------------------------------

class TestLogin:
    async def test_multi_gym_login_requires_selection(self, client, seed):
        data = await login(client, "admin@x.com")
        assert data["selection_required"] is True
        assert data["active_gym_id"] is None
        assert [gym["name"] for gym in data["available_gyms"]] == ["GymA", "GymB"]
        assert data["token"].startswith("gs_")

    async def test_single_gym_login_is_auto_resolved(self, client, seed):
        data = await login(client, "member@x.com")
        assert data["selection_required"] is False
        assert data["active_gym_id"] == str(seed.gym_a.id)

        resp = await client.get("/auth/me", headers=bearer(data["token"]))
        assert resp.status_code == 200
        me = resp.json()
        assert me["active_gym"]["name"] == "GymA"
        assert me["role"] == "member"

    async def test_login_sets_session_and_csrf_cookies(self, client, seed):
        resp = await client.post("/auth/login", json={"email": "member@x.com", "password": PASSWORD})
        assert resp.status_code == 200
        set_cookie = " ".join(resp.headers.get_list("set-cookie"))
        assert "gym_session=" in set_cookie
        assert "gym_csrf=" in set_cookie
        assert "HttpOnly" in set_cookie

    async def test_wrong_password_and_unknown_email_match(self, client, seed):
        wrong = await client.post("/auth/login", json={"email": "admin@x.com", "password": "nope"})
        unknown = await client.post("/auth/login", json={"email": "ghost@x.com", "password": PASSWORD})
        assert wrong.status_code == unknown.status_code == 401
        assert wrong.json() == unknown.json()
        assert wrong.json()["error"]["code"] == "INVALID_CREDENTIALS"

    async def test_user_type_mismatch(self, client, seed):
        resp = await client.post(
            "/auth/login", json={"email": "member@x.com", "password": PASSWORD, "user_type": "trainer"}
        )
        assert resp.status_code == 401

    async def test_lockout(self, client, seed):
        for _ in range(5):
            resp = await client.post("/auth/login", json={"email": "admin@x.com", "password": "nope"})
            assert resp.status_code == 401
        resp = await client.post("/auth/login", json={"email": "admin@x.com", "password": PASSWORD})
        assert resp.status_code == 423
        assert resp.json()["error"]["code"] == "ACCOUNT_LOCKED"


# ---------------------------------------------------------------------------
# Logout / current context
# ---------------------------------------------------------------------------

class TestLogout:
    async def test_logout_is_idempotent(self, client, seed):
        token = (await login(client, "member@x.com"))["token"]

        first = await client.post("/auth/logout", headers=bearer(token))
        second = await client.post("/auth/logout", headers=bearer(token))
        assert first.status_code == second.status_code == 200

        resp = await client.get("/auth/me", headers=bearer(token))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "SESSION_NOT_FOUND"

    async def test_logout_without_session(self, client):
        resp = await client.post("/auth/logout")
        assert resp.status_code == 200

    async def test_logout_leaves_other_sessions(self, client, seed):
        first = (await login(client, "member@x.com"))["token"]
        second = (await login(client, "member@x.com"))["token"]
        await client.post("/auth/logout", headers=bearer(first))
        resp = await client.get("/auth/me", headers=bearer(second))
        assert resp.status_code == 200


class TestUnauthenticated:
    async def test_me_without_token(self, client):
        resp = await client.get("/auth/me")
        assert resp.status_code == 401
        assert resp.headers["WWW-Authenticate"] == "Bearer"
        body = resp.json()["error"]
        assert body["code"] == "UNAUTHENTICATED"
        assert body["selection_required"] is False

    async def test_garbage_token(self, client, seed):
        resp = await client.get("/auth/me", headers=bearer("gs_garbage"))
        assert resp.status_code == 401
        assert resp.json()["error"]["code"] == "SESSION_NOT_FOUND"

    async def test_session_cookie_is_accepted(self, client, seed):
        token = (await login(client, "member@x.com"))["token"]
        resp = await client.get("/auth/me", headers={"Cookie": f"gym_session={token}"})
        assert resp.status_code == 200
        assert resp.json()["user"]["email"] == "member@x.com"
