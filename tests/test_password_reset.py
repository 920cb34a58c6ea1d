"""
Tests for password reset and account setup links.

Tests cover:
- Requesting a link for known, unknown and deactivated accounts
- Completing a reset: new password, ended sessions, single use, expiry
- The /auth/password-reset/* endpoints
"""

from __future__ import annotations

from datetime import timedelta

import pytest
from fastapi import HTTPException
from sqlalchemy import update
from sqlmodel import select

from gymsync.core.database import transaction
from gymsync.core.errors import InvalidCredentials, InvalidResetToken
from gymsync.core.security import hash_reset_token
from gymsync.models.base import utcnow
from gymsync.models.password_reset import PasswordResetToken
from gymsync.models.user import User
from gymsync.services.password_reset import PURPOSE_RESET, PURPOSE_SETUP

from conftest import PASSWORD, bearer, login

NEW_PASSWORD = "battery-staple-2"


async def _deactivate(session_factory, user_id) -> None:
    async with transaction(session_factory) as db:
        user = await db.get(User, user_id)
        user.is_active = False
        db.add(user)


# ---------------------------------------------------------------------------
# Requesting a link
# ---------------------------------------------------------------------------

class TestRequest:
    async def test_known_email_gets_a_link(self, resets, reset_sender, seed):
        await resets.request("  Member@X.com ")
        assert len(reset_sender.sent) == 1
        email, token, purpose = reset_sender.sent[0]
        assert email == "member@x.com"
        assert token.startswith("gr_")
        assert purpose == PURPOSE_RESET

    async def test_unknown_email_sends_nothing(self, resets, reset_sender, seed):
        await resets.request("nobody@x.com")
        assert reset_sender.sent == []

    async def test_deactivated_account_sends_nothing(self, resets, reset_sender, session_factory, seed):
        await _deactivate(session_factory, seed.member.id)
        await resets.request("member@x.com")
        assert reset_sender.sent == []

    async def test_only_the_digest_is_stored(self, resets, reset_sender, session_factory, seed):
        await resets.request("member@x.com")
        async with transaction(session_factory) as db:
            rows = (await db.execute(select(PasswordResetToken))).scalars().all()
        assert [row.token_hash for row in rows] == [hash_reset_token(reset_sender.last_token)]
        assert rows[0].user_id == seed.member.id

    async def test_setup_links_last_longer(self, resets, session_factory, seed):
        async with transaction(session_factory) as db:
            user = await db.get(User, seed.member.id)
        await resets.issue(user, purpose=PURPOSE_SETUP)
        async with transaction(session_factory) as db:
            link = (await db.execute(select(PasswordResetToken))).scalar_one()
        assert link.purpose == PURPOSE_SETUP
        assert link.expires_at.replace(tzinfo=None) > (utcnow() + timedelta(days=6)).replace(tzinfo=None)


# ---------------------------------------------------------------------------
# Completing a reset
# ---------------------------------------------------------------------------

class TestComplete:
    async def test_password_is_replaced(self, resets, reset_sender, verifier, seed):
        await resets.request("member@x.com")
        user = await resets.complete(reset_sender.last_token, NEW_PASSWORD)
        assert user.id == seed.member.id

        assert (await verifier.verify("member@x.com", NEW_PASSWORD)).id == seed.member.id
        with pytest.raises(InvalidCredentials):
            await verifier.verify("member@x.com", PASSWORD)

    async def test_every_session_ends(self, resets, reset_sender, access, sessions, seed):
        first = await access.login("member@x.com", PASSWORD)
        second = await access.login("member@x.com", PASSWORD)

        await resets.request("member@x.com")
        await resets.complete(reset_sender.last_token, NEW_PASSWORD)

        assert await sessions.get(first.token) is None
        assert await sessions.get(second.token) is None

    async def test_link_works_once(self, resets, reset_sender, seed):
        await resets.request("member@x.com")
        token = reset_sender.last_token
        await resets.complete(token, NEW_PASSWORD)
        with pytest.raises(InvalidResetToken):
            await resets.complete(token, "another-password")

    async def test_expired_link(self, resets, reset_sender, session_factory, seed):
        await resets.request("member@x.com")
        async with transaction(session_factory) as db:
            await db.execute(
                update(PasswordResetToken).values(expires_at=utcnow() - timedelta(seconds=1))
            )
        with pytest.raises(InvalidResetToken):
            await resets.complete(reset_sender.last_token, NEW_PASSWORD)

    async def test_newer_link_replaces_older(self, resets, reset_sender, seed):
        await resets.request("member@x.com")
        older = reset_sender.last_token
        await resets.request("member@x.com")
        newer = reset_sender.last_token

        with pytest.raises(InvalidResetToken):
            await resets.complete(older, NEW_PASSWORD)
        await resets.complete(newer, NEW_PASSWORD)

    async def test_unknown_token(self, resets, seed):
        with pytest.raises(InvalidResetToken):
            await resets.complete("gr_not-a-real-token", NEW_PASSWORD)

    async def test_deactivated_after_request(self, resets, reset_sender, session_factory, seed):
        await resets.request("member@x.com")
        await _deactivate(session_factory, seed.member.id)
        with pytest.raises(InvalidResetToken):
            await resets.complete(reset_sender.last_token, NEW_PASSWORD)

    async def test_short_password_keeps_the_link(self, resets, reset_sender, seed):
        await resets.request("member@x.com")
        with pytest.raises(HTTPException) as exc:
            await resets.complete(reset_sender.last_token, "short")
        assert exc.value.status_code == 400

        await resets.complete(reset_sender.last_token, NEW_PASSWORD)

    async def test_lockout_counter_is_cleared(self, resets, reset_sender, lockout, verifier, seed):
        for _ in range(5):
            with pytest.raises(InvalidCredentials):
                await verifier.verify("member@x.com", "wrong-password")
        assert await lockout.is_locked("member@x.com")

        await resets.request("member@x.com")
        await resets.complete(reset_sender.last_token, NEW_PASSWORD)

        assert not await lockout.is_locked("member@x.com")
        assert (await verifier.verify("member@x.com", NEW_PASSWORD)).id == seed.member.id


# ---------------------------------------------------------------------------
# HTTP endpoints
# ---------------------------------------------------------------------------

class TestPasswordResetEndpoints:
    async def test_request_answer_is_the_same_for_every_email(self, client, reset_sender, seed):
        known = await client.post("/auth/password-reset/request", json={"email": "member@x.com"})
        unknown = await client.post("/auth/password-reset/request", json={"email": "nobody@x.com"})

        assert known.status_code == unknown.status_code == 202
        assert known.json() == unknown.json()
        assert len(reset_sender.sent) == 1

    async def test_confirm_flow(self, client, reset_sender, seed):
        token = (await login(client, "member@x.com"))["token"]
        await client.post("/auth/password-reset/request", json={"email": "member@x.com"})

        resp = await client.post(
            "/auth/password-reset/confirm",
            json={"token": reset_sender.last_token, "password": NEW_PASSWORD},
        )
        assert resp.status_code == 200
        assert resp.json() == {"message": "Password updated"}

        resp = await client.get("/api/v1/gyms/current", headers=bearer(token))
        assert resp.status_code == 401
        await login(client, "member@x.com", NEW_PASSWORD)

    async def test_invalid_token(self, client, seed):
        resp = await client.post(
            "/auth/password-reset/confirm",
            json={"token": "gr_nope", "password": NEW_PASSWORD},
        )
        assert resp.status_code == 400
        assert resp.json()["error"]["code"] == "INVALID_RESET_TOKEN"

    async def test_malformed_email_is_rejected(self, client, seed):
        resp = await client.post("/auth/password-reset/request", json={"email": "not-an-email"})
        assert resp.status_code == 422
