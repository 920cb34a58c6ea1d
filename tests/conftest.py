"""
Shared fixtures: a file-backed SQLite database per test, an in-memory Redis
stand-in, a seeded set of gyms and users, and an HTTP client wired to both.
"""

from __future__ import annotations

import os

os.environ.setdefault("GYM_DATABASE_URL", "sqlite+aiosqlite://")
os.environ.setdefault("GYM_LOG_FORMAT", "console")

from dataclasses import dataclass
from datetime import timedelta

import pytest
import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy import update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine

from gymsync.api.deps import get_reset_link_sender
from gymsync.core.database import get_session_factory, init_db, transaction
from gymsync.core.redis import get_redis
from gymsync.core.security import hash_password, hash_session_token
from gymsync.main import app
from gymsync.models.base import utcnow
from gymsync.models.membership import Membership
from gymsync.models.organization import Organization
from gymsync.models.session import AuthSession
from gymsync.models.user import User
from gymsync.services.access import AccessService
from gymsync.services.authorization import AuthorizationCache, AuthorizationGate
from gymsync.services.context_switch import ActiveContextSwitchController
from gymsync.services.credentials import CredentialVerifier, RedisLockoutPolicy
from gymsync.services.memberships import MembershipResolver
from gymsync.services.password_reset import PasswordResetService
from gymsync.services.sessions import SessionStore

PASSWORD = "correct-horse-1"
PASSWORD_HASH = hash_password(PASSWORD)
STORE_TIMEOUT = 2.0


class FakeRedis:
    """Just enough of ``redis.asyncio.Redis`` for the lockout counter and role cache."""

    def __init__(self):
        self.data: dict[str, str] = {}
        self.ttls: dict[str, int] = {}

    async def get(self, key):
        return self.data.get(key)

    async def setex(self, key, seconds, value):
        self.data[key] = str(value)
        self.ttls[key] = seconds
        return True

    async def incr(self, key):
        value = int(self.data.get(key, 0)) + 1
        self.data[key] = str(value)
        return value

    async def expire(self, key, seconds):
        if key not in self.data:
            return False
        self.ttls[key] = seconds
        return True

    async def delete(self, *keys):
        removed = 0
        for key in keys:
            if self.data.pop(key, None) is not None:
                removed += 1
            self.ttls.pop(key, None)
        return removed

    async def aclose(self):
        pass


class CapturingSender:
    """Collects reset/setup links instead of mailing them."""

    def __init__(self):
        self.sent: list[tuple[str, str, str]] = []  # (email, token, purpose)

    async def send(self, user, token, *, purpose, expires_at):
        self.sent.append((user.email, token, purpose))

    @property
    def last_token(self) -> str:
        return self.sent[-1][1]


@dataclass
class Seed:
    gym_a: Organization
    gym_b: Organization
    gym_c: Organization
    gym_closed: Organization
    admin: User
    member: User
    trainer: User
    super_admin: User


# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def engine(tmp_path):
    engine = create_async_engine(f"sqlite+aiosqlite:///{tmp_path / 'gymsync.db'}")
    await init_db(bind=engine)
    yield engine
    await engine.dispose()


@pytest.fixture
def session_factory(engine):
    return async_sessionmaker(engine, class_=AsyncSession, expire_on_commit=False)


@pytest.fixture
def fake_redis():
    return FakeRedis()


@pytest_asyncio.fixture
async def seed(session_factory) -> Seed:
    """
    GymA, GymB, GymC active; "GymZ Closed" inactive.

    - admin: organization-admin with rows in GymA, GymB and the closed gym
    - member: no rows, directly assigned to GymA
    - trainer: a row in GymB, plus a stale direct assignment to GymA
    - root: super-admin
    """
    async with transaction(session_factory) as db:
        gym_a = Organization(name="GymA", city="Lisbon")
        gym_b = Organization(name="GymB", city="Porto")
        gym_c = Organization(name="GymC", city="Faro")
        gym_closed = Organization(name="GymZ Closed", is_active=False)
        db.add_all([gym_a, gym_b, gym_c, gym_closed])
        await db.flush()

        admin = User(
            email="admin@x.com", name="Admin", password_hash=PASSWORD_HASH, user_type="organization-admin"
        )
        member = User(
            email="member@x.com", name="Member", password_hash=PASSWORD_HASH, user_type="member", gym_id=gym_a.id
        )
        trainer = User(
            email="trainer@x.com", name="Trainer", password_hash=PASSWORD_HASH, user_type="trainer", gym_id=gym_a.id
        )
        super_admin = User(email="root@x.com", name="Root", password_hash=PASSWORD_HASH, user_type="super-admin")
        db.add_all([admin, member, trainer, super_admin])
        await db.flush()

        db.add_all(
            [
                Membership(user_id=admin.id, org_id=gym_a.id, role="organization-admin"),
                Membership(user_id=admin.id, org_id=gym_b.id, role="organization-admin"),
                Membership(user_id=admin.id, org_id=gym_closed.id, role="organization-admin"),
                Membership(user_id=trainer.id, org_id=gym_b.id, role="trainer"),
            ]
        )

    return Seed(
        gym_a=gym_a,
        gym_b=gym_b,
        gym_c=gym_c,
        gym_closed=gym_closed,
        admin=admin,
        member=member,
        trainer=trainer,
        super_admin=super_admin,
    )


# ---------------------------------------------------------------------------
# Services
# ---------------------------------------------------------------------------

@pytest.fixture
def sessions(session_factory):
    return SessionStore(session_factory, ttl=timedelta(hours=1), timeout=STORE_TIMEOUT)


@pytest.fixture
def resolver(session_factory):
    return MembershipResolver(session_factory, timeout=STORE_TIMEOUT)


@pytest.fixture
def cache(fake_redis):
    return AuthorizationCache(fake_redis, ttl_seconds=300, timeout=STORE_TIMEOUT)


@pytest.fixture
def lockout(fake_redis):
    return RedisLockoutPolicy(fake_redis, max_attempts=5, window_seconds=900, timeout=STORE_TIMEOUT)


@pytest.fixture
def verifier(session_factory, lockout):
    return CredentialVerifier(session_factory, lockout, timeout=STORE_TIMEOUT)


@pytest.fixture
def gate(sessions, resolver, cache):
    return AuthorizationGate(sessions, resolver, cache)


@pytest.fixture
def switcher(session_factory, sessions, resolver, cache):
    return ActiveContextSwitchController(session_factory, sessions, resolver, cache, timeout=STORE_TIMEOUT)


@pytest.fixture
def access(session_factory, verifier, sessions, resolver, switcher, gate):
    return AccessService(session_factory, verifier, sessions, resolver, switcher, gate, timeout=STORE_TIMEOUT)


@pytest.fixture
def reset_sender():
    return CapturingSender()


@pytest.fixture
def resets(session_factory, sessions, lockout, reset_sender):
    return PasswordResetService(
        session_factory,
        sessions,
        lockout,
        reset_sender,
        reset_ttl=timedelta(hours=1),
        setup_ttl=timedelta(days=7),
        min_password_length=8,
        timeout=STORE_TIMEOUT,
    )


# ---------------------------------------------------------------------------
# HTTP
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def client(session_factory, fake_redis, reset_sender):
    app.dependency_overrides[get_session_factory] = lambda: session_factory
    app.dependency_overrides[get_redis] = lambda: fake_redis
    app.dependency_overrides[get_reset_link_sender] = lambda: reset_sender
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as ac:
        yield ac
    app.dependency_overrides.clear()


def bearer(token: str) -> dict[str, str]:
    return {"Authorization": f"Bearer {token}"}


async def login(client: AsyncClient, email: str, password: str = PASSWORD, **extra) -> dict:
    resp = await client.post("/auth/login", json={"email": email, "password": password, **extra})
    assert resp.status_code == 200, resp.text
    return resp.json()


async def expire_now(session_factory, token: str) -> None:
    """Push a session's expiry into the past without waiting for it."""
    async with transaction(session_factory) as db:
        await db.execute(
            update(AuthSession)
            .where(AuthSession.token_hash == hash_session_token(token))
            .values(expires_at=utcnow() - timedelta(seconds=1))
        )
