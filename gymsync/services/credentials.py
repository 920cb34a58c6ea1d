"""
Credential verification.

Checks an email/password pair against the stored bcrypt hash. Every failure
mode an attacker could try (unknown email, wrong password, wrong user type,
deactivated account, account without a password) surfaces as the same
``InvalidCredentials``. A lockout policy is consulted before any hash
comparison. Bcrypt runs in a worker thread so a login never stalls the loop.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Protocol

import structlog
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from gymsync.core.config import Settings
from gymsync.core.database import transaction
from gymsync.core.errors import AccountLocked, InvalidCredentials
from gymsync.core.security import DUMMY_PASSWORD_HASH, verify_password
from gymsync.core.timeouts import bounded
from gymsync.models.user import User

log = structlog.get_logger()


def normalize_email(email: str) -> str:
    return email.strip().lower()


class LockoutPolicy(Protocol):
    """Decides whether an email may attempt a password check."""

    async def is_locked(self, email: str) -> bool: ...

    async def record_failure(self, email: str) -> None: ...

    async def reset(self, email: str) -> None: ...


class RedisLockoutPolicy:
    """Fixed-window failed-attempt counter per email, stored in Redis.

    Keys are per normalized email whether or not the account exists, and
    nothing but the counter decides a lock, so a lock reveals nothing about
    registration.
    """

    def __init__(self, redis: Redis, *, max_attempts: int, window_seconds: int, timeout: float):
        self.redis = redis
        self.max_attempts = max_attempts
        self.window_seconds = window_seconds
        self.timeout = timeout

    @staticmethod
    def _key(email: str) -> str:
        return f"gym:lockout:{email}"

    async def is_locked(self, email: str) -> bool:
        raw = await bounded(self.redis.get(self._key(email)), timeout=self.timeout, operation="lockout.get")
        return raw is not None and int(raw) >= self.max_attempts

    async def record_failure(self, email: str) -> None:
        key = self._key(email)
        count = await bounded(self.redis.incr(key), timeout=self.timeout, operation="lockout.incr")
        if count == 1:
            await bounded(
                self.redis.expire(key, self.window_seconds),
                timeout=self.timeout,
                operation="lockout.expire",
            )

    async def reset(self, email: str) -> None:
        await bounded(self.redis.delete(self._key(email)), timeout=self.timeout, operation="lockout.reset")

    @classmethod
    def from_settings(cls, redis: Redis, settings: Settings) -> "RedisLockoutPolicy":
        return cls(
            redis,
            max_attempts=settings.lockout_max_attempts,
            window_seconds=settings.lockout_window_seconds,
            timeout=settings.store_timeout_seconds,
        )


class CredentialVerifier:
    """Stateless email/password check against the user table."""

    def __init__(
        self,
        session_factory: async_sessionmaker,
        lockout: LockoutPolicy,
        *,
        timeout: float,
    ):
        self.session_factory = session_factory
        self.lockout = lockout
        self.timeout = timeout

    async def find_by_email(self, email: str, db: Optional[AsyncSession] = None) -> Optional[User]:
        async def _load() -> Optional[User]:
            async with transaction(self.session_factory, db) as session:
                result = await session.execute(select(User).where(User.email == normalize_email(email)))
                return result.scalar_one_or_none()

        return await bounded(_load(), timeout=self.timeout, operation="credentials.find_by_email")

    async def verify(self, email: str, password: str, user_type: Optional[str] = None) -> User:
        """Return the matching user or raise ``InvalidCredentials`` / ``AccountLocked``."""
        email = normalize_email(email)
        user = await self.find_by_email(email)

        if await self.lockout.is_locked(email):
            log.warning("auth.login_locked", email=email)
            raise AccountLocked()

        # Compare against a dummy hash for unknown emails so timing matches.
        stored_hash = user.password_hash if user and user.password_hash else DUMMY_PASSWORD_HASH
        password_ok = await asyncio.to_thread(verify_password, password, stored_hash)

        if user is None or not user.password_hash or not password_ok:
            await self.lockout.record_failure(email)
            log.warning("auth.login_failure", email=email, reason="bad_credentials")
            raise InvalidCredentials()

        if not user.is_active:
            await self.lockout.record_failure(email)
            log.warning("auth.login_failure", email=email, reason="deactivated")
            raise InvalidCredentials()

        if user_type is not None and user.user_type != user_type:
            await self.lockout.record_failure(email)
            log.warning("auth.login_failure", email=email, reason="user_type_mismatch")
            raise InvalidCredentials()

        await self.lockout.reset(email)
        return user
