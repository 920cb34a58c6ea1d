"""
Session persistence.

Sessions live in the ``sessions`` table keyed by the SHA-256 of an opaque
token. The active gym is only ever changed by a single conditional UPDATE,
so readers see either the old or the new gym, never a cleared one, and an
UPDATE racing a logout DELETE matches zero rows instead of recreating the
session.
"""

from __future__ import annotations

import uuid
from datetime import datetime, timedelta
from typing import Optional

import structlog
from sqlalchemy import delete, update
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from gymsync.core.database import transaction
from gymsync.core.security import generate_session_token, hash_session_token
from gymsync.core.timeouts import bounded
from gymsync.models.base import as_utc, utcnow
from gymsync.models.session import AuthSession

log = structlog.get_logger()


class SessionStore:
    def __init__(self, session_factory: async_sessionmaker, *, ttl: timedelta, timeout: float):
        self.session_factory = session_factory
        self.ttl = ttl
        self.timeout = timeout

    async def create(
        self,
        user_id: uuid.UUID,
        active_org_id: Optional[uuid.UUID] = None,
        db: Optional[AsyncSession] = None,
    ) -> tuple[str, AuthSession]:
        """Persist a new session. Returns (raw token, session row)."""
        token = generate_session_token()
        now = utcnow()
        auth_session = AuthSession(
            token_hash=hash_session_token(token),
            user_id=user_id,
            active_org_id=active_org_id,
            created_at=now,
            expires_at=now + self.ttl,
        )

        async def _create() -> AuthSession:
            async with transaction(self.session_factory, db) as session:
                session.add(auth_session)
                await session.flush()
                return auth_session

        await bounded(_create(), timeout=self.timeout, operation="sessions.create")
        log.info("session.created", user_id=str(user_id), active_org_id=str(active_org_id) if active_org_id else None)
        return token, auth_session

    async def get(self, token: str, db: Optional[AsyncSession] = None) -> Optional[AuthSession]:
        """Return the live session for a token, or None if unknown or expired."""

        async def _get() -> Optional[AuthSession]:
            async with transaction(self.session_factory, db) as session:
                result = await session.execute(
                    select(AuthSession)
                    .where(AuthSession.token_hash == hash_session_token(token))
                    .execution_options(populate_existing=True)
                )
                return result.scalar_one_or_none()

        auth_session = await bounded(_get(), timeout=self.timeout, operation="sessions.get")
        if auth_session is None or self.is_expired(auth_session):
            return None
        return auth_session

    async def replace_active_org(
        self,
        token: str,
        org_id: Optional[uuid.UUID],
        db: Optional[AsyncSession] = None,
    ) -> Optional[AuthSession]:
        """Overwrite the active gym in one statement.

        Returns the updated session, or None if the token no longer names a
        live session (logged out or expired in the meantime).
        """
        token_hash = hash_session_token(token)

        async def _replace() -> Optional[AuthSession]:
            async with transaction(self.session_factory, db) as session:
                result = await session.execute(
                    update(AuthSession)
                    .where(AuthSession.token_hash == token_hash, AuthSession.expires_at > utcnow())
                    .values(active_org_id=org_id)
                    .execution_options(synchronize_session=False)
                )
                if result.rowcount != 1:
                    return None
                refreshed = await session.execute(
                    select(AuthSession)
                    .where(AuthSession.token_hash == token_hash)
                    .execution_options(populate_existing=True)
                )
                return refreshed.scalar_one_or_none()

        return await bounded(_replace(), timeout=self.timeout, operation="sessions.replace_active_org")

    async def delete(self, token: str, db: Optional[AsyncSession] = None) -> bool:
        """Delete a session. Idempotent; returns whether a row was removed."""

        async def _delete() -> bool:
            async with transaction(self.session_factory, db) as session:
                result = await session.execute(
                    delete(AuthSession).where(AuthSession.token_hash == hash_session_token(token))
                )
                return result.rowcount > 0

        return await bounded(_delete(), timeout=self.timeout, operation="sessions.delete")

    async def expire_for_organization(
        self,
        org_id: uuid.UUID,
        user_id: Optional[uuid.UUID] = None,
        db: Optional[AsyncSession] = None,
    ) -> int:
        """Force-expire sessions whose active gym is ``org_id`` (optionally one user's only)."""

        async def _expire() -> int:
            async with transaction(self.session_factory, db) as session:
                stmt = delete(AuthSession).where(AuthSession.active_org_id == org_id)
                if user_id is not None:
                    stmt = stmt.where(AuthSession.user_id == user_id)
                result = await session.execute(stmt)
                return result.rowcount

        count = await bounded(_expire(), timeout=self.timeout, operation="sessions.expire_for_organization")
        if count:
            log.info(
                "session.force_expired",
                org_id=str(org_id),
                user_id=str(user_id) if user_id else None,
                count=count,
            )
        return count

    async def delete_for_user(self, user_id: uuid.UUID, db: Optional[AsyncSession] = None) -> int:
        """End every session a user holds, e.g. after a password reset or deactivation."""

        async def _delete() -> int:
            async with transaction(self.session_factory, db) as session:
                result = await session.execute(delete(AuthSession).where(AuthSession.user_id == user_id))
                return result.rowcount

        count = await bounded(_delete(), timeout=self.timeout, operation="sessions.delete_for_user")
        if count:
            log.info("session.user_sessions_ended", user_id=str(user_id), count=count)
        return count

    async def purge_expired(self, db: Optional[AsyncSession] = None) -> int:
        """Delete sessions past their expiry. ``get`` already treats them as missing."""

        async def _purge() -> int:
            async with transaction(self.session_factory, db) as session:
                result = await session.execute(delete(AuthSession).where(AuthSession.expires_at <= utcnow()))
                return result.rowcount

        count = await bounded(_purge(), timeout=self.timeout, operation="sessions.purge_expired")
        if count:
            log.info("session.expired_purged", count=count)
        return count

    @staticmethod
    def is_expired(auth_session: AuthSession, now: Optional[datetime] = None) -> bool:
        return as_utc(auth_session.expires_at) <= (now or utcnow())
