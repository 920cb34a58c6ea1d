"""
Password reset and account setup links.

A link carries an opaque ``gr_`` token that is stored only as its SHA-256
digest. Issuing a link replaces any earlier one for the same user. Completing
it sets the new password, burns the token and ends every session the user
holds, all in one transaction.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timedelta
from typing import Optional, Protocol

import structlog
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from gymsync.core.database import transaction
from gymsync.core.errors import InvalidResetToken, TemporaryUnavailable
from gymsync.core.security import generate_reset_token, hash_password, hash_reset_token
from gymsync.core.timeouts import bounded
from gymsync.models.base import as_utc, utcnow
from gymsync.models.password_reset import PasswordResetToken
from gymsync.models.user import User
from gymsync.services.credentials import LockoutPolicy, normalize_email
from gymsync.services.sessions import SessionStore
from gymsync.services.users import validate_password_length

log = structlog.get_logger()

PURPOSE_RESET = "reset"
PURPOSE_SETUP = "setup"


class ResetLinkSender(Protocol):
    """Delivers a reset or setup link to the account owner (e.g. by email)."""

    async def send(self, user: User, token: str, *, purpose: str, expires_at: datetime) -> None: ...


class LogOnlySender:
    """Records that a link is ready. Real delivery is an outbound mailer's job."""

    async def send(self, user: User, token: str, *, purpose: str, expires_at: datetime) -> None:
        log.info("password_reset.link_ready", user_id=str(user.id), purpose=purpose, expires_at=expires_at.isoformat())


class PasswordResetService:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        sessions: SessionStore,
        lockout: LockoutPolicy,
        sender: ResetLinkSender,
        *,
        reset_ttl: timedelta,
        setup_ttl: timedelta,
        min_password_length: int,
        timeout: float,
    ):
        self.session_factory = session_factory
        self.sessions = sessions
        self.lockout = lockout
        self.sender = sender
        self.reset_ttl = reset_ttl
        self.setup_ttl = setup_ttl
        self.min_password_length = min_password_length
        self.timeout = timeout

    async def issue(self, user: User, *, purpose: str = PURPOSE_RESET, db: Optional[AsyncSession] = None) -> str:
        """Store a fresh link for ``user``, hand it to the sender and return the raw token."""
        token = generate_reset_token()
        expires_at = utcnow() + (self.setup_ttl if purpose == PURPOSE_SETUP else self.reset_ttl)

        async def _issue() -> None:
            async with transaction(self.session_factory, db) as session:
                await session.execute(delete(PasswordResetToken).where(PasswordResetToken.user_id == user.id))
                session.add(
                    PasswordResetToken(
                        token_hash=hash_reset_token(token),
                        user_id=user.id,
                        purpose=purpose,
                        expires_at=expires_at,
                    )
                )
                await session.flush()

        await bounded(_issue(), timeout=self.timeout, operation="password_reset.issue")
        await self.sender.send(user, token, purpose=purpose, expires_at=expires_at)
        log.info("password_reset.issued", user_id=str(user.id), purpose=purpose)
        return token

    async def request(self, email: str) -> None:
        """Send a reset link if ``email`` belongs to an active account.

        Returns nothing either way so callers cannot tell the cases apart.
        """
        email = normalize_email(email)

        async def _find() -> Optional[User]:
            async with transaction(self.session_factory) as session:
                result = await session.execute(
                    select(User).where(User.email == email, User.is_active == True)  # noqa: E712
                )
                return result.scalar_one_or_none()

        user = await bounded(_find(), timeout=self.timeout, operation="password_reset.find_user")
        if user is None:
            log.info("password_reset.no_account", email=email)
            return
        await self.issue(user)

    async def complete(self, token: str, password: str) -> User:
        """Set a new password from a link. Raises ``InvalidResetToken`` for unknown, used or expired links."""
        validate_password_length(password, self.min_password_length)
        password_hash = await asyncio.to_thread(hash_password, password)
        token_hash = hash_reset_token(token)

        async def _complete() -> tuple[User, int]:
            async with transaction(self.session_factory) as session:
                result = await session.execute(
                    select(PasswordResetToken).where(PasswordResetToken.token_hash == token_hash).with_for_update()
                )
                link = result.scalar_one_or_none()
                if link is None or as_utc(link.expires_at) <= utcnow():
                    raise InvalidResetToken()

                user = await session.get(User, link.user_id)
                if user is None or not user.is_active:
                    raise InvalidResetToken()

                user.password_hash = password_hash
                user.updated_at = utcnow()
                session.add(user)
                await session.execute(delete(PasswordResetToken).where(PasswordResetToken.user_id == user.id))
                ended = await self.sessions.delete_for_user(user.id, db=session)
                return user, ended

        user, ended = await bounded(_complete(), timeout=self.timeout, operation="password_reset.complete")

        try:
            await self.lockout.reset(user.email)
        except TemporaryUnavailable:
            log.warning("password_reset.lockout_reset_skipped", user_id=str(user.id))

        log.info("password_reset.completed", user_id=str(user.id), sessions_ended=ended)
        return user
