"""
Active-gym switching.

The membership check, the session write and the authorization-cache
invalidation all happen inside one database transaction. The membership row
is read with a shared lock, so a concurrent revocation either commits before
the check (and the switch is refused) or waits until the switch commits (and
then force-expires the session it just switched).
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker

from gymsync.core.database import transaction
from gymsync.core.errors import ForbiddenOrganization, SessionNotFound
from gymsync.core.timeouts import bounded
from gymsync.models.session import AuthSession
from gymsync.services.authorization import AuthorizationCache
from gymsync.services.memberships import MembershipResolver
from gymsync.services.sessions import SessionStore

log = structlog.get_logger()


class ActiveContextSwitchController:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        sessions: SessionStore,
        resolver: MembershipResolver,
        cache: Optional[AuthorizationCache] = None,
        *,
        timeout: float,
    ):
        self.session_factory = session_factory
        self.sessions = sessions
        self.resolver = resolver
        self.cache = cache
        self.timeout = timeout

    async def set_active(self, token: str, org_id: uuid.UUID) -> AuthSession:
        """Make ``org_id`` the session's active gym.

        Raises ``SessionNotFound`` for unknown/expired tokens and
        ``ForbiddenOrganization`` when the identity is not a member right now.
        Re-selecting the current gym succeeds without touching storage or cache.
        """

        async def _switch() -> tuple[AuthSession, Optional[uuid.UUID], bool]:
            async with transaction(self.session_factory) as db:
                auth_session = await self.sessions.get(token, db)
                if auth_session is None:
                    raise SessionNotFound()

                user = await self.resolver.load_user(auth_session.user_id, db)
                if user is None or not user.is_active:
                    raise SessionNotFound()

                if not await self.resolver.is_member(user, org_id, db, lock=True):
                    log.warning(
                        "gym.switch_forbidden",
                        user_id=str(user.id),
                        requested_org_id=str(org_id),
                    )
                    raise ForbiddenOrganization()

                previous = auth_session.active_org_id
                if previous == org_id:
                    return auth_session, previous, False

                updated = await self.sessions.replace_active_org(token, org_id, db)
                if updated is None:
                    raise SessionNotFound()

                # Inside the transaction: a failed invalidation rolls the switch back.
                if previous is not None and self.cache is not None:
                    await self.cache.invalidate(user.id, previous)
                return updated, previous, True

        updated, previous, changed = await bounded(
            _switch(), timeout=self.timeout, operation="context_switch.set_active"
        )
        if changed:
            log.info(
                "gym.switched",
                user_id=str(updated.user_id),
                from_org_id=str(previous) if previous else None,
                to_org_id=str(org_id),
            )
        return updated
