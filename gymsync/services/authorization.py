"""
Authorization Gate.

Consulted on every protected request. Resolves (identity, active gym) from
the session and either rejects the request or hands the handler an
``AuthorizedContext``, the only object downstream code may use to learn who
is acting, as what, in which gym.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass
from typing import Optional

import structlog
from redis.asyncio import Redis

from gymsync.core.config import Settings
from gymsync.core.errors import (
    ForbiddenOrganization,
    OrganizationSelectionRequired,
    SessionNotFound,
    TemporaryUnavailable,
    Unauthenticated,
)
from gymsync.core.timeouts import bounded
from gymsync.models.user import User
from gymsync.schemas.common import UserType
from gymsync.services.memberships import MembershipResolver
from gymsync.services.sessions import SessionStore

log = structlog.get_logger()


@dataclass(frozen=True)
class AuthorizedContext:
    """Who is acting, with which role, in which gym."""

    identity_id: uuid.UUID
    organization_id: Optional[uuid.UUID]
    role: str
    user_type: str
    bypass: bool = False  # super-admin acting outside its active gym


class AuthorizationCache:
    """Per (identity, gym) role cache in Redis. Never a source of truth."""

    def __init__(self, redis: Redis, *, ttl_seconds: int, timeout: float):
        self.redis = redis
        self.ttl_seconds = ttl_seconds
        self.timeout = timeout

    @staticmethod
    def key(user_id: uuid.UUID, org_id: uuid.UUID) -> str:
        return f"gym:authz:{user_id}:{org_id}"

    async def get_role(self, user_id: uuid.UUID, org_id: uuid.UUID) -> Optional[str]:
        return await bounded(
            self.redis.get(self.key(user_id, org_id)), timeout=self.timeout, operation="authz_cache.get"
        )

    async def set_role(self, user_id: uuid.UUID, org_id: uuid.UUID, role: str) -> None:
        await bounded(
            self.redis.setex(self.key(user_id, org_id), self.ttl_seconds, role),
            timeout=self.timeout,
            operation="authz_cache.set",
        )

    async def invalidate(self, user_id: uuid.UUID, org_id: uuid.UUID) -> None:
        await bounded(
            self.redis.delete(self.key(user_id, org_id)), timeout=self.timeout, operation="authz_cache.invalidate"
        )

    @classmethod
    def from_settings(cls, redis: Redis, settings: Settings) -> "AuthorizationCache":
        return cls(redis, ttl_seconds=settings.authz_cache_ttl_seconds, timeout=settings.store_timeout_seconds)


class AuthorizationGate:
    def __init__(
        self,
        sessions: SessionStore,
        resolver: MembershipResolver,
        cache: Optional[AuthorizationCache] = None,
    ):
        self.sessions = sessions
        self.resolver = resolver
        self.cache = cache

    async def authorize(
        self,
        token: Optional[str],
        required_organization_id: Optional[uuid.UUID] = None,
        *,
        organization_scoped: bool = True,
    ) -> AuthorizedContext:
        """Resolve the caller's context or raise.

        ``required_organization_id`` pins the request to one gym (e.g. a path
        parameter). ``organization_scoped=False`` lets a session without a
        usable active gym through, for the selection flow itself; such a
        context carries no organization.
        """
        if not token:
            raise Unauthenticated()

        auth_session = await self.sessions.get(token)
        if auth_session is None:
            raise SessionNotFound()

        user = await self.resolver.load_user(auth_session.user_id)
        if user is None or not user.is_active:
            raise SessionNotFound()

        active_org_id = auth_session.active_org_id

        if user.user_type == UserType.SUPER_ADMIN.value:
            return await self._authorize_super_admin(
                user, active_org_id, required_organization_id, organization_scoped
            )

        if active_org_id is None:
            if organization_scoped or required_organization_id is not None:
                raise OrganizationSelectionRequired()
            return self._without_organization(user)

        if required_organization_id is not None and required_organization_id != active_org_id:
            log.warning(
                "authz.organization_mismatch",
                user_id=str(user.id),
                active_org_id=str(active_org_id),
                required_org_id=str(required_organization_id),
            )
            raise ForbiddenOrganization()

        role = await self._role_for(user, active_org_id)
        if role is None:
            log.warning("authz.membership_missing", user_id=str(user.id), org_id=str(active_org_id))
            if organization_scoped or required_organization_id is not None:
                raise ForbiddenOrganization()
            # Access to the active gym is gone; the caller has to pick another.
            return self._without_organization(user)

        return AuthorizedContext(
            identity_id=user.id,
            organization_id=active_org_id,
            role=role,
            user_type=user.user_type,
        )

    async def _authorize_super_admin(
        self,
        user: User,
        active_org_id: Optional[uuid.UUID],
        required_organization_id: Optional[uuid.UUID],
        organization_scoped: bool,
    ) -> AuthorizedContext:
        """Cross-tenant access for super-admins. Every bypass is audit-logged."""
        org_id = required_organization_id or active_org_id
        if org_id is None:
            if organization_scoped:
                raise OrganizationSelectionRequired()
            return self._without_organization(user)

        if not await self.resolver.is_member(user, org_id):
            if organization_scoped or required_organization_id is not None:
                raise ForbiddenOrganization()
            return self._without_organization(user)

        bypass = org_id != active_org_id
        if bypass:
            log.warning(
                "authz.super_admin_bypass",
                user_id=str(user.id),
                active_org_id=str(active_org_id) if active_org_id else None,
                target_org_id=str(org_id),
            )
        return AuthorizedContext(
            identity_id=user.id,
            organization_id=org_id,
            role=user.user_type,
            user_type=user.user_type,
            bypass=bypass,
        )

    @staticmethod
    def _without_organization(user: User) -> AuthorizedContext:
        return AuthorizedContext(
            identity_id=user.id,
            organization_id=None,
            role=user.user_type,
            user_type=user.user_type,
        )

    async def _role_for(self, user: User, org_id: uuid.UUID) -> Optional[str]:
        if self.cache is not None:
            try:
                cached = await self.cache.get_role(user.id, org_id)
            except TemporaryUnavailable:
                cached = None
            if cached is not None:
                return cached

        role = await self.resolver.role_in(user, org_id)
        if role is not None and self.cache is not None:
            try:
                await self.cache.set_role(user.id, org_id, role)
            except TemporaryUnavailable:
                log.warning("authz.cache_write_skipped", user_id=str(user.id), org_id=str(org_id))
        return role
