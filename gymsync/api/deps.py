"""
FastAPI dependencies wiring the access core into request handlers.

Every request builds its own service objects from the shared session factory
and Redis pool; nothing about the caller is kept in module state. Handlers
receive an ``AuthorizedContext`` and nothing else about the session.
"""

from __future__ import annotations

import uuid
from datetime import timedelta
from typing import Optional

from fastapi import Depends, HTTPException, Request
from redis.asyncio import Redis
from sqlalchemy.ext.asyncio import async_sessionmaker

from gymsync.core.config import Settings, get_settings
from gymsync.core.database import get_session_factory
from gymsync.core.redis import get_redis
from gymsync.schemas.common import UserType
from gymsync.services.access import AccessService
from gymsync.services.authorization import AuthorizationCache, AuthorizationGate, AuthorizedContext
from gymsync.services.context_switch import ActiveContextSwitchController
from gymsync.services.credentials import CredentialVerifier, RedisLockoutPolicy
from gymsync.services.memberships import MembershipResolver
from gymsync.services.password_reset import LogOnlySender, PasswordResetService, ResetLinkSender
from gymsync.services.sessions import SessionStore


def get_request_token(request: Request, settings: Settings = Depends(get_settings)) -> Optional[str]:
    """Session token from ``Authorization: Bearer`` (API clients) or the session cookie (browsers)."""
    authorization = request.headers.get("Authorization")
    if authorization and authorization.startswith("Bearer "):
        token = authorization[7:].strip()
        if token:
            return token
    return request.cookies.get(settings.session_cookie_name)


def get_session_store(
    factory: async_sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> SessionStore:
    return SessionStore(
        factory,
        ttl=timedelta(minutes=settings.session_ttl_minutes),
        timeout=settings.store_timeout_seconds,
    )


def get_membership_resolver(
    factory: async_sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
) -> MembershipResolver:
    return MembershipResolver(factory, timeout=settings.store_timeout_seconds)


def get_authz_cache(
    redis: Redis = Depends(get_redis),
    settings: Settings = Depends(get_settings),
) -> AuthorizationCache:
    return AuthorizationCache.from_settings(redis, settings)


def get_gate(
    sessions: SessionStore = Depends(get_session_store),
    resolver: MembershipResolver = Depends(get_membership_resolver),
    cache: AuthorizationCache = Depends(get_authz_cache),
) -> AuthorizationGate:
    return AuthorizationGate(sessions, resolver, cache)


def get_lockout_policy(
    redis: Redis = Depends(get_redis),
    settings: Settings = Depends(get_settings),
) -> RedisLockoutPolicy:
    return RedisLockoutPolicy.from_settings(redis, settings)


def get_reset_link_sender() -> ResetLinkSender:
    """Override to plug in an outbound mailer."""
    return LogOnlySender()


def get_password_reset_service(
    factory: async_sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
    sessions: SessionStore = Depends(get_session_store),
    lockout: RedisLockoutPolicy = Depends(get_lockout_policy),
    sender: ResetLinkSender = Depends(get_reset_link_sender),
) -> PasswordResetService:
    return PasswordResetService(
        factory,
        sessions,
        lockout,
        sender,
        reset_ttl=timedelta(minutes=settings.password_reset_ttl_minutes),
        setup_ttl=timedelta(minutes=settings.account_setup_ttl_minutes),
        min_password_length=settings.min_password_length,
        timeout=settings.store_timeout_seconds,
    )


def get_access_service(
    factory: async_sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
    lockout: RedisLockoutPolicy = Depends(get_lockout_policy),
    sessions: SessionStore = Depends(get_session_store),
    resolver: MembershipResolver = Depends(get_membership_resolver),
    cache: AuthorizationCache = Depends(get_authz_cache),
    gate: AuthorizationGate = Depends(get_gate),
) -> AccessService:
    verifier = CredentialVerifier(factory, lockout, timeout=settings.store_timeout_seconds)
    switcher = ActiveContextSwitchController(
        factory, sessions, resolver, cache, timeout=settings.store_timeout_seconds
    )
    return AccessService(
        factory,
        verifier,
        sessions,
        resolver,
        switcher,
        gate,
        timeout=settings.store_timeout_seconds,
    )


# ---------------------------------------------------------------------------
# Authorization dependencies
# ---------------------------------------------------------------------------

async def require_context(
    token: Optional[str] = Depends(get_request_token),
    gate: AuthorizationGate = Depends(get_gate),
) -> AuthorizedContext:
    """Any gym-scoped route: the session must have an active gym."""
    return await gate.authorize(token)


async def require_gym_context(
    gymId: uuid.UUID,
    token: Optional[str] = Depends(get_request_token),
    gate: AuthorizationGate = Depends(get_gate),
) -> AuthorizedContext:
    """Routes pinned to ``/gyms/{gymId}``: the active gym must be that gym."""
    return await gate.authorize(token, gymId)


async def require_gym_admin(
    auth: AuthorizedContext = Depends(require_gym_context),
) -> AuthorizedContext:
    """Requires the organization-admin role in the pinned gym (or a super-admin)."""
    if auth.role not in (UserType.ORGANIZATION_ADMIN.value, UserType.SUPER_ADMIN.value):
        raise HTTPException(status_code=403, detail="Gym administrator access required")
    return auth


async def require_super_admin(
    token: Optional[str] = Depends(get_request_token),
    gate: AuthorizationGate = Depends(get_gate),
) -> AuthorizedContext:
    """Platform administration; no active gym needed."""
    auth = await gate.authorize(token, organization_scoped=False)
    if auth.user_type != UserType.SUPER_ADMIN.value:
        raise HTTPException(status_code=403, detail="Super-admin access required")
    return auth
