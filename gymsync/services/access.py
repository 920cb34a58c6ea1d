"""
Inbound access operations: login, logout, gym listing, gym switching and
current-context lookup. Thin orchestration over the credential verifier,
session store, membership resolver, switch controller and gate.
"""

from __future__ import annotations

import uuid
from dataclasses import dataclass, field
from typing import Optional

import structlog
from sqlalchemy.ext.asyncio import async_sessionmaker

from gymsync.core.database import transaction
from gymsync.core.errors import SessionNotFound, Unauthenticated
from gymsync.core.timeouts import bounded
from gymsync.models.organization import Organization
from gymsync.models.session import AuthSession
from gymsync.models.user import User
from gymsync.schemas.common import UserType
from gymsync.services.authorization import AuthorizationGate, AuthorizedContext
from gymsync.services.context_switch import ActiveContextSwitchController
from gymsync.services.credentials import CredentialVerifier
from gymsync.services.memberships import MembershipResolver
from gymsync.services.sessions import SessionStore

log = structlog.get_logger()


@dataclass
class LoginResult:
    token: str
    session: AuthSession
    user: User
    organizations: list[Organization] = field(default_factory=list)

    @property
    def selection_required(self) -> bool:
        return self.session.active_org_id is None and bool(self.organizations)


@dataclass
class CurrentContext:
    context: AuthorizedContext
    user: User
    organization: Optional[Organization]

    @property
    def selection_required(self) -> bool:
        return self.context.organization_id is None


class AccessService:
    def __init__(
        self,
        session_factory: async_sessionmaker,
        verifier: CredentialVerifier,
        sessions: SessionStore,
        resolver: MembershipResolver,
        switcher: ActiveContextSwitchController,
        gate: AuthorizationGate,
        *,
        timeout: float,
    ):
        self.session_factory = session_factory
        self.verifier = verifier
        self.sessions = sessions
        self.resolver = resolver
        self.switcher = switcher
        self.gate = gate
        self.timeout = timeout

    async def login(self, email: str, password: str, user_type: Optional[str] = None) -> LoginResult:
        """Verify credentials and open a session.

        A single reachable gym becomes the active one straight away;
        several (or a super-admin) leave the session waiting for a selection.
        """
        user = await self.verifier.verify(email, password, user_type)

        async def _open() -> tuple[str, AuthSession, list[Organization]]:
            async with transaction(self.session_factory) as db:
                organizations = await self.resolver.list_memberships(user, db)
                active_org_id = None
                if user.user_type != UserType.SUPER_ADMIN.value and len(organizations) == 1:
                    active_org_id = organizations[0].id
                token, auth_session = await self.sessions.create(user.id, active_org_id, db)
                return token, auth_session, organizations

        token, auth_session, organizations = await bounded(_open(), timeout=self.timeout, operation="access.login")
        log.info(
            "auth.login_success",
            user_id=str(user.id),
            user_type=user.user_type,
            gyms=len(organizations),
            active_org_id=str(auth_session.active_org_id) if auth_session.active_org_id else None,
        )
        return LoginResult(token=token, session=auth_session, user=user, organizations=organizations)

    async def logout(self, token: Optional[str]) -> None:
        """End a session. Unknown, expired or missing tokens are fine."""
        if not token:
            return
        if await self.sessions.delete(token):
            log.info("auth.logout")

    async def list_available_organizations(self, token: Optional[str]) -> list[Organization]:
        context = await self.gate.authorize(token, organization_scoped=False)
        user = await self._load_user(context.identity_id)
        return await self.resolver.list_memberships(user)

    async def set_active_organization(self, token: Optional[str], org_id: uuid.UUID) -> CurrentContext:
        if not token:
            raise Unauthenticated()
        await self.switcher.set_active(token, org_id)
        return await self.get_current_context(token)

    async def get_current_context(self, token: Optional[str]) -> CurrentContext:
        context = await self.gate.authorize(token, organization_scoped=False)
        user = await self._load_user(context.identity_id)
        organization = None
        if context.organization_id is not None:
            organization = await self._load_organization(context.organization_id)
        return CurrentContext(context=context, user=user, organization=organization)

    async def _load_user(self, user_id: uuid.UUID) -> User:
        user = await self.resolver.load_user(user_id)
        if user is None:
            raise SessionNotFound()
        return user

    async def _load_organization(self, org_id: uuid.UUID) -> Optional[Organization]:
        async def _load() -> Optional[Organization]:
            async with transaction(self.session_factory) as db:
                return await db.get(Organization, org_id)

        return await bounded(_load(), timeout=self.timeout, operation="access.load_organization")
