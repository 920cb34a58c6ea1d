"""
Organization membership resolution.

An identity reaches a gym either through an explicit ``memberships`` row or,
for members and trainers, through the denormalized ``users.gym_id`` field.
Both shapes sit behind ``MembershipSource``; ``source_for`` is the only place
that picks a source by user type. Only active gyms count.
"""

from __future__ import annotations

import uuid
from abc import ABC, abstractmethod
from typing import Optional

from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlmodel import select

from gymsync.core.database import transaction
from gymsync.core.timeouts import bounded
from gymsync.models.membership import Membership
from gymsync.models.organization import Organization
from gymsync.models.user import User
from gymsync.schemas.common import MembershipRole, UserType


class MembershipSource(ABC):
    """Strategy: where an identity's gyms come from."""

    @abstractmethod
    async def list_organizations(self, db: AsyncSession, user: User) -> list[Organization]:
        """Active gyms for the user, ordered by name."""

    @abstractmethod
    async def role_in(
        self, db: AsyncSession, user: User, org_id: uuid.UUID, *, lock: bool = False
    ) -> Optional[str]:
        """The user's role in ``org_id``, or None if not a member.

        ``lock`` holds a shared row lock on the membership until the caller's
        transaction ends.
        """


class ExplicitMembershipSource(MembershipSource):
    """Rows in the ``memberships`` table."""

    async def list_organizations(self, db: AsyncSession, user: User) -> list[Organization]:
        result = await db.execute(
            select(Organization)
            .join(Membership, Membership.org_id == Organization.id)
            .where(Membership.user_id == user.id, Organization.is_active == True)  # noqa: E712
            .order_by(Organization.name, Organization.id)
        )
        return list(result.scalars().all())

    async def role_in(
        self, db: AsyncSession, user: User, org_id: uuid.UUID, *, lock: bool = False
    ) -> Optional[str]:
        stmt = (
            select(Membership.role)
            .join(Organization, Organization.id == Membership.org_id)
            .where(
                Membership.user_id == user.id,
                Membership.org_id == org_id,
                Organization.is_active == True,  # noqa: E712
            )
        )
        if lock:
            stmt = stmt.with_for_update(read=True, of=Membership)
        result = await db.execute(stmt)
        return result.scalar_one_or_none()

    async def has_any(self, db: AsyncSession, user: User) -> bool:
        result = await db.execute(
            select(Membership.org_id)
            .join(Organization, Organization.id == Membership.org_id)
            .where(Membership.user_id == user.id, Organization.is_active == True)  # noqa: E712
            .limit(1)
        )
        return result.first() is not None


class DirectAssignmentSource(MembershipSource):
    """A single gym carried on the user row itself."""

    async def _assigned_gym(self, db: AsyncSession, user: User) -> Optional[Organization]:
        if user.gym_id is None:
            return None
        org = await db.get(Organization, user.gym_id)
        if org is None or not org.is_active:
            return None
        return org

    async def list_organizations(self, db: AsyncSession, user: User) -> list[Organization]:
        org = await self._assigned_gym(db, user)
        return [org] if org is not None else []

    async def role_in(
        self, db: AsyncSession, user: User, org_id: uuid.UUID, *, lock: bool = False
    ) -> Optional[str]:
        if user.gym_id != org_id:
            return None
        if await self._assigned_gym(db, user) is None:
            return None
        if user.user_type in {role.value for role in MembershipRole}:
            return user.user_type
        return MembershipRole.MEMBER.value


class FallbackMembershipSource(MembershipSource):
    """Explicit memberships; the direct assignment only when there are none."""

    def __init__(self, explicit: ExplicitMembershipSource, direct: DirectAssignmentSource):
        self.explicit = explicit
        self.direct = direct

    async def list_organizations(self, db: AsyncSession, user: User) -> list[Organization]:
        orgs = await self.explicit.list_organizations(db, user)
        if orgs:
            return orgs
        return await self.direct.list_organizations(db, user)

    async def role_in(
        self, db: AsyncSession, user: User, org_id: uuid.UUID, *, lock: bool = False
    ) -> Optional[str]:
        role = await self.explicit.role_in(db, user, org_id, lock=lock)
        if role is not None:
            return role
        if await self.explicit.has_any(db, user):
            return None
        return await self.direct.role_in(db, user, org_id, lock=lock)


class AllOrganizationsSource(MembershipSource):
    """Every active gym. Used for super-admins."""

    async def list_organizations(self, db: AsyncSession, user: User) -> list[Organization]:
        result = await db.execute(
            select(Organization)
            .where(Organization.is_active == True)  # noqa: E712
            .order_by(Organization.name, Organization.id)
        )
        return list(result.scalars().all())

    async def role_in(
        self, db: AsyncSession, user: User, org_id: uuid.UUID, *, lock: bool = False
    ) -> Optional[str]:
        org = await db.get(Organization, org_id)
        if org is None or not org.is_active:
            return None
        return UserType.SUPER_ADMIN.value


class MembershipResolver:
    """Answers "which gyms may this identity act within?" against current storage."""

    def __init__(self, session_factory: async_sessionmaker, *, timeout: float):
        self.session_factory = session_factory
        self.timeout = timeout
        self.explicit = ExplicitMembershipSource()
        self.direct = DirectAssignmentSource()
        self.fallback = FallbackMembershipSource(self.explicit, self.direct)
        self.everything = AllOrganizationsSource()

    def source_for(self, user: User) -> MembershipSource:
        if user.user_type == UserType.SUPER_ADMIN.value:
            return self.everything
        if user.user_type == UserType.ORGANIZATION_ADMIN.value:
            return self.explicit
        return self.fallback

    async def load_user(self, user_id: uuid.UUID, db: Optional[AsyncSession] = None) -> Optional[User]:
        async def _load() -> Optional[User]:
            async with transaction(self.session_factory, db) as session:
                result = await session.execute(
                    select(User).where(User.id == user_id).execution_options(populate_existing=True)
                )
                return result.scalar_one_or_none()

        return await bounded(_load(), timeout=self.timeout, operation="memberships.load_user")

    async def list_memberships(self, user: User, db: Optional[AsyncSession] = None) -> list[Organization]:
        """Gyms ``user`` may act within, ordered by name. Empty is a valid answer."""

        async def _list() -> list[Organization]:
            async with transaction(self.session_factory, db) as session:
                return await self.source_for(user).list_organizations(session, user)

        return await bounded(_list(), timeout=self.timeout, operation="memberships.list")

    async def role_in(
        self,
        user: User,
        org_id: uuid.UUID,
        db: Optional[AsyncSession] = None,
        *,
        lock: bool = False,
    ) -> Optional[str]:
        async def _role() -> Optional[str]:
            async with transaction(self.session_factory, db) as session:
                return await self.source_for(user).role_in(session, user, org_id, lock=lock)

        return await bounded(_role(), timeout=self.timeout, operation="memberships.role_in")

    async def is_member(
        self,
        user: User,
        org_id: uuid.UUID,
        db: Optional[AsyncSession] = None,
        *,
        lock: bool = False,
    ) -> bool:
        return await self.role_in(user, org_id, db, lock=lock) is not None
