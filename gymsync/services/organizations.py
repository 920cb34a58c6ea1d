"""
Gym service: business logic for gym CRUD and membership grants/revocations.

Revoking access (membership removal or gym deactivation) force-expires the
sessions currently active in that gym, in the same transaction.
"""

from __future__ import annotations

import uuid
from typing import Optional

import structlog
from fastapi import HTTPException
from sqlalchemy import and_, delete, or_
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from gymsync.models.base import utcnow
from gymsync.models.membership import Membership
from gymsync.models.organization import Organization
from gymsync.models.user import User
from gymsync.schemas.common import SELF_SERVICE_USER_TYPES, MembershipRole
from gymsync.schemas.organizations import GymCreateRequest, GymUpdateRequest
from gymsync.services.authorization import AuthorizationCache
from gymsync.services.memberships import DirectAssignmentSource, ExplicitMembershipSource
from gymsync.services.sessions import SessionStore

log = structlog.get_logger()

_explicit = ExplicitMembershipSource()
_direct = DirectAssignmentSource()


async def list_gyms(session: AsyncSession, *, include_inactive: bool = False) -> list[Organization]:
    stmt = select(Organization).order_by(Organization.name, Organization.id)
    if not include_inactive:
        stmt = stmt.where(Organization.is_active == True)  # noqa: E712
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def get_gym(org_id: uuid.UUID, session: AsyncSession) -> Organization:
    org = await session.get(Organization, org_id)
    if not org:
        raise HTTPException(status_code=404, detail="Gym not found")
    return org


async def create_gym(req: GymCreateRequest, session: AsyncSession) -> Organization:
    org = Organization(**req.model_dump())
    session.add(org)
    await session.flush()
    log.info("gym.created", org_id=str(org.id), name=org.name)
    return org


async def update_gym(
    org: Organization,
    req: GymUpdateRequest,
    session: AsyncSession,
    sessions: SessionStore,
) -> Organization:
    """Apply a partial update. Deactivating a gym ends every session active in it."""
    changes = req.model_dump(exclude_unset=True)
    deactivating = org.is_active and changes.get("is_active") is False

    for key, value in changes.items():
        setattr(org, key, value)
    org.updated_at = utcnow()
    session.add(org)
    await session.flush()

    if deactivating:
        await sessions.expire_for_organization(org.id, db=session)
        log.info("gym.deactivated", org_id=str(org.id))
    else:
        log.info("gym.updated", org_id=str(org.id))
    return org


def _ensure_may_manage(membership: Optional[Membership], role: str, actor_is_super_admin: bool) -> None:
    """Gym administrators are appointed, demoted and removed by super-admins only."""
    if actor_is_super_admin:
        return
    if role == MembershipRole.ORGANIZATION_ADMIN.value or (
        membership is not None and membership.role == MembershipRole.ORGANIZATION_ADMIN.value
    ):
        raise HTTPException(status_code=403, detail="Only super-admins can manage gym administrators")


async def _keep_direct_assignment(user: User, org: Organization, session: AsyncSession) -> Optional[Membership]:
    """Turn a member's direct gym into a membership row before their first explicit grant.

    Direct assignments only count while a user has no rows in active gyms, so
    without this the grant would silently end access to the assigned gym.
    """
    if user.user_type not in {t.value for t in SELF_SERVICE_USER_TYPES}:
        return None
    if user.gym_id is None or user.gym_id == org.id:
        return None
    if await _explicit.has_any(session, user):
        return None
    role = await _direct.role_in(session, user, user.gym_id)
    if role is None:
        return None

    kept = Membership(user_id=user.id, org_id=user.gym_id, role=role)
    session.add(kept)
    log.info("membership.direct_assignment_kept", user_id=str(user.id), org_id=str(user.gym_id), role=role)
    return kept


async def grant_membership(
    org: Organization,
    user_id: uuid.UUID,
    role: str,
    session: AsyncSession,
    cache: Optional[AuthorizationCache] = None,
    *,
    actor_is_super_admin: bool = True,
) -> Membership:
    """Create or update the (user, gym) membership. One row per pair.

    A member or trainer reaching another gym through ``users.gym_id`` keeps
    that gym: the assignment is written out as a row of its own first.
    """
    user = await session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    membership = await session.get(Membership, (user_id, org.id))
    _ensure_may_manage(membership, role, actor_is_super_admin)

    if membership is None:
        await _keep_direct_assignment(user, org, session)
        membership = Membership(user_id=user_id, org_id=org.id, role=role)
        log.info("membership.granted", user_id=str(user_id), org_id=str(org.id), role=role)
    elif membership.role != role:
        log.info(
            "membership.role_changed",
            user_id=str(user_id),
            org_id=str(org.id),
            old_role=membership.role,
            new_role=role,
        )
        membership.role = role
    session.add(membership)
    await session.flush()

    if cache is not None:
        await cache.invalidate(user_id, org.id)
    return membership


async def revoke_membership(
    org: Organization,
    user_id: uuid.UUID,
    session: AsyncSession,
    sessions: SessionStore,
    cache: Optional[AuthorizationCache] = None,
    *,
    actor_is_super_admin: bool = True,
) -> int:
    """Remove a user's access to a gym and force-expire sessions active in it.

    Covers both the membership row and a direct ``gym_id`` assignment.
    Returns the number of sessions ended.
    """
    user = await session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")

    existing = await session.get(Membership, (user_id, org.id))
    _ensure_may_manage(existing, MembershipRole.MEMBER.value, actor_is_super_admin)

    result = await session.execute(
        delete(Membership).where(Membership.user_id == user_id, Membership.org_id == org.id)
    )
    removed = result.rowcount
    if user.gym_id == org.id:
        user.gym_id = None
        user.updated_at = utcnow()
        session.add(user)
        removed += 1
    if not removed:
        raise HTTPException(status_code=404, detail="Membership not found")
    await session.flush()

    expired = await sessions.expire_for_organization(org.id, user_id=user_id, db=session)
    if cache is not None:
        await cache.invalidate(user_id, org.id)

    log.info("membership.revoked", user_id=str(user_id), org_id=str(org.id), sessions_expired=expired)
    return expired


async def list_gym_members(org_id: uuid.UUID, session: AsyncSession) -> list[dict]:
    """Everyone attached to a gym, by membership row or direct assignment.

    A direct assignment only counts for members and trainers without any
    membership row in an active gym, matching how access is resolved.
    """
    with_rows = (
        select(Membership.user_id)
        .join(Organization, Organization.id == Membership.org_id)
        .where(Organization.is_active == True)  # noqa: E712
    )
    direct = and_(
        User.gym_id == org_id,
        User.user_type.in_([t.value for t in SELF_SERVICE_USER_TYPES]),
        User.id.not_in(with_rows),
    )
    result = await session.execute(
        select(User, Membership.role)
        .outerjoin(Membership, (Membership.user_id == User.id) & (Membership.org_id == org_id))
        .where(or_(Membership.org_id == org_id, direct))
        .order_by(User.name, User.email)
    )
    return [
        {
            "id": user.id,
            "email": user.email,
            "name": user.name,
            "user_type": user.user_type,
            "role": role or user.user_type,
            "is_active": user.is_active,
        }
        for user, role in result.all()
    ]
