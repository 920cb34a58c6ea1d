"""
User service: self-service registration and platform user administration.

Changes that alter what a user can reach (deactivation, a new user type, a
moved gym assignment) end the affected sessions in the same transaction and
drop cached roles, the same way membership revocation does.
"""

from __future__ import annotations

import asyncio
import uuid
from typing import Optional

import structlog
from fastapi import HTTPException
from sqlalchemy import delete
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from gymsync.core.security import hash_password
from gymsync.models.base import utcnow
from gymsync.models.membership import Membership
from gymsync.models.organization import Organization
from gymsync.models.password_reset import PasswordResetToken
from gymsync.models.user import User
from gymsync.schemas.auth import RegisterRequest
from gymsync.schemas.common import SELF_SERVICE_USER_TYPES, UserType
from gymsync.schemas.users import AdminUserCreateRequest, AdminUserUpdateRequest
from gymsync.services.authorization import AuthorizationCache
from gymsync.services.credentials import normalize_email
from gymsync.services.sessions import SessionStore

log = structlog.get_logger()


def validate_password_length(password: str, min_length: int) -> None:
    if len(password) < min_length:
        raise HTTPException(status_code=400, detail=f"Password must be at least {min_length} characters")


async def _ensure_email_free(email: str, session: AsyncSession, *, exclude: Optional[uuid.UUID] = None) -> None:
    stmt = select(User.id).where(User.email == email)
    if exclude is not None:
        stmt = stmt.where(User.id != exclude)
    result = await session.execute(stmt)
    if result.first() is not None:
        raise HTTPException(status_code=409, detail="Email already registered")


async def _check_gym_assignment(user_type: str, gym_id: Optional[uuid.UUID], session: AsyncSession) -> None:
    if gym_id is None:
        return
    if user_type not in {t.value for t in SELF_SERVICE_USER_TYPES}:
        raise HTTPException(status_code=400, detail="Only members and trainers can be assigned to a gym directly")
    if await session.get(Organization, gym_id) is None:
        raise HTTPException(status_code=404, detail="Gym not found")


async def register_user(req: RegisterRequest, session: AsyncSession, *, min_password_length: int) -> User:
    """Create a member or trainer account. Gym access is granted separately by an admin."""
    if req.user_type not in SELF_SERVICE_USER_TYPES:
        raise HTTPException(status_code=403, detail="This account type cannot self-register")

    validate_password_length(req.password, min_password_length)

    email = normalize_email(req.email)
    await _ensure_email_free(email, session)

    user = User(
        email=email,
        name=req.name or email.split("@")[0],
        password_hash=await asyncio.to_thread(hash_password, req.password),
        user_type=req.user_type.value,
    )
    session.add(user)
    await session.flush()

    log.info("user.registered", user_id=str(user.id), user_type=user.user_type)
    return user


# ---------------------------------------------------------------------------
# Platform administration
# ---------------------------------------------------------------------------

async def list_users(session: AsyncSession) -> list[User]:
    result = await session.execute(select(User).order_by(User.email))
    return list(result.scalars().all())


async def get_user(user_id: uuid.UUID, session: AsyncSession) -> User:
    user = await session.get(User, user_id)
    if not user:
        raise HTTPException(status_code=404, detail="User not found")
    return user


async def create_user(req: AdminUserCreateRequest, session: AsyncSession, *, min_password_length: int) -> User:
    """Create an account of any type. Without a password the user finishes setup from a link."""
    email = normalize_email(req.email)
    await _ensure_email_free(email, session)
    await _check_gym_assignment(req.user_type.value, req.gym_id, session)

    password_hash = None
    if req.password is not None:
        validate_password_length(req.password, min_password_length)
        password_hash = await asyncio.to_thread(hash_password, req.password)

    user = User(
        email=email,
        name=req.name or email.split("@")[0],
        password_hash=password_hash,
        user_type=req.user_type.value,
        gym_id=req.gym_id,
    )
    session.add(user)
    await session.flush()

    log.info("user.created", user_id=str(user.id), user_type=user.user_type, gym_id=str(req.gym_id) if req.gym_id else None)
    return user


async def _reachable_gym_ids(user: User, session: AsyncSession) -> set[uuid.UUID]:
    result = await session.execute(select(Membership.org_id).where(Membership.user_id == user.id))
    org_ids = set(result.scalars().all())
    if user.gym_id is not None:
        org_ids.add(user.gym_id)
    return org_ids


async def _forget_cached_roles(user: User, session: AsyncSession, cache: Optional[AuthorizationCache]) -> None:
    if cache is None:
        return
    for org_id in await _reachable_gym_ids(user, session):
        await cache.invalidate(user.id, org_id)


async def update_user(
    user: User,
    req: AdminUserUpdateRequest,
    session: AsyncSession,
    sessions: SessionStore,
    cache: Optional[AuthorizationCache] = None,
) -> User:
    """Partial update. Deactivation ends every session; moving ``gym_id`` ends sessions in the old gym."""
    changes = req.model_dump(exclude_unset=True)

    if changes.get("email") is not None:
        changes["email"] = normalize_email(changes["email"])
        await _ensure_email_free(changes["email"], session, exclude=user.id)
    if "gym_id" in changes:
        await _check_gym_assignment(user.user_type, changes["gym_id"], session)

    deactivating = user.is_active and changes.get("is_active") is False
    previous_gym = user.gym_id
    moving = "gym_id" in changes and changes["gym_id"] != previous_gym

    for key, value in changes.items():
        if value is None and key in ("email", "is_active"):
            continue
        setattr(user, key, value)
    user.updated_at = utcnow()
    session.add(user)
    await session.flush()

    if deactivating:
        await sessions.delete_for_user(user.id, db=session)
        await _forget_cached_roles(user, session, cache)
        log.info("user.deactivated", user_id=str(user.id))
    elif moving and previous_gym is not None:
        await sessions.expire_for_organization(previous_gym, user_id=user.id, db=session)
        if cache is not None:
            await cache.invalidate(user.id, previous_gym)

    log.info("user.updated", user_id=str(user.id), fields=sorted(changes))
    return user


async def change_user_type(
    user: User,
    user_type: UserType,
    session: AsyncSession,
    sessions: SessionStore,
    cache: Optional[AuthorizationCache] = None,
) -> User:
    """Switch a user's type. Membership resolution depends on it, so open sessions end."""
    if user.user_type == user_type.value:
        return user

    old_type = user.user_type
    user.user_type = user_type.value
    user.updated_at = utcnow()
    session.add(user)
    await session.flush()

    ended = await sessions.delete_for_user(user.id, db=session)
    await _forget_cached_roles(user, session, cache)
    log.info(
        "user.type_changed",
        user_id=str(user.id),
        old_type=old_type,
        new_type=user.user_type,
        sessions_ended=ended,
    )
    return user


async def delete_user(
    user: User,
    session: AsyncSession,
    sessions: SessionStore,
    cache: Optional[AuthorizationCache] = None,
) -> None:
    """Remove a user with their sessions, memberships and outstanding reset links."""
    await sessions.delete_for_user(user.id, db=session)
    await _forget_cached_roles(user, session, cache)
    await session.execute(delete(PasswordResetToken).where(PasswordResetToken.user_id == user.id))
    await session.execute(delete(Membership).where(Membership.user_id == user.id))
    await session.delete(user)
    await session.flush()
    log.info("user.deleted", user_id=str(user.id))
