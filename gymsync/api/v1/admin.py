"""
Platform administration endpoints (super-admin only).

GET    /api/v1/admin/gyms                   List gyms (optionally inactive ones too)
POST   /api/v1/admin/gyms                   Create a gym
PATCH  /api/v1/admin/gyms/{gymId}           Update a gym; deactivation ends its sessions
GET    /api/v1/admin/users                  List users
POST   /api/v1/admin/users                  Create a user of any type
GET    /api/v1/admin/users/{userId}         Read a user
PATCH  /api/v1/admin/users/{userId}         Update a user; deactivation ends their sessions
PATCH  /api/v1/admin/users/{userId}/type    Change a user's type
DELETE /api/v1/admin/users/{userId}         Delete a user
"""

from __future__ import annotations

import uuid

from fastapi import APIRouter, Depends, HTTPException, Response
from sqlalchemy.ext.asyncio import async_sessionmaker

from gymsync.api.deps import get_authz_cache, get_password_reset_service, get_session_store, require_super_admin
from gymsync.core.config import Settings, get_settings
from gymsync.core.database import get_session_factory, transaction
from gymsync.schemas.organizations import GymCreateRequest, GymResponse, GymUpdateRequest
from gymsync.schemas.users import (
    AdminUserCreateRequest,
    AdminUserResponse,
    AdminUserUpdateRequest,
    UserTypeUpdateRequest,
)
from gymsync.services import organizations as gym_service
from gymsync.services import users as user_service
from gymsync.services.authorization import AuthorizationCache, AuthorizedContext
from gymsync.services.password_reset import PURPOSE_SETUP, PasswordResetService
from gymsync.services.sessions import SessionStore

router = APIRouter()


@router.get("/gyms", response_model=list[GymResponse])
async def list_gyms(
    include_inactive: bool = False,
    auth: AuthorizedContext = Depends(require_super_admin),
    factory: async_sessionmaker = Depends(get_session_factory),
):
    async with transaction(factory) as session:
        gyms = await gym_service.list_gyms(session, include_inactive=include_inactive)
    return [GymResponse.model_validate(gym) for gym in gyms]


@router.post("/gyms", response_model=GymResponse, status_code=201)
async def create_gym(
    body: GymCreateRequest,
    auth: AuthorizedContext = Depends(require_super_admin),
    factory: async_sessionmaker = Depends(get_session_factory),
):
    async with transaction(factory) as session:
        gym = await gym_service.create_gym(body, session)
    return GymResponse.model_validate(gym)


@router.patch("/gyms/{gymId}", response_model=GymResponse)
async def update_gym(
    gymId: uuid.UUID,
    body: GymUpdateRequest,
    auth: AuthorizedContext = Depends(require_super_admin),
    factory: async_sessionmaker = Depends(get_session_factory),
    sessions: SessionStore = Depends(get_session_store),
):
    """Partial update. Setting ``is_active`` to false ends every session active in the gym."""
    async with transaction(factory) as session:
        gym = await gym_service.get_gym(gymId, session)
        gym = await gym_service.update_gym(gym, body, session, sessions)
    return GymResponse.model_validate(gym)


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------

def _not_self(auth: AuthorizedContext, user_id: uuid.UUID) -> None:
    if auth.identity_id == user_id:
        raise HTTPException(status_code=400, detail="Super-admins cannot change their own account here")


@router.get("/users", response_model=list[AdminUserResponse])
async def list_users(
    auth: AuthorizedContext = Depends(require_super_admin),
    factory: async_sessionmaker = Depends(get_session_factory),
):
    async with transaction(factory) as session:
        users = await user_service.list_users(session)
    return [AdminUserResponse.model_validate(user) for user in users]


@router.post("/users", response_model=AdminUserResponse, status_code=201)
async def create_user(
    body: AdminUserCreateRequest,
    auth: AuthorizedContext = Depends(require_super_admin),
    factory: async_sessionmaker = Depends(get_session_factory),
    settings: Settings = Depends(get_settings),
    resets: PasswordResetService = Depends(get_password_reset_service),
):
    """Create an account. Without a password an account setup link is sent instead."""
    async with transaction(factory) as session:
        user = await user_service.create_user(body, session, min_password_length=settings.min_password_length)
    if user.password_hash is None:
        await resets.issue(user, purpose=PURPOSE_SETUP)
    return AdminUserResponse.model_validate(user)


@router.get("/users/{userId}", response_model=AdminUserResponse)
async def get_user(
    userId: uuid.UUID,
    auth: AuthorizedContext = Depends(require_super_admin),
    factory: async_sessionmaker = Depends(get_session_factory),
):
    async with transaction(factory) as session:
        user = await user_service.get_user(userId, session)
    return AdminUserResponse.model_validate(user)


@router.patch("/users/{userId}", response_model=AdminUserResponse)
async def update_user(
    userId: uuid.UUID,
    body: AdminUserUpdateRequest,
    auth: AuthorizedContext = Depends(require_super_admin),
    factory: async_sessionmaker = Depends(get_session_factory),
    sessions: SessionStore = Depends(get_session_store),
    cache: AuthorizationCache = Depends(get_authz_cache),
):
    """Partial update. Setting ``is_active`` to false ends every session the user holds."""
    if body.is_active is False:
        _not_self(auth, userId)
    async with transaction(factory) as session:
        user = await user_service.get_user(userId, session)
        user = await user_service.update_user(user, body, session, sessions, cache)
    return AdminUserResponse.model_validate(user)


@router.patch("/users/{userId}/type", response_model=AdminUserResponse)
async def change_user_type(
    userId: uuid.UUID,
    body: UserTypeUpdateRequest,
    auth: AuthorizedContext = Depends(require_super_admin),
    factory: async_sessionmaker = Depends(get_session_factory),
    sessions: SessionStore = Depends(get_session_store),
    cache: AuthorizationCache = Depends(get_authz_cache),
):
    _not_self(auth, userId)
    async with transaction(factory) as session:
        user = await user_service.get_user(userId, session)
        user = await user_service.change_user_type(user, body.user_type, session, sessions, cache)
    return AdminUserResponse.model_validate(user)


@router.delete("/users/{userId}", status_code=204)
async def delete_user(
    userId: uuid.UUID,
    auth: AuthorizedContext = Depends(require_super_admin),
    factory: async_sessionmaker = Depends(get_session_factory),
    sessions: SessionStore = Depends(get_session_store),
    cache: AuthorizationCache = Depends(get_authz_cache),
):
    _not_self(auth, userId)
    async with transaction(factory) as session:
        user = await user_service.get_user(userId, session)
        await user_service.delete_user(user, session, sessions, cache)
    return Response(status_code=204)
