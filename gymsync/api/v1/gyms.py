"""
Gym context endpoints.

GET    /api/v1/gyms/available                        Gyms the caller may act within
POST   /api/v1/gyms/set-active                       Switch the session's active gym
GET    /api/v1/gyms/current                          Current context
GET    /api/v1/gyms/active/members                   Members of the active gym
GET    /api/v1/gyms/{gymId}/members                  Members of a pinned gym
PUT    /api/v1/gyms/{gymId}/memberships/{userId}     Grant/update a membership (gym admin)
DELETE /api/v1/gyms/{gymId}/memberships/{userId}     Revoke a membership (gym admin)
"""

from __future__ import annotations

import uuid
from typing import Optional

from fastapi import APIRouter, Depends
from sqlalchemy.ext.asyncio import async_sessionmaker

from gymsync.api.deps import (
    get_access_service,
    get_authz_cache,
    get_request_token,
    get_session_store,
    require_context,
    require_gym_admin,
    require_gym_context,
)
from gymsync.core.database import get_session_factory, transaction
from gymsync.schemas.auth import ContextResponse, UserInfo
from gymsync.schemas.common import UserType
from gymsync.schemas.organizations import (
    GymListResponse,
    GymMemberListResponse,
    GymSummary,
    MembershipGrantRequest,
    MembershipResponse,
    SetActiveGymRequest,
)
from gymsync.services import organizations as gym_service
from gymsync.services.access import AccessService, CurrentContext
from gymsync.services.authorization import AuthorizationCache, AuthorizedContext
from gymsync.services.sessions import SessionStore

router = APIRouter()


def context_response(current: CurrentContext) -> ContextResponse:
    return ContextResponse(
        user=UserInfo.model_validate(current.user),
        role=current.context.role,
        active_gym=GymSummary.model_validate(current.organization) if current.organization else None,
        selection_required=current.selection_required,
    )


@router.get("/available", response_model=GymListResponse)
async def list_available_gyms(
    token: Optional[str] = Depends(get_request_token),
    access: AccessService = Depends(get_access_service),
):
    """Gyms the caller may select, ordered by name."""
    orgs = await access.list_available_organizations(token)
    return GymListResponse(data=[GymSummary.model_validate(org) for org in orgs])


@router.post("/set-active", response_model=ContextResponse)
async def set_active_gym(
    body: SetActiveGymRequest,
    token: Optional[str] = Depends(get_request_token),
    access: AccessService = Depends(get_access_service),
):
    """Make a gym the session's active gym. Takes effect on the next request."""
    return context_response(await access.set_active_organization(token, body.gym_id))


@router.get("/current", response_model=ContextResponse)
async def current_gym(
    token: Optional[str] = Depends(get_request_token),
    access: AccessService = Depends(get_access_service),
):
    return context_response(await access.get_current_context(token))


@router.get("/active/members", response_model=GymMemberListResponse)
async def list_active_gym_members(
    auth: AuthorizedContext = Depends(require_context),
    factory: async_sessionmaker = Depends(get_session_factory),
):
    """Members of whichever gym the session is acting in."""
    async with transaction(factory) as session:
        members = await gym_service.list_gym_members(auth.organization_id, session)
    return GymMemberListResponse(data=members)


@router.get("/{gymId}/members", response_model=GymMemberListResponse)
async def list_gym_members(
    auth: AuthorizedContext = Depends(require_gym_context),
    factory: async_sessionmaker = Depends(get_session_factory),
):
    async with transaction(factory) as session:
        members = await gym_service.list_gym_members(auth.organization_id, session)
    return GymMemberListResponse(data=members)


@router.put("/{gymId}/memberships/{userId}", response_model=MembershipResponse)
async def grant_membership(
    userId: uuid.UUID,
    body: MembershipGrantRequest,
    auth: AuthorizedContext = Depends(require_gym_admin),
    factory: async_sessionmaker = Depends(get_session_factory),
    cache: AuthorizationCache = Depends(get_authz_cache),
):
    """Grant access to the gym, or change the role held in it.

    Appointing or changing a gym administrator takes a super-admin.
    """
    async with transaction(factory) as session:
        org = await gym_service.get_gym(auth.organization_id, session)
        membership = await gym_service.grant_membership(
            org,
            userId,
            body.role.value,
            session,
            cache,
            actor_is_super_admin=auth.user_type == UserType.SUPER_ADMIN.value,
        )
    return MembershipResponse.model_validate(membership)


@router.delete("/{gymId}/memberships/{userId}")
async def revoke_membership(
    userId: uuid.UUID,
    auth: AuthorizedContext = Depends(require_gym_admin),
    factory: async_sessionmaker = Depends(get_session_factory),
    sessions: SessionStore = Depends(get_session_store),
    cache: AuthorizationCache = Depends(get_authz_cache),
):
    """Revoke access to the gym. Sessions currently active in it are ended."""
    async with transaction(factory) as session:
        org = await gym_service.get_gym(auth.organization_id, session)
        expired = await gym_service.revoke_membership(
            org,
            userId,
            session,
            sessions,
            cache,
            actor_is_super_admin=auth.user_type == UserType.SUPER_ADMIN.value,
        )
    return {"message": "Membership revoked", "sessions_expired": expired}
