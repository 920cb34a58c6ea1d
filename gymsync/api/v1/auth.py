"""
Authentication endpoints.

- Email/password registration (members and trainers)
- Login: opens a session and auto-selects the gym when only one is reachable
- Logout (idempotent)
- Current context
- Password reset: request a link, then set a new password with it
"""

from __future__ import annotations

from typing import Optional

import structlog
from fastapi import APIRouter, Depends, Response
from sqlalchemy.ext.asyncio import async_sessionmaker

from gymsync.api.deps import get_access_service, get_password_reset_service, get_request_token
from gymsync.api.v1.gyms import context_response
from gymsync.core.config import get_settings
from gymsync.core.database import get_session_factory, transaction
from gymsync.core.security import generate_csrf_token
from gymsync.schemas.auth import (
    ContextResponse,
    LoginRequest,
    LoginResponse,
    RegisterRequest,
    RegisterResponse,
    UserInfo,
)
from gymsync.schemas.organizations import GymSummary
from gymsync.schemas.users import PasswordResetConfirm, PasswordResetRequest
from gymsync.services import users as user_service
from gymsync.services.access import AccessService
from gymsync.services.password_reset import PasswordResetService

log = structlog.get_logger()
settings = get_settings()
router = APIRouter()

# Cookie config
COOKIE_KWARGS = {
    "httponly": True,
    "secure": not settings.debug,  # allow non-HTTPS in dev
    "samesite": "lax",
    "path": "/",
    "max_age": settings.session_ttl_minutes * 60,
}


def _set_session_cookies(response: Response, token: str, csrf: str) -> None:
    """Set the session and CSRF cookies on a response."""
    response.set_cookie(key=settings.session_cookie_name, value=token, **COOKIE_KWARGS)
    response.set_cookie(
        key=settings.csrf_cookie_name,
        value=csrf,
        httponly=False,  # JS must read this
        secure=not settings.debug,
        samesite="lax",
        path="/",
        max_age=settings.session_ttl_minutes * 60,
    )


@router.post("/register", response_model=RegisterResponse, status_code=201)
async def register(
    body: RegisterRequest,
    factory: async_sessionmaker = Depends(get_session_factory),
):
    """Register a member or trainer with email/password."""
    async with transaction(factory) as session:
        user = await user_service.register_user(
            body, session, min_password_length=settings.min_password_length
        )
    return RegisterResponse(user=UserInfo.model_validate(user), message="Registration successful")


@router.post("/login", response_model=LoginResponse)
async def login(
    body: LoginRequest,
    response: Response,
    access: AccessService = Depends(get_access_service),
):
    """Authenticate with email/password and receive a session."""
    result = await access.login(
        body.email, body.password, body.user_type.value if body.user_type else None
    )
    _set_session_cookies(response, result.token, generate_csrf_token())
    return LoginResponse(
        user=UserInfo.model_validate(result.user),
        token=result.token,
        active_gym_id=result.session.active_org_id,
        selection_required=result.selection_required,
        available_gyms=[GymSummary.model_validate(org) for org in result.organizations],
    )


@router.post("/logout")
async def logout(
    response: Response,
    token: Optional[str] = Depends(get_request_token),
    access: AccessService = Depends(get_access_service),
):
    """Invalidate the current session. Safe to call repeatedly."""
    await access.logout(token)
    response.delete_cookie(settings.session_cookie_name, path="/")
    response.delete_cookie(settings.csrf_cookie_name, path="/")
    return {"message": "Logged out"}


@router.get("/me", response_model=ContextResponse)
async def me(
    token: Optional[str] = Depends(get_request_token),
    access: AccessService = Depends(get_access_service),
):
    """Who the session belongs to and which gym it is acting in."""
    return context_response(await access.get_current_context(token))


@router.post("/password-reset/request", status_code=202)
async def request_password_reset(
    body: PasswordResetRequest,
    resets: PasswordResetService = Depends(get_password_reset_service),
):
    """Send a reset link. The answer never reveals whether the email is registered."""
    await resets.request(body.email)
    return {"message": "If the email is registered, a reset link has been sent"}


@router.post("/password-reset/confirm")
async def confirm_password_reset(
    body: PasswordResetConfirm,
    response: Response,
    resets: PasswordResetService = Depends(get_password_reset_service),
):
    """Set a new password from a reset or setup link. Every existing session ends."""
    await resets.complete(body.token, body.password)
    response.delete_cookie(settings.session_cookie_name, path="/")
    response.delete_cookie(settings.csrf_cookie_name, path="/")
    return {"message": "Password updated"}
