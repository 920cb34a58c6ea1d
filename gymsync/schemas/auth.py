"""
Authentication request/response schemas.
"""

from __future__ import annotations

import uuid
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from gymsync.schemas.common import UserType
from gymsync.schemas.organizations import GymSummary


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str
    name: Optional[str] = None
    user_type: UserType = UserType.MEMBER


class LoginRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=1)
    user_type: Optional[UserType] = None


class UserInfo(BaseModel):
    id: uuid.UUID
    email: str
    name: Optional[str] = None
    user_type: str

    model_config = {"from_attributes": True}


class RegisterResponse(BaseModel):
    user: UserInfo
    message: str


class LoginResponse(BaseModel):
    user: UserInfo
    token: str
    active_gym_id: Optional[uuid.UUID] = None
    selection_required: bool
    available_gyms: list[GymSummary]


class ContextResponse(BaseModel):
    """What the caller is acting as right now."""

    user: UserInfo
    role: str
    active_gym: Optional[GymSummary] = None
    selection_required: bool
