"""
Platform user-administration and password reset schemas.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, EmailStr, Field

from gymsync.schemas.common import UserType


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class AdminUserCreateRequest(BaseModel):
    email: EmailStr
    name: Optional[str] = Field(None, max_length=100)
    user_type: UserType
    password: Optional[str] = Field(None, description="Omit to send an account setup link instead")
    gym_id: Optional[uuid.UUID] = None


class AdminUserUpdateRequest(BaseModel):
    email: Optional[EmailStr] = None
    name: Optional[str] = Field(None, max_length=100)
    gym_id: Optional[uuid.UUID] = None
    is_active: Optional[bool] = None


class UserTypeUpdateRequest(BaseModel):
    user_type: UserType


class PasswordResetRequest(BaseModel):
    email: EmailStr


class PasswordResetConfirm(BaseModel):
    token: str = Field(..., min_length=1)
    password: str


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class AdminUserResponse(BaseModel):
    id: uuid.UUID
    email: str
    name: Optional[str] = None
    user_type: str
    gym_id: Optional[uuid.UUID] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime

    model_config = {"from_attributes": True}
