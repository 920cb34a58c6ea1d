"""
Gym-related Pydantic schemas.
"""

from __future__ import annotations

import uuid
from datetime import datetime
from typing import Optional

from pydantic import BaseModel, Field

from gymsync.schemas.common import MembershipRole


# ---------------------------------------------------------------------------
# Request schemas
# ---------------------------------------------------------------------------

class GymCreateRequest(BaseModel):
    name: str = Field(..., min_length=1, max_length=100, description="Gym display name")
    address: Optional[str] = None
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=50)
    zip_code: Optional[str] = Field(None, max_length=15)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[str] = None


class GymUpdateRequest(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    address: Optional[str] = None
    city: Optional[str] = Field(None, max_length=100)
    state: Optional[str] = Field(None, max_length=50)
    zip_code: Optional[str] = Field(None, max_length=15)
    phone: Optional[str] = Field(None, max_length=20)
    email: Optional[str] = None
    is_active: Optional[bool] = None


class SetActiveGymRequest(BaseModel):
    gym_id: uuid.UUID


class MembershipGrantRequest(BaseModel):
    role: MembershipRole = MembershipRole.MEMBER


# ---------------------------------------------------------------------------
# Response schemas
# ---------------------------------------------------------------------------

class GymSummary(BaseModel):
    id: uuid.UUID
    name: str
    city: Optional[str] = None
    state: Optional[str] = None

    model_config = {"from_attributes": True}


class GymResponse(GymSummary):
    address: Optional[str] = None
    zip_code: Optional[str] = None
    phone: Optional[str] = None
    email: Optional[str] = None
    is_active: bool
    created_at: datetime
    updated_at: datetime


class GymListResponse(BaseModel):
    data: list[GymSummary]


class MembershipResponse(BaseModel):
    user_id: uuid.UUID
    org_id: uuid.UUID
    role: str

    model_config = {"from_attributes": True}


class GymMember(BaseModel):
    id: uuid.UUID
    email: str
    name: Optional[str] = None
    user_type: str
    role: str
    is_active: bool


class GymMemberListResponse(BaseModel):
    data: list[GymMember]
