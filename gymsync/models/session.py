"""Login session model. Keyed by the SHA-256 of the opaque token."""

from datetime import datetime
from typing import Optional
import uuid

import sqlalchemy as sa
from sqlmodel import Field, SQLModel

from .base import utcnow


class AuthSession(SQLModel, table=True):
    __tablename__ = "sessions"

    token_hash: str = Field(primary_key=True, max_length=64)
    user_id: uuid.UUID = Field(foreign_key="users.id", nullable=False, index=True)
    # Null until a gym is selected; otherwise a gym the user belongs to
    active_org_id: Optional[uuid.UUID] = Field(default=None, foreign_key="organizations.id", index=True)
    created_at: datetime = Field(
        default_factory=utcnow,
        nullable=False,
        sa_type=sa.DateTime(timezone=True),
    )
    expires_at: datetime = Field(nullable=False, index=True, sa_type=sa.DateTime(timezone=True))
