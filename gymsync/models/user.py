"""User (identity) model."""

from typing import Optional
import uuid

from sqlmodel import Field, SQLModel

from .base import TimestampMixin, UUIDMixin


class User(UUIDMixin, TimestampMixin, SQLModel, table=True):
    __tablename__ = "users"

    email: str = Field(unique=True, index=True, nullable=False)  # stored lower-cased
    name: Optional[str] = None
    password_hash: Optional[str] = Field(default=None)  # bcrypt hash
    user_type: str = Field(nullable=False, default="member")  # member | trainer | organization-admin | super-admin
    # Direct gym assignment for members/trainers without explicit membership rows
    gym_id: Optional[uuid.UUID] = Field(default=None, foreign_key="organizations.id", index=True)
    is_active: bool = Field(default=True, nullable=False)
