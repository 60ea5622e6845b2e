"""User model."""

from __future__ import annotations

from datetime import datetime
from typing import TYPE_CHECKING

from sqlalchemy import Boolean, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship

from fnhub.models.base import Base, UTCDateTime

if TYPE_CHECKING:
    from fnhub.models.function import CloudFunction
    from fnhub.models.git_config import GitConfig


class User(Base):
    """Application user; owns functions and at most one git configuration."""

    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    username: Mapped[str] = mapped_column(String, nullable=False, unique=True)
    password_hash: Mapped[str] = mapped_column(Text, nullable=False)
    is_admin: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)
    updated_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    functions: Mapped[list[CloudFunction]] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
    git_config: Mapped[GitConfig | None] = relationship(
        back_populates="user", cascade="all, delete-orphan"
    )
