"""Function audit log model."""

from __future__ import annotations

from datetime import datetime

from sqlalchemy import ForeignKey, Index, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from fnhub.models.base import Base, UTCDateTime


class FunctionAuditLog(Base):
    """Record of a change made to a function and who (or what) made it."""

    __tablename__ = "function_audit_logs"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    function_id: Mapped[int | None] = mapped_column(
        Integer, ForeignKey("functions.id", ondelete="SET NULL"), nullable=True
    )
    function_name: Mapped[str] = mapped_column(String, nullable=False)
    user_id: Mapped[int] = mapped_column(
        Integer, ForeignKey("users.id", ondelete="CASCADE"), nullable=False
    )
    username: Mapped[str] = mapped_column(String, nullable=False)
    action: Mapped[str] = mapped_column(String, nullable=False)
    operator: Mapped[str] = mapped_column(String, nullable=False)
    operator_detail: Mapped[str | None] = mapped_column(Text, nullable=True)
    after_code: Mapped[str | None] = mapped_column(Text, nullable=True)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(UTCDateTime, nullable=False)

    __table_args__ = (Index("idx_audit_function", "function_id"),)
