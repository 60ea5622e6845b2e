"""Declarative base and shared column types."""

from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from sqlalchemy import DateTime
from sqlalchemy.orm import DeclarativeBase
from sqlalchemy.types import TypeDecorator

from fnhub.services.datetime_service import ensure_aware


class UTCDateTime(TypeDecorator[datetime]):
    """Timezone-aware datetime column.

    SQLite drops tzinfo on the way out; values read back are re-attached to UTC
    so they compare safely with ``now_utc()``.
    """

    impl = DateTime(timezone=True)
    cache_ok = True

    def process_bind_param(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        return ensure_aware(value).astimezone(UTC)

    def process_result_value(self, value: datetime | None, dialect: Any) -> datetime | None:
        if value is None:
            return None
        return ensure_aware(value)


class Base(DeclarativeBase):
    """Base class for all ORM models."""
