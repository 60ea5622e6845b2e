"""Datetime helpers: timezone-aware UTC values for storage and comparison."""

from __future__ import annotations

from datetime import UTC, datetime

import pendulum


def ensure_aware(value: datetime, default_tz: str = "UTC") -> datetime:
    """Return value with a timezone attached.

    Naive values (how SQLite hands back stored timestamps) are taken to be in
    ``default_tz``. Aware values keep their offset.
    """
    if value.tzinfo is None:
        return value.replace(tzinfo=pendulum.timezone(default_tz))
    return value


def now_utc() -> datetime:
    """Return the current UTC datetime."""
    return datetime.now(UTC)
