"""Time utilities with timezone-aware defaults."""

from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone

SECONDS_PER_DAY = 86_400


def utc_now() -> datetime:
    """Return current UTC time with tzinfo."""

    return datetime.now(timezone.utc)


def as_utc(value: datetime | None) -> datetime | None:
    """Normalize a stored timestamp to an aware UTC datetime.

    SQLite hands DateTime columns back without tzinfo; every timestamp in the
    schema is written in UTC, so naive values are tagged rather than shifted.
    """

    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def ceil_days(delta: timedelta) -> int:
    return math.ceil(delta.total_seconds() / SECONDS_PER_DAY)


__all__ = ["SECONDS_PER_DAY", "as_utc", "ceil_days", "utc_now"]
