"""Naive-UTC datetime helpers.

Timestamps are stored as naive UTC (matching the DB columns); anything
timezone-aware coming in is converted before comparison.
"""

from datetime import datetime, timezone


def utcnow() -> datetime:
    """Current time as naive UTC."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def as_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values pass through."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def ts_to_naive(ts: int | float | None) -> datetime | None:
    """Convert a Unix timestamp (seconds) to naive UTC datetime."""
    if ts is None:
        return None
    return datetime.fromtimestamp(ts, tz=timezone.utc).replace(tzinfo=None)


def period_key(now: datetime) -> str:
    """Calendar month key for usage counters, e.g. ``"2024-02"``."""
    return f"{now.year:04d}-{now.month:02d}"
