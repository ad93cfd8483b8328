"""
Time helpers.

All timestamps are stored as naive UTC datetimes so that PostgreSQL and
SQLite round-trip them identically.
"""
from datetime import datetime, timezone
from typing import Optional


def utcnow() -> datetime:
    """Current time as a naive UTC datetime."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def to_naive_utc(value: datetime) -> datetime:
    """Convert an aware datetime to naive UTC; naive values are assumed UTC."""
    if value.tzinfo is None:
        return value
    return value.astimezone(timezone.utc).replace(tzinfo=None)


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 string (``Z`` suffix allowed) into naive UTC."""
    if not value:
        return None
    return to_naive_utc(datetime.fromisoformat(value.replace("Z", "+00:00")))


def parse_local_timestamp(value: Optional[str]) -> Optional[datetime]:
    """
    Parse a provider-local wall clock time.

    Strava suffixes local times with ``Z`` even though they are not UTC,
    so the offset is dropped rather than converted.
    """
    if not value:
        return None
    return datetime.fromisoformat(value.replace("Z", "+00:00")).replace(tzinfo=None)


def from_epoch(seconds: float) -> datetime:
    """Epoch seconds to naive UTC."""
    return datetime.fromtimestamp(seconds, tz=timezone.utc).replace(tzinfo=None)


def to_epoch(value: datetime) -> int:
    """Naive UTC (or aware) datetime to integer epoch seconds."""
    if value.tzinfo is None:
        value = value.replace(tzinfo=timezone.utc)
    return int(value.timestamp())
