"""Timestamps as stored in the job database: ISO-8601 strings in UTC."""

from datetime import datetime, timedelta, timezone


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def utc_now_iso() -> str:
    return utc_now().isoformat()


def parse_iso_timestamp(timestamp: str) -> datetime:
    """Parse a stored timestamp into an aware datetime.

    Accepts a trailing ``Z``; naive values are taken to be UTC.

    Raises:
        ValueError: Not an ISO-8601 timestamp.
    """
    if timestamp.endswith("Z"):
        timestamp = timestamp[:-1] + "+00:00"
    parsed = datetime.fromisoformat(timestamp)
    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed


def iso_before(delta: timedelta, now: datetime | None = None) -> str:
    """Retention cutoff: the timestamp ``delta`` before ``now``."""
    if now is None:
        now = utc_now()
    return (now - delta).isoformat()
