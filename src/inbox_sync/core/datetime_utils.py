"""Datetime helpers shared across the application."""

from __future__ import annotations

from datetime import UTC, date, datetime, timedelta

__all__ = [
    "ensure_utc",
    "parse_datetime",
    "serialize_datetime",
    "utc_now",
    "window_start",
]


def utc_now() -> datetime:
    """Return the current time as an aware UTC datetime."""
    return datetime.now(tz=UTC)


def ensure_utc(value: datetime | None) -> datetime | None:
    """Return ``value`` in UTC, treating naive values as already UTC."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=UTC)
    return value.astimezone(UTC)


def serialize_datetime(value: datetime | None) -> str | None:
    """Serialise ``value`` to a UTC ISO 8601 string that sorts chronologically."""
    normalized = ensure_utc(value)
    return normalized.isoformat() if normalized is not None else None


def parse_datetime(value: str | None, *, assume_utc: bool = True) -> datetime | None:
    """Parse an ISO 8601 string into a ``datetime`` instance."""
    if value is None:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None and assume_utc:
        return parsed.replace(tzinfo=UTC)
    return parsed


def window_start(days: int, *, today: date | None = None) -> date:
    """Return the first day of a backfill window of ``days`` days."""
    reference = today or utc_now().date()
    return reference - timedelta(days=days)
