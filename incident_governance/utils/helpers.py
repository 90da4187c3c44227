"""Shared date/time helpers.

as_utc:        normalise naive (SQLite) or aware datetimes to UTC-aware
iso_utc:       canonical second-precision ISO-8601 "Z" string (fingerprints, snapshots)
parse_datetime: request/ORM input → aware datetime, ValidationError on bad input
parse_date:    request input → date, ValidationError on bad input
"""
from __future__ import annotations

from datetime import date, datetime, timezone

from incident_governance.core.exceptions import ValidationError


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: datetime | None) -> datetime | None:
    """Normalise a datetime to UTC-aware regardless of whether SQLite stored it naive.

    SQLite's DateTime columns return naive datetimes; PostgreSQL returns tz-aware.
    All comparisons against ``utcnow()`` go through this helper so the same code
    works in both environments.
    """
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def iso_utc(dt: datetime | None) -> str | None:
    """Second-precision UTC ISO-8601 string, e.g. ``2026-01-05T10:00:00Z``."""
    dt = as_utc(dt)
    if dt is None:
        return None
    return dt.replace(microsecond=0).strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_datetime(value, field: str = "timestamp") -> datetime | None:
    """Parse an ISO-8601 string (``Z`` suffix allowed) or datetime to an aware datetime.

    Returns None for None/empty input. Raises ValidationError otherwise.
    """
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return as_utc(value)
    try:
        text = str(value).strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return as_utc(datetime.fromisoformat(text))
    except (ValueError, TypeError):
        raise ValidationError(
            f"{field} must be an ISO-8601 timestamp", details={field: value}
        ) from None


def parse_date(value, field: str = "date") -> date | None:
    """Parse ``YYYY-MM-DD`` (or a datetime string → its date). None for empty input."""
    if value is None or value == "":
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return date.fromisoformat(str(value))
    except (ValueError, TypeError):
        pass
    try:
        return datetime.fromisoformat(str(value)).date()
    except (ValueError, TypeError):
        raise ValidationError(
            f"{field} must be an ISO-8601 date (YYYY-MM-DD)", details={field: value}
        ) from None


def minutes_between(start: datetime, end: datetime) -> int:
    """Whole minutes from *start* to *end*, clamped at 0."""
    delta = as_utc(end) - as_utc(start)
    return max(0, int(delta.total_seconds() // 60))
