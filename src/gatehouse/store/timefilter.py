"""
Relative time filters for audit queries.

Accepted forms:
    "6h", "2d", "1w", "3m"     N hours / days / weeks / 30-day months
    "hour", "day", "week", "month" (also "24h", "7d", "30d")
    ISO dates and datetimes    "2026-01-15", "2026-01-15T09:30:00+02:00"

Anything else falls back to the last 24 hours.
"""

import re
from datetime import UTC, datetime, timedelta

_RELATIVE = re.compile(r"^(\d+)(h|d|w|m)$")

_UNITS = {
    "h": timedelta(hours=1),
    "d": timedelta(days=1),
    "w": timedelta(weeks=1),
    "m": timedelta(days=30),
}

_NAMED = {
    "hour": timedelta(hours=1),
    "day": timedelta(days=1),
    "week": timedelta(weeks=1),
    "month": timedelta(days=30),
}

DEFAULT_WINDOW = timedelta(hours=24)


def parse_since(value: str, now: datetime | None = None) -> datetime:
    """Turn a filter string into an aware UTC datetime."""
    now = now or datetime.now(UTC)
    value = value.strip()

    match = _RELATIVE.match(value)
    if match:
        count, unit = match.groups()
        return now - int(count) * _UNITS[unit]

    named = _NAMED.get(value.lower())
    if named is not None:
        return now - named

    parsed = parse_timestamp(value)
    if parsed is not None:
        return parsed

    return now - DEFAULT_WINDOW


def parse_timestamp(value: str | None) -> datetime | None:
    """Parse an ISO date/datetime; naive values are taken as UTC."""
    if not value:
        return None
    try:
        parsed = datetime.fromisoformat(value)
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=UTC)
    return parsed
