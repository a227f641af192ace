"""
Unit tests for relative time filters.
"""

from datetime import UTC, datetime, timedelta, timezone

import pytest

from gatehouse.store import parse_since, parse_timestamp

NOW = datetime(2026, 3, 1, 12, 0, 0, tzinfo=UTC)


class TestParseSince:
    """Tests for parse_since."""

    @pytest.mark.parametrize(
        "value,delta",
        [
            ("6h", timedelta(hours=6)),
            ("2d", timedelta(days=2)),
            ("1w", timedelta(weeks=1)),
            ("3m", timedelta(days=90)),
            ("hour", timedelta(hours=1)),
            ("day", timedelta(days=1)),
            ("week", timedelta(weeks=1)),
            ("month", timedelta(days=30)),
            ("Week", timedelta(weeks=1)),
        ],
    )
    def test_relative(self, value: str, delta: timedelta) -> None:
        assert parse_since(value, now=NOW) == NOW - delta

    def test_iso_date(self) -> None:
        assert parse_since("2026-01-15", now=NOW) == datetime(2026, 1, 15, tzinfo=UTC)

    def test_iso_datetime_with_offset(self) -> None:
        parsed = parse_since("2026-01-15T09:30:00+02:00", now=NOW)
        assert parsed == datetime(2026, 1, 15, 7, 30, tzinfo=UTC)

    def test_garbage_defaults_to_day(self) -> None:
        assert parse_since("whenever", now=NOW) == NOW - timedelta(hours=24)

    def test_whitespace_ignored(self) -> None:
        assert parse_since(" 2d ", now=NOW) == NOW - timedelta(days=2)


class TestParseTimestamp:
    """Tests for parse_timestamp."""

    def test_naive_is_utc(self) -> None:
        assert parse_timestamp("2026-01-15T10:00:00") == datetime(2026, 1, 15, 10, tzinfo=UTC)

    def test_aware_kept(self) -> None:
        parsed = parse_timestamp("2026-01-15T10:00:00-05:00")
        assert parsed.utcoffset() == timezone(timedelta(hours=-5)).utcoffset(None)

    def test_empty_and_invalid(self) -> None:
        assert parse_timestamp(None) is None
        assert parse_timestamp("") is None
        assert parse_timestamp("yesterday") is None
