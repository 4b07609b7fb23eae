"""Tests for UTC datetime helpers."""

from datetime import datetime, timedelta, timezone

from mediashrink.core.datetime_utils import (
    iso_before,
    parse_iso_timestamp,
    utc_now,
    utc_now_iso,
)


class TestUtcNow:
    """Tests for utc_now and utc_now_iso."""

    def test_is_timezone_aware(self):
        """utc_now returns an aware datetime in UTC."""
        now = utc_now()
        assert now.tzinfo is not None
        assert now.utcoffset() == timedelta(0)

    def test_iso_round_trips(self):
        """utc_now_iso output parses back to an aware datetime."""
        parsed = parse_iso_timestamp(utc_now_iso())
        assert parsed.tzinfo is not None


class TestParseIsoTimestamp:
    """Tests for parse_iso_timestamp."""

    def test_z_suffix(self):
        """A trailing Z is treated as UTC."""
        parsed = parse_iso_timestamp("2024-01-15T10:30:00Z")
        assert parsed == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)

    def test_naive_timestamp_is_utc(self):
        """Timestamps without an offset are assumed to be UTC."""
        parsed = parse_iso_timestamp("2024-01-15T10:30:00")
        assert parsed.tzinfo == timezone.utc

    def test_explicit_offset_is_kept(self):
        """Non-UTC offsets are preserved."""
        parsed = parse_iso_timestamp("2024-01-15T12:30:00+02:00")
        assert parsed == datetime(2024, 1, 15, 10, 30, tzinfo=timezone.utc)


class TestIsoBefore:
    """Tests for iso_before."""

    def test_subtracts_delta(self):
        """iso_before returns the timestamp delta before now."""
        now = datetime(2024, 1, 15, 12, 0, tzinfo=timezone.utc)
        cutoff = iso_before(timedelta(days=7), now=now)
        assert parse_iso_timestamp(cutoff) == datetime(
            2024, 1, 8, 12, 0, tzinfo=timezone.utc
        )
