"""Tests for date helpers."""

from datetime import date, datetime, timedelta, timezone

import pytest

from gtask_sync.utils.dates import (
    end_of_day_rfc3339,
    format_timestamp,
    next_utc_midnight,
    parse_due_date,
    parse_timestamp,
    utc_today,
)


class TestParseDueDate:
    """Tests for parse_due_date."""

    @pytest.mark.parametrize(
        "value,expected",
        [
            ("2024-06-01", date(2024, 6, 1)),
            ("2024-06-01T10:00:00Z", date(2024, 6, 1)),
            ("2024-06-01T23:30:00-02:00", date(2024, 6, 2)),
            (date(2024, 6, 1), date(2024, 6, 1)),
            (datetime(2024, 6, 1, 8, 0), date(2024, 6, 1)),
        ],
    )
    def test_accepted_shapes(self, value, expected):
        """Test the supported due date shapes."""
        assert parse_due_date(value) == expected

    @pytest.mark.parametrize("value", [None, "", "not a date", 42])
    def test_unparseable(self, value):
        """Test that bad values give None."""
        assert parse_due_date(value) is None


class TestTimestamps:
    """Tests for timestamp helpers."""

    def test_naive_timestamp_is_utc(self):
        """Test that naive strings are read as UTC."""
        assert parse_timestamp("2024-06-01T10:00:00") == datetime(
            2024, 6, 1, 10, tzinfo=timezone.utc
        )

    def test_format_uses_z_suffix(self):
        """Test the UTC rendering."""
        assert (
            format_timestamp(datetime(2024, 6, 1, 10, tzinfo=timezone.utc))
            == "2024-06-01T10:00:00Z"
        )
        assert format_timestamp(None) is None

    def test_format_converts_offsets(self):
        """Test that offsets are normalized to UTC."""
        value = datetime(2024, 6, 1, 12, tzinfo=timezone(timedelta(hours=2)))
        assert format_timestamp(value) == "2024-06-01T10:00:00Z"

    def test_end_of_day(self):
        """Test the remote due date format."""
        assert end_of_day_rfc3339(date(2024, 6, 1)) == "2024-06-01T23:59:59.999Z"


class TestUtcDay:
    """Tests for UTC day helpers."""

    def test_utc_today_converts_offset(self):
        """Test that local evening can already be the next UTC day."""
        now = datetime(2024, 6, 1, 23, 0, tzinfo=timezone(timedelta(hours=-3)))
        assert utc_today(now) == date(2024, 6, 2)

    def test_next_midnight(self):
        """Test the quota reset instant."""
        now = datetime(2024, 6, 1, 15, 0, tzinfo=timezone.utc)
        assert next_utc_midnight(now) == datetime(2024, 6, 2, tzinfo=timezone.utc)
