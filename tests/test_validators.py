"""Tests for timestamp, IP and query validation helpers."""

from datetime import datetime, timedelta

import pytest

from hitstats.core.exceptions import StatsValidationError
from hitstats.core.validators import (
    format_timestamp,
    is_valid_ip,
    parse_timestamp,
    utcnow,
    validate_date_range,
    validate_uris,
)


class TestTimestamps:
    """Wire timestamps are 'yyyy-MM-dd HH:mm:ss', naive UTC."""

    def test_parse_and_format(self):
        parsed = parse_timestamp("2024-03-01 12:30:05")
        assert parsed == datetime(2024, 3, 1, 12, 30, 5)
        assert format_timestamp(parsed) == "2024-03-01 12:30:05"

    def test_parse_rejects_other_formats(self):
        for value in ["2024-03-01T12:30:05", "01.03.2024 12:30:05", "2024-03-01", "garbage"]:
            with pytest.raises(StatsValidationError):
                parse_timestamp(value)

    def test_parse_rejects_empty(self):
        with pytest.raises(StatsValidationError, match="start must not be empty"):
            parse_timestamp("  ", "start")
        with pytest.raises(StatsValidationError):
            parse_timestamp(None)

    def test_utcnow_is_naive_and_whole_seconds(self):
        now = utcnow()
        assert now.tzinfo is None
        assert now.microsecond == 0


class TestIpValidation:

    def test_valid_addresses(self):
        assert is_valid_ip("192.168.0.1")
        assert is_valid_ip("::1")
        assert is_valid_ip("2001:db8::ff00:42:8329")

    def test_invalid_addresses(self):
        for value in ["", "unknown", "256.1.1.1", "1.2.3", "localhost"]:
            assert not is_valid_ip(value), f"Should be invalid: {value}"


class TestDateRange:

    def test_valid_range(self):
        end = utcnow()
        validate_date_range(end - timedelta(days=1), end, max_days=365)

    def test_missing_bounds(self):
        with pytest.raises(StatsValidationError, match="must not be null"):
            validate_date_range(None, utcnow())

    def test_start_after_end(self):
        end = utcnow()
        with pytest.raises(StatsValidationError, match="cannot be after"):
            validate_date_range(end + timedelta(seconds=1), end)

    def test_future_start(self):
        start = utcnow() + timedelta(hours=1)
        validate_date_range(start, start + timedelta(hours=1))
        with pytest.raises(StatsValidationError, match="future"):
            validate_date_range(start, start + timedelta(hours=1), allow_future_start=False)

    def test_range_limit(self):
        end = utcnow()
        validate_date_range(end - timedelta(days=365), end, max_days=365)
        with pytest.raises(StatsValidationError, match="exceed 365 days"):
            validate_date_range(end - timedelta(days=366), end, max_days=365)


class TestUriLimits:

    def test_empty_is_allowed(self):
        validate_uris(None, max_count=1, max_length=1)
        validate_uris([], max_count=1, max_length=1)

    def test_too_many(self):
        with pytest.raises(StatsValidationError, match="Maximum is 2"):
            validate_uris(["/a", "/b", "/c"], max_count=2, max_length=10)

    def test_too_long(self):
        with pytest.raises(StatsValidationError, match="too long"):
            validate_uris(["/" + "x" * 20], max_count=5, max_length=10)
