"""
Input Validators

Validation and formatting helpers shared by the stats service, the stats
client and the event service.

All timestamps on the wire use the fixed pattern 'yyyy-MM-dd HH:mm:ss'
and are interpreted as naive UTC.
"""

import ipaddress
from datetime import datetime, timedelta, timezone
from typing import Optional, Sequence

from hitstats.core.exceptions import StatsValidationError

DATE_TIME_FORMAT = "%Y-%m-%d %H:%M:%S"


def utcnow() -> datetime:
    """Current UTC time as a naive datetime, truncated to whole seconds."""
    return datetime.now(timezone.utc).replace(tzinfo=None, microsecond=0)


def format_timestamp(value: datetime) -> str:
    return value.strftime(DATE_TIME_FORMAT)


def parse_timestamp(value: Optional[str], field_name: str = "timestamp") -> datetime:
    """
    Parse a 'yyyy-MM-dd HH:mm:ss' string.

    Raises:
        StatsValidationError: If the value is empty or does not match the pattern
    """
    if value is None or not str(value).strip():
        raise StatsValidationError(f"{field_name} must not be empty")
    try:
        return datetime.strptime(str(value).strip(), DATE_TIME_FORMAT)
    except ValueError:
        raise StatsValidationError(
            f"Invalid {field_name} format: '{value}'. Use 'yyyy-MM-dd HH:mm:ss'"
        )


def is_valid_ip(value: str) -> bool:
    """True for IPv4/IPv6 textual addresses."""
    try:
        ipaddress.ip_address(value)
        return True
    except ValueError:
        return False


def validate_date_range(
    start: Optional[datetime],
    end: Optional[datetime],
    max_days: Optional[int] = None,
    allow_future_start: bool = True,
) -> None:
    """
    Validate a statistics time window.

    Args:
        start: Window start (inclusive)
        end: Window end (inclusive)
        max_days: Maximum allowed span in days, None for unbounded
        allow_future_start: The stats server rejects windows starting in the future

    Raises:
        StatsValidationError: On null, inverted, future or oversized windows
    """
    if start is None or end is None:
        raise StatsValidationError("Start and end dates must not be null")

    if start > end:
        raise StatsValidationError("Start date cannot be after end date")

    if not allow_future_start and start > utcnow():
        raise StatsValidationError("Start date cannot be in the future")

    if max_days is not None and start + timedelta(days=max_days) < end:
        raise StatsValidationError(f"Date range cannot exceed {max_days} days")


def validate_uris(uris: Optional[Sequence[str]], max_count: int, max_length: int) -> None:
    """
    Check the uri allow-list of a statistics query against size limits.

    Raises:
        StatsValidationError: If there are too many uris or one is too long
    """
    if not uris:
        return

    if len(uris) > max_count:
        raise StatsValidationError(f"Too many URIs in query. Maximum is {max_count}")

    for uri in uris:
        if len(uri) > max_length:
            raise StatsValidationError(f"URI too long: {uri[:50]}...")
