"""Timestamp helpers shared by the catalog reader, manifests and the CLI."""

from __future__ import annotations

from datetime import datetime, time, timedelta, timezone
from typing import Optional

from dateutil import parser

from ..config import CLI_DATE_FORMAT, CORE_DATA_EPOCH, FILENAME_TIMESTAMP_FORMAT
from ..errors import ConfigurationError


def core_data_to_datetime(seconds: float) -> datetime:
    """Convert a Core Data interval (seconds since 2001-01-01 UTC) to a UTC datetime."""

    return CORE_DATA_EPOCH + timedelta(seconds=seconds)


def ensure_utc(value: datetime) -> datetime:
    """Return *value* as an aware UTC datetime, treating naive values as UTC."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def format_rfc3339(value: datetime) -> str:
    """Return *value* as an RFC 3339 UTC string with a ``Z`` suffix."""

    value = ensure_utc(value)
    if value.microsecond:
        return value.strftime("%Y-%m-%dT%H:%M:%S.%fZ")
    return value.strftime("%Y-%m-%dT%H:%M:%SZ")


def parse_timestamp(value: Optional[str]) -> Optional[datetime]:
    """Parse an ISO 8601 / RFC 3339 string into an aware UTC datetime."""

    if not value:
        return None
    try:
        return ensure_utc(parser.isoparse(value))
    except (TypeError, ValueError):
        return None


def filename_timestamp(value: datetime) -> str:
    """Return ``2024-04-15T10-00-00Z`` style stamps safe for filenames."""

    return ensure_utc(value).strftime(FILENAME_TIMESTAMP_FORMAT)


def parse_cli_date(value: Optional[str], *, end_of_day: bool = False, option: str = "date") -> Optional[datetime]:
    """Parse a ``YYYY-MM-DD`` command line value into a UTC datetime.

    With *end_of_day* the returned instant is the last microsecond of that
    day so that the upper bound of a date range is inclusive.
    """

    if value is None or not value.strip():
        return None
    try:
        parsed = datetime.strptime(value.strip(), CLI_DATE_FORMAT)
    except ValueError as exc:
        raise ConfigurationError(f"invalid {option} format: {value!r} (expected YYYY-MM-DD)") from exc
    if end_of_day:
        parsed = datetime.combine(parsed.date(), time.max)
    return parsed.replace(tzinfo=timezone.utc)


def format_cli_date(value: Optional[datetime]) -> Optional[str]:
    if value is None:
        return None
    return ensure_utc(value).strftime(CLI_DATE_FORMAT)
