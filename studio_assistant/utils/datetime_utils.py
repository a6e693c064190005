"""
Helpers for timestamps stored as ISO strings in CRM custom fields.
"""
from __future__ import annotations

from datetime import UTC, datetime
from typing import Any

from dateutil import parser as date_parser


def dt_replace_utc(dt: datetime | None | Any) -> datetime | None:
    """
    Return dt with tzinfo=UTC if naive, or None if dt is None.
    """
    if dt is None:
        return None
    if isinstance(dt, datetime):
        return dt.replace(tzinfo=UTC) if dt.tzinfo is None else dt
    return None


def parse_timestamp(raw: Any) -> datetime | None:
    """
    Parse a stored timestamp (ISO string, epoch millis, or datetime) into an aware datetime.

    Returns None for missing or unparseable values - callers treat that as "no clock".
    """
    if raw is None or raw == "":
        return None
    if isinstance(raw, datetime):
        return dt_replace_utc(raw)
    if isinstance(raw, bool):
        return None
    if isinstance(raw, (int, float)):
        try:
            return datetime.fromtimestamp(raw / 1000, tz=UTC)
        except (OverflowError, OSError, ValueError):
            return None
    try:
        return dt_replace_utc(date_parser.isoparse(str(raw).strip()))
    except (ValueError, OverflowError):
        return None


def utc_now() -> datetime:
    """Current time as an aware UTC datetime (freezegun-friendly)."""
    return datetime.now(UTC)
