"""
Date and time utility functions for the order workflow.
Handles parsing of loosely formatted input dates and timezone rendering.
"""

from datetime import date, datetime, timezone
from typing import Any, Optional
import pytz
from dateutil import parser

from config.settings import get_settings

settings = get_settings()

LOCAL_TZ = pytz.timezone(settings.DEFAULT_TIMEZONE)
UTC_TZ = pytz.UTC


def utc_now() -> datetime:
    """Get current UTC time."""
    return datetime.now(timezone.utc)


def ensure_aware(dt: datetime) -> datetime:
    """Treat naive datetimes (as returned by SQLite) as UTC."""
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt


def to_iso(dt: Optional[datetime]) -> Optional[str]:
    if dt is None:
        return None
    return ensure_aware(dt).isoformat()


def to_local(dt: datetime) -> datetime:
    """Convert datetime to the business timezone."""
    return ensure_aware(dt).astimezone(LOCAL_TZ)


def format_local(dt: Optional[datetime], with_time: bool = True) -> str:
    """Human readable local time, e.g. 19/10/2026, 03:45:12 PM."""
    if dt is None:
        return "N/A"
    local = to_local(dt)
    return local.strftime("%d/%m/%Y, %I:%M:%S %p" if with_time else "%d/%m/%Y")


def day_string(dt: Optional[datetime]) -> str:
    """YYYY-MM-DD slice used by spreadsheet exports."""
    if dt is None:
        return ""
    return ensure_aware(dt).strftime("%Y-%m-%d")


def parse_date(value: Any) -> Optional[datetime]:
    """Parse user supplied dates. Returns None for blank or unparseable input."""
    if value is None:
        return None
    if isinstance(value, datetime):
        # pandas.Timestamp is a datetime subclass
        return ensure_aware(value.to_pydatetime() if hasattr(value, "to_pydatetime") else value)
    if isinstance(value, date):
        return datetime(value.year, value.month, value.day, tzinfo=timezone.utc)
    if not isinstance(value, str) or not value.strip():
        return None
    try:
        return ensure_aware(parser.parse(value.strip()))
    except (ValueError, OverflowError):
        return None
