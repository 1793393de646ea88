# backend/core/time_utils.py
from datetime import date, datetime, timezone
from typing import Any, Optional


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(value: Any) -> Optional[datetime]:
    """Coerce a datetime or ISO-8601 string into an aware UTC datetime.

    Naive values are taken to already be UTC (MongoDB stores UTC without tzinfo).
    Returns None for anything that cannot be interpreted.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        parsed = datetime(value.year, value.month, value.day)
    elif isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        try:
            parsed = datetime.fromisoformat(text)
        except ValueError:
            return None
    else:
        return None

    if parsed.tzinfo is None:
        return parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def as_utc_date(value: Any) -> Optional[date]:
    """Calendar date (UTC) of a datetime, date or ISO string"""
    if isinstance(value, date) and not isinstance(value, datetime):
        return value
    parsed = as_utc(value)
    return parsed.date() if parsed else None


def parse_day(value: Optional[str]) -> Optional[date]:
    """Parse a YYYY-MM-DD query parameter"""
    if not value:
        return None
    try:
        return date.fromisoformat(value.strip()[:10])
    except ValueError:
        return None
