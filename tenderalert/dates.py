"""
Date helpers shared by the engines.
All stored timestamps are naive UTC strings in 'YYYY-MM-DD HH:MM:SS' form.
"""

from datetime import datetime, date, timezone
from typing import Optional, Union

from dateutil import parser
from dateutil.relativedelta import relativedelta

TIMESTAMP_FORMAT = '%Y-%m-%d %H:%M:%S'


def utc_now() -> datetime:
    """Current UTC time as a naive datetime (matches SQLite CURRENT_TIMESTAMP)."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def now_str() -> str:
    return utc_now().strftime(TIMESTAMP_FORMAT)


def today_str() -> str:
    return utc_now().strftime('%Y-%m-%d')


def to_str(value: datetime) -> str:
    return value.strftime(TIMESTAMP_FORMAT)


def parse_datetime(value: Union[str, datetime, date, None]) -> Optional[datetime]:
    """Parse anything date-like into a naive UTC datetime, or None."""
    if value is None or value == '':
        return None
    if isinstance(value, datetime):
        parsed = value
    elif isinstance(value, date):
        return datetime(value.year, value.month, value.day)
    else:
        try:
            parsed = parser.parse(str(value))
        except (ValueError, OverflowError):
            return None

    if parsed.tzinfo is not None:
        parsed = parsed.astimezone(timezone.utc).replace(tzinfo=None)
    return parsed


def normalize_date(value) -> Optional[str]:
    """Return an ISO date (YYYY-MM-DD) for a loosely formatted date string."""
    parsed = parse_datetime(value)
    if not parsed:
        return None
    return parsed.strftime('%Y-%m-%d')


def days_until(value, now: datetime = None) -> Optional[float]:
    """Fractional days from now until the given date (negative if past)."""
    target = parse_datetime(value)
    if target is None:
        return None
    now = now or utc_now()
    return (target - now).total_seconds() / 86400


def add_months(start: datetime, months: int) -> datetime:
    return start + relativedelta(months=months)
