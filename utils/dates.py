# utils/dates.py
from datetime import date, datetime, timedelta, timezone
from typing import Optional

from dateutil import parser


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def as_utc(dt: Optional[datetime]) -> Optional[datetime]:
    """Aware UTC copy of ``dt``; naive values are taken to be UTC already."""
    if dt is None:
        return None
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def parse_date(x) -> Optional[date]:
    if x is None or x == "":
        return None
    if isinstance(x, datetime):
        return x.date()
    if isinstance(x, date):
        return x
    try:
        return parser.parse(str(x)).date()
    except (ValueError, OverflowError):
        return None


def parse_datetime(x) -> Optional[datetime]:
    if x is None or x == "":
        return None
    if isinstance(x, datetime):
        return as_utc(x)
    if isinstance(x, date):
        return datetime(x.year, x.month, x.day, tzinfo=timezone.utc)
    try:
        return as_utc(parser.parse(str(x)))
    except (ValueError, OverflowError):
        return None


def shift_date(d: date, days: int) -> date:
    """Move a date by whole calendar days (negative moves it earlier)."""
    return d + timedelta(days=days)
