"""
Period Bucketing

Bucket keys and the date/number coercions shared by every engine. Driver
values differ between backends (aiomysql returns datetime/Decimal/timedelta,
SQLite returns strings), so all rows pass through the coercions here before
they are aggregated.
"""

import calendar
from datetime import date, datetime, time, timedelta, timezone
from enum import Enum
from typing import Any, Optional, Tuple, Union

DateLike = Union[datetime, date, str]

DAY_NAMES = ["Monday", "Tuesday", "Wednesday", "Thursday", "Friday", "Saturday", "Sunday"]


class Period(str, Enum):
    """Bucket granularity"""
    HOUR = "hour"
    DAY = "day"
    WEEK = "week"
    MONTH = "month"

    @classmethod
    def _missing_(cls, value):
        # Dashboard spellings: hourly, daily, weekly, monthly
        if isinstance(value, str):
            normalized = value.strip().lower()
            aliases = {
                "hourly": cls.HOUR,
                "daily": cls.DAY,
                "weekly": cls.WEEK,
                "monthly": cls.MONTH,
            }
            if normalized in aliases:
                return aliases[normalized]
            for member in cls:
                if member.value == normalized:
                    return member
        return None


def to_datetime(value: Any) -> Optional[datetime]:
    """
    Coerce a driver value to a naive UTC datetime.

    Accepts datetime, date, ISO-8601 strings and None. Aware datetimes are
    converted to UTC and made naive.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        if value.tzinfo is not None:
            return value.astimezone(timezone.utc).replace(tzinfo=None)
        return value
    if isinstance(value, date):
        return datetime.combine(value, time.min)
    if isinstance(value, str):
        text = value.strip()
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        return to_datetime(datetime.fromisoformat(text))
    raise TypeError(f"Cannot convert {type(value).__name__} to datetime")


def to_date(value: Any) -> Optional[date]:
    """Calendar day of a driver value."""
    dt = to_datetime(value)
    return dt.date() if dt is not None else None


def to_float(value: Any) -> float:
    """Coerce Decimal/str/None to float; None becomes 0.0."""
    if value is None:
        return 0.0
    return float(value)


def to_int(value: Any) -> int:
    if value is None:
        return 0
    return int(value)


def hour_of(value: Any) -> int:
    """Hour of a TIME/DATETIME value (aiomysql returns TIME as timedelta)."""
    if isinstance(value, timedelta):
        return int(value.total_seconds() // 3600) % 24
    if isinstance(value, time):
        return value.hour
    if isinstance(value, datetime):
        return value.hour
    if isinstance(value, str) and len(value) <= 15 and ":" in value and "-" not in value:
        return int(value.split(":")[0])
    return to_datetime(value).hour


def utcnow() -> datetime:
    """Current time as naive UTC, matching the stored timestamps."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def iso_week_number(value: DateLike) -> Tuple[int, int]:
    """
    ISO-8601 (year, week) of a timestamp.

    Weeks start on Monday and week 1 contains the year's first Thursday, so
    the ISO year can differ from the calendar year around New Year.

    Returns:
        Tuple of (iso_year, iso_week)
    """
    iso = to_datetime(value).isocalendar()
    return iso[0], iso[1]


def bucket_key(value: DateLike, period: Union[Period, str]) -> str:
    """
    Stable bucket key of a timestamp.

    Args:
        value: Timestamp (datetime, date or ISO string)
        period: hour, day, week or month

    Returns:
        ``YYYY-MM-DD HH:00:00``, ``YYYY-MM-DD``, ``GGGG-Www`` or ``YYYY-MM``
    """
    ts = to_datetime(value)
    period = Period(period)

    if period == Period.HOUR:
        return ts.strftime("%Y-%m-%d %H:00:00")
    if period == Period.DAY:
        return ts.strftime("%Y-%m-%d")
    if period == Period.WEEK:
        iso_year, iso_week = iso_week_number(ts)
        return f"{iso_year}-W{iso_week:02d}"
    return ts.strftime("%Y-%m")


def day_bounds(day: DateLike) -> Tuple[datetime, datetime]:
    """First and last instant of a calendar day."""
    d = to_date(day)
    return datetime.combine(d, time.min), datetime.combine(d, time.max)


def month_bounds(year: int, month: int) -> Tuple[date, date]:
    """First and last calendar day of a month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)


def shift_months(value: datetime, months: int) -> datetime:
    """Shift by calendar months, clamping the day to the target month's end."""
    month_index = value.month - 1 + months
    year = value.year + month_index // 12
    month = month_index % 12 + 1
    day = min(value.day, calendar.monthrange(year, month)[1])
    return value.replace(year=year, month=month, day=day)


def sql_timestamp(value: datetime) -> str:
    """Bind representation of a timestamp, comparable on MySQL and SQLite."""
    return value.strftime("%Y-%m-%d %H:%M:%S.%f")
