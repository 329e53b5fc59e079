"""
Timezone utilities for ClassBook.

Availability is declared in a course's local wall-clock time while
bookings are compared in UTC. These helpers do the conversions with pytz.
"""

import calendar
from datetime import date, datetime, time, timedelta, timezone
from typing import Tuple, Union

import pytz

TzLike = Union[str, pytz.BaseTzInfo]


def get_timezone(tz: TzLike) -> pytz.BaseTzInfo:
    """Return a pytz timezone for a name or pass one through."""
    if isinstance(tz, str):
        return pytz.timezone(tz)
    return tz


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(dt: datetime) -> datetime:
    """
    Return ``dt`` as an aware UTC datetime.

    Naive values are assumed to be UTC already (SQLite drops tzinfo).
    """
    if dt.tzinfo is None:
        return dt.replace(tzinfo=timezone.utc)
    return dt.astimezone(timezone.utc)


def local_datetime(day: date, minutes: int, tz: TzLike) -> datetime:
    """
    Localize ``minutes`` after midnight of ``day`` in ``tz``.

    ``minutes`` may be 1440, meaning midnight at the end of ``day``.
    """
    tzinfo = get_timezone(tz)
    naive = datetime.combine(day, time.min) + timedelta(minutes=minutes)
    return tzinfo.localize(naive)



def month_bounds(year: int, month: int) -> Tuple[date, date]:
    """First and last calendar date of a month."""
    last_day = calendar.monthrange(year, month)[1]
    return date(year, month, 1), date(year, month, last_day)
