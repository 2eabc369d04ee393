"""Parsing of the few ISO 8601 forms used to ask for statistics.

This is not a general ISO 8601 parser. Each form is resolved to the last
second of the period it names; a day past the end of the month rolls over
into the next month, as does a week past the end of January.
"""

from __future__ import annotations

import enum
import re
from datetime import datetime, timedelta, timezone

_YEAR_RE = re.compile(r"([0-9]{4})")
_MONTH_RE = re.compile(r"([0-9]{4})-([0-9]{2})")
_WEEK_RE = re.compile(r"([0-9]{4})-W([0-9]{2})")
_DAY_RE = re.compile(r"([0-9]{4})-([0-9]{2})-([0-9]{2})")
_HOUR_RE = re.compile(r"([0-9]{4})-([0-9]{2})-([0-9]{2})T([0-9]{2})")

_DAYS = {1: 31, 3: 31, 4: 30, 5: 31, 6: 30, 7: 31, 8: 31, 9: 30, 10: 31, 11: 30, 12: 31}


class Granularity(enum.IntEnum):
    YEAR = 0
    MONTH = 1
    WEEK = 2
    DAY = 3
    HOUR = 4


def is_leap(year: int) -> bool:
    """Gregorian leap-year rule."""
    return year % 4 == 0 and (year % 100 != 0 or year % 400 == 0)


def days_of_month(month: int, year: int) -> int:
    """Number of days in the month, or 0 for a month outside 1..12."""
    if month == 2:
        return 29 if is_leap(year) else 28
    return _DAYS.get(month, 0)


def _year(text: str) -> int:
    year = int(text)
    if year <= 1583:
        raise ValueError(f"year out of range: {text}")
    return year


def _month(text: str) -> int:
    month = int(text)
    if not 1 <= month <= 12:
        raise ValueError(f"month out of range: {text}")
    return month


def _week(text: str) -> int:
    week = int(text)
    if not 1 <= week <= 53:
        raise ValueError(f"week out of range: {text}")
    return week


def _day(text: str, last: int) -> int:
    day = int(text)
    if not 1 <= day <= last:
        raise ValueError(f"day out of range: {text}")
    return day


def _hour(text: str) -> int:
    hour = int(text)
    if not 0 <= hour <= 24:
        raise ValueError(f"hour out of range: {text}")
    return hour


def _end_of(year: int, month: int, day: int, hour: int) -> datetime:
    start = datetime(year, month, 1, tzinfo=timezone.utc)
    return start + timedelta(days=day - 1, hours=hour, minutes=59, seconds=59)


def parse_iso8601(s: str) -> tuple[datetime, Granularity]:
    """Return the end of the named period (UTC) and its granularity.

    Raises ValueError when the string matches no supported form or a
    component is out of range.
    """
    if m := _YEAR_RE.fullmatch(s):
        year = _year(m[1])
        return _end_of(year, 12, days_of_month(12, year), 23), Granularity.YEAR

    if m := _MONTH_RE.fullmatch(s):
        month = _month(m[2])
        year = _year(m[1])
        return _end_of(year, month, 31, 23), Granularity.MONTH

    if m := _WEEK_RE.fullmatch(s):
        week = _week(m[2])
        year = _year(m[1])
        return _end_of(year, 1, week * 7, 23), Granularity.WEEK

    if m := _DAY_RE.fullmatch(s):
        month = _month(m[2])
        year = _year(m[1])
        day = _day(m[3], days_of_month(month, year))
        return _end_of(year, month, day, 23), Granularity.DAY

    if m := _HOUR_RE.fullmatch(s):
        month = _month(m[2])
        year = _year(m[1])
        hour = _hour(m[4])
        day = _day(m[3], days_of_month(month, year))
        return _end_of(year, month, day, hour), Granularity.HOUR

    raise ValueError("string does not match any formats")