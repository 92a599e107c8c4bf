"""
Xiyin Bot: Calendar utilities.

Pure functions over timestamps. Weeks follow ISO-8601: they start on Monday,
and week 1 is the week holding the year's first Thursday.
"""

from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import Protocol
from zoneinfo import ZoneInfo

DAY_TOKENS = ("MON", "TUE", "WED", "THU", "FRI", "SAT", "SUN")

# Days a user can be asked a question; the week closes with Sunday's review.
ANSWER_WINDOW = frozenset({"MON", "TUE", "WED", "THU", "FRI", "SAT"})

# The scheduled daily question starts on Tuesday, after Monday's theme pick.
FIRST_QUESTION_DAY = "TUE"


class Clock(Protocol):
    """Time source injected into the state machine and scheduler."""

    def now(self) -> datetime: ...


class SystemClock:
    """Wall-clock time in the configured timezone."""

    def __init__(self, tz_name: str | None = None) -> None:
        if tz_name is None:
            from src.config import settings
            tz_name = settings.TIMEZONE
        self._tz = ZoneInfo(tz_name)

    def now(self) -> datetime:
        return datetime.now(self._tz)


def get_week_number(d: date) -> int:
    """ISO-8601 week number of the given date (1..53)."""
    return d.isocalendar()[1]


def week_string(d: date) -> str:
    """ISO week identifier, e.g. "2024-W01".

    Uses the ISO week-based year, so 2024-12-30 is "2025-W01" and
    2023-01-01 is "2022-W52".
    """
    iso_year, iso_week, _ = d.isocalendar()
    return f"{iso_year}-W{iso_week:02d}"


def day_token(d: date) -> str:
    """Three-letter weekday token used to key the question pool."""
    return DAY_TOKENS[d.weekday()]


def is_week_start(d: date) -> bool:
    """True on Monday, the day a new theme is chosen."""
    return d.weekday() == 0


def in_answer_window(d: date) -> bool:
    return day_token(d) in ANSWER_WINDOW


def month_key(d: date) -> str:
    return f"{d.year:04d}-{d.month:02d}"


def day_bounds(moment: datetime) -> tuple[datetime, datetime]:
    """[start, end) of the local calendar day containing `moment`."""
    start = datetime.combine(moment.date(), time.min, tzinfo=moment.tzinfo)
    return start, start + timedelta(days=1)


def month_bounds(moment: datetime) -> tuple[datetime, datetime]:
    """[start, end) of the local calendar month containing `moment`."""
    start = datetime.combine(moment.date().replace(day=1), time.min, tzinfo=moment.tzinfo)
    if start.month == 12:
        end = start.replace(year=start.year + 1, month=1)
    else:
        end = start.replace(month=start.month + 1)
    return start, end


def same_local_day(a: datetime | None, b: datetime) -> bool:
    """Compare calendar dates in b's timezone. None never matches."""
    if a is None:
        return False
    if a.tzinfo is not None and b.tzinfo is not None:
        a = a.astimezone(b.tzinfo)
    return a.date() == b.date()
