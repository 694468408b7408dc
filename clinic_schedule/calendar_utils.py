"""Date and half-day arithmetic shared by the scheduling engine.

Day-of-week numbers follow the stored convention used by availability rules,
templates and provider work-days: Sunday=0, Monday=1 ... Saturday=6.
"""
from __future__ import annotations

from datetime import date, timedelta
from typing import Iterable, Literal

TimeBlock = Literal["AM", "PM", "BOTH"]
PTOTimeBlock = Literal["AM", "PM", "FULL"]

TIME_BLOCKS: tuple[str, ...] = ("AM", "PM", "BOTH")
WEEKEND_DAYS = frozenset({0, 6})
WEEKDAYS: tuple[int, ...] = (1, 2, 3, 4, 5)


def format_local_date(value: date) -> str:
    return value.isoformat()


def parse_local_date(value: str) -> date:
    return date.fromisoformat(value)


def day_of_week(value: date) -> int:
    return (value.weekday() + 1) % 7


def is_weekend(value: date) -> bool:
    return day_of_week(value) in WEEKEND_DAYS


def date_range(start: date, end: date) -> list[date]:
    if end < start:
        return []
    return [start + timedelta(days=offset) for offset in range((end - start).days + 1)]


def weekdays_in_range(start: date, end: date, work_days: Iterable[int] | None = None) -> list[date]:
    """Dates in ``[start, end]`` that fall on ``work_days`` (Monday-Friday when omitted)."""
    allowed = set(work_days) if work_days is not None else set(WEEKDAYS)
    return [d for d in date_range(start, end) if day_of_week(d) in allowed]


def next_weekday(value: date) -> date:
    current = value + timedelta(days=1)
    while is_weekend(current):
        current += timedelta(days=1)
    return current


def previous_weekday(value: date) -> date:
    current = value - timedelta(days=1)
    while is_weekend(current):
        current -= timedelta(days=1)
    return current


def week_start(value: date) -> date:
    return value - timedelta(days=day_of_week(value))


def nth_weekday_of_month(year: int, month: int, weekday: int, n: int) -> date:
    first = date(year, month, 1)
    offset = (weekday - day_of_week(first)) % 7
    return first + timedelta(days=offset + (n - 1) * 7)


def last_weekday_of_month(year: int, month: int, weekday: int) -> date:
    if month == 12:
        last = date(year, 12, 31)
    else:
        last = date(year, month + 1, 1) - timedelta(days=1)
    offset = (day_of_week(last) - weekday) % 7
    return last - timedelta(days=offset)


def observed_date(year: int, month: int, day: int) -> date:
    actual = date(year, month, day)
    dow = day_of_week(actual)
    if dow == 6:
        return actual - timedelta(days=1)
    if dow == 0:
        return actual + timedelta(days=1)
    return actual


def overlapping_blocks(time_block: str) -> tuple[str, ...]:
    if time_block == "BOTH":
        return TIME_BLOCKS
    return (time_block, "BOTH")


def blocks_overlap(first: str, second: str) -> bool:
    if first == "BOTH" or second == "BOTH":
        return True
    return first == second


def pto_block_for(time_block: str) -> str:
    return "BOTH" if time_block == "FULL" else time_block
