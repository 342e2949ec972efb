"""
Date helpers shared by accrual, comp-off and request validation.
"""

from __future__ import annotations

import math
from collections.abc import Iterable
from datetime import date, timedelta

from dateutil.relativedelta import relativedelta

from leave_engine.models import RoundingMode


def is_weekend(day: date) -> bool:
    return day.weekday() >= 5


def is_non_working_day(day: date, holidays: Iterable[date] = ()) -> bool:
    return is_weekend(day) or day in set(holidays)


def count_leave_days(
    start: date,
    end: date,
    *,
    is_half_day: bool = False,
    holidays: Iterable[date] = (),
    calendar_days: bool = False,
) -> float:
    """
    Number of leave days a request consumes.

    Weekends and holidays are not counted unless ``calendar_days`` is set
    (e.g. maternity leave runs on calendar days). A half-day request counts 0.5
    when its date is a working day.
    """
    if end < start:
        return 0.0

    holiday_set = set(holidays)
    days = 0
    current = start
    while current <= end:
        if calendar_days or not is_non_working_day(current, holiday_set):
            days += 1
        current += timedelta(days=1)

    if is_half_day:
        return 0.5 if days else 0.0
    return float(days)


def months_of_service(joining_date: date, as_of: date) -> int:
    """Completed months between joining and ``as_of``."""
    if as_of < joining_date:
        return 0
    delta = relativedelta(as_of, joining_date)
    return delta.years * 12 + delta.months


def add_months(day: date, months: int) -> date:
    return day + relativedelta(months=months)


def remaining_months_in_year(joining_date: date, year: int) -> int:
    """Months left in ``year`` counting the joining month itself."""
    if joining_date.year < year:
        return 12
    if joining_date.year > year:
        return 0
    return 13 - joining_date.month


def month_bounds(year: int, month: int) -> tuple[date, date]:
    first = date(year, month, 1)
    last = first + relativedelta(months=1) - timedelta(days=1)
    return first, last


def round_days(value: float, precision: float = 0.5, mode: RoundingMode = RoundingMode.NEAREST) -> float:
    """Round a day amount to a multiple of ``precision``."""
    if precision <= 0:
        return value
    units = value / precision
    if mode == RoundingMode.UP:
        units = math.ceil(units - 1e-9)
    elif mode == RoundingMode.DOWN:
        units = math.floor(units + 1e-9)
    else:
        units = math.floor(units + 0.5 + 1e-9)
    return units * precision
