"""
Module: pool_engines.calendar
Responsibility:
    Period and day arithmetic for billing cycles and epochs: period
    boundaries, 30/360 day counts, periods elapsed and maturity checks.

Architecture position:
    Engines -- pure calculation layer, zero I/O, no clock access.
    Callers pass every date explicitly.

Invariants enforced:
    - Pay periods are aligned to calendar months: a quarter starts in
      January, April, July or October; a half-year in January or July.
    - Day counts follow the 30/360 convention: every month has 30 days and
      day 31 counts as day 30.

Failure modes:
    - ValueError when a start date is later than its end date.

Usage:
    from pool_engines.calendar import PeriodDuration, start_of_next_period

    due_date = start_of_next_period(PeriodDuration.MONTHLY, date(2024, 3, 14))
    # date(2024, 4, 1)
"""

from __future__ import annotations

from datetime import date
from enum import Enum

DAYS_IN_A_MONTH = 30
DAYS_IN_A_YEAR = 360


class PeriodDuration(str, Enum):
    """Length of a pay period, in calendar months."""

    MONTHLY = "monthly"
    QUARTERLY = "quarterly"
    SEMI_ANNUALLY = "semi_annually"

    @property
    def months(self) -> int:
        return _MONTHS[self]


_MONTHS = {
    PeriodDuration.MONTHLY: 1,
    PeriodDuration.QUARTERLY: 3,
    PeriodDuration.SEMI_ANNUALLY: 6,
}


def _month_index(day: date) -> int:
    return day.year * 12 + (day.month - 1)


def _from_month_index(index: int) -> date:
    return date(index // 12, index % 12 + 1, 1)


def start_of_period(duration: PeriodDuration, as_of: date) -> date:
    """First day of the pay period containing ``as_of``."""
    months = duration.months
    index = _month_index(as_of)
    return _from_month_index(index - index % months)


def start_of_next_period(duration: PeriodDuration, as_of: date) -> date:
    """First day of the pay period after the one containing ``as_of``."""
    months = duration.months
    index = _month_index(as_of)
    return _from_month_index(index - index % months + months)


def add_periods(duration: PeriodDuration, period_start: date, periods: int) -> date:
    """Start date ``periods`` pay periods after the period containing ``period_start``."""
    base = _month_index(start_of_period(duration, period_start))
    return _from_month_index(base + periods * duration.months)


def days_diff(start: date, end: date) -> int:
    """Days between ``start`` and ``end`` under the 30/360 convention.

    Raises:
        ValueError: if ``start`` is later than ``end``.
    """
    if start > end:
        raise ValueError(f"Start date {start} is later than end date {end}")
    start_day = min(start.day, DAYS_IN_A_MONTH)
    end_day = min(end.day, DAYS_IN_A_MONTH)
    months = _month_index(end) - _month_index(start)
    return months * DAYS_IN_A_MONTH + end_day - start_day


def days_in_period(duration: PeriodDuration) -> int:
    return duration.months * DAYS_IN_A_MONTH


def days_remaining_in_period(duration: PeriodDuration, as_of: date) -> int:
    """Days from ``as_of`` to the start of the next pay period."""
    return days_diff(as_of, start_of_next_period(duration, as_of))


def number_of_periods_passed(duration: PeriodDuration, start: date, end: date) -> int:
    """Period boundaries crossed going from ``start`` to ``end``.

    Raises:
        ValueError: if ``start`` is later than ``end``.
    """
    if start > end:
        raise ValueError(f"Start date {start} is later than end date {end}")
    months = duration.months
    return _month_index(end) // months - _month_index(start) // months


def is_matured(maturity_date: date | None, as_of: date) -> bool:
    return maturity_date is not None and as_of >= maturity_date
