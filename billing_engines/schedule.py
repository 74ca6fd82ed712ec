"""
Pure billing schedule arithmetic.

Contract:
    ``add_cycle_interval`` and ``compute_next_billing_period`` are PURE --
    no I/O, no clock reads.  The scheduler service supplies "now".

Month-based units (monthly, quarterly, semi_annually, annually) add calendar
months and clamp the day to the last day of a shorter target month, so
Jan 31 + 1 month is Feb 29 in a leap year (Feb 28 otherwise).
"""

from __future__ import annotations

import calendar
from dataclasses import dataclass
from datetime import datetime, timedelta

from billing_kernel.domain.billing_types import BillingCycleType
from billing_kernel.exceptions import InvalidBillingPeriodError

_DAY_UNITS: dict[BillingCycleType, int] = {
    BillingCycleType.DAILY: 1,
    BillingCycleType.WEEKLY: 7,
}

_MONTH_UNITS: dict[BillingCycleType, int] = {
    BillingCycleType.MONTHLY: 1,
    BillingCycleType.QUARTERLY: 3,
    BillingCycleType.SEMI_ANNUALLY: 6,
    BillingCycleType.ANNUALLY: 12,
}


@dataclass(frozen=True)
class BillingPeriod:
    """Half-open period [start_date, end_date) billed on ``billing_date``."""

    start_date: datetime
    end_date: datetime
    billing_date: datetime


def add_months(moment: datetime, months: int) -> datetime:
    """Add calendar months, clamping the day to the target month's length."""
    month_index = moment.month - 1 + months
    year = moment.year + month_index // 12
    month = month_index % 12 + 1
    day = min(moment.day, calendar.monthrange(year, month)[1])
    return moment.replace(year=year, month=month, day=day)


def add_cycle_interval(moment: datetime, cycle_type: BillingCycleType, count: int = 1) -> datetime:
    """
    Advance ``moment`` by ``count`` units of ``cycle_type``.

    Raises:
        InvalidBillingPeriodError: For CUSTOM cycles, which have no fixed unit.
    """
    if cycle_type in _DAY_UNITS:
        return moment + timedelta(days=_DAY_UNITS[cycle_type] * count)
    if cycle_type in _MONTH_UNITS:
        return add_months(moment, _MONTH_UNITS[cycle_type] * count)
    raise InvalidBillingPeriodError(
        f"cycle type '{cycle_type.value}' has no fixed interval"
    )


def compute_next_billing_period(now: datetime, cycle_type: BillingCycleType) -> BillingPeriod:
    """
    Next billing date is one unit after ``now``; the period it opens is
    [next_billing_date, next_billing_date + unit).
    """
    next_billing_date = add_cycle_interval(now, cycle_type)
    return BillingPeriod(
        start_date=next_billing_date,
        end_date=add_cycle_interval(next_billing_date, cycle_type),
        billing_date=next_billing_date,
    )
