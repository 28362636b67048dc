"""Leave accrual: join-year proration, carry-forward and unpaid leave days."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, timedelta
from decimal import ROUND_CEILING, ROUND_FLOOR, Decimal
from typing import Any, Iterable

from gaji_engine.calculators.rounding import round_to_half, to_decimal
from gaji_engine.calculators.types import DateRange, ProrationRounding

ZERO = Decimal("0")
TWELVE = Decimal("12")


@dataclass(frozen=True)
class LeaveSettings:
    """Tenant leave policy."""

    count_join_month: bool = False
    proration_rounding: ProrationRounding = ProrationRounding.NEAREST
    carry_forward_enabled: bool = False
    max_carry_forward_days: Decimal = Decimal("5")

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None) -> LeaveSettings:
        data = data or {}
        return cls(
            count_join_month=bool(data.get("count_join_month", False)),
            proration_rounding=ProrationRounding(data.get("proration_rounding", "nearest")),
            carry_forward_enabled=bool(data.get("carry_forward_enabled", False)),
            max_carry_forward_days=to_decimal(data.get("max_carry_forward_days"), Decimal("5")),
        )


@dataclass(frozen=True)
class LeaveInterval:
    """An approved leave request as seen by payroll."""

    start_date: date
    end_date: date
    total_days: Decimal
    is_paid: bool


def months_remaining(join_date: date, count_join_month: bool) -> int:
    """Months from the join month to December, inclusive.

    The join month is dropped when the employee joined after the 15th and the
    tenant does not count the join month.
    """
    months = 12 - (join_date.month - 1)
    if join_date.day > 15 and not count_join_month:
        months -= 1
    return max(0, months)


def _apply_rounding(value: Decimal, mode: ProrationRounding) -> Decimal:
    if mode == ProrationRounding.UP:
        return value.to_integral_value(rounding=ROUND_CEILING)
    if mode == ProrationRounding.DOWN:
        return value.to_integral_value(rounding=ROUND_FLOOR)
    return round_to_half(value)


def years_of_service(join_date: date | None, as_of: date) -> int:
    """Completed years between join_date and as_of; zero before joining."""
    if join_date is None or join_date >= as_of:
        return 0
    years = as_of.year - join_date.year
    if (as_of.month, as_of.day) < (join_date.month, join_date.day):
        years -= 1
    return years


def entitlement_for_service(
    default_days: Decimal | int,
    rules: list[dict[str, Any]] | None,
    join_date: date | None,
    year: int,
) -> Decimal:
    """Yearly entitlement picked by years of service at 1 January.

    Each rule is ``{"min_years": n, "max_years": m, "days": d}`` and matches
    ``n <= service < m``; a missing ``max_years`` is open-ended. Falls back to
    ``default_days`` when no rule matches.

    Employment Act tiers for annual leave:
        [{"min_years": 0, "max_years": 2, "days": 8},
         {"min_years": 2, "max_years": 5, "days": 12},
         {"min_years": 5, "days": 16}]
    """
    service = years_of_service(join_date, date(year, 1, 1))
    for rule in rules or []:
        upper = rule.get("max_years")
        if service >= rule.get("min_years", 0) and (upper is None or service < upper):
            return to_decimal(rule["days"])
    return to_decimal(default_days)


def prorate_entitlement(
    entitled: Decimal | int,
    join_date: date | None,
    year: int,
    settings: LeaveSettings | None = None,
) -> Decimal:
    """Prorated entitlement for ``year``.

    Employees who joined before ``year`` get the full entitlement; those
    joining after it get none.
    """
    settings = settings or LeaveSettings()
    entitled = to_decimal(entitled)
    if join_date is None or join_date.year < year:
        return entitled
    if join_date.year > year:
        return ZERO

    months = months_remaining(join_date, settings.count_join_month)
    prorated = entitled * Decimal(months) / TWELVE
    return _apply_rounding(prorated, settings.proration_rounding).quantize(Decimal("0.1"))


def carry_forward_days(
    prev_entitled: Decimal,
    prev_carried_forward: Decimal,
    prev_used: Decimal,
    settings: LeaveSettings | None = None,
) -> Decimal:
    """Unused days carried into the next year, bounded by the tenant maximum."""
    settings = settings or LeaveSettings()
    if not settings.carry_forward_enabled:
        return ZERO
    unused = max(ZERO, to_decimal(prev_entitled) + to_decimal(prev_carried_forward) - to_decimal(prev_used))
    return min(unused, max(ZERO, settings.max_carry_forward_days))


def _interval_days(interval: LeaveInterval, period: DateRange) -> Decimal:
    overlap = period.overlap_days(interval.start_date, interval.end_date)
    if overlap == 0:
        return ZERO
    calendar_days = (interval.end_date - interval.start_date).days + 1
    if overlap == calendar_days:
        return to_decimal(interval.total_days)
    # Request straddles the period boundary
    return min(Decimal(overlap), to_decimal(interval.total_days))


def unpaid_days_in_period(intervals: Iterable[LeaveInterval], period: DateRange) -> Decimal:
    """Unpaid leave days of approved requests intersecting the period."""
    return sum(
        (_interval_days(i, period) for i in intervals if not i.is_paid),
        ZERO,
    )


def leave_dates_in_period(intervals: Iterable[LeaveInterval], period: DateRange) -> set[date]:
    """Calendar dates in the period covered by any approved leave."""
    days: set[date] = set()
    for interval in intervals:
        day = max(interval.start_date, period.start)
        last = min(interval.end_date, period.end)
        while day <= last:
            days.add(day)
            day += timedelta(days=1)
    return days


def unpaid_leave_deduction(basic: Decimal, work_days: int, unpaid_days: Decimal) -> Decimal:
    """basic / work_days x unpaid_days (unrounded)."""
    if work_days <= 0 or unpaid_days <= 0:
        return ZERO
    return to_decimal(basic) / Decimal(work_days) * to_decimal(unpaid_days)
