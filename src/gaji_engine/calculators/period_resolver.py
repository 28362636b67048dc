"""Payroll period resolution."""

from __future__ import annotations

import calendar
from datetime import date

from gaji_engine.calculators.types import DateRange, PeriodConfig, PeriodResolution, PeriodType
from gaji_engine.errors import ValidationFailedError


def month_name(month: int) -> str:
    return calendar.month_name[month]


def shift_month(month: int, year: int, offset: int) -> tuple[int, int]:
    """Move (month, year) by ``offset`` months, overflowing years as needed."""
    index = (year * 12 + (month - 1)) + offset
    return index % 12 + 1, index // 12


def clamp_day(year: int, month: int, day: int) -> date:
    """Build a date, clamping ``day`` to the length of the month."""
    last = calendar.monthrange(year, month)[1]
    return date(year, month, max(1, min(day, last)))


def calendar_month_range(month: int, year: int) -> DateRange:
    last = calendar.monthrange(year, month)[1]
    return DateRange(
        start=date(year, month, 1),
        end=date(year, month, last),
        label=f"{month_name(month)} {year}",
    )


class PeriodResolver:
    """Maps (month, year, config) to period, payment and commission ranges.

    - calendar_month: the 1st to the last day of the month
    - mid_month: ``period_start_day`` of the prior month to ``period_end_day``
      of the run month; an end day of 0 means the day before the start day
    """

    @staticmethod
    def validate(month: int, year: int) -> None:
        if not 1 <= month <= 12:
            raise ValidationFailedError(f"Month must be 1-12, got {month}", field="month")
        if year < 1900 or year > 9999:
            raise ValidationFailedError(f"Invalid year {year}", field="year")

    @classmethod
    def resolve(cls, month: int, year: int, config: PeriodConfig | None = None) -> PeriodResolution:
        cls.validate(month, year)
        config = config or PeriodConfig()

        if config.period_type == PeriodType.MID_MONTH:
            period = cls._mid_month(month, year, config)
        else:
            period = calendar_month_range(month, year)

        pay_month, pay_year = shift_month(month, year, config.payment_month_offset)
        pay_date = clamp_day(pay_year, pay_month, config.payment_day)
        payment = DateRange(
            start=pay_date,
            end=pay_date,
            label=f"{pay_date.day} {month_name(pay_month)} {pay_year}",
        )

        comm_month, comm_year = shift_month(month, year, config.commission_period_offset)
        commission_period = calendar_month_range(comm_month, comm_year)

        return PeriodResolution(period=period, payment=payment, commission_period=commission_period)

    @staticmethod
    def _mid_month(month: int, year: int, config: PeriodConfig) -> DateRange:
        prev_month, prev_year = shift_month(month, year, -1)
        start_day = config.period_start_day
        end_day = config.period_end_day or max(1, start_day - 1)

        start = clamp_day(prev_year, prev_month, start_day)
        end = clamp_day(year, month, end_day)
        label = (
            f"{month_name(prev_month)} {start.day} - {month_name(month)} {end.day}, {year}"
        )
        return DateRange(start=start, end=end, label=label)
