"""Pure payroll computation."""

from gaji_engine.calculators.attendance import (
    apply_midnight_repair,
    find_midnight_repairs,
    overtime_minutes,
    session_worked_minutes,
    summarize_period,
)
from gaji_engine.calculators.item_computer import PayrollItemComputer, attendance_bonus_for
from gaji_engine.calculators.leave import (
    LeaveInterval,
    LeaveSettings,
    carry_forward_days,
    prorate_entitlement,
    unpaid_days_in_period,
)
from gaji_engine.calculators.period_resolver import PeriodResolver
from gaji_engine.calculators.statutory import StatutoryCalculator, build_profile, parse_ic

__all__ = [
    "PayrollItemComputer",
    "PeriodResolver",
    "StatutoryCalculator",
    "LeaveInterval",
    "LeaveSettings",
    "apply_midnight_repair",
    "attendance_bonus_for",
    "build_profile",
    "carry_forward_days",
    "find_midnight_repairs",
    "overtime_minutes",
    "parse_ic",
    "prorate_entitlement",
    "session_worked_minutes",
    "summarize_period",
    "unpaid_days_in_period",
]
