"""Type definitions for the computation pipeline."""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, time
from decimal import Decimal
from enum import Enum

from gaji_engine.calculators.rounding import floor_to_half

ZERO = Decimal("0")


class PayrollStructure(str, Enum):
    """Department payroll structure; selects which earning lines apply."""

    OFFICE = "office"
    INDOOR_SALES = "indoor_sales"
    OUTDOOR_SALES = "outdoor_sales"
    DRIVER = "driver"

    @classmethod
    def parse(cls, value: str | None) -> PayrollStructure:
        if not value:
            return cls.OFFICE
        return cls(value)


class PeriodType(str, Enum):
    """Payroll period shape."""

    CALENDAR_MONTH = "calendar_month"
    MID_MONTH = "mid_month"


class ProrationRounding(str, Enum):
    """Rounding mode for prorated leave entitlement."""

    UP = "up"
    DOWN = "down"
    NEAREST = "nearest"


# ===== Period =====


@dataclass(frozen=True)
class DateRange:
    """Inclusive date range with a display label."""

    start: date
    end: date
    label: str

    def contains(self, day: date) -> bool:
        return self.start <= day <= self.end

    def overlap_days(self, start: date, end: date) -> int:
        """Number of calendar days of [start, end] inside this range."""
        lo = max(start, self.start)
        hi = min(end, self.end)
        return max(0, (hi - lo).days + 1)


@dataclass(frozen=True)
class PeriodConfig:
    """Period configuration resolved for a company / department."""

    period_type: PeriodType = PeriodType.CALENDAR_MONTH
    period_start_day: int = 1
    period_end_day: int = 0
    payment_day: int = 5
    payment_month_offset: int = 1
    commission_period_offset: int = 0
    work_days_per_month: int | None = None


@dataclass(frozen=True)
class PeriodResolution:
    """Output of the period resolver."""

    period: DateRange
    payment: DateRange
    commission_period: DateRange

    @property
    def payment_date(self) -> date:
        return self.payment.start


# ===== Statutory =====


@dataclass(frozen=True)
class StatutoryProfile:
    """Employee profile fields that drive statutory rules."""

    age: int | None = None
    is_malaysian: bool = True
    epf_contribution_type: str = "normal"
    epf_voluntary_rate: Decimal | None = None
    epf_foreign_opt_in: bool = False
    marital_status: str = "single"
    spouse_working: bool = False
    children_count: int = 0
    notes: tuple[str, ...] = ()

    @property
    def effective_age(self) -> int:
        """Age used for bucket selection; unknown age takes the under-60 bucket."""
        return self.age if self.age is not None else 0

    @property
    def has_non_working_spouse(self) -> bool:
        return self.marital_status == "married" and not self.spouse_working


@dataclass(frozen=True)
class YtdFigures:
    """Year-to-date figures from finalized runs before the current month."""

    gross: Decimal = ZERO
    statutory_base: Decimal = ZERO
    epf_employee: Decimal = ZERO
    pcb: Decimal = ZERO


@dataclass(frozen=True)
class StatutoryToggles:
    """Company switches for each statutory deduction."""

    epf_enabled: bool = True
    socso_enabled: bool = True
    eis_enabled: bool = True
    pcb_enabled: bool = True


@dataclass
class StatutoryResult:
    """Statutory deductions and employer contributions for one item."""

    epf_employee: Decimal = ZERO
    epf_employer: Decimal = ZERO
    socso_employee: Decimal = ZERO
    socso_employer: Decimal = ZERO
    eis_employee: Decimal = ZERO
    eis_employer: Decimal = ZERO
    pcb: Decimal = ZERO

    # Values before overrides, kept for audit
    epf_computed: Decimal = ZERO
    pcb_computed: Decimal = ZERO

    epf_base: Decimal = ZERO
    socso_base: Decimal = ZERO
    version: str = ""
    advisory_notes: list[str] = field(default_factory=list)

    @property
    def employee_total(self) -> Decimal:
        return self.epf_employee + self.socso_employee + self.eis_employee + self.pcb

    @property
    def employer_total(self) -> Decimal:
        return self.epf_employer + self.socso_employer + self.eis_employer


# ===== Attendance =====


@dataclass(frozen=True)
class SessionTimes:
    """Up to two in/out pairs recorded for a work date."""

    clock_in_1: time | None = None
    clock_out_1: time | None = None
    clock_in_2: time | None = None
    clock_out_2: time | None = None


@dataclass(frozen=True)
class ScheduledShift:
    """A scheduled working shift on a date."""

    work_date: date
    start_time: time | None = None
    work_minutes: int | None = None
    is_off: bool = False


@dataclass
class AttendanceSummary:
    """Period aggregates derived from clock sessions and schedules."""

    worked_minutes: int = 0
    ot_minutes: int = 0
    ph_days_worked: int = 0
    absent_days: int = 0
    short_minutes: int = 0
    late_days: int = 0
    days_worked: int = 0

    @property
    def ot_hours(self) -> Decimal:
        return (Decimal(self.ot_minutes) / Decimal(60)).quantize(Decimal("0.01"))

    @property
    def short_hours(self) -> Decimal:
        return (Decimal(self.short_minutes) / Decimal(60)).quantize(Decimal("0.01"))

    @property
    def part_time_hours(self) -> Decimal:
        """Worked hours rounded down to the half hour."""
        return floor_to_half(Decimal(self.worked_minutes) / Decimal(60))


# ===== Item computation =====


@dataclass(frozen=True)
class PriorSnapshot:
    """Previous period's item for salary carry-forward and variance."""

    basic_salary: Decimal
    fixed_allowance: Decimal
    net_pay: Decimal | None = None


@dataclass(frozen=True)
class ItemRates:
    """Company rate settings used by the item computer."""

    work_days: int = 22
    standard_work_hours: Decimal = Decimal("8")
    ot_multiplier: Decimal = Decimal("1.5")
    ph_multiplier: Decimal = Decimal("1.0")
    indoor_sales_basic: Decimal = Decimal("4000")
    indoor_sales_commission_rate: Decimal = Decimal("6")
    attendance_bonus_steps: tuple[Decimal, ...] = ()


@dataclass
class ItemInputs:
    """Raw inputs for one payroll item.

    Quantities (hours, days, sales) are the stored raw inputs. On create the
    structure lines (basic for indoor sales, commission, trade commission,
    outstation) are derived from them; on recalculation the stored lines are
    taken as given so edits survive and the result is reproducible.
    """

    structure: PayrollStructure = PayrollStructure.OFFICE
    is_part_time: bool = False
    basic_salary: Decimal = ZERO
    fixed_allowance: Decimal = ZERO
    hourly_rate: Decimal = ZERO
    part_time_hours: Decimal = ZERO

    ot_hours: Decimal = ZERO
    ot_amount: Decimal | None = None
    # Flat RM per OT hour; zero falls back to the hourly rate times the multiplier
    ot_rate: Decimal = ZERO
    ph_days_worked: Decimal = ZERO

    flexible_commission: Decimal = ZERO
    commission_rate: Decimal = ZERO
    sales_amount: Decimal = ZERO
    per_trip_rate: Decimal = ZERO
    trip_count: int = 0
    upsell_amount: Decimal = ZERO
    outstation_rate: Decimal = ZERO
    outstation_days: int = 0

    incentive_amount: Decimal = ZERO
    bonus: Decimal = ZERO
    claims_amount: Decimal = ZERO
    attendance_bonus: Decimal | None = None
    late_days: int = 0

    unpaid_leave_days: Decimal = ZERO
    absent_days: Decimal = ZERO
    short_hours: Decimal = ZERO
    advance_deduction: Decimal = ZERO
    other_deductions: Decimal = ZERO

    epf_override: Decimal | None = None
    pcb_override: Decimal | None = None

    # Stored lines, used as-is when derive_structure_lines is False
    commission_amount: Decimal = ZERO
    trade_commission_amount: Decimal = ZERO
    outstation_amount: Decimal = ZERO
    derive_structure_lines: bool = True


@dataclass
class ItemResult:
    """Computed lines and totals for one payroll item."""

    basic_salary: Decimal = ZERO
    fixed_allowance: Decimal = ZERO
    ot_hours: Decimal = ZERO
    ot_amount: Decimal = ZERO
    ph_days_worked: Decimal = ZERO
    ph_pay: Decimal = ZERO
    incentive_amount: Decimal = ZERO
    commission_amount: Decimal = ZERO
    trade_commission_amount: Decimal = ZERO
    outstation_amount: Decimal = ZERO
    bonus: Decimal = ZERO
    attendance_bonus: Decimal = ZERO
    claims_amount: Decimal = ZERO

    unpaid_leave_days: Decimal = ZERO
    unpaid_leave_deduction: Decimal = ZERO
    absent_days: Decimal = ZERO
    absent_day_deduction: Decimal = ZERO
    short_hours: Decimal = ZERO
    short_hours_deduction: Decimal = ZERO
    advance_deduction: Decimal = ZERO
    other_deductions: Decimal = ZERO

    statutory: StatutoryResult = field(default_factory=StatutoryResult)
    salary_calculation_method: str | None = None

    gross_salary: Decimal = ZERO
    total_deductions: Decimal = ZERO
    net_pay: Decimal = ZERO
    employer_total_cost: Decimal = ZERO
    warnings: list[str] = field(default_factory=list)

    @property
    def earnings_total(self) -> Decimal:
        return (
            self.basic_salary
            + self.fixed_allowance
            + self.ot_amount
            + self.ph_pay
            + self.incentive_amount
            + self.commission_amount
            + self.trade_commission_amount
            + self.outstation_amount
            + self.bonus
            + self.attendance_bonus
            + self.claims_amount
        )

    @property
    def work_absence_deductions(self) -> Decimal:
        return self.unpaid_leave_deduction + self.absent_day_deduction + self.short_hours_deduction
