"""Per-employee payroll item computation.

Dispatches on the department payroll structure to build the earning lines,
applies work-absence deductions, then statutory deductions, then totals.

Totals:
- gross_salary = earnings - work-absence deductions (never negative)
- total_deductions = work-absence + advance + other + statutory (employee side)
- net_pay = earnings - total_deductions (may be negative)
- employer_total_cost = gross_salary + employer EPF/SOCSO/EIS
"""

from __future__ import annotations

import logging
from decimal import Decimal

from gaji_engine.calculators.leave import unpaid_leave_deduction
from gaji_engine.calculators.rounding import floor_to_half, round_to_cents, to_decimal
from gaji_engine.calculators.statutory import StatutoryCalculator
from gaji_engine.calculators.types import (
    ItemInputs,
    ItemRates,
    ItemResult,
    PayrollStructure,
    StatutoryProfile,
    YtdFigures,
)

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")


def attendance_bonus_for(steps: tuple[Decimal, ...], late_days: int, absent_days: int | Decimal) -> Decimal:
    """Step function of late + absent days; zero beyond the table."""
    if not steps:
        return ZERO
    index = int(late_days) + int(absent_days)
    if index < 0 or index >= len(steps):
        return ZERO
    return to_decimal(steps[index])


class PayrollItemComputer:
    """Computes one payroll item from its inputs.

    Pure: the same inputs, profile, month and YTD figures always produce the
    same result.
    """

    def __init__(self, statutory: StatutoryCalculator, rates: ItemRates | None = None):
        self.statutory = statutory
        self.rates = rates or ItemRates()

    # ----- rates -----

    def daily_rate(self, basic: Decimal) -> Decimal:
        if self.rates.work_days <= 0:
            return ZERO
        return basic / Decimal(self.rates.work_days)

    def hourly_rate(self, basic: Decimal) -> Decimal:
        if self.rates.standard_work_hours <= 0:
            return ZERO
        return self.daily_rate(basic) / self.rates.standard_work_hours

    # ----- structure lines -----

    def _derive_structure_lines(self, inputs: ItemInputs, result: ItemResult) -> None:
        """Fill basic / commission / trade / outstation for the structure."""
        structure = inputs.structure

        if inputs.is_part_time:
            hours = floor_to_half(to_decimal(inputs.part_time_hours))
            result.basic_salary = round_to_cents(to_decimal(inputs.hourly_rate) * hours)
            result.fixed_allowance = ZERO
        else:
            result.basic_salary = round_to_cents(to_decimal(inputs.basic_salary))
            result.fixed_allowance = round_to_cents(to_decimal(inputs.fixed_allowance))

        if structure == PayrollStructure.INDOOR_SALES and not inputs.is_part_time:
            floor = self.rates.indoor_sales_basic
            calculated = to_decimal(inputs.sales_amount) * self.rates.indoor_sales_commission_rate / HUNDRED
            if calculated >= floor:
                result.basic_salary = round_to_cents(calculated)
                result.salary_calculation_method = "commission"
            else:
                result.basic_salary = round_to_cents(floor)
                result.salary_calculation_method = "basic"
            result.commission_amount = ZERO

        elif structure == PayrollStructure.OUTDOOR_SALES:
            rate_commission = to_decimal(inputs.sales_amount) * to_decimal(inputs.commission_rate) / HUNDRED
            result.commission_amount = round_to_cents(
                to_decimal(inputs.flexible_commission) + rate_commission
            )

        elif structure == PayrollStructure.DRIVER:
            per_trip = to_decimal(inputs.per_trip_rate) * Decimal(inputs.trip_count)
            result.commission_amount = round_to_cents(to_decimal(inputs.flexible_commission) + per_trip)
            result.trade_commission_amount = round_to_cents(
                to_decimal(inputs.upsell_amount) * to_decimal(inputs.commission_rate) / HUNDRED
            )
            result.outstation_amount = round_to_cents(
                to_decimal(inputs.outstation_rate) * Decimal(inputs.outstation_days)
            )

    def _stored_structure_lines(self, inputs: ItemInputs, result: ItemResult) -> None:
        result.basic_salary = round_to_cents(to_decimal(inputs.basic_salary))
        result.fixed_allowance = (
            ZERO if inputs.is_part_time else round_to_cents(to_decimal(inputs.fixed_allowance))
        )
        result.commission_amount = round_to_cents(to_decimal(inputs.commission_amount))
        result.trade_commission_amount = round_to_cents(to_decimal(inputs.trade_commission_amount))
        result.outstation_amount = round_to_cents(to_decimal(inputs.outstation_amount))
        if inputs.structure == PayrollStructure.INDOOR_SALES and not inputs.is_part_time:
            calculated = to_decimal(inputs.sales_amount) * self.rates.indoor_sales_commission_rate / HUNDRED
            result.salary_calculation_method = (
                "commission" if calculated >= self.rates.indoor_sales_basic else "basic"
            )

    # ----- main -----

    def compute(
        self,
        inputs: ItemInputs,
        profile: StatutoryProfile,
        month: int,
        ytd: YtdFigures | None = None,
    ) -> ItemResult:
        result = ItemResult()

        if inputs.derive_structure_lines:
            self._derive_structure_lines(inputs, result)
        else:
            self._stored_structure_lines(inputs, result)

        basic = result.basic_salary

        # OT and PH
        result.ot_hours = to_decimal(inputs.ot_hours)
        if inputs.ot_amount is not None:
            result.ot_amount = round_to_cents(to_decimal(inputs.ot_amount))
        elif result.ot_hours > 0 and to_decimal(inputs.ot_rate) > 0:
            result.ot_amount = round_to_cents(to_decimal(inputs.ot_rate) * result.ot_hours)
        elif result.ot_hours > 0:
            if inputs.is_part_time:
                per_hour = to_decimal(inputs.hourly_rate)
            else:
                per_hour = self.hourly_rate(basic)
            result.ot_amount = round_to_cents(per_hour * self.rates.ot_multiplier * result.ot_hours)

        result.ph_days_worked = to_decimal(inputs.ph_days_worked)
        if result.ph_days_worked > 0 and not inputs.is_part_time:
            result.ph_pay = round_to_cents(
                self.daily_rate(basic) * result.ph_days_worked * self.rates.ph_multiplier
            )

        # Universal lines
        result.incentive_amount = round_to_cents(to_decimal(inputs.incentive_amount))
        result.bonus = round_to_cents(to_decimal(inputs.bonus))
        result.claims_amount = round_to_cents(to_decimal(inputs.claims_amount))

        if inputs.attendance_bonus is not None:
            result.attendance_bonus = round_to_cents(to_decimal(inputs.attendance_bonus))
        elif not inputs.is_part_time:
            result.attendance_bonus = round_to_cents(
                attendance_bonus_for(
                    self.rates.attendance_bonus_steps, inputs.late_days, to_decimal(inputs.absent_days)
                )
            )

        # Work-absence deductions; part-timers are paid by hours so have none
        if not inputs.is_part_time:
            result.unpaid_leave_days = to_decimal(inputs.unpaid_leave_days)
            result.unpaid_leave_deduction = round_to_cents(
                unpaid_leave_deduction(basic, self.rates.work_days, result.unpaid_leave_days)
            )
            result.absent_days = to_decimal(inputs.absent_days)
            result.absent_day_deduction = round_to_cents(self.daily_rate(basic) * result.absent_days)
            result.short_hours = to_decimal(inputs.short_hours)
            result.short_hours_deduction = round_to_cents(self.hourly_rate(basic) * result.short_hours)

        result.advance_deduction = round_to_cents(to_decimal(inputs.advance_deduction))
        result.other_deductions = round_to_cents(to_decimal(inputs.other_deductions))

        earnings = result.earnings_total
        result.gross_salary = max(ZERO, earnings - result.work_absence_deductions)

        # Statutory: EPF/PCB on basic + commissions + bonus (pre short-hours);
        # SOCSO/EIS on gross as paid, excluding reimbursements
        epf_base = StatutoryCalculator.epf_base(
            basic, result.commission_amount, result.trade_commission_amount, result.bonus
        )
        socso_base = max(ZERO, result.gross_salary - result.claims_amount)
        result.statutory = self.statutory.calculate(
            epf_base=epf_base,
            socso_base=socso_base,
            profile=profile,
            month=month,
            ytd=ytd,
            epf_override=inputs.epf_override,
            pcb_override=inputs.pcb_override,
        )

        st = result.statutory
        result.total_deductions = (
            result.work_absence_deductions
            + result.advance_deduction
            + result.other_deductions
            + st.employee_total
        )
        result.net_pay = earnings - result.total_deductions
        result.employer_total_cost = result.gross_salary + st.employer_total

        if inputs.is_part_time and to_decimal(inputs.hourly_rate) <= 0:
            result.warnings.append("Part-time employee has no hourly rate")

        return result
