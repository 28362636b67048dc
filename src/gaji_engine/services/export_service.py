"""Bank transfer file and payslip exports for payroll runs."""

from __future__ import annotations

import csv
import io
import logging
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gaji_engine.errors import NotFoundError, ValidationFailedError
from gaji_engine.models import Company, Department, Employee, Outlet, PayrollItem, PayrollRun
from gaji_engine.services.state_machine import PayrollRunStatus

logger = logging.getLogger(__name__)

BANK_FILE_HEADER = ("Bank Name", "Account Number", "Employee Name", "Net Pay")


def _money(value: Decimal | None) -> str:
    return f"{Decimal(value or 0):.2f}"


class ExportService:
    """Read-only exports of finalized payroll data."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def bank_file(self, run_id: UUID, company_id: UUID | None = None) -> bytes:
        """CSV of net pay transfers for a finalized run.

        Rows with zero or negative net pay are left out. Ordered by
        employee name.
        """
        run = await self.session.get(PayrollRun, run_id)
        if run is None or (company_id is not None and run.company_id != company_id):
            raise NotFoundError("PayrollRun", run_id)
        if run.status != PayrollRunStatus.FINALIZED.value:
            raise ValidationFailedError(
                f"Bank file requires a finalized run; {run_id} is {run.status}", field="status"
            )

        result = await self.session.execute(
            select(PayrollItem, Employee)
            .join(Employee, PayrollItem.employee_id == Employee.id)
            .where(PayrollItem.payroll_run_id == run_id, PayrollItem.net_pay > 0)
            .order_by(PayrollItem.employee_name, Employee.employee_id)
        )

        buffer = io.StringIO()
        writer = csv.writer(buffer, lineterminator="\n")
        writer.writerow(BANK_FILE_HEADER)
        rows = 0
        for item, employee in result.all():
            writer.writerow(
                [
                    employee.bank_name or "",
                    employee.bank_account_no or "",
                    item.employee_name,
                    _money(item.net_pay),
                ]
            )
            rows += 1

        logger.info("Generated bank file for run %s with %d rows", run_id, rows)
        return buffer.getvalue().encode("utf-8")

    async def payslip(self, item_id: UUID, company_id: UUID | None = None) -> dict[str, Any]:
        """Structured payslip for one payroll item."""
        row = (
            await self.session.execute(
                select(PayrollItem, PayrollRun, Employee)
                .join(PayrollRun, PayrollItem.payroll_run_id == PayrollRun.payroll_run_id)
                .join(Employee, PayrollItem.employee_id == Employee.id)
                .where(PayrollItem.payroll_item_id == item_id)
            )
        ).one_or_none()
        if row is None:
            raise NotFoundError("PayrollItem", item_id)
        item, run, employee = row
        if company_id is not None and run.company_id != company_id:
            raise NotFoundError("PayrollItem", item_id)

        company = await self.session.get(Company, run.company_id)
        department = (
            await self.session.get(Department, employee.department_id)
            if employee.department_id
            else None
        )
        outlet = await self.session.get(Outlet, employee.outlet_id) if employee.outlet_id else None

        earnings = {
            "basic_salary": _money(item.basic_salary),
            "fixed_allowance": _money(item.fixed_allowance),
            "ot_hours": str(item.ot_hours),
            "ot_amount": _money(item.ot_amount),
            "ph_days_worked": str(item.ph_days_worked),
            "ph_pay": _money(item.ph_pay),
            "incentive_amount": _money(item.incentive_amount),
            "commission_amount": _money(item.commission_amount),
            "trade_commission_amount": _money(item.trade_commission_amount),
            "outstation_amount": _money(item.outstation_amount),
            "bonus": _money(item.bonus),
            "attendance_bonus": _money(item.attendance_bonus),
            "claims_amount": _money(item.claims_amount),
        }
        deductions = {
            "epf_employee": _money(item.epf_employee),
            "socso_employee": _money(item.socso_employee),
            "eis_employee": _money(item.eis_employee),
            "pcb": _money(item.pcb),
            "unpaid_leave_days": str(item.unpaid_leave_days),
            "unpaid_leave_deduction": _money(item.unpaid_leave_deduction),
            "absent_days": str(item.absent_days),
            "absent_day_deduction": _money(item.absent_day_deduction),
            "short_hours": str(item.short_hours),
            "short_hours_deduction": _money(item.short_hours_deduction),
            "advance_deduction": _money(item.advance_deduction),
            "other_deductions": _money(item.other_deductions),
            "deduction_remarks": item.deduction_remarks,
        }
        employer = {
            "epf_employer": _money(item.epf_employer),
            "socso_employer": _money(item.socso_employer),
            "eis_employer": _money(item.eis_employer),
        }

        return {
            "company": {
                "name": company.name if company else None,
                "registration_no": company.registration_no if company else None,
                "address": company.address if company else None,
            },
            "employee": {
                "employee_id": employee.employee_id,
                "name": employee.name,
                "ic_number": employee.ic_number,
                "department": department.name if department else None,
                "outlet": outlet.name if outlet else None,
                "epf_number": employee.epf_number,
                "socso_number": employee.socso_number,
                "tax_number": employee.tax_number,
                "bank_name": employee.bank_name,
                "bank_account_no": employee.bank_account_no,
            },
            "period": {
                "month": run.month,
                "year": run.year,
                "label": run.period_label,
                "start_date": run.period_start_date.isoformat(),
                "end_date": run.period_end_date.isoformat(),
                "payment_date": run.payment_due_date.isoformat(),
                "status": run.status,
            },
            "earnings": earnings,
            "deductions": deductions,
            "employer_contributions": employer,
            "totals": {
                "gross_salary": _money(item.gross_salary),
                "total_deductions": _money(item.total_deductions),
                "net_pay": _money(item.net_pay),
                "employer_total_cost": _money(item.employer_total_cost),
            },
            "ytd": {
                "gross": _money(item.ytd_gross + item.gross_salary),
                "epf": _money(item.ytd_epf + item.epf_employee),
                "pcb": _money(item.ytd_pcb + item.pcb),
            },
        }
