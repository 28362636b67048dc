"""Payroll run and item models."""

from __future__ import annotations

from datetime import date, datetime
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    ForeignKey,
    Integer,
    Numeric,
    String,
    Text,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from gaji_engine.models.base import Base, TimestampMixin

ZERO = Decimal("0")


class PayrollRun(Base, TimestampMixin):
    """Payroll run for one company scope and month.

    ``scope_key`` is ``department:<id>``, ``outlet:<id>`` or ``all`` and makes
    (company, month, year, scope) unique even though the unit columns are
    nullable.
    """

    __tablename__ = "payroll_run"

    payroll_run_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    department_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("department.department_id"),
        nullable=True,
    )
    outlet_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("outlet.outlet_id"),
        nullable=True,
    )
    scope_key: Mapped[str] = mapped_column(String, nullable=False, default="all")
    status: Mapped[str] = mapped_column(String, nullable=False, default="draft")
    period_start_date: Mapped[date] = mapped_column(Date, nullable=False)
    period_end_date: Mapped[date] = mapped_column(Date, nullable=False)
    payment_due_date: Mapped[date] = mapped_column(Date, nullable=False)
    period_label: Mapped[str | None] = mapped_column(String, nullable=True)
    work_days_per_month: Mapped[int] = mapped_column(Integer, nullable=False, default=22)
    statutory_version: Mapped[str] = mapped_column(String, nullable=False)
    notes: Mapped[str | None] = mapped_column(Text, nullable=True)

    total_gross: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total_deductions: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total_net: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    total_employer_cost: Mapped[Decimal] = mapped_column(nullable=False, default=ZERO)
    employee_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    has_variance_warning: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)

    finalized_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint(
            "company_id", "month", "year", "scope_key", name="payroll_run_scope_unique"
        ),
        CheckConstraint("month BETWEEN 1 AND 12", name="payroll_run_month_check"),
        CheckConstraint("status IN ('draft', 'finalized')", name="payroll_run_status_check"),
        CheckConstraint(
            "department_id IS NULL OR outlet_id IS NULL",
            name="payroll_run_single_unit_check",
        ),
    )

    # Relationships
    items: Mapped[list[PayrollItem]] = relationship(
        back_populates="payroll_run",
        cascade="all, delete-orphan",
        order_by="PayrollItem.employee_name",
    )

    @staticmethod
    def make_scope_key(department_id: UUID | None, outlet_id: UUID | None) -> str:
        if department_id is not None:
            return f"department:{department_id}"
        if outlet_id is not None:
            return f"outlet:{outlet_id}"
        return "all"


def _money() -> Mapped[Decimal]:
    return mapped_column(nullable=False, default=ZERO)


class PayrollItem(Base, TimestampMixin):
    """One employee's computed pay within a run."""

    __tablename__ = "payroll_item"

    payroll_item_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    payroll_run_id: Mapped[UUID] = mapped_column(
        ForeignKey("payroll_run.payroll_run_id", ondelete="CASCADE"),
        nullable=False,
    )
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.id", ondelete="CASCADE"),
        nullable=False,
    )

    # Snapshot
    employee_name: Mapped[str] = mapped_column(String, nullable=False)
    payroll_structure_code: Mapped[str] = mapped_column(String, nullable=False, default="office")
    work_type: Mapped[str] = mapped_column(String, nullable=False, default="full_time")

    # Earnings
    basic_salary: Mapped[Decimal] = _money()
    fixed_allowance: Mapped[Decimal] = _money()
    ot_hours: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False, default=ZERO)
    ot_amount: Mapped[Decimal] = _money()
    ph_days_worked: Mapped[Decimal] = mapped_column(Numeric(4, 1), nullable=False, default=ZERO)
    ph_pay: Mapped[Decimal] = _money()
    incentive_amount: Mapped[Decimal] = _money()
    commission_amount: Mapped[Decimal] = _money()
    trade_commission_amount: Mapped[Decimal] = _money()
    outstation_amount: Mapped[Decimal] = _money()
    bonus: Mapped[Decimal] = _money()
    attendance_bonus: Mapped[Decimal] = _money()
    claims_amount: Mapped[Decimal] = _money()

    # Work-absence deductions
    unpaid_leave_days: Mapped[Decimal] = mapped_column(Numeric(5, 1), nullable=False, default=ZERO)
    unpaid_leave_deduction: Mapped[Decimal] = _money()
    absent_days: Mapped[Decimal] = mapped_column(Numeric(5, 1), nullable=False, default=ZERO)
    absent_day_deduction: Mapped[Decimal] = _money()
    short_hours: Mapped[Decimal] = mapped_column(Numeric(6, 2), nullable=False, default=ZERO)
    short_hours_deduction: Mapped[Decimal] = _money()

    # Other deductions
    advance_deduction: Mapped[Decimal] = _money()
    other_deductions: Mapped[Decimal] = _money()
    deduction_remarks: Mapped[str | None] = mapped_column(Text, nullable=True)

    # Statutory
    epf_employee: Mapped[Decimal] = _money()
    epf_employer: Mapped[Decimal] = _money()
    socso_employee: Mapped[Decimal] = _money()
    socso_employer: Mapped[Decimal] = _money()
    eis_employee: Mapped[Decimal] = _money()
    eis_employer: Mapped[Decimal] = _money()
    pcb: Mapped[Decimal] = _money()
    epf_override: Mapped[Decimal | None] = mapped_column(nullable=True)
    pcb_override: Mapped[Decimal | None] = mapped_column(nullable=True)
    epf_computed: Mapped[Decimal] = _money()
    pcb_computed: Mapped[Decimal] = _money()
    statutory_base: Mapped[Decimal] = _money()
    statutory_version: Mapped[str] = mapped_column(String, nullable=False)

    # Totals
    gross_salary: Mapped[Decimal] = _money()
    total_deductions: Mapped[Decimal] = _money()
    net_pay: Mapped[Decimal] = _money()
    employer_total_cost: Mapped[Decimal] = _money()

    # Raw inputs kept for recalculation
    sales_amount: Mapped[Decimal] = _money()
    salary_calculation_method: Mapped[str | None] = mapped_column(String, nullable=True)
    trip_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    outstation_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    upsell_amount: Mapped[Decimal] = _money()
    flexible_commission: Mapped[Decimal] = _money()
    part_time_hours: Mapped[Decimal] = mapped_column(Numeric(6, 1), nullable=False, default=ZERO)
    late_days: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    days_worked: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    # YTD and variance
    ytd_gross: Mapped[Decimal] = _money()
    ytd_epf: Mapped[Decimal] = _money()
    ytd_pcb: Mapped[Decimal] = _money()
    prev_month_net: Mapped[Decimal | None] = mapped_column(nullable=True)
    variance_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    variance_percent: Mapped[Decimal | None] = mapped_column(Numeric(8, 2), nullable=True)

    advisory_notes: Mapped[list[str]] = mapped_column(JSON, nullable=False, default=list)

    __table_args__ = (
        UniqueConstraint("payroll_run_id", "employee_id", name="payroll_item_run_employee_unique"),
    )

    # Relationships
    payroll_run: Mapped[PayrollRun] = relationship(back_populates="items")
