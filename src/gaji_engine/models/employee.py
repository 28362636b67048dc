"""Employee and recurring pay component models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from gaji_engine.models.base import Base, TimestampMixin


class Employee(Base, TimestampMixin):
    """Employee record with statutory profile and default salary components."""

    __tablename__ = "employee"

    id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[str] = mapped_column(String, nullable=False)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    department_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("department.department_id"),
        nullable=True,
    )
    outlet_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("outlet.outlet_id"),
        nullable=True,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)

    # Statutory profile
    ic_number: Mapped[str | None] = mapped_column(String, nullable=True)
    date_of_birth: Mapped[date | None] = mapped_column(Date, nullable=True)
    epf_contribution_type: Mapped[str] = mapped_column(String, nullable=False, default="normal")
    epf_voluntary_rate: Mapped[Decimal | None] = mapped_column(Numeric(5, 2), nullable=True)
    epf_foreign_opt_in: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    marital_status: Mapped[str] = mapped_column(String, nullable=False, default="single")
    spouse_working: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    children_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    epf_number: Mapped[str | None] = mapped_column(String, nullable=True)
    socso_number: Mapped[str | None] = mapped_column(String, nullable=True)
    tax_number: Mapped[str | None] = mapped_column(String, nullable=True)

    # Employment
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")
    employment_type: Mapped[str] = mapped_column(String, nullable=False, default="confirmed")
    work_type: Mapped[str] = mapped_column(String, nullable=False, default="full_time")
    join_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    resign_date: Mapped[date | None] = mapped_column(Date, nullable=True)
    payroll_structure_code: Mapped[str | None] = mapped_column(String, nullable=True)

    # Default salary components
    default_basic_salary: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    default_allowance: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    hourly_rate: Mapped[Decimal | None] = mapped_column(nullable=True)
    commission_rate: Mapped[Decimal] = mapped_column(
        Numeric(5, 2), nullable=False, default=Decimal("0")
    )
    per_trip_rate: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    ot_rate: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    outstation_rate: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    default_bonus: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
    default_incentive: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    # Payment
    bank_name: Mapped[str | None] = mapped_column(String, nullable=True)
    bank_account_no: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (
        UniqueConstraint("company_id", "employee_id", name="employee_company_code_unique"),
        CheckConstraint(
            "status IN ('active', 'inactive', 'resigned')",
            name="employee_status_check",
        ),
        CheckConstraint(
            "employment_type IN ('probation', 'confirmed', 'contract', 'part_time')",
            name="employee_employment_type_check",
        ),
        CheckConstraint(
            "work_type IN ('full_time', 'part_time')",
            name="employee_work_type_check",
        ),
        CheckConstraint(
            "epf_contribution_type IN ('normal', 'voluntary_higher', 'none')",
            name="employee_epf_type_check",
        ),
        CheckConstraint("children_count >= 0", name="employee_children_count_check"),
    )

    @property
    def is_part_time(self) -> bool:
        return self.work_type == "part_time" or self.employment_type == "part_time"


class EmployeeCommission(Base, TimestampMixin):
    """Recurring flexible commission configured for an employee."""

    __tablename__ = "employee_commission"

    employee_commission_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.id", ondelete="CASCADE"),
        nullable=False,
    )
    commission_type: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (CheckConstraint("amount >= 0", name="employee_commission_amount_check"),)


class EmployeeAllowance(Base, TimestampMixin):
    """Recurring flexible allowance configured for an employee."""

    __tablename__ = "employee_allowance"

    employee_allowance_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.id", ondelete="CASCADE"),
        nullable=False,
    )
    allowance_type: Mapped[str] = mapped_column(String, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (CheckConstraint("amount >= 0", name="employee_allowance_amount_check"),)
