"""Company and organizational structure models."""

from __future__ import annotations

from datetime import date
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    Integer,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from gaji_engine.models.base import Base, TimestampMixin


class Company(Base, TimestampMixin):
    """Tenant company (employer)."""

    __tablename__ = "company"

    company_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    name: Mapped[str] = mapped_column(String, nullable=False)
    code: Mapped[str | None] = mapped_column(String, nullable=True, unique=True)
    registration_no: Mapped[str | None] = mapped_column(String, nullable=True)
    address: Mapped[str | None] = mapped_column(String, nullable=True)
    grouping_type: Mapped[str] = mapped_column(String, nullable=False, default="department")
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")
    payroll_settings: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    leave_settings: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    __table_args__ = (
        CheckConstraint(
            "grouping_type IN ('department', 'outlet')", name="company_grouping_type_check"
        ),
        CheckConstraint("status IN ('active', 'suspended', 'closed')", name="company_status_check"),
    )


class Department(Base, TimestampMixin):
    """Department within a company; selects the payroll structure."""

    __tablename__ = "department"

    department_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    payroll_structure_code: Mapped[str] = mapped_column(String, nullable=False, default="office")
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        UniqueConstraint("company_id", "name", name="department_company_name_unique"),
        CheckConstraint(
            "payroll_structure_code IN ('office', 'indoor_sales', 'outdoor_sales', 'driver')",
            name="department_structure_check",
        ),
    )


class Outlet(Base, TimestampMixin):
    """Physical outlet (branch) for outlet-grouped companies."""

    __tablename__ = "outlet"

    outlet_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    name: Mapped[str] = mapped_column(String, nullable=False)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (UniqueConstraint("company_id", "name", name="outlet_company_name_unique"),)


class PayrollConfig(Base, TimestampMixin):
    """Payroll period configuration.

    A row with ``department_id`` set overrides the company-wide row
    (``department_id IS NULL``).
    """

    __tablename__ = "payroll_config"

    payroll_config_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    department_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("department.department_id", ondelete="CASCADE"),
        nullable=True,
    )
    period_type: Mapped[str] = mapped_column(String, nullable=False, default="calendar_month")
    period_start_day: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    period_end_day: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    payment_day: Mapped[int] = mapped_column(Integer, nullable=False, default=5)
    payment_month_offset: Mapped[int] = mapped_column(Integer, nullable=False, default=1)
    commission_period_offset: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    work_days_per_month: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (
        CheckConstraint(
            "period_type IN ('calendar_month', 'mid_month')", name="payroll_config_period_type_check"
        ),
        CheckConstraint(
            "period_start_day BETWEEN 1 AND 31", name="payroll_config_start_day_check"
        ),
        CheckConstraint("period_end_day BETWEEN 0 AND 31", name="payroll_config_end_day_check"),
        CheckConstraint("payment_day BETWEEN 1 AND 31", name="payroll_config_payment_day_check"),
    )


class PublicHoliday(Base):
    """Public holiday on the company calendar."""

    __tablename__ = "public_holiday"

    public_holiday_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    holiday_date: Mapped[date] = mapped_column(Date, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)

    __table_args__ = (
        UniqueConstraint("company_id", "holiday_date", name="public_holiday_company_date_unique"),
    )
