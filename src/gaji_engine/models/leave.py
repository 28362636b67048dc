"""Leave type, balance and request models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from typing import Any
from uuid import UUID, uuid4

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Date,
    ForeignKey,
    JSON,
    Integer,
    Numeric,
    String,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from gaji_engine.models.base import Base, TimestampMixin


class LeaveType(Base, TimestampMixin):
    """Leave type with yearly entitlement."""

    __tablename__ = "leave_type"

    leave_type_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    code: Mapped[str] = mapped_column(String, nullable=False)
    name: Mapped[str] = mapped_column(String, nullable=False)
    is_paid: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)
    default_days_per_year: Mapped[Decimal] = mapped_column(
        Numeric(5, 1), nullable=False, default=Decimal("0")
    )
    # Service-year tiers, see calculators.leave.entitlement_for_service
    entitlement_rules: Mapped[list[dict[str, Any]] | None] = mapped_column(JSON, nullable=True)
    is_active: Mapped[bool] = mapped_column(Boolean, nullable=False, default=True)

    __table_args__ = (UniqueConstraint("company_id", "code", name="leave_type_code_unique"),)


class LeaveBalance(Base, TimestampMixin):
    """Per employee x leave type x year balance."""

    __tablename__ = "leave_balance"

    leave_balance_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.id", ondelete="CASCADE"),
        nullable=False,
    )
    leave_type_id: Mapped[UUID] = mapped_column(
        ForeignKey("leave_type.leave_type_id", ondelete="CASCADE"),
        nullable=False,
    )
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    entitled_days: Mapped[Decimal] = mapped_column(
        Numeric(5, 1), nullable=False, default=Decimal("0")
    )
    used_days: Mapped[Decimal] = mapped_column(Numeric(5, 1), nullable=False, default=Decimal("0"))
    carried_forward: Mapped[Decimal] = mapped_column(
        Numeric(5, 1), nullable=False, default=Decimal("0")
    )

    __table_args__ = (
        UniqueConstraint(
            "employee_id", "leave_type_id", "year", name="leave_balance_employee_type_year_unique"
        ),
        CheckConstraint("used_days >= 0", name="leave_balance_used_check"),
        CheckConstraint("carried_forward >= 0", name="leave_balance_cf_check"),
    )

    @property
    def remaining_days(self) -> Decimal:
        return self.entitled_days + self.carried_forward - self.used_days


class LeaveRequest(Base, TimestampMixin):
    """Leave request covering an inclusive date interval."""

    __tablename__ = "leave_request"

    leave_request_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.id", ondelete="CASCADE"),
        nullable=False,
    )
    leave_type_id: Mapped[UUID] = mapped_column(
        ForeignKey("leave_type.leave_type_id"),
        nullable=False,
    )
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    total_days: Mapped[Decimal] = mapped_column(Numeric(5, 1), nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'cancelled')",
            name="leave_request_status_check",
        ),
        CheckConstraint("end_date >= start_date", name="leave_request_dates_check"),
        CheckConstraint("total_days > 0", name="leave_request_days_check"),
    )
