"""Expense claim and salary advance models."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import CheckConstraint, Date, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column

from gaji_engine.models.base import Base, TimestampMixin


class Claim(Base, TimestampMixin):
    """Expense claim reimbursed through payroll.

    ``linked_payroll_item_id`` is set at most once, when the run that paid
    the claim is finalized.
    """

    __tablename__ = "claim"

    claim_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.id", ondelete="CASCADE"),
        nullable=False,
    )
    claim_date: Mapped[date] = mapped_column(Date, nullable=False)
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    status: Mapped[str] = mapped_column(String, nullable=False, default="pending")
    linked_payroll_item_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("payroll_item.payroll_item_id", ondelete="SET NULL"),
        nullable=True,
    )

    __table_args__ = (
        CheckConstraint(
            "status IN ('pending', 'approved', 'rejected', 'paid')",
            name="claim_status_check",
        ),
        CheckConstraint("amount >= 0", name="claim_amount_check"),
    )


class SalaryAdvance(Base, TimestampMixin):
    """Salary advance recovered through payroll deductions."""

    __tablename__ = "salary_advance"

    salary_advance_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.id", ondelete="CASCADE"),
        nullable=False,
    )
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    amount: Mapped[Decimal] = mapped_column(nullable=False)
    remaining_balance: Mapped[Decimal] = mapped_column(nullable=False)
    deduction_method: Mapped[str] = mapped_column(String, nullable=False, default="full")
    installment_amount: Mapped[Decimal | None] = mapped_column(nullable=True)
    expected_deduction_month: Mapped[int] = mapped_column(Integer, nullable=False)
    expected_deduction_year: Mapped[int] = mapped_column(Integer, nullable=False)
    status: Mapped[str] = mapped_column(String, nullable=False, default="active")

    __table_args__ = (
        CheckConstraint(
            "deduction_method IN ('full', 'installment')",
            name="salary_advance_method_check",
        ),
        CheckConstraint(
            "status IN ('active', 'completed', 'cancelled')",
            name="salary_advance_status_check",
        ),
        CheckConstraint("remaining_balance >= 0", name="salary_advance_balance_check"),
    )
