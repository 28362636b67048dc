"""Sales and trip records feeding commission lines."""

from __future__ import annotations

from datetime import date
from decimal import Decimal
from uuid import UUID, uuid4

from sqlalchemy import Boolean, Date, ForeignKey, Integer, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column

from gaji_engine.models.base import Base, TimestampMixin


class SalesRecord(Base, TimestampMixin):
    """Monthly sales total for a sales employee."""

    __tablename__ = "sales_record"

    sales_record_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.id", ondelete="CASCADE"),
        nullable=False,
    )
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    month: Mapped[int] = mapped_column(Integer, nullable=False)
    year: Mapped[int] = mapped_column(Integer, nullable=False)
    total_sales: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))

    __table_args__ = (
        UniqueConstraint("employee_id", "month", "year", name="sales_record_employee_month_unique"),
    )


class TripLog(Base, TimestampMixin):
    """A driver's delivery trip."""

    __tablename__ = "trip_log"

    trip_log_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.id", ondelete="CASCADE"),
        nullable=False,
    )
    trip_date: Mapped[date] = mapped_column(Date, nullable=False)
    is_outstation: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    upsell_amount: Mapped[Decimal] = mapped_column(nullable=False, default=Decimal("0"))
