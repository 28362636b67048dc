"""Shift, schedule and clock-in models."""

from __future__ import annotations

from datetime import date, time
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
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column

from gaji_engine.models.base import Base, TimestampMixin

CLOCK_SLOTS = ("clock_in_1", "clock_out_1", "clock_in_2", "clock_out_2")


class ShiftTemplate(Base, TimestampMixin):
    """Reusable shift definition."""

    __tablename__ = "shift_template"

    shift_template_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    code: Mapped[str] = mapped_column(String, nullable=False)
    start_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    end_time: Mapped[time | None] = mapped_column(Time, nullable=True)
    work_minutes: Mapped[int | None] = mapped_column(Integer, nullable=True)
    is_off: Mapped[bool] = mapped_column(Boolean, nullable=False, default=False)
    color: Mapped[str | None] = mapped_column(String, nullable=True)

    __table_args__ = (UniqueConstraint("company_id", "code", name="shift_template_code_unique"),)


class ScheduleAssignment(Base, TimestampMixin):
    """Shift assigned to an employee on a date (no template means off)."""

    __tablename__ = "schedule_assignment"

    schedule_assignment_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.id", ondelete="CASCADE"),
        nullable=False,
    )
    schedule_date: Mapped[date] = mapped_column(Date, nullable=False)
    shift_template_id: Mapped[UUID | None] = mapped_column(
        ForeignKey("shift_template.shift_template_id"),
        nullable=True,
    )

    __table_args__ = (
        UniqueConstraint("employee_id", "schedule_date", name="schedule_employee_date_unique"),
    )


class ClockInRecord(Base, TimestampMixin):
    """Canonical attendance session for one employee on one work date.

    Holds up to two in/out pairs. ``slot_metadata`` maps a slot name
    (``clock_in_1`` ...) to opaque photo/location data captured with it.
    """

    __tablename__ = "clock_in_record"

    clock_in_record_id: Mapped[UUID] = mapped_column(primary_key=True, default=uuid4)
    employee_id: Mapped[UUID] = mapped_column(
        ForeignKey("employee.id", ondelete="CASCADE"),
        nullable=False,
    )
    company_id: Mapped[UUID] = mapped_column(
        ForeignKey("company.company_id", ondelete="CASCADE"),
        nullable=False,
    )
    work_date: Mapped[date] = mapped_column(Date, nullable=False)
    clock_in_1: Mapped[time | None] = mapped_column(Time, nullable=True)
    clock_out_1: Mapped[time | None] = mapped_column(Time, nullable=True)
    clock_in_2: Mapped[time | None] = mapped_column(Time, nullable=True)
    clock_out_2: Mapped[time | None] = mapped_column(Time, nullable=True)
    slot_metadata: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)
    status: Mapped[str] = mapped_column(String, nullable=False, default="in_progress")
    total_work_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    ot_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=0)

    __table_args__ = (
        UniqueConstraint("employee_id", "work_date", name="clock_in_employee_date_unique"),
        CheckConstraint(
            "status IN ('in_progress', 'completed')",
            name="clock_in_status_check",
        ),
    )

    def has_data_besides(self, slot: str) -> bool:
        """True if any clock slot other than ``slot`` is set."""
        return any(getattr(self, s) is not None for s in CLOCK_SLOTS if s != slot)
