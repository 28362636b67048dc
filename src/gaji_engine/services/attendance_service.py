"""Attendance data loading, period folding and midnight-crossing repair."""

from __future__ import annotations

import logging
from collections import defaultdict
from dataclasses import dataclass
from datetime import date, timedelta
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession

from gaji_engine.calculators.attendance import (
    STANDARD_SHIFT_MINUTES,
    apply_midnight_repair,
    find_midnight_repairs,
    summarize_period,
)
from gaji_engine.calculators.leave import LeaveInterval, leave_dates_in_period
from gaji_engine.calculators.types import (
    AttendanceSummary,
    DateRange,
    ScheduledShift,
    SessionTimes,
)
from gaji_engine.errors import InternalError
from gaji_engine.models import ClockInRecord, PublicHoliday, ScheduleAssignment, ShiftTemplate

logger = logging.getLogger(__name__)


@dataclass
class RepairReport:
    """Outcome of a midnight repair pass."""

    repaired: int = 0
    deleted: int = 0
    dry_run: bool = False


class AttendanceService:
    """Reads attendance facts for a period and folds them per employee."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_holidays(self, company_id: UUID, period: DateRange) -> set[date]:
        result = await self.session.execute(
            select(PublicHoliday.holiday_date).where(
                PublicHoliday.company_id == company_id,
                PublicHoliday.holiday_date >= period.start,
                PublicHoliday.holiday_date <= period.end,
            )
        )
        return set(result.scalars().all())

    async def get_sessions(
        self, employee_ids: list[UUID], period: DateRange
    ) -> dict[UUID, dict[date, SessionTimes]]:
        if not employee_ids:
            return {}
        result = await self.session.execute(
            select(ClockInRecord).where(
                ClockInRecord.employee_id.in_(employee_ids),
                ClockInRecord.work_date >= period.start,
                ClockInRecord.work_date <= period.end,
            )
        )
        sessions: dict[UUID, dict[date, SessionTimes]] = defaultdict(dict)
        for record in result.scalars():
            sessions[record.employee_id][record.work_date] = SessionTimes(
                clock_in_1=record.clock_in_1,
                clock_out_1=record.clock_out_1,
                clock_in_2=record.clock_in_2,
                clock_out_2=record.clock_out_2,
            )
        return sessions

    async def get_schedules(
        self, employee_ids: list[UUID], period: DateRange
    ) -> dict[UUID, dict[date, ScheduledShift]]:
        if not employee_ids:
            return {}
        result = await self.session.execute(
            select(ScheduleAssignment, ShiftTemplate)
            .outerjoin(
                ShiftTemplate,
                ScheduleAssignment.shift_template_id == ShiftTemplate.shift_template_id,
            )
            .where(
                ScheduleAssignment.employee_id.in_(employee_ids),
                ScheduleAssignment.schedule_date >= period.start,
                ScheduleAssignment.schedule_date <= period.end,
            )
        )
        schedules: dict[UUID, dict[date, ScheduledShift]] = defaultdict(dict)
        for assignment, template in result.all():
            schedules[assignment.employee_id][assignment.schedule_date] = ScheduledShift(
                work_date=assignment.schedule_date,
                start_time=template.start_time if template else None,
                work_minutes=template.work_minutes if template else None,
                is_off=template is None or template.is_off,
            )
        return schedules

    async def summarize(
        self,
        company_id: UUID,
        employee_ids: list[UUID],
        period: DateRange,
        leave: dict[UUID, list[LeaveInterval]],
        *,
        standard_minutes: int = STANDARD_SHIFT_MINUTES,
        short_tolerance_minutes: int = 10,
        late_grace_minutes: int = 10,
        count_absence: bool = True,
        until: date | None = None,
    ) -> dict[UUID, AttendanceSummary]:
        """Fold sessions and schedules for each employee over the period."""
        holidays = await self.get_holidays(company_id, period)
        sessions = await self.get_sessions(employee_ids, period)
        schedules = await self.get_schedules(employee_ids, period)

        summaries: dict[UUID, AttendanceSummary] = {}
        for employee_id in employee_ids:
            summaries[employee_id] = summarize_period(
                period,
                sessions.get(employee_id, {}),
                schedules.get(employee_id, {}),
                holidays,
                leave_dates_in_period(leave.get(employee_id, []), period),
                standard_minutes=standard_minutes,
                short_tolerance_minutes=short_tolerance_minutes,
                late_grace_minutes=late_grace_minutes,
                count_absence=count_absence,
                until=until,
            )
        return summaries

    async def repair_midnight_sessions(
        self,
        company_id: UUID,
        since: date | None = None,
        dry_run: bool = False,
        standard_minutes: int = STANDARD_SHIFT_MINUTES,
    ) -> RepairReport:
        """Close open sessions with the next day's stray early clock-in.

        Re-entrant: a second pass over repaired data finds nothing to do.
        """
        query = select(ClockInRecord).where(ClockInRecord.company_id == company_id)
        if since is not None:
            # Include the day before so the first stray can find its session
            query = query.where(ClockInRecord.work_date >= since - timedelta(days=1))
        query = query.order_by(ClockInRecord.employee_id, ClockInRecord.work_date).with_for_update()

        report = RepairReport(dry_run=dry_run)
        try:
            records = (await self.session.execute(query)).scalars().all()
            repairs = find_midnight_repairs(records)
            if since is not None:
                repairs = [r for r in repairs if r.stray.work_date >= since]

            if dry_run:
                report.repaired = len(repairs)
                report.deleted = sum(1 for r in repairs if not r.stray.has_data_besides("clock_in_1"))
                return report

            for repair in repairs:
                delete_stray = apply_midnight_repair(repair, standard_minutes)
                report.repaired += 1
                if delete_stray:
                    await self.session.delete(repair.stray)
                    report.deleted += 1
                logger.info(
                    "Repaired midnight session for employee %s on %s",
                    repair.prior.employee_id,
                    repair.prior.work_date,
                )
            await self.session.flush()
        except SQLAlchemyError as e:
            await self.session.rollback()
            raise InternalError(f"Midnight repair failed: {e}") from e

        logger.info(
            "Midnight repair for company %s: %d repaired, %d deleted",
            company_id,
            report.repaired,
            report.deleted,
        )
        return report
