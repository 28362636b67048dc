"""Midnight-crossing repair against stored clock records."""

from datetime import date, time

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gaji_engine.models import ClockInRecord
from gaji_engine.services.attendance_service import AttendanceService

pytestmark = pytest.mark.asyncio


async def _records(session: AsyncSession, employee) -> list[ClockInRecord]:
    result = await session.execute(
        select(ClockInRecord)
        .where(ClockInRecord.employee_id == employee.id)
        .order_by(ClockInRecord.work_date)
    )
    return list(result.scalars().all())


class TestRepairService:
    """Test the repair pass over a company's clock records."""

    async def test_closes_shift_and_deletes_stray(
        self, session: AsyncSession, company, make_employee, make_clock_record
    ):
        employee = await make_employee()
        await make_clock_record(employee, date(2025, 3, 10), clock_in_1=time(18, 0))
        await make_clock_record(employee, date(2025, 3, 11), clock_in_1=time(1, 15))

        report = await AttendanceService(session).repair_midnight_sessions(company.company_id)

        assert (report.repaired, report.deleted, report.dry_run) == (1, 1, False)
        records = await _records(session, employee)
        assert len(records) == 1
        shift = records[0]
        assert shift.work_date == date(2025, 3, 10)
        assert shift.clock_out_2 == time(1, 15)
        assert shift.status == "completed"
        assert shift.total_work_minutes == 435

    async def test_second_pass_is_a_no_op(
        self, session: AsyncSession, company, make_employee, make_clock_record
    ):
        employee = await make_employee()
        await make_clock_record(employee, date(2025, 3, 10), clock_in_1=time(18, 0))
        await make_clock_record(employee, date(2025, 3, 11), clock_in_1=time(1, 15))
        service = AttendanceService(session)
        await service.repair_midnight_sessions(company.company_id)
        first = [r.to_dict() for r in await _records(session, employee)]

        report = await service.repair_midnight_sessions(company.company_id)

        assert (report.repaired, report.deleted) == (0, 0)
        assert [r.to_dict() for r in await _records(session, employee)] == first

    async def test_dry_run_changes_nothing(
        self, session: AsyncSession, company, make_employee, make_clock_record
    ):
        employee = await make_employee()
        prior = await make_clock_record(employee, date(2025, 3, 10), clock_in_1=time(18, 0))
        await make_clock_record(employee, date(2025, 3, 11), clock_in_1=time(1, 15))

        report = await AttendanceService(session).repair_midnight_sessions(
            company.company_id, dry_run=True
        )

        assert (report.repaired, report.deleted, report.dry_run) == (1, 1, True)
        assert prior.clock_out_2 is None
        assert len(await _records(session, employee)) == 2

    async def test_stray_with_later_pair_is_kept(
        self, session: AsyncSession, company, make_employee, make_clock_record
    ):
        employee = await make_employee()
        await make_clock_record(employee, date(2025, 3, 10), clock_in_1=time(18, 0))
        stray = await make_clock_record(
            employee,
            date(2025, 3, 11),
            clock_in_1=time(0, 40),
            clock_in_2=time(18, 0),
            clock_out_2=time(23, 0),
        )

        report = await AttendanceService(session).repair_midnight_sessions(company.company_id)

        assert (report.repaired, report.deleted) == (1, 0)
        assert stray.clock_in_1 is None
        assert stray.total_work_minutes == 300
        assert len(await _records(session, employee)) == 2

    async def test_since_limits_the_pass(
        self, session: AsyncSession, company, make_employee, make_clock_record
    ):
        employee = await make_employee()
        await make_clock_record(employee, date(2025, 3, 10), clock_in_1=time(18, 0))
        await make_clock_record(employee, date(2025, 3, 11), clock_in_1=time(1, 0))
        await make_clock_record(employee, date(2025, 3, 20), clock_in_1=time(19, 0))
        await make_clock_record(employee, date(2025, 3, 21), clock_in_1=time(0, 30))

        report = await AttendanceService(session).repair_midnight_sessions(
            company.company_id, since=date(2025, 3, 15)
        )

        assert report.repaired == 1
        records = {r.work_date: r for r in await _records(session, employee)}
        assert records[date(2025, 3, 10)].clock_out_2 is None
        assert records[date(2025, 3, 20)].clock_out_2 == time(0, 30)
