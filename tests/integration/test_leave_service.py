"""Leave balance initialization and approval against the database."""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gaji_engine.errors import ValidationFailedError
from gaji_engine.models import LeaveBalance, LeaveRequest
from gaji_engine.services.leave_service import LeaveService

pytestmark = pytest.mark.asyncio


async def _balance(session: AsyncSession, employee, leave_type, year: int) -> LeaveBalance | None:
    result = await session.execute(
        select(LeaveBalance).where(
            LeaveBalance.employee_id == employee.id,
            LeaveBalance.leave_type_id == leave_type.leave_type_id,
            LeaveBalance.year == year,
        )
    )
    return result.scalar_one_or_none()


class TestInitializeYear:
    """Test creating a year's balances."""

    async def test_full_and_prorated_entitlement(
        self, session: AsyncSession, company, make_employee, annual_leave
    ):
        veteran = await make_employee()
        joiner = await make_employee(join_date=date(2025, 7, 20))

        created = await LeaveService(session).initialize_year(company.company_id, 2025)

        assert created == 2
        assert (await _balance(session, veteran, annual_leave, 2025)).entitled_days == Decimal("14")
        assert (await _balance(session, joiner, annual_leave, 2025)).entitled_days == Decimal("6.0")

    async def test_entitlement_by_years_of_service(
        self, session: AsyncSession, company, make_employee, annual_leave
    ):
        """Tiers 8 / 12 / 16 by completed years at 1 January, then prorated."""
        annual_leave.entitlement_rules = [
            {"min_years": 0, "max_years": 2, "days": 8},
            {"min_years": 2, "max_years": 5, "days": 12},
            {"min_years": 5, "days": 16},
        ]
        junior = await make_employee(join_date=date(2024, 6, 1))
        mid = await make_employee(join_date=date(2023, 1, 1))
        senior = await make_employee(join_date=date(2020, 1, 1))
        joiner = await make_employee(join_date=date(2025, 7, 20))
        await session.flush()

        await LeaveService(session).initialize_year(company.company_id, 2025)

        assert (await _balance(session, junior, annual_leave, 2025)).entitled_days == Decimal("8")
        assert (await _balance(session, mid, annual_leave, 2025)).entitled_days == Decimal("12")
        assert (await _balance(session, senior, annual_leave, 2025)).entitled_days == Decimal("16")
        # 8 x 5 / 12 = 3.33, rounded to the nearest half day
        assert (await _balance(session, joiner, annual_leave, 2025)).entitled_days == Decimal("3.5")

    async def test_part_timers_skipped(
        self, session: AsyncSession, company, make_employee, annual_leave
    ):
        part_timer = await make_employee(work_type="part_time", hourly_rate=Decimal("10.00"))

        created = await LeaveService(session).initialize_year(company.company_id, 2025)

        assert created == 0
        assert await _balance(session, part_timer, annual_leave, 2025) is None

    async def test_existing_balances_untouched(
        self, session: AsyncSession, company, make_employee, annual_leave
    ):
        employee = await make_employee()
        service = LeaveService(session)
        await service.initialize_year(company.company_id, 2025)
        balance = await _balance(session, employee, annual_leave, 2025)
        balance.used_days = Decimal("3")
        await session.flush()

        assert await service.initialize_year(company.company_id, 2025) == 0
        assert balance.used_days == Decimal("3")

    async def test_carry_forward_bounded(
        self, session: AsyncSession, company, make_employee, annual_leave
    ):
        company.leave_settings = {"carry_forward_enabled": True, "max_carry_forward_days": 5}
        light_user = await make_employee()
        heavy_user = await make_employee()
        session.add_all(
            [
                LeaveBalance(
                    employee_id=light_user.id,
                    leave_type_id=annual_leave.leave_type_id,
                    year=2024,
                    entitled_days=Decimal("14"),
                    used_days=Decimal("2"),
                    carried_forward=Decimal("0"),
                ),
                LeaveBalance(
                    employee_id=heavy_user.id,
                    leave_type_id=annual_leave.leave_type_id,
                    year=2024,
                    entitled_days=Decimal("14"),
                    used_days=Decimal("11"),
                    carried_forward=Decimal("0"),
                ),
            ]
        )
        await session.flush()

        await LeaveService(session).initialize_year(company.company_id, 2025)

        assert (await _balance(session, light_user, annual_leave, 2025)).carried_forward == Decimal("5")
        assert (await _balance(session, heavy_user, annual_leave, 2025)).carried_forward == Decimal("3")

    async def test_no_carry_forward_by_default(
        self, session: AsyncSession, company, make_employee, annual_leave
    ):
        employee = await make_employee()
        session.add(
            LeaveBalance(
                employee_id=employee.id,
                leave_type_id=annual_leave.leave_type_id,
                year=2024,
                entitled_days=Decimal("14"),
                used_days=Decimal("0"),
                carried_forward=Decimal("0"),
            )
        )
        await session.flush()

        await LeaveService(session).initialize_year(company.company_id, 2025)

        assert (await _balance(session, employee, annual_leave, 2025)).carried_forward == Decimal("0")


class TestApproveRequest:
    """Test approving leave against the balance."""

    async def _request(self, session, employee, leave_type, days: str, **fields) -> LeaveRequest:
        request = LeaveRequest(
            employee_id=employee.id,
            leave_type_id=leave_type.leave_type_id,
            start_date=fields.pop("start_date", date(2025, 3, 10)),
            end_date=fields.pop("end_date", date(2025, 3, 12)),
            total_days=Decimal(days),
            **fields,
        )
        session.add(request)
        await session.flush()
        return request

    async def test_paid_leave_consumes_balance(
        self, session: AsyncSession, company, make_employee, annual_leave
    ):
        employee = await make_employee()
        service = LeaveService(session)
        await service.initialize_year(company.company_id, 2025)
        request = await self._request(session, employee, annual_leave, "3")

        approved = await service.approve_request(request.leave_request_id)

        assert approved.status == "approved"
        balance = await _balance(session, employee, annual_leave, 2025)
        assert balance.used_days == Decimal("3")
        assert balance.remaining_days == Decimal("11")

    async def test_insufficient_balance(
        self, session: AsyncSession, company, make_employee, annual_leave
    ):
        employee = await make_employee(join_date=date(2025, 7, 20))
        service = LeaveService(session)
        await service.initialize_year(company.company_id, 2025)
        request = await self._request(
            session,
            employee,
            annual_leave,
            "7",
            start_date=date(2025, 9, 1),
            end_date=date(2025, 9, 9),
        )

        with pytest.raises(ValidationFailedError) as exc_info:
            await service.approve_request(request.leave_request_id)

        assert exc_info.value.field == "total_days"
        assert request.status == "pending"

    async def test_missing_balance(self, session: AsyncSession, make_employee, annual_leave):
        employee = await make_employee()
        request = await self._request(session, employee, annual_leave, "1")

        with pytest.raises(ValidationFailedError):
            await LeaveService(session).approve_request(request.leave_request_id)

    async def test_unpaid_leave_needs_no_balance(
        self, session: AsyncSession, make_employee, unpaid_leave
    ):
        employee = await make_employee()
        request = await self._request(session, employee, unpaid_leave, "2")

        approved = await LeaveService(session).approve_request(request.leave_request_id)

        assert approved.status == "approved"

    async def test_only_pending_requests(
        self, session: AsyncSession, make_employee, unpaid_leave
    ):
        employee = await make_employee()
        request = await self._request(session, employee, unpaid_leave, "1", status="rejected")

        with pytest.raises(ValidationFailedError) as exc_info:
            await LeaveService(session).approve_request(request.leave_request_id)
        assert exc_info.value.field == "status"
