"""Leave balances, approvals and payroll-period leave lookups."""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gaji_engine.calculators.leave import (
    LeaveInterval,
    carry_forward_days,
    entitlement_for_service,
    prorate_entitlement,
    unpaid_days_in_period,
)
from gaji_engine.calculators.types import DateRange
from gaji_engine.errors import NotFoundError, ValidationFailedError
from gaji_engine.models import Employee, LeaveBalance, LeaveRequest, LeaveType
from gaji_engine.services.config_service import ConfigService

logger = logging.getLogger(__name__)


class LeaveService:
    """Leave accrual and approval backed by the database."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_approved_intervals(
        self, employee_ids: list[UUID], period: DateRange
    ) -> dict[UUID, list[LeaveInterval]]:
        """Approved leave requests intersecting the period, per employee."""
        if not employee_ids:
            return {}
        result = await self.session.execute(
            select(LeaveRequest, LeaveType.is_paid)
            .join(LeaveType, LeaveRequest.leave_type_id == LeaveType.leave_type_id)
            .where(
                LeaveRequest.employee_id.in_(employee_ids),
                LeaveRequest.status == "approved",
                LeaveRequest.start_date <= period.end,
                LeaveRequest.end_date >= period.start,
            )
        )
        intervals: dict[UUID, list[LeaveInterval]] = defaultdict(list)
        for request, is_paid in result.all():
            intervals[request.employee_id].append(
                LeaveInterval(
                    start_date=request.start_date,
                    end_date=request.end_date,
                    total_days=request.total_days,
                    is_paid=is_paid,
                )
            )
        return intervals

    @staticmethod
    def unpaid_days(
        intervals: dict[UUID, list[LeaveInterval]], period: DateRange
    ) -> dict[UUID, Decimal]:
        return {emp_id: unpaid_days_in_period(items, period) for emp_id, items in intervals.items()}

    async def initialize_year(self, company_id: UUID, year: int) -> int:
        """Create balances for every active employee x active leave type.

        Applies join-year proration and, when enabled, carry-forward from the
        previous year's balance. Existing balances are left untouched.
        Returns the number of balances created.
        """
        settings = await ConfigService(self.session).get_leave_settings(company_id)

        employees = (
            await self.session.execute(
                select(Employee).where(
                    Employee.company_id == company_id,
                    Employee.status == "active",
                )
            )
        ).scalars().all()
        leave_types = (
            await self.session.execute(
                select(LeaveType).where(
                    LeaveType.company_id == company_id,
                    LeaveType.is_active.is_(True),
                )
            )
        ).scalars().all()

        employee_ids = [e.id for e in employees]
        existing = await self._balances_by_key(employee_ids, [year, year - 1])

        created = 0
        for employee in employees:
            if employee.is_part_time:
                continue
            for leave_type in leave_types:
                if (employee.id, leave_type.leave_type_id, year) in existing:
                    continue

                base = entitlement_for_service(
                    leave_type.default_days_per_year,
                    leave_type.entitlement_rules,
                    employee.join_date,
                    year,
                )
                entitled = prorate_entitlement(base, employee.join_date, year, settings)
                prev = existing.get((employee.id, leave_type.leave_type_id, year - 1))
                carried = (
                    carry_forward_days(prev.entitled_days, prev.carried_forward, prev.used_days, settings)
                    if prev is not None
                    else Decimal("0")
                )
                self.session.add(
                    LeaveBalance(
                        employee_id=employee.id,
                        leave_type_id=leave_type.leave_type_id,
                        year=year,
                        entitled_days=entitled,
                        used_days=0,
                        carried_forward=carried,
                    )
                )
                created += 1

        await self.session.flush()
        logger.info("Initialized %d leave balances for company %s year %d", created, company_id, year)
        return created

    async def _balances_by_key(
        self, employee_ids: list[UUID], years: list[int]
    ) -> dict[tuple[UUID, UUID, int], LeaveBalance]:
        if not employee_ids:
            return {}
        result = await self.session.execute(
            select(LeaveBalance).where(
                LeaveBalance.employee_id.in_(employee_ids),
                LeaveBalance.year.in_(years),
            )
        )
        return {(b.employee_id, b.leave_type_id, b.year): b for b in result.scalars()}

    async def approve_request(self, request_id: UUID) -> LeaveRequest:
        """Approve a pending request, consuming the balance for paid types.

        Raises ValidationFailedError when the request is not pending or the
        balance would go negative.
        """
        request = await self.session.get(LeaveRequest, request_id, with_for_update=True)
        if request is None:
            raise NotFoundError("LeaveRequest", request_id)
        if request.status != "pending":
            raise ValidationFailedError(
                f"Leave request {request_id} is {request.status}, not pending", field="status"
            )

        leave_type = await self.session.get(LeaveType, request.leave_type_id)
        if leave_type is not None and leave_type.is_paid:
            balance = (
                await self.session.execute(
                    select(LeaveBalance)
                    .where(
                        LeaveBalance.employee_id == request.employee_id,
                        LeaveBalance.leave_type_id == request.leave_type_id,
                        LeaveBalance.year == request.start_date.year,
                    )
                    .with_for_update()
                )
            ).scalar_one_or_none()
            if balance is None:
                raise ValidationFailedError(
                    f"No {leave_type.code} balance for {request.start_date.year}",
                    field="leave_type_id",
                )
            if balance.remaining_days < request.total_days:
                raise ValidationFailedError(
                    f"Insufficient {leave_type.code} balance: "
                    f"{balance.remaining_days} remaining, {request.total_days} requested",
                    field="total_days",
                )
            balance.used_days = balance.used_days + request.total_days

        request.status = "approved"
        await self.session.flush()
        logger.info("Approved leave request %s", request_id)
        return request
