"""Claim linkage on finalization.

An approved claim is paid by at most one payroll item, even when runs for
the same month overlap.
"""

from datetime import date
from decimal import Decimal

import pytest
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from gaji_engine.models import Claim
from gaji_engine.services.payroll_run_service import PayrollRunService

pytestmark = pytest.mark.asyncio


class TestClaimLinkage:
    """Test linking approved claims to the items that paid them."""

    async def test_overlapping_runs_link_once(
        self,
        service: PayrollRunService,
        session: AsyncSession,
        company,
        department,
        make_employee,
        make_claim,
    ):
        """Two March claims (120 + 80) appear on both drafts but link to the first finalized."""
        employee = await make_employee(department_id=department.department_id)
        first_claim = await make_claim(employee, "120.00", date(2025, 3, 4))
        second_claim = await make_claim(employee, "80.00", date(2025, 3, 18))

        company_run = await service.create_run(company.company_id, 3, 2025)
        department_run = await service.create_run(
            company.company_id, 3, 2025, department_id=department.department_id
        )
        company_item = (await service.get_run(company_run.run.payroll_run_id)).items[0]
        department_item = (await service.get_run(department_run.run.payroll_run_id)).items[0]
        assert company_item.claims_amount == Decimal("200.00")
        assert department_item.claims_amount == Decimal("200.00")

        first = await service.finalize_run(company_run.run.payroll_run_id)
        second = await service.finalize_run(department_run.run.payroll_run_id)

        assert first.claims_linked == 2
        assert second.claims_linked == 0
        for claim in (first_claim, second_claim):
            await session.refresh(claim)
            assert claim.linked_payroll_item_id == company_item.payroll_item_id

    async def test_claims_excluded_once_linked(
        self,
        service: PayrollRunService,
        company,
        department,
        make_employee,
        make_claim,
    ):
        """A later run for the same month no longer counts linked claims."""
        employee = await make_employee(department_id=department.department_id)
        await make_claim(employee, "120.00", date(2025, 3, 4))

        company_run = await service.create_run(company.company_id, 3, 2025)
        await service.finalize_run(company_run.run.payroll_run_id)

        department_run = await service.create_run(
            company.company_id, 3, 2025, department_id=department.department_id
        )
        item = (await service.get_run(department_run.run.payroll_run_id)).items[0]

        assert item.claims_amount == Decimal("0.00")

    async def test_only_approved_in_period_claims(
        self,
        service: PayrollRunService,
        session: AsyncSession,
        company,
        department,
        make_employee,
        make_claim,
    ):
        employee = await make_employee(department_id=department.department_id)
        approved = await make_claim(employee, "50.00", date(2025, 3, 31))
        pending = await make_claim(employee, "70.00", date(2025, 3, 10), status="pending")
        april = await make_claim(employee, "90.00", date(2025, 4, 1))

        result = await service.create_run(company.company_id, 3, 2025)
        item = (await service.get_run(result.run.payroll_run_id)).items[0]
        assert item.claims_amount == Decimal("50.00")

        await service.finalize_run(result.run.payroll_run_id)

        for claim in (approved, pending, april):
            await session.refresh(claim)
        assert approved.linked_payroll_item_id == item.payroll_item_id
        assert pending.linked_payroll_item_id is None
        assert april.linked_payroll_item_id is None

    async def test_claims_stay_out_of_socso_base(
        self,
        service: PayrollRunService,
        company,
        department,
        make_employee,
        make_claim,
    ):
        employee = await make_employee(department_id=department.department_id)
        await make_claim(employee, "500.00", date(2025, 3, 4))

        result = await service.create_run(company.company_id, 3, 2025)
        item = (await service.get_run(result.run.payroll_run_id)).items[0]

        assert item.gross_salary == Decimal("3500.00")
        # Same SOCSO as an employee earning 3,000 with no claims
        assert item.socso_employee == Decimal("14.75")

    async def test_each_claim_linked_at_most_once(
        self,
        service: PayrollRunService,
        session: AsyncSession,
        company,
        department,
        outlet,
        make_employee,
        make_claim,
    ):
        """Finalize every overlapping run; no claim ends up linked twice."""
        employees = [
            await make_employee(
                department_id=department.department_id, outlet_id=outlet.outlet_id
            )
            for _ in range(3)
        ]
        for n, employee in enumerate(employees):
            await make_claim(employee, f"{10 * (n + 1)}.00", date(2025, 3, 5))
            await make_claim(employee, "15.00", date(2025, 3, 20))

        runs = [
            await service.create_run(company.company_id, 3, 2025),
            await service.create_run(
                company.company_id, 3, 2025, department_id=department.department_id
            ),
            await service.create_run(company.company_id, 3, 2025, outlet_id=outlet.outlet_id),
        ]
        linked = 0
        for created in reversed(runs):
            linked += (await service.finalize_run(created.run.payroll_run_id)).claims_linked

        assert linked == 6
        claims = (await session.execute(select(Claim))).scalars().all()
        for claim in claims:
            await session.refresh(claim)
        assert all(c.linked_payroll_item_id is not None for c in claims)
        # Everything went to the outlet run, finalized first
        outlet_items = {
            i.payroll_item_id
            for i in (await service.get_run(runs[2].run.payroll_run_id)).items
        }
        assert {c.linked_payroll_item_id for c in claims} <= outlet_items
        count = (
            await session.execute(
                select(func.count()).select_from(Claim).where(Claim.linked_payroll_item_id.is_not(None))
            )
        ).scalar_one()
        assert count == len(claims)
