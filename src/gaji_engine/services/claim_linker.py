"""At-most-once linking of approved claims to payroll items."""

from __future__ import annotations

import logging
from collections import defaultdict
from decimal import Decimal
from uuid import UUID

from sqlalchemy import func, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from gaji_engine.calculators.types import DateRange
from gaji_engine.models import Claim, PayrollItem

logger = logging.getLogger(__name__)


class ClaimLinker:
    """Links approved claims to the payroll item that paid them.

    Every update is guarded on ``linked_payroll_item_id IS NULL``, so
    concurrent finalizations of overlapping runs cannot link a claim twice.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    async def pending_totals(
        self, employee_ids: list[UUID], period: DateRange
    ) -> dict[UUID, Decimal]:
        """Sum of approved, unlinked claims in the period, per employee."""
        if not employee_ids:
            return {}
        result = await self.session.execute(
            select(Claim.employee_id, func.sum(Claim.amount))
            .where(
                Claim.employee_id.in_(employee_ids),
                Claim.status == "approved",
                Claim.linked_payroll_item_id.is_(None),
                Claim.claim_date >= period.start,
                Claim.claim_date <= period.end,
            )
            .group_by(Claim.employee_id)
        )
        totals: dict[UUID, Decimal] = defaultdict(lambda: Decimal("0"))
        for employee_id, total in result.all():
            totals[employee_id] = Decimal(str(total or 0))
        return dict(totals)

    async def link_item(self, item: PayrollItem, period: DateRange) -> int:
        """Link this item's employee's claims; returns the number linked."""
        result = await self.session.execute(
            update(Claim)
            .where(
                Claim.employee_id == item.employee_id,
                Claim.status == "approved",
                Claim.linked_payroll_item_id.is_(None),
                Claim.claim_date >= period.start,
                Claim.claim_date <= period.end,
            )
            .values(linked_payroll_item_id=item.payroll_item_id)
            .execution_options(synchronize_session=False)
        )
        return result.rowcount or 0

    async def link_run(self, items: list[PayrollItem], period: DateRange) -> int:
        linked = 0
        for item in items:
            linked += await self.link_item(item, period)
        logger.info("Linked %d claims across %d items", linked, len(items))
        return linked
