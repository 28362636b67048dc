"""Company payroll settings and period configuration lookup."""

from __future__ import annotations

import copy
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from gaji_engine.calculators.leave import LeaveSettings
from gaji_engine.calculators.rounding import to_decimal
from gaji_engine.calculators.types import ItemRates, PeriodConfig, PeriodType, StatutoryToggles
from gaji_engine.config import get_settings
from gaji_engine.errors import NotFoundError
from gaji_engine.models import Company, PayrollConfig

DEFAULT_PAYROLL_SETTINGS: dict[str, Any] = {
    "features": {
        "auto_ot_from_clockin": True,
        "auto_ph_pay": True,
        "auto_claims_linking": True,
        "unpaid_leave_deduction": True,
        "salary_carry_forward": True,
        "flexible_commissions": True,
        "flexible_allowances": True,
        "indoor_sales_logic": True,
        "ytd_pcb_calculation": True,
        "attendance_bonus": False,
        "schedule_based_absence": True,
    },
    "rates": {
        "ot_multiplier": "1.5",
        "ph_multiplier": "1.0",
        "indoor_sales_basic": "4000",
        "indoor_sales_commission_rate": "6",
        "standard_work_hours": "8",
        "standard_work_minutes": 450,
        "short_hours_tolerance_minutes": 10,
        "late_grace_minutes": 10,
        "attendance_bonus_steps": ["400", "300", "200", "100"],
    },
    "statutory": {
        "epf_enabled": True,
        "socso_enabled": True,
        "eis_enabled": True,
        "pcb_enabled": True,
    },
}


def merge_settings(overrides: dict[str, Any] | None) -> dict[str, Any]:
    """Deep-merge stored company settings over the defaults."""
    merged = copy.deepcopy(DEFAULT_PAYROLL_SETTINGS)
    for group, values in (overrides or {}).items():
        if isinstance(values, dict) and isinstance(merged.get(group), dict):
            merged[group].update(values)
        else:
            merged[group] = values
    return merged


@dataclass(frozen=True)
class PayrollSettings:
    """Resolved company payroll settings."""

    features: dict[str, bool] = field(default_factory=dict)
    rates: dict[str, Any] = field(default_factory=dict)
    toggles: StatutoryToggles = field(default_factory=StatutoryToggles)
    grouping_type: str = "department"

    @classmethod
    def from_dict(cls, data: dict[str, Any] | None, grouping_type: str = "department") -> PayrollSettings:
        merged = merge_settings(data)
        statutory = merged["statutory"]
        return cls(
            features={k: bool(v) for k, v in merged["features"].items()},
            rates=merged["rates"],
            toggles=StatutoryToggles(
                epf_enabled=bool(statutory.get("epf_enabled", True)),
                socso_enabled=bool(statutory.get("socso_enabled", True)),
                eis_enabled=bool(statutory.get("eis_enabled", True)),
                pcb_enabled=bool(statutory.get("pcb_enabled", True)),
            ),
            grouping_type=grouping_type,
        )

    def feature(self, name: str) -> bool:
        return self.features.get(name, False)

    @property
    def standard_work_minutes(self) -> int:
        return int(self.rates["standard_work_minutes"])

    @property
    def short_hours_tolerance_minutes(self) -> int:
        return int(self.rates["short_hours_tolerance_minutes"])

    @property
    def late_grace_minutes(self) -> int:
        return int(self.rates["late_grace_minutes"])

    def item_rates(self, work_days: int) -> ItemRates:
        steps: tuple[Decimal, ...] = ()
        if self.feature("attendance_bonus"):
            steps = tuple(to_decimal(s) for s in self.rates.get("attendance_bonus_steps") or ())
        return ItemRates(
            work_days=work_days,
            standard_work_hours=to_decimal(self.rates["standard_work_hours"]),
            ot_multiplier=to_decimal(self.rates["ot_multiplier"]),
            ph_multiplier=to_decimal(self.rates["ph_multiplier"]),
            indoor_sales_basic=to_decimal(self.rates["indoor_sales_basic"]),
            indoor_sales_commission_rate=to_decimal(self.rates["indoor_sales_commission_rate"]),
            attendance_bonus_steps=steps,
        )


class ConfigService:
    """Loads company settings and the effective period configuration."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def get_company(self, company_id: UUID) -> Company:
        company = await self.session.get(Company, company_id)
        if company is None:
            raise NotFoundError("Company", company_id)
        return company

    async def get_payroll_settings(self, company_id: UUID) -> PayrollSettings:
        company = await self.get_company(company_id)
        return PayrollSettings.from_dict(company.payroll_settings, company.grouping_type)

    async def get_leave_settings(self, company_id: UUID) -> LeaveSettings:
        company = await self.get_company(company_id)
        return LeaveSettings.from_dict(company.leave_settings)

    async def get_period_config(
        self, company_id: UUID, department_id: UUID | None = None
    ) -> PeriodConfig:
        """Active period config; a department row overrides the company row."""
        query = select(PayrollConfig).where(
            PayrollConfig.company_id == company_id,
            PayrollConfig.is_active.is_(True),
        )
        if department_id is not None:
            query = query.where(
                (PayrollConfig.department_id == department_id)
                | (PayrollConfig.department_id.is_(None))
            )
        else:
            query = query.where(PayrollConfig.department_id.is_(None))

        rows = (await self.session.execute(query)).scalars().all()
        row = next((r for r in rows if r.department_id is not None), None)
        if row is None and rows:
            row = rows[0]

        if row is None:
            return PeriodConfig(work_days_per_month=get_settings().default_work_days)

        return PeriodConfig(
            period_type=PeriodType(row.period_type),
            period_start_day=row.period_start_day,
            period_end_day=row.period_end_day,
            payment_day=row.payment_day,
            payment_month_offset=row.payment_month_offset,
            commission_period_offset=row.commission_period_offset,
            work_days_per_month=row.work_days_per_month or get_settings().default_work_days,
        )
