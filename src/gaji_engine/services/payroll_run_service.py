"""Payroll run lifecycle: create, edit, recalculate, finalize, delete."""

from __future__ import annotations

import logging
from collections import defaultdict
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, AsyncIterator
from uuid import UUID

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import IntegrityError, SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

from gaji_engine.calculators.item_computer import PayrollItemComputer
from gaji_engine.calculators.period_resolver import PeriodResolver, shift_month
from gaji_engine.calculators.rounding import round_to_cents, to_decimal
from gaji_engine.calculators.statutory import StatutoryCalculator, build_profile
from gaji_engine.calculators.types import (
    AttendanceSummary,
    DateRange,
    ItemInputs,
    ItemResult,
    PayrollStructure,
    PeriodResolution,
    PriorSnapshot,
    YtdFigures,
)
from gaji_engine.config import get_settings
from gaji_engine.errors import (
    AlreadyFinalizedError,
    DependencyMissingError,
    DuplicateRunError,
    FrozenError,
    InternalError,
    NoEmployeesError,
    NotFoundError,
    PayrollError,
    StatutoryTableMissingError,
    ValidationFailedError,
)
from gaji_engine.models import (
    Department,
    Employee,
    EmployeeAllowance,
    EmployeeCommission,
    Outlet,
    PayrollItem,
    PayrollRun,
    SalaryAdvance,
    SalesRecord,
    TripLog,
)
from gaji_engine.models.base import utcnow
from gaji_engine.services.attendance_service import AttendanceService
from gaji_engine.services.claim_linker import ClaimLinker
from gaji_engine.services.config_service import ConfigService, PayrollSettings
from gaji_engine.services.leave_service import LeaveService
from gaji_engine.services.state_machine import PayrollRunStateMachine, PayrollRunStatus
from gaji_engine.statutory import get_tables

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
HUNDRED = Decimal("100")
VARIANCE_WARNING_PERCENT = Decimal("10")

# Lines an operator may edit on a draft item
EDITABLE_FIELDS = frozenset(
    {
        "basic_salary",
        "fixed_allowance",
        "ot_hours",
        "ot_amount",
        "ph_days_worked",
        "incentive_amount",
        "commission_amount",
        "trade_commission_amount",
        "outstation_amount",
        "bonus",
        "attendance_bonus",
        "claims_amount",
        "unpaid_leave_days",
        "absent_days",
        "short_hours",
        "advance_deduction",
        "other_deductions",
        "deduction_remarks",
        "epf_override",
        "pcb_override",
    }
)
NULLABLE_FIELDS = frozenset({"epf_override", "pcb_override", "deduction_remarks"})


@dataclass
class RunWarning:
    """Non-blocking problem found while building or finalizing a run."""

    code: str
    message: str
    employee_id: UUID | None = None


@dataclass
class CreateRunResult:
    run: PayrollRun
    items_created: int = 0
    warnings: list[RunWarning] = field(default_factory=list)


@dataclass
class SkippedUnit:
    unit_id: UUID
    unit_name: str
    reason: str


@dataclass
class CreateAllResult:
    created: list[CreateRunResult] = field(default_factory=list)
    skipped: list[SkippedUnit] = field(default_factory=list)


@dataclass
class RecalculateResult:
    recalculated: int
    total: int


@dataclass
class FinalizeResult:
    run: PayrollRun
    claims_linked: int = 0
    advances_applied: int = 0
    warnings: list[RunWarning] = field(default_factory=list)


@dataclass
class _TripTotals:
    trip_count: int = 0
    outstation_days: int = 0
    upsell_amount: Decimal = ZERO


@dataclass
class _RunContext:
    """Everything loaded once per run before items are built."""

    run: PayrollRun
    resolution: PeriodResolution
    settings: PayrollSettings
    computer: PayrollItemComputer
    structures: dict[UUID, str] = field(default_factory=dict)
    prior: dict[UUID, PriorSnapshot] = field(default_factory=dict)
    ytd: dict[UUID, YtdFigures] = field(default_factory=dict)
    sales: dict[UUID, Decimal] = field(default_factory=dict)
    trips: dict[UUID, _TripTotals] = field(default_factory=dict)
    flexible_commissions: dict[UUID, Decimal] = field(default_factory=dict)
    flexible_allowances: dict[UUID, Decimal] = field(default_factory=dict)
    unpaid_days: dict[UUID, Decimal] = field(default_factory=dict)
    attendance: dict[UUID, AttendanceSummary] = field(default_factory=dict)
    claims: dict[UUID, Decimal] = field(default_factory=dict)
    advances: dict[UUID, Decimal] = field(default_factory=dict)

    @property
    def period(self) -> DateRange:
        return self.resolution.period


def _run_period(run: PayrollRun) -> DateRange:
    return DateRange(start=run.period_start_date, end=run.period_end_date, label=run.period_label or "")


def _advance_due(advance: SalaryAdvance) -> Decimal:
    """Amount of an advance to recover this month."""
    remaining = to_decimal(advance.remaining_balance)
    if advance.deduction_method == "installment" and advance.installment_amount is not None:
        return min(to_decimal(advance.installment_amount), remaining)
    return remaining


class PayrollRunService:
    """Service for payroll run lifecycle management.

    Operations:
    - create_run / create_all_runs: build draft runs and their items
    - update_item / recalculate_item / recalculate_all: edit drafts
    - add_employee / delete_item: change a draft's membership
    - finalize_run: link claims, recover advances, freeze the run
    - delete_run / delete_all_drafts: discard drafts

    Every mutation path ends with update_run_totals so the cached run
    totals always equal the sum of the items.
    """

    def __init__(self, session: AsyncSession):
        self.session = session

    @asynccontextmanager
    async def _storage_errors(self, action: str) -> AsyncIterator[None]:
        try:
            yield
        except SQLAlchemyError as e:
            await self.session.rollback()
            logger.error("Storage error during %s: %s", action, e)
            raise InternalError(f"Failed to {action}: {e}") from e

    # ===== Reads =====

    async def get_run(
        self, run_id: UUID, company_id: UUID | None = None, load_items: bool = True
    ) -> PayrollRun:
        """Get a run, optionally with its items. Raises NotFoundError."""
        query = select(PayrollRun).where(PayrollRun.payroll_run_id == run_id)
        if load_items:
            query = query.options(selectinload(PayrollRun.items)).execution_options(
                populate_existing=True
            )
        run = (await self.session.execute(query)).scalar_one_or_none()
        if run is None or (company_id is not None and run.company_id != company_id):
            raise NotFoundError("PayrollRun", run_id)
        return run

    async def list_runs(
        self, company_id: UUID, year: int | None = None, month: int | None = None
    ) -> list[PayrollRun]:
        query = select(PayrollRun).where(PayrollRun.company_id == company_id)
        if year is not None:
            query = query.where(PayrollRun.year == year)
        if month is not None:
            query = query.where(PayrollRun.month == month)
        query = query.order_by(
            PayrollRun.year.desc(), PayrollRun.month.desc(), PayrollRun.scope_key
        )
        return list((await self.session.execute(query)).scalars().all())

    async def get_item(self, item_id: UUID, company_id: UUID | None = None) -> PayrollItem:
        row = (
            await self.session.execute(
                select(PayrollItem, PayrollRun.company_id)
                .join(PayrollRun, PayrollItem.payroll_run_id == PayrollRun.payroll_run_id)
                .where(PayrollItem.payroll_item_id == item_id)
            )
        ).one_or_none()
        if row is None or (company_id is not None and row[1] != company_id):
            raise NotFoundError("PayrollItem", item_id)
        return row[0]

    async def _lock_run(self, run_id: UUID, company_id: UUID | None = None) -> PayrollRun:
        run = (
            await self.session.execute(
                select(PayrollRun).where(PayrollRun.payroll_run_id == run_id).with_for_update()
            )
        ).scalar_one_or_none()
        if run is None or (company_id is not None and run.company_id != company_id):
            raise NotFoundError("PayrollRun", run_id)
        return run

    async def _items_of(self, run_id: UUID) -> list[PayrollItem]:
        result = await self.session.execute(
            select(PayrollItem)
            .where(PayrollItem.payroll_run_id == run_id)
            .order_by(PayrollItem.employee_name, PayrollItem.employee_id)
        )
        return list(result.scalars().all())

    async def _find_run(
        self, company_id: UUID, month: int, year: int, scope_key: str
    ) -> PayrollRun | None:
        result = await self.session.execute(
            select(PayrollRun).where(
                PayrollRun.company_id == company_id,
                PayrollRun.month == month,
                PayrollRun.year == year,
                PayrollRun.scope_key == scope_key,
            )
        )
        return result.scalar_one_or_none()

    # ===== Create =====

    async def create_run(
        self,
        company_id: UUID,
        month: int,
        year: int,
        department_id: UUID | None = None,
        outlet_id: UUID | None = None,
        notes: str | None = None,
    ) -> CreateRunResult:
        """Create a draft run with one item per in-scope employee.

        Raises:
            ValidationFailedError: bad month/year or both units given
            DuplicateRunError: a run already exists for the scope and period
            NoEmployeesError: nothing to pay in the scope
            StatutoryTableMissingError: no tables for the period
        """
        return await self._create_run(
            company_id, month, year, department_id, outlet_id, notes, savepoint=False
        )

    async def _create_run(
        self,
        company_id: UUID,
        month: int,
        year: int,
        department_id: UUID | None = None,
        outlet_id: UUID | None = None,
        notes: str | None = None,
        *,
        savepoint: bool,
    ) -> CreateRunResult:
        """Build one draft run.

        With ``savepoint`` the run insert runs inside a SAVEPOINT, so losing
        a uniqueness race rolls back only this run and leaves earlier work
        in the same transaction intact.
        """
        PeriodResolver.validate(month, year)
        if department_id is not None and outlet_id is not None:
            raise ValidationFailedError(
                "A run is scoped to a department or an outlet, not both", field="outlet_id"
            )

        async with self._storage_errors("create payroll run"):
            settings = await ConfigService(self.session).get_payroll_settings(company_id)
            await self._check_unit(company_id, department_id, outlet_id)

            scope_key = PayrollRun.make_scope_key(department_id, outlet_id)
            existing = await self._find_run(company_id, month, year, scope_key)
            if existing is not None:
                raise DuplicateRunError(existing.payroll_run_id, month, year)

            config = await ConfigService(self.session).get_period_config(company_id, department_id)
            resolution = PeriodResolver.resolve(month, year, config)
            tables = get_tables(get_settings().statutory_table_version, resolution.period.start)

            employees = await self._employees_in_scope(
                company_id, resolution.period, department_id, outlet_id
            )
            if not employees:
                raise NoEmployeesError(f"{scope_key} {month:02d}/{year}")

            run = PayrollRun(
                company_id=company_id,
                month=month,
                year=year,
                department_id=department_id,
                outlet_id=outlet_id,
                scope_key=scope_key,
                status=PayrollRunStatus.DRAFT.value,
                period_start_date=resolution.period.start,
                period_end_date=resolution.period.end,
                payment_due_date=resolution.payment_date,
                period_label=resolution.period.label,
                work_days_per_month=config.work_days_per_month or get_settings().default_work_days,
                statutory_version=tables.version,
                notes=notes,
            )
            nested = await self.session.begin_nested() if savepoint else None
            self.session.add(run)
            try:
                await self.session.flush()
            except IntegrityError as e:
                if nested is not None:
                    await nested.rollback()
                else:
                    await self.session.rollback()
                existing = await self._find_run(company_id, month, year, scope_key)
                if existing is not None:
                    raise DuplicateRunError(existing.payroll_run_id, month, year) from e
                raise
            if nested is not None:
                await nested.commit()

            ctx = await self._build_context(run, employees, settings, resolution)
            result = CreateRunResult(run=run)
            for employee in employees:
                item = await self._build_item_safely(ctx, employee, result.warnings)
                if item is not None:
                    result.items_created += 1

            await self.session.flush()
            await self.update_run_totals(run.payroll_run_id)

        logger.info(
            "Created payroll run %s for %02d/%d (%s): %d items, %d warnings",
            run.payroll_run_id,
            month,
            year,
            scope_key,
            result.items_created,
            len(result.warnings),
        )
        return result

    async def create_all_runs(
        self,
        company_id: UUID,
        month: int,
        year: int,
        unit: str = "department",
        notes: str | None = None,
    ) -> CreateAllResult:
        """Create one run per active department or outlet.

        Units that already have a run, or have nobody to pay, are skipped
        and reported rather than failing the batch.
        """
        if unit not in ("department", "outlet"):
            raise ValidationFailedError(f"Unknown unit '{unit}'", field="unit")

        model = Department if unit == "department" else Outlet
        units = (
            await self.session.execute(
                select(model)
                .where(model.company_id == company_id, model.is_active.is_(True))
                .order_by(model.name)
            )
        ).scalars().all()

        outcome = CreateAllResult()
        for row in units:
            unit_id = row.department_id if unit == "department" else row.outlet_id
            scope = {"department_id": unit_id} if unit == "department" else {"outlet_id": unit_id}
            try:
                created = await self._create_run(
                    company_id, month, year, notes=notes, savepoint=True, **scope
                )
            except DuplicateRunError as e:
                outcome.skipped.append(
                    SkippedUnit(unit_id, row.name, f"Run already exists: {e.existing_id}")
                )
                continue
            except NoEmployeesError:
                outcome.skipped.append(SkippedUnit(unit_id, row.name, "No employees"))
                continue
            outcome.created.append(created)

        logger.info(
            "Bulk create for %02d/%d by %s: %d created, %d skipped",
            month,
            year,
            unit,
            len(outcome.created),
            len(outcome.skipped),
        )
        return outcome

    async def add_employee(
        self, run_id: UUID, employee_id: UUID, company_id: UUID | None = None
    ) -> PayrollItem:
        """Materialize an item for an in-scope employee missing from a draft."""
        async with self._storage_errors("add employee to payroll run"):
            run = await self._lock_run(run_id, company_id)
            PayrollRunStateMachine.ensure_mutable(run, "add employee")

            employee = await self.session.get(Employee, employee_id)
            if employee is None or employee.company_id != run.company_id:
                raise NotFoundError("Employee", employee_id)
            if run.department_id is not None and employee.department_id != run.department_id:
                raise ValidationFailedError(
                    f"{employee.name} is not in the run's department", field="employee_id"
                )
            if run.outlet_id is not None and employee.outlet_id != run.outlet_id:
                raise ValidationFailedError(
                    f"{employee.name} is not in the run's outlet", field="employee_id"
                )

            existing = (
                await self.session.execute(
                    select(PayrollItem.payroll_item_id).where(
                        PayrollItem.payroll_run_id == run.payroll_run_id,
                        PayrollItem.employee_id == employee.id,
                    )
                )
            ).scalar_one_or_none()
            if existing is not None:
                raise ValidationFailedError(
                    f"{employee.name} already has an item in this run", field="employee_id"
                )

            settings = await ConfigService(self.session).get_payroll_settings(run.company_id)
            config = await ConfigService(self.session).get_period_config(
                run.company_id, run.department_id
            )
            resolved = PeriodResolver.resolve(run.month, run.year, config)
            resolution = PeriodResolution(
                period=_run_period(run),
                payment=resolved.payment,
                commission_period=resolved.commission_period,
            )
            ctx = await self._build_context(run, [employee], settings, resolution)
            item, warnings = self._materialize(ctx, employee)
            await self.session.flush()
            await self.update_run_totals(run.payroll_run_id)

        for warning in warnings:
            logger.warning("Run %s: %s", run.payroll_run_id, warning.message)
        logger.info("Added employee %s to payroll run %s", employee.employee_id, run_id)
        return item

    async def _check_unit(
        self, company_id: UUID, department_id: UUID | None, outlet_id: UUID | None
    ) -> None:
        if department_id is not None:
            department = await self.session.get(Department, department_id)
            if department is None or department.company_id != company_id:
                raise NotFoundError("Department", department_id)
        if outlet_id is not None:
            outlet = await self.session.get(Outlet, outlet_id)
            if outlet is None or outlet.company_id != company_id:
                raise NotFoundError("Outlet", outlet_id)

    async def _employees_in_scope(
        self,
        company_id: UUID,
        period: DateRange,
        department_id: UUID | None,
        outlet_id: UUID | None,
    ) -> list[Employee]:
        """Active employees plus those who resigned on or after period start."""
        query = select(Employee).where(
            Employee.company_id == company_id,
            or_(
                Employee.status == "active",
                and_(Employee.status == "resigned", Employee.resign_date >= period.start),
            ),
        )
        if department_id is not None:
            query = query.where(Employee.department_id == department_id)
        if outlet_id is not None:
            query = query.where(Employee.outlet_id == outlet_id)
        query = query.order_by(Employee.name, Employee.employee_id)
        return list((await self.session.execute(query)).scalars().all())

    async def _build_context(
        self,
        run: PayrollRun,
        employees: list[Employee],
        settings: PayrollSettings,
        resolution: PeriodResolution,
    ) -> _RunContext:
        """Load every read-only input the item computer needs."""
        tables = get_tables(run.statutory_version, resolution.period.start)
        computer = PayrollItemComputer(
            StatutoryCalculator(tables, settings.toggles),
            settings.item_rates(run.work_days_per_month),
        )
        ctx = _RunContext(run=run, resolution=resolution, settings=settings, computer=computer)
        employee_ids = [e.id for e in employees]
        period = resolution.period

        departments = (
            await self.session.execute(
                select(Department.department_id, Department.payroll_structure_code).where(
                    Department.company_id == run.company_id
                )
            )
        ).all()
        ctx.structures = {dept_id: code for dept_id, code in departments}

        if settings.feature("salary_carry_forward"):
            ctx.prior = await self._prior_snapshots(run, employee_ids)
        if settings.feature("ytd_pcb_calculation"):
            ctx.ytd = await self._ytd_figures(run.company_id, run.year, run.month, employee_ids)

        ctx.sales = await self._sales(run.company_id, employee_ids, resolution.commission_period)
        ctx.trips = await self._trips(employee_ids, period)
        if settings.feature("flexible_commissions"):
            ctx.flexible_commissions = await self._flexible_totals(EmployeeCommission, employee_ids)
        if settings.feature("flexible_allowances"):
            ctx.flexible_allowances = await self._flexible_totals(EmployeeAllowance, employee_ids)

        leave_service = LeaveService(self.session)
        intervals = await leave_service.get_approved_intervals(employee_ids, period)
        if settings.feature("unpaid_leave_deduction"):
            ctx.unpaid_days = leave_service.unpaid_days(intervals, period)

        ctx.attendance = await AttendanceService(self.session).summarize(
            run.company_id,
            employee_ids,
            period,
            intervals,
            standard_minutes=settings.standard_work_minutes,
            short_tolerance_minutes=settings.short_hours_tolerance_minutes,
            late_grace_minutes=settings.late_grace_minutes,
            count_absence=settings.feature("schedule_based_absence"),
            until=get_settings().local_today(),
        )

        if settings.feature("auto_claims_linking"):
            ctx.claims = await ClaimLinker(self.session).pending_totals(employee_ids, period)
        ctx.advances = await self._advance_totals(employee_ids, run.month, run.year)
        return ctx

    async def _prior_snapshots(
        self, run: PayrollRun, employee_ids: list[UUID]
    ) -> dict[UUID, PriorSnapshot]:
        """Previous month's items; a finalized run beats a draft.

        A department or outlet run only looks at last month's runs for the
        same unit or for the whole company.
        """
        if not employee_ids:
            return {}
        prev_month, prev_year = shift_month(run.month, run.year, -1)
        query = (
            select(PayrollItem, PayrollRun.status)
            .join(PayrollRun, PayrollItem.payroll_run_id == PayrollRun.payroll_run_id)
            .where(
                PayrollRun.company_id == run.company_id,
                PayrollRun.month == prev_month,
                PayrollRun.year == prev_year,
                PayrollItem.employee_id.in_(employee_ids),
            )
        )
        if run.department_id is not None:
            query = query.where(
                or_(PayrollRun.department_id == run.department_id, PayrollRun.scope_key == "all")
            )
        elif run.outlet_id is not None:
            query = query.where(
                or_(PayrollRun.outlet_id == run.outlet_id, PayrollRun.scope_key == "all")
            )
        result = await self.session.execute(query)
        snapshots: dict[UUID, PriorSnapshot] = {}
        finalized: set[UUID] = set()
        for item, status in result.all():
            if item.employee_id in finalized:
                continue
            snapshots[item.employee_id] = PriorSnapshot(
                basic_salary=to_decimal(item.basic_salary),
                fixed_allowance=to_decimal(item.fixed_allowance),
                net_pay=to_decimal(item.net_pay),
            )
            if status == PayrollRunStatus.FINALIZED.value:
                finalized.add(item.employee_id)
        return snapshots

    async def _ytd_figures(
        self, company_id: UUID, year: int, month: int, employee_ids: list[UUID]
    ) -> dict[UUID, YtdFigures]:
        """Sums over finalized runs earlier in the same year."""
        if not employee_ids:
            return {}
        result = await self.session.execute(
            select(
                PayrollItem.employee_id,
                func.sum(PayrollItem.gross_salary),
                func.sum(PayrollItem.statutory_base),
                func.sum(PayrollItem.epf_employee),
                func.sum(PayrollItem.pcb),
            )
            .join(PayrollRun, PayrollItem.payroll_run_id == PayrollRun.payroll_run_id)
            .where(
                PayrollRun.company_id == company_id,
                PayrollRun.status == PayrollRunStatus.FINALIZED.value,
                PayrollRun.year == year,
                PayrollRun.month < month,
                PayrollItem.employee_id.in_(employee_ids),
            )
            .group_by(PayrollItem.employee_id)
        )
        return {
            employee_id: YtdFigures(
                gross=round_to_cents(to_decimal(gross)),
                statutory_base=round_to_cents(to_decimal(base)),
                epf_employee=round_to_cents(to_decimal(epf)),
                pcb=round_to_cents(to_decimal(pcb)),
            )
            for employee_id, gross, base, epf, pcb in result.all()
        }

    async def _sales(
        self, company_id: UUID, employee_ids: list[UUID], commission_period: DateRange
    ) -> dict[UUID, Decimal]:
        if not employee_ids:
            return {}
        result = await self.session.execute(
            select(SalesRecord.employee_id, func.sum(SalesRecord.total_sales))
            .where(
                SalesRecord.company_id == company_id,
                SalesRecord.employee_id.in_(employee_ids),
                SalesRecord.month == commission_period.start.month,
                SalesRecord.year == commission_period.start.year,
            )
            .group_by(SalesRecord.employee_id)
        )
        return {emp_id: round_to_cents(to_decimal(total)) for emp_id, total in result.all()}

    async def _trips(self, employee_ids: list[UUID], period: DateRange) -> dict[UUID, _TripTotals]:
        if not employee_ids:
            return {}
        result = await self.session.execute(
            select(TripLog).where(
                TripLog.employee_id.in_(employee_ids),
                TripLog.trip_date >= period.start,
                TripLog.trip_date <= period.end,
            )
        )
        totals: dict[UUID, _TripTotals] = defaultdict(_TripTotals)
        outstation_dates: dict[UUID, set] = defaultdict(set)
        for trip in result.scalars():
            entry = totals[trip.employee_id]
            entry.trip_count += 1
            entry.upsell_amount += to_decimal(trip.upsell_amount)
            if trip.is_outstation:
                outstation_dates[trip.employee_id].add(trip.trip_date)
        for employee_id, dates in outstation_dates.items():
            totals[employee_id].outstation_days = len(dates)
        return dict(totals)

    async def _flexible_totals(self, model: type, employee_ids: list[UUID]) -> dict[UUID, Decimal]:
        if not employee_ids:
            return {}
        result = await self.session.execute(
            select(model.employee_id, func.sum(model.amount))
            .where(model.employee_id.in_(employee_ids), model.is_active.is_(True))
            .group_by(model.employee_id)
        )
        return {emp_id: round_to_cents(to_decimal(total)) for emp_id, total in result.all()}

    async def _active_advances(
        self, employee_ids: list[UUID], month: int, year: int, lock: bool = False
    ) -> dict[UUID, list[SalaryAdvance]]:
        if not employee_ids:
            return {}
        query = (
            select(SalaryAdvance)
            .where(
                SalaryAdvance.employee_id.in_(employee_ids),
                SalaryAdvance.status == "active",
                SalaryAdvance.remaining_balance > 0,
                or_(
                    SalaryAdvance.expected_deduction_year < year,
                    and_(
                        SalaryAdvance.expected_deduction_year == year,
                        SalaryAdvance.expected_deduction_month <= month,
                    ),
                ),
            )
            .order_by(
                SalaryAdvance.expected_deduction_year,
                SalaryAdvance.expected_deduction_month,
                SalaryAdvance.created_at,
            )
        )
        if lock:
            query = query.with_for_update()
        advances: dict[UUID, list[SalaryAdvance]] = defaultdict(list)
        for advance in (await self.session.execute(query)).scalars():
            advances[advance.employee_id].append(advance)
        return advances

    async def _advance_totals(
        self, employee_ids: list[UUID], month: int, year: int
    ) -> dict[UUID, Decimal]:
        advances = await self._active_advances(employee_ids, month, year)
        return {
            emp_id: round_to_cents(sum((_advance_due(a) for a in rows), ZERO))
            for emp_id, rows in advances.items()
        }

    def _structure_for(self, ctx: _RunContext, employee: Employee) -> PayrollStructure:
        code = employee.payroll_structure_code or ctx.structures.get(employee.department_id)
        structure = PayrollStructure.parse(code)
        if structure == PayrollStructure.INDOOR_SALES and not ctx.settings.feature("indoor_sales_logic"):
            return PayrollStructure.OFFICE
        return structure

    async def _build_item_safely(
        self, ctx: _RunContext, employee: Employee, warnings: list[RunWarning]
    ) -> PayrollItem | None:
        """Build one item; computation failures become warnings."""
        try:
            item, item_warnings = self._materialize(ctx, employee)
        except StatutoryTableMissingError:
            raise
        except (PayrollError, ArithmeticError, ValueError) as e:
            logger.exception("Failed to compute payroll item for employee %s", employee.employee_id)
            code = e.code if isinstance(e, PayrollError) else "COMPUTATION_FAILED"
            warnings.append(RunWarning(code, f"{employee.name}: {e}", employee.id))
            return None
        warnings.extend(item_warnings)
        return item

    def _materialize(
        self, ctx: _RunContext, employee: Employee
    ) -> tuple[PayrollItem, list[RunWarning]]:
        """Compute and add one new item for the employee."""
        settings = ctx.settings
        run = ctx.run
        warnings: list[RunWarning] = []
        structure = self._structure_for(ctx, employee)
        is_part_time = employee.is_part_time
        summary = ctx.attendance.get(employee.id) or AttendanceSummary()
        prior = ctx.prior.get(employee.id)
        trips = ctx.trips.get(employee.id) or _TripTotals()

        basic = to_decimal(employee.default_basic_salary)
        allowance = to_decimal(employee.default_allowance)
        carried = False
        if prior is not None and prior.basic_salary > 0:
            basic = prior.basic_salary
            carried = True
            if prior.fixed_allowance > 0:
                allowance = prior.fixed_allowance
        if not carried:
            allowance += ctx.flexible_allowances.get(employee.id, ZERO)

        inputs = ItemInputs(
            structure=structure,
            is_part_time=is_part_time,
            basic_salary=basic,
            fixed_allowance=allowance,
            hourly_rate=to_decimal(employee.hourly_rate),
            ot_rate=to_decimal(employee.ot_rate),
            part_time_hours=summary.part_time_hours if is_part_time else ZERO,
            flexible_commission=ctx.flexible_commissions.get(employee.id, ZERO),
            commission_rate=to_decimal(employee.commission_rate),
            sales_amount=ctx.sales.get(employee.id, ZERO),
            per_trip_rate=to_decimal(employee.per_trip_rate),
            trip_count=trips.trip_count,
            upsell_amount=trips.upsell_amount,
            outstation_rate=to_decimal(employee.outstation_rate),
            outstation_days=trips.outstation_days,
            incentive_amount=to_decimal(employee.default_incentive),
            bonus=to_decimal(employee.default_bonus),
            claims_amount=ctx.claims.get(employee.id, ZERO),
            late_days=summary.late_days,
            unpaid_leave_days=ctx.unpaid_days.get(employee.id, ZERO),
            advance_deduction=ctx.advances.get(employee.id, ZERO),
        )
        if settings.feature("auto_ot_from_clockin"):
            inputs.ot_hours = summary.ot_hours
        if not is_part_time:
            if settings.feature("auto_ph_pay"):
                inputs.ph_days_worked = Decimal(summary.ph_days_worked)
            if settings.feature("schedule_based_absence"):
                inputs.absent_days = Decimal(summary.absent_days)
                inputs.short_hours = summary.short_hours

        profile = build_profile(
            ic_number=employee.ic_number,
            date_of_birth=employee.date_of_birth,
            as_of=ctx.period.start,
            epf_contribution_type=employee.epf_contribution_type,
            epf_voluntary_rate=employee.epf_voluntary_rate,
            epf_foreign_opt_in=employee.epf_foreign_opt_in,
            marital_status=employee.marital_status,
            spouse_working=employee.spouse_working,
            children_count=employee.children_count,
        )
        result = ctx.computer.compute(inputs, profile, run.month, ctx.ytd.get(employee.id))

        item = PayrollItem(
            payroll_run_id=run.payroll_run_id,
            employee_id=employee.id,
            employee_name=employee.name,
            payroll_structure_code=structure.value,
            work_type="part_time" if is_part_time else "full_time",
            sales_amount=round_to_cents(inputs.sales_amount),
            trip_count=inputs.trip_count,
            outstation_days=inputs.outstation_days,
            upsell_amount=round_to_cents(inputs.upsell_amount),
            flexible_commission=round_to_cents(inputs.flexible_commission),
            part_time_hours=inputs.part_time_hours,
            late_days=summary.late_days,
            days_worked=summary.days_worked,
        )
        ytd = ctx.ytd.get(employee.id) or YtdFigures()
        item.ytd_gross = ytd.gross
        item.ytd_epf = ytd.epf_employee
        item.ytd_pcb = ytd.pcb
        self._apply_result(item, result)

        notes = list(result.statutory.advisory_notes) + list(result.warnings)
        if not is_part_time and result.basic_salary <= 0 and not employee.hourly_rate:
            missing = DependencyMissingError(employee.name)
            warnings.append(RunWarning(missing.code, missing.message, employee.id))
            notes.append(missing.message)
        for message in result.warnings:
            warnings.append(RunWarning("ADVISORY", f"{employee.name}: {message}", employee.id))

        if prior is not None and prior.net_pay is not None and prior.net_pay > 0:
            item.prev_month_net = prior.net_pay
            item.variance_amount = round_to_cents(result.net_pay - prior.net_pay)
            item.variance_percent = round_to_cents(item.variance_amount / prior.net_pay * HUNDRED)
            if abs(item.variance_percent) > VARIANCE_WARNING_PERCENT:
                sign = "+" if item.variance_percent > 0 else ""
                message = (
                    f"{employee.name} has {sign}{item.variance_percent:.1f}% variance from last month"
                )
                warnings.append(RunWarning("VARIANCE", message, employee.id))
                notes.append(message)

        item.advisory_notes = notes
        self.session.add(item)
        return item, warnings

    @staticmethod
    def _apply_result(item: PayrollItem, result: ItemResult) -> None:
        """Copy computed lines and totals onto the stored item."""
        st = result.statutory
        item.basic_salary = result.basic_salary
        item.fixed_allowance = result.fixed_allowance
        item.ot_hours = result.ot_hours
        item.ot_amount = result.ot_amount
        item.ph_days_worked = result.ph_days_worked
        item.ph_pay = result.ph_pay
        item.incentive_amount = result.incentive_amount
        item.commission_amount = result.commission_amount
        item.trade_commission_amount = result.trade_commission_amount
        item.outstation_amount = result.outstation_amount
        item.bonus = result.bonus
        item.attendance_bonus = result.attendance_bonus
        item.claims_amount = result.claims_amount
        item.unpaid_leave_days = result.unpaid_leave_days
        item.unpaid_leave_deduction = result.unpaid_leave_deduction
        item.absent_days = result.absent_days
        item.absent_day_deduction = result.absent_day_deduction
        item.short_hours = result.short_hours
        item.short_hours_deduction = result.short_hours_deduction
        item.advance_deduction = result.advance_deduction
        item.other_deductions = result.other_deductions
        item.epf_employee = st.epf_employee
        item.epf_employer = st.epf_employer
        item.socso_employee = st.socso_employee
        item.socso_employer = st.socso_employer
        item.eis_employee = st.eis_employee
        item.eis_employer = st.eis_employer
        item.pcb = st.pcb
        item.epf_computed = st.epf_computed
        item.pcb_computed = st.pcb_computed
        item.statutory_base = st.epf_base
        item.statutory_version = st.version
        item.salary_calculation_method = result.salary_calculation_method
        item.gross_salary = round_to_cents(result.gross_salary)
        item.total_deductions = round_to_cents(result.total_deductions)
        item.net_pay = round_to_cents(result.net_pay)
        item.employer_total_cost = round_to_cents(result.employer_total_cost)

    # ===== Edit / recalculate =====

    async def _computer_for(self, run: PayrollRun) -> tuple[PayrollSettings, PayrollItemComputer]:
        settings = await ConfigService(self.session).get_payroll_settings(run.company_id)
        tables = get_tables(run.statutory_version)
        computer = PayrollItemComputer(
            StatutoryCalculator(tables, settings.toggles),
            settings.item_rates(run.work_days_per_month),
        )
        return settings, computer

    async def _recompute(
        self,
        item: PayrollItem,
        run: PayrollRun,
        settings: PayrollSettings,
        computer: PayrollItemComputer,
        ot_amount: Decimal | None = None,
    ) -> None:
        """Recompute an item from its stored lines and raw inputs."""
        employee = await self.session.get(Employee, item.employee_id)
        if employee is None:
            raise NotFoundError("Employee", item.employee_id)

        inputs = ItemInputs(
            structure=PayrollStructure.parse(item.payroll_structure_code),
            is_part_time=item.work_type == "part_time",
            basic_salary=to_decimal(item.basic_salary),
            fixed_allowance=to_decimal(item.fixed_allowance),
            hourly_rate=to_decimal(employee.hourly_rate),
            ot_rate=to_decimal(employee.ot_rate),
            part_time_hours=to_decimal(item.part_time_hours),
            ot_hours=to_decimal(item.ot_hours),
            ot_amount=ot_amount,
            ph_days_worked=to_decimal(item.ph_days_worked),
            sales_amount=to_decimal(item.sales_amount),
            incentive_amount=to_decimal(item.incentive_amount),
            bonus=to_decimal(item.bonus),
            claims_amount=to_decimal(item.claims_amount),
            attendance_bonus=to_decimal(item.attendance_bonus),
            late_days=item.late_days,
            unpaid_leave_days=to_decimal(item.unpaid_leave_days),
            absent_days=to_decimal(item.absent_days),
            short_hours=to_decimal(item.short_hours),
            advance_deduction=to_decimal(item.advance_deduction),
            other_deductions=to_decimal(item.other_deductions),
            epf_override=item.epf_override,
            pcb_override=item.pcb_override,
            commission_amount=to_decimal(item.commission_amount),
            trade_commission_amount=to_decimal(item.trade_commission_amount),
            outstation_amount=to_decimal(item.outstation_amount),
            derive_structure_lines=False,
        )
        profile = build_profile(
            ic_number=employee.ic_number,
            date_of_birth=employee.date_of_birth,
            as_of=run.period_start_date,
            epf_contribution_type=employee.epf_contribution_type,
            epf_voluntary_rate=employee.epf_voluntary_rate,
            epf_foreign_opt_in=employee.epf_foreign_opt_in,
            marital_status=employee.marital_status,
            spouse_working=employee.spouse_working,
            children_count=employee.children_count,
        )
        ytd = None
        if settings.feature("ytd_pcb_calculation"):
            figures = await self._ytd_figures(run.company_id, run.year, run.month, [item.employee_id])
            ytd = figures.get(item.employee_id)

        result = computer.compute(inputs, profile, run.month, ytd)
        self._apply_result(item, result)
        if item.prev_month_net:
            item.variance_amount = round_to_cents(item.net_pay - item.prev_month_net)
            item.variance_percent = round_to_cents(item.variance_amount / item.prev_month_net * HUNDRED)
        item.advisory_notes = list(result.statutory.advisory_notes) + list(result.warnings)

    async def _item_with_run(
        self, item_id: UUID, company_id: UUID | None, action: str
    ) -> tuple[PayrollItem, PayrollRun]:
        item = await self.get_item(item_id, company_id)
        run = await self._lock_run(item.payroll_run_id)
        PayrollRunStateMachine.ensure_mutable(run, action)
        return item, run

    async def update_item(
        self, item_id: UUID, fields: dict[str, Any], company_id: UUID | None = None
    ) -> PayrollItem:
        """Apply operator edits to a draft item and recompute it.

        ``fields`` holds only the keys being changed; an explicit None on an
        override clears it.
        """
        unknown = set(fields) - EDITABLE_FIELDS
        if unknown:
            raise ValidationFailedError(
                f"Fields not editable: {', '.join(sorted(unknown))}", field=sorted(unknown)[0]
            )

        values: dict[str, Any] = {}
        for name, value in fields.items():
            if name == "deduction_remarks":
                values[name] = value
                continue
            if value is None:
                if name not in NULLABLE_FIELDS:
                    raise ValidationFailedError(f"{name} cannot be null", field=name)
                values[name] = None
                continue
            amount = to_decimal(value)
            if amount < 0:
                raise ValidationFailedError(f"{name} cannot be negative", field=name)
            values[name] = amount

        async with self._storage_errors("update payroll item"):
            item, run = await self._item_with_run(item_id, company_id, "edit item")
            ot_amount = values.pop("ot_amount", None)
            for name, value in values.items():
                setattr(item, name, value)

            settings, computer = await self._computer_for(run)
            await self._recompute(item, run, settings, computer, ot_amount=ot_amount)
            await self.session.flush()
            await self.update_run_totals(run.payroll_run_id)

        logger.info("Updated payroll item %s: %s", item_id, ", ".join(sorted(fields)))
        return item

    async def recalculate_item(self, item_id: UUID, company_id: UUID | None = None) -> PayrollItem:
        async with self._storage_errors("recalculate payroll item"):
            item, run = await self._item_with_run(item_id, company_id, "recalculate item")
            settings, computer = await self._computer_for(run)
            await self._recompute(item, run, settings, computer)
            await self.session.flush()
            await self.update_run_totals(run.payroll_run_id)
        return item

    async def recalculate_all(self, run_id: UUID, company_id: UUID | None = None) -> RecalculateResult:
        """Recompute every item of a draft run from stored inputs.

        Idempotent: a second pass leaves every stored value unchanged.
        """
        async with self._storage_errors("recalculate payroll run"):
            run = await self._lock_run(run_id, company_id)
            PayrollRunStateMachine.ensure_mutable(run, "recalculate")
            settings, computer = await self._computer_for(run)

            items = await self._items_of(run_id)
            recalculated = 0
            for item in items:
                try:
                    await self._recompute(item, run, settings, computer)
                except (PayrollError, ArithmeticError, ValueError):
                    logger.exception("Failed to recalculate payroll item %s", item.payroll_item_id)
                    continue
                recalculated += 1

            await self.session.flush()
            await self.update_run_totals(run_id)

        logger.info("Recalculated %d/%d items in payroll run %s", recalculated, len(items), run_id)
        return RecalculateResult(recalculated=recalculated, total=len(items))

    async def delete_item(self, item_id: UUID, company_id: UUID | None = None) -> None:
        async with self._storage_errors("delete payroll item"):
            item, run = await self._item_with_run(item_id, company_id, "remove employee")
            await self.session.delete(item)
            await self.session.flush()
            await self.update_run_totals(run.payroll_run_id)
        logger.info("Removed item %s from payroll run %s", item_id, run.payroll_run_id)

    async def update_run_totals(self, run_id: UUID) -> PayrollRun:
        """Recompute cached run totals as the exact sum of its items."""
        run = await self.session.get(PayrollRun, run_id)
        if run is None:
            raise NotFoundError("PayrollRun", run_id)
        items = await self._items_of(run_id)

        run.total_gross = sum((to_decimal(i.gross_salary) for i in items), ZERO)
        run.total_deductions = sum((to_decimal(i.total_deductions) for i in items), ZERO)
        run.total_net = sum((to_decimal(i.net_pay) for i in items), ZERO)
        run.total_employer_cost = sum((to_decimal(i.employer_total_cost) for i in items), ZERO)
        run.employee_count = len(items)
        run.has_variance_warning = any(
            i.variance_percent is not None and abs(to_decimal(i.variance_percent)) > VARIANCE_WARNING_PERCENT
            for i in items
        )
        await self.session.flush()
        return run

    # ===== Finalize / delete =====

    async def finalize_run(self, run_id: UUID, company_id: UUID | None = None) -> FinalizeResult:
        """Freeze a draft run.

        Links in-period approved claims to the run's items, recovers salary
        advances, then moves the run to finalized. Negative net pay does not
        block finalization but is reported as a warning.
        """
        async with self._storage_errors("finalize payroll run"):
            run = await self._lock_run(run_id, company_id)
            items = await self._items_of(run_id)
            PayrollRunStateMachine.validate_for_finalize(run, len(items))

            settings = await ConfigService(self.session).get_payroll_settings(run.company_id)
            outcome = FinalizeResult(run=run)
            if settings.feature("auto_claims_linking"):
                outcome.claims_linked = await ClaimLinker(self.session).link_run(items, _run_period(run))
            outcome.advances_applied = await self._recover_advances(run, items)

            for item in items:
                if item.net_pay < 0:
                    outcome.warnings.append(
                        RunWarning(
                            "NEGATIVE_NET",
                            f"{item.employee_name} has negative net pay {item.net_pay}",
                            item.employee_id,
                        )
                    )

            # Conditional update guards against a concurrent finalize
            result = await self.session.execute(
                update(PayrollRun)
                .where(
                    PayrollRun.payroll_run_id == run_id,
                    PayrollRun.status == PayrollRunStatus.DRAFT.value,
                )
                .values(status=PayrollRunStatus.FINALIZED.value, finalized_at=utcnow())
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise AlreadyFinalizedError(run_id)
            await self.session.flush()
            await self.session.refresh(run)

        logger.info(
            "Finalized payroll run %s: %d claims linked, %d advances recovered, %d warnings",
            run_id,
            outcome.claims_linked,
            outcome.advances_applied,
            len(outcome.warnings),
        )
        return outcome

    async def _recover_advances(self, run: PayrollRun, items: list[PayrollItem]) -> int:
        """Reduce advance balances by the amounts deducted on the items."""
        deducted = {
            i.employee_id: to_decimal(i.advance_deduction) for i in items if i.advance_deduction > 0
        }
        if not deducted:
            return 0
        advances = await self._active_advances(list(deducted), run.month, run.year, lock=True)

        touched = 0
        for employee_id, amount in deducted.items():
            left = amount
            for advance in advances.get(employee_id, []):
                if left <= 0:
                    break
                take = min(left, _advance_due(advance))
                advance.remaining_balance = to_decimal(advance.remaining_balance) - take
                left -= take
                if advance.remaining_balance <= 0:
                    advance.status = "completed"
                touched += 1
        await self.session.flush()
        return touched

    async def delete_run(self, run_id: UUID, company_id: UUID | None = None) -> None:
        async with self._storage_errors("delete payroll run"):
            run = await self._lock_run(run_id, company_id)
            if not PayrollRunStateMachine.can_delete(run.status):
                raise FrozenError(run_id, "delete run")
            await self.session.delete(run)
            await self.session.flush()
        logger.info("Deleted payroll run %s", run_id)

    async def delete_all_drafts(self, company_id: UUID, month: int, year: int) -> int:
        """Delete every draft run for the period; returns the number deleted."""
        PeriodResolver.validate(month, year)
        async with self._storage_errors("delete draft payroll runs"):
            run_ids = list(
                (
                    await self.session.execute(
                        select(PayrollRun.payroll_run_id)
                        .where(
                            PayrollRun.company_id == company_id,
                            PayrollRun.month == month,
                            PayrollRun.year == year,
                            PayrollRun.status == PayrollRunStatus.DRAFT.value,
                        )
                        .with_for_update()
                    )
                ).scalars().all()
            )
            if not run_ids:
                return 0
            await self.session.execute(
                delete(PayrollItem).where(PayrollItem.payroll_run_id.in_(run_ids))
            )
            await self.session.execute(
                delete(PayrollRun)
                .where(
                    PayrollRun.payroll_run_id.in_(run_ids),
                    PayrollRun.status == PayrollRunStatus.DRAFT.value,
                )
            )
            await self.session.flush()

        logger.info("Deleted %d draft payroll runs for %02d/%d", len(run_ids), month, year)
        return len(run_ids)
