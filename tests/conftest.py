"""Pytest fixtures for payroll engine tests."""

from __future__ import annotations

import itertools
from datetime import date, time
from decimal import Decimal
from typing import Any, AsyncGenerator, Awaitable, Callable

import pytest
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool

from gaji_engine.calculators.statutory import StatutoryCalculator
from gaji_engine.calculators.types import StatutoryProfile
from gaji_engine.models import (
    Base,
    Claim,
    ClockInRecord,
    Company,
    Department,
    Employee,
    LeaveType,
    Outlet,
)
from gaji_engine.statutory import StatutoryTables, load_tables

# In-memory SQLite shared across connections of one engine
TEST_DATABASE_URL = "sqlite+aiosqlite:///:memory:"

# MyKad for someone born 1 January 1995 (age 30 in 2025)
IC_AGE_30 = "950101-14-5678"
# MyKad for someone born 1 January 1960 (age 65 in 2025)
IC_AGE_65 = "600101-08-1234"


# ----- Pure calculator fixtures -----


@pytest.fixture
def tables() -> StatutoryTables:
    """Shipped MY-2024 statutory tables."""
    return load_tables("MY-2024")


@pytest.fixture
def calculator(tables: StatutoryTables) -> StatutoryCalculator:
    return StatutoryCalculator(tables)


@pytest.fixture
def profile() -> StatutoryProfile:
    """Malaysian, age 30, single, no children."""
    return StatutoryProfile(age=30, is_malaysian=True)


# ----- Database fixtures -----


@pytest.fixture
async def engine():
    """Fresh in-memory database per test."""
    engine = create_async_engine(
        TEST_DATABASE_URL,
        echo=False,
        poolclass=StaticPool,
        connect_args={"check_same_thread": False},
    )

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    await engine.dispose()


@pytest.fixture
def session_factory(engine) -> async_sessionmaker[AsyncSession]:
    return async_sessionmaker(
        engine,
        class_=AsyncSession,
        expire_on_commit=False,
        autoflush=False,
    )


@pytest.fixture
async def session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Create a database session for each test."""
    async with session_factory() as session:
        yield session
        await session.rollback()


@pytest.fixture
async def company(session: AsyncSession) -> Company:
    """Create a test company with default payroll settings."""
    company = Company(
        name="Kedai Maju Sdn Bhd",
        code="KMJ",
        registration_no="201901012345",
        address="12 Jalan Ampang, Kuala Lumpur",
        grouping_type="department",
        payroll_settings={},
        leave_settings={},
    )
    session.add(company)
    await session.flush()
    return company


@pytest.fixture
async def department(session: AsyncSession, company: Company) -> Department:
    """Create an office department."""
    department = Department(
        company_id=company.company_id,
        name="Office",
        payroll_structure_code="office",
    )
    session.add(department)
    await session.flush()
    return department


@pytest.fixture
async def sales_department(session: AsyncSession, company: Company) -> Department:
    """Create an indoor sales department."""
    department = Department(
        company_id=company.company_id,
        name="Indoor Sales",
        payroll_structure_code="indoor_sales",
    )
    session.add(department)
    await session.flush()
    return department


@pytest.fixture
async def outlet(session: AsyncSession, company: Company) -> Outlet:
    outlet = Outlet(company_id=company.company_id, name="Mid Valley")
    session.add(outlet)
    await session.flush()
    return outlet


EmployeeFactory = Callable[..., Awaitable[Employee]]


@pytest.fixture
def make_employee(session: AsyncSession, company: Company) -> EmployeeFactory:
    """Factory for employees; keyword arguments override the defaults.

    Defaults: confirmed full-timer, age 30, basic 3,000, no allowance.
    """
    counter = itertools.count(1)

    async def _make(**overrides: Any) -> Employee:
        n = next(counter)
        values: dict[str, Any] = {
            "employee_id": f"EMP{n:03d}",
            "company_id": company.company_id,
            "name": f"Employee {n:03d}",
            "ic_number": IC_AGE_30,
            "status": "active",
            "employment_type": "confirmed",
            "work_type": "full_time",
            "join_date": date(2020, 1, 6),
            "default_basic_salary": Decimal("3000.00"),
            "default_allowance": Decimal("0.00"),
            "bank_name": "Maybank",
            "bank_account_no": f"5140{n:08d}",
        }
        values.update(overrides)
        employee = Employee(**values)
        session.add(employee)
        await session.flush()
        return employee

    return _make


@pytest.fixture
def make_claim(session: AsyncSession) -> Callable[..., Awaitable[Claim]]:
    async def _make(employee: Employee, amount: str, claim_date: date, status: str = "approved") -> Claim:
        claim = Claim(
            employee_id=employee.id,
            claim_date=claim_date,
            amount=Decimal(amount),
            status=status,
            description="Petrol",
        )
        session.add(claim)
        await session.flush()
        return claim

    return _make


@pytest.fixture
def make_clock_record(session: AsyncSession, company: Company) -> Callable[..., Awaitable[ClockInRecord]]:
    async def _make(employee: Employee, work_date: date, **slots: time | None) -> ClockInRecord:
        record = ClockInRecord(
            employee_id=employee.id,
            company_id=company.company_id,
            work_date=work_date,
            slot_metadata={},
            **slots,
        )
        session.add(record)
        await session.flush()
        return record

    return _make


@pytest.fixture
async def annual_leave(session: AsyncSession, company: Company) -> LeaveType:
    leave_type = LeaveType(
        company_id=company.company_id,
        code="AL",
        name="Annual Leave",
        is_paid=True,
        default_days_per_year=Decimal("14"),
    )
    session.add(leave_type)
    await session.flush()
    return leave_type


@pytest.fixture
async def unpaid_leave(session: AsyncSession, company: Company) -> LeaveType:
    leave_type = LeaveType(
        company_id=company.company_id,
        code="UL",
        name="Unpaid Leave",
        is_paid=False,
        default_days_per_year=Decimal("0"),
    )
    session.add(leave_type)
    await session.flush()
    return leave_type
