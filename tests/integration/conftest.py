"""Integration test fixtures: services and HTTP against an in-memory database."""

from collections.abc import AsyncGenerator

import pytest_asyncio
from httpx import ASGITransport, AsyncClient
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from gaji_engine.api.app import create_app
from gaji_engine.api.dependencies import get_db_session
from gaji_engine.models import Company
from gaji_engine.services.payroll_run_service import PayrollRunService


@pytest_asyncio.fixture
async def service(session: AsyncSession) -> PayrollRunService:
    return PayrollRunService(session)


@pytest_asyncio.fixture
async def client(
    session_factory: async_sessionmaker[AsyncSession],
) -> AsyncGenerator[AsyncClient, None]:
    """Create async HTTP client bound to the test database.

    Data seeded through the ``session`` fixture must be committed before
    requests are made; each request runs in its own session.
    """
    app = create_app()

    async def _test_session() -> AsyncGenerator[AsyncSession, None]:
        async with session_factory() as db:
            try:
                yield db
            except Exception:
                await db.rollback()
                raise

    app.dependency_overrides[get_db_session] = _test_session
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as client:
        yield client
    app.dependency_overrides.clear()


@pytest_asyncio.fixture
async def headers(company: Company) -> dict[str, str]:
    return {"X-Company-ID": str(company.company_id)}
