"""FastAPI dependencies for dependency injection."""

from collections.abc import AsyncGenerator
from typing import Annotated
from uuid import UUID

from fastapi import Depends, Header
from sqlalchemy.ext.asyncio import AsyncSession

from gaji_engine.database import init_db
from gaji_engine.errors import ValidationFailedError


async def get_db_session() -> AsyncGenerator[AsyncSession, None]:
    """Get database session dependency.

    Routes commit explicitly; anything left uncommitted is rolled back.
    """
    _, factory = init_db()
    async with factory() as session:
        try:
            yield session
        except Exception:
            await session.rollback()
            raise


async def get_company_id(
    x_company_id: Annotated[str | None, Header()] = None
) -> UUID:
    """Extract the tenant company ID from header."""
    if not x_company_id:
        raise ValidationFailedError("X-Company-ID header is required", field="X-Company-ID")
    try:
        return UUID(x_company_id)
    except ValueError:
        raise ValidationFailedError("Invalid X-Company-ID format", field="X-Company-ID")


# Type aliases for cleaner dependency injection
DbSession = Annotated[AsyncSession, Depends(get_db_session)]
CompanyId = Annotated[UUID, Depends(get_company_id)]
