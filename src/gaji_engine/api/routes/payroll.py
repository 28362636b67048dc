"""Payroll run and item API endpoints."""

from typing import Annotated, Any
from uuid import UUID

from fastapi import APIRouter, Path, Query, Response, status

from gaji_engine.api.dependencies import CompanyId, DbSession
from gaji_engine.api.schemas import (
    AddEmployeeRequest,
    CreateAllResponse,
    CreateRunResponse,
    DeleteDraftsResponse,
    ErrorResponse,
    FinalizeResponse,
    PayrollItemResponse,
    PayrollItemUpdate,
    PayrollRunCreate,
    PayrollRunCreateAll,
    PayrollRunDetailResponse,
    PayrollRunListResponse,
    PayrollRunResponse,
    RecalculateResponse,
)
from gaji_engine.services.export_service import ExportService
from gaji_engine.services.payroll_run_service import PayrollRunService

router = APIRouter(prefix="/payroll", tags=["payroll"])


# ============================================================================
# Runs
# ============================================================================


@router.post(
    "/runs",
    response_model=CreateRunResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def create_run(
    db: DbSession,
    company_id: CompanyId,
    payload: PayrollRunCreate,
) -> CreateRunResponse:
    """Create a draft payroll run for a department, outlet or the company."""
    result = await PayrollRunService(db).create_run(
        company_id,
        payload.month,
        payload.year,
        department_id=payload.department_id,
        outlet_id=payload.outlet_id,
        notes=payload.notes,
    )
    await db.commit()
    return CreateRunResponse.model_validate(result)


@router.post(
    "/runs/all",
    response_model=CreateAllResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}},
)
async def create_all_runs(
    db: DbSession,
    company_id: CompanyId,
    payload: PayrollRunCreateAll,
) -> CreateAllResponse:
    """Create one draft run per active department or outlet."""
    result = await PayrollRunService(db).create_all_runs(
        company_id, payload.month, payload.year, unit=payload.unit, notes=payload.notes
    )
    await db.commit()
    return CreateAllResponse.model_validate(result)


@router.get("/runs", response_model=PayrollRunListResponse)
async def list_runs(
    db: DbSession,
    company_id: CompanyId,
    year: Annotated[int | None, Query(ge=1900, le=9999)] = None,
    month: Annotated[int | None, Query(ge=1, le=12)] = None,
) -> PayrollRunListResponse:
    """List payroll runs, newest period first."""
    runs = await PayrollRunService(db).list_runs(company_id, year=year, month=month)
    return PayrollRunListResponse(
        items=[PayrollRunResponse.model_validate(r) for r in runs],
        total=len(runs),
    )


@router.delete(
    "/runs/drafts",
    response_model=DeleteDraftsResponse,
    responses={400: {"model": ErrorResponse}},
)
async def delete_all_drafts(
    db: DbSession,
    company_id: CompanyId,
    month: Annotated[int, Query(ge=1, le=12)],
    year: Annotated[int, Query(ge=1900, le=9999)],
) -> DeleteDraftsResponse:
    """Delete every draft run for the period."""
    deleted = await PayrollRunService(db).delete_all_drafts(company_id, month, year)
    await db.commit()
    return DeleteDraftsResponse(deleted=deleted)


@router.get(
    "/runs/{run_id}",
    response_model=PayrollRunDetailResponse,
    responses={404: {"model": ErrorResponse}},
)
async def get_run(
    db: DbSession,
    company_id: CompanyId,
    run_id: Annotated[UUID, Path()],
) -> PayrollRunDetailResponse:
    """Get a payroll run with its items."""
    run = await PayrollRunService(db).get_run(run_id, company_id)
    return PayrollRunDetailResponse.model_validate(run)


@router.delete(
    "/runs/{run_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def delete_run(
    db: DbSession,
    company_id: CompanyId,
    run_id: Annotated[UUID, Path()],
) -> Response:
    """Delete a draft run."""
    await PayrollRunService(db).delete_run(run_id, company_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post(
    "/runs/{run_id}/finalize",
    response_model=FinalizeResponse,
    responses={
        400: {"model": ErrorResponse},
        404: {"model": ErrorResponse},
        409: {"model": ErrorResponse},
    },
)
async def finalize_run(
    db: DbSession,
    company_id: CompanyId,
    run_id: Annotated[UUID, Path()],
) -> FinalizeResponse:
    """Finalize a draft run, linking its claims. Terminal."""
    result = await PayrollRunService(db).finalize_run(run_id, company_id)
    await db.commit()
    return FinalizeResponse.model_validate(result)


@router.post(
    "/runs/{run_id}/recalculate",
    response_model=RecalculateResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def recalculate_run(
    db: DbSession,
    company_id: CompanyId,
    run_id: Annotated[UUID, Path()],
) -> RecalculateResponse:
    """Recompute every item of a draft run from stored inputs."""
    result = await PayrollRunService(db).recalculate_all(run_id, company_id)
    await db.commit()
    return RecalculateResponse.model_validate(result)


@router.post(
    "/runs/{run_id}/employees",
    response_model=PayrollItemResponse,
    status_code=status.HTTP_201_CREATED,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}},
)
async def add_employee(
    db: DbSession,
    company_id: CompanyId,
    run_id: Annotated[UUID, Path()],
    payload: AddEmployeeRequest,
) -> PayrollItemResponse:
    """Add an in-scope employee to a draft run."""
    item = await PayrollRunService(db).add_employee(run_id, payload.employee_id, company_id)
    await db.commit()
    return PayrollItemResponse.model_validate(item)


@router.get(
    "/runs/{run_id}/bank-file",
    responses={200: {"content": {"text/csv": {}}}, 400: {"model": ErrorResponse}},
)
async def bank_file(
    db: DbSession,
    company_id: CompanyId,
    run_id: Annotated[UUID, Path()],
) -> Response:
    """Download the bank transfer CSV for a finalized run."""
    content = await ExportService(db).bank_file(run_id, company_id)
    return Response(
        content=content,
        media_type="text/csv",
        headers={"Content-Disposition": f'attachment; filename="bank-{run_id}.csv"'},
    )


# ============================================================================
# Items
# ============================================================================


@router.put(
    "/items/{item_id}",
    response_model=PayrollItemResponse,
    responses={400: {"model": ErrorResponse}, 404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def update_item(
    db: DbSession,
    company_id: CompanyId,
    item_id: Annotated[UUID, Path()],
    payload: PayrollItemUpdate,
) -> PayrollItemResponse:
    """Edit a draft item; totals are recomputed."""
    fields = payload.model_dump(exclude_unset=True)
    item = await PayrollRunService(db).update_item(item_id, fields, company_id)
    await db.commit()
    return PayrollItemResponse.model_validate(item)


@router.post(
    "/items/{item_id}/recalculate",
    response_model=PayrollItemResponse,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def recalculate_item(
    db: DbSession,
    company_id: CompanyId,
    item_id: Annotated[UUID, Path()],
) -> PayrollItemResponse:
    item = await PayrollRunService(db).recalculate_item(item_id, company_id)
    await db.commit()
    return PayrollItemResponse.model_validate(item)


@router.delete(
    "/items/{item_id}",
    status_code=status.HTTP_204_NO_CONTENT,
    responses={404: {"model": ErrorResponse}, 409: {"model": ErrorResponse}},
)
async def delete_item(
    db: DbSession,
    company_id: CompanyId,
    item_id: Annotated[UUID, Path()],
) -> Response:
    """Remove one employee from a draft run."""
    await PayrollRunService(db).delete_item(item_id, company_id)
    await db.commit()
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get(
    "/items/{item_id}/payslip",
    responses={404: {"model": ErrorResponse}},
)
async def payslip(
    db: DbSession,
    company_id: CompanyId,
    item_id: Annotated[UUID, Path()],
) -> dict[str, Any]:
    """Structured payslip for one item."""
    return await ExportService(db).payslip(item_id, company_id)
