"""Attendance maintenance endpoints."""

from fastapi import APIRouter

from gaji_engine.api.dependencies import CompanyId, DbSession
from gaji_engine.api.schemas import ErrorResponse, MidnightRepairRequest, MidnightRepairResponse
from gaji_engine.services.attendance_service import AttendanceService
from gaji_engine.services.config_service import ConfigService

router = APIRouter(prefix="/attendance", tags=["attendance"])


@router.post(
    "/repair-midnight",
    response_model=MidnightRepairResponse,
    responses={404: {"model": ErrorResponse}, 500: {"model": ErrorResponse}},
)
async def repair_midnight(
    db: DbSession,
    company_id: CompanyId,
    payload: MidnightRepairRequest,
) -> MidnightRepairResponse:
    """Close shifts that crossed midnight using the next day's stray clock-in."""
    settings = await ConfigService(db).get_payroll_settings(company_id)
    report = await AttendanceService(db).repair_midnight_sessions(
        company_id,
        since=payload.since,
        dry_run=payload.dry_run,
        standard_minutes=settings.standard_work_minutes,
    )
    if not payload.dry_run:
        await db.commit()
    return MidnightRepairResponse.model_validate(report)
