"""Payroll engine services."""

from gaji_engine.services.state_machine import (
    InvalidTransitionError,
    PayrollRunStateMachine,
    PayrollRunStatus,
)
from gaji_engine.services.attendance_service import AttendanceService, RepairReport
from gaji_engine.services.claim_linker import ClaimLinker
from gaji_engine.services.config_service import ConfigService, PayrollSettings
from gaji_engine.services.export_service import ExportService
from gaji_engine.services.leave_service import LeaveService
from gaji_engine.services.payroll_run_service import (
    CreateAllResult,
    CreateRunResult,
    FinalizeResult,
    PayrollRunService,
    RecalculateResult,
    RunWarning,
)

__all__ = [
    "PayrollRunStateMachine",
    "PayrollRunStatus",
    "InvalidTransitionError",
    "AttendanceService",
    "RepairReport",
    "ClaimLinker",
    "ConfigService",
    "PayrollSettings",
    "ExportService",
    "LeaveService",
    "PayrollRunService",
    "CreateRunResult",
    "CreateAllResult",
    "FinalizeResult",
    "RecalculateResult",
    "RunWarning",
]
