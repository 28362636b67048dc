"""ORM models for the payroll engine."""

from gaji_engine.models.attendance import (
    CLOCK_SLOTS,
    ClockInRecord,
    ScheduleAssignment,
    ShiftTemplate,
)
from gaji_engine.models.base import Base, TimestampMixin
from gaji_engine.models.claims import Claim, SalaryAdvance
from gaji_engine.models.company import Company, Department, Outlet, PayrollConfig, PublicHoliday
from gaji_engine.models.employee import Employee, EmployeeAllowance, EmployeeCommission
from gaji_engine.models.leave import LeaveBalance, LeaveRequest, LeaveType
from gaji_engine.models.payroll import PayrollItem, PayrollRun
from gaji_engine.models.sales import SalesRecord, TripLog

__all__ = [
    "Base",
    "TimestampMixin",
    "CLOCK_SLOTS",
    "ClockInRecord",
    "ScheduleAssignment",
    "ShiftTemplate",
    "Claim",
    "SalaryAdvance",
    "Company",
    "Department",
    "Outlet",
    "PayrollConfig",
    "PublicHoliday",
    "Employee",
    "EmployeeAllowance",
    "EmployeeCommission",
    "LeaveBalance",
    "LeaveRequest",
    "LeaveType",
    "PayrollItem",
    "PayrollRun",
    "SalesRecord",
    "TripLog",
]
