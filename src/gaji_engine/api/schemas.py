"""Pydantic schemas for API request/response models."""

from datetime import date, datetime
from decimal import Decimal
from typing import Annotated, Literal
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field, PlainSerializer

# Monetary amounts leave the API as two-decimal strings
Money = Annotated[Decimal, PlainSerializer(lambda v: f"{v:.2f}", return_type=str)]
OptionalMoney = Annotated[
    Decimal | None,
    PlainSerializer(lambda v: None if v is None else f"{v:.2f}", return_type=str | None),
]


class ErrorResponse(BaseModel):
    """Error body returned for every PayrollError."""

    detail: str
    code: str


# ============================================================================
# Payroll run schemas
# ============================================================================


class PayrollRunCreate(BaseModel):
    """Schema for creating a payroll run."""

    month: int = Field(ge=1, le=12)
    year: int = Field(ge=1900, le=9999)
    department_id: UUID | None = None
    outlet_id: UUID | None = None
    notes: str | None = None


class PayrollRunCreateAll(BaseModel):
    """Schema for creating one run per department or outlet."""

    month: int = Field(ge=1, le=12)
    year: int = Field(ge=1900, le=9999)
    unit: Literal["department", "outlet"] = "department"
    notes: str | None = None


class PayrollRunResponse(BaseModel):
    """Schema for payroll run response."""

    model_config = ConfigDict(from_attributes=True)

    payroll_run_id: UUID
    company_id: UUID
    month: int
    year: int
    department_id: UUID | None = None
    outlet_id: UUID | None = None
    status: str
    period_start_date: date
    period_end_date: date
    payment_due_date: date
    period_label: str | None = None
    work_days_per_month: int
    statutory_version: str
    notes: str | None = None
    total_gross: Money
    total_deductions: Money
    total_net: Money
    total_employer_cost: Money
    employee_count: int
    has_variance_warning: bool
    finalized_at: datetime | None = None
    created_at: datetime
    updated_at: datetime


class PayrollItemResponse(BaseModel):
    """Schema for a payroll item."""

    model_config = ConfigDict(from_attributes=True)

    payroll_item_id: UUID
    payroll_run_id: UUID
    employee_id: UUID
    employee_name: str
    payroll_structure_code: str
    work_type: str

    basic_salary: Money
    fixed_allowance: Money
    ot_hours: Decimal
    ot_amount: Money
    ph_days_worked: Decimal
    ph_pay: Money
    incentive_amount: Money
    commission_amount: Money
    trade_commission_amount: Money
    outstation_amount: Money
    bonus: Money
    attendance_bonus: Money
    claims_amount: Money

    unpaid_leave_days: Decimal
    unpaid_leave_deduction: Money
    absent_days: Decimal
    absent_day_deduction: Money
    short_hours: Decimal
    short_hours_deduction: Money
    advance_deduction: Money
    other_deductions: Money
    deduction_remarks: str | None = None

    epf_employee: Money
    epf_employer: Money
    socso_employee: Money
    socso_employer: Money
    eis_employee: Money
    eis_employer: Money
    pcb: Money
    epf_override: OptionalMoney = None
    pcb_override: OptionalMoney = None
    epf_computed: Money
    pcb_computed: Money
    statutory_base: Money
    statutory_version: str

    gross_salary: Money
    total_deductions: Money
    net_pay: Money
    employer_total_cost: Money

    sales_amount: Money
    salary_calculation_method: str | None = None
    trip_count: int
    outstation_days: int
    upsell_amount: Money
    flexible_commission: Money
    part_time_hours: Decimal
    late_days: int
    days_worked: int

    ytd_gross: Money
    ytd_epf: Money
    ytd_pcb: Money
    prev_month_net: OptionalMoney = None
    variance_amount: OptionalMoney = None
    variance_percent: Decimal | None = None
    advisory_notes: list[str] = Field(default_factory=list)


class PayrollRunDetailResponse(PayrollRunResponse):
    """Run with its items."""

    items: list[PayrollItemResponse] = Field(default_factory=list)


class PayrollRunListResponse(BaseModel):
    """Schema for listing payroll runs."""

    items: list[PayrollRunResponse]
    total: int


class RunWarningResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    code: str
    message: str
    employee_id: UUID | None = None


class CreateRunResponse(BaseModel):
    """Schema for a created run and the warnings raised building it."""

    model_config = ConfigDict(from_attributes=True)

    run: PayrollRunResponse
    items_created: int
    warnings: list[RunWarningResponse]


class SkippedUnitResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    unit_id: UUID
    unit_name: str
    reason: str


class CreateAllResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    created: list[CreateRunResponse]
    skipped: list[SkippedUnitResponse]


class RecalculateResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    recalculated: int
    total: int


class FinalizeResponse(BaseModel):
    """Schema for finalize response."""

    model_config = ConfigDict(from_attributes=True)

    run: PayrollRunResponse
    claims_linked: int
    advances_applied: int
    warnings: list[RunWarningResponse]


class DeleteDraftsResponse(BaseModel):
    deleted: int


class AddEmployeeRequest(BaseModel):
    employee_id: UUID


class PayrollItemUpdate(BaseModel):
    """Editable item lines; only the fields sent are applied.

    Sending ``null`` for an override clears it.
    """

    basic_salary: Decimal | None = None
    fixed_allowance: Decimal | None = None
    ot_hours: Decimal | None = None
    ot_amount: Decimal | None = None
    ph_days_worked: Decimal | None = None
    incentive_amount: Decimal | None = None
    commission_amount: Decimal | None = None
    trade_commission_amount: Decimal | None = None
    outstation_amount: Decimal | None = None
    bonus: Decimal | None = None
    attendance_bonus: Decimal | None = None
    claims_amount: Decimal | None = None
    unpaid_leave_days: Decimal | None = None
    absent_days: Decimal | None = None
    short_hours: Decimal | None = None
    advance_deduction: Decimal | None = None
    other_deductions: Decimal | None = None
    deduction_remarks: str | None = None
    epf_override: Decimal | None = None
    pcb_override: Decimal | None = None


# ============================================================================
# Attendance schemas
# ============================================================================


class MidnightRepairRequest(BaseModel):
    since: date | None = None
    dry_run: bool = False


class MidnightRepairResponse(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    repaired: int
    deleted: int
    dry_run: bool
