"""Malaysian statutory deductions: EPF, SOCSO, EIS and PCB.

Every calculation here is pure and never raises on numeric input. The
wage bases are deliberately different:

- EPF base: basic + commission + trade commission + bonus
- SOCSO / EIS base: gross salary as paid, capped at the table ceiling
- PCB base: the EPF base, projected to an annual figure
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import date
from decimal import Decimal

from gaji_engine.calculators.rounding import ceil_to_ringgit, round_to_cents, to_decimal
from gaji_engine.calculators.types import (
    StatutoryProfile,
    StatutoryResult,
    StatutoryToggles,
    YtdFigures,
)
from gaji_engine.errors import ValidationFailedError
from gaji_engine.statutory import StatutoryTables, round_up_to

logger = logging.getLogger(__name__)

ZERO = Decimal("0")
FIVE_SEN = Decimal("0.05")

_MYKAD_RE = re.compile(r"^\d{12}$")


@dataclass(frozen=True)
class IcDetails:
    """Facts derived from an identity number."""

    is_malaysian: bool
    date_of_birth: date | None


def parse_ic(ic_number: str | None, reference: date | None = None) -> IcDetails | None:
    """Parse a MyKad number (``YYMMDD-PB-###G``) or a passport number.

    Returns None when no number is given. A value containing letters is
    treated as a foreign passport. An all-digit value that is not a valid
    12-digit MyKad raises ValidationFailedError.
    """
    if not ic_number or not ic_number.strip():
        return None

    cleaned = ic_number.replace("-", "").replace(" ", "").strip()
    if any(ch.isalpha() for ch in cleaned):
        return IcDetails(is_malaysian=False, date_of_birth=None)

    if not _MYKAD_RE.match(cleaned):
        raise ValidationFailedError(f"Malformed IC number: {ic_number}", field="ic_number")

    yy, mm, dd = int(cleaned[0:2]), int(cleaned[2:4]), int(cleaned[4:6])
    ref_year = (reference or date.today()).year
    year = 2000 + yy
    if year > ref_year:
        year -= 100

    try:
        dob = date(year, mm, dd)
    except ValueError as e:
        raise ValidationFailedError(
            f"Malformed IC number: {ic_number}", field="ic_number"
        ) from e

    return IcDetails(is_malaysian=True, date_of_birth=dob)


def age_on(date_of_birth: date, as_of: date) -> int:
    """Whole years between date_of_birth and as_of."""
    years = as_of.year - date_of_birth.year
    if (as_of.month, as_of.day) < (date_of_birth.month, date_of_birth.day):
        years -= 1
    return years


def build_profile(
    *,
    ic_number: str | None,
    date_of_birth: date | None,
    as_of: date,
    epf_contribution_type: str | None = "normal",
    epf_voluntary_rate: Decimal | None = None,
    epf_foreign_opt_in: bool | None = False,
    marital_status: str | None = "single",
    spouse_working: bool | None = False,
    children_count: int | None = 0,
) -> StatutoryProfile:
    """Build a statutory profile for an employee at period start.

    Missing or malformed data never raises: defaults are applied and a note is
    added for the item's advisory list.
    """
    notes: list[str] = []
    is_malaysian = True
    dob = date_of_birth

    try:
        details = parse_ic(ic_number, reference=as_of)
    except ValidationFailedError as e:
        details = None
        notes.append(f"{e.message}; Malaysian defaults applied")

    if details is not None:
        is_malaysian = details.is_malaysian
        if dob is None:
            dob = details.date_of_birth
    elif not ic_number:
        notes.append("No IC number; Malaysian defaults applied")

    age = age_on(dob, as_of) if dob is not None else None
    if age is None:
        notes.append("Date of birth unknown; under-60 rates applied")

    contribution_type = epf_contribution_type or "normal"
    if contribution_type not in ("normal", "voluntary_higher", "none"):
        notes.append(f"Unknown EPF contribution type '{contribution_type}'; normal rates applied")
        contribution_type = "normal"

    return StatutoryProfile(
        age=age,
        is_malaysian=is_malaysian,
        epf_contribution_type=contribution_type,
        epf_voluntary_rate=epf_voluntary_rate,
        epf_foreign_opt_in=bool(epf_foreign_opt_in),
        marital_status=marital_status or "single",
        spouse_working=bool(spouse_working),
        children_count=max(0, children_count or 0),
        notes=tuple(notes),
    )


class StatutoryCalculator:
    """Computes statutory deductions from one loaded table version."""

    def __init__(self, tables: StatutoryTables, toggles: StatutoryToggles | None = None):
        self.tables = tables
        self.toggles = toggles or StatutoryToggles()

    @staticmethod
    def epf_base(
        basic: Decimal,
        commission: Decimal = ZERO,
        trade_commission: Decimal = ZERO,
        bonus: Decimal = ZERO,
    ) -> Decimal:
        """EPF wage base. OT, allowances, outstation, incentive and claims are excluded."""
        return max(ZERO, basic + commission + trade_commission + bonus)

    def calculate_epf(self, wage: Decimal, profile: StatutoryProfile) -> tuple[Decimal, Decimal]:
        """Return (employee, employer) EPF, each rounded up to the whole ringgit."""
        wage = to_decimal(wage)
        if wage <= 0 or profile.epf_contribution_type == "none":
            return ZERO, ZERO

        # EPF is compulsory for Malaysians only; foreign workers must opt in
        if not profile.is_malaysian and not profile.epf_foreign_opt_in:
            return ZERO, ZERO

        rates = self.tables.epf
        age = profile.effective_age

        if age >= rates.senior_age:
            if profile.is_malaysian:
                ee_rate = rates.senior_malaysian_employee
                er_rate = rates.senior_malaysian_employer
            else:
                ee_rate = rates.senior_non_malaysian_employee
                er_rate = rates.senior_non_malaysian_employer
            return ceil_to_ringgit(wage * ee_rate), ceil_to_ringgit(wage * er_rate)

        if not profile.is_malaysian:
            # Opted-in foreign worker: flat employer share
            return ceil_to_ringgit(wage * rates.foreign_employee_rate), rates.foreign_employer_flat

        ee_rate = rates.employee_rate
        if profile.epf_contribution_type == "voluntary_higher" and profile.epf_voluntary_rate:
            declared = to_decimal(profile.epf_voluntary_rate)
            if declared > 1:
                declared = declared / 100
            ee_rate = min(max(declared, rates.employee_rate), rates.voluntary_rate_ceiling)

        if wage <= rates.employer_wage_threshold:
            er_rate = rates.employer_rate_low
        else:
            er_rate = rates.employer_rate_high

        return ceil_to_ringgit(wage * ee_rate), ceil_to_ringgit(wage * er_rate)

    def calculate_socso(self, wage: Decimal, profile: StatutoryProfile) -> tuple[Decimal, Decimal]:
        """Return (employee, employer) SOCSO.

        Category 1 (under the senior age) is a bracket lookup. Category 2 is
        employer-only, computed on the capped wage.
        """
        wage = to_decimal(wage)
        if wage <= 0:
            return ZERO, ZERO

        if profile.effective_age >= self.tables.socso_senior_age:
            capped = min(wage, self.tables.socso.ceiling)
            employer = round_up_to(capped * self.tables.socso_category2_employer_rate, FIVE_SEN)
            return ZERO, employer

        bracket = self.tables.socso.lookup(wage)
        return bracket.employee, bracket.employer

    def calculate_eis(self, wage: Decimal, profile: StatutoryProfile) -> tuple[Decimal, Decimal]:
        """Return (employee, employer) EIS; exempt at or above the exempt age."""
        wage = to_decimal(wage)
        if wage <= 0 or profile.effective_age >= self.tables.eis_exempt_age:
            return ZERO, ZERO
        bracket = self.tables.eis.lookup(wage)
        return bracket.employee, bracket.employer

    def calculate_pcb(
        self,
        monthly_base: Decimal,
        epf_employee: Decimal,
        profile: StatutoryProfile,
        month: int,
        ytd: YtdFigures | None = None,
    ) -> Decimal:
        """Monthly tax deduction from the projected annual chargeable income."""
        ytd = ytd or YtdFigures()
        pcb = self.tables.pcb
        month = min(max(month, 1), 12)
        remaining = Decimal(13 - month)

        projected = ytd.statutory_base + to_decimal(monthly_base) * remaining
        epf_relief = min(ytd.epf_employee + to_decimal(epf_employee) * remaining, pcb.epf_relief_cap)

        reliefs = pcb.self_relief + epf_relief + pcb.child_relief * profile.children_count
        if profile.has_non_working_spouse:
            reliefs += pcb.spouse_relief

        chargeable = max(ZERO, projected - reliefs)
        bracket = pcb.bracket_for(chargeable)
        rebate = bracket.b_spouse if profile.has_non_working_spouse else bracket.b_single
        annual_tax = max(ZERO, (chargeable - bracket.m) * bracket.r + rebate)

        monthly = max(ZERO, (annual_tax - ytd.pcb) / remaining)
        return round_to_cents(monthly)

    def calculate(
        self,
        *,
        epf_base: Decimal,
        socso_base: Decimal,
        profile: StatutoryProfile,
        month: int,
        ytd: YtdFigures | None = None,
        epf_override: Decimal | None = None,
        pcb_override: Decimal | None = None,
    ) -> StatutoryResult:
        """Compute all four deductions and apply any overrides."""
        result = StatutoryResult(
            epf_base=round_to_cents(to_decimal(epf_base)),
            socso_base=round_to_cents(to_decimal(socso_base)),
            version=self.tables.version,
            advisory_notes=list(profile.notes),
        )

        if self.toggles.epf_enabled:
            result.epf_employee, result.epf_employer = self.calculate_epf(epf_base, profile)
        if self.toggles.socso_enabled:
            result.socso_employee, result.socso_employer = self.calculate_socso(socso_base, profile)
        if self.toggles.eis_enabled:
            result.eis_employee, result.eis_employer = self.calculate_eis(socso_base, profile)

        result.epf_computed = result.epf_employee
        if epf_override is not None:
            result.epf_employee = round_to_cents(to_decimal(epf_override))

        if self.toggles.pcb_enabled:
            # Relief uses the EPF actually deducted
            result.pcb = self.calculate_pcb(epf_base, result.epf_employee, profile, month, ytd)
        result.pcb_computed = result.pcb
        if pcb_override is not None:
            result.pcb = round_to_cents(to_decimal(pcb_override))

        return result
