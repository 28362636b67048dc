"""Versioned Malaysian statutory contribution tables.

Tables live as JSON documents under ``statutory/data`` (one file per version)
and are parsed once per process. Calculators receive a ``StatutoryTables``
instance and never touch the filesystem.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass, field
from datetime import date
from decimal import ROUND_CEILING, Decimal
from functools import lru_cache
from importlib import resources
from typing import Any

from gaji_engine.errors import StatutoryTableMissingError

logger = logging.getLogger(__name__)

ZERO = Decimal("0")


def round_up_to(amount: Decimal, step: Decimal) -> Decimal:
    """Round ``amount`` up to the next multiple of ``step``."""
    units = (amount / step).to_integral_value(rounding=ROUND_CEILING)
    return (units * step).quantize(Decimal("0.01"))


@dataclass(frozen=True)
class ContributionBracket:
    """Wage bracket with fixed employee / employer contributions."""

    max_wage: Decimal
    employee: Decimal
    employer: Decimal


@dataclass(frozen=True)
class ContributionTable:
    """Bracketed contribution table with a wage ceiling."""

    ceiling: Decimal
    brackets: tuple[ContributionBracket, ...]

    def lookup(self, wage: Decimal) -> ContributionBracket:
        """Return the bracket for ``wage``; wages above the ceiling use the ceiling bracket."""
        if wage <= 0:
            return ContributionBracket(max_wage=ZERO, employee=ZERO, employer=ZERO)
        capped = min(wage, self.ceiling)
        for bracket in self.brackets:
            if capped <= bracket.max_wage:
                return bracket
        return self.brackets[-1]


@dataclass(frozen=True)
class EpfRates:
    """EPF contribution rates."""

    employee_rate: Decimal
    employer_rate_low: Decimal
    employer_rate_high: Decimal
    employer_wage_threshold: Decimal
    senior_age: int
    senior_malaysian_employee: Decimal
    senior_malaysian_employer: Decimal
    senior_non_malaysian_employee: Decimal
    senior_non_malaysian_employer: Decimal
    foreign_employee_rate: Decimal
    foreign_employer_flat: Decimal
    voluntary_rate_ceiling: Decimal


@dataclass(frozen=True)
class PcbBracket:
    """Resident tax bracket: tax = (P - m) * r + b."""

    min_income: Decimal
    max_income: Decimal | None
    m: Decimal
    r: Decimal
    b_single: Decimal
    b_spouse: Decimal


@dataclass(frozen=True)
class PcbTable:
    """Progressive resident tax table with personal reliefs."""

    self_relief: Decimal
    spouse_relief: Decimal
    child_relief: Decimal
    epf_relief_cap: Decimal
    brackets: tuple[PcbBracket, ...]

    def bracket_for(self, chargeable: Decimal) -> PcbBracket:
        for bracket in self.brackets:
            if bracket.max_income is None or chargeable <= bracket.max_income:
                return bracket
        return self.brackets[-1]


@dataclass(frozen=True)
class StatutoryTables:
    """One loaded statutory table version."""

    version: str
    effective_from: date
    epf: EpfRates
    socso: ContributionTable
    socso_senior_age: int
    socso_category2_employer_rate: Decimal
    eis: ContributionTable
    eis_exempt_age: int
    pcb: PcbTable
    source: dict[str, Any] = field(default_factory=dict, repr=False, compare=False)


def _expand_contribution_table(payload: dict[str, Any]) -> ContributionTable:
    """Build brackets from fixed rows plus a generated RM-step band."""
    brackets = [
        ContributionBracket(Decimal(w), Decimal(ee), Decimal(er))
        for w, ee, er in payload.get("fixed_rows", [])
    ]

    generated = payload.get("generated")
    if generated:
        step = Decimal(generated["step"])
        round_to = Decimal(generated["round_to"])
        ee_rate = Decimal(generated["employee_rate"])
        er_rate = Decimal(generated["employer_rate"])
        upper = Decimal(generated["from"]) + step
        end = Decimal(generated["to"])
        while upper <= end:
            midpoint = upper - step / 2
            brackets.append(
                ContributionBracket(
                    max_wage=upper,
                    employee=round_up_to(midpoint * ee_rate, round_to),
                    employer=round_up_to(midpoint * er_rate, round_to),
                )
            )
            upper += step

    brackets.sort(key=lambda b: b.max_wage)
    return ContributionTable(ceiling=Decimal(payload["ceiling"]), brackets=tuple(brackets))


def parse_tables(payload: dict[str, Any]) -> StatutoryTables:
    """Parse a statutory table JSON document."""
    epf = payload["epf"]
    pcb = payload["pcb"]
    reliefs = pcb["reliefs"]

    return StatutoryTables(
        version=payload["version"],
        effective_from=date.fromisoformat(payload["effective_from"]),
        epf=EpfRates(
            employee_rate=Decimal(epf["employee_rate"]),
            employer_rate_low=Decimal(epf["employer_rate_low"]),
            employer_rate_high=Decimal(epf["employer_rate_high"]),
            employer_wage_threshold=Decimal(epf["employer_wage_threshold"]),
            senior_age=int(epf["senior_age"]),
            senior_malaysian_employee=Decimal(epf["senior_malaysian"]["employee_rate"]),
            senior_malaysian_employer=Decimal(epf["senior_malaysian"]["employer_rate"]),
            senior_non_malaysian_employee=Decimal(epf["senior_non_malaysian"]["employee_rate"]),
            senior_non_malaysian_employer=Decimal(epf["senior_non_malaysian"]["employer_rate"]),
            foreign_employee_rate=Decimal(epf["foreign_employee_rate"]),
            foreign_employer_flat=Decimal(epf["foreign_employer_flat"]),
            voluntary_rate_ceiling=Decimal(epf["voluntary_rate_ceiling"]),
        ),
        socso=_expand_contribution_table(payload["socso"]),
        socso_senior_age=int(payload["socso"]["senior_age"]),
        socso_category2_employer_rate=Decimal(payload["socso"]["category2_employer_rate"]),
        eis=_expand_contribution_table(payload["eis"]),
        eis_exempt_age=int(payload["eis"]["exempt_age"]),
        pcb=PcbTable(
            self_relief=Decimal(reliefs["self"]),
            spouse_relief=Decimal(reliefs["spouse"]),
            child_relief=Decimal(reliefs["per_child"]),
            epf_relief_cap=Decimal(reliefs["epf_cap"]),
            brackets=tuple(
                PcbBracket(
                    min_income=Decimal(b["min"]),
                    max_income=Decimal(b["max"]) if b.get("max") is not None else None,
                    m=Decimal(b["m"]),
                    r=Decimal(b["r"]),
                    b_single=Decimal(b["b_single"]),
                    b_spouse=Decimal(b["b_spouse"]),
                )
                for b in pcb["brackets"]
            ),
        ),
        source=payload,
    )


def available_versions() -> list[str]:
    """List table versions shipped in the data directory."""
    data_dir = resources.files("gaji_engine.statutory").joinpath("data")
    return sorted(
        entry.name.removesuffix(".json")
        for entry in data_dir.iterdir()
        if entry.name.endswith(".json")
    )


@lru_cache(maxsize=None)
def load_tables(version: str) -> StatutoryTables:
    """Load and cache one table version.

    Raises StatutoryTableMissingError if the version is not shipped.
    """
    resource = resources.files("gaji_engine.statutory").joinpath("data", f"{version}.json")
    if not resource.is_file():
        raise StatutoryTableMissingError(version)

    payload = json.loads(resource.read_text(encoding="utf-8"))
    tables = parse_tables(payload)
    logger.info("Loaded statutory tables %s (effective %s)", version, tables.effective_from)
    return tables


def get_tables(version: str, as_of: date | None = None) -> StatutoryTables:
    """Get the tables for ``version``, checking they cover ``as_of``."""
    tables = load_tables(version)
    if as_of is not None and as_of < tables.effective_from:
        raise StatutoryTableMissingError(version, as_of)
    return tables
