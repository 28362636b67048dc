"""Tests for the versioned statutory table registry."""

from datetime import date
from decimal import Decimal

import pytest

from gaji_engine.errors import StatutoryTableMissingError
from gaji_engine.statutory import (
    StatutoryTables,
    available_versions,
    get_tables,
    load_tables,
    parse_tables,
    round_up_to,
)


class TestTableRegistry:
    """Test loading shipped table versions."""

    def test_shipped_version_is_listed(self):
        assert "MY-2024" in available_versions()

    def test_load_is_cached(self):
        assert load_tables("MY-2024") is load_tables("MY-2024")

    def test_unknown_version_raises(self):
        with pytest.raises(StatutoryTableMissingError) as exc_info:
            load_tables("MY-1999")
        assert exc_info.value.code == "STATUTORY_TABLE_MISSING"

    def test_period_before_effective_date_raises(self):
        """A period starting before the table's effective date has no table."""
        with pytest.raises(StatutoryTableMissingError) as exc_info:
            get_tables("MY-2024", date(2023, 12, 1))
        assert exc_info.value.as_of == date(2023, 12, 1)

    def test_get_tables_for_covered_period(self):
        tables = get_tables("MY-2024", date(2025, 3, 1))
        assert tables.version == "MY-2024"
        assert tables.effective_from == date(2024, 1, 1)


class TestContributionTables:
    """Test generated SOCSO and EIS brackets."""

    def test_brackets_sorted_up_to_ceiling(self, tables: StatutoryTables):
        wages = [b.max_wage for b in tables.socso.brackets]
        assert wages == sorted(wages)
        assert wages[-1] == Decimal("6000")
        assert tables.eis.brackets[-1].max_wage == Decimal("6000")

    def test_generated_bracket_uses_midpoint(self, tables: StatutoryTables):
        """The 2,900.01 - 3,000 bracket is priced at 2,950."""
        bracket = tables.socso.lookup(Decimal("2950.50"))
        assert bracket.max_wage == Decimal("3000")
        assert bracket.employee == Decimal("14.75")
        assert bracket.employer == Decimal("51.65")

    def test_bracket_boundary_is_inclusive(self, tables: StatutoryTables):
        assert tables.socso.lookup(Decimal("300")).employee == Decimal("1.25")
        assert tables.socso.lookup(Decimal("300.01")).max_wage == Decimal("400")

    def test_round_up_to_five_sen(self):
        assert round_up_to(Decimal("14.76"), Decimal("0.05")) == Decimal("14.80")
        assert round_up_to(Decimal("14.75"), Decimal("0.05")) == Decimal("14.75")


class TestParseTables:
    """Test parsing a table document."""

    def test_minimal_document(self, tables: StatutoryTables):
        payload = dict(tables.source)
        payload["version"] = "TEST-1"
        payload["effective_from"] = "2030-01-01"
        payload["socso"] = {
            "ceiling": "1000",
            "senior_age": 60,
            "category2_employer_rate": "0.0125",
            "fixed_rows": [["500", "1.00", "3.00"], ["1000", "2.00", "6.00"]],
        }

        parsed = parse_tables(payload)

        assert parsed.version == "TEST-1"
        assert len(parsed.socso.brackets) == 2
        assert parsed.socso.lookup(Decimal("5000")).employee == Decimal("2.00")
        assert parsed.pcb.self_relief == Decimal("9000")
        assert parsed.pcb.brackets[-1].max_income is None
