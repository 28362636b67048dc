"""Statutory contribution tables."""

from gaji_engine.statutory.tables import (
    ContributionBracket,
    ContributionTable,
    EpfRates,
    PcbBracket,
    PcbTable,
    StatutoryTables,
    available_versions,
    get_tables,
    load_tables,
    parse_tables,
    round_up_to,
)

__all__ = [
    "ContributionBracket",
    "ContributionTable",
    "EpfRates",
    "PcbBracket",
    "PcbTable",
    "StatutoryTables",
    "available_versions",
    "get_tables",
    "load_tables",
    "parse_tables",
    "round_up_to",
]
