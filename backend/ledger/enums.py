"""Enumerations shared across the ledger engine."""

from enum import StrEnum


class RecordType(StrEnum):
    """Row type as written in the CSV ``Type`` column."""

    NORMAL = "Normal"
    ADJUSTMENT = "Adjustment"


class ImportMode(StrEnum):
    """How imported CSV rows combine with the existing log."""

    APPEND = "append"
    OVERWRITE = "overwrite"
