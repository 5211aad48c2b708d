"""Batch upload CSV parsing and validation."""

from smartgeocode.lib.batch_csv.parser import (
    ADDRESS_COLUMN,
    OPTIONAL_COLUMNS,
    BatchValidationError,
    ParsedBatch,
    parse_batch_csv,
)

__all__ = [
    "ADDRESS_COLUMN",
    "OPTIONAL_COLUMNS",
    "BatchValidationError",
    "ParsedBatch",
    "parse_batch_csv",
]
