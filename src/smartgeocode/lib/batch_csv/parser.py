"""Parser for customer-uploaded address CSV files.

Header contract: an ``address`` column is mandatory; ``landmark``, ``city``,
``state``, ``zip`` and ``country`` are optional. Header matching is
case-insensitive and whitespace-tolerant. Rows whose address is blank or the
literal "N/A" are dropped before counting.
"""

import io
from dataclasses import dataclass, field

import pandas as pd
from loguru import logger

from smartgeocode.lib.geocoder import AddressFields, clean_value, is_placeholder_address

ADDRESS_COLUMN = "address"
OPTIONAL_COLUMNS = ("landmark", "city", "state", "zip", "country")

# Header spellings seen in customer files → canonical column
_HEADER_ALIASES: dict[str, str] = {
    "zipcode": "zip",
    "zip_code": "zip",
    "zip code": "zip",
    "postal_code": "zip",
    "postal code": "zip",
    "postcode": "zip",
}


class BatchValidationError(ValueError):
    """Raised when an upload cannot become a batch job."""


@dataclass
class ParsedBatch:
    """Valid rows of an upload plus counts for diagnostics."""

    rows: list[AddressFields] = field(default_factory=list)
    skipped_rows: int = 0

    @property
    def total_rows(self) -> int:
        return len(self.rows)


def _decode(content: bytes) -> str:
    for encoding in ("utf-8-sig", "latin-1"):
        try:
            return content.decode(encoding)
        except UnicodeDecodeError:
            continue
    msg = "Cannot detect file encoding"  # pragma: no cover - latin-1 decodes any byte string
    raise BatchValidationError(msg)


def _canonical_header(name: object) -> str:
    key = str(name).strip().lower()
    return _HEADER_ALIASES.get(key, key)


def parse_batch_csv(content: bytes, *, max_rows: int) -> ParsedBatch:
    """Parse an uploaded CSV into address rows.

    Args:
        content: Raw file bytes.
        max_rows: Maximum number of valid rows accepted.

    Returns:
        ParsedBatch with the valid rows in file order.

    Raises:
        BatchValidationError: If the file is unreadable, lacks an ``address``
            header, has no valid rows, or has more than ``max_rows`` valid rows.
    """
    if not content.strip():
        msg = "Uploaded file is empty"
        raise BatchValidationError(msg)

    try:
        frame = pd.read_csv(
            io.StringIO(_decode(content)),
            dtype=str,
            keep_default_na=False,
            skip_blank_lines=True,
        )
    except pd.errors.EmptyDataError as e:
        msg = "Uploaded file has no header row"
        raise BatchValidationError(msg) from e
    except pd.errors.ParserError as e:
        msg = f"Uploaded file is not valid CSV: {e}"
        raise BatchValidationError(msg) from e

    # Short rows leave NaN in the trailing columns
    frame = frame.fillna("")
    frame.columns = [_canonical_header(c) for c in frame.columns]
    if ADDRESS_COLUMN not in frame.columns:
        msg = f"CSV must contain an '{ADDRESS_COLUMN}' column"
        raise BatchValidationError(msg)

    # Duplicate headers: keep the first occurrence of each canonical column
    frame = frame.loc[:, ~frame.columns.duplicated()]
    present_optional = [c for c in OPTIONAL_COLUMNS if c in frame.columns]
    ignored = [c for c in frame.columns if c != ADDRESS_COLUMN and c not in OPTIONAL_COLUMNS]
    if ignored:
        logger.debug(f"Ignoring unknown CSV columns: {ignored}")

    parsed = ParsedBatch()
    for record in frame[[ADDRESS_COLUMN, *present_optional]].to_dict(orient="records"):
        if is_placeholder_address(record[ADDRESS_COLUMN]):
            parsed.skipped_rows += 1
            continue
        parsed.rows.append(
            AddressFields(
                address=clean_value(record[ADDRESS_COLUMN]) or "",
                **{col: clean_value(record.get(col)) for col in present_optional},
            )
        )
        if parsed.total_rows > max_rows:
            msg = f"CSV exceeds the maximum of {max_rows} address rows"
            raise BatchValidationError(msg)

    if not parsed.rows:
        msg = "CSV contains no rows with an address"
        raise BatchValidationError(msg)

    logger.debug(f"Parsed batch CSV: {parsed.total_rows} rows, {parsed.skipped_rows} skipped")
    return parsed
