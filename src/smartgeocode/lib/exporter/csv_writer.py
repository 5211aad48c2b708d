"""CSV rendering for batch result artifacts."""

import csv
import io
from collections.abc import AsyncIterable, AsyncIterator, Iterable, Iterator
from typing import Any

# Characters that trigger formula execution in spreadsheet applications
_FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")

RESULT_COLUMNS = [
    "address",
    "landmark",
    "city",
    "state",
    "zip",
    "country",
    "status",
    "lat",
    "lng",
    "formatted_address",
    "error_reason",
]

_SAMPLE_ROWS = [
    ["1600 Pennsylvania Ave NW", "White House", "Washington", "DC", "20500", "USA"],
    ["350 Fifth Avenue", "Empire State Building", "New York", "NY", "10118", "USA"],
    ["10 Downing Street", "", "London", "", "SW1A 2AA", "UK"],
]


def _sanitize_cell(value: object) -> object:
    """Prefix formula-triggering strings with a quote so spreadsheets show them as text.

    Numbers (coordinates can be negative) are left untouched.
    """
    if isinstance(value, str) and value and value[0] in _FORMULA_PREFIXES:
        return f"'{value}"
    return value


def _render_line(writer: Any, buffer: io.StringIO, row: Iterable[object]) -> str:
    writer.writerow(row)
    line = buffer.getvalue()
    buffer.seek(0)
    buffer.truncate(0)
    return line


def render_csv(records: Iterable[dict[str, Any]], *, columns: list[str] | None = None) -> Iterator[str]:
    """Render records as CSV text, one line per yielded chunk.

    Suitable for ``StreamingResponse`` so large results are never held in memory.

    Args:
        records: Iterable of row dicts.
        columns: Column names to include. Defaults to RESULT_COLUMNS.

    Yields:
        The header line, then one line per record.
    """
    cols = columns or RESULT_COLUMNS
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    yield _render_line(writer, buffer, cols)
    for record in records:
        yield _render_line(writer, buffer, [_sanitize_cell(record.get(c)) for c in cols])


async def render_csv_stream(
    records: AsyncIterable[dict[str, Any]], *, columns: list[str] | None = None
) -> AsyncIterator[str]:
    """Async counterpart of :func:`render_csv` for records read from the database."""
    cols = columns or RESULT_COLUMNS
    buffer = io.StringIO()
    writer = csv.writer(buffer)
    yield _render_line(writer, buffer, cols)
    async for record in records:
        yield _render_line(writer, buffer, [_sanitize_cell(record.get(c)) for c in cols])


def sample_csv() -> str:
    """Return a template upload file with the supported header."""
    input_columns = RESULT_COLUMNS[:6]
    records = (dict(zip(input_columns, row, strict=True)) for row in _SAMPLE_ROWS)
    return "".join(render_csv(records, columns=input_columns))
