"""
Delimited report helpers for compliance exports.
"""

import csv
import io
from datetime import datetime
from typing import Any, Iterable, Sequence

# Cells starting with these are evaluated as formulas by spreadsheet software.
FORMULA_PREFIXES = ("=", "+", "-", "@", "\t", "\r")

ALLOWED_DELIMITERS = (",", ";", "\t", "|")


class ReportFormatError(ValueError):
    """Raised when a report cannot be produced with the requested format."""
    pass


def sanitize_cell(value: Any) -> str:
    """
    Render a value as a report cell.

    Args:
        value: Cell value (None, datetime, enum or anything str()-able)

    Returns:
        String safe to open in a spreadsheet
    """
    if value is None:
        return ""
    if isinstance(value, datetime):
        return value.isoformat()
    text = str(getattr(value, "value", value))
    if text.startswith(FORMULA_PREFIXES):
        return "'" + text
    return text


def format_delimited_report(
    headers: Sequence[str],
    rows: Iterable[Sequence[Any]],
    delimiter: str = ","
) -> str:
    """
    Build a delimited report with a header line.

    Args:
        headers: Column names
        rows: Row values in header order
        delimiter: One of ALLOWED_DELIMITERS

    Returns:
        Report text, one line per row

    Raises:
        ReportFormatError: If the delimiter is not supported
    """
    if delimiter not in ALLOWED_DELIMITERS:
        raise ReportFormatError(f"Unsupported delimiter: {delimiter!r}")

    buffer = io.StringIO()
    writer = csv.writer(buffer, delimiter=delimiter, quoting=csv.QUOTE_MINIMAL, lineterminator="\n")
    writer.writerow(headers)
    for row in rows:
        writer.writerow([sanitize_cell(value) for value in row])
    return buffer.getvalue()
