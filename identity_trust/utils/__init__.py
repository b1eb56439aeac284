# Utilities module

from .report_utils import (
    ALLOWED_DELIMITERS,
    ReportFormatError,
    format_delimited_report,
    sanitize_cell,
)

__all__ = [
    "ALLOWED_DELIMITERS",
    "ReportFormatError",
    "format_delimited_report",
    "sanitize_cell",
]
