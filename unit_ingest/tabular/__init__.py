"""Tabular parser: uploaded CSV / XLS / XLSX bytes -> normalized records."""

from .errors import ParseFailureError, PayloadTooLargeError, TabularError, UnsupportedFormatError
from .reader import detect_format, parse_upload

__all__ = [
    "ParseFailureError",
    "PayloadTooLargeError",
    "TabularError",
    "UnsupportedFormatError",
    "detect_format",
    "parse_upload",
]
