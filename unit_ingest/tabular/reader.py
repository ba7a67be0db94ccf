from __future__ import annotations

import logging

from ..models.config_models import ParserConfig
from ..models.parse_result import ParseResult
from .delimited import parse_delimited_text
from .errors import PayloadTooLargeError, UnsupportedFormatError
from .workbook import parse_workbook

"""Upload parser entry point.

``parse_upload`` dispatches on the format hint (file extension):

- ``csv``          -> delimited-text path (delimiter sniffed)
- ``xls`` / ``xlsx`` -> workbook path (first sheet, pandas)

Anything else is rejected before any byte is looked at, and so is a payload
above the configured size ceiling.
"""

__all__ = [
    "TEXT_FORMATS",
    "WORKBOOK_FORMATS",
    "detect_format",
    "check_payload_size",
    "decode_text",
    "parse_upload",
]

logger = logging.getLogger(__name__)

TEXT_FORMATS = frozenset({"csv"})
WORKBOOK_FORMATS = frozenset({"xls", "xlsx"})


def detect_format(format_hint: str) -> str:
    """Normalize a format hint to ``csv`` / ``xls`` / ``xlsx``.

    Accepts a bare extension (``"CSV"``), a dotted one (``".xlsx"``) or a
    file name (``"units.xlsx"``).

    Raises:
        UnsupportedFormatError: for any other extension
    """
    hint = (format_hint or "").strip().lower()
    extension = hint.rsplit(".", 1)[-1] if "." in hint else hint
    if extension not in TEXT_FORMATS and extension not in WORKBOOK_FORMATS:
        raise UnsupportedFormatError(extension)
    return extension


def check_payload_size(size: int, limit: int) -> None:
    if size > limit:
        raise PayloadTooLargeError(size, limit)


def decode_text(data: bytes) -> str:
    # BOM 付き UTF-8 も許容、不正バイトは置換
    return data.decode("utf-8-sig", errors="replace")


def parse_upload(
    data: bytes,
    format_hint: str,
    options: ParserConfig | None = None,
    declared_size: int | None = None,
) -> ParseResult:
    """Parse an uploaded file into normalized records and field metadata.

    Parameters
    ----------
    data: raw file bytes
    format_hint: extension or file name
    options: parser configuration (defaults apply when None)
    declared_size: size announced by the caller; ``len(data)`` when None

    Raises
    ------
    UnsupportedFormatError, PayloadTooLargeError, ParseFailureError
    """
    options = options or ParserConfig()
    source_format = detect_format(format_hint)
    size = len(data) if declared_size is None else declared_size
    check_payload_size(size, options.max_upload_bytes)

    if source_format in TEXT_FORMATS:
        result = parse_delimited_text(decode_text(data), options)
    else:
        result = parse_workbook(data, options, source_format=source_format)

    logger.debug(
        f"parsed format={source_format} records={len(result.records)} fields={len(result.fields)}"
    )
    return result
