from __future__ import annotations

import io
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Any

import pandas as pd

from ..models.config_models import ParserConfig
from ..models.parse_result import ParseResult, Record
from .errors import ParseFailureError
from .headers import resolve_headers
from .inference import infer_field_info, parse_number

"""Workbook (XLS / XLSX) parsing with pandas.

Only the first sheet is read. Reading is a two-stage strategy:

``strict``
    typed cells (numbers, datetimes), blank cells become None.
``relaxed``
    every cell read as text with pandas' synthesized integer column ids,
    blank cells kept as "".

The first strategy that loads wins; if none does, ParseFailureError is
raised with the strict stage's exception attached as the cause.
"""

__all__ = [
    "WorkbookReadOptions",
    "STRICT_READ",
    "RELAXED_READ",
    "READ_STRATEGIES",
    "clean_cell",
    "load_first_sheet",
    "read_workbook_rows",
    "find_header_row",
    "rows_to_result",
    "parse_workbook",
]

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class WorkbookReadOptions:
    name: str
    as_text: bool
    blank_as_null: bool

    def parse_kwargs(self) -> dict[str, Any]:
        if self.as_text:
            return {"dtype": str, "keep_default_na": False, "na_filter": False}
        # "NA" / "N/A" などの文字列は値として残す (空セルのみ NaN)
        return {"keep_default_na": False, "na_values": [""]}


STRICT_READ = WorkbookReadOptions(name="strict", as_text=False, blank_as_null=True)
RELAXED_READ = WorkbookReadOptions(name="relaxed", as_text=True, blank_as_null=False)
READ_STRATEGIES: tuple[WorkbookReadOptions, ...] = (STRICT_READ, RELAXED_READ)


def clean_cell(value: Any, blank_as_null: bool = True) -> Any:
    """Convert a pandas cell into a plain Python scalar.

    NaN/NaT -> None (or "" when ``blank_as_null`` is False), numpy scalars
    -> Python scalars, integral floats -> int, Timestamps -> datetime,
    strings trimmed.
    """
    blank = None if blank_as_null else ""
    if value is None:
        return blank
    if isinstance(value, str):
        return value.strip()
    if isinstance(value, pd.Timestamp):
        if pd.isna(value):
            return blank
        return value.to_pydatetime()
    try:
        if pd.isna(value):
            return blank
    except (TypeError, ValueError):  # pragma: no cover - non scalar cell
        return value
    if hasattr(value, "item"):
        value = value.item()  # numpy scalar
    if isinstance(value, float) and value.is_integer():
        return int(value)
    return value


def _is_empty_cell(value: Any) -> bool:
    return value is None or value == ""


def load_first_sheet(data: bytes, options: WorkbookReadOptions = STRICT_READ) -> list[list[Any]]:
    """Load the first sheet of a workbook as a list of cleaned rows.

    Raises whatever pandas / the engine raises on unreadable content.
    """
    with pd.ExcelFile(io.BytesIO(data)) as xls:
        if not xls.sheet_names:
            return []
        # ヘッダなしで生読み (ヘッダ行は後段で検出)
        df = xls.parse(xls.sheet_names[0], header=None, **options.parse_kwargs())
    return [
        [clean_cell(v, options.blank_as_null) for v in raw]
        for raw in df.astype(object).values.tolist()
    ]


def read_workbook_rows(
    data: bytes, strategies: Sequence[WorkbookReadOptions] = READ_STRATEGIES
) -> tuple[list[list[Any]], str]:
    """Try each read strategy in order; return (rows, strategy name)."""
    if not strategies:
        raise ValueError("at least one workbook read strategy is required")
    first_error: Exception | None = None
    for options in strategies:
        try:
            rows = load_first_sheet(data, options)
        except Exception as e:
            logger.warning(f"workbook read ({options.name}) failed: {e}")
            if first_error is None:
                first_error = e
            continue
        if first_error is not None:
            logger.info(f"workbook read recovered with {options.name} strategy")
        return rows, options.name
    raise ParseFailureError(f"Failed to parse workbook: {first_error}") from first_error


def find_header_row(rows: Sequence[Sequence[Any]], scan_rows: int = 10) -> int:
    """Index of the first row (within ``scan_rows``) with a non-empty cell, else 0."""
    for i, row in enumerate(rows[:scan_rows]):
        if any(not _is_empty_cell(cell) for cell in row):
            return i
    return 0


def _header_name(cell: Any) -> str:
    if _is_empty_cell(cell):
        return ""
    return str(cell).strip()


def rows_to_result(
    rows: Sequence[Sequence[Any]],
    options: ParserConfig | None = None,
    read_strategy: str | None = None,
    source_format: str = "xlsx",
) -> ParseResult:
    """Map already loaded sheet rows to records.

    Rows where more than ``sparse_row_threshold`` of the mapped fields are
    empty are dropped (strictly greater: exactly half empty is kept).
    """
    options = options or ParserConfig()
    if not rows:
        return ParseResult.empty(source_format=source_format)

    header_idx = find_header_row(rows, options.header_scan_rows)
    layout = resolve_headers([_header_name(c) for c in rows[header_idx]], options.blank_headers)
    logger.debug(f"header row={header_idx + 1} fields={layout.names}")

    records: list[Record] = []
    row_numbers: list[int] = []
    sparse_rows = 0
    for row_idx in range(header_idx + 1, len(rows)):
        row = rows[row_idx]
        if not row or all(_is_empty_cell(c) for c in row):
            continue
        record: Record = {}
        empty_count = 0
        for name, idx in layout:
            if idx >= len(row):
                continue
            value = row[idx]
            if _is_empty_cell(value):
                empty_count += 1
                continue
            if options.coerce_numeric_strings and isinstance(value, str):
                number = parse_number(value)
                if number is not None:
                    value = number
            record[name] = value
        if empty_count > len(layout) * options.sparse_row_threshold:
            sparse_rows += 1
            continue
        if record:
            records.append(record)
            row_numbers.append(row_idx + 1)

    if sparse_rows:
        logger.info(f"skipped {sparse_rows} sparse rows")

    field_info = infer_field_info(
        records, layout.names, titlecase_labels=True, generated=layout.generated
    )
    return ParseResult(
        records=records,
        fields=list(layout.names),
        field_info=field_info,
        row_numbers=row_numbers,
        source_format=source_format,
        read_strategy=read_strategy,
    )


def parse_workbook(
    data: bytes,
    options: ParserConfig | None = None,
    strategies: Sequence[WorkbookReadOptions] = READ_STRATEGIES,
    source_format: str = "xlsx",
) -> ParseResult:
    """Parse the first sheet of an XLS / XLSX workbook."""
    rows, strategy = read_workbook_rows(data, strategies)
    return rows_to_result(rows, options, read_strategy=strategy, source_format=source_format)
