from __future__ import annotations

import logging
import re
from collections.abc import Sequence

from ..models.config_models import ParserConfig
from ..models.parse_result import ParseResult, Record
from .headers import resolve_headers, strip_quotes
from .inference import infer_field_info, parse_number

"""Delimited-text (CSV / TSV / ...) parsing.

Known limitation: splitting is not quote-aware. A quoted value containing the
active delimiter (``"Foo, Bar"`` in a comma file) is split into two cells;
only a single layer of surrounding quotes is stripped after splitting.
"""

__all__ = [
    "CANDIDATE_DELIMITERS",
    "sniff_delimiter",
    "split_lines",
    "parse_delimited_text",
]

logger = logging.getLogger(__name__)

# 同数の場合は先頭 (カンマ) 優先
CANDIDATE_DELIMITERS: tuple[str, ...] = (",", ";", "\t", "|")

_LINE_SPLIT_RE = re.compile(r"\r?\n")


def sniff_delimiter(first_line: str, candidates: Sequence[str] = CANDIDATE_DELIMITERS) -> str:
    """Pick the candidate that splits ``first_line`` into the most fields.

    Ties go to the earlier candidate.

    >>> sniff_delimiter("a,b;c,d,e")
    ','
    """
    best = candidates[0]
    max_fields = 0
    for delimiter in candidates:
        count = len(first_line.split(delimiter))
        if count > max_fields:
            max_fields = count
            best = delimiter
    return best


def split_lines(text: str) -> list[tuple[int, str]]:
    """Split on line boundaries, dropping leading and trailing blank lines.

    Returns (1-based line number, line) pairs. Lines keep their inner
    whitespace so a leading empty tab-separated cell does not shift columns.
    """
    lines = _LINE_SPLIT_RE.split(text)
    numbered = list(enumerate(lines, start=1))
    while numbered and not numbered[0][1].strip():
        numbered.pop(0)
    while numbered and not numbered[-1][1].strip():
        numbered.pop()
    return numbered


def parse_delimited_text(text: str, options: ParserConfig | None = None) -> ParseResult:
    """Parse delimited text into normalized records.

    Steps:
    1. Split into lines; no lines -> empty result
    2. Sniff the delimiter on the first line
    3. Header cells: trim, strip one quote layer, apply header policy
    4. Each non-blank line: pull valid headers by original column index,
       trim, strip one quote layer, keep non-empty values only
    5. Discard rows without any populated field
    6. Infer per-column FieldDescriptors
    """
    options = options or ParserConfig()
    lines = split_lines(text)
    if not lines:
        logger.warning("delimited input is empty")
        return ParseResult.empty(source_format="csv")

    _, header_line = lines[0]
    delimiter = sniff_delimiter(header_line)
    logger.debug(f"sniffed delimiter={delimiter!r}")

    raw_headers = [strip_quotes(h.strip()) for h in header_line.split(delimiter)]
    layout = resolve_headers(raw_headers, options.blank_headers)

    records: list[Record] = []
    row_numbers: list[int] = []
    for line_no, line in lines[1:]:
        if not line.strip():
            continue
        values = line.split(delimiter)
        record: Record = {}
        for name, idx in layout:
            raw = values[idx].strip() if idx < len(values) else ""
            value = strip_quotes(raw)
            if value == "":
                continue
            if options.coerce_numeric_strings:
                number = parse_number(value)
                if number is not None:
                    record[name] = number
                    continue
            record[name] = value
        if record:
            records.append(record)
            row_numbers.append(line_no)

    field_info = infer_field_info(records, layout.names, generated=layout.generated)
    return ParseResult(
        records=records,
        fields=list(layout.names),
        field_info=field_info,
        row_numbers=row_numbers,
        source_format="csv",
    )
