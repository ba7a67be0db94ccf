from __future__ import annotations

import math
import re
from collections.abc import Iterable, Sequence
from typing import Any

from ..models.parse_result import FIELD_TYPE_NUMBER, FIELD_TYPE_STRING, FieldDescriptor, Record

"""Per-column type inference.

Runs once over the final record set: the first record with a non-empty value
for a column decides its type. A value is numeric when it already is a
number, or when its entire trimmed string form parses as a finite number.
"""

__all__ = [
    "is_empty_value",
    "is_number",
    "parse_number",
    "make_label",
    "infer_field_info",
]

_NUMBER_RE = re.compile(r"[+-]?(?:\d+\.?\d*|\.\d+)(?:[eE][+-]?\d+)?")
_INT_RE = re.compile(r"[+-]?\d+")
_LABEL_SPLIT_RE = re.compile(r"[_\s]")


def is_empty_value(value: Any) -> bool:
    return value is None or (isinstance(value, str) and value.strip() == "")


def is_number(value: Any) -> bool:
    """True for finite int/float values (bool excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def parse_number(text: str) -> int | float | None:
    """Parse ``text`` as a finite number or return None.

    >>> parse_number(" 1200 ")
    1200
    >>> parse_number("12.5")
    12.5
    >>> parse_number("North Wing") is None
    True
    """
    s = text.strip()
    if not _NUMBER_RE.fullmatch(s):
        return None
    if _INT_RE.fullmatch(s):
        return int(s)
    value = float(s)
    if not math.isfinite(value):  # 1e999
        return None
    return value


def make_label(name: str, titlecase: bool = False) -> str:
    """Readable label for a header; word-boundary title-casing on request."""
    if not titlecase:
        return name
    words = _LABEL_SPLIT_RE.split(name)
    return " ".join(w[:1].upper() + w[1:].lower() for w in words)


def _describe(name: str, records: Iterable[Record], label: str) -> FieldDescriptor:
    for record in records:
        value = record.get(name)
        if is_empty_value(value):
            continue
        if is_number(value):
            return FieldDescriptor(name, FIELD_TYPE_NUMBER, label, value)
        if isinstance(value, str):
            number = parse_number(value)
            if number is not None:
                return FieldDescriptor(name, FIELD_TYPE_NUMBER, label, number)
        return FieldDescriptor(name, FIELD_TYPE_STRING, label, value)
    return FieldDescriptor(name, FIELD_TYPE_STRING, label, None)


def infer_field_info(
    records: Sequence[Record],
    fields: Sequence[str],
    *,
    titlecase_labels: bool = False,
    generated: Iterable[str] = (),
) -> dict[str, FieldDescriptor]:
    """Build one FieldDescriptor per distinct field name.

    Parameters
    ----------
    records: parsed records in source order
    fields: declared field names (duplicates collapse to one descriptor)
    titlecase_labels: title-case every label (workbook path)
    generated: auto-named / placeholder headers, always title-cased
    """
    generated = set(generated)
    info: dict[str, FieldDescriptor] = {}
    for name in fields:
        if name in info:
            continue
        label = make_label(name, titlecase=titlecase_labels or name in generated)
        info[name] = _describe(name, records, label)
    return info
