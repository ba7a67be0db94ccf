from __future__ import annotations

from dataclasses import dataclass, field
from typing import Any

"""Parser output models.

A parsed upload is an ordered list of declared field names plus one mapping
per data row keyed by those names. The column set is only known at runtime,
so records stay plain dicts instead of fixed structs.
"""

__all__ = [
    "FIELD_TYPE_STRING",
    "FIELD_TYPE_NUMBER",
    "Record",
    "FieldDescriptor",
    "ParseResult",
]

FIELD_TYPE_STRING = "string"
FIELD_TYPE_NUMBER = "number"

# column name -> scalar (str / int / float / datetime). 空値はキーごと欠落
Record = dict[str, Any]


@dataclass(frozen=True)
class FieldDescriptor:
    """Inferred metadata for one column.

    Built once per column from the first record holding a non-empty value.
    ``example`` is the numeric value for number columns and the verbatim
    first value otherwise (None when the column never has a value).
    """
    name: str
    inferred_type: str
    label: str
    example: Any = None

    @property
    def is_numeric(self) -> bool:
        return self.inferred_type == FIELD_TYPE_NUMBER


@dataclass(frozen=True)
class ParseResult:
    records: list[Record]
    fields: list[str]  # valid headers in column order (duplicates kept)
    field_info: dict[str, FieldDescriptor]
    # 1-based source line / sheet row per record (same order as records)
    row_numbers: list[int] = field(default_factory=list)
    source_format: str | None = None
    read_strategy: str | None = None  # workbook only: strict / relaxed

    @classmethod
    def empty(cls, source_format: str | None = None) -> ParseResult:
        return cls(records=[], fields=[], field_info={}, row_numbers=[], source_format=source_format)

    def __len__(self) -> int:
        return len(self.records)
