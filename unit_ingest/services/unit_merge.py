from __future__ import annotations

from collections.abc import Iterable, Sequence
from dataclasses import dataclass, field
from typing import Any

from ..models.config_models import DEFAULT_SUMMABLE_FIELDS
from ..models.parse_result import Record
from ..tabular.inference import is_empty_value, is_number

"""Unit merge service: fold rows describing the same property unit.

A unit split across phases / installments arrives as several rows sharing a
natural key (``Unit Name``). Each group is folded left to right starting from
a copy of its first row:

- field absent/empty so far      -> take the incoming value
- both numeric, summable field   -> add
- both numeric, other field      -> keep the first value
- both strings and different     -> "<existing>, <incoming>"
- anything else                  -> keep the existing value

String concatenation and first-wins fields depend on input order, so callers
must pass records in parser order. Rows without a natural key are excluded
from the output; ``merge_units_with_report`` tells the caller which ones.
"""

__all__ = [
    "DEFAULT_NATURAL_KEY",
    "MergeReport",
    "merge_value",
    "fold_group",
    "merge_units",
    "merge_units_with_report",
]

DEFAULT_NATURAL_KEY = "Unit Name"


@dataclass(frozen=True)
class MergeReport:
    records: list[Record]
    dropped_indices: list[int] = field(default_factory=list)  # input positions without key
    merged_groups: int = 0  # groups that had more than one row

    @property
    def dropped_count(self) -> int:
        return len(self.dropped_indices)


def _group_key(value: Any) -> str | None:
    if is_empty_value(value):
        return None
    return str(value)


def merge_value(field_name: str, existing: Any, incoming: Any, summable: frozenset[str]) -> Any:
    """Merge one field of an incoming row into the accumulated value."""
    if is_empty_value(incoming):
        return existing
    if is_empty_value(existing):
        return incoming
    if is_number(existing) and is_number(incoming):
        if field_name in summable:
            return existing + incoming
        return existing
    if isinstance(existing, str) and isinstance(incoming, str) and existing != incoming:
        return f"{existing}, {incoming}"
    return existing


def fold_group(group: Sequence[Record], summable: frozenset[str]) -> Record:
    merged: Record = dict(group[0])
    for record in group[1:]:
        for key, value in record.items():
            merged[key] = merge_value(key, merged.get(key), value, summable)
    return merged


def merge_units_with_report(
    records: Iterable[Record],
    natural_key: str = DEFAULT_NATURAL_KEY,
    summable_fields: Iterable[str] = DEFAULT_SUMMABLE_FIELDS,
) -> MergeReport:
    """Group by ``natural_key`` and fold each group.

    Output order follows the first appearance of each key. Singleton groups
    are passed through as the same dict object; input records are never
    mutated.
    """
    summable = frozenset(summable_fields)
    groups: dict[str, list[Record]] = {}
    dropped: list[int] = []
    for position, record in enumerate(records):
        key = _group_key(record.get(natural_key))
        if key is None:
            dropped.append(position)
            continue
        groups.setdefault(key, []).append(record)

    merged: list[Record] = []
    merged_groups = 0
    for group in groups.values():
        if len(group) == 1:
            merged.append(group[0])
            continue
        merged_groups += 1
        merged.append(fold_group(group, summable))
    return MergeReport(records=merged, dropped_indices=dropped, merged_groups=merged_groups)


def merge_units(
    records: Iterable[Record],
    natural_key: str = DEFAULT_NATURAL_KEY,
    summable_fields: Iterable[str] = DEFAULT_SUMMABLE_FIELDS,
) -> list[Record]:
    """One record per distinct natural key; see module docstring for policy."""
    return merge_units_with_report(records, natural_key, summable_fields).records
