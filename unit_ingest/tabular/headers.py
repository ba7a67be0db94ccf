from __future__ import annotations

import re
from collections.abc import Sequence
from dataclasses import dataclass, field

"""Header resolution shared by the delimited-text and workbook paths.

Column positions are tracked independently of the header list: dropping an
invalid header never shifts the values of the following columns.

Two policies exist because both behaviours have been shipped:

``exclude`` (default)
    blank headers and auto-generated placeholders (``Column 3``,
    ``Column2``, pandas' ``Unnamed: 4``) are dropped along with their column.
``auto_name``
    blank headers are named ``Column N`` (1-based source position) and
    placeholder headers are kept as-is.
"""

__all__ = [
    "POLICY_EXCLUDE",
    "POLICY_AUTO_NAME",
    "HeaderLayout",
    "strip_quotes",
    "is_placeholder_header",
    "resolve_headers",
]

POLICY_EXCLUDE = "exclude"
POLICY_AUTO_NAME = "auto_name"

_PLACEHOLDER_RE = re.compile(r"^(?:Column|Unnamed:)\s*_?\d*$", re.IGNORECASE)
_QUOTES = ('"', "'")


@dataclass(frozen=True)
class HeaderLayout:
    names: list[str]
    indices: list[int]  # original column index per name
    generated: frozenset[str] = field(default_factory=frozenset)

    def __iter__(self):
        return iter(zip(self.names, self.indices, strict=True))

    def __len__(self) -> int:
        return len(self.names)


def strip_quotes(value: str) -> str:
    """Strip a single layer of matching surrounding quotes."""
    if len(value) >= 2 and value[0] in _QUOTES and value[-1] == value[0]:
        return value[1:-1]
    return value


def is_placeholder_header(name: str) -> bool:
    return bool(_PLACEHOLDER_RE.match(name))


def resolve_headers(names: Sequence[str], policy: str = POLICY_EXCLUDE) -> HeaderLayout:
    """Filter raw header names down to the valid ones.

    Parameters
    ----------
    names: header cells already converted to trimmed strings
    policy: ``exclude`` or ``auto_name``

    Returns
    -------
    HeaderLayout whose ``indices`` point back at the original columns.
    """
    if policy not in (POLICY_EXCLUDE, POLICY_AUTO_NAME):
        raise ValueError(f"unknown blank header policy: {policy!r}")

    valid: list[str] = []
    indices: list[int] = []
    generated: set[str] = set()
    for idx, name in enumerate(names):
        if name == "":
            if policy == POLICY_EXCLUDE:
                continue
            name = f"Column {idx + 1}"
            generated.add(name)
        elif is_placeholder_header(name):
            if policy == POLICY_EXCLUDE:
                continue
            generated.add(name)
        valid.append(name)
        indices.append(idx)
    return HeaderLayout(names=valid, indices=indices, generated=frozenset(generated))
