from __future__ import annotations

import logging
import re
import time
from collections.abc import Callable, Iterable, Sequence
from dataclasses import dataclass, field
from datetime import date, datetime, time as dt_time
from typing import Any

from psycopg2.extras import execute_values

from ..models.parse_result import Record

"""Row store writes (Postgres compatible backend).

Uploads carry an open-ended column set, so the unit table is provisioned on
the fly:

1. ``ensure_unit_table``  CREATE TABLE IF NOT EXISTS + UNIQUE natural key
2. ``provision_columns``  add every unseen column as TEXT in one ALTER TABLE
3. ``upsert_rows``        batched INSERT .. ON CONFLICT (key) DO UPDATE via
                          psycopg2.extras.execute_values

All values are stored as text (None stays NULL). Transaction boundaries
(BEGIN / COMMIT / ROLLBACK) belong to the caller.
"""

__all__ = [
    "StoreError",
    "BatchMetrics",
    "InsertResult",
    "sanitize_column_name",
    "ensure_unit_table",
    "existing_columns",
    "provision_columns",
    "prepare_rows",
    "upsert_rows",
    "store_records",
]

logger = logging.getLogger(__name__)

_NON_WORD_RE = re.compile(r"\W+", re.ASCII)


class StoreError(Exception):
    pass


@dataclass(frozen=True)
class BatchMetrics:
    """Metrics for a single batch upsert."""
    batch_size: int
    elapsed_seconds: float  # time spent on execute_values
    start_time: float  # time.time()
    end_time: float


@dataclass(frozen=True)
class InsertResult:
    inserted_rows: int
    added_columns: list[str] = field(default_factory=list)


def sanitize_column_name(column: str) -> str:
    """``"Phase: Phase Name"`` -> ``"phase_phase_name"``."""
    return _NON_WORD_RE.sub("_", column).strip("_").lower()


def _to_text(value: Any) -> str | None:
    if value is None:
        return None
    if isinstance(value, (datetime, date, dt_time)):
        return value.isoformat()
    return str(value)


def ensure_unit_table(cursor: Any, table: str, key_column: str) -> None:
    """Create the unit table with a unique natural key column if missing."""
    constraint = f"{table}_{key_column}_key"
    cursor.execute(
        f"""
        CREATE TABLE IF NOT EXISTS {table} (
            id UUID DEFAULT gen_random_uuid(),
            created_at TIMESTAMP WITH TIME ZONE DEFAULT now(),
            "{key_column}" TEXT,
            PRIMARY KEY (id)
        );
        DO $$
        BEGIN
            IF NOT EXISTS (
                SELECT 1 FROM pg_constraint
                WHERE conname = '{constraint}' AND contype = 'u'
            ) THEN
                ALTER TABLE {table} ADD CONSTRAINT {constraint} UNIQUE ("{key_column}");
            END IF;
        END $$;
        CREATE INDEX IF NOT EXISTS idx_{table}_{key_column} ON {table} ("{key_column}");
        """
    )


def existing_columns(cursor: Any, table: str) -> set[str]:
    cursor.execute(
        "SELECT column_name FROM information_schema.columns "
        "WHERE table_name = %s AND table_schema = 'public'",
        (table,),
    )
    return {r[0] for r in cursor.fetchall()}


def provision_columns(cursor: Any, table: str, columns: Sequence[str]) -> list[str]:
    """Add missing columns as TEXT in a single ALTER TABLE. Returns the added names."""
    present = existing_columns(cursor, table)
    missing = [c for c in columns if c not in present]
    if missing:
        additions = ", ".join(f'ADD COLUMN IF NOT EXISTS "{c}" TEXT' for c in missing)
        cursor.execute(f"ALTER TABLE {table} {additions};")
        logger.info(f"added {len(missing)} new columns to {table}")
    return missing


def prepare_rows(records: Sequence[Record]) -> tuple[list[str], list[tuple[str | None, ...]]]:
    """Sanitize field names and flatten records into value tuples.

    Columns keep first-appearance order. Fields whose sanitized name collide
    share one column; the later field wins within a record.
    """
    columns: list[str] = []
    seen: set[str] = set()
    sanitized_records: list[dict[str, str | None]] = []
    for record in records:
        row: dict[str, str | None] = {}
        for key, value in record.items():
            col = sanitize_column_name(key)
            if not col:
                logger.warning(f"field {key!r} has no usable column name; skipped")
                continue
            row[col] = _to_text(value)
            if col not in seen:
                seen.add(col)
                columns.append(col)
        sanitized_records.append(row)
    rows = [tuple(r.get(c) for c in columns) for r in sanitized_records]
    return columns, rows


def upsert_rows(
    cursor: Any,
    table: str,
    columns: Sequence[str],
    rows: Iterable[Sequence[Any]],
    conflict_column: str,
    page_size: int = 500,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> InsertResult:
    """Batched INSERT .. ON CONFLICT DO UPDATE using execute_values.

    metrics_callback receives one BatchMetrics per batch; it is not invoked
    when ``rows`` is empty.
    """
    rows_list = list(rows)
    if not rows_list:
        return InsertResult(inserted_rows=0)
    if conflict_column not in columns:
        raise StoreError(f"conflict column {conflict_column!r} not among insert columns")

    cols_sql = ",".join(f'"{c}"' for c in columns)
    updates = [f'"{c}" = EXCLUDED."{c}"' for c in columns if c != conflict_column]
    if updates:
        on_conflict = f'ON CONFLICT ("{conflict_column}") DO UPDATE SET {", ".join(updates)}'
    else:
        on_conflict = f'ON CONFLICT ("{conflict_column}") DO NOTHING'
    base_sql = f"INSERT INTO {table} ({cols_sql}) VALUES %s {on_conflict}"

    inserted = 0
    for offset in range(0, len(rows_list), page_size):
        batch = rows_list[offset:offset + page_size]
        start_time = time.time()
        try:
            execute_values(cursor, base_sql, batch, page_size=len(batch))
        except Exception as e:
            raise StoreError(str(e)) from e
        finally:
            end_time = time.time()
            if metrics_callback is not None:
                metrics_callback(
                    BatchMetrics(
                        batch_size=len(batch),
                        elapsed_seconds=end_time - start_time,
                        start_time=start_time,
                        end_time=end_time,
                    )
                )
        inserted += len(batch)
    return InsertResult(inserted_rows=inserted)


def store_records(
    cursor: Any,
    table: str,
    key_field: str,
    records: Sequence[Record],
    batch_size: int = 500,
    metrics_callback: Callable[[BatchMetrics], None] | None = None,
) -> InsertResult:
    """Provision the unit table and upsert merged records keyed on ``key_field``."""
    if not records:
        return InsertResult(inserted_rows=0)
    key_column = sanitize_column_name(key_field)
    try:
        ensure_unit_table(cursor, table, key_column)
        columns, rows = prepare_rows(records)
        added = provision_columns(cursor, table, columns)
    except Exception as e:
        raise StoreError(f"failed provisioning {table}: {e}") from e
    result = upsert_rows(
        cursor,
        table,
        columns,
        rows,
        conflict_column=key_column,
        page_size=batch_size,
        metrics_callback=metrics_callback,
    )
    return InsertResult(inserted_rows=result.inserted_rows, added_columns=added)
