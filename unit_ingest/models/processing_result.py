from __future__ import annotations

import statistics
from dataclasses import dataclass
from datetime import datetime
from enum import Enum

"""Upload processing result models.

Aggregates what happened to one uploaded file: how many rows the parser
produced, how many units survived the merge, and what each sink accepted.
"""

__all__ = [
    "UploadStatus",
    "SinkStat",
    "UploadResult",
    "BatchStatsAccumulator",
]


class UploadStatus(Enum):
    """Outcome of one upload.

    - SUCCESS: parsed, merged and every enabled sink accepted the records
    - PARTIAL: parsed and merged, but at least one sink failed
    - FAILED: rejected before or during parsing
    """
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


@dataclass(frozen=True)
class SinkStat:
    """Per-sink statistics (row store or search index)."""
    name: str  # store / index
    accepted: int
    failed: int = 0
    elapsed_seconds: float = 0.0
    total_batches: int = 0
    avg_batch_seconds: float = 0.0
    p95_batch_seconds: float = 0.0
    error: str | None = None


@dataclass(frozen=True)
class UploadResult:
    file_name: str
    status: UploadStatus
    parsed_rows: int
    merged_records: int
    dropped_records: int  # natural key missing
    stored_rows: int
    indexed_documents: int
    index_failures: int
    start_time: datetime
    end_time: datetime
    elapsed_seconds: float
    read_strategy: str | None = None
    sink_stats: list[SinkStat] | None = None
    error: str | None = None


class BatchStatsAccumulator:
    """Collects per-batch timings and summarizes them for SinkStat."""

    def __init__(self) -> None:
        self.batch_times: list[float] = []

    def add_batch_time(self, elapsed_seconds: float) -> None:
        self.batch_times.append(elapsed_seconds)

    def get_stats(self) -> tuple[int, float, float]:
        """Return (total_batches, avg_batch_seconds, p95_batch_seconds)."""
        if not self.batch_times:
            return (0, 0.0, 0.0)

        total_batches = len(self.batch_times)
        avg_batch_seconds = statistics.mean(self.batch_times)

        if total_batches == 1:
            p95_batch_seconds = self.batch_times[0]
        else:
            p95_batch_seconds = statistics.quantiles(
                self.batch_times, n=20, method='inclusive'
            )[18]  # 95th percentile (19th out of 20 quantiles, 0-indexed)

        return (total_batches, avg_batch_seconds, p95_batch_seconds)
