from __future__ import annotations

import logging
import time
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Any

from ..db.batch_insert import BatchMetrics, store_records
from ..logging.error_log import ErrorLogBuffer
from ..models.config_models import AppConfig
from ..models.error_record import UPLOAD_LEVEL_ROW, ErrorRecord
from ..models.parse_result import ParseResult, Record
from ..models.processing_result import BatchStatsAccumulator, SinkStat, UploadResult, UploadStatus
from ..search.typesense_index import SearchError, TypesenseIndex
from ..tabular.errors import TabularError
from ..tabular.reader import check_payload_size, detect_format, parse_upload
from .progress import BatchProgress
from .unit_merge import MergeReport, merge_units_with_report

"""Upload orchestration: parse -> merge -> store -> index.

One uploaded file is processed per call:

1. size guard on the declared (on-disk) size, format check, parse
2. merge rows sharing a natural key; rows without one are reported
3. row store stage inside BEGIN / COMMIT (ROLLBACK on failure)
4. search index stage (per-document failures counted)
5. error log flush, UploadResult with per-sink batch statistics

Rejected uploads end as FAILED. A failing sink does not stop the other one;
the upload ends as PARTIAL instead.
"""

__all__ = [
    "ERROR_MISSING_NATURAL_KEY",
    "ERROR_STORE",
    "ERROR_INDEX",
    "ProcessingError",
    "PreparedUpload",
    "prepare_upload",
    "process_upload",
]

logger = logging.getLogger(__name__)

ERROR_MISSING_NATURAL_KEY = "MISSING_NATURAL_KEY"
ERROR_STORE = "STORE_ERROR"
ERROR_INDEX = "INDEX_ERROR"
ERROR_ROLLBACK = "TRANSACTION_ROLLBACK_ERROR"


class ProcessingError(Exception):
    """Fatal error: the upload file itself cannot be opened."""
    pass


@dataclass(frozen=True)
class PreparedUpload:
    """Parsed and merged upload, ready to be handed to the sinks."""
    file_name: str
    parsed: ParseResult
    merge: MergeReport

    @property
    def records(self) -> list[Record]:
        return self.merge.records


def _read_upload(path: Path) -> tuple[int, bytes]:
    if not path.exists():
        raise ProcessingError(f"file not found: {path}")
    if not path.is_file():
        raise ProcessingError(f"not a file: {path}")
    try:
        return path.stat().st_size, path.read_bytes()
    except OSError as e:
        raise ProcessingError(f"error reading {path}: {e}") from e


def prepare_upload(path: Path, config: AppConfig, error_log: ErrorLogBuffer | None = None) -> PreparedUpload:
    """Validate, parse and merge one upload file (no sinks involved).

    Dropped rows (no natural key) are written to ``error_log`` with their
    source row numbers when a buffer is given.

    Raises:
        ProcessingError: file missing / unreadable
        TabularError: unsupported format, oversized payload, unreadable workbook
    """
    file_name = path.name
    source_format = detect_format(file_name)
    if path.is_file():
        # 読み込む前に申告サイズで弾く
        check_payload_size(path.stat().st_size, config.parser.max_upload_bytes)
    declared_size, data = _read_upload(path)
    parsed = parse_upload(data, source_format, config.parser, declared_size=declared_size)

    report = merge_units_with_report(
        parsed.records,
        natural_key=config.merge.natural_key,
        summable_fields=config.merge.summable_fields,
    )
    if report.dropped_count:
        rows = [_source_row(parsed, i) for i in report.dropped_indices]
        logger.warning(
            f"file={file_name} dropped {report.dropped_count} rows without "
            f"{config.merge.natural_key!r} (rows={rows[:10]})"
        )
        if error_log is not None:
            for row in rows:
                error_log.append(
                    ErrorRecord.create(
                        file=file_name,
                        row=row,
                        error_type=ERROR_MISSING_NATURAL_KEY,
                        message=f"row has no value for {config.merge.natural_key!r}",
                    )
                )
    logger.info(
        f"file={file_name} format={parsed.source_format} rows={len(parsed.records)} "
        f"units={len(report.records)} merged_groups={report.merged_groups}"
    )
    return PreparedUpload(file_name=file_name, parsed=parsed, merge=report)


def _source_row(parsed: ParseResult, position: int) -> int:
    if position < len(parsed.row_numbers):
        return parsed.row_numbers[position]
    return UPLOAD_LEVEL_ROW


def _rollback(cursor: Any, file_name: str, error_log: ErrorLogBuffer) -> None:
    try:
        cursor.execute("ROLLBACK")
    except Exception as rollback_e:
        # 元のエラーを優先し、ROLLBACK 失敗は記録のみ
        logger.error(f"rollback failed: {rollback_e}")
        error_log.append(
            ErrorRecord.create(
                file=file_name,
                row=UPLOAD_LEVEL_ROW,
                error_type=ERROR_ROLLBACK,
                message=str(rollback_e),
            )
        )


def _store_stage(
    cursor: Any,
    upload: PreparedUpload,
    config: AppConfig,
    error_log: ErrorLogBuffer,
) -> SinkStat:
    """Upsert merged units inside one transaction."""
    records = upload.records
    stats = BatchStatsAccumulator()
    start = time.perf_counter()

    with BatchProgress(len(records), description="Storing units") as progress:

        def _on_batch(metrics: BatchMetrics) -> None:
            stats.add_batch_time(metrics.elapsed_seconds)
            progress.advance(metrics.batch_size)

        try:
            cursor.execute("BEGIN")
            result = store_records(
                cursor,
                config.store.table,
                config.merge.natural_key,
                records,
                batch_size=config.store.batch_size,
                metrics_callback=_on_batch,
            )
            cursor.execute("COMMIT")
        except Exception as e:
            logger.error(f"store failed for {upload.file_name}: {e}")
            _rollback(cursor, upload.file_name, error_log)
            error_log.append(
                ErrorRecord.create(
                    file=upload.file_name,
                    row=UPLOAD_LEVEL_ROW,
                    error_type=ERROR_STORE,
                    message=str(e),
                )
            )
            total_batches, avg, p95 = stats.get_stats()
            return SinkStat(
                name="store",
                accepted=0,
                failed=len(records),
                elapsed_seconds=time.perf_counter() - start,
                total_batches=total_batches,
                avg_batch_seconds=avg,
                p95_batch_seconds=p95,
                error=str(e),
            )

    if result.added_columns:
        logger.debug(f"new columns: {result.added_columns}")
    total_batches, avg, p95 = stats.get_stats()
    return SinkStat(
        name="store",
        accepted=result.inserted_rows,
        elapsed_seconds=time.perf_counter() - start,
        total_batches=total_batches,
        avg_batch_seconds=avg,
        p95_batch_seconds=p95,
    )


def _index_stage(index: TypesenseIndex, upload: PreparedUpload, error_log: ErrorLogBuffer) -> SinkStat:
    """Upsert merged units into the search collection."""
    records = upload.records
    stats = BatchStatsAccumulator()
    start = time.perf_counter()
    last = start

    with BatchProgress(len(records), description="Indexing units", unit="doc") as progress:

        def _on_batch(count: int) -> None:
            nonlocal last
            now = time.perf_counter()
            stats.add_batch_time(now - last)
            last = now
            progress.advance(count)

        try:
            result = index.index_records(records, upload.parsed.field_info, on_batch=_on_batch)
        except SearchError as e:
            logger.error(f"indexing failed for {upload.file_name}: {e}")
            error_log.append(
                ErrorRecord.create(
                    file=upload.file_name,
                    row=UPLOAD_LEVEL_ROW,
                    error_type=ERROR_INDEX,
                    message=str(e),
                )
            )
            return SinkStat(
                name="index",
                accepted=0,
                failed=len(records),
                elapsed_seconds=time.perf_counter() - start,
                error=str(e),
            )

    error: str | None = None
    if result.failed_count:
        sample = result.errors[0] if result.errors else {}
        error = f"{result.failed_count} documents rejected (first: {sample.get('error')})"
        logger.warning(f"file={upload.file_name} {error}")
        error_log.append(
            ErrorRecord.create(
                file=upload.file_name,
                row=UPLOAD_LEVEL_ROW,
                error_type=ERROR_INDEX,
                message=error,
            )
        )
    total_batches, avg, p95 = stats.get_stats()
    return SinkStat(
        name="index",
        accepted=result.success_count,
        failed=result.failed_count,
        elapsed_seconds=time.perf_counter() - start,
        total_batches=total_batches,
        avg_batch_seconds=avg,
        p95_batch_seconds=p95,
        error=error,
    )


def _flush(error_log: ErrorLogBuffer) -> None:
    try:
        path = error_log.flush()
    except OSError as e:
        # ログ書き込み失敗で処理結果は変えない
        logger.warning(f"failed to write error log: {e}")
        return
    if path is not None:
        logger.info(f"error log written: {path}")


def process_upload(
    path: Path,
    config: AppConfig,
    cursor: Any = None,
    index: TypesenseIndex | None = None,
    error_log: ErrorLogBuffer | None = None,
) -> UploadResult:
    """Process one uploaded file end to end.

    Args:
        path: uploaded CSV / XLS / XLSX file
        config: resolved application config
        cursor: DB cursor for the row store (None = store stage skipped)
        index: search index sink (None = index stage skipped)
        error_log: buffer for error records (a fresh one under ./logs when None)

    Returns:
        UploadResult; FAILED when the upload was rejected, PARTIAL when a
        sink failed, SUCCESS otherwise

    Raises:
        ProcessingError: file missing / unreadable
    """
    start_time = datetime.now(UTC)
    error_log = error_log if error_log is not None else ErrorLogBuffer()

    try:
        upload = prepare_upload(path, config, error_log)
    except TabularError as e:
        logger.error(f"file={path.name} rejected: {e}")
        error_log.append(
            ErrorRecord.create(
                file=path.name,
                row=UPLOAD_LEVEL_ROW,
                error_type=e.error_type,
                message=str(e),
            )
        )
        _flush(error_log)
        end_time = datetime.now(UTC)
        return UploadResult(
            file_name=path.name,
            status=UploadStatus.FAILED,
            parsed_rows=0,
            merged_records=0,
            dropped_records=0,
            stored_rows=0,
            indexed_documents=0,
            index_failures=0,
            start_time=start_time,
            end_time=end_time,
            elapsed_seconds=(end_time - start_time).total_seconds(),
            error=str(e),
        )

    sink_stats: list[SinkStat] = []
    if upload.records:
        if cursor is not None:
            sink_stats.append(_store_stage(cursor, upload, config, error_log))
        else:
            logger.debug("store stage skipped (no cursor)")
        if index is not None:
            sink_stats.append(_index_stage(index, upload, error_log))
        else:
            logger.debug("index stage skipped (no index)")
    else:
        logger.info(f"file={upload.file_name} has no units to store")

    _flush(error_log)

    by_name = {s.name: s for s in sink_stats}
    failed_sinks = [s for s in sink_stats if s.error is not None]
    status = UploadStatus.PARTIAL if failed_sinks else UploadStatus.SUCCESS
    end_time = datetime.now(UTC)
    return UploadResult(
        file_name=upload.file_name,
        status=status,
        parsed_rows=len(upload.parsed.records),
        merged_records=len(upload.records),
        dropped_records=upload.merge.dropped_count,
        stored_rows=by_name["store"].accepted if "store" in by_name else 0,
        indexed_documents=by_name["index"].accepted if "index" in by_name else 0,
        index_failures=by_name["index"].failed if "index" in by_name else 0,
        start_time=start_time,
        end_time=end_time,
        elapsed_seconds=(end_time - start_time).total_seconds(),
        read_strategy=upload.parsed.read_strategy,
        sink_stats=sink_stats,
        error="; ".join(f"{s.name}: {s.error}" for s in failed_sinks) or None,
    )
