from __future__ import annotations

import argparse
import json
import os
import sys
from collections.abc import Iterator
from contextlib import contextmanager
from pathlib import Path
from typing import Any

import psycopg2
from dotenv import load_dotenv

from unit_ingest.config.loader import DEFAULT_CONFIG_PATH, ConfigError, load_config
from unit_ingest.logging.init import log_summary, set_debug, setup_logging
from unit_ingest.models.config_models import AppConfig
from unit_ingest.models.processing_result import UploadStatus
from unit_ingest.search.typesense_index import SearchError, TypesenseIndex
from unit_ingest.services.orchestrator import ProcessingError, prepare_upload, process_upload
from unit_ingest.services.summary import render_summary_line
from unit_ingest.tabular.errors import TabularError

"""CLI entrypoint.

    python -m unit_ingest.cli [--config PATH] [--debug] upload FILE [--no-store] [--no-index]
    python -m unit_ingest.cli inspect FILE
    python -m unit_ingest.cli search QUERY [--query-by F ...] [--filter EXPR] ...

Exit codes: 0 success, 2 a sink failed (partial), 1 fatal (config, rejected
or unreadable upload, search failure).
"""

EXIT_SUCCESS = 0
EXIT_FATAL = 1
EXIT_PARTIAL_FAILURE = 2


@contextmanager
def _db_connection(cfg: AppConfig) -> Iterator[Any]:  # pragma: no cover (thin wrapper)
    """Yield a psycopg2 cursor; the orchestrator owns BEGIN / COMMIT."""
    conn = psycopg2.connect(cfg.store.to_dsn())
    conn.autocommit = True  # 明示 BEGIN/COMMIT を orchestrator が発行
    try:
        with conn.cursor() as cur:
            yield cur
    finally:
        conn.close()


def _load_env_file(path: Path, override: bool = True) -> None:
    """Load .env; its values win over variables already in the process."""
    if path.exists():
        load_dotenv(dotenv_path=path, override=override)


def _parse_args(argv: list[str]) -> argparse.Namespace:
    p = argparse.ArgumentParser(
        prog="unit_ingest",
        description="Property unit spreadsheet ingest (CSV / XLS / XLSX -> Postgres + Typesense)",
    )
    p.add_argument("--config", type=Path, default=None, help=f"YAML config (default: {DEFAULT_CONFIG_PATH} if present)")
    p.add_argument("--debug", action="store_true", help="Enable debug logging")
    sub = p.add_subparsers(dest="command", required=True)

    up = sub.add_parser("upload", help="Parse, merge, store and index one file")
    up.add_argument("file", type=Path)
    up.add_argument("--no-store", action="store_true", help="Skip the row store")
    up.add_argument("--no-index", action="store_true", help="Skip the search index")

    ins = sub.add_parser("inspect", help="Print fields and sample merged units, then exit")
    ins.add_argument("file", type=Path)
    ins.add_argument("--limit", type=int, default=3, help="Number of sample units")

    se = sub.add_parser("search", help="Search the unit collection")
    se.add_argument("query", nargs="?", default="*")
    se.add_argument("--query-by", nargs="+", default=None)
    se.add_argument("--filter", dest="filter_by", default=None)
    se.add_argument("--sort-by", default=None)
    se.add_argument("--order", choices=("asc", "desc"), default="asc")
    se.add_argument("--page", type=int, default=1)
    se.add_argument("--per-page", type=int, default=20)
    return p.parse_args(argv)


def _resolve_config_path(arg: Path | None) -> Path | None:
    if arg is not None:
        return arg
    return DEFAULT_CONFIG_PATH if DEFAULT_CONFIG_PATH.exists() else None


def _json_default(value: Any) -> Any:
    # datetime 等は isoformat で出力
    if hasattr(value, "isoformat"):
        return value.isoformat()
    return str(value)


def _inspect(cfg: AppConfig, file: Path, limit: int) -> int:
    try:
        upload = prepare_upload(file, cfg)
    except (ProcessingError, TabularError) as e:
        print(f"inspect: {e}")
        return EXIT_FATAL
    parsed = upload.parsed
    print(f"FILE: {upload.file_name} format={parsed.source_format} strategy={parsed.read_strategy or '-'}")
    print(f"  rows={len(parsed.records)} units={len(upload.records)} dropped={upload.merge.dropped_count}")
    print(f"  fields={parsed.fields}")
    for name, info in parsed.field_info.items():
        print(f"    {name!r}: type={info.inferred_type} label={info.label!r} example={info.example!r}")
    for record in upload.records[:limit]:
        print("  unit=", json.dumps(record, ensure_ascii=False, default=_json_default))
    return EXIT_SUCCESS


def _search(cfg: AppConfig, args: argparse.Namespace) -> int:
    with TypesenseIndex(cfg.search, natural_key=cfg.merge.natural_key) as index:
        try:
            result = index.search(
                args.query,
                query_by=args.query_by,
                sort_by=args.sort_by,
                sort_order=args.order,
                filter_by=args.filter_by,
                per_page=args.per_page,
                page=args.page,
            )
        except SearchError as e:
            print(f"search: {e}")
            return EXIT_FATAL
    print(json.dumps(result, ensure_ascii=False, indent=2))
    return EXIT_SUCCESS


def _upload(cfg: AppConfig, args: argparse.Namespace, logger: Any) -> int:
    index = None if args.no_index else TypesenseIndex(cfg.search, natural_key=cfg.merge.natural_key)
    # DB 接続制御: テスト等で完全に無効化したい場合 DISABLE_DB_CONNECT=1
    use_db = not args.no_store and os.getenv("DISABLE_DB_CONNECT") != "1"
    try:
        if use_db:
            try:
                with _db_connection(cfg) as cur:
                    result = process_upload(args.file, cfg, cursor=cur, index=index)
            except psycopg2.OperationalError as e:
                logger.error(f"database connection failed: {e}")
                return EXIT_FATAL
        else:
            logger.debug("row store disabled")
            result = process_upload(args.file, cfg, cursor=None, index=index)
    except ProcessingError as e:
        logger.error(f"processing: {e}")
        return EXIT_FATAL
    finally:
        if index is not None:
            index.close()

    # log_summary が "SUMMARY " を付与するので先頭を除く
    log_summary(render_summary_line(result)[len("SUMMARY "):])

    if result.status == UploadStatus.FAILED:
        return EXIT_FATAL
    if result.status == UploadStatus.PARTIAL:
        return EXIT_PARTIAL_FAILURE
    return EXIT_SUCCESS


def main(argv: list[str] | None = None) -> int:
    logger = setup_logging()

    # NOTE: 空リスト [] が与えられた場合に sys.argv[1:] が混入しないよう None のときのみ読む
    if argv is None:
        argv = sys.argv[1:]
    args = _parse_args(argv)
    if args.debug:
        set_debug(logger)

    # .env を最優先で読み込む (接続パラメータ優先順位保証)
    _load_env_file(Path(".env"), override=True)
    try:
        cfg = load_config(_resolve_config_path(args.config))
    except ConfigError as e:
        logger.error(f"config: {e}")
        return EXIT_FATAL

    if args.command == "inspect":
        return _inspect(cfg, args.file, args.limit)
    if args.command == "search":
        return _search(cfg, args)
    return _upload(cfg, args, logger)


if __name__ == "__main__":  # pragma: no cover
    raise SystemExit(main())
