from __future__ import annotations

import json
from contextlib import contextmanager
from pathlib import Path

import psycopg2
import pytest

import unit_ingest.cli.__main__ as cli_main
from unit_ingest.cli.__main__ import EXIT_FATAL, EXIT_PARTIAL_FAILURE, EXIT_SUCCESS, main

CSV_TEXT = "Unit Name,Unit Price\nA1,100\nA1,50\nA2,70\n"


@pytest.fixture()
def units_csv(temp_workdir: Path) -> Path:
    p = temp_workdir / "data" / "units.csv"
    p.write_text(CSV_TEXT, encoding="utf-8")
    return p


@pytest.fixture()
def no_db(monkeypatch):
    monkeypatch.setenv("DISABLE_DB_CONNECT", "1")


@pytest.fixture()
def patch_index(monkeypatch, fake_typesense_factory, index_factory):
    """Route the CLI's TypesenseIndex to a FakeTypesense; returns the server."""
    server = fake_typesense_factory()
    seen_configs = []

    def _build(config, natural_key="Unit Name"):
        seen_configs.append(config)
        return index_factory(server)

    monkeypatch.setattr(cli_main, "TypesenseIndex", _build)
    server.seen_configs = seen_configs
    return server


def _summary(out: str) -> str:
    lines = [line for line in out.splitlines() if line.startswith("SUMMARY ")]
    assert len(lines) == 1, out
    return lines[0]


def test_upload_without_sinks(units_csv, no_db, capsys):
    code = main(["upload", str(units_csv), "--no-index"])
    assert code == EXIT_SUCCESS
    line = _summary(capsys.readouterr().out)
    assert line.startswith("SUMMARY file=units.csv status=success rows=3 merged=2 dropped=0 stored=0 indexed=0")


def test_upload_with_index(units_csv, no_db, patch_index, capsys):
    code = main(["upload", str(units_csv)])
    assert code == EXIT_SUCCESS
    assert set(patch_index.documents) == {"A1", "A2"}
    assert "indexed=2 index_failed=0" in _summary(capsys.readouterr().out)


def test_upload_index_failure_exits_partial(units_csv, no_db, patch_index, capsys):
    patch_index.fail_imports = True
    assert main(["upload", str(units_csv)]) == EXIT_PARTIAL_FAILURE
    assert "status=partial" in _summary(capsys.readouterr().out)


def test_upload_with_database(units_csv, dummy_cursor, monkeypatch, capsys):
    @contextmanager
    def fake_connection(cfg):
        yield dummy_cursor

    monkeypatch.setattr(cli_main, "_db_connection", fake_connection)
    assert main(["upload", str(units_csv), "--no-index"]) == EXIT_SUCCESS
    assert dummy_cursor.queries[-1] == "COMMIT"
    assert "stored=2" in _summary(capsys.readouterr().out)


def test_database_connection_failure_is_fatal(units_csv, monkeypatch, capsys):
    def refuse(cfg):
        raise psycopg2.OperationalError("could not connect to server")

    monkeypatch.setattr(cli_main, "_db_connection", refuse)
    assert main(["upload", str(units_csv), "--no-index"]) == EXIT_FATAL
    assert "ERROR database connection failed" in capsys.readouterr().out


def test_no_store_flag_skips_database(units_csv, monkeypatch):
    def explode(cfg):  # pragma: no cover - must not be called
        raise AssertionError("database should not be used")

    monkeypatch.setattr(cli_main, "_db_connection", explode)
    assert main(["upload", str(units_csv), "--no-store", "--no-index"]) == EXIT_SUCCESS


def test_unsupported_upload_is_fatal(temp_workdir, no_db, capsys):
    p = temp_workdir / "data" / "units.txt"
    p.write_text("Unit Name\nA1\n", encoding="utf-8")
    assert main(["upload", str(p), "--no-index"]) == EXIT_FATAL
    out = capsys.readouterr().out
    assert "status=failed" in _summary(out)
    assert list((temp_workdir / "logs").glob("errors-*.log"))


def test_missing_upload_file_is_fatal(temp_workdir, no_db, capsys):
    assert main(["upload", str(temp_workdir / "data" / "nope.csv"), "--no-index"]) == EXIT_FATAL
    assert "ERROR processing: file not found" in capsys.readouterr().out


def test_bad_config_is_fatal(temp_workdir, capsys):
    cfg = temp_workdir / "config" / "ingest.yml"
    cfg.write_text("parser:\n  blank_headers: guess\n", encoding="utf-8")
    assert main(["inspect", "whatever.csv"]) == EXIT_FATAL
    assert "ERROR config:" in capsys.readouterr().out


def test_explicit_missing_config_is_fatal(temp_workdir, capsys):
    assert main(["--config", "config/other.yml", "inspect", "x.csv"]) == EXIT_FATAL


def test_default_config_file_is_used(write_config, units_csv, no_db, patch_index):
    assert main(["upload", str(units_csv)]) == EXIT_SUCCESS
    assert patch_index.seen_configs[0].api_key == "test-key"


def test_dotenv_overrides_environment(temp_workdir, monkeypatch, patch_index):
    monkeypatch.setenv("TYPESENSE_API_KEY", "from-process")
    (temp_workdir / ".env").write_text("TYPESENSE_API_KEY=from-dotenv\n", encoding="utf-8")
    assert main(["search", "A1"]) == EXIT_SUCCESS
    assert patch_index.seen_configs[0].api_key == "from-dotenv"


def test_inspect_prints_fields_and_samples(units_csv, capsys):
    assert main(["inspect", str(units_csv)]) == EXIT_SUCCESS
    out = capsys.readouterr().out
    assert "FILE: units.csv format=csv" in out
    assert "rows=3 units=2 dropped=0" in out
    assert "'Unit Price': type=number" in out
    assert '"Unit Name": "A1"' in out


def test_inspect_rejected_file(temp_workdir, capsys):
    p = temp_workdir / "data" / "units.json"
    p.write_text("{}", encoding="utf-8")
    assert main(["inspect", str(p)]) == EXIT_FATAL
    assert "Unsupported file extension: json" in capsys.readouterr().out


def test_search_prints_json(temp_workdir, patch_index, capsys):
    patch_index.documents["A1"] = {"id": "A1", "Unit Name": "A1"}
    code = main(["search", "A1", "--order", "desc", "--per-page", "5", "--filter", "Unit Type:=Villa"])
    assert code == EXIT_SUCCESS
    out = capsys.readouterr().out
    payload = json.loads(out[out.index("{"):])
    assert payload["found"] == 1
    params = patch_index.requests[-1].url.params
    assert params["sort_by"] == "Unit Price Numeric:desc"
    assert params["per_page"] == "5"
    assert params["filter_by"] == "Unit Type:=Villa"


def test_search_failure_is_fatal(temp_workdir, patch_index, capsys):
    patch_index.collection = None
    patch_index.fail_creates = True
    assert main(["search", "A1"]) == EXIT_FATAL
    assert "search: create collection failed: HTTP 500: boom" in capsys.readouterr().out


def test_debug_flag(units_csv, no_db, capsys):
    main(["--debug", "upload", str(units_csv), "--no-index"])
    assert "DEBUG debug mode enabled" in capsys.readouterr().out
