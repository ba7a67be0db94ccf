from __future__ import annotations

import json
from contextlib import contextmanager
from pathlib import Path

import pytest

import unit_ingest.cli.__main__ as cli_main
from unit_ingest.cli.__main__ import main

"""End-to-end: workbook upload -> merge -> store (dummy cursor) -> index (fake Typesense)."""

ROWS = [
    ["Unit Name", "Phase: Phase Name", "Unit Price", "Unit Status", "Floor"],
    ["V-101", "Phase 1", 1000000, "Available", 1],
    ["V-101", "Phase 2", 250000, "Available", 2],
    ["V-102", "Phase 1", 900000, "N/A", 3],
    [None, "Phase 3", 5, "Available", 4],
    ["V-103", None, None, None, None],
]


@pytest.fixture()
def wired(monkeypatch, dummy_cursor, fake_typesense_factory, index_factory):
    server = fake_typesense_factory(collection_exists=False)
    monkeypatch.setattr(cli_main, "TypesenseIndex", lambda config, natural_key="Unit Name": index_factory(server))

    @contextmanager
    def fake_connection(cfg):
        yield dummy_cursor

    monkeypatch.setattr(cli_main, "_db_connection", fake_connection)
    return dummy_cursor, server


def test_workbook_upload_end_to_end(make_workbook, wired, temp_workdir: Path, capsys):
    cursor, server = wired
    path = make_workbook("units.xlsx", ROWS)

    assert main(["upload", str(path)]) == 0
    out = capsys.readouterr().out
    summary = [line for line in out.splitlines() if line.startswith("SUMMARY ")][0]
    # V-103 は 4/5 が空なので疎な行として除外、キーなし行は merge で除外
    assert "rows=4 merged=2 dropped=1 stored=2 indexed=2 index_failed=0" in summary
    assert "WARN" in out

    inserted = [row for batch in cursor.batches for row in batch]
    assert inserted[0] == ("V-101", "Phase 1, Phase 2", "1250000", "Available", "1")
    assert inserted[1] == ("V-102", "Phase 1", "900000", "N/A", "3")

    assert server.collection["default_sorting_field"] == "Unit Price Numeric"
    assert server.documents["V-101"]["Unit Price Numeric"] == 1250000.0
    assert server.documents["V-102"]["Unit Status"] == "N/A"

    logs = list((temp_workdir / "logs").glob("errors-*.log"))
    assert len(logs) == 1
    records = [json.loads(line) for line in logs[0].read_text(encoding="utf-8").splitlines()]
    assert [(r["row"], r["error_type"]) for r in records] == [(5, "MISSING_NATURAL_KEY")]
