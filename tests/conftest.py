# Shared pytest fixtures
from __future__ import annotations

import json
import tempfile
from collections.abc import Iterator
from pathlib import Path
from typing import Any

import httpx
import pandas as pd
import pytest

from unit_ingest.logging.init import reset_logging
from unit_ingest.models.config_models import SearchConfig
from unit_ingest.search.typesense_index import TypesenseIndex


@pytest.fixture()
def temp_workdir(monkeypatch) -> Iterator[Path]:
    with tempfile.TemporaryDirectory() as d:
        p = Path(d)
        (p / "config").mkdir()
        (p / "data").mkdir()
        (p / "logs").mkdir()
        monkeypatch.chdir(p)
        yield p


@pytest.fixture()
def sample_config_yaml() -> str:
    return """parser:
  blank_headers: exclude
  sparse_row_threshold: 0.5
merge:
  natural_key: Unit Name
store:
  table: unit
  batch_size: 2
  host: localhost
  port: 5432
  user: appuser
  password: secret
  database: appdb
search:
  host: localhost
  port: 8108
  api_key: test-key
  batch_size: 2
"""


@pytest.fixture()
def write_config(temp_workdir: Path, sample_config_yaml: str) -> Path:
    cfg = temp_workdir / "config" / "ingest.yml"
    cfg.write_text(sample_config_yaml, encoding="utf-8")
    return cfg


@pytest.fixture(autouse=True)
def _clean_env(monkeypatch):
    # ホスト環境の接続設定をテストに持ち込まない
    for name in (
        "DATABASE_URL",
        "PGDSN",
        "SUPABASE_DB_HOST",
        "SUPABASE_DB_PORT",
        "SUPABASE_DB_NAME",
        "SUPABASE_USER_NAME",
        "SUPABASE_USER_PASSWORD",
        "TYPESENSE_HOST",
        "TYPESENSE_PORT",
        "TYPESENSE_PROTOCOL",
        "TYPESENSE_API_KEY",
        "DISABLE_DB_CONNECT",
    ):
        monkeypatch.delenv(name, raising=False)
    reset_logging()
    yield
    reset_logging()


def write_workbook(path: Path, rows: list[list[Any]], sheet_name: str = "Units") -> Path:
    """Write ``rows`` (header row included) as the first sheet of an xlsx file."""
    df = pd.DataFrame(rows)
    with pd.ExcelWriter(path, engine="openpyxl") as writer:
        df.to_excel(writer, sheet_name=sheet_name, header=False, index=False)
    return path


@pytest.fixture()
def make_workbook(temp_workdir: Path):
    def _make(name: str, rows: list[list[Any]]) -> Path:
        return write_workbook(temp_workdir / "data" / name, rows)
    return _make


class DummyCursor:
    """Records executed SQL; answers information_schema lookups with ``columns``."""

    def __init__(self, columns: set[str] | None = None, fail_on: str | None = None) -> None:
        self.queries: list[str] = []
        self.params: list[Any] = []
        self.batches: list[list[tuple]] = []
        self.columns = set(columns or {"id", "created_at", "unit_name"})
        self.fail_on = fail_on

    def execute(self, sql: str, params: Any = None) -> None:
        self.queries.append(sql.strip())
        self.params.append(params)
        if self.fail_on is not None and self.fail_on in sql:
            raise RuntimeError(f"simulated failure on {self.fail_on}")

    def fetchall(self) -> list[tuple]:
        return [(c,) for c in sorted(self.columns)]

    def statements(self, keyword: str) -> list[str]:
        return [q for q in self.queries if q.startswith(keyword)]


@pytest.fixture()
def patch_execute_values(monkeypatch):
    """Replace psycopg2's execute_values so no database is needed."""
    import unit_ingest.db.batch_insert as bi

    def fake_execute_values(cursor, sql, rows, page_size=100, template=None):
        cursor.queries.append(sql)
        cursor.batches.append(list(rows))
        if cursor.fail_on is not None and cursor.fail_on in sql:
            raise RuntimeError(f"simulated failure on {cursor.fail_on}")

    monkeypatch.setattr(bi, "execute_values", fake_execute_values)
    return fake_execute_values


@pytest.fixture()
def dummy_cursor(patch_execute_values) -> DummyCursor:
    return DummyCursor()


@pytest.fixture()
def cursor_factory(patch_execute_values):
    def _make(columns: set[str] | None = None, fail_on: str | None = None) -> DummyCursor:
        return DummyCursor(columns=columns, fail_on=fail_on)
    return _make


class FakeTypesense:
    """Minimal in-memory Typesense for httpx.MockTransport."""

    def __init__(self, collection_exists: bool = True, has_sort_field: bool = True) -> None:
        self.requests: list[httpx.Request] = []
        self.collection: dict | None = None
        if collection_exists:
            fields = [{"name": "Unit Name", "type": "string"}]
            if has_sort_field:
                fields.append({"name": "Unit Price Numeric", "type": "float"})
            self.collection = {"name": "property_units", "fields": fields}
        self.documents: dict[str, dict] = {}
        self.reject_ids: set[str] = set()
        self.sort_field_missing = False
        self.fail_imports = False
        self.fail_creates = False

    def __call__(self, request: httpx.Request) -> httpx.Response:
        self.requests.append(request)
        path = request.url.path
        if path == "/collections/property_units" and request.method == "GET":
            if self.collection is None:
                return httpx.Response(404, json={"message": "Not Found"})
            return httpx.Response(200, json=self.collection)
        if path == "/collections/property_units" and request.method == "DELETE":
            if self.collection is None:
                return httpx.Response(404, json={"message": "Not Found"})
            self.collection = None
            return httpx.Response(200, json={})
        if path == "/collections" and request.method == "POST":
            if self.fail_creates:
                return httpx.Response(500, json={"message": "boom"})
            self.collection = json.loads(request.content)
            return httpx.Response(201, json=self.collection)
        if path.endswith("/documents/import"):
            if self.fail_imports:
                return httpx.Response(503, json={"message": "Not Ready or Lagging"})
            lines = []
            for raw in request.content.decode("utf-8").splitlines():
                doc = json.loads(raw)
                if doc["id"] in self.reject_ids:
                    lines.append(json.dumps({"success": False, "error": "bad doc", "document": raw}))
                else:
                    self.documents[doc["id"]] = doc
                    lines.append(json.dumps({"success": True}))
            return httpx.Response(200, text="\n".join(lines))
        if path.endswith("/documents/search"):
            if self.sort_field_missing and "sort_by" in request.url.params:
                return httpx.Response(
                    404, json={"message": "Could not find a field named `Unit Price Numeric` in the schema."}
                )
            hits = [{"document": d} for d in self.documents.values()]
            return httpx.Response(200, json={"found": len(hits), "hits": hits, "page": 1})
        return httpx.Response(404, json={"message": "Not Found"})

    def paths(self, method: str | None = None) -> list[str]:
        return [r.url.path for r in self.requests if method is None or r.method == method]




@pytest.fixture()
def fake_typesense_factory():
    return FakeTypesense


@pytest.fixture()
def index_factory():
    """Build TypesenseIndex instances talking to a FakeTypesense."""
    created: list[TypesenseIndex] = []

    def _make(server: FakeTypesense, **overrides: Any) -> TypesenseIndex:
        config = SearchConfig(api_key="test-key", **overrides)
        client = httpx.Client(
            transport=httpx.MockTransport(server),
            base_url=config.base_url,
            headers={"X-TYPESENSE-API-KEY": config.api_key},
        )
        index = TypesenseIndex(config, client=client)
        created.append(index)
        return index

    yield _make
    for index in created:
        index.close()
