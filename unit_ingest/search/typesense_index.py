from __future__ import annotations

import json
import logging
import re
from collections.abc import Callable, Mapping, Sequence
from dataclasses import dataclass, field
from typing import Any

import httpx

from ..models.config_models import SearchConfig
from ..models.parse_result import FieldDescriptor, Record
from ..tabular.inference import is_empty_value, is_number

"""Search index sink backed by the Typesense REST API.

Only a subset of each merged unit is indexed: the configured text fields plus
a float ``<field> Numeric`` variant of each configured numeric field, so that
prices and areas written as ``"EGP 1,250,000"`` stay sortable. The document
id is the unit's natural key, and imports use ``action=upsert``.
"""

__all__ = [
    "SearchError",
    "IndexResult",
    "to_numeric",
    "numeric_variant_name",
    "TypesenseIndex",
]

logger = logging.getLogger(__name__)

_NON_NUMERIC_RE = re.compile(r"[^0-9.-]+")
_LEADING_NUMBER_RE = re.compile(r"-?(?:\d+\.?\d*|\.\d+)")
_MISSING_FIELD_MARKER = "Could not find a field named"
MAX_PER_PAGE = 100


class SearchError(Exception):
    """Raised when the search engine rejects or cannot serve a request."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


@dataclass(frozen=True)
class IndexResult:
    total: int
    success_count: int
    failed_count: int
    errors: list[dict[str, Any]] = field(default_factory=list)  # first failure only

    @property
    def success(self) -> bool:
        return self.failed_count == 0


def to_numeric(value: Any) -> float:
    """Strip everything but digits, dot and minus and read the leading number.

    Empty or unparsable values become 0.0.

    >>> to_numeric("EGP 1,250,000")
    1250000.0
    """
    if is_number(value):
        return float(value)
    if is_empty_value(value) or isinstance(value, bool):
        return 0.0
    cleaned = _NON_NUMERIC_RE.sub("", str(value))
    m = _LEADING_NUMBER_RE.match(cleaned)
    return float(m.group(0)) if m else 0.0


def numeric_variant_name(field_name: str) -> str:
    return f"{field_name} Numeric"


def _error_message(response: httpx.Response) -> str:
    try:
        payload = response.json()
    except ValueError:
        return response.text
    if isinstance(payload, dict) and "message" in payload:
        return str(payload["message"])
    return response.text


class TypesenseIndex:
    """Thin Typesense client for the property unit collection.

    The httpx client can be injected (tests use ``httpx.MockTransport``);
    otherwise one is built from ``SearchConfig``.
    """

    def __init__(
        self,
        config: SearchConfig,
        natural_key: str = "Unit Name",
        client: httpx.Client | None = None,
    ) -> None:
        self.config = config
        self.natural_key = natural_key
        self.collection = config.collection
        self._client = client or httpx.Client(
            base_url=config.base_url,
            headers={"X-TYPESENSE-API-KEY": config.api_key},
            timeout=config.timeout_seconds,
        )
        self._schema_validated = False

    def close(self) -> None:
        self._client.close()

    def __enter__(self) -> TypesenseIndex:
        return self

    def __exit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        self.close()

    # ------------------------------------------------------------------ http
    def _request(self, method: str, path: str, **kwargs: Any) -> httpx.Response:
        try:
            return self._client.request(method, path, **kwargs)
        except httpx.HTTPError as e:
            raise SearchError(f"{method} {path} failed: {e}") from e

    @staticmethod
    def _raise_for_status(response: httpx.Response, action: str) -> None:
        if response.is_success:
            return
        raise SearchError(
            f"{action} failed: HTTP {response.status_code}: {_error_message(response)}",
            status_code=response.status_code,
        )

    # ------------------------------------------------------------ collection
    def collection_schema(self) -> dict[str, Any]:
        fields: list[dict[str, Any]] = [
            {"name": name, "type": "string"} for name in self.config.text_fields
        ]
        numeric_names = [numeric_variant_name(n) for n in self.config.numeric_fields]
        fields.extend({"name": name, "type": "float"} for name in numeric_names)
        schema: dict[str, Any] = {"name": self.collection, "fields": fields}
        if self.config.sort_field in numeric_names:
            schema["default_sorting_field"] = self.config.sort_field
        return schema

    def reset_collection(self) -> None:
        """Drop the collection (if any) and recreate it with the current schema."""
        response = self._request("DELETE", f"/collections/{self.collection}")
        if response.status_code == 404:
            logger.debug(f"collection {self.collection} did not exist")
        else:
            self._raise_for_status(response, "delete collection")
        schema = self.collection_schema()
        logger.debug(f"creating collection with schema: {json.dumps(schema)}")
        response = self._request("POST", "/collections", json=schema)
        self._raise_for_status(response, "create collection")
        logger.info(f"collection {self.collection} created")
        self._schema_validated = True

    def ensure_collection(self) -> None:
        """Create the collection when missing; recreate it when the sort field is absent."""
        if self._schema_validated:
            return
        response = self._request("GET", f"/collections/{self.collection}")
        if response.status_code == 404:
            logger.info(f"collection {self.collection} does not exist, creating")
            self.reset_collection()
            return
        self._raise_for_status(response, "retrieve collection")
        fields = response.json().get("fields") or []
        has_sort_field = any(
            f.get("name") == self.config.sort_field and f.get("type") == "float" for f in fields
        )
        if not has_sort_field:
            logger.warning(f"schema is missing {self.config.sort_field}, resetting collection")
            self.reset_collection()
            return
        self._schema_validated = True

    # -------------------------------------------------------------- indexing
    def build_document(
        self, record: Record, field_info: Mapping[str, FieldDescriptor] | None = None
    ) -> dict[str, Any]:
        field_info = field_info or {}
        doc: dict[str, Any] = {"id": str(record[self.natural_key])}
        for name in self.config.text_fields:
            value = record.get(name)
            doc[name] = "" if is_empty_value(value) else str(value)
        for name in self.config.numeric_fields:
            value = record.get(name)
            descriptor = field_info.get(name)
            if descriptor is not None and descriptor.is_numeric and is_number(value):
                doc[numeric_variant_name(name)] = float(value)
            else:
                doc[numeric_variant_name(name)] = to_numeric(value)
        return doc

    def index_records(
        self,
        records: Sequence[Record],
        field_info: Mapping[str, FieldDescriptor] | None = None,
        on_batch: Callable[[int], None] | None = None,
    ) -> IndexResult:
        """Upsert records in batches via the JSONL import endpoint.

        Per-document failures are counted, not raised; transport or HTTP
        failures raise SearchError.
        """
        docs = [
            self.build_document(r, field_info)
            for r in records
            if not is_empty_value(r.get(self.natural_key))
        ]
        if not docs:
            return IndexResult(total=0, success_count=0, failed_count=0)

        self.ensure_collection()
        success_count = 0
        failures: list[dict[str, Any]] = []
        batch_size = self.config.batch_size
        for offset in range(0, len(docs), batch_size):
            batch = docs[offset:offset + batch_size]
            body = "\n".join(json.dumps(d, ensure_ascii=False) for d in batch)
            response = self._request(
                "POST",
                f"/collections/{self.collection}/documents/import",
                params={"action": "upsert"},
                content=body.encode("utf-8"),
                headers={"Content-Type": "text/plain"},
            )
            self._raise_for_status(response, "import documents")
            for line in response.text.splitlines():
                if not line.strip():
                    continue
                item = json.loads(line)
                if item.get("success"):
                    success_count += 1
                else:
                    failures.append(item)
            if on_batch is not None:
                on_batch(len(batch))

        logger.debug(f"indexed success={success_count} failed={len(failures)}")
        errors = [
            {"document": item.get("document"), "error": item.get("error")} for item in failures[:1]
        ]
        return IndexResult(
            total=len(docs),
            success_count=success_count,
            failed_count=len(failures),
            errors=errors,
        )

    # ---------------------------------------------------------------- search
    def search(
        self,
        query: str,
        *,
        query_by: Sequence[str] | None = None,
        sort_by: str | None = None,
        sort_order: str = "asc",
        filter_by: str | None = None,
        per_page: int = 20,
        page: int = 1,
    ) -> dict[str, Any]:
        """Full-text search over the unit collection.

        When the engine reports the sort field as unknown, the search is
        retried once without sorting.
        """
        if sort_order not in ("asc", "desc"):
            raise ValueError(f"sort_order must be 'asc' or 'desc', got {sort_order!r}")
        self.ensure_collection()

        fields = list(query_by) if query_by else list(self.config.default_query_by)
        params: dict[str, Any] = {
            "q": (query or "").strip() or "*",
            "query_by": ",".join(fields),
            "sort_by": f"{sort_by or self.config.sort_field}:{sort_order}",
            "per_page": min(per_page, MAX_PER_PAGE),
            "page": max(page, 1),
        }
        if filter_by:
            params["filter_by"] = filter_by

        path = f"/collections/{self.collection}/documents/search"
        response = self._request("GET", path, params=params)
        if not response.is_success and _MISSING_FIELD_MARKER in _error_message(response):
            logger.warning(f"sort field issue: {_error_message(response)}; retrying without sort")
            params.pop("sort_by")
            response = self._request("GET", path, params=params)
        self._raise_for_status(response, "search")
        result = response.json()
        logger.debug(f"search q={params['q']!r} found={result.get('found')}")
        return result
