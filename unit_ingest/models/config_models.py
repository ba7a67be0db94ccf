from __future__ import annotations

from dataclasses import dataclass, field

"""Config dataclasses for the property unit ingest service.

These are the resolved, immutable configuration objects handed to component
constructors at startup. The loader in ``unit_ingest.config.loader`` builds
them from YAML + environment; nothing below ``services`` reads the
environment directly.
"""

__all__ = [
    "DEFAULT_MAX_UPLOAD_BYTES",
    "DEFAULT_SUMMABLE_FIELDS",
    "BLANK_HEADER_POLICIES",
    "ParserConfig",
    "MergeConfig",
    "StoreConfig",
    "SearchConfig",
    "AppConfig",
]

DEFAULT_MAX_UPLOAD_BYTES = 50 * 1024 * 1024  # 50 MiB

# 金額/面積系のみ合算対象
DEFAULT_SUMMABLE_FIELDS: tuple[str, ...] = (
    "Unit Price",
    "Finishing price",
    "Final Total Unit Price",
    "Building Plot Area",
    "Unit Gross Area",
    "Land Area",
    "Garden Area",
    "Sellable Unit Area",
    "Maintenance Fees per SQM",
    "Maintenance Value",
    "Amenities (Club)",
    "Parking Price",
)

BLANK_HEADER_POLICIES = ("exclude", "auto_name")


@dataclass(frozen=True)
class ParserConfig:
    """Tabular parser knobs.

    blank_headers:
        ``exclude`` drops blank and placeholder headers (``Column 3``) together
        with their column. ``auto_name`` names blank headers ``Column N`` and
        keeps placeholder headers.
    """
    max_upload_bytes: int = DEFAULT_MAX_UPLOAD_BYTES
    blank_headers: str = "exclude"
    header_scan_rows: int = 10  # workbook only
    sparse_row_threshold: float = 0.5  # workbook only, strictly-greater drops
    coerce_numeric_strings: bool = False  # "1200" -> 1200 at parse time


@dataclass(frozen=True)
class MergeConfig:
    natural_key: str = "Unit Name"
    summable_fields: tuple[str, ...] = DEFAULT_SUMMABLE_FIELDS


@dataclass(frozen=True)
class StoreConfig:
    """Row store connection (Postgres compatible).

    ``dsn`` wins over the individual fields when present.
    """
    table: str = "unit"
    batch_size: int = 500
    dsn: str | None = None
    host: str | None = None
    port: int | None = None
    user: str | None = None
    password: str | None = None
    database: str | None = None

    def to_dsn(self) -> str:
        if self.dsn:
            return self.dsn
        parts = [
            f"host={self.host or 'localhost'}",
            f"port={self.port or 5432}",
            f"user={self.user or 'postgres'}",
            f"dbname={self.database or 'postgres'}",
        ]
        if self.password:
            parts.append(f"password={self.password}")
        return " ".join(parts)


@dataclass(frozen=True)
class SearchConfig:
    host: str = "localhost"
    port: int = 8108
    protocol: str = "http"
    api_key: str = ""
    collection: str = "property_units"
    batch_size: int = 1000
    timeout_seconds: float = 10.0
    text_fields: tuple[str, ...] = ("Unit Name", "Phase: Phase Name", "Unit Status", "Unit Type")
    numeric_fields: tuple[str, ...] = ("Unit Price", "Land Area", "Sellable Unit Area")
    default_query_by: tuple[str, ...] = ("Unit Name", "Phase: Phase Name")
    sort_field: str = "Unit Price Numeric"

    @property
    def base_url(self) -> str:
        return f"{self.protocol}://{self.host}:{self.port}"


@dataclass(frozen=True)
class AppConfig:
    """Root configuration object."""
    parser: ParserConfig = field(default_factory=ParserConfig)
    merge: MergeConfig = field(default_factory=MergeConfig)
    store: StoreConfig = field(default_factory=StoreConfig)
    search: SearchConfig = field(default_factory=SearchConfig)
