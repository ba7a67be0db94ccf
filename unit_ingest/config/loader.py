from __future__ import annotations

import json
import os
from collections.abc import Mapping
from dataclasses import replace
from pathlib import Path
from typing import Any

import jsonschema
import yaml
from jsonschema.exceptions import ValidationError

from ..models.config_models import AppConfig, MergeConfig, ParserConfig, SearchConfig, StoreConfig

"""Config loader.

Responsibilities:
- Load YAML (default ``config/ingest.yml``)
- Validate against the bundled JSON schema (``config_schema.json``)
- Apply defaults for omitted sections / keys
- Overlay connection settings from the environment (env wins over YAML)

The result is a frozen AppConfig handed to components at startup; nothing
downstream reads the environment.
"""

__all__ = [
    "SCHEMA_PATH",
    "DEFAULT_CONFIG_PATH",
    "ConfigError",
    "load_config",
    "build_config",
    "apply_env_overrides",
]

SCHEMA_PATH = Path(__file__).with_name("config_schema.json")
DEFAULT_CONFIG_PATH = Path("config/ingest.yml")

# env var -> (section, key, type)
_ENV_OVERRIDES: tuple[tuple[str, str, str, type], ...] = (
    ("SUPABASE_DB_HOST", "store", "host", str),
    ("SUPABASE_DB_PORT", "store", "port", int),
    ("SUPABASE_DB_NAME", "store", "database", str),
    ("SUPABASE_USER_NAME", "store", "user", str),
    ("SUPABASE_USER_PASSWORD", "store", "password", str),
    ("TYPESENSE_HOST", "search", "host", str),
    ("TYPESENSE_PORT", "search", "port", int),
    ("TYPESENSE_PROTOCOL", "search", "protocol", str),
    ("TYPESENSE_API_KEY", "search", "api_key", str),
)


class ConfigError(Exception):
    pass


def _validate_config_schema(data: dict[str, Any]) -> None:
    """Validate config data against the bundled JSON schema.

    Raises:
        ConfigError: schema file missing / not JSON, or the data violates it
    """
    if not SCHEMA_PATH.exists():
        raise ConfigError(f"config schema not found: {SCHEMA_PATH}")
    try:
        schema = json.loads(SCHEMA_PATH.read_text(encoding="utf-8"))
        jsonschema.validate(data, schema)
    except json.JSONDecodeError as e:
        raise ConfigError(f"invalid schema file: {e}") from e
    except ValidationError as e:
        raise ConfigError(f"config validation failed: {e.message}") from e


def _tuple(values: Any, default: tuple[str, ...]) -> tuple[str, ...]:
    return tuple(values) if values is not None else default


def build_config(data: Mapping[str, Any]) -> AppConfig:
    """Build AppConfig from already validated YAML data."""
    parser_raw = data.get("parser") or {}
    merge_raw = data.get("merge") or {}
    store_raw = data.get("store") or {}
    search_raw = data.get("search") or {}

    merge_defaults = MergeConfig()
    merge = MergeConfig(
        natural_key=merge_raw.get("natural_key", merge_defaults.natural_key),
        summable_fields=_tuple(merge_raw.get("summable_fields"), merge_defaults.summable_fields),
    )
    # YAML の list は tuple に揃える (frozen dataclass)
    search = replace(
        SearchConfig(),
        **{k: (tuple(v) if isinstance(v, list) else v) for k, v in search_raw.items()},
    )
    return AppConfig(
        parser=replace(ParserConfig(), **parser_raw),
        merge=merge,
        store=replace(StoreConfig(), **store_raw),
        search=search,
    )


def apply_env_overrides(config: AppConfig, environ: Mapping[str, str]) -> AppConfig:
    """Overlay connection settings from environment variables.

    ``DATABASE_URL`` / ``PGDSN`` provide a full DSN; the individual
    ``SUPABASE_*`` / ``TYPESENSE_*`` variables override single fields.
    """
    sections: dict[str, dict[str, Any]] = {"store": {}, "search": {}}
    for env_name, section, key, typ in _ENV_OVERRIDES:
        raw = environ.get(env_name)
        if raw is None or raw == "":
            continue
        try:
            sections[section][key] = typ(raw)
        except ValueError as e:
            raise ConfigError(f"invalid value for {env_name}: {raw!r}") from e
    dsn = environ.get("DATABASE_URL") or environ.get("PGDSN")
    if dsn:
        sections["store"]["dsn"] = dsn
    return replace(
        config,
        store=replace(config.store, **sections["store"]),
        search=replace(config.search, **sections["search"]),
    )


def load_config(path: Path | None = None, environ: Mapping[str, str] | None = None) -> AppConfig:
    """Load, validate and resolve the application config.

    Parameters
    ----------
    path: YAML file; None means defaults + environment only
    environ: environment mapping (``os.environ`` when None)
    """
    data: dict[str, Any] = {}
    if path is not None:
        if not path.exists():
            raise ConfigError(f"config file not found: {path}")
        try:
            data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"invalid yaml: {e}") from e
        if not isinstance(data, dict):
            raise ConfigError("config root must be a mapping")

    _validate_config_schema(data)
    config = build_config(data)
    return apply_env_overrides(config, os.environ if environ is None else environ)
