from __future__ import annotations

import copy
from pathlib import Path
from typing import Any, Dict, Literal, Mapping, Optional

import yaml
from pydantic import BaseModel, field_validator


class PathsConfig(BaseModel):
    sql_dir: str
    histograms: str
    timeseries: str
    lens: str


class WarehouseConfig(BaseModel):
    backend: Literal["bq", "duckdb"]
    command: str
    project_id: str
    max_rows: int
    duckdb_path: Optional[str] = None
    parquet_dir: Optional[str] = None

    @field_validator("max_rows")
    @classmethod
    def _positive_rows(cls, value: int) -> int:
        if value <= 0:
            raise ValueError("max_rows must be positive")
        return value


class StorageConfig(BaseModel):
    backend: Literal["gcs", "local"]
    command: str
    bucket: str
    prefix: str
    content_type: str
    local_root: str


class ReadinessConfig(BaseModel):
    tables: list[str]
    clients: list[str]


class LensesConfig(BaseModel):
    all_sentinel: str
    special_prefix: str
    special_table_pattern: str


class LoggingConfig(BaseModel):
    level: str


class AppConfig(BaseModel):
    paths: PathsConfig
    warehouse: WarehouseConfig
    storage: StorageConfig
    readiness: ReadinessConfig
    lenses: LensesConfig
    logging: LoggingConfig


def _resolve_default_config_path() -> Path:
    here = Path(__file__).resolve()
    candidates = (
        here.parents[2] / "configs" / "default.yaml",
        here.parent / "configs" / "default.yaml",
    )
    found = next((path for path in candidates if path.is_file()), None)
    if found is None:
        searched = ", ".join(str(path) for path in candidates)
        raise FileNotFoundError(f"No default report configuration in: {searched}")
    return found


DEFAULT_CONFIG_PATH = _resolve_default_config_path()
ENV_TO_PATH: Dict[str, str] = {
    "REPORTS_SQL_DIR": "paths.sql_dir",
    "BQ_PROJECT_ID": "warehouse.project_id",
    "REPORTS_WAREHOUSE_BACKEND": "warehouse.backend",
    "REPORTS_BUCKET": "storage.bucket",
    "REPORTS_STORAGE_BACKEND": "storage.backend",
    "REPORTS_LOG_LEVEL": "logging.level",
}


def load_config(
    default_path: Path,
    override_yaml_path_or_none: Optional[Path],
    env: Mapping[str, str],
    cli_overrides: Mapping[str, Any],
) -> AppConfig:
    """Layer the default yaml, an optional override yaml, env vars and CLI values.

    Later layers win. Env vars only apply when set to a non-empty value; CLI
    overrides use dotted keys such as ``warehouse.backend``.
    """
    data = _read_yaml_mapping(default_path)
    if override_yaml_path_or_none:
        data = _merge(data, _read_yaml_mapping(Path(override_yaml_path_or_none)))

    env_values = {
        dotted: env[var] for var, dotted in ENV_TO_PATH.items() if env.get(var)
    }
    data = _set_dotted(data, env_values)
    data = _set_dotted(data, cli_overrides)
    return AppConfig.model_validate(data)


def _read_yaml_mapping(path: Path) -> Dict[str, Any]:
    if not path.is_file():
        raise FileNotFoundError(f"Config file not found: {path}")
    loaded = yaml.safe_load(path.read_text(encoding="utf-8"))
    if loaded is None:
        return {}
    if not isinstance(loaded, dict):
        raise ValueError(f"Config file {path} must contain a mapping.")
    return loaded


def _merge(base: Dict[str, Any], override: Mapping[str, Any]) -> Dict[str, Any]:
    merged = copy.deepcopy(base)
    for key, value in override.items():
        current = merged.get(key)
        if isinstance(current, dict) and isinstance(value, Mapping):
            merged[key] = _merge(current, value)
        else:
            merged[key] = copy.deepcopy(value)
    return merged


def _set_dotted(data: Dict[str, Any], values: Mapping[str, Any]) -> Dict[str, Any]:
    nested: Dict[str, Any] = {}
    for dotted, value in values.items():
        *parents, leaf = dotted.split(".")
        node = nested
        for part in parents:
            node = node.setdefault(part, {})
        node[leaf] = value
    return _merge(data, nested)


__all__ = [
    "AppConfig",
    "DEFAULT_CONFIG_PATH",
    "LensesConfig",
    "StorageConfig",
    "WarehouseConfig",
    "load_config",
]
