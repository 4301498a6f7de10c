"""Configuration loading, validation, and access."""

from __future__ import annotations

import os
from pathlib import Path

import yaml
from pydantic import BaseModel, ConfigDict, field_validator

from fintra_ingest.core.exceptions import ConfigError

# Conventional deployment variables accepted alongside the FINTRA_ prefix
_ENV_ALIASES: dict[str, tuple[str, ...]] = {
    "FMP_API_KEY": ("fmp", "api_key"),
    "FMP_BASE_URL": ("fmp", "base_url"),
    "CRON_SECRET": ("cron", "secret"),
}


class FmpConfig(BaseModel):
    """Financial Modeling Prep API access configuration."""

    model_config = ConfigDict(frozen=True)

    api_key: str
    base_url: str = "https://financialmodelingprep.com"
    rate_limit: int = 10
    request_timeout: int = 30
    bulk_dir: str = "./data/fmp-bulk"
    years: list[int] = [2020, 2021, 2022, 2023, 2024, 2025]
    periods: list[str] = ["FY", "Q1", "Q2", "Q3", "Q4"]

    @field_validator("api_key")
    @classmethod
    def api_key_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("api_key must not be blank")
        return v.strip()

    @field_validator("base_url")
    @classmethod
    def base_url_is_http(cls, v: str) -> str:
        if not v.startswith(("https://", "http://")):
            raise ValueError("base_url must be an http(s) URL")
        return v.rstrip("/")

    @field_validator("rate_limit")
    @classmethod
    def rate_limit_in_range(cls, v: int) -> int:
        if v < 1 or v > 50:
            raise ValueError("rate_limit must be between 1 and 50")
        return v

    @field_validator("periods")
    @classmethod
    def periods_known(cls, v: list[str]) -> list[str]:
        allowed = {"FY", "Q1", "Q2", "Q3", "Q4"}
        unknown = [p for p in v if p not in allowed]
        if unknown:
            raise ValueError(f"unknown periods: {unknown}")
        return v


class StorageConfig(BaseModel):
    """Storage backend configuration."""

    model_config = ConfigDict(frozen=True)

    sqlite_path: str = "./data/fintra.db"


class CronConfig(BaseModel):
    """Scheduled job configuration."""

    model_config = ConfigDict(frozen=True)

    secret: str | None = None
    max_duration_seconds: int = 300
    concurrency: int = 1

    @field_validator("max_duration_seconds")
    @classmethod
    def duration_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("max_duration_seconds must be >= 1")
        return v

    @field_validator("concurrency")
    @classmethod
    def concurrency_positive(cls, v: int) -> int:
        if v < 1:
            raise ValueError("concurrency must be >= 1")
        return v


class APIConfig(BaseModel):
    """FastAPI server configuration."""

    model_config = ConfigDict(frozen=True)

    host: str = "0.0.0.0"
    port: int = 8000


class FintraConfig(BaseModel):
    """Root configuration for fintra-ingest."""

    model_config = ConfigDict(frozen=True)

    fmp: FmpConfig
    storage: StorageConfig = StorageConfig()
    cron: CronConfig = CronConfig()
    api: APIConfig = APIConfig()


def load_config(
    config_path: str | None = None,
    env_prefix: str = "FINTRA_",
) -> FintraConfig:
    """Load configuration from environment + YAML file + defaults.

    Resolution order (highest priority first):
    1. Environment variables (FINTRA_FMP__API_KEY, or the FMP_API_KEY alias)
    2. YAML file at config_path
    3. Built-in defaults

    Nested keys use double-underscore in env vars:
        FINTRA_CRON__CONCURRENCY=4  ->  cron.concurrency = 4
    """
    try:
        yaml_path = _resolve_config_path(config_path)
        base: dict = {}
        if yaml_path is not None:
            base = _load_yaml(yaml_path)

        merged = _merge_env_aliases(base)
        merged = _merge_env_vars(merged, env_prefix)
        return FintraConfig.model_validate(merged)
    except Exception as e:
        if isinstance(e, ConfigError):
            raise
        raise ConfigError(str(e), context={"source": "load_config"}) from e


def _resolve_config_path(explicit: str | None) -> Path | None:
    """Determine config file path."""
    if explicit is not None:
        p = Path(explicit)
        if not p.exists():
            raise ConfigError(
                f"Config file not found: {explicit}",
                context={"field": "config_path", "value": explicit},
            )
        return p

    env_path = os.environ.get("FINTRA_CONFIG")
    if env_path:
        p = Path(env_path)
        if not p.exists():
            raise ConfigError(
                f"Config file from FINTRA_CONFIG not found: {env_path}",
                context={"field": "FINTRA_CONFIG", "value": env_path},
            )
        return p

    default = Path("fintra.yml")
    if default.exists():
        return default

    return None


def _load_yaml(path: Path) -> dict:
    """Load and parse YAML file."""
    try:
        with open(path) as f:
            data = yaml.safe_load(f)
        if data is None:
            return {}
        if not isinstance(data, dict):
            raise ConfigError(
                f"YAML config must be a mapping, got {type(data).__name__}",
                context={"field": "config_file", "value": str(path)},
            )
        return data
    except yaml.YAMLError as e:
        raise ConfigError(
            f"Failed to parse YAML config: {e}",
            context={"field": "config_file", "value": str(path)},
        ) from e


def _merge_env_aliases(base: dict) -> dict:
    """Overlay the unprefixed deployment variables (FMP_API_KEY, CRON_SECRET)."""
    result = {k: (dict(v) if isinstance(v, dict) else v) for k, v in base.items()}
    for env_key, (section, field) in _ENV_ALIASES.items():
        value = os.environ.get(env_key)
        if not value:
            continue
        result.setdefault(section, {})
        result[section][field] = value
    return result


def _merge_env_vars(base: dict, prefix: str) -> dict:
    """Overlay environment variables onto base config dict.

    Double-underscore separates nesting levels.
    Values are auto-cast: "true"/"false" -> bool, numeric strings -> int.
    """
    result = dict(base)

    for key, value in os.environ.items():
        if not key.startswith(prefix):
            continue

        remainder = key[len(prefix) :]
        parts = [p.lower() for p in remainder.split("__")]

        # Skip the CONFIG env var itself
        if parts == ["config"]:
            continue

        # Secrets and keys are never cast
        if parts[-1] in ("api_key", "secret"):
            cast_value: str | int | float | bool = value
        else:
            cast_value = _auto_cast(value)

        target = result
        for part in parts[:-1]:
            if part not in target:
                target[part] = {}
            target = target[part]
        target[parts[-1]] = cast_value

    return result


def _auto_cast(value: str) -> str | int | float | bool:
    """Auto-cast string values from environment variables."""
    if value.lower() == "true":
        return True
    if value.lower() == "false":
        return False
    try:
        return int(value)
    except ValueError:
        pass
    try:
        return float(value)
    except ValueError:
        pass
    return value
