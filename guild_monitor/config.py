"""
Application configuration management.

Load order (each layer overrides the previous):
  1. ``config/default.toml``      — committed static defaults
  2. ``config/local.toml``        — optional local overrides (gitignored)
  3. ``.env``                     — local secrets and env overrides (gitignored)
  4. Environment variables        — ``GUILD_MONITOR_*`` prefix

Entry point: ``load_config(config_path=None) -> AppConfig``

The supervisor, every periodic task and every CLI command receive an
``AppConfig`` instance — never raw dicts or env var lookups scattered
through the codebase.
"""

from __future__ import annotations

import os
import tomllib
from pathlib import Path
from typing import Any, Optional

from dotenv import load_dotenv
from pydantic import BaseModel, ConfigDict, field_validator

from guild_monitor.taxonomy.roster_taxonomy import GuildType

# ── Sub-config models ─────────────────────────────────────────────────────────


class DatabaseConfig(BaseModel):
    """SQLite database connection settings."""

    model_config = ConfigDict(frozen=True)

    db_path: str = "data/db/guild_monitor.db"
    wal_mode: bool = True
    busy_timeout_ms: int = 5000


class ApiConfig(BaseModel):
    """TibiaData API endpoint, cache lifetimes and rate-limit fallback."""

    model_config = ConfigDict(frozen=True)

    base_url: str = "https://api.tibiadata.com/v4"
    timeout_seconds: float = 10.0
    user_agent: str = "TibiaGuildMonitor/1.0"
    character_ttl_seconds: int = 300
    world_ttl_seconds: int = 60
    guild_ttl_seconds: int = 600
    default_rate_limit: int = 60
    health_probe_world: str = "Antica"

    @field_validator("default_rate_limit")
    @classmethod
    def validate_rate_limit(cls, v: int) -> int:
        if v < 1:
            raise ValueError(f"default_rate_limit must be >= 1, got {v}.")
        return v


class BatchConfig(BaseModel):
    """Bounded-concurrency fan-out settings for character lookups."""

    model_config = ConfigDict(frozen=True)

    concurrency: int = 5
    per_name_timeout_seconds: float = 30.0

    @field_validator("concurrency")
    @classmethod
    def validate_concurrency(cls, v: int) -> int:
        if not 1 <= v <= 10:
            raise ValueError(f"concurrency must be in [1, 10], got {v}.")
        return v


class SchedulerConfig(BaseModel):
    """Intervals (seconds) of the supervisor's periodic tasks."""

    model_config = ConfigDict(frozen=True)

    death_interval_seconds: float = 30
    presence_interval_seconds: float = 60
    cleanup_interval_seconds: float = 3600
    health_interval_seconds: float = 300

    @field_validator(
        "death_interval_seconds",
        "presence_interval_seconds",
        "cleanup_interval_seconds",
        "health_interval_seconds",
    )
    @classmethod
    def validate_positive(cls, v: float) -> float:
        if v <= 0:
            raise ValueError(f"Task intervals must be positive, got {v}.")
        return v


class RetentionConfig(BaseModel):
    """How long history and log rows are kept before cleanup deletes them."""

    model_config = ConfigDict(frozen=True)

    online_history_days: int = 7
    log_days: int = 30


class LoggingConfig(BaseModel):
    """Logging output settings."""

    model_config = ConfigDict(frozen=True)

    level: str = "INFO"
    log_file: str = "data/logs/guild_monitor.log"
    json_format: bool = False

    @field_validator("level")
    @classmethod
    def validate_level(cls, v: str) -> str:
        valid = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}
        if v.upper() not in valid:
            raise ValueError(f"Log level must be one of {sorted(valid)}, got '{v}'.")
        return v.upper()


class GuildSeed(BaseModel):
    """A guild declared in config and upserted by ``init-db``."""

    model_config = ConfigDict(frozen=True)

    name: str
    world: str
    guild_type: GuildType = GuildType.ALLY

    @field_validator("name", "world")
    @classmethod
    def validate_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Guild name and world must not be blank.")
        return v.strip()


class AppConfig(BaseModel):
    """Complete application configuration — the single source of truth.

    Constructed by ``load_config()`` which merges TOML + .env. Tests build
    it directly (``AppConfig()``) to get the committed defaults.
    """

    model_config = ConfigDict(frozen=True)

    database: DatabaseConfig = DatabaseConfig()
    api: ApiConfig = ApiConfig()
    batch: BatchConfig = BatchConfig()
    scheduler: SchedulerConfig = SchedulerConfig()
    retention: RetentionConfig = RetentionConfig()
    logging: LoggingConfig = LoggingConfig()
    guilds: list[GuildSeed] = []
    debug: bool = False


# ── Loader ────────────────────────────────────────────────────────────────────

_PROJECT_ROOT = Path(__file__).parent.parent


def _find_project_root() -> Path:
    """Walk up from this file to find the project root (contains pyproject.toml)."""
    candidate = Path(__file__).parent
    for _ in range(5):
        if (candidate / "pyproject.toml").exists():
            return candidate
        candidate = candidate.parent
    return _PROJECT_ROOT


def load_config(config_path: Optional[Path] = None) -> AppConfig:
    """Load and merge application configuration.

    Args:
        config_path: Explicit path to a TOML config file. Defaults to
            ``<project_root>/config/default.toml``.

    Returns:
        Fully validated ``AppConfig`` instance.

    Raises:
        FileNotFoundError: If the specified ``config_path`` does not exist.
        pydantic.ValidationError: If merged config values fail validation.
    """
    root = _find_project_root()

    load_dotenv(dotenv_path=root / ".env", override=False)

    if config_path is None:
        config_path = root / "config" / "default.toml"

    config_path = Path(config_path)
    if not config_path.exists():
        raise FileNotFoundError(
            f"Config file not found: {config_path}\n"
            "Create config/default.toml or pass --config."
        )

    with open(config_path, "rb") as f:
        raw: dict[str, Any] = tomllib.load(f)

    local_config_path = config_path.parent / "local.toml"
    if local_config_path.exists():
        with open(local_config_path, "rb") as f:
            local_raw: dict[str, Any] = tomllib.load(f)
        raw = _deep_merge(raw, local_raw)

    raw = _apply_env_overrides(raw)

    return _build_app_config(raw)


def _deep_merge(base: dict[str, Any], override: dict[str, Any]) -> dict[str, Any]:
    """Recursively merge ``override`` into ``base``."""
    result = dict(base)
    for key, val in override.items():
        if key in result and isinstance(result[key], dict) and isinstance(val, dict):
            result[key] = _deep_merge(result[key], val)
        else:
            result[key] = val
    return result


def _apply_env_overrides(raw: dict[str, Any]) -> dict[str, Any]:
    """Apply GUILD_MONITOR_* env vars to the raw config dict.

    Supported overrides:
      GUILD_MONITOR_DB_PATH    → raw["database"]["db_path"]
      GUILD_MONITOR_LOG_LEVEL  → raw["logging"]["level"]
      GUILD_MONITOR_API_URL    → raw["api"]["base_url"]
      GUILD_MONITOR_DEBUG      → raw["debug"]
    """
    if db_path := os.environ.get("GUILD_MONITOR_DB_PATH"):
        raw.setdefault("database", {})["db_path"] = db_path

    if log_level := os.environ.get("GUILD_MONITOR_LOG_LEVEL"):
        raw.setdefault("logging", {})["level"] = log_level

    if api_url := os.environ.get("GUILD_MONITOR_API_URL"):
        raw.setdefault("api", {})["base_url"] = api_url

    if debug := os.environ.get("GUILD_MONITOR_DEBUG"):
        raw["debug"] = debug.lower() in ("1", "true", "yes")

    return raw


def _build_app_config(raw: dict[str, Any]) -> AppConfig:
    """Map raw TOML dict to ``AppConfig`` model structure."""
    return AppConfig(
        database=DatabaseConfig(**raw.get("database", {})),
        api=ApiConfig(**raw.get("api", {})),
        batch=BatchConfig(**raw.get("batch", {})),
        scheduler=SchedulerConfig(**raw.get("scheduler", {})),
        retention=RetentionConfig(**raw.get("retention", {})),
        logging=LoggingConfig(**raw.get("logging", {})),
        guilds=[GuildSeed(**g) for g in raw.get("guilds", [])],
        debug=raw.get("debug", False),
    )
