"""Core configuration."""

import json
import logging
import os
from pathlib import Path
from typing import Iterator, Literal, Optional

import yaml
from pydantic import Field, PrivateAttr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

from storeledger.common.constants import (
    DEFAULT_PRESIGN_EXPIRES_SECONDS,
    DEFAULT_STALE_PENDING_HOURS,
    MAX_PRESIGN_EXPIRES_SECONDS,
    TIER_LIMITS,
)

logger = logging.getLogger("storeledger.server.config")

# Fields that can be hot-reloaded without rebuilding the core.
HOT_RELOADABLE_FIELDS = frozenset(
    {
        "tier_limits",
        "presign_expires_seconds",
        "stale_pending_hours",
        "log_level",
    }
)


def parse_size(value: str) -> int:
    """Parse human-readable size string to bytes.

    Examples: '100MB', '1GB', '500kb', '1073741824'
    """
    value = value.strip().upper()
    multipliers = {
        "B": 1,
        "KB": 1024,
        "MB": 1024**2,
        "GB": 1024**3,
        "TB": 1024**4,
        "KIB": 1024,
        "MIB": 1024**2,
        "GIB": 1024**3,
        "TIB": 1024**4,
        "K": 1024,
        "M": 1024**2,
        "G": 1024**3,
        "T": 1024**4,
    }
    for suffix, mult in sorted(multipliers.items(), key=lambda x: -len(x[0])):
        if value.endswith(suffix):
            num = value[: -len(suffix)].strip()
            return int(float(num) * mult)
    return int(value)


class LedgerSettings(BaseSettings):
    """Core settings loaded from environment or config file."""

    model_config = SettingsConfigDict(env_prefix="STORELEDGER_", env_nested_delimiter="__")

    # Relational store (ledger + sql account store)
    database_backend: Literal["sqlite", "mysql", "postgresql"] = Field(
        "sqlite", description="Database backend. Env: STORELEDGER_DATABASE_BACKEND"
    )
    database_url: str = Field(
        "",
        description="Full SQLAlchemy async URL; overrides the backend fields when set. "
        "Env: STORELEDGER_DATABASE_URL",
    )
    sqlite_path: str = Field("", description="SQLite file (default: <data_path>/storeledger.db)")
    data_path: Path = Field(Path("./data"), description="Base directory for local state")
    db_host: str = Field("127.0.0.1", description="Database host (mysql/postgresql)")
    db_port: Optional[int] = Field(None, description="Database port; defaults to 3306 for mysql, 5432 for postgresql")
    db_user: str = Field("root", description="Database user")
    db_password: str = Field("", description="Database password")
    db_name: str = Field("storeledger", description="Database name")

    # Account store
    account_store: Literal["sql", "redis"] = Field(
        "sql", description="Where used_bytes lives: sql (default) or redis (atomic HINCRBY)"
    )
    redis_url: str = Field("redis://localhost:6379/0", description="Redis URL (account_store=redis)")

    # Object store
    object_store: Literal["memory", "file", "s3"] = Field(
        "s3", description="Object store backend: memory (test), file (dev), s3 (production)"
    )
    persistent_bucket: str = Field("persistent", description="Bucket for quota-counted objects")
    temporal_bucket: str = Field("temporal", description="Bucket for quota-exempt objects")
    s3_endpoint_url: Optional[str] = Field(None, description="S3-compatible endpoint (R2, MinIO...)")
    s3_region: str = Field("auto", description="S3 region name")
    s3_access_key_id: str = Field("", description="S3 access key id")
    s3_secret_access_key: str = Field("", description="S3 secret access key")
    file_store_root: Path = Field(Path("./data/objects"), description="Root for the file object store")
    file_store_base_url: str = Field(
        "http://localhost:8787/objects", description="Base URL the file store signs URLs against"
    )
    signing_secret: str = Field("", description="HMAC secret for file-store presigned URLs")

    # Accounting policy
    presign_expires_seconds: int = Field(
        DEFAULT_PRESIGN_EXPIRES_SECONDS, description="Default presigned URL lifetime in seconds"
    )
    tier_limits: dict[str, int] = Field(
        default_factory=lambda: dict(TIER_LIMITS),
        description="Per-tier byte ceilings. Env: STORELEDGER_TIER_LIMITS as JSON "
        '(values accept size strings, e.g. {"free": "2GB"})',
    )
    stale_pending_hours: int = Field(
        DEFAULT_STALE_PENDING_HOURS, description="Age after which pending rows are reaped"
    )

    log_level: str = Field("INFO", description="Log level for the storeledger logger")

    _config_path: Optional[Path] = PrivateAttr(None)

    @field_validator("tier_limits", mode="before")
    @classmethod
    def _parse_tier_limits(cls, value: object) -> object:
        if isinstance(value, dict):
            return {str(k): parse_size(v) if isinstance(v, str) else v for k, v in value.items()}
        return value

    @field_validator("presign_expires_seconds")
    @classmethod
    def _check_expiry(cls, value: int) -> int:
        if value <= 0 or value > MAX_PRESIGN_EXPIRES_SECONDS:
            raise ValueError(f"presign_expires_seconds must be in 1..{MAX_PRESIGN_EXPIRES_SECONDS}")
        return value

    def tier_limit(self, tier: str) -> int:
        """Byte ceiling for *tier* (falls back to the built-in table)."""
        if tier in self.tier_limits:
            return self.tier_limits[tier]
        return TIER_LIMITS[tier]


def _parse_yaml_to_settings_dict(config: dict) -> dict:
    """Convert a parsed YAML config dict into a flat settings dict.

    This is the single source of truth for YAML -> settings field mapping.
    Used by both initial load and hot-reload.
    """
    d: dict = {}

    if "database" in config:
        db = config["database"]
        if "backend" in db:
            d["database_backend"] = db["backend"]
        if "url" in db:
            d["database_url"] = db["url"]
        if "path" in db:
            d["sqlite_path"] = db["path"]
        for key in ("host", "port", "user", "password", "name"):
            if key in db:
                d[f"db_{key}"] = db[key]
    if "data_path" in config:
        d["data_path"] = config["data_path"]
    if "accounts" in config:
        acc = config["accounts"]
        if "store" in acc:
            d["account_store"] = acc["store"]
        if "redis_url" in acc:
            d["redis_url"] = acc["redis_url"]
    if "object_store" in config:
        ob = config["object_store"]
        if "backend" in ob:
            d["object_store"] = ob["backend"]
        buckets = ob.get("buckets", {})
        if "persistent" in buckets:
            d["persistent_bucket"] = buckets["persistent"]
        if "temporal" in buckets:
            d["temporal_bucket"] = buckets["temporal"]
        s3 = ob.get("s3", {})
        for key in ("endpoint_url", "region", "access_key_id", "secret_access_key"):
            if key in s3:
                d[f"s3_{key}"] = s3[key]
        fs = ob.get("file", {})
        if "root" in fs:
            d["file_store_root"] = fs["root"]
        if "base_url" in fs:
            d["file_store_base_url"] = fs["base_url"]
        if "signing_secret" in fs:
            d["signing_secret"] = fs["signing_secret"]
    if "quota" in config:
        q = config["quota"]
        if "tiers" in q:
            d["tier_limits"] = {
                str(k): parse_size(str(v)) if isinstance(v, str) else v for k, v in q["tiers"].items()
            }
        if "presign_expires_seconds" in q:
            d["presign_expires_seconds"] = q["presign_expires_seconds"]
        if "stale_pending_hours" in q:
            d["stale_pending_hours"] = q["stale_pending_hours"]
    if "logging" in config:
        if "level" in config["logging"]:
            d["log_level"] = str(config["logging"]["level"]).upper()

    return d


def _apply_env_overrides(settings_dict: dict) -> None:
    """Apply environment variable overrides to a settings dict (in-place).

    Only the fields whose env form differs from plain pydantic parsing are
    handled here; everything else is picked up by ``BaseSettings`` itself.
    """
    env_tiers = os.environ.get("STORELEDGER_TIER_LIMITS", "")
    if env_tiers:
        try:
            parsed = json.loads(env_tiers)
        except json.JSONDecodeError:
            parsed = None
        if isinstance(parsed, dict):
            settings_dict["tier_limits"] = {
                str(k).strip(): parse_size(str(v)) if isinstance(v, str) else v for k, v in parsed.items()
            }
        else:
            logger.warning("Ignoring STORELEDGER_TIER_LIMITS: expected a mapping, got %r", env_tiers)

    env_level = os.environ.get("STORELEDGER_LOG_LEVEL", "")
    if env_level:
        settings_dict["log_level"] = env_level.upper()


# ── Config file discovery and loading ─────────────────────────

CONFIG_ENV_VAR = "STORELEDGER_CONFIG"

# Fallback locations, in priority order, after $STORELEDGER_CONFIG.
_CONFIG_SEARCH_PATHS = (
    Path("./storeledger.yaml"),
    Path("./config/storeledger.yaml"),
    Path.home() / ".storeledger" / "config.yaml",
)


def _config_candidates() -> Iterator[Path]:
    env_path = os.environ.get(CONFIG_ENV_VAR, "")
    if env_path:
        yield Path(env_path)
    yield from _CONFIG_SEARCH_PATHS


def discover_config_path() -> Optional[Path]:
    """First existing file among ``$STORELEDGER_CONFIG``, ``./storeledger.yaml``,
    ``./config/storeledger.yaml`` and ``~/.storeledger/config.yaml``."""
    env_path = os.environ.get(CONFIG_ENV_VAR, "")
    if env_path and not Path(env_path).is_file():
        logger.warning("$%s=%s does not exist", CONFIG_ENV_VAR, env_path)
    return next((p for p in _config_candidates() if p.is_file()), None)


def _read_config_file(path: Path) -> dict:
    """YAML file -> flat settings dict, env overrides applied."""
    with open(path, "r", encoding="utf-8") as f:
        raw = yaml.safe_load(f) or {}
    if not isinstance(raw, dict):
        raise ValueError(f"{path}: top level must be a mapping, got {type(raw).__name__}")
    fields = _parse_yaml_to_settings_dict(raw)
    _apply_env_overrides(fields)
    return fields


def load_settings(config_path: Optional[Path] = None) -> LedgerSettings:
    """Build settings from a config file (explicit or discovered) plus the environment.

    The chosen path is remembered on the instance for :func:`reload_hot_settings`.
    """
    path = config_path or discover_config_path()
    if path is not None and path.exists():
        fields = _read_config_file(path)
        logger.info("Loaded config from %s", path.resolve())
    else:
        fields = {}
        _apply_env_overrides(fields)
        logger.info("No config file found, using defaults + environment variables")

    settings = LedgerSettings(**fields)
    settings._config_path = path
    return settings


def reload_hot_settings(settings: LedgerSettings) -> dict[str, tuple]:
    """Apply changed hot-reloadable fields from the config file to *settings*.

    The file is validated as a whole before anything is applied, so an
    invalid edit raises and leaves *settings* untouched.  Fields outside
    ``HOT_RELOADABLE_FIELDS`` are never changed.

    Returns:
        ``{field: (old_value, new_value)}`` for each field that changed.
    """
    path: Optional[Path] = settings._config_path
    if path is None or not path.exists():
        return {}

    fields = _read_config_file(path)
    fresh = LedgerSettings(**fields)
    changes = {
        name: (getattr(settings, name), getattr(fresh, name))
        for name in HOT_RELOADABLE_FIELDS & fields.keys()
        if getattr(settings, name) != getattr(fresh, name)
    }
    for name, (_, new) in changes.items():
        setattr(settings, name, new)
    return changes
