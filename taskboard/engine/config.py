"""
Taskboard Configuration — Load and validate taskboard.yaml at startup.

Usage:
    from taskboard.engine.config import load_config, get_config
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Optional
from zoneinfo import ZoneInfo, ZoneInfoNotFoundError

import yaml
from pydantic import BaseModel, ValidationError, field_validator

from taskboard.engine.errors import ConfigError

CONFIG_FILENAME = "taskboard.yaml"

_DEFAULT_SECRET_KEY = "taskboard-dev-secret-change-me"


# ---------------------------------------------------------------------------
# Pydantic models for taskboard.yaml
# ---------------------------------------------------------------------------

class DatabaseConfig(BaseModel):
    url: str = "sqlite:///taskboard.db"
    echo: bool = False
    pool_pre_ping: bool = True


class SecurityConfig(BaseModel):
    secret_key: str = _DEFAULT_SECRET_KEY
    token_ttl_seconds: int = 7 * 24 * 3600
    password_min_length: int = 6
    bcrypt_rounds: int = 12
    sign_in_path: str = "/signin"

    @field_validator("bcrypt_rounds")
    @classmethod
    def validate_rounds(cls, v: int) -> int:
        if not 4 <= v <= 31:
            raise ValueError(f"bcrypt_rounds must be between 4 and 31, got {v}")
        return v


class PolicyConfig(BaseModel):
    profile: str = "project"

    @field_validator("profile")
    @classmethod
    def validate_profile(cls, v: str) -> str:
        if v not in ("project", "creator"):
            raise ValueError(f"profile must be project/creator, got '{v}'")
        return v


class NotificationsConfig(BaseModel):
    horizon_days: int = 1
    timezone: str = "UTC"

    @field_validator("horizon_days")
    @classmethod
    def validate_horizon(cls, v: int) -> int:
        if v < 0:
            raise ValueError(f"horizon_days must be >= 0, got {v}")
        return v

    @field_validator("timezone")
    @classmethod
    def validate_timezone(cls, v: str) -> str:
        try:
            ZoneInfo(v)
        except (ZoneInfoNotFoundError, ValueError):
            raise ValueError(f"unknown timezone '{v}'")
        return v


class LogAsyncQueueConfig(BaseModel):
    flush_interval_ms: int = 100
    flush_batch_size: int = 50
    max_queue_size: int = 10000


class LoggingConfig(BaseModel):
    level: str = "INFO"
    directory: str = ".taskboard/logs"
    async_queue: LogAsyncQueueConfig = LogAsyncQueueConfig()


class TaskboardConfig(BaseModel):
    """Root model for taskboard.yaml."""
    name: str = "Taskboard"
    environment: str = "dev"

    database: DatabaseConfig = DatabaseConfig()
    security: SecurityConfig = SecurityConfig()
    policy: PolicyConfig = PolicyConfig()
    notifications: NotificationsConfig = NotificationsConfig()
    logging: LoggingConfig = LoggingConfig()

    @field_validator("environment")
    @classmethod
    def validate_environment(cls, v: str) -> str:
        if v not in ("dev", "staging", "prod"):
            raise ValueError(f"environment must be dev/staging/prod, got '{v}'")
        return v


# ---------------------------------------------------------------------------
# Config Loading Functions
# ---------------------------------------------------------------------------

_config: Optional[TaskboardConfig] = None


def _find_project_root() -> Path:
    """Find the project root by looking for taskboard.yaml."""
    current = Path.cwd()
    for parent in [current, *current.parents]:
        if (parent / CONFIG_FILENAME).exists():
            return parent
    return current


def _apply_env_overrides(data: dict) -> dict:
    secret = os.environ.get("TASKBOARD_SECRET_KEY")
    if secret:
        data.setdefault("security", {})["secret_key"] = secret
    db_url = os.environ.get("TASKBOARD_DATABASE_URL")
    if db_url:
        data.setdefault("database", {})["url"] = db_url
    return data


def load_config(config_path: Optional[str] = None) -> TaskboardConfig:
    """
    Load and validate taskboard.yaml.

    Args:
        config_path: Explicit path to taskboard.yaml. If None, auto-discovers.

    Returns:
        Validated TaskboardConfig instance (defaults when no file exists).

    Raises:
        ConfigError: the file is not valid YAML or fails validation.
    """
    global _config

    if config_path is None:
        config_path = str(_find_project_root() / CONFIG_FILENAME)

    path = Path(config_path)
    raw: dict = {}
    if path.exists():
        try:
            with open(path, "r", encoding="utf-8") as f:
                raw = yaml.safe_load(f) or {}
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}", config_path=str(path)) from e
        if not isinstance(raw, dict):
            raise ConfigError(f"{path} must contain a mapping", config_path=str(path))

    # Accept either a flat file or one nested under a top-level "taskboard:" key
    data = dict(raw.get("taskboard", raw))

    try:
        _config = TaskboardConfig(**_apply_env_overrides(data))
    except ValidationError as e:
        raise ConfigError(f"Invalid configuration: {e}", config_path=str(path)) from e
    return _config


def get_config() -> TaskboardConfig:
    """Get the currently loaded config, loading if necessary."""
    global _config
    if _config is None:
        _config = load_config()
    return _config


def reset_config() -> None:
    """Forget the cached config (tests, reload)."""
    global _config
    _config = None
