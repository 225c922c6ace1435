"""Configuration management for the WHM coordination layer."""

from __future__ import annotations

import logging
import os
from functools import lru_cache
from pathlib import Path

from dotenv import load_dotenv
from pydantic import BaseModel, Field, ValidationError, model_validator

_config_logger = logging.getLogger(__name__)


class LoggingSettings(BaseModel):
    level: str = Field(default="INFO", description="Python logging level name")
    file: str | None = Field(default=None, description="Optional log file path")


class LockSettings(BaseModel):
    default_timeout_seconds: float = Field(default=30.0, gt=0, le=600)
    max_timeout_seconds: float = Field(default=600.0, gt=0, le=600)
    sweep_interval_seconds: float = Field(default=5.0, gt=0, le=300)
    sweep_enabled: bool = Field(
        default=True,
        description="Run the background stale-lock sweep on a daemon thread.",
    )

    @model_validator(mode="after")
    def _default_within_max(self) -> "LockSettings":
        if self.default_timeout_seconds > self.max_timeout_seconds:
            raise ValueError("default_timeout_seconds must not exceed max_timeout_seconds")
        return self


class TransactionSettings(BaseModel):
    retention_hours: float = Field(default=24.0, gt=0, le=24 * 30)


class OperationSettings(BaseModel):
    base_timeout_seconds: float = Field(default=60.0, gt=0)
    per_target_timeout_seconds: float = Field(default=30.0, ge=0)
    max_timeout_seconds: float = Field(default=600.0, gt=0, le=3600)
    retention_minutes: float = Field(default=60.0, gt=0)


class Settings(BaseModel):
    logging: LoggingSettings = Field(default_factory=LoggingSettings)
    locks: LockSettings = Field(default_factory=LockSettings)
    transactions: TransactionSettings = Field(default_factory=TransactionSettings)
    operations: OperationSettings = Field(default_factory=OperationSettings)


ENV_KEYS = {
    "log_level": "LOG_LEVEL",
    "log_file": "LOG_FILE",
    "lock_default_timeout": "LOCK_DEFAULT_TIMEOUT_SECONDS",
    "lock_max_timeout": "LOCK_MAX_TIMEOUT_SECONDS",
    "lock_sweep_interval": "LOCK_SWEEP_INTERVAL_SECONDS",
    "lock_sweep_enabled": "LOCK_SWEEP_ENABLED",
    "transaction_retention": "TRANSACTION_RETENTION_HOURS",
    "operation_base_timeout": "OPERATION_BASE_TIMEOUT_SECONDS",
    "operation_per_target_timeout": "OPERATION_PER_TARGET_TIMEOUT_SECONDS",
    "operation_max_timeout": "OPERATION_MAX_TIMEOUT_SECONDS",
    "operation_retention": "OPERATION_RETENTION_MINUTES",
}

_TRUE_VALUES = frozenset({"1", "true", "yes"})


def _project_root() -> Path:
    return Path(__file__).resolve().parents[2]


def _resolve_path(path: str) -> str:
    candidate = Path(path)
    root = _project_root().resolve()
    if candidate.is_absolute():
        resolved = candidate.resolve()
    else:
        resolved = (root / candidate).resolve()
    if not resolved.is_relative_to(root):
        raise ValueError(f"Path traversal detected: '{path}' resolves outside project root")
    return str(resolved)


def _env_bool(key: str, default: bool) -> bool:
    value = os.getenv(key)
    if value is None:
        return default
    return value.strip().lower() in _TRUE_VALUES


def _env_float(key: str, default: float) -> float:
    value = os.getenv(key)
    if value is None or value.strip() == "":
        return default
    try:
        return float(value)
    except ValueError:
        _config_logger.warning(
            "Invalid float value for %s: %r, using default %s", key, value, default
        )
        return default


def load_settings() -> Settings:
    """Load configuration and cache the result."""

    return _load_settings_cached()


@lru_cache(maxsize=1)
def _load_settings_cached() -> Settings:
    load_dotenv(dotenv_path=_project_root() / ".env")
    log_file_env = os.getenv(ENV_KEYS["log_file"])

    settings_data: dict[str, object] = {
        "logging": {
            "level": os.getenv(ENV_KEYS["log_level"], LoggingSettings().level),
            "file": _resolve_path(log_file_env) if log_file_env else None,
        },
        "locks": {
            "default_timeout_seconds": _env_float(
                ENV_KEYS["lock_default_timeout"],
                LockSettings().default_timeout_seconds,
            ),
            "max_timeout_seconds": _env_float(
                ENV_KEYS["lock_max_timeout"],
                LockSettings().max_timeout_seconds,
            ),
            "sweep_interval_seconds": _env_float(
                ENV_KEYS["lock_sweep_interval"],
                LockSettings().sweep_interval_seconds,
            ),
            "sweep_enabled": _env_bool(
                ENV_KEYS["lock_sweep_enabled"],
                LockSettings().sweep_enabled,
            ),
        },
        "transactions": {
            "retention_hours": _env_float(
                ENV_KEYS["transaction_retention"],
                TransactionSettings().retention_hours,
            ),
        },
        "operations": {
            "base_timeout_seconds": _env_float(
                ENV_KEYS["operation_base_timeout"],
                OperationSettings().base_timeout_seconds,
            ),
            "per_target_timeout_seconds": _env_float(
                ENV_KEYS["operation_per_target_timeout"],
                OperationSettings().per_target_timeout_seconds,
            ),
            "max_timeout_seconds": _env_float(
                ENV_KEYS["operation_max_timeout"],
                OperationSettings().max_timeout_seconds,
            ),
            "retention_minutes": _env_float(
                ENV_KEYS["operation_retention"],
                OperationSettings().retention_minutes,
            ),
        },
    }

    try:
        settings = Settings.model_validate(settings_data)
    except ValidationError as exc:
        raise RuntimeError(f"Invalid configuration: {exc}") from exc

    if settings.logging.file:
        Path(settings.logging.file).parent.mkdir(parents=True, exist_ok=True)

    return settings
