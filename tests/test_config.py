from __future__ import annotations

import pytest

from whm_guard import config

_ALL_KEYS = tuple(config.ENV_KEYS.values())


@pytest.fixture
def clean_env(monkeypatch: pytest.MonkeyPatch, fresh_settings) -> pytest.MonkeyPatch:
    for key in _ALL_KEYS:
        monkeypatch.delenv(key, raising=False)
    return monkeypatch


def test_defaults(clean_env: pytest.MonkeyPatch) -> None:
    settings = config.load_settings()

    assert settings.logging.level == "INFO"
    assert settings.logging.file is None
    assert settings.locks.default_timeout_seconds == 30
    assert settings.locks.max_timeout_seconds == 600
    assert settings.locks.sweep_interval_seconds == 5
    assert settings.locks.sweep_enabled is True
    assert settings.transactions.retention_hours == 24
    assert settings.operations.base_timeout_seconds == 60
    assert settings.operations.per_target_timeout_seconds == 30
    assert settings.operations.max_timeout_seconds == 600
    assert settings.operations.retention_minutes == 60


def test_environment_overrides(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("LOG_LEVEL", "DEBUG")
    clean_env.setenv("LOCK_DEFAULT_TIMEOUT_SECONDS", "45")
    clean_env.setenv("LOCK_SWEEP_ENABLED", "no")
    clean_env.setenv("TRANSACTION_RETENTION_HOURS", "12")
    clean_env.setenv("OPERATION_PER_TARGET_TIMEOUT_SECONDS", "15")

    settings = config.load_settings()

    assert settings.logging.level == "DEBUG"
    assert settings.locks.default_timeout_seconds == 45
    assert settings.locks.sweep_enabled is False
    assert settings.transactions.retention_hours == 12
    assert settings.operations.per_target_timeout_seconds == 15


def test_settings_are_cached(clean_env: pytest.MonkeyPatch) -> None:
    first = config.load_settings()
    clean_env.setenv("LOG_LEVEL", "ERROR")

    assert config.load_settings() is first


@pytest.mark.parametrize(
    ("key", "value"),
    [
        ("LOCK_DEFAULT_TIMEOUT_SECONDS", "900"),
        ("LOCK_MAX_TIMEOUT_SECONDS", "0"),
        ("TRANSACTION_RETENTION_HOURS", "-1"),
        ("OPERATION_BASE_TIMEOUT_SECONDS", "0"),
    ],
)
def test_load_settings_raises_runtime_error_on_validation(
    clean_env: pytest.MonkeyPatch, key: str, value: str
) -> None:
    clean_env.setenv(key, value)

    with pytest.raises(RuntimeError, match="Invalid configuration"):
        config.load_settings()


def test_default_lock_timeout_must_not_exceed_max(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("LOCK_MAX_TIMEOUT_SECONDS", "10")

    with pytest.raises(RuntimeError, match="must not exceed"):
        config.load_settings()


def test_log_file_is_resolved_under_project_root(clean_env: pytest.MonkeyPatch) -> None:
    clean_env.setenv("LOG_FILE", "logs/whm_guard.log")

    settings = config.load_settings()

    root = config._project_root().resolve()
    assert settings.logging.file == str(root / "logs" / "whm_guard.log")


def test_resolve_path_absolute_inside_project() -> None:
    root = str(config._project_root().resolve())
    absolute = f"{root}/data/test_file"
    assert config._resolve_path(absolute) == absolute


def test_resolve_path_absolute_outside_project_rejected() -> None:
    with pytest.raises(ValueError, match="Path traversal detected"):
        config._resolve_path("/tmp/example")


def test_resolve_path_relative_escape_rejected() -> None:
    with pytest.raises(ValueError, match="Path traversal detected"):
        config._resolve_path("../../etc/passwd")


def test_env_float_uses_default_for_blank(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_FLOAT_VALUE", "")
    assert config._env_float("TEST_FLOAT_VALUE", 1.5) == 1.5


def test_env_float_invalid_value_returns_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.setenv("TEST_FLOAT_INVALID", "not_a_float")
    result = config._env_float("TEST_FLOAT_INVALID", 2.5)
    assert result == 2.5


@pytest.mark.parametrize(
    ("raw", "expected"),
    [("1", True), ("TRUE", True), (" yes ", True), ("0", False), ("off", False)],
)
def test_env_bool(monkeypatch: pytest.MonkeyPatch, raw: str, expected: bool) -> None:
    monkeypatch.setenv("TEST_BOOL_VALUE", raw)
    assert config._env_bool("TEST_BOOL_VALUE", not expected) is expected


def test_env_bool_missing_uses_default(monkeypatch: pytest.MonkeyPatch) -> None:
    monkeypatch.delenv("TEST_BOOL_MISSING", raising=False)
    assert config._env_bool("TEST_BOOL_MISSING", True) is True
