from __future__ import annotations

import os
from collections.abc import Iterator
from datetime import datetime, timedelta, timezone

import pytest

from whm_guard import config
from whm_guard.coordination.locks import LockManager
from whm_guard.coordination.operations import OperationTracker
from whm_guard.coordination.transactions import TransactionLog


def pytest_sessionstart(session: pytest.Session) -> None:
    # Keep the stale-lock sweeper thread out of unit test runs.
    os.environ.setdefault("LOCK_SWEEP_ENABLED", "false")


class MonotonicClock:
    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


class WallClock:
    def __init__(self) -> None:
        self.now = datetime(2026, 1, 1, 12, 0, tzinfo=timezone.utc)

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs: float) -> None:
        self.now += timedelta(**kwargs)


@pytest.fixture
def mono_clock() -> MonotonicClock:
    return MonotonicClock()


@pytest.fixture
def wall_clock() -> WallClock:
    return WallClock()


@pytest.fixture
def lock_manager(mono_clock: MonotonicClock) -> Iterator[LockManager]:
    manager = LockManager(clock=mono_clock)
    yield manager
    manager.stop_sweeper(timeout=1)


@pytest.fixture
def transaction_log(wall_clock: WallClock) -> TransactionLog:
    return TransactionLog(clock=wall_clock)


@pytest.fixture
def tracker(wall_clock: WallClock) -> OperationTracker:
    return OperationTracker(clock=wall_clock)


@pytest.fixture
def fresh_settings(monkeypatch: pytest.MonkeyPatch) -> Iterator[None]:
    monkeypatch.setattr(config, "load_dotenv", lambda **_: None)
    config._load_settings_cached.cache_clear()
    yield
    config._load_settings_cached.cache_clear()
