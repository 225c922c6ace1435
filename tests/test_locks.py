from __future__ import annotations

import asyncio
import threading
import time
from concurrent.futures import ThreadPoolExecutor

import pytest

from whm_guard.coordination.locks import LockManager, generate_lock_token


def test_generate_lock_token_is_unique_hex() -> None:
    tokens = {generate_lock_token() for _ in range(50)}
    assert len(tokens) == 50
    assert all(len(token) == 32 for token in tokens)
    int(next(iter(tokens)), 16)


def test_acquire_grants_lock(lock_manager: LockManager) -> None:
    result = lock_manager.acquire("domain:example.com")

    assert result.acquired
    assert result.token
    assert result.error is None
    assert lock_manager.is_locked("domain:example.com").locked


@pytest.mark.parametrize("resource", ["", "   ", None, 42])
def test_acquire_rejects_invalid_resource(lock_manager: LockManager, resource) -> None:
    result = lock_manager.acquire(resource)

    assert not result.acquired
    assert result.token is None
    assert result.reason == "validation"


@pytest.mark.parametrize("timeout", [0, -5, "30", True, float("nan")])
def test_acquire_rejects_invalid_timeout(lock_manager: LockManager, timeout) -> None:
    result = lock_manager.acquire("domain:example.com", timeout)

    assert not result.acquired
    assert result.reason == "validation"
    assert not lock_manager.is_locked("domain:example.com").locked


def test_second_acquire_within_timeout_is_busy(lock_manager, mono_clock) -> None:
    lock_manager.acquire("domain:example.com", 30)
    mono_clock.advance(10.2)

    second = lock_manager.acquire("domain:example.com", 30)

    assert not second.acquired
    assert second.reason == "busy"
    assert second.remaining_seconds == pytest.approx(19.8)
    assert "20s" in second.error


def test_acquire_after_timeout_reclaims_stale_lock(lock_manager, mono_clock) -> None:
    first = lock_manager.acquire("domain:example.com", 5)
    mono_clock.advance(5)

    second = lock_manager.acquire("domain:example.com", 5)

    assert second.acquired
    assert second.token != first.token


def test_resource_key_is_trimmed(lock_manager: LockManager) -> None:
    lock_manager.acquire("  domain:example.com ")

    assert lock_manager.is_locked("domain:example.com").locked
    assert lock_manager.release("domain:example.com").released


def test_timeout_is_clamped_to_maximum(lock_manager: LockManager) -> None:
    lock_manager.acquire("domain:example.com", 3600)

    info = lock_manager.is_locked("domain:example.com").info
    assert info is not None
    assert info.timeout_seconds == 600


def test_default_timeout_applies(mono_clock) -> None:
    manager = LockManager(default_timeout_seconds=12, clock=mono_clock)
    manager.acquire("domain:example.com")

    assert manager.is_locked("domain:example.com").info.timeout_seconds == 12


def test_different_resources_lock_independently(lock_manager: LockManager) -> None:
    assert lock_manager.acquire("domain:a.com").acquired
    assert lock_manager.acquire("domain:b.com").acquired
    assert lock_manager.stats().total_locks == 2


def test_release_frees_resource(lock_manager, mono_clock) -> None:
    lock_manager.acquire("domain:example.com")
    mono_clock.advance(2)

    result = lock_manager.release("domain:example.com")

    assert result.released
    assert result.held_seconds == pytest.approx(2)
    assert lock_manager.acquire("domain:example.com").acquired


def test_release_without_lock_is_not_found(lock_manager: LockManager) -> None:
    result = lock_manager.release("domain:example.com")

    assert not result.released
    assert result.reason == "not_found"


def test_release_is_not_idempotent(lock_manager: LockManager) -> None:
    lock_manager.acquire("domain:example.com")

    assert lock_manager.release("domain:example.com").released
    assert lock_manager.release("domain:example.com").reason == "not_found"


def test_release_of_expired_lock_is_not_found(lock_manager, mono_clock) -> None:
    lock_manager.acquire("domain:example.com", 1)
    mono_clock.advance(1.5)

    result = lock_manager.release("domain:example.com")

    assert not result.released
    assert result.reason == "not_found"
    assert lock_manager.stats().total_locks == 0


def test_release_with_wrong_token_keeps_lock(lock_manager: LockManager) -> None:
    acquired = lock_manager.acquire("domain:example.com")

    result = lock_manager.release("domain:example.com", token="not-the-token")

    assert not result.released
    assert result.reason == "conflict"
    assert lock_manager.release("domain:example.com", token=acquired.token).released


def test_release_rejects_invalid_resource(lock_manager: LockManager) -> None:
    assert lock_manager.release("").reason == "validation"


def test_is_locked_reports_lock_info(lock_manager, mono_clock) -> None:
    acquired = lock_manager.acquire("domain:example.com", 30)
    mono_clock.advance(12)

    status = lock_manager.is_locked("domain:example.com")

    assert status.locked
    assert status.info.token == acquired.token
    assert status.info.elapsed_seconds == pytest.approx(12)
    assert status.info.remaining_seconds == pytest.approx(18)


def test_is_locked_removes_expired_entry(lock_manager, mono_clock) -> None:
    lock_manager.acquire("domain:example.com", 3)
    mono_clock.advance(4)

    assert not lock_manager.is_locked("domain:example.com").locked
    assert lock_manager.stats().total_locks == 0


def test_is_locked_with_invalid_resource(lock_manager: LockManager) -> None:
    status = lock_manager.is_locked(None)
    assert not status.locked
    assert status.info is None


def test_stats_lists_resources(lock_manager, mono_clock) -> None:
    lock_manager.acquire("domain:a.com", 10)
    lock_manager.acquire("domain:b.com", 20)
    mono_clock.advance(15)

    stats = lock_manager.stats()

    assert stats.total_locks == 2
    by_resource = {entry.resource: entry for entry in stats.resources}
    assert by_resource["domain:a.com"].remaining_seconds == 0
    assert by_resource["domain:b.com"].remaining_seconds == pytest.approx(5)


def test_sweep_removes_only_expired_locks(lock_manager, mono_clock) -> None:
    lock_manager.acquire("domain:a.com", 5)
    lock_manager.acquire("domain:b.com", 60)
    mono_clock.advance(10)

    assert lock_manager.sweep() == 1
    assert [entry.resource for entry in lock_manager.stats().resources] == ["domain:b.com"]


def test_clear_drops_all_locks(lock_manager: LockManager) -> None:
    lock_manager.acquire("domain:a.com")
    lock_manager.acquire("domain:b.com")

    assert lock_manager.clear() == 2
    assert lock_manager.stats().total_locks == 0


def test_background_sweeper_reclaims_abandoned_lock(mono_clock) -> None:
    manager = LockManager(sweep_interval_seconds=0.01, clock=mono_clock)
    manager.acquire("domain:example.com", 1)
    mono_clock.advance(2)

    manager.start_sweeper()
    try:
        assert manager.sweeper_running
        deadline = time.monotonic() + 2
        while manager.stats().total_locks and time.monotonic() < deadline:
            time.sleep(0.01)
    finally:
        manager.stop_sweeper(timeout=1)

    assert manager.stats().total_locks == 0
    assert not manager.sweeper_running


def test_threads_contending_for_one_resource_get_one_lock() -> None:
    manager = LockManager()
    barrier = threading.Barrier(16)

    def contend(_: int) -> bool:
        barrier.wait()
        return manager.acquire("domain:example.com", 30).acquired

    with ThreadPoolExecutor(max_workers=16) as pool:
        results = list(pool.map(contend, range(16)))

    assert results.count(True) == 1


@pytest.mark.asyncio
async def test_coroutines_contending_for_one_resource_fail_fast() -> None:
    manager = LockManager()

    async def mutate(name: str) -> str | None:
        acquired = manager.acquire("domain:example.com")
        if not acquired.acquired:
            return acquired.reason
        await asyncio.sleep(0.01)
        manager.release("domain:example.com", acquired.token)
        return name

    results = await asyncio.gather(mutate("first"), mutate("second"))

    assert sorted(results) == ["busy", "first"]
