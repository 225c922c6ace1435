"""Exclusive, timed locks keyed by resource identifier."""

from __future__ import annotations

import logging
import math
import secrets
import threading
import time
from collections.abc import Callable
from dataclasses import dataclass

from whm_guard.coordination.outcomes import FailureReason

logger = logging.getLogger(__name__)

DEFAULT_LOCK_TIMEOUT_SECONDS = 30.0
MAX_LOCK_TIMEOUT_SECONDS = 600.0
DEFAULT_SWEEP_INTERVAL_SECONDS = 5.0


def generate_lock_token() -> str:
    return secrets.token_hex(16)


def _normalize_resource(resource: object) -> str | None:
    if not isinstance(resource, str):
        return None
    resource_id = resource.strip()
    return resource_id or None


def _is_positive_number(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    # NaN fails this comparison as well.
    return value > 0


@dataclass
class _LockEntry:
    token: str
    acquired_at: float
    timeout_seconds: float

    def elapsed(self, now: float) -> float:
        return now - self.acquired_at

    def remaining(self, now: float) -> float:
        return self.timeout_seconds - self.elapsed(now)

    def is_expired(self, now: float) -> bool:
        return self.remaining(now) <= 0


@dataclass(frozen=True)
class AcquireResult:
    acquired: bool
    token: str | None = None
    error: str | None = None
    reason: FailureReason | None = None
    remaining_seconds: float | None = None


@dataclass(frozen=True)
class ReleaseResult:
    released: bool
    error: str | None = None
    reason: FailureReason | None = None
    held_seconds: float | None = None


@dataclass(frozen=True)
class LockInfo:
    token: str
    elapsed_seconds: float
    remaining_seconds: float
    timeout_seconds: float


@dataclass(frozen=True)
class LockStatus:
    locked: bool
    info: LockInfo | None = None


@dataclass(frozen=True)
class ResourceLockStats:
    resource: str
    elapsed_seconds: float
    remaining_seconds: float
    timeout_seconds: float


@dataclass(frozen=True)
class LockStats:
    total_locks: int
    resources: tuple[ResourceLockStats, ...]


class LockManager:
    """Process-local table of exclusive resource locks.

    Exclusivity is per resource key. A caller contending for a held lock fails
    immediately with a ``busy`` result carrying the remaining time; there is no
    wait queue. Expired entries are reclaimed lazily by ``acquire``,
    ``release`` and ``is_locked``, and eagerly by ``sweep`` (run periodically
    once ``start_sweeper`` is called).
    """

    def __init__(
        self,
        *,
        default_timeout_seconds: float = DEFAULT_LOCK_TIMEOUT_SECONDS,
        max_timeout_seconds: float = MAX_LOCK_TIMEOUT_SECONDS,
        sweep_interval_seconds: float = DEFAULT_SWEEP_INTERVAL_SECONDS,
        clock: Callable[[], float] = time.monotonic,
    ) -> None:
        self._default_timeout = default_timeout_seconds
        self._max_timeout = max_timeout_seconds
        self._sweep_interval = sweep_interval_seconds
        self._clock = clock
        self._locks: dict[str, _LockEntry] = {}
        self._lock = threading.Lock()
        self._sweeper: threading.Thread | None = None
        self._stop_sweeper = threading.Event()

    def acquire(self, resource: str, timeout_seconds: float | None = None) -> AcquireResult:
        resource_id = _normalize_resource(resource)
        if resource_id is None:
            return AcquireResult(
                acquired=False, error="Invalid resource identifier", reason="validation"
            )
        if timeout_seconds is None:
            timeout_seconds = self._default_timeout
        if not _is_positive_number(timeout_seconds):
            return AcquireResult(
                acquired=False,
                error="Timeout must be a positive number of seconds",
                reason="validation",
            )
        safe_timeout = min(float(timeout_seconds), self._max_timeout)

        with self._lock:
            now = self._clock()
            existing = self._locks.get(resource_id)
            if existing is not None:
                if existing.is_expired(now):
                    logger.debug(
                        "Stale lock on %s reclaimed after %.3fs (timeout %.1fs)",
                        resource_id,
                        existing.elapsed(now),
                        existing.timeout_seconds,
                    )
                    del self._locks[resource_id]
                else:
                    remaining = existing.remaining(now)
                    logger.debug(
                        "Resource %s already locked (%.3fs remaining)", resource_id, remaining
                    )
                    return AcquireResult(
                        acquired=False,
                        error=f"Resource is busy. Try again in {math.ceil(remaining)}s",
                        reason="busy",
                        remaining_seconds=remaining,
                    )

            token = generate_lock_token()
            self._locks[resource_id] = _LockEntry(
                token=token, acquired_at=now, timeout_seconds=safe_timeout
            )

        logger.debug("Lock acquired on %s (timeout %.1fs)", resource_id, safe_timeout)
        return AcquireResult(acquired=True, token=token)

    def release(self, resource: str, token: str | None = None) -> ReleaseResult:
        """Release the lock on ``resource``.

        When ``token`` is given it must match the holder's token. Releasing an
        expired entry reclaims it and reports ``not_found``: the caller no
        longer held a live lock.
        """
        resource_id = _normalize_resource(resource)
        if resource_id is None:
            return ReleaseResult(
                released=False, error="Invalid resource identifier", reason="validation"
            )

        with self._lock:
            now = self._clock()
            entry = self._locks.get(resource_id)
            if entry is None:
                logger.warning("Attempted to release non-existent lock on %s", resource_id)
                return ReleaseResult(
                    released=False,
                    error="No lock exists for this resource",
                    reason="not_found",
                )
            if entry.is_expired(now):
                del self._locks[resource_id]
                logger.warning("Lock on %s expired before release", resource_id)
                return ReleaseResult(
                    released=False,
                    error="Lock expired before release",
                    reason="not_found",
                )
            if token is not None and token != entry.token:
                logger.warning("Lock token mismatch on release of %s", resource_id)
                return ReleaseResult(
                    released=False,
                    error="Lock token does not match the current holder",
                    reason="conflict",
                )
            del self._locks[resource_id]
            held = entry.elapsed(now)

        logger.debug("Lock released on %s after %.3fs", resource_id, held)
        return ReleaseResult(released=True, held_seconds=held)

    def is_locked(self, resource: str) -> LockStatus:
        resource_id = _normalize_resource(resource)
        if resource_id is None:
            return LockStatus(locked=False)

        with self._lock:
            now = self._clock()
            entry = self._locks.get(resource_id)
            if entry is None:
                return LockStatus(locked=False)
            if entry.is_expired(now):
                del self._locks[resource_id]
                return LockStatus(locked=False)
            return LockStatus(
                locked=True,
                info=LockInfo(
                    token=entry.token,
                    elapsed_seconds=entry.elapsed(now),
                    remaining_seconds=entry.remaining(now),
                    timeout_seconds=entry.timeout_seconds,
                ),
            )

    def stats(self) -> LockStats:
        with self._lock:
            now = self._clock()
            resources = tuple(
                ResourceLockStats(
                    resource=resource_id,
                    elapsed_seconds=entry.elapsed(now),
                    remaining_seconds=max(0.0, entry.remaining(now)),
                    timeout_seconds=entry.timeout_seconds,
                )
                for resource_id, entry in self._locks.items()
            )
        return LockStats(total_locks=len(resources), resources=resources)

    def sweep(self) -> int:
        """Delete every expired entry and return how many were removed."""
        with self._lock:
            now = self._clock()
            stale = [rid for rid, entry in self._locks.items() if entry.is_expired(now)]
            for resource_id in stale:
                del self._locks[resource_id]
        for resource_id in stale:
            logger.warning("Stale lock removed automatically: %s", resource_id)
        return len(stale)

    def clear(self) -> int:
        with self._lock:
            count = len(self._locks)
            self._locks.clear()
        logger.warning("All locks cleared (%d)", count)
        return count

    @property
    def sweeper_running(self) -> bool:
        return self._sweeper is not None and self._sweeper.is_alive()

    def start_sweeper(self) -> None:
        if self.sweeper_running:
            return
        self._stop_sweeper.clear()
        self._sweeper = threading.Thread(
            target=self._run_sweeper, name="whm-guard-lock-sweeper", daemon=True
        )
        self._sweeper.start()

    def stop_sweeper(self, timeout: float | None = None) -> None:
        self._stop_sweeper.set()
        sweeper = self._sweeper
        if sweeper is not None:
            sweeper.join(timeout)
        self._sweeper = None

    def _run_sweeper(self) -> None:
        while not self._stop_sweeper.wait(self._sweep_interval):
            try:
                self.sweep()
            except Exception:
                logger.exception("Stale lock sweep failed")
