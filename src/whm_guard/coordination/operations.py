"""Tracking for long-running, multi-target WHM operations.

A batch change (for example enabling NSEC3 on a list of DNSSEC zones) is
represented as an operation record that moves
``queued -> in_progress -> completed | failed``. Callers report progress with
``update_progress``; observers registered with ``on_progress`` are called
synchronously on every update.

Timeouts are detected passively: ``get_status`` flips an overdue
``in_progress`` operation to ``failed``. There is no timer thread, so an
operation that is never polled stays ``in_progress`` until the next read.
"""

from __future__ import annotations

import logging
import secrets
import threading
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

from whm_guard.coordination.outcomes import FailureReason
from whm_guard.utils.snapshot import SnapshotError, strict_clone
from whm_guard.utils.time import seconds_between, utc_now

logger = logging.getLogger(__name__)

OperationState = Literal["queued", "in_progress", "completed", "failed", "cancelled"]

QUEUED: OperationState = "queued"
IN_PROGRESS: OperationState = "in_progress"
COMPLETED: OperationState = "completed"
FAILED: OperationState = "failed"
CANCELLED: OperationState = "cancelled"

TERMINAL_OPERATION_STATES: frozenset[str] = frozenset({COMPLETED, FAILED, CANCELLED})

BASE_TIMEOUT_SECONDS = 60.0
PER_TARGET_TIMEOUT_SECONDS = 30.0
MAX_TIMEOUT_SECONDS = 600.0
DEFAULT_RETENTION_MINUTES = 60.0

_DEFAULT_FAILURE_MESSAGE = "Operation failed without error details"
_TIMEOUT_MESSAGE = "Operation timed out"


def calculate_timeout(
    targets: object,
    *,
    base_seconds: float = BASE_TIMEOUT_SECONDS,
    per_target_seconds: float = PER_TARGET_TIMEOUT_SECONDS,
    max_seconds: float = MAX_TIMEOUT_SECONDS,
) -> float:
    """Return ``base + per_target * n`` clamped to ``max_seconds``.

    Only non-empty string targets are counted. Anything that is not a list or
    tuple yields the base timeout.
    """
    if not isinstance(targets, (list, tuple)):
        logger.warning("calculate_timeout: targets is not a list")
        return base_seconds

    count = sum(1 for target in targets if isinstance(target, str) and target)
    calculated = base_seconds + per_target_seconds * count
    final = min(calculated, max_seconds)
    logger.debug(
        "Operation timeout calculated: %d targets, %.1fs (uncapped %.1fs)",
        count,
        final,
        calculated,
    )
    return final


def generate_operation_id() -> str:
    return f"op_{secrets.token_hex(12)}"


def _normalize_id(operation_id: object) -> str | None:
    if not isinstance(operation_id, str):
        return None
    return operation_id.strip() or None


def _is_percent(value: object) -> bool:
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return 0 <= value <= 100


@dataclass(frozen=True)
class ProgressEvent:
    operation_id: str
    progress: float
    state: OperationState


ProgressObserver = Callable[[ProgressEvent], object]


@dataclass
class _OperationRecord:
    operation_id: str
    operation_type: str
    targets: tuple[str, ...]
    state: OperationState
    timeout_seconds: float
    started_at: datetime
    total_steps: int
    progress: float = 0
    completed_steps: int = 0
    completed_at: datetime | None = None
    result: object | None = None
    error: str | None = None


@dataclass(frozen=True)
class StartResult:
    operation_id: str | None
    state: OperationState | None
    timeout_seconds: float | None = None
    error: str | None = None
    reason: FailureReason | None = None


@dataclass(frozen=True)
class UpdateResult:
    updated: bool
    error: str | None = None
    reason: FailureReason | None = None


@dataclass(frozen=True)
class OperationStatus:
    """Read projection of an operation.

    ``error`` holds the operation's failure message, or the lookup error when
    ``state`` is ``None`` (``reason`` is set only in that case).
    """

    state: OperationState | None
    progress: float = 0
    completed_steps: int = 0
    total_steps: int = 0
    elapsed_seconds: float = 0.0
    timeout_seconds: float | None = None
    result: object | None = None
    error: str | None = None
    reason: FailureReason | None = None


@dataclass(frozen=True)
class RegisterResult:
    registered: bool


@dataclass(frozen=True)
class OperationStats:
    total: int
    queued: int
    in_progress: int
    completed: int
    failed: int
    cancelled: int


class OperationTracker:
    def __init__(
        self,
        *,
        base_timeout_seconds: float = BASE_TIMEOUT_SECONDS,
        per_target_timeout_seconds: float = PER_TARGET_TIMEOUT_SECONDS,
        max_timeout_seconds: float = MAX_TIMEOUT_SECONDS,
        clock: Callable[[], datetime] = utc_now,
    ) -> None:
        self._base_timeout = base_timeout_seconds
        self._per_target_timeout = per_target_timeout_seconds
        self._max_timeout = max_timeout_seconds
        self._clock = clock
        self._operations: dict[str, _OperationRecord] = {}
        self._observers: dict[str, list[ProgressObserver]] = {}
        self._lock = threading.Lock()

    def calculate_timeout(self, targets: object) -> float:
        return calculate_timeout(
            targets,
            base_seconds=self._base_timeout,
            per_target_seconds=self._per_target_timeout,
            max_seconds=self._max_timeout,
        )

    def start(
        self,
        operation_type: str,
        targets: Sequence[str],
        operation_id: str | None = None,
    ) -> StartResult:
        """Register a new queued operation over ``targets``.

        Duplicate IDs are rejected, not merged.
        """
        if not isinstance(operation_type, str) or not operation_type.strip():
            logger.warning("Operation start rejected: invalid operation type")
            return StartResult(
                operation_id=None, state=None, error="Invalid operation type", reason="validation"
            )
        if not isinstance(targets, (list, tuple)) or not targets:
            logger.warning("Operation start rejected: invalid targets (type=%s)", operation_type)
            return StartResult(
                operation_id=None,
                state=None,
                error="Target list is invalid or empty",
                reason="validation",
            )
        if operation_id is None:
            op_id = generate_operation_id()
        else:
            op_id = _normalize_id(operation_id)
            if op_id is None:
                return StartResult(
                    operation_id=None, state=None, error="Invalid operation ID", reason="validation"
                )

        timeout = self.calculate_timeout(targets)
        record = _OperationRecord(
            operation_id=op_id,
            operation_type=operation_type.strip().lower(),
            targets=tuple(targets),
            state=QUEUED,
            timeout_seconds=timeout,
            started_at=self._clock(),
            total_steps=len(targets),
        )
        with self._lock:
            if op_id in self._operations:
                logger.warning("Operation start rejected: %s already exists", op_id)
                return StartResult(
                    operation_id=op_id,
                    state=None,
                    error="An operation with this ID already exists",
                    reason="conflict",
                )
            self._operations[op_id] = record

        logger.info(
            "Operation %s started (type=%s, targets=%d, timeout=%.1fs)",
            op_id,
            record.operation_type,
            record.total_steps,
            timeout,
        )
        return StartResult(operation_id=op_id, state=QUEUED, timeout_seconds=timeout)

    def update_progress(
        self,
        operation_id: str,
        percent: float,
        *,
        completed_steps: int | None = None,
        result: object | None = None,
    ) -> UpdateResult:
        """Record progress and notify observers.

        The first update above 0 moves a queued operation to ``in_progress``;
        reaching exactly 100 completes it and freezes ``result`` (default
        ``{}``). Updates on terminal operations are rejected as conflicts.
        """
        op_id = _normalize_id(operation_id)
        if op_id is None:
            return UpdateResult(updated=False, error="Invalid operation ID", reason="validation")
        if not _is_percent(percent):
            return UpdateResult(
                updated=False,
                error="Progress must be a number between 0 and 100",
                reason="validation",
            )
        if completed_steps is not None and (
            isinstance(completed_steps, bool)
            or not isinstance(completed_steps, int)
            or completed_steps < 0
        ):
            return UpdateResult(
                updated=False,
                error="completed_steps must be a non-negative integer",
                reason="validation",
            )
        frozen_result: object | None = None
        if result is not None:
            try:
                frozen_result = strict_clone(result)
            except SnapshotError as exc:
                return UpdateResult(
                    updated=False,
                    error=f"Result cannot be captured: {exc}",
                    reason="validation",
                )

        with self._lock:
            record = self._operations.get(op_id)
            if record is None:
                logger.warning("Cannot update progress: operation %s not found", op_id)
                return UpdateResult(
                    updated=False, error="Operation not found", reason="not_found"
                )
            if record.state in TERMINAL_OPERATION_STATES:
                logger.warning(
                    "Cannot update progress: operation %s is %s", op_id, record.state
                )
                return UpdateResult(
                    updated=False,
                    error=f"Operation is already {record.state}",
                    reason="conflict",
                )

            record.progress = percent
            if completed_steps is not None:
                record.completed_steps = completed_steps
            if record.state == QUEUED and percent > 0:
                record.state = IN_PROGRESS
                logger.debug("Operation %s moved to in_progress", op_id)
            if percent == 100 and record.state == IN_PROGRESS:
                record.state = COMPLETED
                record.completed_at = self._clock()
                record.result = frozen_result if frozen_result is not None else {}
                logger.info(
                    "Operation %s completed after %.3fs",
                    op_id,
                    seconds_between(record.started_at, record.completed_at),
                )

            event = ProgressEvent(operation_id=op_id, progress=percent, state=record.state)
            observers = list(self._observers.get(op_id, ()))

        logger.debug(
            "Operation %s progress %s%% (steps %d)", op_id, percent, record.completed_steps
        )
        self._notify(observers, event)
        return UpdateResult(updated=True)

    def fail(self, operation_id: str, message: str | None = None) -> UpdateResult:
        """Force the operation to ``failed`` whatever its current state."""
        op_id = _normalize_id(operation_id)
        if op_id is None:
            return UpdateResult(updated=False, error="Invalid operation ID", reason="validation")

        with self._lock:
            record = self._operations.get(op_id)
            if record is None:
                return UpdateResult(
                    updated=False, error="Operation not found", reason="not_found"
                )
            record.state = FAILED
            record.error = message or _DEFAULT_FAILURE_MESSAGE
            record.completed_at = self._clock()
            error = record.error

        logger.error("Operation %s failed: %s", op_id, error)
        return UpdateResult(updated=True)

    def cancel(self, operation_id: str, reason: str | None = None) -> UpdateResult:
        """Mark a queued or in-progress operation ``cancelled``.

        Work already dispatched by the caller is not interrupted.
        """
        op_id = _normalize_id(operation_id)
        if op_id is None:
            return UpdateResult(updated=False, error="Invalid operation ID", reason="validation")

        with self._lock:
            record = self._operations.get(op_id)
            if record is None:
                return UpdateResult(
                    updated=False, error="Operation not found", reason="not_found"
                )
            if record.state in TERMINAL_OPERATION_STATES:
                return UpdateResult(
                    updated=False,
                    error=f"Operation is already {record.state}",
                    reason="conflict",
                )
            record.state = CANCELLED
            record.error = f"Operation cancelled: {reason}" if reason else "Operation cancelled"
            record.completed_at = self._clock()

        logger.info("Operation %s cancelled", op_id)
        return UpdateResult(updated=True)

    def get_status(self, operation_id: str) -> OperationStatus:
        op_id = _normalize_id(operation_id)
        if op_id is None:
            return OperationStatus(state=None, error="Invalid operation ID", reason="validation")

        timed_out = False
        with self._lock:
            record = self._operations.get(op_id)
            if record is None:
                logger.debug("Operation %s not found", op_id)
                return OperationStatus(
                    state=None, error="Operation not found", reason="not_found"
                )
            now = self._clock()
            elapsed = seconds_between(record.started_at, now)
            if record.state == IN_PROGRESS and elapsed > record.timeout_seconds:
                record.state = FAILED
                record.error = _TIMEOUT_MESSAGE
                record.completed_at = now
                timed_out = True
            status = OperationStatus(
                state=record.state,
                progress=record.progress,
                completed_steps=record.completed_steps,
                total_steps=record.total_steps,
                elapsed_seconds=elapsed,
                timeout_seconds=record.timeout_seconds,
                result=strict_clone(record.result),
                error=record.error,
            )

        if timed_out:
            logger.warning(
                "Operation %s timed out after %.1fs (timeout %.1fs)",
                op_id,
                elapsed,
                status.timeout_seconds,
            )
        return status

    def on_progress(self, operation_id: str, observer: ProgressObserver) -> RegisterResult:
        """Subscribe ``observer`` to progress updates.

        Registration does not require the operation to exist yet, but
        observers of IDs with no operation are discarded by ``cleanup``.
        """
        op_id = _normalize_id(operation_id)
        if op_id is None or not callable(observer):
            return RegisterResult(registered=False)
        with self._lock:
            self._observers.setdefault(op_id, []).append(observer)
        return RegisterResult(registered=True)

    def stats(self) -> OperationStats:
        with self._lock:
            states = [record.state for record in self._operations.values()]
        return OperationStats(
            total=len(states),
            queued=states.count(QUEUED),
            in_progress=states.count(IN_PROGRESS),
            completed=states.count(COMPLETED),
            failed=states.count(FAILED),
            cancelled=states.count(CANCELLED),
        )

    def cleanup(self, max_age_minutes: float = DEFAULT_RETENTION_MINUTES) -> int:
        """Remove terminal operations finished more than ``max_age_minutes`` ago.

        Also drops observers registered for IDs that have no operation. Only
        removed operations are counted in the return value.
        """
        if isinstance(max_age_minutes, bool) or not isinstance(max_age_minutes, (int, float)):
            raise ValueError("max_age_minutes must be a number")
        if max_age_minutes < 0:
            raise ValueError("max_age_minutes must not be negative")
        max_age = timedelta(minutes=max_age_minutes)

        with self._lock:
            now = self._clock()
            expired = [
                op_id
                for op_id, record in self._operations.items()
                if record.state in TERMINAL_OPERATION_STATES
                and record.completed_at is not None
                and now - record.completed_at > max_age
            ]
            for op_id in expired:
                del self._operations[op_id]
            orphaned = [op_id for op_id in self._observers if op_id not in self._operations]
            for op_id in orphaned:
                del self._observers[op_id]

        if expired:
            logger.debug(
                "Removed %d old operations (max age %smin)", len(expired), max_age_minutes
            )
        if orphaned:
            logger.debug("Dropped observers of %d unknown operations", len(orphaned))
        return len(expired)

    def clear(self) -> int:
        with self._lock:
            count = len(self._operations)
            self._operations.clear()
            self._observers.clear()
        logger.warning("All operations cleared (%d)", count)
        return count

    @staticmethod
    def _notify(observers: list[ProgressObserver], event: ProgressEvent) -> None:
        for observer in observers:
            try:
                observer(event)
            except Exception:
                logger.exception("Progress observer failed for %s", event.operation_id)
