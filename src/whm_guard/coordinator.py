"""Process-wide assembly of the coordination stores."""

from __future__ import annotations

import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from functools import lru_cache

from whm_guard.config import Settings, load_settings
from whm_guard.coordination.locks import LockManager, LockStats
from whm_guard.coordination.operations import OperationStats, OperationTracker
from whm_guard.coordination.outcomes import (
    LockAcquisitionError,
    ResourceBusyError,
    TransactionError,
)
from whm_guard.coordination.transactions import TransactionLog, TransactionStats
from whm_guard.errors import classify
from whm_guard.logging_utils import get_logger

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class GuardHandle:
    resource: str
    lock_token: str
    transaction_id: str
    backup: object


@dataclass(frozen=True)
class CoordinatorStats:
    locks: LockStats
    transactions: TransactionStats
    operations: OperationStats


@dataclass(frozen=True)
class MaintenanceReport:
    stale_locks: int
    transactions_removed: int
    operations_removed: int


@dataclass
class Coordinator:
    """The lock table, transaction log and operation tracker of one process.

    Tests build their own instances; the server uses ``get_coordinator()``.
    """

    settings: Settings
    locks: LockManager
    transactions: TransactionLog
    operations: OperationTracker

    @contextmanager
    def guard(
        self,
        resource: str,
        payload: object,
        lock_timeout: float | None = None,
        on_rollback: Callable[[object], object] | None = None,
    ) -> Iterator[GuardHandle]:
        """Run a reversible mutation of ``resource`` under its lock.

        The transaction commits when the block exits normally and rolls back
        when it raises. On rollback ``on_rollback`` receives a copy of the
        backup so the caller can restore WHM state; without it, restore from
        ``handle.backup``. The exception is then classified, logged and
        re-raised. The lock is always released.
        """
        acquired = self.locks.acquire(resource, lock_timeout)
        if not acquired.acquired:
            if acquired.reason == "busy":
                raise ResourceBusyError(
                    resource, acquired.remaining_seconds or 0.0, acquired.error or "Resource is busy"
                )
            raise LockAcquisitionError(acquired.error or "Lock could not be acquired")
        lock_token = acquired.token or ""

        try:
            begun = self.transactions.begin(payload)
            handle = GuardHandle(
                resource=resource,
                lock_token=lock_token,
                transaction_id=begun.transaction_id,
                backup=begun.backup,
            )
            try:
                yield handle
            except BaseException as exc:
                rolled_back = self.transactions.rollback(begun.transaction_id)
                if rolled_back.error:
                    logger.error(
                        "Rollback of %s failed: %s", begun.transaction_id, rolled_back.error
                    )
                elif on_rollback is not None:
                    try:
                        on_rollback(rolled_back.backup)
                    except Exception:
                        logger.exception("Restore callback for %s failed", begun.transaction_id)
                mapped = classify(exc)
                logger.warning(
                    "Guarded operation on %s failed (%s, severity=%s); rolled back %s",
                    resource,
                    mapped.kind,
                    mapped.severity,
                    begun.transaction_id,
                )
                raise
            committed = self.transactions.commit(begun.transaction_id)
            if committed.error:
                raise TransactionError(committed.error)
        finally:
            released = self.locks.release(resource, lock_token)
            if not released.released:
                logger.warning("Lock on %s was not released: %s", resource, released.error)

    def stats(self) -> CoordinatorStats:
        return CoordinatorStats(
            locks=self.locks.stats(),
            transactions=self.transactions.stats(),
            operations=self.operations.stats(),
        )

    def maintenance(self) -> MaintenanceReport:
        """Sweep stale locks and prune terminal records past their retention."""
        report = MaintenanceReport(
            stale_locks=self.locks.sweep(),
            transactions_removed=self.transactions.cleanup(
                self.settings.transactions.retention_hours
            ),
            operations_removed=self.operations.cleanup(
                self.settings.operations.retention_minutes
            ),
        )
        logger.debug("Maintenance pass finished: %s", report)
        return report

    def close(self) -> None:
        self.locks.stop_sweeper()


def build_coordinator(settings: Settings) -> Coordinator:
    locks = LockManager(
        default_timeout_seconds=settings.locks.default_timeout_seconds,
        max_timeout_seconds=settings.locks.max_timeout_seconds,
        sweep_interval_seconds=settings.locks.sweep_interval_seconds,
    )
    operations = OperationTracker(
        base_timeout_seconds=settings.operations.base_timeout_seconds,
        per_target_timeout_seconds=settings.operations.per_target_timeout_seconds,
        max_timeout_seconds=settings.operations.max_timeout_seconds,
    )
    return Coordinator(
        settings=settings,
        locks=locks,
        transactions=TransactionLog(),
        operations=operations,
    )


@lru_cache(maxsize=1)
def get_coordinator() -> Coordinator:
    """Get or create the process-wide coordinator.

    Starts the stale-lock sweeper when enabled in settings.
    """
    settings = load_settings()
    coordinator = build_coordinator(settings)
    if settings.locks.sweep_enabled:
        coordinator.locks.start_sweeper()
    get_logger(__name__).info(
        "Coordinator ready (lock sweep %s)",
        "enabled" if settings.locks.sweep_enabled else "disabled",
    )
    return coordinator
