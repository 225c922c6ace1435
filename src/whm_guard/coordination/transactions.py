"""Backup/commit/rollback log for reversible WHM operations."""

from __future__ import annotations

import logging
import secrets
import threading
from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Literal

from pydantic import BaseModel

from whm_guard.coordination.outcomes import FailureReason
from whm_guard.utils.masking import redact_sensitive_fields
from whm_guard.utils.snapshot import SnapshotError, strict_clone
from whm_guard.utils.time import seconds_between, utc_now

logger = logging.getLogger(__name__)

TransactionState = Literal["pending", "committed", "rolled_back"]

PENDING: TransactionState = "pending"
COMMITTED: TransactionState = "committed"
ROLLED_BACK: TransactionState = "rolled_back"

DEFAULT_RETENTION_HOURS = 24.0


def generate_transaction_id() -> str:
    return f"txn_{secrets.token_hex(12)}"


def _normalize_id(transaction_id: object) -> str | None:
    if not isinstance(transaction_id, str):
        return None
    return transaction_id.strip() or None


def _operation_type(backup: object, explicit: str | None) -> str:
    if explicit:
        return explicit
    if isinstance(backup, dict):
        value = backup.get("type")
        if isinstance(value, str) and value:
            return value
    return "unknown"


@dataclass
class _TransactionRecord:
    transaction_id: str
    operation_type: str
    backup: object
    state: TransactionState
    started_at: datetime
    completed_at: datetime | None = None

    @property
    def duration_seconds(self) -> float | None:
        if self.completed_at is None:
            return None
        return seconds_between(self.started_at, self.completed_at)


@dataclass(frozen=True)
class BeginResult:
    transaction_id: str
    state: TransactionState
    backup: object


@dataclass(frozen=True)
class CommitResult:
    state: TransactionState | None
    error: str | None = None
    reason: FailureReason | None = None


@dataclass(frozen=True)
class RollbackResult:
    state: TransactionState | None
    backup: object | None = None
    error: str | None = None
    reason: FailureReason | None = None


@dataclass(frozen=True)
class TransactionView:
    transaction_id: str
    state: TransactionState
    operation_type: str
    started_at: datetime
    completed_at: datetime | None
    duration_seconds: float | None
    has_backup: bool


@dataclass(frozen=True)
class TransactionStatus:
    state: TransactionState | None
    data: TransactionView | None = None
    error: str | None = None
    reason: FailureReason | None = None


@dataclass(frozen=True)
class ActiveTransaction:
    transaction_id: str
    operation_type: str
    started_at: datetime
    duration_seconds: float


@dataclass(frozen=True)
class TransactionStats:
    total: int
    pending: int
    committed: int
    rolled_back: int


class TransactionLog:
    """In-memory log of reversible operations.

    ``begin`` snapshots the operation payload; the record then moves exactly
    once to ``committed`` or ``rolled_back``. Terminal records are only pruned
    by ``cleanup`` once older than the retention age. Pending records are never
    pruned.
    """

    def __init__(self, *, clock: Callable[[], datetime] = utc_now) -> None:
        self._clock = clock
        self._transactions: dict[str, _TransactionRecord] = {}
        self._lock = threading.Lock()

    def begin(self, payload: object, *, operation_type: str | None = None) -> BeginResult:
        """Record a backup of ``payload`` and open a pending transaction.

        Raises ``SnapshotError`` when the payload cannot be cloned (cycles,
        callables, handles, unsupported types). Nothing is recorded then.
        """
        if not isinstance(payload, (dict, list, tuple, BaseModel)):
            logger.warning("Transaction begin rejected: payload is not a mapping or sequence")
            raise SnapshotError("Operation payload must be a mapping or sequence")
        try:
            backup = strict_clone(payload)
        except SnapshotError as exc:
            logger.warning("Transaction begin rejected: %s", exc)
            raise

        transaction_id = generate_transaction_id()
        record = _TransactionRecord(
            transaction_id=transaction_id,
            operation_type=_operation_type(backup, operation_type),
            backup=backup,
            state=PENDING,
            started_at=self._clock(),
        )
        with self._lock:
            self._transactions[transaction_id] = record

        logger.info(
            "Transaction %s started (type=%s)", transaction_id, record.operation_type
        )
        if logger.isEnabledFor(logging.DEBUG):
            logger.debug(
                "Transaction %s backup: %s", transaction_id, redact_sensitive_fields(backup)
            )
        return BeginResult(
            transaction_id=transaction_id, state=PENDING, backup=strict_clone(backup)
        )

    def commit(self, transaction_id: str) -> CommitResult:
        txn_id = _normalize_id(transaction_id)
        if txn_id is None:
            return CommitResult(state=None, error="Invalid transaction ID", reason="validation")

        with self._lock:
            record = self._transactions.get(txn_id)
            if record is None:
                logger.warning("Commit failed: transaction %s not found", txn_id)
                return CommitResult(
                    state=None, error="Transaction not found", reason="not_found"
                )
            if record.state != PENDING:
                logger.warning(
                    "Commit failed: transaction %s is %s", txn_id, record.state
                )
                return CommitResult(
                    state=None,
                    error=f"Transaction is not pending (state: {record.state})",
                    reason="conflict",
                )
            record.state = COMMITTED
            record.completed_at = self._clock()
            duration = record.duration_seconds

        logger.info("Transaction %s committed after %.3fs", txn_id, duration)
        return CommitResult(state=COMMITTED)

    def rollback(self, transaction_id: str) -> RollbackResult:
        """Mark the transaction rolled back and hand back a copy of its backup."""
        txn_id = _normalize_id(transaction_id)
        if txn_id is None:
            return RollbackResult(state=None, error="Invalid transaction ID", reason="validation")

        with self._lock:
            record = self._transactions.get(txn_id)
            if record is None:
                logger.warning("Rollback failed: transaction %s not found", txn_id)
                return RollbackResult(
                    state=None, error="Transaction not found", reason="not_found"
                )
            if record.state != PENDING:
                logger.warning(
                    "Rollback failed: transaction %s is %s", txn_id, record.state
                )
                return RollbackResult(
                    state=None,
                    error=f"Rollback is not possible for a transaction in state: {record.state}",
                    reason="conflict",
                )
            backup = strict_clone(record.backup)
            record.state = ROLLED_BACK
            record.completed_at = self._clock()
            duration = record.duration_seconds

        logger.info("Transaction %s rolled back after %.3fs", txn_id, duration)
        return RollbackResult(state=ROLLED_BACK, backup=backup)

    def get_status(self, transaction_id: str) -> TransactionStatus:
        txn_id = _normalize_id(transaction_id)
        if txn_id is None:
            return TransactionStatus(state=None, error="Invalid transaction ID", reason="validation")

        with self._lock:
            record = self._transactions.get(txn_id)
            if record is None:
                logger.debug("Transaction %s not found", txn_id)
                return TransactionStatus(
                    state=None, error="Transaction not found", reason="not_found"
                )
            view = TransactionView(
                transaction_id=record.transaction_id,
                state=record.state,
                operation_type=record.operation_type,
                started_at=record.started_at,
                completed_at=record.completed_at,
                duration_seconds=record.duration_seconds,
                has_backup=record.backup is not None,
            )
        return TransactionStatus(state=view.state, data=view)

    def list_active(self) -> list[ActiveTransaction]:
        with self._lock:
            now = self._clock()
            return [
                ActiveTransaction(
                    transaction_id=record.transaction_id,
                    operation_type=record.operation_type,
                    started_at=record.started_at,
                    duration_seconds=seconds_between(record.started_at, now),
                )
                for record in self._transactions.values()
                if record.state == PENDING
            ]

    def cleanup(self, max_age_hours: float = DEFAULT_RETENTION_HOURS) -> int:
        """Remove terminal transactions completed more than ``max_age_hours`` ago."""
        if isinstance(max_age_hours, bool) or not isinstance(max_age_hours, (int, float)):
            raise ValueError("max_age_hours must be a number")
        if max_age_hours < 0:
            raise ValueError("max_age_hours must not be negative")
        max_age = timedelta(hours=max_age_hours)

        with self._lock:
            now = self._clock()
            expired = [
                txn_id
                for txn_id, record in self._transactions.items()
                if record.completed_at is not None and now - record.completed_at > max_age
            ]
            for txn_id in expired:
                del self._transactions[txn_id]

        if expired:
            logger.debug(
                "Removed %d old transactions (max age %sh)", len(expired), max_age_hours
            )
        return len(expired)

    def stats(self) -> TransactionStats:
        with self._lock:
            states = [record.state for record in self._transactions.values()]
        return TransactionStats(
            total=len(states),
            pending=states.count(PENDING),
            committed=states.count(COMMITTED),
            rolled_back=states.count(ROLLED_BACK),
        )

    def clear(self) -> int:
        with self._lock:
            count = len(self._transactions)
            self._transactions.clear()
        logger.warning("All transactions cleared (%d)", count)
        return count
