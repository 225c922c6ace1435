"""Lock manager, transaction log and async operation tracker."""

from whm_guard.coordination.locks import LockManager
from whm_guard.coordination.operations import OperationTracker, ProgressEvent, calculate_timeout
from whm_guard.coordination.outcomes import (
    CoordinationError,
    LockAcquisitionError,
    ResourceBusyError,
    TransactionError,
)
from whm_guard.coordination.transactions import TransactionLog
from whm_guard.utils.snapshot import SnapshotError

__all__ = [
    "CoordinationError",
    "LockAcquisitionError",
    "LockManager",
    "OperationTracker",
    "ProgressEvent",
    "ResourceBusyError",
    "SnapshotError",
    "TransactionError",
    "TransactionLog",
    "calculate_timeout",
]
