"""Outcome vocabulary shared by the coordination stores."""

from __future__ import annotations

from typing import Literal

# validation: malformed arguments
# busy: resource held by another caller
# conflict: record is in the wrong state for the request
# not_found: unknown ID or resource
FailureReason = Literal["validation", "busy", "conflict", "not_found"]


class CoordinationError(RuntimeError):
    """Base class for errors raised by the ``Coordinator.guard`` surface."""


class LockAcquisitionError(CoordinationError):
    """Raised when a lock request is malformed."""


class ResourceBusyError(CoordinationError):
    """Raised when the resource is already locked by another caller."""

    def __init__(self, resource: str, remaining_seconds: float, message: str) -> None:
        super().__init__(message)
        self.resource = resource
        self.remaining_seconds = remaining_seconds


class TransactionError(CoordinationError):
    """Raised when a guarded transaction cannot be committed or rolled back."""
