"""Error classification and retry policy."""

from whm_guard.errors.classifier import (
    backoff_seconds,
    classify,
    create_mapped_error,
    error_kinds,
    is_recoverable,
    retry_policy_for,
    severity_for,
)
from whm_guard.errors.models import ERROR_KINDS, MappedError, RetryPolicy

__all__ = [
    "ERROR_KINDS",
    "MappedError",
    "RetryPolicy",
    "backoff_seconds",
    "classify",
    "create_mapped_error",
    "error_kinds",
    "is_recoverable",
    "retry_policy_for",
    "severity_for",
]
