"""Error kinds and their static retry policies."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime
from typing import Literal

ErrorKind = Literal[
    "EEXIST",
    "ENOENT",
    "EPERM",
    "EBUSY",
    "ETIMEDOUT",
    "ECONNREFUSED",
    "RATE_LIMITED",
    "QUOTA_EXCEEDED",
    "INVALID_INPUT",
    "VALIDATION_ERROR",
    "UNAUTHORIZED",
    "FORBIDDEN",
    "INTERNAL_ERROR",
    "SERVICE_UNAVAILABLE",
    "UNKNOWN",
]

Severity = Literal["low", "medium", "high"]


@dataclass(frozen=True)
class RetryPolicy:
    should_retry: bool
    max_retries: int
    backoff_seconds: float
    description: str


@dataclass(frozen=True)
class MappedError:
    """Structured classification of a failed WHM call. Never stored."""

    kind: ErrorKind
    description: str
    original_message: str
    retry: RetryPolicy
    severity: Severity
    timestamp: datetime


def _no_retry(description: str) -> RetryPolicy:
    return RetryPolicy(
        should_retry=False, max_retries=0, backoff_seconds=0.0, description=description
    )


RETRY_POLICIES: dict[str, RetryPolicy] = {
    "EEXIST": _no_retry("File or resource already exists"),
    "ENOENT": _no_retry("File or resource not found"),
    "EPERM": _no_retry("Operation not permitted (permission denied)"),
    "EBUSY": RetryPolicy(True, 3, 1.0, "Resource busy, try again"),
    "ETIMEDOUT": RetryPolicy(True, 2, 2.0, "Operation timed out, try again"),
    "ECONNREFUSED": RetryPolicy(True, 3, 1.0, "Connection refused, service may be unavailable"),
    "RATE_LIMITED": RetryPolicy(True, 5, 5.0, "Rate limit exceeded, wait before retrying"),
    "QUOTA_EXCEEDED": _no_retry("Resource quota exceeded"),
    "INVALID_INPUT": _no_retry("Invalid input, check parameters"),
    "VALIDATION_ERROR": _no_retry("Validation error"),
    "UNAUTHORIZED": _no_retry("Authentication failed"),
    "FORBIDDEN": _no_retry("Access forbidden"),
    "INTERNAL_ERROR": RetryPolicy(True, 2, 2.0, "Internal server error, try again"),
    "SERVICE_UNAVAILABLE": RetryPolicy(True, 3, 3.0, "Service temporarily unavailable"),
    "UNKNOWN": RetryPolicy(True, 1, 1.0, "Unknown error"),
}

ERROR_KINDS: tuple[str, ...] = tuple(RETRY_POLICIES)

SEVERITIES: dict[str, Severity] = {
    "EEXIST": "medium",
    "QUOTA_EXCEEDED": "medium",
    "EPERM": "high",
    "FORBIDDEN": "high",
    "UNAUTHORIZED": "high",
    "INTERNAL_ERROR": "high",
    "SERVICE_UNAVAILABLE": "high",
    "ENOENT": "low",
    "INVALID_INPUT": "low",
    "VALIDATION_ERROR": "low",
    "EBUSY": "medium",
    "ETIMEDOUT": "medium",
    "ECONNREFUSED": "medium",
    "RATE_LIMITED": "medium",
}
