"""Classification of raw WHM failures into retry-aware error kinds.

``classify`` accepts whatever the HTTP client or a downstream library raised
or returned: a string, an exception, a mapping with a ``code`` field, or any
other object. Machine-readable fields win; otherwise the lower-cased message
is matched against an ordered pattern table and the first match wins.
Classification never fails.
"""

from __future__ import annotations

import errno
import logging
from collections.abc import Mapping

import httpx
from pydantic import ValidationError

from whm_guard.errors.models import (
    ERROR_KINDS,
    RETRY_POLICIES,
    SEVERITIES,
    ErrorKind,
    MappedError,
    RetryPolicy,
    Severity,
)
from whm_guard.utils.serialization import to_json_text
from whm_guard.utils.time import utc_now

logger = logging.getLogger(__name__)

DEFAULT_BACKOFF_SECONDS = 1.0
# 2**3: backoff stops growing after the fourth attempt.
_MAX_BACKOFF_EXPONENT = 3

# Order matters: the first substring found in the message decides the kind.
_MESSAGE_PATTERNS: tuple[tuple[str, ErrorKind], ...] = (
    ("file exists", "EEXIST"),
    ("no such file", "ENOENT"),
    ("not found", "ENOENT"),
    ("permission denied", "EPERM"),
    ("resource busy", "EBUSY"),
    ("timeout", "ETIMEDOUT"),
    ("timed out", "ETIMEDOUT"),
    ("connection refused", "ECONNREFUSED"),
    ("rate limit", "RATE_LIMITED"),
    ("too many requests", "RATE_LIMITED"),
    ("quota", "QUOTA_EXCEEDED"),
    ("invalid", "INVALID_INPUT"),
    ("unauthorized", "UNAUTHORIZED"),
    ("forbidden", "FORBIDDEN"),
    ("internal server error", "INTERNAL_ERROR"),
    ("service unavailable", "SERVICE_UNAVAILABLE"),
    ("bad request", "INVALID_INPUT"),
)

_HTTP_STATUS_KINDS: dict[int, ErrorKind] = {
    400: "INVALID_INPUT",
    401: "UNAUTHORIZED",
    403: "FORBIDDEN",
    404: "ENOENT",
    409: "EEXIST",
    422: "VALIDATION_ERROR",
    423: "EBUSY",
    429: "RATE_LIMITED",
    500: "INTERNAL_ERROR",
    502: "SERVICE_UNAVAILABLE",
    503: "SERVICE_UNAVAILABLE",
    504: "ETIMEDOUT",
}

_EXCEPTION_KINDS: tuple[tuple[type[BaseException], ErrorKind], ...] = (
    (ConnectionRefusedError, "ECONNREFUSED"),
    (TimeoutError, "ETIMEDOUT"),
    (FileNotFoundError, "ENOENT"),
    (FileExistsError, "EEXIST"),
    (PermissionError, "EPERM"),
    (httpx.TimeoutException, "ETIMEDOUT"),
    (httpx.ConnectError, "ECONNREFUSED"),
    (ValidationError, "VALIDATION_ERROR"),
)


def _known_kind(value: object) -> ErrorKind | None:
    if not isinstance(value, str):
        return None
    candidate = value.strip().upper()
    if candidate in RETRY_POLICIES:
        return candidate  # type: ignore[return-value]
    return None


def _kind_from_status(value: object) -> ErrorKind | None:
    if isinstance(value, bool) or not isinstance(value, int):
        return None
    return _HTTP_STATUS_KINDS.get(value)


def _read_attr(obj: object, name: str) -> object:
    # Properties on client error objects may raise.
    try:
        return getattr(obj, name, None)
    except Exception:
        return None


def _describe(raw: object) -> str:
    try:
        text = str(raw)
    except Exception:
        return type(raw).__name__
    return text or type(raw).__name__


def _kind_from_exception(exc: BaseException) -> ErrorKind | None:
    kind = _known_kind(_read_attr(exc, "code"))
    if kind:
        return kind
    if isinstance(exc, OSError) and isinstance(exc.errno, int):
        kind = _known_kind(errno.errorcode.get(exc.errno))
        if kind:
            return kind
    if isinstance(exc, httpx.HTTPStatusError):
        kind = _kind_from_status(_read_attr(_read_attr(exc, "response"), "status_code"))
        if kind:
            return kind
    for exc_type, mapped in _EXCEPTION_KINDS:
        if isinstance(exc, exc_type):
            return mapped
    return None


def _extract(raw: object) -> tuple[ErrorKind | None, str]:
    """Return the kind named by machine-readable fields (if any) and the message."""
    if isinstance(raw, str):
        return None, raw
    if isinstance(raw, BaseException):
        return _kind_from_exception(raw), _describe(raw)
    if isinstance(raw, Mapping):
        kind = (
            _known_kind(raw.get("code"))
            or _known_kind(raw.get("errno"))
            or _kind_from_status(raw.get("status_code", raw.get("status")))
        )
        message = raw.get("message") or raw.get("msg")
        if not isinstance(message, str) or not message:
            message = to_json_text(raw)
        return kind, message
    kind = _known_kind(_read_attr(raw, "code")) or _known_kind(_read_attr(raw, "errno"))
    message = _read_attr(raw, "message")
    if not isinstance(message, str) or not message:
        message = _describe(raw)
    return kind, message


def classify(raw: object) -> MappedError:
    if raw is None or (isinstance(raw, str) and not raw):
        return create_mapped_error("UNKNOWN", "Empty or null error")

    try:
        kind, message = _extract(raw)
    except Exception:
        # Mapping subclasses and json_default may run arbitrary caller code.
        logger.debug(
            "Could not inspect %s, classifying by type", type(raw).__name__, exc_info=True
        )
        kind, message = None, type(raw).__name__
    if kind is not None:
        return create_mapped_error(kind, message)

    normalized = message.lower()
    for pattern, pattern_kind in _MESSAGE_PATTERNS:
        if pattern in normalized:
            return create_mapped_error(pattern_kind, message)

    logger.debug("Unrecognized error pattern, classifying as UNKNOWN: %.100s", message)
    return create_mapped_error("UNKNOWN", message)


def create_mapped_error(kind: str, original_message: str = "") -> MappedError:
    if kind not in RETRY_POLICIES:
        logger.warning("Invalid error kind %r, using UNKNOWN", kind)
        kind = "UNKNOWN"
    policy = RETRY_POLICIES[kind]
    return MappedError(
        kind=kind,  # type: ignore[arg-type]
        description=policy.description,
        original_message=original_message or "",
        retry=policy,
        severity=severity_for(kind),
        timestamp=utc_now(),
    )


def severity_for(kind: str) -> Severity:
    return SEVERITIES.get(kind, "medium")


def is_recoverable(mapped: MappedError | None) -> bool:
    if mapped is None:
        return False
    return mapped.retry.should_retry and mapped.retry.max_retries > 0


def backoff_seconds(mapped: MappedError | None, attempt: int = 0) -> float:
    """Exponential backoff for the 0-based ``attempt``: base, 2x, 4x, then 8x."""
    if mapped is None:
        return 0.0
    base = mapped.retry.backoff_seconds or DEFAULT_BACKOFF_SECONDS
    exponent = min(max(attempt, 0), _MAX_BACKOFF_EXPONENT)
    return base * (2**exponent)


def retry_policy_for(kind: str) -> RetryPolicy | None:
    return RETRY_POLICIES.get(kind)


def error_kinds() -> list[str]:
    return list(ERROR_KINDS)
