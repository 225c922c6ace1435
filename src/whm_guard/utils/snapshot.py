"""Strict structural cloning for transaction backups."""

from __future__ import annotations

import datetime
import decimal
import uuid

from pydantic import BaseModel

_MAX_SNAPSHOT_DEPTH = 100

# Values that are immutable and therefore safe to share between the caller's
# payload and the backup.
_IMMUTABLE_LEAVES = (
    str,
    int,
    float,
    bytes,
    type(None),
    datetime.date,
    datetime.time,
    datetime.timedelta,
    decimal.Decimal,
    uuid.UUID,
)


class SnapshotError(ValueError):
    """Raised when a payload cannot be captured as an independent backup."""


def strict_clone(value: object, *, max_depth: int = _MAX_SNAPSHOT_DEPTH) -> object:
    """Return a structurally independent deep copy of ``value``.

    Supports dicts, lists, tuples, pydantic models (dumped to dicts) and
    immutable scalar leaves. Reference cycles, callables, handles, sets and any
    other type raise ``SnapshotError``.
    """
    return _clone(value, set(), 0, max_depth, "$")


def _clone(
    value: object,
    active: set[int],
    depth: int,
    max_depth: int,
    path: str,
) -> object:
    if isinstance(value, _IMMUTABLE_LEAVES):
        return value
    if depth >= max_depth:
        raise SnapshotError(f"Payload nesting exceeds {max_depth} levels at {path}")
    if isinstance(value, BaseModel):
        value = value.model_dump()
    if not isinstance(value, (dict, list, tuple)):
        raise SnapshotError(
            f"Unsupported value of type {type(value).__name__} at {path}"
        )

    marker = id(value)
    if marker in active:
        raise SnapshotError(f"Circular reference detected at {path}")
    active.add(marker)
    try:
        if isinstance(value, dict):
            cloned: dict[object, object] = {}
            for key, item in value.items():
                if not isinstance(key, (str, int, float, type(None))):
                    raise SnapshotError(
                        f"Unsupported key of type {type(key).__name__} at {path}"
                    )
                cloned[key] = _clone(item, active, depth + 1, max_depth, f"{path}.{key}")
            return cloned
        items = [
            _clone(item, active, depth + 1, max_depth, f"{path}[{index}]")
            for index, item in enumerate(value)
        ]
        return tuple(items) if isinstance(value, tuple) else items
    finally:
        active.discard(marker)
