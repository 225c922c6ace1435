"""Time helpers."""

from __future__ import annotations

from datetime import datetime, timezone


def utc_now() -> datetime:
    return datetime.now(tz=timezone.utc)


def seconds_between(start: datetime, end: datetime) -> float:
    return (end - start).total_seconds()
