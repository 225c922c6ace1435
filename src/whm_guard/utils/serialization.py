"""JSON serialization utilities."""

from __future__ import annotations

import base64
import datetime
import decimal
import json
import uuid


def json_default(obj: object) -> object:
    """JSON serializer for objects not serializable by default json code."""
    if isinstance(obj, (datetime.date, datetime.datetime)):
        return obj.isoformat()
    if isinstance(obj, decimal.Decimal):
        if obj == obj.to_integral_value():
            return int(obj)
        f = float(obj)
        if decimal.Decimal(str(f)) != obj:
            return str(obj)
        return f
    if isinstance(obj, uuid.UUID):
        return str(obj)
    if isinstance(obj, bytes):
        try:
            return obj.decode("utf-8")
        except UnicodeDecodeError:
            return base64.b64encode(obj).decode("utf-8")
    if isinstance(obj, (set, frozenset)):
        return sorted(obj, key=str)
    return str(obj)


def to_json_text(value: object) -> str:
    """Serialize any value to compact JSON, never raising for odd leaves."""
    try:
        return json.dumps(value, default=json_default, ensure_ascii=True, sort_keys=True)
    except (TypeError, ValueError):
        # Circular references and non-string keys end up here.
        return str(value)
