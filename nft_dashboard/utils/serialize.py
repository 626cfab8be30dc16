"""
JSON serialization helpers for cached payloads.

Fetch functions occasionally hand back values ``json`` cannot encode directly
(datetimes, Decimals from price math, tuples, sets). They are converted here
before a payload is written to disk.
"""
from dataclasses import asdict, is_dataclass
from datetime import date, datetime, timezone
from decimal import Decimal
from typing import Any


def serialize_for_json(obj: Any) -> Any:
    """
    Recursively convert an object into JSON-serializable types.

    Handles:
    - Dictionaries (keys coerced to str, values processed recursively)
    - Lists, tuples and sets (converted to lists)
    - datetime/date (ISO strings; naive datetimes are treated as UTC)
    - Decimal (int when integral, float otherwise)
    - Dataclass instances (via asdict)
    - Primitive types - returned as-is
    - Other objects - string representation

    Examples:
        >>> serialize_for_json({"when": datetime(2024, 1, 1, tzinfo=timezone.utc)})
        {'when': '2024-01-01T00:00:00+00:00'}
        >>> serialize_for_json({"price": Decimal("1.50"), "ids": (1, 2)})
        {'price': 1.5, 'ids': [1, 2]}
    """
    if isinstance(obj, dict):
        return {str(k): serialize_for_json(v) for k, v in obj.items()}

    if isinstance(obj, (list, tuple, set, frozenset)):
        return [serialize_for_json(v) for v in obj]

    if isinstance(obj, datetime):
        if obj.tzinfo is None:
            obj = obj.replace(tzinfo=timezone.utc)
        return obj.isoformat()

    if isinstance(obj, date):
        return obj.isoformat()

    if isinstance(obj, Decimal):
        return int(obj) if obj == obj.to_integral_value() else float(obj)

    if is_dataclass(obj) and not isinstance(obj, type):
        return serialize_for_json(asdict(obj))

    if isinstance(obj, (str, int, float, bool)) or obj is None:
        return obj

    try:
        return str(obj)
    except Exception:
        return None
