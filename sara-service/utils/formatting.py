import re
from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, Iterable, List

from bson import Decimal128, ObjectId

from models import ColumnSpec

_CAMEL_BOUNDARY = re.compile(r"(?<=[a-z0-9])(?=[A-Z])")


def pretty(key: str) -> str:
    """
    Turn a field key into a display name.

    Underscores and camelCase boundaries both become spaces and every word is
    capitalised, so ``giftAmount`` and ``gift_amount`` both read "Gift Amount".
    """
    spaced = _CAMEL_BOUNDARY.sub(" ", str(key).replace("_", " "))
    return " ".join(word[:1].upper() + word[1:] for word in spaced.split())


def columns_from_keys(keys: Iterable[str]) -> List[ColumnSpec]:
    """Build column specs in the given key order."""
    return [ColumnSpec(key=key, name=pretty(key)) for key in keys]


def to_json_safe(data: Any) -> Any:
    """Convert BSON and SQL driver values in query results to JSON-serializable ones."""
    if isinstance(data, list):
        return [to_json_safe(item) for item in data]
    if isinstance(data, dict):
        return {k: to_json_safe(v) for k, v in data.items()}
    if isinstance(data, ObjectId):
        return str(data)
    if isinstance(data, (datetime, date)):
        return data.isoformat()
    if isinstance(data, Decimal128):
        return float(data.to_decimal())
    if isinstance(data, Decimal):
        return float(data)
    return data


def column_keys(columns: Iterable[Any]) -> List[str]:
    """
    Accept columns as plain keys or as ``{"key": ..., "name": ...}`` objects
    (the shape the query endpoint returns) and give back the keys.
    """
    keys = []
    for col in columns or []:
        if isinstance(col, dict):
            key = col.get("key") or col.get("name")
        elif isinstance(col, ColumnSpec):
            key = col.key
        else:
            key = col
        if key is not None:
            keys.append(str(key))
    return keys


def row_keys(rows: List[Dict[str, Any]]) -> List[str]:
    return list(rows[0].keys()) if rows else []
