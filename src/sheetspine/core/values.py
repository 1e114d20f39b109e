"""
Tagged value model for everything that crosses the compression boundary.

Spreadsheet rows mix strings, numbers, booleans, empty cells and dates.
Plain JSON silently turns dates into strings and tuples into lists, so a
value read back from the chunk store would not equal the value written.
``to_tagged`` maps each supported Python value onto one explicit
``ValueKind`` and encodes the non-JSON kinds as tagged objects;
``from_tagged`` reverses it exactly.

Architecture:
    ::

        ValueKind     JSON form
        ─────────     ─────────────────────────────────────────
        NULL          null
        BOOL          true / false
        INT / FLOAT   number
        STR           string
        LIST          [ ... ]
        MAP           { ... }   (or {"__sv__": "map", "v": {...}}
                                 when a key collides with the tag)
        TUPLE         {"__sv__": "tuple",    "v": [...]}
        DATETIME      {"__sv__": "datetime", "v": "<iso-8601>"}
        DATE          {"__sv__": "date",     "v": "<iso-8601>"}
        DECIMAL       {"__sv__": "decimal",  "v": "<str>"}
        BYTES         {"__sv__": "bytes",    "v": "<base64>"}

    Anything else (sets, objects, non-string map keys) raises
    ``UnsupportedValueError``; the chunk store turns that into ``put() ->
    False``.

Examples:
    >>> from datetime import date
    >>> data = dumps([{"AWARD": "X1", "PROJECT_END": date(2025, 9, 30)}])
    >>> loads(data)[0]["PROJECT_END"]
    datetime.date(2025, 9, 30)

Tags:
    serialization, tagged-union, sheetspine

Doc-Types:
    - API Reference
"""

from __future__ import annotations

import base64
import json
from datetime import date, datetime
from decimal import Decimal
from enum import Enum
from typing import Any

from sheetspine.core.errors import UnsupportedValueError

TAG = "__sv__"


class ValueKind(str, Enum):
    """Every kind of value the model can carry."""

    NULL = "null"
    BOOL = "bool"
    INT = "int"
    FLOAT = "float"
    STR = "str"
    LIST = "list"
    MAP = "map"
    TUPLE = "tuple"
    DATETIME = "datetime"
    DATE = "date"
    DECIMAL = "decimal"
    BYTES = "bytes"


def kind_of(value: Any) -> ValueKind:
    """Classify a Python value, raising for unsupported types."""
    match value:
        case None:
            return ValueKind.NULL
        case bool():
            return ValueKind.BOOL
        case int():
            return ValueKind.INT
        case float():
            return ValueKind.FLOAT
        case str():
            return ValueKind.STR
        case list():
            return ValueKind.LIST
        case tuple():
            return ValueKind.TUPLE
        case dict():
            return ValueKind.MAP
        # datetime is a subclass of date: order matters
        case datetime():
            return ValueKind.DATETIME
        case date():
            return ValueKind.DATE
        case Decimal():
            return ValueKind.DECIMAL
        case bytes() | bytearray():
            return ValueKind.BYTES
        case _:
            raise UnsupportedValueError(
                f"Cannot cache value of type {type(value).__name__}"
            )


def to_tagged(value: Any) -> Any:
    """Convert a value into its JSON-compatible tagged form."""
    kind = kind_of(value)

    if kind in (ValueKind.NULL, ValueKind.BOOL, ValueKind.INT, ValueKind.FLOAT, ValueKind.STR):
        return value
    if kind is ValueKind.LIST:
        return [to_tagged(v) for v in value]
    if kind is ValueKind.TUPLE:
        return {TAG: kind.value, "v": [to_tagged(v) for v in value]}
    if kind is ValueKind.MAP:
        converted = {}
        for k, v in value.items():
            if not isinstance(k, str):
                raise UnsupportedValueError(
                    f"Map keys must be strings, got {type(k).__name__}"
                )
            converted[k] = to_tagged(v)
        if TAG in converted:
            return {TAG: kind.value, "v": converted}
        return converted
    if kind in (ValueKind.DATETIME, ValueKind.DATE):
        return {TAG: kind.value, "v": value.isoformat()}
    if kind is ValueKind.DECIMAL:
        return {TAG: kind.value, "v": str(value)}
    # BYTES
    return {TAG: kind.value, "v": base64.b64encode(bytes(value)).decode("ascii")}


def from_tagged(obj: Any) -> Any:
    """Rebuild the original value from its tagged form."""
    if isinstance(obj, list):
        return [from_tagged(v) for v in obj]
    if not isinstance(obj, dict):
        return obj
    if TAG not in obj:
        return {k: from_tagged(v) for k, v in obj.items()}

    kind = ValueKind(obj[TAG])
    payload = obj["v"]
    match kind:
        case ValueKind.MAP:
            return {k: from_tagged(v) for k, v in payload.items()}
        case ValueKind.TUPLE:
            return tuple(from_tagged(v) for v in payload)
        case ValueKind.DATETIME:
            return datetime.fromisoformat(payload)
        case ValueKind.DATE:
            return date.fromisoformat(payload)
        case ValueKind.DECIMAL:
            return Decimal(payload)
        case ValueKind.BYTES:
            return base64.b64decode(payload)
        case _:
            raise ValueError(f"Unexpected tag {kind.value!r}")


def dumps(value: Any) -> bytes:
    """Serialize a value to compact UTF-8 JSON in tagged form."""
    return json.dumps(to_tagged(value), separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def loads(data: bytes | str) -> Any:
    """Inverse of :func:`dumps`."""
    return from_tagged(json.loads(data))


def item_count(value: Any) -> int:
    """Number of top-level items (rows) in a value; scalars count as one."""
    if isinstance(value, (list, tuple, dict)):
        return len(value)
    return 0 if value is None else 1


def stable_repr(value: Any) -> str:
    """Deterministic text form of a cell value, used for fingerprinting."""
    try:
        return json.dumps(to_tagged(value), sort_keys=True, separators=(",", ":"))
    except UnsupportedValueError:
        return repr(value)


__all__ = [
    "TAG",
    "ValueKind",
    "kind_of",
    "to_tagged",
    "from_tagged",
    "dumps",
    "loads",
    "item_count",
    "stable_repr",
]
