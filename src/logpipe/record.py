"""
logpipe Record Model

A Record is one parsed log entry: an immutable mapping of field names to
values drawn from a closed set of kinds (string, number, boolean, null,
object, array). Every consumer dispatches on ValueKind so that a new kind
cannot slip through unhandled.

Also hosts the canonical field names shared by the text renderer and the
merge orchestrator, and the timestamp interpretation both of them apply.
"""

from __future__ import annotations

import math
import re
from collections.abc import Iterator, Mapping
from datetime import datetime, timezone
from enum import Enum
from typing import Any

import orjson


# =============================================================================
# Canonical Field Names
# =============================================================================


TIMESTAMP_KEYS = ("time", "ts", "timestamp")
LEVEL_KEYS = ("level", "lvl", "severity")
MESSAGE_KEYS = ("message", "msg", "text")

CANONICAL_KEYS = frozenset(TIMESTAMP_KEYS + LEVEL_KEYS + MESSAGE_KEYS)

# Reserved field injected by the merge orchestrator
SOURCE_FIELD = "_source"


# =============================================================================
# Value Kinds
# =============================================================================


class ValueKind(Enum):
    """Kinds of value a Record field may hold"""
    STRING = "string"
    NUMBER = "number"
    BOOLEAN = "boolean"
    NULL = "null"
    OBJECT = "object"
    ARRAY = "array"


def kind_of(value: Any) -> ValueKind:
    """
    Classify a field value.

    Raises:
        TypeError: If the value is not one of the supported kinds
    """
    if value is None:
        return ValueKind.NULL
    # bool is a subclass of int, check it first
    if isinstance(value, bool):
        return ValueKind.BOOLEAN
    if isinstance(value, (int, float)):
        return ValueKind.NUMBER
    if isinstance(value, str):
        return ValueKind.STRING
    if isinstance(value, Mapping):
        return ValueKind.OBJECT
    if isinstance(value, (list, tuple)):
        return ValueKind.ARRAY
    raise TypeError(f"Unsupported record value type: {type(value).__name__}")


def _is_integral(value: float) -> bool:
    return math.isfinite(value) and float(value).is_integer() and abs(value) < 1e21


def _format_number(value: float) -> str:
    if _is_integral(value):
        return str(int(value))
    return repr(float(value))


def canonical_string(value: Any) -> str:
    """
    Render a field value as the single string form used for comparison,
    statistics and text output.

    Examples:
        >>> canonical_string(10.0)
        '10'
        >>> canonical_string(True)
        'true'
        >>> canonical_string({"b": 1.0, "a": None})
        '{"a":null,"b":1}'
    """
    kind = kind_of(value)

    if kind is ValueKind.STRING:
        return value
    if kind is ValueKind.NUMBER:
        return _format_number(value)
    if kind is ValueKind.BOOLEAN:
        return "true" if value else "false"
    if kind is ValueKind.NULL:
        return "null"
    if kind is ValueKind.OBJECT or kind is ValueKind.ARRAY:
        return orjson.dumps(to_plain(value), option=orjson.OPT_SORT_KEYS).decode("utf-8")
    raise AssertionError(f"Unhandled value kind: {kind}")


def to_plain(value: Any) -> Any:
    """
    Convert nested Records and tuples into dicts and lists for serialization.

    Integral numbers become ints so JSON output writes 10 rather than 10.0,
    matching the canonical string form.
    """
    kind = kind_of(value)
    if kind is ValueKind.OBJECT:
        return {key: to_plain(item) for key, item in value.items()}
    if kind is ValueKind.ARRAY:
        return [to_plain(item) for item in value]
    if kind is ValueKind.NUMBER and _is_integral(value):
        return int(value)
    return value


# =============================================================================
# Record
# =============================================================================


class Record(Mapping[str, Any]):
    """
    Immutable mapping from field name to value.

    Records are never modified after parsing. The merge orchestrator derives
    a tagged copy with with_source() instead of mutating the original.
    """

    __slots__ = ("_fields",)

    def __init__(self, fields: Mapping[str, Any] | None = None):
        self._fields: dict[str, Any] = dict(fields) if fields else {}

    def __getitem__(self, key: str) -> Any:
        return self._fields[key]

    def __iter__(self) -> Iterator[str]:
        return iter(self._fields)

    def __len__(self) -> int:
        return len(self._fields)

    def __repr__(self) -> str:
        return f"Record({self._fields!r})"

    def with_source(self, source: str) -> Record:
        """Return a copy of this record tagged with its source label"""
        return Record({**self._fields, SOURCE_FIELD: source})

    def first_present(self, keys: tuple[str, ...]) -> tuple[str, Any] | None:
        """Return (key, value) for the first of keys present in the record"""
        for key in keys:
            if key in self._fields:
                return key, self._fields[key]
        return None

    def extract_string(self, keys: tuple[str, ...]) -> str:
        """Canonical string of the first present key, or "" if none exist"""
        found = self.first_present(keys)
        if found is None:
            return ""
        return canonical_string(found[1])

    def to_dict(self) -> dict[str, Any]:
        """Convert to a plain dictionary for JSON serialization"""
        return to_plain(self._fields)


# =============================================================================
# Timestamp Interpretation
# =============================================================================


# Unix epoch values at or below this are not treated as timestamps
EPOCH_THRESHOLD = 1e9

_RFC3339_PATTERN = re.compile(
    r"^(\d{4}-\d{2}-\d{2})[Tt](\d{2}:\d{2}:\d{2})(?:\.(\d+))?([Zz]|[+-]\d{2}:\d{2})$"
)


def _parse_rfc3339(raw: str) -> datetime | None:
    match = _RFC3339_PATTERN.match(raw)
    if not match:
        return None

    date_part, time_part, fraction, offset = match.groups()
    # fromisoformat only understands microsecond precision
    fraction = f".{fraction[:6].ljust(6, '0')}" if fraction else ""
    if offset in ("Z", "z"):
        offset = "+00:00"

    try:
        return datetime.fromisoformat(f"{date_part}T{time_part}{fraction}{offset}")
    except ValueError:
        return None


def interpret_timestamp(raw: str) -> datetime | None:
    """
    Interpret a raw timestamp string.

    Accepts, in order:
    - A Unix epoch in seconds (possibly fractional) greater than 1e9,
      truncated to whole seconds and returned in UTC
    - An RFC 3339 date-time, returned in its own UTC offset

    Returns:
        A timezone-aware datetime, or None if the value is not a timestamp
    """
    if not raw:
        return None

    try:
        number = float(raw)
    except ValueError:
        number = None

    if number is not None and number > EPOCH_THRESHOLD:
        try:
            return datetime.fromtimestamp(int(number), tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None

    return _parse_rfc3339(raw)
