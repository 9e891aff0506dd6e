"""
Query evaluation for the bundled SQLite client.

Records are stored as JSON payloads, so queries are evaluated in Python
over decoded records. The supported language is a small Mongo-style
subset:

- Equality: {"name": "A"}, dotted paths {"address.city": "Berlin"}
- Comparison: $eq, $ne, $gt, $gte, $lt, $lte
- Membership: $in, $nin
- Presence: $exists
- Pattern: $regex (str or compiled pattern)
- Logic: $or, $and (top level), $not (per field)

List-valued fields match when any element matches, except for direct
list-to-list equality.

Invariants:
    - Unknown operators raise ValueError (never silently match)
    - Comparisons between incompatible types never match
"""

from __future__ import annotations

import re
from datetime import datetime
from typing import Any, Callable

_MISSING = object()


def get_path(record: dict[str, Any], path: str) -> Any:
    """Resolve a dotted path in a record; returns _MISSING if absent."""
    current: Any = record
    for part in path.split("."):
        if isinstance(current, dict) and part in current:
            current = current[part]
        elif isinstance(current, list) and part.isdigit() and int(part) < len(current):
            current = current[int(part)]
        else:
            return _MISSING
    return current


def _is_operator_dict(value: Any) -> bool:
    return isinstance(value, dict) and bool(value) and all(k.startswith("$") for k in value)


def _any_value(value: Any, predicate: Callable[[Any], bool]) -> bool:
    if isinstance(value, list):
        return predicate(value) or any(predicate(v) for v in value)
    return predicate(value)


def _equals(value: Any, expected: Any) -> bool:
    if value is _MISSING:
        return expected is None
    if isinstance(value, list) and not isinstance(expected, list):
        return any(v == expected for v in value)
    return value == expected


def _compare(value: Any, expected: Any, op: Callable[[Any, Any], bool]) -> bool:
    if value is _MISSING or value is None:
        return False

    def check(v: Any) -> bool:
        if isinstance(v, bool) != isinstance(expected, bool):
            return False
        try:
            return op(v, expected)
        except TypeError:
            return False

    if isinstance(value, list):
        return any(check(v) for v in value)
    return check(value)


def _regex(value: Any, pattern: Any) -> bool:
    compiled = pattern if isinstance(pattern, re.Pattern) else re.compile(pattern)

    def check(v: Any) -> bool:
        return isinstance(v, str) and compiled.search(v) is not None

    if isinstance(value, list):
        return any(check(v) for v in value)
    return check(value)


def _match_operators(value: Any, operators: dict[str, Any]) -> bool:
    for op, expected in operators.items():
        if op == "$eq":
            ok = _equals(value, expected)
        elif op == "$ne":
            ok = not _equals(value, expected)
        elif op == "$gt":
            ok = _compare(value, expected, lambda a, b: a > b)
        elif op == "$gte":
            ok = _compare(value, expected, lambda a, b: a >= b)
        elif op == "$lt":
            ok = _compare(value, expected, lambda a, b: a < b)
        elif op == "$lte":
            ok = _compare(value, expected, lambda a, b: a <= b)
        elif op == "$in":
            ok = value is not _MISSING and any(_equals(value, e) for e in expected)
        elif op == "$nin":
            ok = value is _MISSING or not any(_equals(value, e) for e in expected)
        elif op == "$exists":
            ok = (value is not _MISSING) == bool(expected)
        elif op == "$regex":
            ok = value is not _MISSING and _regex(value, expected)
        elif op == "$not":
            ok = not _match_field(value, expected)
        else:
            raise ValueError(f"Unsupported query operator: {op}")
        if not ok:
            return False
    return True


def _match_field(value: Any, condition: Any) -> bool:
    if _is_operator_dict(condition):
        return _match_operators(value, condition)
    if isinstance(condition, re.Pattern):
        return value is not _MISSING and _regex(value, condition)
    return _equals(value, condition)


def matches(record: dict[str, Any], query: dict[str, Any] | None) -> bool:
    """Whether a record satisfies a query.

    Args:
        record: Decoded record
        query: Query mapping (None or {} matches everything)

    Raises:
        ValueError: On unsupported operators
    """
    if not query:
        return True
    for key, condition in query.items():
        if key == "$or":
            if not any(matches(record, sub) for sub in condition):
                return False
        elif key == "$and":
            if not all(matches(record, sub) for sub in condition):
                return False
        elif key.startswith("$"):
            raise ValueError(f"Unsupported top-level query operator: {key}")
        elif not _match_field(get_path(record, key), condition):
            return False
    return True


def _sort_key(value: Any) -> tuple:
    if value is _MISSING or value is None:
        return (0,)
    if isinstance(value, bool):
        return (1, int(value))
    if isinstance(value, (int, float)):
        return (2, value)
    if isinstance(value, str):
        return (3, value)
    if isinstance(value, datetime):
        return (4, value.timestamp())
    return (5, repr(value))


def parse_sort(sort: str | list[str] | tuple[str, ...] | None) -> list[tuple[str, bool]]:
    """Normalize a sort spec into (field, descending) pairs."""
    if not sort:
        return []
    specs = [sort] if isinstance(sort, str) else list(sort)
    result = []
    for spec in specs:
        if not isinstance(spec, str) or not spec:
            continue
        if spec.startswith("-"):
            result.append((spec[1:], True))
        else:
            result.append((spec.lstrip("+"), False))
    return result


def sort_records(
    records: list[dict[str, Any]],
    sort: str | list[str] | tuple[str, ...] | None,
) -> list[dict[str, Any]]:
    """Sort records by one or more fields (stable)."""
    ordered = list(records)
    for field, descending in reversed(parse_sort(sort)):
        ordered.sort(key=lambda r, f=field: _sort_key(get_path(r, f)), reverse=descending)
    return ordered
