"""
Field validation for entdoc documents.

This module provides validation utilities:
- Per-field checks against a compiled SchemaEntry
- Helpful error messages naming class, field and offending value
- Field name suggestions for unknown data keys

Checks run in a fixed order and the first failure wins:
    1. type conformance
    2. required
    3. match
    4. choices
    5. min / max
    6. custom validate()

Invariants:
    - Validation errors are deterministic
    - Error messages include context for fixing
    - Unknown keys suggest similar valid keys
"""

from __future__ import annotations

from collections.abc import Callable, Iterable
from datetime import timezone
from difflib import get_close_matches
from typing import Any, List

from .errors import ValidationError
from .schema import SchemaEntry
from .types import BasicKind, BasicType, describe_value, is_empty_value, parse_date, value_matches_type


def _comparable(value: Any, is_date: bool) -> Any:
    """Bring a bound or value into a form that can be ordered."""
    if not is_date:
        return value
    converted = parse_date(value)
    if converted is not None and converted.tzinfo is None:
        # Naive datetimes are ordered as UTC
        return converted.replace(tzinfo=timezone.utc)
    return converted


def _fail(class_name: str, key: str, message: str) -> ValidationError:
    return ValidationError(message, class_name=class_name, field_name=key)


def check_field(
    class_name: str,
    entry: SchemaEntry,
    value: Any,
    is_native_id: Callable[[Any], bool],
) -> None:
    """Validate one field value.

    Args:
        class_name: Owning document class name
        entry: Compiled schema entry
        value: Current field value
        is_native_id: Storage predicate recognizing raw document ids

    Raises:
        ValidationError: On the first failed check
    """
    key = entry.key

    if not value_matches_type(value, entry.type, is_native_id):
        raise _fail(
            class_name,
            key,
            f"Value assigned to {class_name}.{key} should be {entry.type.name}, "
            f"got {describe_value(value)}",
        )

    if entry.required and is_empty_value(value):
        raise _fail(class_name, key, f"Key {class_name}.{key} is required, but got {value!r}")

    if value is None:
        return

    if entry.match is not None:
        candidates = value if isinstance(value, list) else [value]
        for candidate in candidates:
            if isinstance(candidate, str) and entry.match.search(candidate) is None:
                raise _fail(
                    class_name,
                    key,
                    f"Value assigned to {class_name}.{key} does not match the regex "
                    f"{entry.match.pattern!r}. Value was {candidate!r}",
                )

    is_date = isinstance(entry.type, BasicType) and entry.type.kind is BasicKind.DATE

    if entry.choices is not None:
        allowed = [_comparable(c, is_date) for c in entry.choices]
        if _comparable(value, is_date) not in allowed:
            raise _fail(
                class_name,
                key,
                f"Value assigned to {class_name}.{key} should be in choices "
                f"{list(entry.choices)!r}, got {value!r}",
            )

    if entry.min is not None and _comparable(value, is_date) < _comparable(entry.min, is_date):
        raise _fail(
            class_name,
            key,
            f"Value assigned to {class_name}.{key} is less than min, {entry.min!r}, got {value!r}",
        )

    if entry.max is not None and _comparable(value, is_date) > _comparable(entry.max, is_date):
        raise _fail(
            class_name,
            key,
            f"Value assigned to {class_name}.{key} is greater than max, {entry.max!r}, got {value!r}",
        )

    if entry.validate is not None and not entry.validate(value):
        raise _fail(
            class_name,
            key,
            f"Value assigned to {class_name}.{key} was rejected by custom validate(). "
            f"Value was {value!r}",
        )


def suggest_fields(key: str, known: Iterable[str], limit: int = 3) -> List[str]:
    """Suggest schema keys similar to an unknown data key.

    Args:
        key: The unknown key
        known: Valid schema keys
        limit: Maximum suggestions

    Returns:
        List of suggested field names
    """
    known = [k for k in known if not k.startswith("_")]
    matches = get_close_matches(key, known, n=limit)

    # Also include case-insensitive prefix matches
    prefix_matches = [k for k in known if k.lower().startswith(key.lower())]

    return list(dict.fromkeys(matches + prefix_matches))[:limit]

