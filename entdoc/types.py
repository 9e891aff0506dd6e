"""
Field type descriptors and value predicates for entdoc.

This module defines the closed set of field types a schema can use:
- BasicType: str, number, bool, bytes, date
- TypedArray: list whose elements share one non-array type
- DocumentRef: reference to another persisted document class
- EmbeddedRef: nested embedded document class
- CustomType: free-form value with author-supplied marshalling

Declared type tokens are turned into descriptors once, at schema
compile time, by classify_declared_type(). Every consumer matches on the
descriptor class instead of inspecting raw tokens.

Invariants:
    - None is a valid value for every type (required-ness is separate)
    - NUMBER never accepts bool
    - TypedArray elements are never arrays or custom types
"""

from __future__ import annotations

import math
from dataclasses import dataclass
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable, Union

from .errors import SchemaError

# Formats tried after ISO 8601 when coercing date strings
DATE_FORMATS = (
    "%Y/%m/%d",
    "%Y/%m/%d %H:%M:%S",
    "%Y-%m-%d %H:%M:%S",
    "%B %d, %Y",
    "%b %d, %Y",
    "%d %B %Y",
    "%m/%d/%Y",
)


class BasicKind(Enum):
    """Supported primitive field kinds."""

    STRING = "str"
    NUMBER = "number"
    BOOLEAN = "bool"
    BINARY = "bytes"
    DATE = "date"

    @classmethod
    def from_str(cls, value: str) -> BasicKind:
        """Convert string representation to BasicKind.

        Raises:
            ValueError: If value is not a valid kind
        """
        for kind in cls:
            if kind.value == value:
                return kind
        valid = [k.value for k in cls]
        raise ValueError(f"Invalid field kind '{value}'. Valid kinds: {valid}")


class DocumentKind(Enum):
    """Capability a document class declares for itself."""

    DOCUMENT = "document"
    EMBEDDED = "embedded"


_PYTHON_TYPES: dict[Any, BasicKind] = {
    str: BasicKind.STRING,
    int: BasicKind.NUMBER,
    float: BasicKind.NUMBER,
    bool: BasicKind.BOOLEAN,
    bytes: BasicKind.BINARY,
    datetime: BasicKind.DATE,
}

# Tokens that stand for "any object"/"any array"
_WILDCARD_TOKENS = (dict, list, object)


@dataclass(frozen=True)
class BasicType:
    """A primitive value type."""

    kind: BasicKind

    @property
    def name(self) -> str:
        return self.kind.value


@dataclass(frozen=True)
class DocumentRef:
    """Reference to a persisted document class (stored as its id)."""

    target: type

    @property
    def name(self) -> str:
        return self.target.__name__


@dataclass(frozen=True)
class EmbeddedRef:
    """Nested embedded document (stored inline)."""

    target: type

    @property
    def name(self) -> str:
        return self.target.__name__


@dataclass(frozen=True)
class CustomType:
    """Free-form value; the schema entry supplies to_data/from_data/validate."""

    @property
    def name(self) -> str:
        return "custom"


ElementType = Union[BasicType, DocumentRef, EmbeddedRef]


@dataclass(frozen=True)
class TypedArray:
    """List whose elements all share one type."""

    element: ElementType

    @property
    def name(self) -> str:
        return f"[{self.element.name}]"


TypeDescriptor = Union[BasicType, DocumentRef, EmbeddedRef, TypedArray, CustomType]


def document_kind_of(token: Any) -> DocumentKind | None:
    """Return the document capability of a class token, if it has one."""
    if isinstance(token, type):
        kind = getattr(token, "DOCUMENT_KIND", None)
        if isinstance(kind, DocumentKind):
            return kind
    return None


def _classify_element(key: str, token: Any) -> ElementType | CustomType:
    if isinstance(token, str):
        try:
            return BasicType(BasicKind.from_str(token))
        except ValueError:
            pass
    elif isinstance(token, BasicKind):
        return BasicType(token)
    elif isinstance(token, type) and token in _PYTHON_TYPES:
        return BasicType(_PYTHON_TYPES[token])
    elif isinstance(token, type) and token in _WILDCARD_TOKENS:
        return CustomType()

    kind = document_kind_of(token)
    if kind is DocumentKind.DOCUMENT:
        return DocumentRef(token)
    if kind is DocumentKind.EMBEDDED:
        return EmbeddedRef(token)

    raise SchemaError(
        f"Unsupported type or bad variable for property '{key}'. "
        f"Remember, non-persisted properties must start with an underscore (_). Got: {token!r}",
        field_name=key,
    )


def classify_declared_type(key: str, token: Any) -> TypeDescriptor:
    """Classify a declared type token into a type descriptor.

    Args:
        key: Field name (used in error messages)
        token: Declared type, e.g. str, [int], MyDocument, dict

    Returns:
        The type descriptor

    Raises:
        SchemaError: If the token is not a supported type, or is an array
            of custom-type elements
    """
    if isinstance(token, (list, tuple)):
        if len(token) == 0:
            return CustomType()
        if len(token) > 1:
            raise SchemaError(
                f"Unsupported type for property '{key}'. Only one element type "
                f"can be specified in arrays, but multiple found: {token!r}",
                field_name=key,
            )
        element = _classify_element(key, token[0])
        if isinstance(element, CustomType):
            raise SchemaError(
                f"Document property '{key}' is array-type with custom-type elements. "
                f"Custom-type dict/list entries must be defined as: "
                f"{{'{key}': {{'type': dict, 'validate': ..., 'from_data': ..., 'to_data': ...}}}}",
                field_name=key,
            )
        return TypedArray(element)

    return _classify_element(key, token)


# ---------------------------------------------------------------------------
# Value predicates
# ---------------------------------------------------------------------------


def is_number(value: Any) -> bool:
    """Whether value is a finite int/float (bool excluded)."""
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        return False
    return math.isfinite(value)


def parse_date(value: Any) -> datetime | None:
    """Coerce a date-like value to a datetime.

    Accepts datetimes, Unix millisecond timestamps and date strings
    (ISO 8601 or one of DATE_FORMATS). Returns None if not date-like.
    """
    if isinstance(value, datetime):
        return value
    if is_number(value):
        try:
            return datetime.fromtimestamp(value / 1000.0, tz=timezone.utc)
        except (OverflowError, OSError, ValueError):
            return None
    if isinstance(value, str):
        text = value.strip()
        if not text:
            return None
        try:
            return datetime.fromisoformat(text.replace("Z", "+00:00"))
        except ValueError:
            pass
        for fmt in DATE_FORMATS:
            try:
                return datetime.strptime(text, fmt)
            except ValueError:
                continue
    return None


def is_date_like(value: Any) -> bool:
    """Whether value is a datetime or can be coerced to one."""
    return parse_date(value) is not None


def _is_basic(value: Any, kind: BasicKind) -> bool:
    if kind is BasicKind.STRING:
        return isinstance(value, str)
    if kind is BasicKind.NUMBER:
        return is_number(value)
    if kind is BasicKind.BOOLEAN:
        return isinstance(value, bool)
    if kind is BasicKind.BINARY:
        return isinstance(value, (bytes, bytearray, memoryview))
    if kind is BasicKind.DATE:
        return is_date_like(value)
    raise ValueError(f"Unsupported basic kind: {kind}")


def _is_element(value: Any, descriptor: ElementType, is_native_id: Callable[[Any], bool]) -> bool:
    if isinstance(descriptor, BasicType):
        return _is_basic(value, descriptor.kind)
    if isinstance(descriptor, DocumentRef):
        return isinstance(value, descriptor.target) or is_native_id(value)
    if isinstance(descriptor, EmbeddedRef):
        return isinstance(value, descriptor.target)
    raise ValueError(f"Unsupported element type: {descriptor!r}")


def value_matches_type(
    value: Any,
    descriptor: TypeDescriptor,
    is_native_id: Callable[[Any], bool],
) -> bool:
    """Check whether a runtime value conforms to a type descriptor.

    Args:
        value: The value to check
        descriptor: Resolved field type
        is_native_id: Storage predicate recognizing raw document ids

    Returns:
        True if the value is acceptable (None always is)
    """
    if value is None:
        return True
    if isinstance(descriptor, CustomType):
        return True
    if isinstance(descriptor, TypedArray):
        if not isinstance(value, list):
            return False
        return all(v is not None and _is_element(v, descriptor.element, is_native_id) for v in value)
    return _is_element(value, descriptor, is_native_id)


def is_empty_value(value: Any) -> bool:
    """Whether a value counts as empty for required-ness.

    Numbers, datetimes and booleans are never empty; other values are
    empty when they have no content (empty str, list, dict, ...).
    """
    if value is None:
        return True
    if isinstance(value, (bool, int, float, datetime)):
        return False
    try:
        return len(value) == 0
    except TypeError:
        return False


def describe_value(value: Any) -> str:
    """Human-readable description of a value's runtime type."""
    if isinstance(value, list):
        return "[" + ", ".join(type(v).__name__ for v in value) + "]"
    return type(value).__name__
