"""
Schema compilation for entdoc.

This module turns a document class's declarative SCHEMA mapping into an
immutable Schema:
- SchemaEntry: One normalized field (type descriptor + options)
- Schema: Ordered entries plus derived key sets
- compile_schema(): Declaration checks and normalization

A SCHEMA value is either a bare type token or an options mapping with a
"type" key:

    SCHEMA = {
        "name": str,
        "age": {"type": int, "min": 0, "max": 120},
        "tags": [str],
        "owner": User,                      # document reference
        "address": Address,                 # embedded document
        "extra": {"type": dict, "to_data": ..., "from_data": ..., "validate": ...},
    }

Invariants:
    - A class's schema is compiled once and never mutated afterwards
    - Entry order is declaration order (parent entries first)
    - Embedded document schemas contain no document references
    - All declaration problems raise SchemaError at compile time

How to change safely:
    - New options must be added to ALLOWED_OPTIONS and checked in
      _check_options()
    - New type descriptors must be handled in every isinstance() chain
"""

from __future__ import annotations

import copy
import logging
import re
from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass
from datetime import datetime
from types import MappingProxyType
from typing import Any

from .errors import SchemaError
from .types import (
    BasicKind,
    BasicType,
    CustomType,
    DocumentRef,
    EmbeddedRef,
    TypedArray,
    TypeDescriptor,
    classify_declared_type,
    is_number,
    parse_date,
)

logger = logging.getLogger(__name__)

ID_KEY = "_id"
PRIVATE_PREFIX = "_"

ALLOWED_OPTIONS = frozenset(
    {
        "type",
        "default",
        "required",
        "unique",
        "indexed",
        "private",
        "min",
        "max",
        "choices",
        "match",
        "validate",
        "to_data",
        "from_data",
    }
)
BOOLEAN_OPTIONS = ("required", "unique", "indexed", "private")
CUSTOM_TYPE_FUNCTIONS = ("to_data", "from_data", "validate")


class _NoDefault:
    def __repr__(self) -> str:
        return "NO_DEFAULT"


NO_DEFAULT: Any = _NoDefault()


@dataclass(frozen=True)
class SchemaEntry:
    """One field of a compiled schema.

    Attributes:
        key: Field name
        type: Resolved type descriptor
        default: Literal default, zero-argument factory, or NO_DEFAULT
        required: Value must be non-empty
        unique: Storage enforces a unique index
        indexed: Storage keeps a non-unique index
        private: Excluded from to_json()
        min: Lower bound (numbers/dates)
        max: Upper bound (numbers/dates)
        choices: Allowed values
        match: Pattern string values must match
        validate: User predicate
        to_data: Custom-type serializer
        from_data: Custom-type deserializer
        implicit_list: Default to a fresh [] when no default is declared
    """

    key: str
    type: TypeDescriptor
    default: Any = NO_DEFAULT
    required: bool = False
    unique: bool = False
    indexed: bool = False
    private: bool = False
    min: Any = None
    max: Any = None
    choices: tuple[Any, ...] | None = None
    match: re.Pattern | None = None
    validate: Callable[[Any], Any] | None = None
    to_data: Callable[[Any], Any] | None = None
    from_data: Callable[[Any], Any] | None = None
    implicit_list: bool = False

    @property
    def is_array(self) -> bool:
        return isinstance(self.type, TypedArray) or (isinstance(self.type, CustomType) and self.implicit_list)

    @property
    def is_custom(self) -> bool:
        return isinstance(self.type, CustomType)

    @property
    def is_document_ref(self) -> bool:
        return isinstance(self.type, DocumentRef)

    @property
    def is_document_ref_array(self) -> bool:
        return isinstance(self.type, TypedArray) and isinstance(self.type.element, DocumentRef)

    @property
    def is_embedded(self) -> bool:
        return isinstance(self.type, EmbeddedRef)

    @property
    def is_embedded_array(self) -> bool:
        return isinstance(self.type, TypedArray) and isinstance(self.type.element, EmbeddedRef)

    @property
    def is_date(self) -> bool:
        return isinstance(self.type, BasicType) and self.type.kind is BasicKind.DATE

    @property
    def is_date_array(self) -> bool:
        return (
            isinstance(self.type, TypedArray)
            and isinstance(self.type.element, BasicType)
            and self.type.element.kind is BasicKind.DATE
        )

    @property
    def target(self) -> type | None:
        """Referenced document class for ref/embedded fields."""
        descriptor = self.type.element if isinstance(self.type, TypedArray) else self.type
        if isinstance(descriptor, (DocumentRef, EmbeddedRef)):
            return descriptor.target
        return None

    def get_default(self) -> Any:
        """Produce a fresh default value for one instance."""
        if self.key == ID_KEY:
            return None
        if self.default is NO_DEFAULT:
            return [] if self.is_array else None
        if callable(self.default):
            return self.default()
        if isinstance(self.default, (list, dict, set)):
            return copy.deepcopy(self.default)
        return self.default


class Schema:
    """Compiled, immutable schema of one document class.

    Example:
        >>> schema = User.schema()
        >>> schema.keys
        ('_id', 'name', 'age', 'tags')
        >>> schema.array_keys
        ('tags',)
    """

    def __init__(self, owner: str, entries: Mapping[str, SchemaEntry]) -> None:
        self.owner = owner
        self._entries = MappingProxyType(dict(entries))
        all_entries = tuple(self._entries.values())

        self.keys: tuple[str, ...] = tuple(self._entries)
        self.all_entries: tuple[SchemaEntry, ...] = all_entries
        self.entries_no_id = tuple(e for e in all_entries if e.key != ID_KEY)
        self.json_entries = tuple(e for e in all_entries if not e.private)

        self.array_keys = tuple(e.key for e in all_entries if e.is_array)
        self.single_keys = tuple(e.key for e in all_entries if not e.is_array)
        self.ref_keys = tuple(e.key for e in all_entries if e.is_document_ref)
        self.ref_array_keys = tuple(e.key for e in all_entries if e.is_document_ref_array)
        self.embedded_keys = tuple(
            e.key for e in all_entries if e.is_embedded or e.is_embedded_array
        )
        self.non_embedded_keys = tuple(k for k in self.keys if k not in self.embedded_keys)
        self.custom_keys = tuple(e.key for e in all_entries if e.is_custom)
        self.index_entries = tuple(e for e in all_entries if e.unique or e.indexed)

    def __getitem__(self, key: str) -> SchemaEntry:
        return self._entries[key]

    def __contains__(self, key: object) -> bool:
        return key in self._entries

    def __iter__(self) -> Iterator[str]:
        return iter(self._entries)

    def __len__(self) -> int:
        return len(self._entries)

    def get(self, key: str) -> SchemaEntry | None:
        return self._entries.get(key)

    def entries(self) -> Mapping[str, SchemaEntry]:
        """Read-only view of key -> entry."""
        return self._entries

    def __repr__(self) -> str:
        return f"Schema({self.owner}, keys={list(self.keys)})"


def _fail(owner: str, key: str, message: str) -> SchemaError:
    return SchemaError(message, class_name=owner, field_name=key)


def _invalid_option(owner: str, key: str, option: str, expected: str, actual: Any) -> SchemaError:
    return _fail(
        owner,
        key,
        f"Invalid value for schema.{option} of {owner}.{key} property. "
        f"Expected {expected}, but got {type(actual).__name__}",
    )


def _basic_kind(descriptor: TypeDescriptor) -> BasicKind | None:
    return descriptor.kind if isinstance(descriptor, BasicType) else None


def _check_options(owner: str, key: str, options: Mapping[str, Any], descriptor: TypeDescriptor) -> None:
    """Validate option keys/values against the field type."""
    for option in options:
        if option not in ALLOWED_OPTIONS:
            raise _fail(
                owner,
                key,
                f"Unknown schema option '{option}' for {owner}.{key}. "
                f"Allowed options are: {', '.join(sorted(ALLOWED_OPTIONS))}",
            )

    for option in BOOLEAN_OPTIONS:
        if option in options and not isinstance(options[option], bool):
            raise _invalid_option(owner, key, option, "bool", options[option])

    if "validate" in options and options["validate"] is not None and not callable(options["validate"]):
        raise _invalid_option(owner, key, "validate", "callable", options["validate"])

    kind = _basic_kind(descriptor)

    if options.get("choices") is not None:
        if not isinstance(options["choices"], (list, tuple)):
            raise _invalid_option(owner, key, "choices", "list", options["choices"])
        if kind not in (BasicKind.STRING, BasicKind.NUMBER, BasicKind.DATE):
            raise _fail(owner, key, f"Option 'choices' of {owner}.{key} is only allowed for str, number and date fields")

    for option in ("min", "max"):
        if options.get(option) is None:
            continue
        if kind is BasicKind.NUMBER:
            if not is_number(options[option]):
                raise _invalid_option(owner, key, option, "number", options[option])
        elif kind is BasicKind.DATE:
            if not (isinstance(options[option], datetime) or is_number(options[option])):
                raise _invalid_option(owner, key, option, "datetime or number", options[option])
        else:
            raise _fail(owner, key, f"Option '{option}' of {owner}.{key} is only allowed for number and date fields")

    if options.get("match") is not None:
        is_string_array = isinstance(descriptor, TypedArray) and _basic_kind(descriptor.element) is BasicKind.STRING
        if kind is not BasicKind.STRING and not is_string_array:
            raise _fail(owner, key, f"Option 'match' of {owner}.{key} is only allowed for str and [str] fields")
        if not isinstance(options["match"], (str, re.Pattern)):
            raise _invalid_option(owner, key, "match", "regex pattern", options["match"])

    if isinstance(descriptor, CustomType):
        missing = [fn for fn in CUSTOM_TYPE_FUNCTIONS if not callable(options.get(fn))]
        if missing:
            raise _fail(
                owner,
                key,
                f"Document property '{key}' of {owner} is custom-type, requiring "
                f"[{', '.join(CUSTOM_TYPE_FUNCTIONS)}] functions (missing: {', '.join(missing)})",
            )
    else:
        for fn in ("to_data", "from_data"):
            if options.get(fn) is not None:
                raise _fail(owner, key, f"Option '{fn}' of {owner}.{key} is only allowed for custom-type fields")


def _normalize_date_default(owner: str, key: str, default: Any) -> Any:
    """Make sure a date field's default yields a datetime."""
    if default is NO_DEFAULT or default is None or isinstance(default, datetime):
        return default
    if callable(default):
        factory = default

        def date_default() -> Any:
            value = factory()
            return parse_date(value) if value is not None else None

        return date_default
    if is_number(default) or isinstance(default, str):
        converted = parse_date(default)
        if converted is not None:
            return converted
    raise _fail(owner, key, f"Invalid default for date property {owner}.{key}: {default!r}")


def _normalize_bound(kind: BasicKind | None, bound: Any) -> Any:
    if bound is not None and kind is BasicKind.DATE and not isinstance(bound, datetime):
        return parse_date(bound)
    return bound


def compile_entry(owner: str, key: str, declaration: Any) -> SchemaEntry:
    """Compile one declared field into a SchemaEntry.

    Args:
        owner: Owning class name (for error messages)
        key: Field name
        declaration: Bare type token or options mapping with "type"

    Raises:
        SchemaError: If the declaration is invalid
    """
    if isinstance(declaration, Mapping) and "type" in declaration:
        options = dict(declaration)
        token = options["type"]
    else:
        options = {}
        token = declaration

    try:
        descriptor = classify_declared_type(key, token)
    except SchemaError as exc:
        raise _fail(owner, key, exc.message) from None

    _check_options(owner, key, options, descriptor)

    kind = _basic_kind(descriptor)
    default = options.get("default", NO_DEFAULT)
    if kind is BasicKind.DATE:
        default = _normalize_date_default(owner, key, default)
    elif isinstance(default, (list, dict, set)):
        default = copy.deepcopy(default)

    match = options.get("match")
    if isinstance(match, str):
        match = re.compile(match)

    choices = options.get("choices")
    implicit_list = isinstance(descriptor, CustomType) and (
        token is list or isinstance(token, (list, tuple))
    )

    return SchemaEntry(
        key=key,
        type=descriptor,
        default=default,
        required=options.get("required", False),
        unique=options.get("unique", False),
        indexed=options.get("indexed", False),
        private=options.get("private", False),
        min=_normalize_bound(kind, options.get("min")),
        max=_normalize_bound(kind, options.get("max")),
        choices=tuple(choices) if choices is not None else None,
        match=match,
        validate=options.get("validate"),
        to_data=options.get("to_data"),
        from_data=options.get("from_data"),
        implicit_list=implicit_list,
    )


def compile_schema(
    owner: str,
    declared: Mapping[str, Any],
    base: Mapping[str, SchemaEntry],
    embedded: bool = False,
) -> Schema:
    """Compile a class's declared fields on top of its base schema.

    Args:
        owner: Class name
        declared: The class's own SCHEMA mapping
        base: Entries inherited from the parent class (e.g. _id)
        embedded: Whether the owner is an embedded document class

    Returns:
        Compiled Schema

    Raises:
        SchemaError: If any declaration is invalid
    """
    if not isinstance(declared, Mapping):
        raise SchemaError(f"SCHEMA of {owner} must be a mapping, got {type(declared).__name__}", class_name=owner)

    entries: dict[str, SchemaEntry] = dict(base)
    for key, declaration in declared.items():
        if not isinstance(key, str) or not key:
            raise SchemaError(f"Invalid field name in {owner}: {key!r}", class_name=owner)
        if key.startswith(PRIVATE_PREFIX):
            continue
        entries[key] = compile_entry(owner, key, declaration)

    schema = Schema(owner, entries)

    if embedded and (schema.ref_keys or schema.ref_array_keys):
        refs = ", ".join(schema.ref_keys + schema.ref_array_keys)
        raise SchemaError(
            f"Embedded document {owner} must not contain document references (found: {refs})",
            class_name=owner,
        )

    logger.debug("Compiled schema", extra={"owner": owner, "keys": list(schema.keys)})
    return schema
