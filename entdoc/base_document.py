"""
Shared document behavior for entdoc.

BaseDocument holds everything persisted and embedded documents have in
common:
- Lazy, once-per-class schema compilation (schema())
- Instantiation from data with type-directed coercion (create())
- Validation, canonicalization and serialization
- Lifecycle hook dispatch (embedded children first)

Subclasses declare their fields in a SCHEMA mapping and never pass
arguments to the constructor:

    class Address(EmbeddedDocument):
        SCHEMA = {"city": str, "zip": {"type": str, "match": r"^\\d{5}$"}}

    address = Address.create({"city": "Berlin", "zip": "10115"})

Invariants:
    - A class's schema is compiled on first use and cached on that class
    - Later changes to SCHEMA have no effect
    - Every instance gets fresh defaults (no shared mutable values)
    - Hooks of embedded documents run before the owner's hook
"""

from __future__ import annotations

import inspect
import logging
import threading
from collections.abc import Iterator, Mapping
from typing import Any, ClassVar

from .client import DatabaseClient, get_client, is_connected
from .config import UnknownDataBehavior, get_unknown_data_behavior
from .errors import UnknownFieldError, UsageError
from .schema import Schema, SchemaEntry, compile_schema
from .types import (
    BasicKind,
    BasicType,
    CustomType,
    DocumentKind,
    EmbeddedRef,
    TypedArray,
    parse_date,
)
from .validate import check_field, suggest_fields

logger = logging.getLogger(__name__)

_schema_lock = threading.RLock()

HOOKS = (
    "pre_validate",
    "post_validate",
    "pre_save",
    "post_save",
    "pre_delete",
    "post_delete",
)


def _coerce_date(value: Any) -> Any:
    converted = parse_date(value)
    return converted if converted is not None else value


class BaseDocument:
    """Base class of Document and EmbeddedDocument.

    Class attributes:
        SCHEMA: Field declarations (see entdoc.schema), or a callable
            returning them for self and cyclic references
        DOCUMENT_KIND: DOCUMENT or EMBEDDED (set by the subclasses)
        UNKNOWN_DATA_BEHAVIOR: Per-class unknown key policy (optional)
        CLIENT: Explicit storage client (optional, overrides the
            process-wide one)
    """

    SCHEMA: ClassVar[Mapping[str, Any]] = {}
    DOCUMENT_KIND: ClassVar[DocumentKind | None] = None
    UNKNOWN_DATA_BEHAVIOR: ClassVar[UnknownDataBehavior | str | None] = None
    CLIENT: ClassVar[DatabaseClient | None] = None

    # Set in the class body of every library root class
    _root_document: ClassVar[bool] = True

    def __init__(self, *args: Any, **kwargs: Any) -> None:
        if args or kwargs:
            name = type(self).__name__
            raise UsageError(
                f"{name} does not take constructor arguments, use {name}.create(data) instead"
            )
        for entry in type(self).schema().all_entries:
            setattr(self, entry.key, entry.get_default())

    # ------------------------------------------------------------------
    # Schema
    # ------------------------------------------------------------------

    @classmethod
    def _root_entries(cls) -> dict[str, SchemaEntry]:
        """Entries contributed by the library root class."""
        return {}

    @classmethod
    def schema(cls) -> Schema:
        """Compiled schema of this class (compiled on first call).

        Raises:
            SchemaError: If the declared SCHEMA is invalid
        """
        compiled = cls.__dict__.get("_compiled_schema")
        if compiled is not None:
            return compiled
        with _schema_lock:
            compiled = cls.__dict__.get("_compiled_schema")
            if compiled is None:
                compiled = cls._compile()
                cls._compiled_schema = compiled
        return compiled

    @classmethod
    def _compile(cls) -> Schema:
        parent = next((b for b in cls.__bases__ if issubclass(b, BaseDocument)), None)
        if parent is None or parent.__dict__.get("_root_document", False):
            base = cls._root_entries()
        else:
            base = parent.schema().entries()
        declared = cls.__dict__.get("SCHEMA", {})
        if callable(declared) and not isinstance(declared, Mapping):
            # SCHEMA = lambda: {...}
            declared = declared()
        return compile_schema(
            cls.__name__,
            declared,
            base,
            embedded=cls.DOCUMENT_KIND is DocumentKind.EMBEDDED,
        )

    # ------------------------------------------------------------------
    # Storage client
    # ------------------------------------------------------------------

    @classmethod
    def get_client(cls) -> DatabaseClient:
        """Storage client used by this class.

        Raises:
            ClientNotConnectedError: If no client is registered
        """
        if cls.CLIENT is not None:
            return cls.CLIENT
        return get_client()

    @classmethod
    def _is_native_id(cls, value: Any) -> bool:
        if cls.CLIENT is None and not is_connected():
            return False
        return cls.get_client().is_native_id(value)

    # ------------------------------------------------------------------
    # Creation
    # ------------------------------------------------------------------

    @classmethod
    def create(cls, data: Mapping[str, Any] | list[Mapping[str, Any]] | None = None) -> Any:
        """Create new instance(s) from data.

        Args:
            data: Field values, or a list of them

        Returns:
            One instance, or a list of instances for list input

        Raises:
            SchemaError: If the class schema is invalid
            UnknownFieldError: On unknown keys under the "throw" policy
        """
        if isinstance(data, list):
            return [cls.create(item) for item in data]
        instance = cls()
        if data is not None:
            instance._assign(data, strict=True)
        return instance

    @classmethod
    def from_data(cls, data: Mapping[str, Any]) -> Any:
        """Rebuild an instance from stored data (unknown keys are skipped)."""
        instance = cls()
        instance._assign(data, strict=False)
        return instance

    def _assign(self, data: Mapping[str, Any], strict: bool) -> None:
        if not isinstance(data, Mapping):
            raise UsageError(
                f"Data for new {type(self).__name__} instance must be a mapping, got {type(data).__name__}"
            )
        schema = type(self).schema()
        for key, value in data.items():
            entry = schema.get(key)
            if entry is not None:
                setattr(self, key, self._coerce(entry, value, strict))
            elif isinstance(getattr(type(self), key, None), property):
                setattr(self, key, value)
            elif strict:
                self.on_unknown_data(key, value)

    def _coerce(self, entry: SchemaEntry, value: Any, strict: bool) -> Any:
        """Convert an incoming data value for a schema field."""
        if value is None:
            return entry.get_default()

        descriptor = entry.type
        if isinstance(descriptor, CustomType):
            return entry.from_data(value)
        if isinstance(descriptor, BasicType) and descriptor.kind is BasicKind.DATE:
            return _coerce_date(value)
        if isinstance(descriptor, EmbeddedRef):
            return self._embedded_from_data(descriptor.target, value, strict)

        if isinstance(descriptor, TypedArray) and isinstance(value, list):
            element = descriptor.element
            if isinstance(element, EmbeddedRef):
                return [self._embedded_from_data(element.target, v, strict) for v in value]
            if isinstance(element, BasicType) and element.kind is BasicKind.DATE:
                return [_coerce_date(v) for v in value]
            return list(value)

        return value

    @staticmethod
    def _embedded_from_data(target: type, value: Any, strict: bool) -> Any:
        if not isinstance(value, Mapping):
            return value
        return target.create(value) if strict else target.from_data(value)

    def _unknown_data_behavior(self) -> UnknownDataBehavior:
        behavior = type(self).UNKNOWN_DATA_BEHAVIOR
        if behavior is None:
            return get_unknown_data_behavior()
        return UnknownDataBehavior(behavior)

    def on_unknown_data(self, key: str, value: Any) -> None:
        """Handle a data key that is not part of the schema.

        Override to customize; the default applies UNKNOWN_DATA_BEHAVIOR
        (or the global policy).

        Raises:
            UnknownFieldError: Under the "throw" policy
        """
        behavior = self._unknown_data_behavior()
        name = type(self).__name__

        if behavior is UnknownDataBehavior.THROW:
            raise UnknownFieldError(key, name, suggest_fields(key, type(self).schema().keys))

        if behavior in (UnknownDataBehavior.LOG_ACCEPT, UnknownDataBehavior.LOG_IGNORE):
            logger.warning(
                "Unknown key '%s' in data object for new %s instance",
                key,
                name,
                extra={"class_name": name, "key": key, "behavior": behavior.value},
            )

        if behavior in (UnknownDataBehavior.ACCEPT, UnknownDataBehavior.LOG_ACCEPT):
            setattr(self, key, value)

    # ------------------------------------------------------------------
    # Validation
    # ------------------------------------------------------------------

    def validate(self) -> None:
        """Validate all fields in declaration order.

        Raises:
            ValidationError: On the first invalid field
        """
        cls = type(self)
        for entry in cls.schema().all_entries:
            value = getattr(self, entry.key, None)

            if entry.is_embedded and isinstance(value, BaseDocument):
                value.validate()
                continue
            if (
                entry.is_embedded_array
                and isinstance(value, list)
                and value
                and all(isinstance(v, BaseDocument) for v in value)
            ):
                for item in value:
                    item.validate()
                continue

            check_field(cls.__name__, entry, value, cls._is_native_id)

    def canonicalize(self) -> None:
        """Coerce date-like values of date fields to datetime, recursively."""
        for entry in type(self).schema().all_entries:
            value = getattr(self, entry.key, None)
            if value is None:
                continue
            if entry.is_date:
                setattr(self, entry.key, _coerce_date(value))
            elif entry.is_date_array and isinstance(value, list):
                setattr(self, entry.key, [_coerce_date(v) for v in value])
            elif entry.is_embedded and isinstance(value, BaseDocument):
                value.canonicalize()
            elif entry.is_embedded_array and isinstance(value, list):
                for item in value:
                    if isinstance(item, BaseDocument):
                        item.canonicalize()

    # ------------------------------------------------------------------
    # Serialization
    # ------------------------------------------------------------------

    def to_data(self, include_id: bool = True) -> dict[str, Any]:
        """Plain dict of all schema fields.

        Embedded documents are reduced to dicts and custom types go
        through their to_data function. Referenced documents are left
        as they are.
        """
        data: dict[str, Any] = {}
        for entry in type(self).schema().all_entries:
            if entry.key == "_id" and not include_id:
                continue
            data[entry.key] = _field_to_data(entry, getattr(self, entry.key, None))
        return data

    def to_json(self) -> dict[str, Any]:
        """Like to_data() but without private fields, recursing into
        embedded and populated documents."""
        data: dict[str, Any] = {}
        for entry in type(self).schema().json_entries:
            value = getattr(self, entry.key, None)
            if entry.is_custom:
                data[entry.key] = entry.to_data(value) if value is not None else None
            elif isinstance(value, BaseDocument):
                data[entry.key] = value.to_json()
            elif isinstance(value, list):
                data[entry.key] = [v.to_json() if isinstance(v, BaseDocument) else v for v in value]
            else:
                data[entry.key] = value
        return data

    # ------------------------------------------------------------------
    # Hooks
    # ------------------------------------------------------------------

    def _embedded_children(self) -> Iterator[BaseDocument]:
        schema = type(self).schema()
        for key in schema.embedded_keys:
            value = getattr(self, key, None)
            if isinstance(value, BaseDocument):
                yield value
            elif isinstance(value, list):
                yield from (v for v in value if isinstance(v, BaseDocument))

    async def _run_hook(self, name: str) -> None:
        """Run a lifecycle hook on embedded children, then on self."""
        if name not in HOOKS:
            raise UsageError(f"Unknown hook: {name}")
        for child in list(self._embedded_children()):
            await child._run_hook(name)
        result = getattr(self, name)()
        if inspect.isawaitable(result):
            await result

    def pre_validate(self) -> Any:
        pass

    def post_validate(self) -> Any:
        pass

    def pre_save(self) -> Any:
        pass

    def post_save(self) -> Any:
        pass

    def pre_delete(self) -> Any:
        pass

    def post_delete(self) -> Any:
        pass

    def __repr__(self) -> str:
        fields = ", ".join(
            f"{k}={getattr(self, k, None)!r}" for k in type(self).schema().keys
        )
        return f"{type(self).__name__}({fields})"


def _field_to_data(entry: SchemaEntry, value: Any) -> Any:
    if value is None:
        return None
    if entry.is_custom:
        return entry.to_data(value)
    if isinstance(value, BaseDocument) and entry.is_embedded:
        return value.to_data()
    if isinstance(value, list):
        if entry.is_embedded_array:
            return [v.to_data() if isinstance(v, BaseDocument) else v for v in value]
        return list(value)
    return value
