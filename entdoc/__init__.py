"""
entdoc - Async object-document mapper.

This package maps Python classes to documents in a storage backend:
- Declarative schemas (SCHEMA mapping on the class)
- Validation, defaults and type coercion
- Document references with batched population
- Embedded documents stored inline
- Pluggable storage clients (SQLite bundled)

Example:
    >>> from entdoc import Document, connect
    >>>
    >>> class User(Document):
    ...     SCHEMA = {
    ...         "name": {"type": str, "required": True},
    ...         "age": {"type": int, "min": 0, "max": 120},
    ...         "tags": [str],
    ...     }
    >>>
    >>> await connect("sqlite://memory")
    >>> user = await User.create({"name": "Ada", "age": 36}).save()
    >>> await User.find_one({"name": "Ada"})

Invariants:
    - One storage client per process (or per class via CLIENT)
    - Schemas are compiled once per class and never change afterwards
    - Storage errors are never swallowed

Version: 1.0.0
"""

__version__ = "1.0.0"

from .client import DatabaseClient, get_client, is_connected, reset_client, set_client
from .config import (
    Settings,
    UnknownDataBehavior,
    get_settings,
    get_unknown_data_behavior,
    set_unknown_data_behavior,
)
from .document import Document, PurgeResult
from .embedded import EmbeddedDocument
from .errors import (
    ClientAlreadyConnectedError,
    ClientNotConnectedError,
    EntDocError,
    SchemaError,
    UnknownFieldError,
    UsageError,
    ValidationError,
)
from .populate import populate
from .schema import Schema, SchemaEntry
from .sqlite_client import SqliteClient
from .types import (
    BasicKind,
    BasicType,
    CustomType,
    DocumentRef,
    EmbeddedRef,
    TypedArray,
)


async def connect(url: str | None = None) -> DatabaseClient:
    """Connect to a database and register the client for this process.

    Args:
        url: Connection URL (defaults to ENTDOC_DATABASE_URL)

    Raises:
        UsageError: If the URL scheme is not supported
        ClientAlreadyConnectedError: If a client is already registered
    """
    return await SqliteClient.connect(url)


__all__ = [
    # Version
    "__version__",
    # Documents
    "Document",
    "EmbeddedDocument",
    "PurgeResult",
    "populate",
    # Schema types
    "Schema",
    "SchemaEntry",
    "BasicKind",
    "BasicType",
    "CustomType",
    "DocumentRef",
    "EmbeddedRef",
    "TypedArray",
    # Client
    "connect",
    "DatabaseClient",
    "SqliteClient",
    "set_client",
    "get_client",
    "is_connected",
    "reset_client",
    # Config
    "Settings",
    "UnknownDataBehavior",
    "get_settings",
    "get_unknown_data_behavior",
    "set_unknown_data_behavior",
    # Errors
    "EntDocError",
    "SchemaError",
    "ValidationError",
    "UnknownFieldError",
    "ClientNotConnectedError",
    "ClientAlreadyConnectedError",
    "UsageError",
]
