"""
Storage client contract for entdoc.

This module defines the narrow interface the document core needs from a
storage engine, and the process-wide registration point for the client
instance.

A concrete client implements:
- save/delete/find/count against named collections
- index creation
- id handling (is_native_id, to_canonical_id, native_id_type)

Invariants:
    - Exactly one client is registered per process (set_client)
    - Using documents before registration raises ClientNotConnectedError
    - Storage errors propagate unchanged to the caller

Example:
    >>> client = await SqliteClient.connect("sqlite://memory")
    >>> get_client() is client
    True
"""

from __future__ import annotations

import logging
import threading
from abc import ABC, abstractmethod
from typing import Any

from .errors import ClientAlreadyConnectedError, ClientNotConnectedError, UsageError

logger = logging.getLogger(__name__)

# Global client
_global_client: DatabaseClient | None = None
_client_lock = threading.Lock()


class DatabaseClient(ABC):
    """Abstract storage client.

    Queries are mapping-based (e.g. ``{"name": "A", "age": {"$gt": 3}}``);
    records are plain dicts that carry their id under ``_id``.
    """

    def __init__(self, url: str) -> None:
        self.url = url

    @abstractmethod
    async def save(self, collection: str, id: Any, values: dict[str, Any]) -> Any:
        """Insert when id is None, otherwise upsert by id. Returns the id."""

    @abstractmethod
    async def delete(self, collection: str, id: Any) -> int:
        """Delete one record by id. Returns number of removed records."""

    @abstractmethod
    async def delete_one(self, collection: str, query: dict[str, Any]) -> int:
        """Delete the first record matching query."""

    @abstractmethod
    async def delete_many(self, collection: str, query: dict[str, Any]) -> int:
        """Delete all records matching query."""

    @abstractmethod
    async def find_one(self, collection: str, query: dict[str, Any]) -> dict[str, Any] | None:
        """Return the first matching record or None."""

    @abstractmethod
    async def find(
        self,
        collection: str,
        query: dict[str, Any],
        sort: str | list[str] | None = None,
        skip: int | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        """Return all matching records.

        Args:
            collection: Collection name
            query: Query mapping
            sort: Field name or list of names; a leading '-' sorts descending
            skip: Number of records to skip
            limit: Maximum number of records
        """

    @abstractmethod
    async def find_one_and_update(
        self,
        collection: str,
        query: dict[str, Any],
        values: dict[str, Any],
        upsert: bool = False,
    ) -> dict[str, Any] | None:
        """Update the first matching record and return it after update."""

    @abstractmethod
    async def find_one_and_delete(self, collection: str, query: dict[str, Any]) -> int:
        """Delete the first matching record. Returns number of removed records."""

    @abstractmethod
    async def count(self, collection: str, query: dict[str, Any]) -> int:
        """Count matching records."""

    @abstractmethod
    async def create_index(self, collection: str, field: str, unique: bool = False) -> None:
        """Ensure an index on a field exists."""

    @abstractmethod
    async def clear_collection(self, collection: str) -> int:
        """Remove all records of a collection."""

    @abstractmethod
    async def drop_database(self) -> None:
        """Remove all collections."""

    @abstractmethod
    async def close(self) -> None:
        """Release the underlying storage handle."""

    @abstractmethod
    def is_native_id(self, value: Any) -> bool:
        """Whether value looks like an id generated by this store."""

    @abstractmethod
    def to_canonical_id(self, id: Any) -> Any:
        """Normalized, comparable form of an id."""

    @abstractmethod
    def native_id_type(self) -> type:
        """Python type of ids (used to type the _id schema field)."""

    def to_native_id(self, id: Any) -> Any:
        """Convert a value to this store's id type."""
        return self.native_id_type()(id)


def set_client(client: DatabaseClient) -> None:
    """Register the process-wide storage client.

    Raises:
        ClientAlreadyConnectedError: If a client is already registered
        UsageError: If client is not a DatabaseClient
    """
    global _global_client
    if not isinstance(client, DatabaseClient):
        raise UsageError(f"Invalid client: {client!r}")
    with _client_lock:
        if _global_client is not None:
            raise ClientAlreadyConnectedError()
        _global_client = client
    logger.info("Storage client registered", extra={"url": client.url})


def get_client() -> DatabaseClient:
    """Get the process-wide storage client.

    Raises:
        ClientNotConnectedError: If no client was registered yet
    """
    client = _global_client
    if client is None:
        raise ClientNotConnectedError()
    return client


def is_connected() -> bool:
    """Whether a client is registered."""
    return _global_client is not None


def reset_client() -> None:
    """Forget the registered client (for testing only)."""
    global _global_client
    with _client_lock:
        _global_client = None
