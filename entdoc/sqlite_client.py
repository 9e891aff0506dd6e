"""
SQLite storage client for entdoc.

This module implements the DatabaseClient contract on top of a single
SQLite database (in-memory or file-backed). Each collection is one table
holding JSON payloads; queries are evaluated by entdoc.query.

Table schema (one per collection, named c_<collection>):
    - id TEXT PRIMARY KEY (16-char alphanumeric)
    - payload_json TEXT (record without _id)

Value encoding inside payload_json:
    - datetime -> {"$date": "<ISO 8601>"}
    - bytes    -> {"$binary": "<base64>"}

Invariants:
    - Unique indexes are SQLite expression indexes, so violations raise
      sqlite3.IntegrityError and are never swallowed
    - All multi-statement writes run in one transaction
    - Decoded records always carry their id under "_id"

Example:
    >>> client = await SqliteClient.connect("sqlite://memory")
    >>> record_id = await client.save("users", None, {"name": "A"})
    >>> await client.find("users", {"name": "A"})
    [{'_id': '...', 'name': 'A'}]
"""

from __future__ import annotations

import base64
import json
import logging
import re
import sqlite3
import uuid
from collections.abc import Iterator
from contextlib import contextmanager
from datetime import datetime
from pathlib import Path
from typing import Any

from .client import DatabaseClient, set_client
from .config import get_settings
from .errors import UsageError
from .query import matches, sort_records

logger = logging.getLogger(__name__)

ID_LENGTH = 16
_ID_REGEX = re.compile(r"^[0-9a-zA-Z]{16}$")
_NAME_REGEX = re.compile(r"^[A-Za-z0-9_\-]+$")
_FIELD_REGEX = re.compile(r"^[A-Za-z0-9_]+(\.[A-Za-z0-9_]+)*$")
_TABLE_PREFIX = "c_"


def encode_value(value: Any) -> Any:
    """Convert a value into its JSON-safe storage form."""
    if isinstance(value, datetime):
        return {"$date": value.isoformat()}
    if isinstance(value, (bytes, bytearray, memoryview)):
        return {"$binary": base64.b64encode(bytes(value)).decode("ascii")}
    if isinstance(value, dict):
        return {k: encode_value(v) for k, v in value.items()}
    if isinstance(value, (list, tuple)):
        return [encode_value(v) for v in value]
    return value


def decode_value(value: Any) -> Any:
    """Inverse of encode_value()."""
    if isinstance(value, dict):
        if len(value) == 1:
            if "$date" in value:
                return datetime.fromisoformat(value["$date"])
            if "$binary" in value:
                return base64.b64decode(value["$binary"])
        return {k: decode_value(v) for k, v in value.items()}
    if isinstance(value, list):
        return [decode_value(v) for v in value]
    return value


class SqliteClient(DatabaseClient):
    """DatabaseClient backed by one SQLite database.

    Thread safety:
        One connection is held per client. All statements run on the
        event loop thread; there is no suspension point inside a single
        operation, so operations are atomic with respect to each other.

    Example:
        >>> client = SqliteClient(None)         # in-memory
        >>> client = SqliteClient("/tmp/app.db")
    """

    def __init__(
        self,
        path: str | None,
        busy_timeout_ms: int | None = None,
    ) -> None:
        """Initialize the client.

        Args:
            path: Database file path, or None/':memory:' for in-memory
            busy_timeout_ms: SQLite busy timeout (defaults to settings)
        """
        self.in_memory = path in (None, "", ":memory:", "memory")
        self.path = None if self.in_memory else Path(path)
        super().__init__("sqlite://memory" if self.in_memory else f"sqlite://{self.path}")
        if busy_timeout_ms is None:
            busy_timeout_ms = get_settings().sqlite_busy_timeout_ms
        self.busy_timeout_ms = busy_timeout_ms
        self._conn = self._open()
        self._collections: set[str] = set()

    @classmethod
    async def connect(cls, url: str | None = None, *, register: bool = True) -> SqliteClient:
        """Create a client from a connection URL.

        Args:
            url: 'sqlite://memory' or 'sqlite:///path/to/file.db'
                (defaults to ENTDOC_DATABASE_URL)
            register: Register as the process-wide client

        Returns:
            The connected client

        Raises:
            UsageError: If the URL is not a sqlite:// URL
        """
        url = url or get_settings().database_url
        if not url.startswith("sqlite://"):
            raise UsageError(
                "Unrecognized DB connection url. Expected sqlite://memory or sqlite:///path/to/file.db",
                details={"url": url},
            )
        location = url[len("sqlite://"):].strip()
        if not location:
            raise UsageError("Missing database location in connection url", details={"url": url})

        client = cls(None if location == "memory" else location)
        if register:
            set_client(client)
        return client

    def _open(self) -> sqlite3.Connection:
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            ":memory:" if self.path is None else str(self.path),
            timeout=self.busy_timeout_ms / 1000.0,
            isolation_level=None,  # Autocommit by default, explicit transactions
        )
        conn.row_factory = sqlite3.Row
        conn.execute(f"PRAGMA busy_timeout = {self.busy_timeout_ms}")
        if self.path is not None:
            conn.execute("PRAGMA journal_mode = WAL")
        conn.execute("PRAGMA synchronous = NORMAL")
        return conn

    @contextmanager
    def _transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._conn
        conn.execute("BEGIN IMMEDIATE")
        try:
            yield conn
            conn.execute("COMMIT")
        except Exception:
            conn.execute("ROLLBACK")
            raise

    def _table(self, collection: str) -> str:
        """Get (and create if needed) the table for a collection."""
        if not _NAME_REGEX.match(collection):
            raise UsageError(f"Invalid collection name: {collection!r}")
        table = f"{_TABLE_PREFIX}{collection}"
        if collection not in self._collections:
            self._conn.execute(
                f'CREATE TABLE IF NOT EXISTS "{table}" ('
                "id TEXT PRIMARY KEY, payload_json TEXT NOT NULL DEFAULT '{}')"
            )
            self._collections.add(collection)
        return table

    @staticmethod
    def _generate_id() -> str:
        return uuid.uuid4().hex[:ID_LENGTH]

    @staticmethod
    def _dump(values: dict[str, Any]) -> str:
        payload = {k: v for k, v in values.items() if k != "_id"}
        return json.dumps(encode_value(payload))

    @staticmethod
    def _load(row: sqlite3.Row) -> dict[str, Any]:
        record = {"_id": row["id"]}
        record.update(decode_value(json.loads(row["payload_json"])))
        return record

    def _rows(self, collection: str) -> list[dict[str, Any]]:
        table = self._table(collection)
        cursor = self._conn.execute(f'SELECT id, payload_json FROM "{table}" ORDER BY rowid')
        return [self._load(row) for row in cursor.fetchall()]

    def _get(self, collection: str, id: Any) -> dict[str, Any] | None:
        table = self._table(collection)
        row = self._conn.execute(
            f'SELECT id, payload_json FROM "{table}" WHERE id = ?', (id,)
        ).fetchone()
        return self._load(row) if row else None

    def _matching(self, collection: str, query: dict[str, Any] | None) -> list[dict[str, Any]]:
        query = query or {}
        id_condition = query.get("_id")
        if id_condition is not None and not isinstance(id_condition, dict):
            record = self._get(collection, id_condition)
            return [record] if record is not None and matches(record, query) else []
        return [r for r in self._rows(collection) if matches(r, query)]

    def _insert(self, collection: str, id: Any, values: dict[str, Any]) -> str:
        table = self._table(collection)
        new_id = id if id is not None else values.get("_id") or self._generate_id()
        with self._transaction() as conn:
            conn.execute(
                f'INSERT INTO "{table}" (id, payload_json) VALUES (?, ?)',
                (new_id, self._dump(values)),
            )
        return new_id

    def _update(self, collection: str, record: dict[str, Any], values: dict[str, Any]) -> dict[str, Any]:
        table = self._table(collection)
        merged = dict(record)
        for key in values.get("$unset", ()):
            merged.pop(key, None)
        merged.update({k: v for k, v in values.items() if k not in ("$unset", "_id")})
        with self._transaction() as conn:
            conn.execute(
                f'UPDATE "{table}" SET payload_json = ? WHERE id = ?',
                (self._dump(merged), record["_id"]),
            )
        return merged

    def _delete_ids(self, collection: str, ids: list[Any]) -> int:
        if not ids:
            return 0
        table = self._table(collection)
        with self._transaction() as conn:
            removed = 0
            for id in ids:
                cursor = conn.execute(f'DELETE FROM "{table}" WHERE id = ?', (id,))
                removed += cursor.rowcount
        return removed

    async def save(self, collection: str, id: Any, values: dict[str, Any]) -> Any:
        """Insert when id is None, otherwise upsert by id ($set semantics)."""
        if id is None:
            new_id = self._insert(collection, None, values)
            logger.debug("Inserted record", extra={"collection": collection, "id": new_id})
            return new_id

        existing = self._get(collection, id)
        if existing is None:
            self._insert(collection, id, values)
        else:
            self._update(collection, existing, values)
        logger.debug("Upserted record", extra={"collection": collection, "id": id})
        return id

    async def delete(self, collection: str, id: Any) -> int:
        if id is None:
            return 0
        return self._delete_ids(collection, [id])

    async def delete_one(self, collection: str, query: dict[str, Any]) -> int:
        found = self._matching(collection, query)
        return self._delete_ids(collection, [found[0]["_id"]]) if found else 0

    async def delete_many(self, collection: str, query: dict[str, Any]) -> int:
        found = self._matching(collection, query)
        return self._delete_ids(collection, [r["_id"] for r in found])

    async def find_one(self, collection: str, query: dict[str, Any]) -> dict[str, Any] | None:
        found = self._matching(collection, query)
        return found[0] if found else None

    async def find(
        self,
        collection: str,
        query: dict[str, Any],
        sort: str | list[str] | None = None,
        skip: int | None = None,
        limit: int | None = None,
    ) -> list[dict[str, Any]]:
        records = self._matching(collection, query)
        if sort:
            records = sort_records(records, sort)
        if isinstance(skip, int) and skip > 0:
            records = records[skip:]
        if isinstance(limit, int) and limit > 0:
            records = records[:limit]
        return records

    async def find_one_and_update(
        self,
        collection: str,
        query: dict[str, Any],
        values: dict[str, Any],
        upsert: bool = False,
    ) -> dict[str, Any] | None:
        found = self._matching(collection, query)
        if not found:
            if not upsert:
                return None
            plain = {k: v for k, v in values.items() if k != "$unset"}
            new_id = self._insert(collection, None, plain)
            return self._get(collection, new_id)
        self._update(collection, found[0], values)
        return self._get(collection, found[0]["_id"])

    async def find_one_and_delete(self, collection: str, query: dict[str, Any]) -> int:
        return await self.delete_one(collection, query)

    async def count(self, collection: str, query: dict[str, Any]) -> int:
        return len(self._matching(collection, query))

    async def create_index(self, collection: str, field: str, unique: bool = False) -> None:
        """Create a (unique) expression index on a payload field."""
        if field == "_id":
            return
        if not _FIELD_REGEX.match(field):
            raise UsageError(f"Invalid index field name: {field!r}")
        table = self._table(collection)
        index_name = f"{'ux' if unique else 'ix'}_{table}_{field.replace('.', '_')}"
        self._conn.execute(
            f'CREATE {"UNIQUE " if unique else ""}INDEX IF NOT EXISTS "{index_name}" '
            f"ON \"{table}\" (json_extract(payload_json, '$.{field}'))"
        )
        logger.debug(
            "Created index",
            extra={"collection": collection, "field": field, "unique": unique},
        )

    async def clear_collection(self, collection: str) -> int:
        return await self.delete_many(collection, {})

    async def drop_database(self) -> None:
        cursor = self._conn.execute(
            "SELECT name FROM sqlite_master WHERE type = 'table' AND name LIKE ?",
            (f"{_TABLE_PREFIX}%",),
        )
        tables = [row["name"] for row in cursor.fetchall()]
        for table in tables:
            self._conn.execute(f'DROP TABLE IF EXISTS "{table}"')
        self._collections.clear()
        logger.info("Dropped database", extra={"url": self.url, "tables": len(tables)})

    async def close(self) -> None:
        self._conn.close()

    def is_native_id(self, value: Any) -> bool:
        return isinstance(value, str) and _ID_REGEX.match(value) is not None

    def to_canonical_id(self, id: Any) -> Any:
        return id

    def native_id_type(self) -> type:
        return str

    def driver(self) -> sqlite3.Connection:
        """The underlying sqlite3 connection."""
        return self._conn
