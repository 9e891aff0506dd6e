"""
Persisted documents for entdoc.

A Document subclass maps to one collection of the registered storage
client. Instances are created with create(), saved with save() and
removed with delete(); class methods query the collection.

Example:
    >>> class User(Document):
    ...     SCHEMA = {
    ...         "name": {"type": str, "required": True},
    ...         "email": {"type": str, "unique": True},
    ...         "age": {"type": int, "min": 0, "max": 120},
    ...         "tags": [str],
    ...     }
    >>> user = await User.create({"name": "Ada", "email": "ada@example.com"}).save()
    >>> user.id is not None
    True
    >>> await User.find({"age": {"$gte": 18}}, sort="-age", limit=10)

Save sequence:
    pre_validate -> validate() -> canonicalize() -> post_validate ->
    pre_save -> client.save() -> post_save

Invariants:
    - _id is None until the first successful save
    - References are persisted as canonical ids
    - Indexes for unique/indexed fields are created once per class and
      client, before the first storage operation
    - Storage errors propagate unchanged
"""

from __future__ import annotations

import logging
import weakref
from dataclasses import dataclass
from typing import Any, ClassVar, Dict, List, Optional, Union

from .base_document import BaseDocument
from .client import DatabaseClient
from .errors import UsageError
from .populate import FieldFilter, populate
from .schema import ID_KEY, SchemaEntry, compile_entry
from .types import DocumentKind

logger = logging.getLogger(__name__)

Query = Dict[str, Any]
Sort = Union[str, List[str], None]


@dataclass(frozen=True)
class PurgeResult:
    """Outcome of Document.purge_obsolete_properties()."""

    total_updates: int
    ids: Optional[List[Any]] = None


class Document(BaseDocument):
    """Base class for documents stored in their own collection.

    Class attributes:
        COLLECTION_NAME: Collection name (defaults to the lower-cased
            class name plus "s")
    """

    DOCUMENT_KIND: ClassVar[DocumentKind] = DocumentKind.DOCUMENT
    COLLECTION_NAME: ClassVar[Optional[str]] = None
    _root_document: ClassVar[bool] = True

    _id: Any

    @classmethod
    def _root_entries(cls) -> Dict[str, SchemaEntry]:
        id_type = cls.get_client().native_id_type()
        return {ID_KEY: compile_entry(cls.__name__, ID_KEY, id_type)}

    @property
    def id(self) -> Any:
        """Alias of _id."""
        return self._id

    @id.setter
    def id(self, value: Any) -> None:
        self._id = value

    @classmethod
    def collection_name(cls) -> str:
        """Name of the collection holding this class's documents."""
        if cls.__dict__.get("COLLECTION_NAME"):
            return cls.COLLECTION_NAME
        return cls.__name__.lower() + "s"

    @classmethod
    async def _prepare(cls) -> DatabaseClient:
        """Resolve the client and bootstrap indexes on first use."""
        client = cls.get_client()
        indexed = cls.__dict__.get("_indexed_clients")
        if indexed is None:
            indexed = weakref.WeakSet()
            cls._indexed_clients = indexed
        if client not in indexed:
            collection = cls.collection_name()
            for entry in cls.schema().index_entries:
                await client.create_index(collection, entry.key, unique=entry.unique)
            indexed.add(client)
            logger.debug(
                "Indexes ensured",
                extra={
                    "collection": collection,
                    "fields": [e.key for e in cls.schema().index_entries],
                },
            )
        return client

    # ------------------------------------------------------------------
    # Instance operations
    # ------------------------------------------------------------------

    def _payload(self, client: DatabaseClient) -> Dict[str, Any]:
        """Storage payload: to_data() without _id, references as ids."""
        schema = type(self).schema()
        payload = self.to_data(include_id=False)
        for key in schema.ref_keys:
            if isinstance(payload.get(key), Document):
                payload[key] = client.to_canonical_id(payload[key]._id)
        for key in schema.ref_array_keys:
            values = payload.get(key)
            if isinstance(values, list):
                payload[key] = [
                    client.to_canonical_id(v._id) if isinstance(v, Document) else v
                    for v in values
                ]
        return payload

    async def save(self) -> Document:
        """Validate and persist this document (insert or update).

        Returns:
            self

        Raises:
            ValidationError: If validation fails
            ClientNotConnectedError: If no client is registered
        """
        cls = type(self)
        client = await cls._prepare()

        await self._run_hook("pre_validate")
        self.validate()
        self.canonicalize()
        await self._run_hook("post_validate")

        await self._run_hook("pre_save")
        collection = cls.collection_name()
        new_id = await client.save(collection, self._id, self._payload(client))
        if self._id is None:
            self._id = new_id
        logger.debug("Saved document", extra={"collection": collection, "id": self._id})
        await self._run_hook("post_save")
        return self

    async def delete(self) -> int:
        """Delete this document from storage.

        Returns:
            Number of deleted records (0 if it was never saved)
        """
        cls = type(self)
        client = await cls._prepare()

        await self._run_hook("pre_delete")
        count = await client.delete(cls.collection_name(), self._id)
        logger.debug("Deleted document", extra={"collection": cls.collection_name(), "id": self._id})
        await self._run_hook("post_delete")
        return count

    async def populate(self, fields: FieldFilter = True) -> Document:
        """Load referenced documents of this instance in place."""
        return await populate(self, fields)

    # ------------------------------------------------------------------
    # Class operations
    # ------------------------------------------------------------------

    @staticmethod
    def _check_query(query: Optional[Query]) -> Query:
        if query is None:
            return {}
        if not isinstance(query, dict):
            raise UsageError(f"Query must be a dict, got {type(query).__name__}")
        return query

    @classmethod
    async def find_one(cls, query: Optional[Query] = None, populate: FieldFilter = True) -> Optional[Any]:
        """Find the first matching document.

        Args:
            query: Query mapping (see entdoc.query)
            populate: Reference fields to load (True for all)

        Returns:
            The document, or None
        """
        client = await cls._prepare()
        record = await client.find_one(cls.collection_name(), cls._check_query(query))
        if record is None:
            return None
        doc = cls.from_data(record)
        await _populate(doc, populate)
        return doc

    @classmethod
    async def find(
        cls,
        query: Optional[Query] = None,
        populate: FieldFilter = True,
        sort: Sort = None,
        skip: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> List[Any]:
        """Find all matching documents.

        Args:
            query: Query mapping
            populate: Reference fields to load (True for all)
            sort: Field name or list of names; prefix '-' for descending
            skip: Number of documents to skip
            limit: Maximum number of documents

        Raises:
            UsageError: If sort/skip/limit are malformed
        """
        if sort is not None and not isinstance(sort, (str, list, tuple)):
            raise UsageError(f"Invalid sort option: {sort!r}")
        for name, option in (("skip", skip), ("limit", limit)):
            if option is not None and (isinstance(option, bool) or not isinstance(option, int) or option < 0):
                raise UsageError(f"Invalid {name} option: {option!r}")

        client = await cls._prepare()
        records = await client.find(
            cls.collection_name(),
            cls._check_query(query),
            sort=list(sort) if isinstance(sort, tuple) else sort,
            skip=skip,
            limit=limit,
        )
        docs = [cls.from_data(record) for record in records]
        await _populate(docs, populate)
        return docs

    @classmethod
    async def find_one_and_update(
        cls,
        query: Query,
        values: Dict[str, Any],
        upsert: bool = False,
        populate: FieldFilter = True,
    ) -> Optional[Any]:
        """Update the first matching document and return it.

        Args:
            query: Query mapping
            values: Field values to set
            upsert: Insert when nothing matches
            populate: Reference fields to load (True for all)

        Returns:
            The updated document, or None
        """
        if not isinstance(values, dict):
            raise UsageError(f"Update values must be a dict, got {type(values).__name__}")
        client = await cls._prepare()
        record = await client.find_one_and_update(
            cls.collection_name(), cls._check_query(query), values, upsert=upsert
        )
        if record is None:
            return None
        doc = cls.from_data(record)
        await _populate(doc, populate)
        return doc

    @classmethod
    async def find_one_and_delete(cls, query: Query) -> int:
        client = await cls._prepare()
        return await client.find_one_and_delete(cls.collection_name(), cls._check_query(query))

    @classmethod
    async def delete_one(cls, query: Query) -> int:
        client = await cls._prepare()
        return await client.delete_one(cls.collection_name(), cls._check_query(query))

    @classmethod
    async def delete_many(cls, query: Optional[Query] = None) -> int:
        client = await cls._prepare()
        return await client.delete_many(cls.collection_name(), cls._check_query(query))

    @classmethod
    async def count(cls, query: Optional[Query] = None) -> int:
        client = await cls._prepare()
        return await client.count(cls.collection_name(), cls._check_query(query))

    @classmethod
    async def clear_collection(cls) -> int:
        """Remove every document of this class."""
        client = await cls._prepare()
        return await client.clear_collection(cls.collection_name())

    @classmethod
    async def purge_obsolete_properties(
        cls,
        names: Union[str, List[str]],
        return_ids: bool = False,
    ) -> PurgeResult:
        """Remove properties that are no longer in the schema from stored records.

        Args:
            names: Property name(s) to remove
            return_ids: Also return the ids of updated records

        Returns:
            PurgeResult with the number of updated records

        Raises:
            UsageError: If a name is empty, private or part of the schema
        """
        names = [names] if isinstance(names, str) else list(names)
        schema = cls.schema()
        for name in names:
            if not name or not isinstance(name, str) or name.startswith("_"):
                raise UsageError(f"Invalid property name to purge: {name!r}")
            if name in schema:
                raise UsageError(f'Cannot purge property "{name}" (part of the schema)')
        if not names:
            return PurgeResult(0, [] if return_ids else None)

        client = await cls._prepare()
        collection = cls.collection_name()
        query = {"$or": [{name: {"$exists": True}} for name in names]}
        ids: Optional[List[Any]] = [] if return_ids else None
        total = 0
        while True:
            record = await client.find_one_and_update(collection, query, {"$unset": names})
            if record is None:
                break
            total += 1
            if ids is not None:
                ids.append(record["_id"])

        logger.info(
            "Purged obsolete properties",
            extra={"collection": collection, "names": names, "updated": total},
        )
        return PurgeResult(total, ids)


async def _populate(documents: Any, fields: FieldFilter) -> None:
    if fields is False:
        return
    await populate(documents, fields)
