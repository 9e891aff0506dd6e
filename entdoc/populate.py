"""
Reference population for entdoc.

Stored documents hold references to other documents as raw ids.
populate() replaces those ids with loaded document instances:

    >>> posts = await Post.find({}, populate=False)
    >>> await populate(posts)              # all reference fields
    >>> await populate(posts, ["author"])  # only "author"

Algorithm:
    1. Collect referenced ids per target class over all documents
    2. Reset array reference fields to [] (ids are remembered)
    3. Fetch each target class once ({"_id": {"$in": ids}}); fetches of
       different classes run concurrently
    4. Assign single references; refill arrays in original id order

Invariants:
    - At most one fetch per target class per call
    - Duplicate ids in one array resolve to duplicate entries
    - Unresolved single references become None; unresolved array
      entries are dropped
    - Only one level of references is resolved per call
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Set, Union

from .base_document import BaseDocument
from .errors import UsageError

logger = logging.getLogger(__name__)

FieldFilter = Union[bool, None, str, Iterable[str]]


@dataclass
class _ArraySlot:
    """An array reference field waiting to be refilled."""

    document: BaseDocument
    key: str
    original: List[Any]


@dataclass
class _Batch:
    """Pending work for one target class."""

    ids: Set[Any] = field(default_factory=set)
    singles: List[tuple] = field(default_factory=list)
    arrays: List[_ArraySlot] = field(default_factory=list)


def _field_filter(fields: FieldFilter) -> Optional[Set[str]]:
    """Normalize the field filter; None means all reference fields."""
    if fields is True or fields is None:
        return None
    if fields is False:
        return set()
    if isinstance(fields, str):
        return {fields}
    try:
        return set(fields)
    except TypeError:
        raise UsageError(f"Invalid populate field filter: {fields!r}") from None


async def populate(documents: Any, fields: FieldFilter = True) -> Any:
    """Load referenced documents in place.

    Args:
        documents: A document, a list of documents, or None
        fields: True/None for all reference fields, False or [] for
            none, or the names of the fields to populate

    Returns:
        The same object that was passed in
    """
    if documents is None:
        return documents
    docs = [d for d in (documents if isinstance(documents, list) else [documents]) if d is not None]
    allowed = _field_filter(fields)
    if not docs or allowed == set():
        return documents

    batches: Dict[type, _Batch] = {}

    for doc in docs:
        if not isinstance(doc, BaseDocument):
            raise UsageError(f"Cannot populate non-document value: {doc!r}")
        schema = type(doc).schema()

        for key in schema.ref_keys:
            if allowed is not None and key not in allowed:
                continue
            value = getattr(doc, key, None)
            if value is None or isinstance(value, BaseDocument):
                continue
            target = schema[key].target
            canonical = target.get_client().to_canonical_id(value)
            batch = batches.setdefault(target, _Batch())
            batch.ids.add(canonical)
            batch.singles.append((doc, key, canonical))

        for key in schema.ref_array_keys:
            if allowed is not None and key not in allowed:
                continue
            value = getattr(doc, key, None)
            if not isinstance(value, list) or not value:
                continue
            target = schema[key].target
            client = target.get_client()
            original = []
            for item in value:
                if isinstance(item, BaseDocument) or item is None:
                    original.append(item)
                    continue
                canonical = client.to_canonical_id(item)
                original.append(canonical)
            pending = [i for i in original if i is not None and not isinstance(i, BaseDocument)]
            if not pending:
                continue
            batch = batches.setdefault(target, _Batch())
            batch.ids.update(pending)
            batch.arrays.append(_ArraySlot(doc, key, original))
            setattr(doc, key, [])

    if not batches:
        return documents

    targets = list(batches)
    logger.debug(
        "Populating references",
        extra={"targets": [t.__name__ for t in targets], "documents": len(docs)},
    )
    results = await asyncio.gather(
        *(t.find({"_id": {"$in": list(batches[t].ids)}}, populate=False) for t in targets)
    )

    for target, loaded in zip(targets, results):
        client = target.get_client()
        by_id = {client.to_canonical_id(d._id): d for d in loaded}
        batch = batches[target]

        for doc, key, canonical in batch.singles:
            setattr(doc, key, by_id.get(canonical))

        for slot in batch.arrays:
            resolved = []
            for item in slot.original:
                if isinstance(item, BaseDocument):
                    resolved.append(item)
                elif item in by_id:
                    resolved.append(by_id[item])
            setattr(slot.document, slot.key, resolved)

    return documents
