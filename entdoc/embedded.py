"""
Embedded documents for entdoc.

An EmbeddedDocument is stored inline inside its owning document. It has
no _id and no collection, is never saved, queried or deleted on its own,
and may not declare references to persisted documents.

Example:
    >>> class Address(EmbeddedDocument):
    ...     SCHEMA = {"street": str, "city": str}
    >>> class Person(Document):
    ...     SCHEMA = {"name": str, "address": Address}
    >>> person = Person.create({"name": "Ada", "address": {"street": "Main", "city": "London"}})
    >>> person.address.city
    'London'
"""

from __future__ import annotations

from typing import ClassVar

from .base_document import BaseDocument
from .types import DocumentKind


class EmbeddedDocument(BaseDocument):
    """Base class for documents nested inside other documents."""

    DOCUMENT_KIND: ClassVar[DocumentKind] = DocumentKind.EMBEDDED
    _root_document: ClassVar[bool] = True
