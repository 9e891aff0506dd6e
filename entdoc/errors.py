"""
Error types for entdoc.

This module defines all exception types raised by the library:
- EntDocError: Base exception
- SchemaError: Invalid schema declaration (raised at compile time)
- ValidationError: Document failed validation
- UnknownFieldError: Unknown key in data passed to create()
- ClientNotConnectedError: No storage client registered yet
- ClientAlreadyConnectedError: A storage client was registered twice
- UsageError: Library API used incorrectly

Invariants:
    - All errors inherit from EntDocError
    - Errors include context for debugging
    - Storage errors raised by a client are never wrapped
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class EntDocError(Exception):
    """Base exception for all entdoc errors.

    Attributes:
        message: Error message
        code: Error code for programmatic handling
        details: Additional error context
    """

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.code = code or "ENTDOC_ERROR"
        self.details = details or {}


class SchemaError(EntDocError):
    """Schema declaration is invalid.

    Raised when:
    - A field type token is not supported
    - A custom type lacks to_data/from_data/validate
    - An option is unknown or not allowed for the field type
    - An embedded document declares a document reference
    """

    def __init__(
        self,
        message: str,
        class_name: Optional[str] = None,
        field_name: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="SCHEMA_ERROR",
            details={"class_name": class_name, "field_name": field_name},
        )
        self.class_name = class_name
        self.field_name = field_name


class ValidationError(EntDocError):
    """Document validation failed.

    Raised when:
    - Field value has wrong type
    - Required field is empty
    - Value violates match/choices/min/max
    - A custom validate() rejected the value
    """

    def __init__(
        self,
        message: str,
        class_name: Optional[str] = None,
        field_name: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"class_name": class_name, "field": field_name},
        )
        self.class_name = class_name
        self.field_name = field_name


class UnknownFieldError(EntDocError):
    """Unknown key in data for a new document.

    Includes suggestions for similar field names.

    Attributes:
        field_name: The unknown key
        type_name: The document class being created
        suggestions: Similar field names
    """

    def __init__(
        self,
        field_name: str,
        type_name: str,
        suggestions: Optional[List[str]] = None,
    ) -> None:
        suggestions = suggestions or []
        msg = f"Unknown key '{field_name}' in data object for new {type_name} instance"
        if suggestions:
            msg += f". Did you mean: {', '.join(suggestions)}?"

        super().__init__(
            msg,
            code="UNKNOWN_FIELD",
            details={
                "field_name": field_name,
                "type_name": type_name,
                "suggestions": suggestions,
            },
        )
        self.field_name = field_name
        self.type_name = type_name
        self.suggestions = suggestions


class ClientNotConnectedError(EntDocError):
    """No storage client has been registered.

    Raised when a document is loaded or saved before connect().
    """

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(
            message or "You must first call connect() before loading/saving documents",
            code="NOT_CONNECTED",
        )


class ClientAlreadyConnectedError(EntDocError):
    """A storage client is already registered for this process."""

    def __init__(self, message: Optional[str] = None) -> None:
        super().__init__(message or "Client was already set", code="ALREADY_CONNECTED")


class UsageError(EntDocError):
    """Library API was called incorrectly.

    Raised when:
    - A document class is instantiated with arguments
    - Query options are malformed
    - A purge targets schema or private properties
    """

    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None) -> None:
        super().__init__(message, code="USAGE_ERROR", details=details)
