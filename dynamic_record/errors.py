"""
Error types for dynamic-record.

This module defines all exception types raised by the library:
- DynamicRecordError: Base exception
- TableNotFoundError / TableExistsError: Table registration state
- SchemaError / SchemaLoadError: Schema documents and validator compilation
- ValidationError: Record data failed schema validation
- NotPersistedError / AlreadyDestroyedError: Record state machine violations
- StoreError / StoreConnectionError: Passthrough from the document store

Invariants:
    - All errors inherit from DynamicRecordError
    - Errors carry a stable code and a details mapping for programmatic handling
    - Store client exceptions are chained (raise ... from e), never discarded
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional


class DynamicRecordError(Exception):
    """Base exception for all dynamic-record errors.

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
        self.code = code or "DYNAMIC_RECORD_ERROR"
        self.details = details or {}


class TableNotFoundError(DynamicRecordError):
    """No schema is registered for the table slug."""

    def __init__(self, table_slug: str) -> None:
        super().__init__(
            f"Table with name {table_slug} does not exist",
            code="TABLE_NOT_FOUND",
            details={"table_slug": table_slug},
        )
        self.table_slug = table_slug


class TableExistsError(DynamicRecordError):
    """A schema is already registered for the table slug."""

    def __init__(self, table_slug: str) -> None:
        super().__init__(
            f"Table with name {table_slug} already exists",
            code="TABLE_EXISTS",
            details={"table_slug": table_slug},
        )
        self.table_slug = table_slug


class SchemaError(DynamicRecordError):
    """Schema document is malformed.

    Raised when:
    - Table slug is empty, not lowercase or contains whitespace
    - A property declares an unsupported type
    """

    def __init__(self, message: str, table_slug: Optional[str] = None) -> None:
        super().__init__(
            message,
            code="SCHEMA_ERROR",
            details={"table_slug": table_slug},
        )
        self.table_slug = table_slug


class SchemaLoadError(DynamicRecordError):
    """A schema reference could not be resolved for compilation."""

    def __init__(self, schema_ref: str, reason: Optional[str] = None) -> None:
        msg = f"Unable to load schema '{schema_ref}'"
        if reason:
            msg += f": {reason}"
        super().__init__(
            msg,
            code="SCHEMA_LOAD_ERROR",
            details={"schema_ref": schema_ref},
        )
        self.schema_ref = schema_ref


class ValidationError(DynamicRecordError):
    """Record data failed schema validation.

    Attributes:
        errors: One mapping per failure with 'field', 'message' and 'type'
    """

    def __init__(
        self,
        message: str,
        errors: Optional[List[Dict[str, Any]]] = None,
        table_slug: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="VALIDATION_ERROR",
            details={"table_slug": table_slug, "errors": errors or []},
        )
        self.errors = errors or []
        self.table_slug = table_slug


class NotPersistedError(DynamicRecordError):
    """Record has never been saved, so there is nothing to delete."""

    def __init__(self, table_slug: Optional[str] = None) -> None:
        super().__init__(
            "Model not saved in database yet.",
            code="NOT_PERSISTED",
            details={"table_slug": table_slug},
        )


class AlreadyDestroyedError(DynamicRecordError):
    """Record was destroyed and cannot be saved or destroyed again."""

    def __init__(self, table_slug: Optional[str] = None) -> None:
        super().__init__(
            "Model has already been destroyed.",
            code="ALREADY_DESTROYED",
            details={"table_slug": table_slug},
        )


class StoreError(DynamicRecordError):
    """The underlying document store rejected an operation.

    Attributes:
        operation: Store operation that failed (e.g. 'insert_one')
        collection: Collection the operation targeted
    """

    def __init__(
        self,
        message: str,
        operation: Optional[str] = None,
        collection: Optional[str] = None,
    ) -> None:
        super().__init__(
            message,
            code="STORE_ERROR",
            details={"operation": operation, "collection": collection},
        )
        self.operation = operation
        self.collection = collection


class StoreConnectionError(StoreError):
    """Failed to connect to the document store.

    Raised when:
    - Server is unreachable
    - Authentication fails
    - An operation is issued on a closed store
    """

    def __init__(self, message: str, address: Optional[str] = None) -> None:
        super().__init__(message, operation="connect")
        self.code = "STORE_CONNECTION_ERROR"
        self.details["address"] = address
        self.address = address
