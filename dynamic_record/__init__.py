"""
dynamic-record - ActiveRecord-style data access over a document database.

This package provides schema-validated records on top of a schemaless store:
- DynamicRecord: per-table gateway with finders (find_by, where, all, first, last)
- Model: a single record with save() / destroy()
- DynamicCollection: a list of Models with save_all()
- SchemaRegistry: table schemas and auto-increment counters
- SchemaValidator: JSON schema references compiled into validation functions

Example:
    >>> from dynamic_record import DynamicRecord
    >>>
    >>> async with DynamicRecord("random_table") as Random:
    ...     model = Random.Model({"string": "Velit tempor.", "int": 42})
    ...     await model.save()
    ...     same = await Random.find_by({"int": 42})

Invariants:
    - A Model's store identity is never part of its data
    - save() and destroy() on one Model are serialized in call order
    - Auto-increment sequences are assigned before validation and unwound
      (best effort) when the insert fails
"""

from ._version import __version__
from .collection import DynamicCollection
from .config import Settings, StoreBackend
from .errors import (
    AlreadyDestroyedError,
    DynamicRecordError,
    NotPersistedError,
    SchemaError,
    SchemaLoadError,
    StoreConnectionError,
    StoreError,
    TableExistsError,
    TableNotFoundError,
    ValidationError,
)
from .model import Model, ModelState, TableContext
from .record import DynamicRecord
from .registry import SchemaRegistry
from .schema import Column, ColumnType, TableDescriptor
from .store import InMemoryDocumentStore, MongoDocumentStore, create_store
from .validator import CompiledSchema, FieldError, SchemaValidator

__all__ = [
    # Version
    "__version__",
    # Records
    "DynamicRecord",
    "Model",
    "ModelState",
    "TableContext",
    "DynamicCollection",
    # Schema
    "SchemaRegistry",
    "TableDescriptor",
    "Column",
    "ColumnType",
    "SchemaValidator",
    "CompiledSchema",
    "FieldError",
    # Store
    "Settings",
    "StoreBackend",
    "create_store",
    "MongoDocumentStore",
    "InMemoryDocumentStore",
    # Errors
    "DynamicRecordError",
    "TableNotFoundError",
    "TableExistsError",
    "SchemaError",
    "SchemaLoadError",
    "ValidationError",
    "NotPersistedError",
    "AlreadyDestroyedError",
    "StoreError",
    "StoreConnectionError",
]
