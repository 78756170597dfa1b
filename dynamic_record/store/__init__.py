"""
Document store abstraction for dynamic-record.

This module provides a pluggable store interface supporting:
- MongoDB (production, via pymongo's asyncio client)
- In-memory (for testing)

Invariants:
    - The record layer depends only on the DocumentStore protocol
    - Table metadata lives in the reserved "_schema" and "_counters" collections

How to change safely:
    - New backends must implement the DocumentStore and DocumentCollection protocols
    - Run the integration suite against the new backend
"""

from __future__ import annotations

from ..config import Settings, StoreBackend
from .base import (
    ASCENDING,
    COUNTERS_COLLECTION,
    DESCENDING,
    SCHEMA_COLLECTION,
    DocumentCollection,
    DocumentStore,
)
from .memory import InMemoryDocumentStore
from .mongodb import MongoDocumentStore


def create_store(settings: Settings | None = None) -> DocumentStore:
    """Factory function to create a document store from configuration.

    Args:
        settings: Store settings (read from the environment when omitted)

    Returns:
        Appropriate DocumentStore implementation

    Raises:
        ValueError: If backend is not supported
    """
    settings = settings or Settings()

    if settings.backend == StoreBackend.MONGODB:
        return MongoDocumentStore(settings)
    elif settings.backend == StoreBackend.MEMORY:
        return InMemoryDocumentStore()
    else:
        raise ValueError(f"Unsupported store backend: {settings.backend}")


__all__ = [
    # Protocols and constants
    "DocumentStore",
    "DocumentCollection",
    "SCHEMA_COLLECTION",
    "COUNTERS_COLLECTION",
    "ASCENDING",
    "DESCENDING",
    # Factory
    "create_store",
    # Implementations
    "MongoDocumentStore",
    "InMemoryDocumentStore",
]
