"""
Base protocol for document store backends.

This module defines the DocumentStore and DocumentCollection protocols that
every backend implements. The record layer only ever talks to these
protocols, so a table gateway runs unchanged against MongoDB or the
in-memory store.

Invariants:
    - Documents are plain dicts; the store assigns the "_id" identity field
    - Queries are equality filters on (possibly dotted) field paths
    - increment() is atomic with respect to other increments on the same document
    - Reserved collections "_schema" and "_counters" hold table metadata

How to change safely:
    - Protocol changes require updating all implementations
    - Keep query semantics to equality matching; richer queries belong to the store
"""

from __future__ import annotations

from abc import abstractmethod
from typing import Any, Dict, List, Optional, Protocol, Sequence, Tuple, runtime_checkable

SCHEMA_COLLECTION = "_schema"
COUNTERS_COLLECTION = "_counters"

ASCENDING = 1
DESCENDING = -1

Document = Dict[str, Any]
SortSpec = Sequence[Tuple[str, int]]


@runtime_checkable
class DocumentCollection(Protocol):
    """Protocol for a single collection of documents.

    Example:
        >>> col = store.collection("random_table")
        >>> doc_id = await col.insert_one({"string": "Velit tempor."})
        >>> await col.find_one({"_id": doc_id})
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """Collection name."""
        ...

    @abstractmethod
    async def find_one(
        self,
        query: Optional[Document] = None,
        sort: Optional[SortSpec] = None,
    ) -> Optional[Document]:
        """Return the first matching document, or None.

        Args:
            query: Equality filter (empty or None matches everything)
            sort: Optional list of (field, direction) pairs
        """
        ...

    @abstractmethod
    async def find(
        self,
        query: Optional[Document] = None,
        sort: Optional[SortSpec] = None,
        limit: int = 0,
    ) -> List[Document]:
        """Return all matching documents.

        Args:
            query: Equality filter
            sort: Optional list of (field, direction) pairs; None keeps store order
            limit: Maximum documents to return (0 = unlimited)
        """
        ...

    @abstractmethod
    async def insert_one(self, document: Document) -> Any:
        """Insert a document and return its store-assigned identity.

        The passed dict is not modified.
        """
        ...

    @abstractmethod
    async def update_one(
        self,
        query: Document,
        values: Document,
        upsert: bool = False,
    ) -> int:
        """Set fields on the first matching document.

        Args:
            query: Equality filter
            values: Field values to set
            upsert: Insert query + values when nothing matches

        Returns:
            Number of documents matched
        """
        ...

    @abstractmethod
    async def delete_one(self, query: Document) -> int:
        """Delete the first matching document. Returns the number deleted."""
        ...

    @abstractmethod
    async def delete_many(self, query: Optional[Document] = None) -> int:
        """Delete all matching documents. Returns the number deleted."""
        ...

    @abstractmethod
    async def increment(
        self,
        query: Document,
        field: str,
        amount: int = 1,
        upsert: bool = False,
    ) -> Optional[int]:
        """Atomically add amount to a numeric field.

        Args:
            query: Equality filter selecting the document
            field: Dotted path of the field to change
            amount: Value to add (negative to decrement)
            upsert: Create the document when nothing matches

        Returns:
            The new field value, or None if no document was changed
        """
        ...


@runtime_checkable
class DocumentStore(Protocol):
    """Protocol for document store backends.

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.connect()
        >>> col = store.collection("random_table")
    """

    @abstractmethod
    async def connect(self) -> None:
        """Connect to the backend. Calling it again is a no-op.

        Raises:
            StoreConnectionError: If connection fails
        """
        ...

    @abstractmethod
    async def close(self) -> None:
        """Release the connection."""
        ...

    @abstractmethod
    def collection(self, name: str) -> DocumentCollection:
        """Get a collection handle by name."""
        ...

    @abstractmethod
    async def list_collection_names(self) -> List[str]:
        """Names of all collections in the database."""
        ...

    @abstractmethod
    async def drop_collection(self, name: str) -> None:
        """Drop a collection and all its documents."""
        ...

    @property
    @abstractmethod
    def is_connected(self) -> bool:
        """Whether currently connected to the backend."""
        ...
