"""
In-memory document store implementation for testing.

This module provides a simple in-memory backend for:
- Unit tests
- Integration tests
- Local development without a MongoDB server

Invariants:
    - All data is lost on process exit
    - Documents are deep-copied on the way in and out, like a real wire round-trip
    - Identities are bson ObjectIds, so "_id" order matches insertion order
    - Operations fail with StoreConnectionError until connect() is called

How to change safely:
    - This is test-only code, changes don't affect production
    - Keep query and sort semantics in line with MongoDB for equality filters
"""

from __future__ import annotations

import asyncio
import copy
import logging
from collections import defaultdict
from typing import Any, Dict, List, Optional

from bson import ObjectId

from ..errors import StoreConnectionError, StoreError
from .base import Document, SortSpec

logger = logging.getLogger(__name__)

_MISSING = object()


def get_path(document: Document, path: str) -> Any:
    """Resolve a dotted field path, returning _MISSING when absent."""
    value: Any = document
    for part in path.split("."):
        if not isinstance(value, dict) or part not in value:
            return _MISSING
        value = value[part]
    return value


def set_path(document: Document, path: str, value: Any) -> None:
    """Set a dotted field path, creating intermediate dicts."""
    parts = path.split(".")
    target = document
    for part in parts[:-1]:
        target = target.setdefault(part, {})
    target[parts[-1]] = value


def matches(document: Document, query: Optional[Document]) -> bool:
    """Whether every query field equals the document field."""
    if not query:
        return True
    for path, expected in query.items():
        actual = get_path(document, path)
        if actual is _MISSING:
            if expected is not None:
                return False
        elif actual != expected:
            return False
    return True


def _sort_key(path: str):
    # Missing and null sort before any value, as in MongoDB
    def key(document: Document) -> tuple:
        value = get_path(document, path)
        if value is _MISSING or value is None:
            return (0, 0)
        return (1, value)

    return key


def sort_documents(documents: List[Document], sort: Optional[SortSpec]) -> List[Document]:
    """Stable multi-key sort by (field, direction) pairs."""
    if not sort:
        return documents
    result = list(documents)
    for path, direction in reversed(list(sort)):
        result.sort(key=_sort_key(path), reverse=direction < 0)
    return result


class InMemoryCollection:
    """In-memory implementation of DocumentCollection.

    Documents are kept in insertion order, which is the store-native order
    returned by find() without a sort.
    """

    def __init__(self, store: InMemoryDocumentStore, name: str) -> None:
        self._store = store
        self._name = name

    @property
    def name(self) -> str:
        return self._name

    @property
    def _documents(self) -> List[Document]:
        return self._store._collections[self._name]

    def _check(self, operation: str) -> None:
        if not self._store.is_connected:
            raise StoreConnectionError("In-memory store is not connected")
        failure = self._store._failures.pop((self._name, operation), None)
        if failure is not None:
            raise failure

    def _select(
        self,
        query: Optional[Document],
        sort: Optional[SortSpec],
        limit: int,
    ) -> List[Document]:
        result = [doc for doc in self._documents if matches(doc, query)]
        result = sort_documents(result, sort)
        if limit:
            result = result[:limit]
        return copy.deepcopy(result)

    async def find_one(
        self,
        query: Optional[Document] = None,
        sort: Optional[SortSpec] = None,
    ) -> Optional[Document]:
        self._check("find_one")
        found = self._select(query, sort, 1)
        return found[0] if found else None

    async def find(
        self,
        query: Optional[Document] = None,
        sort: Optional[SortSpec] = None,
        limit: int = 0,
    ) -> List[Document]:
        self._check("find")
        return self._select(query, sort, limit)

    async def insert_one(self, document: Document) -> Any:
        async with self._store._lock:
            self._check("insert_one")
            stored = copy.deepcopy(document)
            stored.setdefault("_id", ObjectId())
            if any(doc["_id"] == stored["_id"] for doc in self._documents):
                raise StoreError(
                    f"Duplicate key _id: {stored['_id']}",
                    operation="insert_one",
                    collection=self._name,
                )
            self._documents.append(stored)
            return stored["_id"]

    async def update_one(
        self,
        query: Document,
        values: Document,
        upsert: bool = False,
    ) -> int:
        async with self._store._lock:
            self._check("update_one")
            for doc in self._documents:
                if matches(doc, query):
                    for path, value in values.items():
                        set_path(doc, path, copy.deepcopy(value))
                    return 1

            if upsert:
                created: Document = {"_id": ObjectId()}
                for path, value in {**query, **values}.items():
                    set_path(created, path, copy.deepcopy(value))
                self._documents.append(created)
            return 0

    async def delete_one(self, query: Document) -> int:
        async with self._store._lock:
            self._check("delete_one")
            for index, doc in enumerate(self._documents):
                if matches(doc, query):
                    del self._documents[index]
                    return 1
            return 0

    async def delete_many(self, query: Optional[Document] = None) -> int:
        async with self._store._lock:
            self._check("delete_many")
            kept = [doc for doc in self._documents if not matches(doc, query)]
            deleted = len(self._documents) - len(kept)
            self._documents[:] = kept
            return deleted

    async def increment(
        self,
        query: Document,
        field: str,
        amount: int = 1,
        upsert: bool = False,
    ) -> Optional[int]:
        async with self._store._lock:
            self._check("increment")
            for doc in self._documents:
                if matches(doc, query):
                    current = get_path(doc, field)
                    if current is _MISSING:
                        current = 0
                    new_value = current + amount
                    set_path(doc, field, new_value)
                    return new_value

            if not upsert:
                return None

            created: Document = {"_id": ObjectId()}
            for path, value in query.items():
                set_path(created, path, copy.deepcopy(value))
            set_path(created, field, amount)
            self._documents.append(created)
            return amount


class InMemoryDocumentStore:
    """In-memory implementation of DocumentStore for testing.

    Thread safety:
        Uses an asyncio lock around writes. Safe to use from multiple
        coroutines on one event loop.

    Example:
        >>> store = InMemoryDocumentStore()
        >>> await store.connect()
        >>> await store.collection("random_table").insert_one({"int": 42})
    """

    def __init__(self) -> None:
        self._collections: Dict[str, List[Document]] = defaultdict(list)
        self._failures: Dict[tuple, Exception] = {}
        self._connected = False
        self._lock = asyncio.Lock()

    @property
    def is_connected(self) -> bool:
        """Whether connected (true between connect() and close())."""
        return self._connected

    async def connect(self) -> None:
        """Connect (no-op for in-memory)."""
        self._connected = True
        logger.debug("InMemoryDocumentStore connected")

    async def close(self) -> None:
        """Close the store. Data is kept so the store can be reconnected."""
        self._connected = False
        logger.debug("InMemoryDocumentStore closed")

    def collection(self, name: str) -> InMemoryCollection:
        return InMemoryCollection(self, name)

    async def list_collection_names(self) -> List[str]:
        return [name for name in self._collections]

    async def drop_collection(self, name: str) -> None:
        self._collections.pop(name, None)

    # Testing helpers

    def create_collection(self, name: str) -> None:
        """Create an empty collection (testing helper)."""
        self._collections.setdefault(name, [])

    def documents(self, name: str) -> List[Document]:
        """Copy of every stored document in a collection (testing helper)."""
        return copy.deepcopy(self._collections.get(name, []))

    def fail_next(self, collection: str, operation: str, exception: Exception) -> None:
        """Make the next call of operation on collection raise exception (testing helper).

        Args:
            collection: Collection name
            operation: Method name, e.g. "insert_one" or "increment"
            exception: Exception to raise
        """
        self._failures[(collection, operation)] = exception
