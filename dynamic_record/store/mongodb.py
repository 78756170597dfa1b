"""
MongoDB document store implementation.

This module provides the production backend on top of pymongo's asyncio
client (AsyncMongoClient). It works with:
- MongoDB Community / Enterprise
- MongoDB Atlas (mongodb+srv:// connection strings)

Invariants:
    - One client (and connection pool) per store instance
    - connect() verifies the server with a ping before reporting success
    - Every pymongo exception surfaces as StoreError, chained to the original
    - Counter increments use find_one_and_update with $inc, which is atomic per document

How to change safely:
    - Test against a real server (tests/e2e) before deploying
    - Keep the equality-filter contract of DocumentCollection
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import Any, Iterator, List, Optional

from pymongo import AsyncMongoClient, ReturnDocument
from pymongo.asynchronous.collection import AsyncCollection
from pymongo.asynchronous.database import AsyncDatabase
from pymongo.errors import PyMongoError

from ..config import Settings
from ..errors import StoreConnectionError, StoreError
from .base import Document, SortSpec

logger = logging.getLogger(__name__)


@contextmanager
def translate_errors(operation: str, collection: Optional[str] = None) -> Iterator[None]:
    """Re-raise pymongo failures as StoreError."""
    try:
        yield
    except PyMongoError as e:
        raise StoreError(
            f"{operation} failed on {collection or 'database'}: {e}",
            operation=operation,
            collection=collection,
        ) from e


def _resolve(document: Document, path: str) -> Any:
    value: Any = document
    for part in path.split("."):
        value = value[part]
    return value


class MongoCollection:
    """MongoDB implementation of DocumentCollection."""

    def __init__(self, collection: AsyncCollection) -> None:
        self._collection = collection

    @property
    def name(self) -> str:
        return self._collection.name

    async def find_one(
        self,
        query: Optional[Document] = None,
        sort: Optional[SortSpec] = None,
    ) -> Optional[Document]:
        with translate_errors("find_one", self.name):
            if sort:
                return await self._collection.find_one(query or {}, sort=list(sort))
            return await self._collection.find_one(query or {})

    async def find(
        self,
        query: Optional[Document] = None,
        sort: Optional[SortSpec] = None,
        limit: int = 0,
    ) -> List[Document]:
        with translate_errors("find", self.name):
            cursor = self._collection.find(query or {}, limit=limit)
            if sort:
                cursor = cursor.sort(list(sort))
            return [document async for document in cursor]

    async def insert_one(self, document: Document) -> Any:
        # insert_one adds "_id" to the dict it is given
        with translate_errors("insert_one", self.name):
            result = await self._collection.insert_one(dict(document))
            return result.inserted_id

    async def update_one(
        self,
        query: Document,
        values: Document,
        upsert: bool = False,
    ) -> int:
        with translate_errors("update_one", self.name):
            result = await self._collection.update_one(query, {"$set": values}, upsert=upsert)
            return result.matched_count

    async def delete_one(self, query: Document) -> int:
        with translate_errors("delete_one", self.name):
            result = await self._collection.delete_one(query)
            return result.deleted_count

    async def delete_many(self, query: Optional[Document] = None) -> int:
        with translate_errors("delete_many", self.name):
            result = await self._collection.delete_many(query or {})
            return result.deleted_count

    async def increment(
        self,
        query: Document,
        field: str,
        amount: int = 1,
        upsert: bool = False,
    ) -> Optional[int]:
        with translate_errors("increment", self.name):
            updated = await self._collection.find_one_and_update(
                query,
                {"$inc": {field: amount}},
                upsert=upsert,
                return_document=ReturnDocument.AFTER,
            )

        if updated is None:
            return None
        return _resolve(updated, field)


class MongoDocumentStore:
    """MongoDB implementation of DocumentStore.

    Attributes:
        settings: Connection settings

    Example:
        >>> store = MongoDocumentStore(Settings())
        >>> await store.connect()
        >>> col = store.collection("random_table")
    """

    def __init__(self, settings: Settings) -> None:
        self.settings = settings
        self._client: AsyncMongoClient | None = None
        self._db: AsyncDatabase | None = None
        self._connected = False

    @property
    def is_connected(self) -> bool:
        """Whether connected to MongoDB."""
        return self._connected and self._client is not None

    async def connect(self) -> None:
        """Create the client and ping the server.

        Raises:
            StoreConnectionError: If the server cannot be reached
        """
        if self._connected:
            return

        uri = self.settings.connection_uri
        client: AsyncMongoClient = AsyncMongoClient(
            uri,
            maxPoolSize=self.settings.pool_size,
            serverSelectionTimeoutMS=self.settings.server_selection_timeout_ms,
        )
        try:
            await client.admin.command("ping")
        except PyMongoError as e:
            await client.close()
            raise StoreConnectionError(
                f"Failed to connect to MongoDB: {e}",
                address=self.settings.address,
            ) from e

        self._client = client
        self._db = client[self.settings.database_name]
        self._connected = True
        logger.info(
            "Connected to MongoDB",
            extra={"database": self.settings.database_name, "pool_size": self.settings.pool_size},
        )

    async def close(self) -> None:
        """Close the client and its connection pool."""
        if self._client is not None:
            try:
                await self._client.close()
            except PyMongoError as e:
                logger.warning(f"Error closing MongoDB client: {e}")
            self._client = None
            self._db = None

        self._connected = False
        logger.info("MongoDB connection closed")

    def _database(self) -> AsyncDatabase:
        if self._db is None:
            raise StoreConnectionError("MongoDB store is not connected", address=self.settings.address)
        return self._db

    def collection(self, name: str) -> MongoCollection:
        return MongoCollection(self._database()[name])

    async def list_collection_names(self) -> List[str]:
        with translate_errors("list_collection_names"):
            return await self._database().list_collection_names()

    async def drop_collection(self, name: str) -> None:
        with translate_errors("drop_collection", name):
            await self._database().drop_collection(name)
