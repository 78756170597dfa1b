"""
Schema registry for dynamic-record.

The SchemaRegistry reads and registers table schemas and owns the per-table
auto-increment counters. It provides:
- read(): the TableDescriptor of a table, or an empty descriptor
- create_table() / drop_table(): register and remove a table
- _increment_counter() / _decrement_counter(): sequence maintenance

Storage layout:
    _schema:
        { _$id: <table slug>, _$schema: <dialect>, title, type, properties, required }
    _counters:
        { _$id: <table slug>, sequences: { <column label>: <last issued value> } }

Invariants:
    - One _schema document per table slug
    - A _counters document exists only for tables with auto-increment columns
    - Sequences never go below zero and never move back past a value
      issued to another insert
    - _decrement_counter() is a best-effort compensation, not a transaction

Example:
    >>> registry = SchemaRegistry(store)
    >>> await registry.create_table(random_table_schema)
    >>> descriptor = await registry.read("random_table")
    >>> descriptor.exists
    True
"""

from __future__ import annotations

import logging
from typing import Any, Dict, Optional

from .errors import TableExistsError
from .schema import (
    TableDescriptor,
    escape_reserved_keys,
    restore_reserved_keys,
    validate_table_slug,
)
from .store import COUNTERS_COLLECTION, SCHEMA_COLLECTION, DocumentStore

logger = logging.getLogger(__name__)

RESERVED_ID = "_$id"


class SchemaRegistry:
    """Reads and registers table schemas stored in the document store.

    Attributes:
        descriptor: The descriptor returned by the most recent read()
    """

    def __init__(self, store: DocumentStore) -> None:
        self._store = store
        self.descriptor = TableDescriptor.empty()

    @property
    def table_slug(self) -> str:
        """Slug of the most recently read table ("" before a successful read)."""
        return self.descriptor.table_slug

    async def load_json_schema(self, table_slug: str) -> Optional[Dict[str, Any]]:
        """Load a table's JSON schema with reserved keys restored.

        Returns:
            The schema document, or None if no table is registered under the slug
        """
        stored = await self._store.collection(SCHEMA_COLLECTION).find_one({RESERVED_ID: table_slug})
        if stored is None:
            return None
        return restore_reserved_keys(stored)

    async def read(self, table_slug: str) -> TableDescriptor:
        """Read the descriptor of a table.

        Args:
            table_slug: Table identifier

        Returns:
            The table's descriptor, or an empty descriptor (table_slug == "")
            when the table does not exist
        """
        document = await self.load_json_schema(table_slug)
        if document is None:
            logger.debug(f"No schema registered for table '{table_slug}'")
            self.descriptor = TableDescriptor.empty()
        else:
            self.descriptor = TableDescriptor.from_json_schema(document)
        return self.descriptor

    async def sequences(self, table_slug: str) -> Optional[Dict[str, int]]:
        """Current sequence values of a table's auto-increment columns.

        Returns:
            Mapping of column label to last issued value, or None if the
            table has no counter record
        """
        counter = await self._store.collection(COUNTERS_COLLECTION).find_one({RESERVED_ID: table_slug})
        if counter is None:
            return None
        return dict(counter.get("sequences", {}))

    async def create_table(self, json_schema: Dict[str, Any]) -> TableDescriptor:
        """Register a table from its JSON schema.

        Writes the schema document and, if the table has auto-increment
        columns, a counter record with every sequence at zero.

        Args:
            json_schema: Schema document whose "$id" is the table slug

        Returns:
            The registered table's descriptor

        Raises:
            SchemaError: If the slug or a column type is invalid
            TableExistsError: If the slug is already registered
        """
        table_slug = json_schema.get("$id", "")
        validate_table_slug(table_slug)
        descriptor = TableDescriptor.from_json_schema(json_schema)

        if await self.load_json_schema(table_slug) is not None:
            raise TableExistsError(table_slug)

        await self._store.collection(SCHEMA_COLLECTION).insert_one(escape_reserved_keys(json_schema))

        auto_increment = descriptor.auto_increment_columns
        if auto_increment:
            await self._store.collection(COUNTERS_COLLECTION).insert_one(
                {
                    RESERVED_ID: table_slug,
                    "sequences": {column.label: 0 for column in auto_increment},
                }
            )

        logger.info(
            f"Registered table '{table_slug}' with {len(descriptor.columns)} columns "
            f"({len(auto_increment)} auto-increment)"
        )
        self.descriptor = descriptor
        return descriptor

    async def drop_table(self, table_slug: str) -> None:
        """Remove a table's schema, counters and data."""
        await self._store.collection(SCHEMA_COLLECTION).delete_one({RESERVED_ID: table_slug})
        await self._store.collection(COUNTERS_COLLECTION).delete_one({RESERVED_ID: table_slug})
        await self._store.drop_collection(table_slug)
        if self.descriptor.table_slug == table_slug:
            self.descriptor = TableDescriptor.empty()
        logger.info(f"Dropped table '{table_slug}'")

    async def _increment_counter(self, table_slug: str, column_label: str) -> int:
        """Atomically increment a column's sequence and return the new value.

        Creates the counter record if it does not exist yet.
        """
        value = await self._store.collection(COUNTERS_COLLECTION).increment(
            {RESERVED_ID: table_slug},
            f"sequences.{column_label}",
            1,
            upsert=True,
        )
        logger.debug(f"Incremented {table_slug}.{column_label} to {value}")
        return value

    async def _decrement_counter(self, table_slug: str, column_label: str, issued: int) -> bool:
        """Take back a sequence value issued to a failed insert.

        The counter is decremented only while it still holds the issued
        value. Once another insert has moved it on, the value is left as a
        gap, so no value is ever handed out twice.

        Returns:
            True if the counter was decremented
        """
        if issued <= 0:
            return False

        value = await self._store.collection(COUNTERS_COLLECTION).increment(
            {RESERVED_ID: table_slug, f"sequences.{column_label}": issued},
            f"sequences.{column_label}",
            -1,
        )
        if value is None:
            logger.debug(
                f"Sequence {table_slug}.{column_label} moved past {issued}, leaving a gap"
            )
            return False

        logger.debug(f"Decremented {table_slug}.{column_label} to {value}")
        return True
