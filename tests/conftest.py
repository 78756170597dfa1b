"""
Shared fixtures for dynamic-record tests.
"""

import copy

import pytest

from dynamic_record.registry import SchemaRegistry
from dynamic_record.store import InMemoryDocumentStore

RANDOM_TABLE_SCHEMA = {
    "$id": "random_table",
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Random Table",
    "type": "object",
    "properties": {
        "string": {"type": "string"},
        "int": {"type": "integer"},
        "float": {"type": "number"},
    },
    "required": ["string"],
}

COUNTED_TABLE_SCHEMA = {
    "$id": "counted_table",
    "$schema": "http://json-schema.org/draft-07/schema#",
    "title": "Counted Table",
    "type": "object",
    "properties": {
        "id": {"type": "integer", "isAutoIncrement": True},
        "name": {"type": "string"},
    },
    "required": ["id", "name"],
}


@pytest.fixture
def random_schema():
    """Schema of a table without auto-increment columns."""
    return copy.deepcopy(RANDOM_TABLE_SCHEMA)


@pytest.fixture
def counted_schema():
    """Schema of a table with one auto-increment column."""
    return copy.deepcopy(COUNTED_TABLE_SCHEMA)


@pytest.fixture
async def store():
    """Connected in-memory document store."""
    store = InMemoryDocumentStore()
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
async def registry(store, random_schema, counted_schema):
    """Registry with random_table and counted_table registered."""
    registry = SchemaRegistry(store)
    await registry.create_table(random_schema)
    await registry.create_table(counted_schema)
    return registry
