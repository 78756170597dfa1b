"""
E2E test fixtures for dynamic-record.

These tests require a running MongoDB server reachable through the
DATABASE_ environment variables (DATABASE_HOST, DATABASE_USERNAME, ...).
"""

import uuid

import pytest

from dynamic_record import Settings, SchemaRegistry, StoreBackend
from dynamic_record.store import MongoDocumentStore


@pytest.fixture
async def mongo_store():
    """Connected MongoDB store configured from the environment."""
    store = MongoDocumentStore(Settings(backend=StoreBackend.MONGODB))
    await store.connect()
    yield store
    await store.close()


@pytest.fixture
def table_suffix() -> str:
    """Unique suffix for test isolation."""
    return uuid.uuid4().hex[:8]


@pytest.fixture
async def mongo_tables(mongo_store, random_schema, counted_schema, table_suffix):
    """Register uniquely named copies of the test tables, dropped afterwards."""
    registry = SchemaRegistry(mongo_store)
    slugs = {}
    for schema in (random_schema, counted_schema):
        slug = f"{schema['$id']}_{table_suffix}"
        await registry.create_table({**schema, "$id": slug})
        slugs[schema["$id"]] = slug

    yield slugs

    if not mongo_store.is_connected:
        await mongo_store.connect()
    for slug in slugs.values():
        await registry.drop_table(slug)
