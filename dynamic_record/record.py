"""
Table gateway for dynamic-record.

DynamicRecord is a per-table session. It owns the table's SchemaRegistry
and SchemaValidator, resolves once whether the table exists, and hands out
Models: new ones through `Model`, stored ones through the finders.

Example:
    >>> async with DynamicRecord("random_table") as Random:
    ...     model = Random.Model({"string": "Velit tempor.", "int": 42})
    ...     await model.save()
    ...     found = await Random.find_by({"string": "Velit tempor."})
    ...     newest = await Random.last(5)

Invariants:
    - Store connection and table lookup happen once per gateway, on first use
    - A failed lookup is remembered; every later operation raises the same error
    - Models returned by finders are SAVED; Models from `Model(...)` are NEW
    - find_by(), first() and last() without a count return None on no match

How to change safely:
    - Finders pass queries straight to the store; keep them equality filters
    - close_connection() closes the store for every gateway sharing it
"""

from __future__ import annotations

import asyncio
import functools
import inspect
import logging
from typing import Any, Callable, Dict, List, Optional, Union

from .collection import DynamicCollection
from .config import Settings
from .errors import TableNotFoundError
from .model import Model, TableContext
from .registry import SchemaRegistry
from .store import DESCENDING, DocumentCollection, DocumentStore, create_store
from .validator import SchemaValidator

logger = logging.getLogger(__name__)

OrderBy = Union[str, Callable[..., Any]]


def _is_comparator(func: Callable[..., Any]) -> bool:
    """Whether func takes two positional arguments (a cmp-style comparator)."""
    try:
        parameters = inspect.signature(func).parameters.values()
    except (TypeError, ValueError):
        return False
    positional = [
        p
        for p in parameters
        if p.kind in (p.POSITIONAL_ONLY, p.POSITIONAL_OR_KEYWORD) and p.default is p.empty
    ]
    return len(positional) == 2


def order_documents(documents: List[Dict[str, Any]], order_by: OrderBy) -> List[Dict[str, Any]]:
    """Stable ascending sort of stored documents.

    With a field name, documents missing the field (or holding None) sort last.

    Args:
        documents: Documents to sort
        order_by: Field name, one-argument key function, or two-argument
            comparator returning a negative, zero or positive number
    """
    if isinstance(order_by, str):
        return sorted(documents, key=lambda d: (d.get(order_by) is None, d.get(order_by)))
    if callable(order_by):
        if _is_comparator(order_by):
            return sorted(documents, key=functools.cmp_to_key(order_by))
        return sorted(documents, key=order_by)
    raise TypeError(f"order_by must be a field name or a callable, not {type(order_by).__name__}")


class DynamicRecord:
    """Session on one table.

    Attributes:
        table_slug: Table identifier
        schema: The table's SchemaRegistry
        validator: The table's SchemaValidator
        Model: Factory for new Models of this table
    """

    def __init__(
        self,
        table_slug: str,
        *,
        store: Optional[DocumentStore] = None,
        settings: Optional[Settings] = None,
    ) -> None:
        """Initialize a gateway.

        Args:
            table_slug: Table identifier
            store: Document store to use (created from settings when omitted)
            settings: Store settings (read from the environment when omitted)
        """
        self.table_slug = table_slug
        self._store = store if store is not None else create_store(settings)
        self.schema = SchemaRegistry(self._store)
        self.validator = SchemaValidator(self.schema.load_json_schema)
        self._ready_task: Optional[asyncio.Future] = None
        self._context = TableContext(
            table_slug=table_slug,
            schema=self.schema,
            validator=self.validator,
            ready=self._ready,
        )
        self.Model = functools.partial(Model, self._context)

    @property
    def store(self) -> DocumentStore:
        return self._store

    async def _ready(self) -> DocumentCollection:
        if self._ready_task is None:
            self._ready_task = asyncio.ensure_future(self._resolve_table())
        return await asyncio.shield(self._ready_task)

    async def _resolve_table(self) -> DocumentCollection:
        await self._store.connect()
        descriptor = await self.schema.read(self.table_slug)
        if not descriptor.exists:
            raise TableNotFoundError(self.table_slug)

        logger.info(f"Table '{self.table_slug}' ready with {len(descriptor.columns)} columns")
        return self._store.collection(self.table_slug)

    async def ready(self) -> None:
        """Wait until the table is resolved.

        Raises:
            TableNotFoundError: If no schema is registered for the table
            StoreConnectionError: If the store cannot be reached
        """
        await self._ready()

    async def close_connection(self) -> None:
        """Close the store connection.

        Meant as the last call of the process; the gateway (and any other
        gateway on the same store) cannot be used afterwards.
        """
        if self._ready_task is not None and not self._ready_task.done():
            await asyncio.wait([self._ready_task])
        await self._store.close()

    async def __aenter__(self) -> DynamicRecord:
        await self._store.connect()
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close_connection()

    def _hydrate_one(self, document: Optional[Dict[str, Any]]) -> Optional[Model]:
        if document is None:
            return None
        return Model(self._context, document, preserve_original=True)

    def _hydrate(self, documents: List[Dict[str, Any]]) -> DynamicCollection:
        return DynamicCollection(
            self.Model,
            *(Model(self._context, document, preserve_original=True) for document in documents),
        )

    async def find_by(self, query: Dict[str, Any]) -> Optional[Model]:
        """Get the first record matching query.

        Returns:
            The matching Model, or None
        """
        collection = await self._ready()
        return self._hydrate_one(await collection.find_one(query))

    async def where(
        self,
        query: Dict[str, Any],
        order_by: Optional[OrderBy] = None,
    ) -> DynamicCollection:
        """Get every record matching query.

        Args:
            query: Equality filter
            order_by: Field name (ascending, stable), key function or two-argument
                comparator applied to the stored documents; store order when omitted

        Returns:
            Collection of SAVED Models
        """
        collection = await self._ready()
        documents = await collection.find(query)
        if order_by is not None:
            documents = order_documents(documents, order_by)
        return self._hydrate(documents)

    async def all(self) -> DynamicCollection:
        """Get every record of the table in store order."""
        collection = await self._ready()
        return self._hydrate(await collection.find())

    async def first(self, n: Optional[int] = None) -> Union[Model, DynamicCollection, None]:
        """Get the first record, or the first n records.

        Returns:
            Model or None without n; a (possibly empty) collection with n
        """
        collection = await self._ready()
        if n is None:
            return self._hydrate_one(await collection.find_one({}))
        if n <= 0:
            return DynamicCollection(self.Model)
        return self._hydrate(await collection.find({}, limit=n))

    async def last(self, n: Optional[int] = None) -> Union[Model, DynamicCollection, None]:
        """Get the most recently inserted record, or the last n records newest first.

        Returns:
            Model or None without n; a (possibly empty) collection with n
        """
        collection = await self._ready()
        newest_first = [("_id", DESCENDING)]
        if n is None:
            return self._hydrate_one(await collection.find_one({}, sort=newest_first))
        if n <= 0:
            return DynamicCollection(self.Model)
        return self._hydrate(await collection.find({}, sort=newest_first, limit=n))

    def __repr__(self) -> str:
        return f"DynamicRecord({self.table_slug!r})"
