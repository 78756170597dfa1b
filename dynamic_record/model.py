"""
Records for dynamic-record.

A Model is one entity bound to one row of a table. It keeps the live,
mutable `data`, the last committed snapshot `original`, and the store
identity separately from `data` so validation never sees store fields.

State machine:
    NEW        original is None, never persisted
    SAVED      original holds the last committed snapshot
    DESTROYED  data and original are None; terminal

    save()     NEW -> SAVED      increment counters, validate, insert
               SAVED -> SAVED    validate, update by identity (or snapshot)
    destroy()  SAVED -> DESTROYED
               NEW -> NotPersistedError
    any        DESTROYED -> AlreadyDestroyedError

Invariants:
    - save() and destroy() on one Model run one at a time, in call order
    - A failed or cancelled insert takes back every sequence value it was
      issued, unless the counter has already moved past it (left as a gap);
      a failing decrement is logged and never hides the insert's own error
    - Counter values are written into data before validation runs

How to change safely:
    - Keep state checks inside the queued operation, so they observe the
      outcome of every earlier save/destroy on the same Model
"""

from __future__ import annotations

import asyncio
import copy
import logging
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, Any, Awaitable, Callable, Dict, Iterable, List, Optional

from .errors import AlreadyDestroyedError, NotPersistedError, ValidationError
from .queue import WriteQueue
from .schema import Column, TableDescriptor, columns_of
from .store import DocumentCollection

if TYPE_CHECKING:
    from .registry import SchemaRegistry
    from .validator import SchemaValidator

logger = logging.getLogger(__name__)


class ModelState(Enum):
    """Lifecycle state of a Model."""

    NEW = "new"
    SAVED = "saved"
    DESTROYED = "destroyed"


@dataclass(frozen=True)
class TableContext:
    """Table-specific collaborators shared by every Model of one gateway.

    Attributes:
        table_slug: Table identifier
        schema: Schema registry of the table
        validator: Validator compiling the table's schema
        ready: Coroutine function resolving to the table's collection once
            the store is connected and the table is known to exist
    """

    table_slug: str
    schema: SchemaRegistry
    validator: SchemaValidator
    ready: Callable[[], Awaitable[DocumentCollection]]


class Model:
    """A single record of a table.

    Models are normally created through a gateway:

        >>> Random = DynamicRecord("random_table", store=store)
        >>> model = Random.Model({"string": "Velit tempor.", "int": 42})
        >>> await model.save()
        >>> model.state
        <ModelState.SAVED: 'saved'>

    Attributes:
        data: Live record data (None once destroyed)
    """

    def __init__(
        self,
        context: TableContext,
        data: Optional[Dict[str, Any]] = None,
        preserve_original: bool = False,
    ) -> None:
        """Initialize a model.

        Args:
            context: Table the model belongs to
            data: Field values; a store "_id" is moved out into the identity
            preserve_original: Treat data as already committed (hydration from the store)
        """
        data = copy.deepcopy(dict(data or {}))
        self._id = data.pop("_id", None)
        self.data: Optional[Dict[str, Any]] = data
        self._original: Optional[Dict[str, Any]] = copy.deepcopy(data) if preserve_original else None
        self._context = context
        self._queue = WriteQueue()
        self._destroyed = False

    @property
    def original(self) -> Optional[Dict[str, Any]]:
        """Last committed snapshot, None if never persisted or destroyed."""
        return self._original

    @property
    def identity(self) -> Any:
        """Store-assigned identity, None until inserted."""
        return self._id

    @property
    def table_slug(self) -> str:
        return self._context.table_slug

    @property
    def state(self) -> ModelState:
        if self._destroyed:
            return ModelState.DESTROYED
        if self._original is None:
            return ModelState.NEW
        return ModelState.SAVED

    async def save(self) -> Model:
        """Insert or update this record.

        Returns:
            self

        Raises:
            AlreadyDestroyedError: If the model was destroyed
            ValidationError: If data does not satisfy the table schema
            SchemaLoadError: If the table schema cannot be compiled
            StoreError: If the store rejects the write
        """
        return await self._queue.submit(self._save)

    async def destroy(self) -> Model:
        """Delete this record from the store.

        Returns:
            self, with data and original cleared

        Raises:
            NotPersistedError: If the model was never saved
            AlreadyDestroyedError: If the model was already destroyed
            StoreError: If the store rejects the delete
        """
        return await self._queue.submit(self._destroy)

    def validate(self, schema: TableDescriptor | Iterable[Column] | None = None) -> bool:
        """Check every field of data against the declared column types.

        Args:
            schema: Table descriptor or columns (defaults to the table's last read descriptor)

        Returns:
            True if every field has a matching column and a value of its type
        """
        if self.data is None:
            return False
        if schema is None:
            schema = self._context.schema.descriptor

        columns = {column.label: column for column in columns_of(schema)}
        for key, value in self.data.items():
            column = columns.get(key)
            if column is None or not column.validate_value(value):
                return False
        return True

    async def _save(self) -> Model:
        if self._destroyed:
            raise AlreadyDestroyedError(self.table_slug)

        collection = await self._context.ready()
        if self._original is None:
            await self._insert(collection)
        else:
            await self._update(collection)
        return self

    async def _insert(self, collection: DocumentCollection) -> None:
        issued: Dict[str, int] = {}
        try:
            sequences = await self._context.schema.sequences(self.table_slug)
            if sequences:
                await self._assign_sequences(list(sequences), issued)

            await self._validate_data()
            identity = await collection.insert_one(self.data)
        except BaseException:
            # Cancelled saves included
            await self._unwind_counters(issued)
            raise

        self._id = identity
        self._original = copy.deepcopy(self.data)
        logger.debug(f"Inserted record {identity} into '{self.table_slug}'")

    async def _update(self, collection: DocumentCollection) -> None:
        await self._validate_data()

        query = self._match_query()
        matched = await collection.update_one(query, self.data)
        if not matched:
            logger.warning(f"Update on '{self.table_slug}' matched no record for {query}")

        self._original = copy.deepcopy(self.data)
        logger.debug(f"Updated record {self._id} in '{self.table_slug}'")

    async def _destroy(self) -> Model:
        if self._destroyed:
            raise AlreadyDestroyedError(self.table_slug)
        if self._original is None:
            raise NotPersistedError(self.table_slug)

        collection = await self._context.ready()
        query = self._match_query()
        deleted = await collection.delete_one(query)
        if not deleted:
            logger.warning(f"Delete on '{self.table_slug}' matched no record for {query}")

        self.data = None
        self._original = None
        self._destroyed = True
        logger.debug(f"Destroyed record {self._id} in '{self.table_slug}'")
        return self

    def _match_query(self) -> Dict[str, Any]:
        if self._id is not None:
            return {"_id": self._id}
        return dict(self._original or {})

    async def _assign_sequences(self, labels: List[str], issued: Dict[str, int]) -> None:
        """Increment every sequence concurrently and copy the values into data.

        Each value is recorded in issued as soon as its increment succeeds, so
        the caller can take back exactly those after a failure.
        """

        async def bump(label: str) -> None:
            value = await self._context.schema._increment_counter(self.table_slug, label)
            issued[label] = value
            self.data[label] = value

        results = await asyncio.gather(*(bump(label) for label in labels), return_exceptions=True)
        for result in results:
            if isinstance(result, BaseException):
                raise result

    async def _unwind_counters(self, issued: Dict[str, int]) -> None:
        if not issued:
            return

        labels = list(issued)
        results = await asyncio.gather(
            *(
                self._context.schema._decrement_counter(self.table_slug, label, issued[label])
                for label in labels
            ),
            return_exceptions=True,
        )
        for label, result in zip(labels, results):
            if isinstance(result, Exception):
                logger.warning(
                    f"Could not decrement counter {self.table_slug}.{label} "
                    f"after failed insert: {result}"
                )

    async def _validate_data(self) -> None:
        validate = await self._context.validator.compile_async(self.table_slug)
        errors = validate(self.data)
        if errors:
            summary = "; ".join(f"{e.field}: {e.message}" if e.field else e.message for e in errors)
            raise ValidationError(
                f"Validation failed for {self.table_slug}: {summary}",
                errors=[e.to_dict() for e in errors],
                table_slug=self.table_slug,
            )

    def __repr__(self) -> str:
        return f"Model({self.table_slug!r}, state={self.state.value}, data={self.data!r})"
