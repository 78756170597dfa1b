"""
Collections of records.

DynamicCollection is a list of Models. Mappings added to it are turned into
Models with the collection's model factory, so a collection can be built
straight from raw data:

    >>> col = DynamicCollection(Random.Model, {"int": 1}, {"int": 2})
    >>> await col.save_all()
    >>> col.data
    [{'int': 1}, {'int': 2}]
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Mapping
from typing import Any, Callable, Iterable, List, Optional, SupportsIndex

from .model import Model

logger = logging.getLogger(__name__)

ModelFactory = Callable[..., Model]


class DynamicCollection(list):
    """Ordered list of Models with bulk save.

    Attributes:
        model: Factory used to turn mappings into Models (a gateway's Model)
    """

    def __init__(self, model: Optional[ModelFactory] = None, *items: Any) -> None:
        super().__init__()
        self.model = model
        self.extend(items)

    def _coerce(self, item: Any) -> Model:
        if isinstance(item, Model):
            return item
        if isinstance(item, Mapping):
            if self.model is None:
                raise TypeError("DynamicCollection needs a model to hold raw data")
            return self.model(dict(item))
        raise TypeError(f"DynamicCollection holds Models, not {type(item).__name__}")

    def append(self, item: Any) -> None:
        super().append(self._coerce(item))

    def insert(self, index: SupportsIndex, item: Any) -> None:
        super().insert(index, self._coerce(item))

    def extend(self, items: Iterable[Any]) -> None:
        super().extend(self._coerce(item) for item in items)

    def __setitem__(self, index, value):
        if isinstance(index, slice):
            super().__setitem__(index, [self._coerce(item) for item in value])
        else:
            super().__setitem__(index, self._coerce(value))

    def __iadd__(self, items: Iterable[Any]) -> DynamicCollection:
        self.extend(items)
        return self

    def __add__(self, items: Iterable[Any]) -> DynamicCollection:
        return DynamicCollection(self.model, *self, *items)

    def copy(self) -> DynamicCollection:
        return DynamicCollection(self.model, *self)

    def __getitem__(self, index):
        result = super().__getitem__(index)
        if isinstance(index, slice):
            return DynamicCollection(self.model, *result)
        return result

    @property
    def data(self) -> List[Any]:
        """Plain list of each Model's data."""
        return [model.data for model in self]

    async def save_all(self) -> DynamicCollection:
        """Save every Model concurrently.

        Every save runs to completion. Saves that succeed stay committed even
        when another one fails; there is no cross-record rollback.

        Returns:
            self

        Raises:
            The first failure in collection order
        """
        results = await asyncio.gather(*(model.save() for model in self), return_exceptions=True)
        failures = [result for result in results if isinstance(result, BaseException)]
        if failures:
            logger.debug(f"save_all: {len(failures)} of {len(self)} saves failed")
            raise failures[0]
        return self
