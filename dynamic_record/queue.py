"""
Per-record write serialization.

Every Model owns one WriteQueue. A save() or destroy() is submitted to the
queue and starts only after the previously submitted operation has finished,
whether it succeeded or failed.

Invariants:
    - At most one operation in flight per queue
    - Operations run in submission order
    - A failed or cancelled operation never blocks the ones queued after it
"""

from __future__ import annotations

import asyncio
from typing import Awaitable, Callable, Optional, TypeVar

T = TypeVar("T")


class WriteQueue:
    """Single-slot FIFO queue of store mutations.

    Example:
        >>> queue = WriteQueue()
        >>> await asyncio.gather(queue.submit(first), queue.submit(second))
    """

    def __init__(self) -> None:
        self._tail: Optional[asyncio.Future] = None

    @property
    def busy(self) -> bool:
        """Whether an operation is running or waiting."""
        return self._tail is not None and not self._tail.done()

    async def submit(self, operation: Callable[[], Awaitable[T]]) -> T:
        """Run operation after every previously submitted operation.

        Args:
            operation: Coroutine function performing the mutation

        Returns:
            The operation's result; its exception propagates unchanged
        """
        previous = self._tail
        finished = asyncio.get_running_loop().create_future()
        self._tail = finished

        if previous is not None:
            try:
                # Shielded so cancelling this waiter leaves the chain intact
                await asyncio.shield(previous)
            except asyncio.CancelledError:
                # The slot frees up only once the running operation is done
                previous.add_done_callback(lambda _: self._release(finished))
                raise

        try:
            return await operation()
        finally:
            self._release(finished)

    def _release(self, finished: asyncio.Future) -> None:
        if not finished.done():
            finished.set_result(None)
        if self._tail is finished:
            self._tail = None
