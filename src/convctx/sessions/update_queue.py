"""Serialised read-modify-persist updates for a single keyed value."""

from __future__ import annotations

import asyncio
import inspect
import logging
from collections.abc import Awaitable, Callable
from typing import Generic, TypeVar

from ..telemetry import trace_queue_update

logger = logging.getLogger(__name__)

T = TypeVar("T")

Updater = Callable[[T | None], T | Awaitable[T]]


class UpdateQueue(Generic[T]):
    """FIFO queue of updaters applied one at a time to the latest value.

    Each call to :meth:`set` waits its turn, fetches the current value,
    applies the updater, persists the result and only then releases the
    next caller. An updater observes every earlier result. A failing
    updater or persist rejects its own call and leaves the queue usable.
    """

    def __init__(
        self,
        key: str,
        fetch: Callable[[], Awaitable[T | None]],
        persist: Callable[[T], Awaitable[None]],
    ) -> None:
        self.key = key
        self._fetch = fetch
        self._persist = persist
        # asyncio.Lock wakes waiters in acquisition order.
        self._lock = asyncio.Lock()
        self._waiting = 0

    @property
    def pending(self) -> int:
        """Number of calls queued or running."""
        return self._waiting

    async def set(self, updater: Updater[T]) -> T:
        self._waiting += 1
        try:
            async with self._lock:
                with trace_queue_update(self.key):
                    current = await self._fetch()
                    result = updater(current)
                    if inspect.isawaitable(result):
                        result = await result
                    await self._persist(result)
                    logger.debug("Queue %s applied update", self.key)
                    return result
        finally:
            self._waiting -= 1
