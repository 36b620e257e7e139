"""Debounced, deduplicated background jobs keyed by string."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Awaitable, Callable
from typing import Any

from ..errors import ErrorReporter, report_unexpected

logger = logging.getLogger(__name__)

JobFactory = Callable[[], Awaitable[Any]]


class KeyedTaskScheduler:
    """Runs at most one job per key, after a quiet period.

    ``schedule`` while a job for the key is running is ignored. Scheduling
    again while one is still waiting restarts the delay with the newer
    factory. A job moves from *pending* to *active* when its delay
    expires and leaves *active* when it finishes, however it finishes.
    """

    def __init__(self, delay: float = 1.0, reporter: ErrorReporter | None = None) -> None:
        self.delay = delay
        self._reporter = reporter
        self._pending: dict[str, asyncio.Task[None]] = {}
        self._active: dict[str, asyncio.Task[None]] = {}

    def is_pending(self, key: str) -> bool:
        return key in self._pending

    def is_active(self, key: str) -> bool:
        return key in self._active

    def schedule(self, key: str, factory: JobFactory) -> bool:
        """Queue *factory* under *key*; returns False when dropped."""
        if key in self._active:
            logger.debug("Job %s already running, request dropped", key)
            return False

        existing = self._pending.pop(key, None)
        if existing is not None:
            existing.cancel()
            logger.debug("Job %s rescheduled", key)

        self._pending[key] = asyncio.create_task(self._run(key, factory), name=f"scheduled:{key}")
        return True

    async def _run(self, key: str, factory: JobFactory) -> None:
        await asyncio.sleep(self.delay)
        task = asyncio.current_task()
        self._pending.pop(key, None)
        self._active[key] = task
        try:
            await factory()
        except asyncio.CancelledError:
            raise
        except Exception as exc:
            logger.warning("Scheduled job %s failed: %s", key, exc)
            report_unexpected(self._reporter, exc)
        finally:
            if self._active.get(key) is task:
                del self._active[key]

    def cancel(self, key: str) -> bool:
        """Cancel a waiting or running job for *key*."""
        task = self._pending.pop(key, None) or self._active.pop(key, None)
        if task is None:
            return False
        task.cancel()
        return True

    async def drain(self) -> None:
        """Wait until every pending and active job has finished."""
        while self._pending or self._active:
            tasks = [*self._pending.values(), *self._active.values()]
            await asyncio.gather(*tasks, return_exceptions=True)

    async def close(self) -> None:
        """Cancel everything and wait for the cancellations to settle."""
        tasks = [*self._pending.values(), *self._active.values()]
        self._pending.clear()
        self._active.clear()
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
