"""Tests for UpdateQueue serialisation."""

from __future__ import annotations

import asyncio

import pytest

from convctx.sessions.update_queue import UpdateQueue


class _Cell:
    """Stored integer with a slow persist, to widen race windows."""

    def __init__(self, value: int | None = 0) -> None:
        self.value = value
        self.persisted: list[int] = []

    async def fetch(self) -> int | None:
        await asyncio.sleep(0)
        return self.value

    async def persist(self, value: int) -> None:
        await asyncio.sleep(0)
        self.value = value
        self.persisted.append(value)


def _queue(cell: _Cell) -> UpdateQueue[int]:
    return UpdateQueue("cell", cell.fetch, cell.persist)


@pytest.mark.asyncio
async def test_concurrent_updates_are_not_lost() -> None:
    cell = _Cell()
    queue = _queue(cell)

    results = await asyncio.gather(*(queue.set(lambda v: (v or 0) + 1) for _ in range(50)))

    assert cell.value == 50
    assert sorted(results) == list(range(1, 51))
    assert cell.persisted == list(range(1, 51))
    assert queue.pending == 0


@pytest.mark.asyncio
async def test_updates_apply_in_call_order() -> None:
    cell = _Cell(value=None)
    queue = _queue(cell)
    order: list[str] = []

    def appender(tag: str):
        def apply(prev: int | None) -> int:
            order.append(tag)
            return (prev or 0) * 10 + len(order)

        return apply

    await asyncio.gather(*(queue.set(appender(tag)) for tag in "abc"))
    assert order == ["a", "b", "c"]
    assert cell.value == 123


@pytest.mark.asyncio
async def test_failing_updater_rejects_only_its_call() -> None:
    cell = _Cell()
    queue = _queue(cell)

    def boom(_: int | None) -> int:
        raise RuntimeError("updater failed")

    outcomes = await asyncio.gather(
        queue.set(lambda v: (v or 0) + 1),
        queue.set(boom),
        queue.set(lambda v: (v or 0) + 1),
        return_exceptions=True,
    )

    assert outcomes[0] == 1
    assert isinstance(outcomes[1], RuntimeError)
    assert outcomes[2] == 2
    assert cell.value == 2


@pytest.mark.asyncio
async def test_async_updater_is_awaited() -> None:
    cell = _Cell(value=5)
    queue = _queue(cell)

    async def slow_double(prev: int | None) -> int:
        await asyncio.sleep(0.01)
        return (prev or 0) * 2

    results = await asyncio.gather(queue.set(slow_double), queue.set(lambda v: (v or 0) + 1))
    assert results == [10, 11]
    assert cell.persisted == [10, 11]


@pytest.mark.asyncio
async def test_updater_sees_missing_value() -> None:
    cell = _Cell(value=None)
    queue = _queue(cell)
    seen: list[int | None] = []

    def record(prev: int | None) -> int:
        seen.append(prev)
        return 7

    assert await queue.set(record) == 7
    assert seen == [None]


@pytest.mark.asyncio
async def test_different_keys_do_not_wait_for_each_other() -> None:
    cell_a, cell_b = _Cell(), _Cell()
    queue_a = UpdateQueue("a", cell_a.fetch, cell_a.persist)
    queue_b = UpdateQueue("b", cell_b.fetch, cell_b.persist)
    release = asyncio.Event()

    async def blocked(value: int | None) -> int:
        await release.wait()
        return (value or 0) + 1

    task_a = asyncio.create_task(queue_a.set(blocked))
    await asyncio.sleep(0)

    assert await asyncio.wait_for(queue_b.set(lambda v: (v or 0) + 10), timeout=1) == 10
    assert not task_a.done()
    assert queue_a.pending == 1

    release.set()
    assert await task_a == 1
    assert cell_a.value == 1
    assert cell_b.value == 10
