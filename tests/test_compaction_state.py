"""Tests for compaction UI state, the state bus and the keyed scheduler."""

from __future__ import annotations

import asyncio

import pytest

from convctx.compaction.scheduler import KeyedTaskScheduler
from convctx.compaction.state import CompactionStateBus, CompactionStatus, CompactionUIState
from convctx.errors import ErrorReporter


class _RecordingReporter(ErrorReporter):
    def __init__(self) -> None:
        self.captured: list[BaseException] = []

    def capture_exception(self, exc: BaseException) -> None:
        self.captured.append(exc)


# ---------------------------------------------------------------------------
# State machine
# ---------------------------------------------------------------------------


def test_valid_transitions() -> None:
    state = CompactionUIState()
    running = state.transition(CompactionStatus.RUNNING)
    failed = running.transition(CompactionStatus.FAILED, error="boom")
    assert failed.error == "boom"
    assert failed.transition(CompactionStatus.RUNNING).status == CompactionStatus.RUNNING
    assert failed.transition(CompactionStatus.IDLE).status == CompactionStatus.IDLE
    assert running.transition(CompactionStatus.IDLE).status == CompactionStatus.IDLE
    # transitions return new objects
    assert state.status == CompactionStatus.IDLE


@pytest.mark.parametrize(
    ("start", "target"),
    [
        (CompactionStatus.IDLE, CompactionStatus.FAILED),
        (CompactionStatus.IDLE, CompactionStatus.IDLE),
        (CompactionStatus.RUNNING, CompactionStatus.RUNNING),
        (CompactionStatus.FAILED, CompactionStatus.FAILED),
    ],
)
def test_invalid_transitions_raise(start: CompactionStatus, target: CompactionStatus) -> None:
    with pytest.raises(ValueError, match="Invalid transition"):
        CompactionUIState(status=start).transition(target)


# ---------------------------------------------------------------------------
# State bus
# ---------------------------------------------------------------------------


def test_bus_defaults_to_idle() -> None:
    bus = CompactionStateBus()
    assert bus.get("s1").status == CompactionStatus.IDLE


def test_bus_notifies_and_unsubscribes() -> None:
    bus = CompactionStateBus()
    seen: list[tuple[str, CompactionStatus, str]] = []
    unsubscribe = bus.subscribe(lambda sid, st: seen.append((sid, st.status, st.streaming_text)))

    bus.transition("s1", CompactionStatus.RUNNING)
    bus.update("s1", streaming_text="partial")
    unsubscribe()
    bus.transition("s1", CompactionStatus.IDLE)

    assert seen == [
        ("s1", CompactionStatus.RUNNING, ""),
        ("s1", CompactionStatus.RUNNING, "partial"),
    ]
    assert bus.get("s1").status == CompactionStatus.IDLE


def test_update_refuses_status() -> None:
    bus = CompactionStateBus()
    with pytest.raises(ValueError, match="transition"):
        bus.update("s1", status=CompactionStatus.RUNNING)


def test_failing_listener_is_reported_not_raised() -> None:
    reporter = _RecordingReporter()
    bus = CompactionStateBus(reporter=reporter)
    calls: list[str] = []

    def broken(_sid: str, _state: CompactionUIState) -> None:
        raise RuntimeError("listener broke")

    bus.subscribe(broken)
    bus.subscribe(lambda sid, _st: calls.append(sid))
    bus.transition("s1", CompactionStatus.RUNNING)

    assert calls == ["s1"]
    assert len(reporter.captured) == 1


def test_dismiss_only_from_failed() -> None:
    bus = CompactionStateBus()
    bus.transition("s1", CompactionStatus.RUNNING, streaming_text="half")
    assert bus.dismiss("s1").status == CompactionStatus.RUNNING

    bus.transition("s1", CompactionStatus.FAILED, error="boom")
    state = bus.dismiss("s1")
    assert state.status == CompactionStatus.IDLE
    assert state.error is None
    assert state.streaming_text == ""

    bus.clear("s1")
    assert bus.get("s1") == CompactionUIState()


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_scheduled_job_runs_after_delay() -> None:
    scheduler = KeyedTaskScheduler(delay=0.01)
    runs: list[str] = []

    async def job() -> None:
        runs.append("ran")

    assert scheduler.schedule("k", job) is True
    assert scheduler.is_pending("k")
    assert runs == []
    await scheduler.drain()
    assert runs == ["ran"]
    assert not scheduler.is_pending("k")
    assert not scheduler.is_active("k")


@pytest.mark.asyncio
async def test_rescheduling_replaces_pending_job() -> None:
    scheduler = KeyedTaskScheduler(delay=0.01)
    runs: list[str] = []

    async def first() -> None:
        runs.append("first")

    async def second() -> None:
        runs.append("second")

    scheduler.schedule("k", first)
    scheduler.schedule("k", second)
    await scheduler.drain()
    assert runs == ["second"]


@pytest.mark.asyncio
async def test_schedule_dropped_while_active() -> None:
    scheduler = KeyedTaskScheduler(delay=0)
    started = asyncio.Event()
    release = asyncio.Event()
    runs: list[str] = []

    async def slow() -> None:
        started.set()
        await release.wait()
        runs.append("slow")

    async def other() -> None:
        runs.append("other")

    scheduler.schedule("k", slow)
    await started.wait()
    assert scheduler.is_active("k")
    assert scheduler.schedule("k", other) is False

    release.set()
    await scheduler.drain()
    assert runs == ["slow"]


@pytest.mark.asyncio
async def test_cancel_pending_job() -> None:
    scheduler = KeyedTaskScheduler(delay=0.05)
    runs: list[str] = []

    async def job() -> None:
        runs.append("ran")

    scheduler.schedule("k", job)
    assert scheduler.cancel("k") is True
    assert scheduler.cancel("k") is False
    await asyncio.sleep(0.08)
    assert runs == []


@pytest.mark.asyncio
async def test_failing_job_is_reported_and_released() -> None:
    reporter = _RecordingReporter()
    scheduler = KeyedTaskScheduler(delay=0, reporter=reporter)

    async def broken() -> None:
        raise RuntimeError("job failed")

    scheduler.schedule("k", broken)
    await scheduler.drain()
    assert len(reporter.captured) == 1
    assert not scheduler.is_active("k")
    assert scheduler.schedule("k", broken) is True
    await scheduler.close()
