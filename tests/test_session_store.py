"""Tests for SessionStore and the storage backends."""

from __future__ import annotations

import asyncio

import pytest

from convctx.errors import SessionNotFoundError
from convctx.models import (
    CompactionPoint,
    Message,
    MessageForkEntry,
    MessageForkList,
    MessageRole,
    Session,
    SessionThread,
    message_text,
)
from convctx.sessions.storage import InMemorySessionStorage, SqliteSessionStorage
from convctx.sessions.store import SessionStore


def _msg(mid: str, role: MessageRole = MessageRole.USER, **fields: object) -> Message:
    return Message.text(role, mid, id=mid, **fields)


def _ids(messages: list[Message]) -> list[str]:
    return [m.id for m in messages]


# ---------------------------------------------------------------------------
# Queued updates
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_update_missing_session_raises() -> None:
    store = SessionStore()
    with pytest.raises(SessionNotFoundError):
        await store.update_session("missing", lambda s: s)
    with pytest.raises(SessionNotFoundError):
        await store.require_session("missing")
    assert await store.get_session("missing") is None


@pytest.mark.asyncio
async def test_concurrent_inserts_are_all_kept() -> None:
    store = SessionStore()
    session = await store.create_session()

    await asyncio.gather(*(store.insert_message(session.id, _msg(f"m{i}")) for i in range(20)))

    saved = await store.storage.get(session.id)
    assert saved is not None
    assert sorted(_ids(saved.messages)) == sorted(f"m{i}" for i in range(20))


@pytest.mark.asyncio
async def test_returned_sessions_are_copies() -> None:
    store = SessionStore()
    session = await store.create_session(Session(messages=[_msg("a")]))
    loaded = await store.get_session(session.id)
    loaded.messages.clear()
    assert _ids(await store.list_messages(session.id)) == ["a"]


@pytest.mark.asyncio
async def test_cache_only_edit_is_persisted_by_next_write() -> None:
    storage = InMemorySessionStorage()
    store = SessionStore(storage)
    session = await store.create_session(Session(messages=[_msg("a", MessageRole.ASSISTANT)]))
    puts = storage.put_count

    await store.update_message(
        session.id,
        "a",
        lambda m: Message.text(m.role, "streamed so far", id=m.id, generating=True),
        cache_only=True,
    )
    assert storage.put_count == puts
    cached = await store.list_messages(session.id)
    assert message_text(cached[0]) == "streamed so far"
    durable = await storage.get(session.id)
    assert message_text(durable.messages[0]) == "a"

    await store.insert_message(session.id, _msg("b"))
    durable = await storage.get(session.id)
    assert message_text(durable.messages[0]) == "streamed so far"
    assert _ids(durable.messages) == ["a", "b"]


@pytest.mark.asyncio
async def test_update_message_searches_threads() -> None:
    store = SessionStore()
    thread = SessionThread(messages=[_msg("t1")])
    session = await store.create_session(Session(messages=[_msg("m1")], threads=[thread]))

    updated = await store.update_message(
        session.id, "t1", lambda m: m.model_copy(update={"name": "edited"})
    )
    assert updated.threads[0].messages[0].name == "edited"


@pytest.mark.asyncio
async def test_insert_after_previous_in_thread() -> None:
    store = SessionStore()
    thread = SessionThread(messages=[_msg("t1"), _msg("t2")])
    session = await store.create_session(Session(messages=[_msg("m1")], threads=[thread]))

    updated = await store.insert_message(session.id, _msg("new"), previous_id="t1")
    assert _ids(updated.threads[0].messages) == ["t1", "new", "t2"]
    assert _ids(updated.messages) == ["m1"]

    updated = await store.insert_message(session.id, _msg("tail"), previous_id="unknown")
    assert _ids(updated.messages) == ["m1", "tail"]


@pytest.mark.asyncio
async def test_update_messages_replaces_list() -> None:
    store = SessionStore()
    session = await store.create_session(Session(messages=[_msg("a"), _msg("b")]))
    updated = await store.update_messages(session.id, lambda msgs: msgs[::-1])
    assert _ids(updated.messages) == ["b", "a"]


# ---------------------------------------------------------------------------
# Removal
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_removing_summary_drops_its_points() -> None:
    store = SessionStore()
    thread = SessionThread(
        messages=[_msg("t1")],
        compaction_points=[CompactionPoint(summary_message_id="S", boundary_message_id="t1")],
    )
    session = await store.create_session(
        Session(
            messages=[_msg("a"), _msg("S", MessageRole.ASSISTANT, is_summary=True)],
            compaction_points=[
                CompactionPoint(summary_message_id="S", boundary_message_id="a"),
                CompactionPoint(summary_message_id="other", boundary_message_id="a"),
            ],
            threads=[thread],
        )
    )

    updated = await store.remove_message(session.id, "S")
    assert _ids(updated.messages) == ["a"]
    assert [cp.summary_message_id for cp in updated.compaction_points] == ["other"]
    assert updated.threads[0].compaction_points == []


@pytest.mark.asyncio
async def test_removing_plain_message_keeps_points() -> None:
    store = SessionStore()
    session = await store.create_session(
        Session(
            messages=[_msg("a"), _msg("b")],
            compaction_points=[CompactionPoint(summary_message_id="b", boundary_message_id="a")],
        )
    )
    updated = await store.remove_message(session.id, "b")
    assert len(updated.compaction_points) == 1


@pytest.mark.asyncio
async def test_remove_runs_fork_cleanup() -> None:
    store = SessionStore()
    fork = MessageForkEntry(
        position=1,
        lists=[MessageForkList(messages=[_msg("old", MessageRole.ASSISTANT)]), MessageForkList()],
    )
    session = await store.create_session(
        Session(
            messages=[_msg("u1"), _msg("new", MessageRole.ASSISTANT)],
            message_forks_hash={"u1": fork},
        )
    )
    updated = await store.remove_message(session.id, "new")
    assert _ids(updated.messages) == ["u1", "old"]
    assert updated.message_forks_hash is None


@pytest.mark.asyncio
async def test_sessions_update_independently() -> None:
    store = SessionStore()
    first = await store.create_session(Session(messages=[_msg("a")]))
    second = await store.create_session(Session(messages=[_msg("b")]))
    release = asyncio.Event()

    async def slow_rename(session: Session) -> Session:
        await release.wait()
        return session.model_copy(update={"name": "renamed"})

    pending = asyncio.create_task(store.update_session(first.id, slow_rename))
    await asyncio.sleep(0)

    updated = await asyncio.wait_for(store.insert_message(second.id, _msg("c")), timeout=1)
    assert _ids(updated.messages) == ["b", "c"]
    assert not pending.done()

    release.set()
    assert (await pending).name == "renamed"


# ---------------------------------------------------------------------------
# Copying
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_copy_session_remaps_ids_and_points() -> None:
    store = SessionStore()
    source = await store.create_session(
        Session(
            name="original",
            messages=[_msg("u1"), _msg("S", MessageRole.ASSISTANT, is_summary=True), _msg("u2")],
            compaction_points=[CompactionPoint(summary_message_id="S", boundary_message_id="u1")],
            threads=[
                SessionThread(
                    name="archived",
                    messages=[_msg("t1"), _msg("tS", MessageRole.ASSISTANT, is_summary=True)],
                    compaction_points=[
                        CompactionPoint(summary_message_id="tS", boundary_message_id="t1"),
                        CompactionPoint(summary_message_id="gone", boundary_message_id="t1"),
                    ],
                )
            ],
            message_forks_hash={"u1": MessageForkEntry(lists=[MessageForkList()])},
        )
    )

    copy = await store.copy_session(source.id)

    assert copy.id != source.id
    assert copy.name == "original"
    assert [message_text(m) for m in copy.messages] == ["u1", "S", "u2"]
    assert not set(_ids(copy.messages)) & {"u1", "S", "u2"}
    (point,) = copy.compaction_points
    assert point.summary_message_id == copy.messages[1].id
    assert point.boundary_message_id == copy.messages[0].id
    assert copy.message_forks_hash is None

    (thread,) = copy.threads
    assert thread.id != source.threads[0].id
    (thread_point,) = thread.compaction_points
    assert thread_point.summary_message_id == thread.messages[1].id
    assert thread_point.boundary_message_id == thread.messages[0].id

    assert await store.get_session(copy.id) is not None
    unchanged = await store.require_session(source.id)
    assert _ids(unchanged.messages) == ["u1", "S", "u2"]


@pytest.mark.asyncio
async def test_copy_session_drops_unmappable_points() -> None:
    store = SessionStore()
    source = await store.create_session(
        Session(
            messages=[_msg("a")],
            compaction_points=[CompactionPoint(summary_message_id="x", boundary_message_id="a")],
        )
    )
    copy = await store.copy_session(source.id, name="copy")
    assert copy.name == "copy"
    assert copy.compaction_points is None
    assert copy.threads is None


@pytest.mark.asyncio
async def test_copy_missing_session_raises() -> None:
    with pytest.raises(SessionNotFoundError):
        await SessionStore().copy_session("missing")


@pytest.mark.asyncio
async def test_delete_session() -> None:
    store = SessionStore()
    session = await store.create_session()
    await store.delete_session(session.id)
    assert await store.get_session(session.id) is None
    assert await store.storage.list_ids() == []


# ---------------------------------------------------------------------------
# SQLite storage
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_sqlite_round_trip(tmp_path) -> None:
    storage = SqliteSessionStorage(tmp_path / "sessions.db")
    store = SessionStore(storage)
    session = await store.create_session(Session(name="persisted", messages=[_msg("a")]))
    await store.insert_message(session.id, _msg("b"))
    await storage.close()

    reopened = SqliteSessionStorage(tmp_path / "sessions.db")
    loaded = await reopened.get(session.id)
    assert loaded is not None
    assert loaded.name == "persisted"
    assert _ids(loaded.messages) == ["a", "b"]
    assert await reopened.list_ids() == [session.id]
    assert await reopened.delete(session.id) is True
    assert await reopened.get(session.id) is None
    await reopened.close()


@pytest.mark.asyncio
async def test_sqlite_io_does_not_block_event_loop(tmp_path) -> None:
    storage = SqliteSessionStorage(tmp_path / "sessions.db")
    big = Session(messages=[_msg(f"m{i}") for i in range(2000)])
    ticks = 0
    done = asyncio.Event()

    async def ticker() -> None:
        nonlocal ticks
        while not done.is_set():
            ticks += 1
            await asyncio.sleep(0)

    task = asyncio.create_task(ticker())
    await asyncio.sleep(0)
    before = ticks
    await storage.put(big)
    assert await storage.get(big.id) is not None
    during = ticks - before
    done.set()
    await task
    await storage.close()

    assert during > 0
