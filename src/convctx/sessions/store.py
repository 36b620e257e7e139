"""SessionStore: cached session access with one update queue per session."""

from __future__ import annotations

import logging
from collections.abc import Awaitable, Callable

from ..errors import SessionNotFoundError
from ..models import (
    CompactionPoint,
    Message,
    Session,
    copy_messages_with_mapping,
    copy_threads,
    remap_compaction_points,
)
from .forks import cleanup_empty_fork_branches
from .storage import InMemorySessionStorage, SessionStorage
from .update_queue import UpdateQueue

logger = logging.getLogger(__name__)

SessionUpdater = Callable[[Session], Session | Awaitable[Session]]
MessageUpdater = Callable[[Message], Message]


class SessionStore:
    """Read cache over a :class:`SessionStorage` plus serialised writes.

    Every durable mutation of a session goes through that session's
    :class:`UpdateQueue`, so concurrent writers (streaming output,
    compaction, token persistence, user edits) never lose each other's
    changes. Reads are served from the cache, which also holds cache-only
    edits made while a message is streaming.
    """

    def __init__(self, storage: SessionStorage | None = None) -> None:
        self._storage = storage or InMemorySessionStorage()
        self._cache: dict[str, Session | None] = {}
        self._queues: dict[str, UpdateQueue[Session]] = {}

    @property
    def storage(self) -> SessionStorage:
        return self._storage

    # -- reads ---------------------------------------------------------------

    async def _load(self, session_id: str) -> Session | None:
        if session_id not in self._cache:
            self._cache[session_id] = await self._storage.get(session_id)
        session = self._cache[session_id]
        return session.model_copy(deep=True) if session is not None else None

    async def get_session(self, session_id: str) -> Session | None:
        return await self._load(session_id)

    async def require_session(self, session_id: str) -> Session:
        session = await self._load(session_id)
        if session is None:
            raise SessionNotFoundError(session_id)
        return session

    async def list_messages(self, session_id: str) -> list[Message]:
        session = await self._load(session_id)
        return session.messages if session is not None else []

    # -- session lifecycle ---------------------------------------------------

    async def create_session(self, session: Session | None = None) -> Session:
        session = session or Session()
        await self._storage.put(session)
        self._cache[session.id] = session.model_copy(deep=True)
        logger.debug("Created session %s", session.id)
        return session

    async def delete_session(self, session_id: str) -> None:
        await self._storage.delete(session_id)
        self._cache.pop(session_id, None)
        self._queues.pop(session_id, None)
        logger.debug("Deleted session %s", session_id)

    async def copy_session(self, session_id: str, *, name: str | None = None) -> Session:
        """Duplicate a session with fresh message ids.

        Compaction points of the main log and of every thread follow their
        copied messages; points whose messages cannot be mapped are dropped.
        Fork branches are not copied.
        """
        source = await self.require_session(session_id)
        messages, mapping = copy_messages_with_mapping(source.messages)
        points = remap_compaction_points(source.compaction_points, mapping)
        duplicate = Session(
            name=name or source.name,
            type=source.type,
            messages=messages,
            threads=copy_threads(source.threads, mapping),
            compaction_points=points or None,
            settings=source.settings.model_copy(deep=True),
        )
        logger.debug("Copied session %s to %s", session_id, duplicate.id)
        return await self.create_session(duplicate)

    # -- queued writes -------------------------------------------------------

    def _queue(self, session_id: str) -> UpdateQueue[Session]:
        queue = self._queues.get(session_id)
        if queue is None:

            async def persist(session: Session) -> None:
                await self._storage.put(session)
                self._cache[session_id] = session.model_copy(deep=True)

            queue = UpdateQueue(session_id, lambda: self._load(session_id), persist)
            self._queues[session_id] = queue
        return queue

    async def update_session(self, session_id: str, updater: SessionUpdater) -> Session:
        """Apply *updater* to the latest session and persist the result."""

        def apply(prev: Session | None) -> Session | Awaitable[Session]:
            if prev is None:
                raise SessionNotFoundError(session_id)
            return updater(prev)

        return await self._queue(session_id).set(apply)

    async def update_session_cache(self, session_id: str, updater: SessionUpdater) -> Session:
        """Apply *updater* to the cached session only; nothing is persisted."""
        session = await self.require_session(session_id)
        updated = updater(session)
        if not isinstance(updated, Session):
            updated = await updated
        self._cache[session_id] = updated.model_copy(deep=True)
        return updated

    async def update_messages(
        self, session_id: str, updater: Callable[[list[Message]], list[Message]]
    ) -> Session:
        def apply(session: Session) -> Session:
            session.messages = updater(session.messages)
            return session

        return await self.update_session(session_id, apply)

    # -- message operations --------------------------------------------------

    async def update_message(
        self,
        session_id: str,
        message_id: str,
        updater: MessageUpdater,
        *,
        cache_only: bool = False,
    ) -> Session:
        """Replace one message, searching the main log and then every thread."""

        def apply(session: Session) -> Session:
            if _replace_message(session.messages, message_id, updater):
                return session
            for thread in session.threads or []:
                if _replace_message(thread.messages, message_id, updater):
                    return session
            logger.debug("Message %s not found in session %s", message_id, session_id)
            return session

        if cache_only:
            return await self.update_session_cache(session_id, apply)
        return await self.update_session(session_id, apply)

    async def insert_message(
        self, session_id: str, message: Message, previous_id: str | None = None
    ) -> Session:
        """Insert after *previous_id* (main log or thread), else append to the main log."""

        def apply(session: Session) -> Session:
            if previous_id:
                if _insert_after(session.messages, previous_id, message):
                    return session
                for thread in session.threads or []:
                    if _insert_after(thread.messages, previous_id, message):
                        return session
            session.messages.append(message)
            return session

        return await self.update_session(session_id, apply)

    async def remove_message(self, session_id: str, message_id: str) -> Session:
        """Delete a message everywhere it appears.

        Deleting a summary also drops the compaction points that reference
        it, then fork branches left empty are cleaned up.
        """

        def apply(session: Session) -> Session:
            target = next((m for m in session.messages if m.id == message_id), None)
            if target is None:
                for thread in session.threads or []:
                    target = next((m for m in thread.messages if m.id == message_id), None)
                    if target is not None:
                        break
            is_summary = target is not None and target.is_summary

            messages = [m for m in session.messages if m.id != message_id]
            threads = session.threads
            if threads is not None:
                for thread in threads:
                    thread.messages = [m for m in thread.messages if m.id != message_id]
                    if is_summary and thread.compaction_points is not None:
                        thread.compaction_points = _drop_points(
                            thread.compaction_points, message_id
                        )
            if is_summary and session.compaction_points is not None:
                session.compaction_points = _drop_points(session.compaction_points, message_id)

            result = cleanup_empty_fork_branches(session.message_forks_hash, messages, threads)
            session.messages = result.messages
            session.threads = threads
            session.message_forks_hash = result.fork_hash
            return session

        return await self.update_session(session_id, apply)


def _replace_message(messages: list[Message], message_id: str, updater: MessageUpdater) -> bool:
    for i, msg in enumerate(messages):
        if msg.id == message_id:
            messages[i] = updater(msg)
            return True
    return False


def _insert_after(messages: list[Message], previous_id: str, message: Message) -> bool:
    for i, msg in enumerate(messages):
        if msg.id == previous_id:
            messages.insert(i + 1, message)
            return True
    return False


def _drop_points(
    points: list[CompactionPoint], summary_message_id: str
) -> list[CompactionPoint]:
    return [cp for cp in points if cp.summary_message_id != summary_message_id]
