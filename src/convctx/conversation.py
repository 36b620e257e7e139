"""Send path for a new user message: compaction gate, then insert."""

from __future__ import annotations

import inspect
import logging
from collections.abc import Awaitable, Callable

from .compaction.orchestrator import CompactionOrchestrator
from .errors import CompactionFailedError
from .models import Message, Session, SessionType
from .sessions.store import SessionStore

logger = logging.getLogger(__name__)


async def submit_new_user_message(
    store: SessionStore,
    orchestrator: CompactionOrchestrator,
    session_id: str,
    message: Message,
    *,
    on_ready: Callable[[], None | Awaitable[None]] | None = None,
) -> Session:
    """Insert *message* once the session's context has room for it.

    For chat sessions compaction runs first and blocks the send; if it
    fails, :class:`CompactionFailedError` is raised and nothing is
    inserted. *on_ready* fires after the gate and before the insert.
    """
    session = await store.require_session(session_id)

    if session.type == SessionType.CHAT:
        result = await orchestrator.run_compaction_with_state(
            session_id, pending_message=message
        )
        if not result.success:
            logger.warning("Send blocked for session %s: %s", session_id, result.error)
            raise CompactionFailedError(session_id, result.error)

    if on_ready is not None:
        ready = on_ready()
        if inspect.isawaitable(ready):
            await ready

    return await store.insert_message(session_id, message)
