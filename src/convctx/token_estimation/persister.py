"""Write computed token counts back onto messages and attachments."""

from __future__ import annotations

import logging
from collections.abc import Iterable

from ..errors import SessionNotFoundError
from ..models import Message, Session
from ..sessions.store import SessionStore
from .estimator import PendingTokenCount, TokenEstimator

logger = logging.getLogger(__name__)


class TokenCountPersister:
    """Batches counts per session and flushes them through the update queue."""

    def __init__(self, store: SessionStore) -> None:
        self._store = store
        self._pending: dict[str, dict[tuple[str, str | None, str], PendingTokenCount]] = {}

    def add(self, session_id: str, results: Iterable[PendingTokenCount]) -> None:
        bucket = self._pending.setdefault(session_id, {})
        for result in results:
            # Later counts for the same target replace earlier ones.
            bucket[(result.message_id, result.attachment_id, str(result.key))] = result

    def collect(self, session_id: str, estimator: TokenEstimator) -> int:
        """Take the estimator's unpersisted counts; returns how many were taken."""
        drained = estimator.drain_pending()
        self.add(session_id, drained)
        return len(drained)

    def pending_count(self, session_id: str | None = None) -> int:
        if session_id is not None:
            return len(self._pending.get(session_id, {}))
        return sum(len(b) for b in self._pending.values())

    async def flush(self, session_id: str | None = None) -> int:
        """Persist pending counts; returns the number applied."""
        targets = [session_id] if session_id is not None else list(self._pending)
        applied = 0
        for sid in targets:
            bucket = self._pending.pop(sid, None)
            if not bucket:
                continue
            results = list(bucket.values())
            updated = 0

            def apply(session: Session) -> Session:
                nonlocal updated
                updated = sum(1 for r in results if _apply_result(session, r))  # noqa: B023
                return session

            try:
                await self._store.update_session(sid, apply)
            except SessionNotFoundError:
                logger.warning("Dropping %d token counts for missing session %s", len(results), sid)
                continue
            applied += updated
            logger.debug("Persisted %d token counts for session %s", updated, sid)
        return applied


def _find_message(session: Session, message_id: str) -> Message | None:
    for msg in session.messages:
        if msg.id == message_id:
            return msg
    for thread in session.threads or []:
        for msg in thread.messages:
            if msg.id == message_id:
                return msg
    return None


def _apply_result(session: Session, result: PendingTokenCount) -> bool:
    message = _find_message(session, result.message_id)
    if message is None:
        return False

    if result.attachment_id is None:
        message.token_count_map = {**message.token_count_map, result.key: result.tokens}
        message.token_calculated_at = {
            **message.token_calculated_at,
            result.key: result.calculated_at,
        }
        return True

    pool = message.files if result.attachment_kind == "file" else message.links
    for attachment in pool:
        if attachment.id != result.attachment_id:
            continue
        attachment.token_count_map = {**attachment.token_count_map, result.key: result.tokens}
        attachment.token_calculated_at = {
            **attachment.token_calculated_at,
            result.key: result.calculated_at,
        }
        if attachment.line_count is None:
            attachment.line_count = result.line_count
        if attachment.byte_length is None:
            attachment.byte_length = result.byte_length
        return True
    return False
