"""Observable per-session compaction state."""

from __future__ import annotations

import logging
from collections.abc import Callable
from enum import StrEnum

from pydantic import BaseModel

from ..errors import ErrorReporter, report_unexpected

logger = logging.getLogger(__name__)


class CompactionStatus(StrEnum):
    IDLE = "idle"
    RUNNING = "running"
    FAILED = "failed"


# running -> idle is success, failed -> running is retry, failed -> idle is dismiss
_TRANSITIONS: dict[CompactionStatus, list[CompactionStatus]] = {
    CompactionStatus.IDLE: [CompactionStatus.RUNNING],
    CompactionStatus.RUNNING: [CompactionStatus.IDLE, CompactionStatus.FAILED],
    CompactionStatus.FAILED: [CompactionStatus.RUNNING, CompactionStatus.IDLE],
}


class CompactionUIState(BaseModel):
    status: CompactionStatus = CompactionStatus.IDLE
    error: str | None = None
    streaming_text: str = ""

    def can_transition(self, target: CompactionStatus) -> bool:
        return target in _TRANSITIONS.get(self.status, [])

    def transition(self, target: CompactionStatus, **fields: object) -> CompactionUIState:
        if not self.can_transition(target):
            raise ValueError(f"Invalid transition: {self.status} -> {target}")
        return self.model_copy(update={"status": target, **fields})


Listener = Callable[[str, CompactionUIState], None]


class CompactionStateBus:
    """Holds the compaction state of every session and notifies subscribers.

    Listeners are called synchronously with ``(session_id, state)`` after
    each change. A failing listener is reported and skipped.
    """

    def __init__(self, reporter: ErrorReporter | None = None) -> None:
        self._states: dict[str, CompactionUIState] = {}
        self._listeners: list[Listener] = []
        self._reporter = reporter

    def get(self, session_id: str) -> CompactionUIState:
        return self._states.get(session_id) or CompactionUIState()

    def subscribe(self, listener: Listener) -> Callable[[], None]:
        self._listeners.append(listener)

        def unsubscribe() -> None:
            if listener in self._listeners:
                self._listeners.remove(listener)

        return unsubscribe

    def transition(
        self, session_id: str, status: CompactionStatus, **fields: object
    ) -> CompactionUIState:
        state = self.get(session_id).transition(status, **fields)
        self._set(session_id, state)
        return state

    def update(self, session_id: str, **fields: object) -> CompactionUIState:
        """Change fields other than ``status`` (streaming text, error)."""
        if "status" in fields:
            msg = "Use transition() to change status"
            raise ValueError(msg)
        state = self.get(session_id).model_copy(update=fields)
        self._set(session_id, state)
        return state

    def dismiss(self, session_id: str) -> CompactionUIState:
        """Return a failed session to idle, clearing the error and partial text."""
        current = self.get(session_id)
        if current.status != CompactionStatus.FAILED:
            return current
        return self.transition(session_id, CompactionStatus.IDLE, error=None, streaming_text="")

    def clear(self, session_id: str) -> None:
        self._states.pop(session_id, None)

    def _set(self, session_id: str, state: CompactionUIState) -> None:
        self._states[session_id] = state
        for listener in list(self._listeners):
            try:
                listener(session_id, state)
            except Exception as exc:
                logger.warning("Compaction state listener failed: %s", exc)
                report_unexpected(self._reporter, exc)
