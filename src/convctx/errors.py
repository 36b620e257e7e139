"""Error taxonomy and the error-tracking collaborator."""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod

logger = logging.getLogger(__name__)


class ConvctxError(Exception):
    """Base class for engine errors."""


class SessionNotFoundError(ConvctxError):
    """Raised when an update targets a session that does not exist."""

    def __init__(self, session_id: str) -> None:
        self.session_id = session_id
        super().__init__(f"Session {session_id} not found")


class CompactionError(ConvctxError):
    """Base class for compaction failures."""


class StaleCompactionError(CompactionError):
    """Raised when the boundary a compaction run summarised no longer exists."""

    def __init__(self, session_id: str, boundary_message_id: str) -> None:
        self.session_id = session_id
        self.boundary_message_id = boundary_message_id
        super().__init__(
            f"Boundary message {boundary_message_id} vanished from session {session_id}"
        )


class CompactionCancelledError(CompactionError):
    """Raised when a compaction run was aborted before it wrote anything."""


class CompactionFailedError(CompactionError):
    """Blocks a pending send because required compaction did not succeed."""

    def __init__(self, session_id: str, cause: BaseException | None = None) -> None:
        self.session_id = session_id
        self.cause = cause
        detail = f": {cause}" if cause is not None else ""
        super().__init__(f"Compaction failed for session {session_id}{detail}")


class ApiError(ConvctxError):
    """Provider rejected a request. Expected, surfaced to the user only."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        self.status_code = status_code
        super().__init__(message)


class NetworkError(ConvctxError):
    """Provider could not be reached. Expected, surfaced to the user only."""


EXPECTED_ERRORS: tuple[type[BaseException], ...] = (ApiError, NetworkError)


class ErrorReporter(ABC):
    """External error-tracking collaborator."""

    @abstractmethod
    def capture_exception(self, exc: BaseException) -> None:
        """Record an unexpected exception."""


class LoggingErrorReporter(ErrorReporter):
    """Default reporter: writes the exception to the log."""

    def capture_exception(self, exc: BaseException) -> None:
        logger.error("Unexpected error: %r", exc, exc_info=exc)


def report_unexpected(reporter: ErrorReporter | None, exc: BaseException) -> bool:
    """Forward *exc* to *reporter* unless it is an expected provider error.

    Returns True when the exception was reported.
    """
    if isinstance(exc, EXPECTED_ERRORS):
        return False
    (reporter or LoggingErrorReporter()).capture_exception(exc)
    return True
