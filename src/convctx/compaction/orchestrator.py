"""Compaction Orchestrator: decides when to summarise and applies summaries safely.

A run picks the older part of the current context, asks the summary
generator for a replacement, and writes the summary message together with
its compaction point through the session's update queue. The write
re-checks that the boundary message still exists; anything that happened
to the session meanwhile is preserved.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass

from ..config import EngineConfig
from ..context.builder import build_context_for_session
from ..context.model_context import ModelContextRegistry
from ..context.overflow import check_model_overflow
from ..context.tool_cleanup import round_boundary_index
from ..errors import (
    CompactionCancelledError,
    CompactionError,
    ErrorReporter,
    SessionNotFoundError,
    StaleCompactionError,
    report_unexpected,
)
from ..models import (
    CompactionPoint,
    GlobalSettings,
    Message,
    MessageRole,
    Session,
    SessionSettings,
    SessionType,
    now_ms,
)
from ..sessions.store import SessionStore
from ..telemetry import get_tracer, trace_compaction_run
from ..token_estimation.estimator import AttachmentContentLoader, TokenEstimator
from ..token_estimation.persister import TokenCountPersister
from .scheduler import KeyedTaskScheduler
from .state import CompactionStateBus, CompactionStatus
from .summary import StreamCallback, SummaryGenerator

logger = logging.getLogger(__name__)


@dataclass
class CompactionResult:
    success: bool
    compacted: bool = False
    summary_message_id: str | None = None
    boundary_message_id: str | None = None
    error: BaseException | None = None


def is_auto_compaction_enabled(
    session_settings: SessionSettings | None, global_settings: GlobalSettings | None
) -> bool:
    """Session setting wins, then the global one; enabled when neither says otherwise."""
    if session_settings is not None and session_settings.auto_compaction is not None:
        return session_settings.auto_compaction
    if global_settings is not None:
        return global_settings.auto_compaction
    return True


def select_summary_span(
    context: list[Message], keep_recent_rounds: int
) -> tuple[list[Message], Message | None]:
    """Split off the part of *context* to summarise and pick its boundary.

    The newest *keep_recent_rounds* rounds stay verbatim. When that leaves
    nothing to summarise the whole context is used. The boundary is the
    last non-summary message of the span.
    """
    start = round_boundary_index(context, keep_recent_rounds) if keep_recent_rounds > 0 else 0
    span = context[:start] if start > 0 else list(context)
    boundary = next((m for m in reversed(span) if not m.is_summary), None)
    return span, boundary


class CompactionOrchestrator:
    """Runs, schedules and tracks compaction for every session of a store."""

    def __init__(
        self,
        store: SessionStore,
        summary_generator: SummaryGenerator,
        *,
        registry: ModelContextRegistry | None = None,
        state_bus: CompactionStateBus | None = None,
        scheduler: KeyedTaskScheduler | None = None,
        global_settings: GlobalSettings | None = None,
        config: EngineConfig | None = None,
        reporter: ErrorReporter | None = None,
        content_loader: AttachmentContentLoader | None = None,
        token_persister: TokenCountPersister | None = None,
    ) -> None:
        self.config = config or EngineConfig()
        self.store = store
        self.summary_generator = summary_generator
        self.registry = registry or ModelContextRegistry()
        self.state_bus = state_bus or CompactionStateBus(reporter)
        self.scheduler = scheduler or KeyedTaskScheduler(self.config.scheduler_delay_sec, reporter)
        self.global_settings = global_settings or GlobalSettings(
            auto_compaction=self.config.auto_compaction,
            compaction_threshold=self.config.compaction_threshold,
            language=self.config.language,
        )
        self._reporter = reporter
        self._content_loader = content_loader
        self._persister = token_persister
        self._inflight: dict[str, asyncio.Task[CompactionResult]] = {}
        self._cancel_events: dict[str, asyncio.Event] = {}

    # ------------------------------------------------------------------
    # Checks
    # ------------------------------------------------------------------

    def is_auto_compaction_enabled(self, session: Session) -> bool:
        return is_auto_compaction_enabled(session.settings, self.global_settings)

    def _keep_tool_call_rounds(self, session: Session) -> int:
        if session.settings.keep_tool_call_rounds is not None:
            return session.settings.keep_tool_call_rounds
        return self.config.keep_tool_call_rounds

    def _supports_tool_use(self, session: Session) -> bool:
        if session.settings.model_supports_tool_use is not None:
            return session.settings.model_supports_tool_use
        return self.registry.supports_tool_use(session.settings.model_id)

    def _context(self, session: Session) -> list[Message]:
        return build_context_for_session(
            session,
            keep_tool_call_rounds=self._keep_tool_call_rounds(session),
            preserve_last_user_message=False,
        )

    def estimate_context_tokens(
        self, session: Session, pending_message: Message | None = None
    ) -> int:
        """Estimated size of what the next request would send."""
        estimator = TokenEstimator.for_model(
            session.settings.model_id,
            model_supports_tool_use=self._supports_tool_use(session),
            content_loader=self._content_loader,
            reporter=self._reporter,
        )
        messages = self._context(session)
        if pending_message is not None:
            messages.append(pending_message)
        tokens = estimator.estimate_messages(messages)
        if self._persister is not None:
            self._persister.collect(session.id, estimator)
        return tokens

    async def needs_compaction(
        self, session_id: str, pending_message: Message | None = None
    ) -> bool:
        session = await self.store.get_session(session_id)
        if session is None:
            return False
        tokens = self.estimate_context_tokens(session, pending_message)
        result = check_model_overflow(
            tokens,
            session.settings.model_id,
            session.settings,
            self.registry,
            default_threshold=self.global_settings.compaction_threshold,
            output_reserve=self.config.output_reserve_tokens,
        )
        logger.debug(
            "Session %s context %d tokens, threshold %s",
            session_id,
            tokens,
            result.threshold_tokens,
        )
        return result.is_overflow

    def is_compaction_in_progress(self, session_id: str) -> bool:
        return (
            session_id in self._inflight
            or self.state_bus.get(session_id).status == CompactionStatus.RUNNING
        )

    # ------------------------------------------------------------------
    # Core run
    # ------------------------------------------------------------------

    async def run_compaction(
        self,
        session_id: str,
        *,
        force: bool = False,
        cancel_event: asyncio.Event | None = None,
        pending_message: Message | None = None,
        on_stream_update: StreamCallback | None = None,
    ) -> CompactionResult:
        """Summarise the older part of the session's context.

        Returns an unsuccessful result for generation failures and stale
        boundaries. Raises :class:`CompactionCancelledError` when
        *cancel_event* is set before the write; the session is untouched.
        """
        with trace_compaction_run(session_id, forced=force):
            try:
                return await self._run(
                    session_id, force, cancel_event, pending_message, on_stream_update
                )
            except CompactionCancelledError:
                logger.info("Compaction of session %s cancelled", session_id)
                raise
            except (StaleCompactionError, SessionNotFoundError) as exc:
                logger.warning("Compaction of session %s abandoned: %s", session_id, exc)
                return CompactionResult(success=False, error=exc)
            except Exception as exc:
                logger.exception("Compaction of session %s failed", session_id)
                report_unexpected(self._reporter, exc)
                return CompactionResult(success=False, error=exc)

    async def _run(
        self,
        session_id: str,
        force: bool,  # noqa: FBT001
        cancel_event: asyncio.Event | None,
        pending_message: Message | None,
        on_stream_update: StreamCallback | None,
    ) -> CompactionResult:
        session = await self.store.require_session(session_id)
        if not force and not await self.needs_compaction(session_id, pending_message):
            return CompactionResult(success=True)

        span, boundary = select_summary_span(self._context(session), self.config.keep_recent_rounds)
        if boundary is None:
            logger.debug("Session %s has nothing to summarise", session_id)
            return CompactionResult(success=True)

        language = session.settings.language or self.global_settings.language
        result = await self.summary_generator.generate(
            span,
            session_id=session_id,
            language=language,
            on_stream_update=on_stream_update,
            cancel_event=cancel_event,
        )
        _raise_if_cancelled(cancel_event)
        if not result.success:
            return CompactionResult(
                success=False, boundary_message_id=boundary.id, error=result.error
            )
        if not result.summary:
            return CompactionResult(
                success=False,
                boundary_message_id=boundary.id,
                error=CompactionError("Summary generation returned no text"),
            )

        summary = Message.text(
            MessageRole.ASSISTANT,
            result.summary,
            is_summary=True,
            model=session.settings.model_id,
        )

        def apply(current: Session) -> Session:
            _raise_if_cancelled(cancel_event)
            if not any(m.id == boundary.id for m in current.messages):
                raise StaleCompactionError(session_id, boundary.id)
            points = list(current.compaction_points or [])
            created_at = now_ms()
            if points:
                # The new point must be the latest even within one millisecond.
                created_at = max(created_at, max(cp.created_at for cp in points) + 1)
            points.append(
                CompactionPoint(
                    summary_message_id=summary.id,
                    boundary_message_id=boundary.id,
                    created_at=created_at,
                )
            )
            current.messages.append(summary)
            current.compaction_points = points
            return current

        await self.store.update_session(session_id, apply)
        get_tracer().record_event("compaction/applied", {"summary.id": summary.id})
        logger.info(
            "Compacted session %s: %d messages summarised up to %s",
            session_id,
            len(span),
            boundary.id,
        )
        return CompactionResult(
            success=True,
            compacted=True,
            summary_message_id=summary.id,
            boundary_message_id=boundary.id,
        )

    # ------------------------------------------------------------------
    # State-driven entry points
    # ------------------------------------------------------------------

    async def run_compaction_with_state(
        self,
        session_id: str,
        *,
        force: bool = False,
        pending_message: Message | None = None,
    ) -> CompactionResult:
        """Run compaction while publishing progress on the state bus.

        Concurrent calls for one session share the run already in flight.
        """
        task = self._inflight.get(session_id)
        if task is None:
            task = asyncio.create_task(
                self._run_with_state(session_id, force, pending_message),
                name=f"compaction:{session_id}",
            )
            self._inflight[session_id] = task

            def _done(t: asyncio.Task[CompactionResult]) -> None:
                if self._inflight.get(session_id) is t:
                    del self._inflight[session_id]

            task.add_done_callback(_done)
        return await asyncio.shield(task)

    async def _run_with_state(
        self,
        session_id: str,
        force: bool,  # noqa: FBT001
        pending_message: Message | None,
    ) -> CompactionResult:
        session = await self.store.get_session(session_id)
        if session is None:
            return CompactionResult(success=False, error=SessionNotFoundError(session_id))
        if not force:
            if not self.is_auto_compaction_enabled(session):
                return CompactionResult(success=True)
            if not await self.needs_compaction(session_id, pending_message):
                return CompactionResult(success=True)

        cancel_event = asyncio.Event()
        self._cancel_events[session_id] = cancel_event
        bus = self.state_bus
        bus.transition(session_id, CompactionStatus.RUNNING, error=None, streaming_text="")
        try:
            result = await self.run_compaction(
                session_id,
                force=True,
                cancel_event=cancel_event,
                on_stream_update=lambda text: bus.update(session_id, streaming_text=text),
            )
        except CompactionCancelledError as exc:
            bus.transition(session_id, CompactionStatus.IDLE, error=None, streaming_text="")
            return CompactionResult(success=False, error=exc)
        except asyncio.CancelledError:
            bus.transition(session_id, CompactionStatus.IDLE, error=None, streaming_text="")
            raise
        finally:
            if self._cancel_events.get(session_id) is cancel_event:
                del self._cancel_events[session_id]

        if result.success:
            bus.transition(session_id, CompactionStatus.IDLE, error=None, streaming_text="")
        else:
            # Partial streaming text stays visible next to the error.
            bus.transition(session_id, CompactionStatus.FAILED, error=str(result.error))
        return result

    async def compact_now(self, session_id: str) -> CompactionResult:
        """Manual compaction, regardless of size or auto-compaction setting."""
        return await self.run_compaction_with_state(session_id, force=True)

    async def retry(self, session_id: str) -> CompactionResult:
        if self.state_bus.get(session_id).status != CompactionStatus.FAILED:
            return CompactionResult(success=True)
        return await self.run_compaction_with_state(session_id, force=True)

    def dismiss(self, session_id: str) -> None:
        self.state_bus.dismiss(session_id)

    def cancel(self, session_id: str) -> bool:
        """Abort the scheduled or running compaction of a session."""
        cancelled = self.scheduler.cancel(_schedule_key(session_id))
        event = self._cancel_events.get(session_id)
        if event is not None:
            event.set()
            cancelled = True
        task = self._inflight.get(session_id)
        if task is not None and not task.done():
            task.cancel()
            cancelled = True
        return cancelled

    # ------------------------------------------------------------------
    # Background checks
    # ------------------------------------------------------------------

    def schedule_compaction_check(self, session_id: str) -> bool:
        """Debounced background check, e.g. after a reply finished streaming."""
        return self.scheduler.schedule(
            _schedule_key(session_id), lambda: self._scheduled_check(session_id)
        )

    async def _scheduled_check(self, session_id: str) -> None:
        session = await self.store.get_session(session_id)
        if session is None or session.type != SessionType.CHAT:
            return
        if not self.is_auto_compaction_enabled(session):
            return
        await self.run_compaction_with_state(session_id)

    async def close(self) -> None:
        await self.scheduler.close()
        for session_id in list(self._inflight):
            self.cancel(session_id)
        await asyncio.gather(*self._inflight.values(), return_exceptions=True)


def _schedule_key(session_id: str) -> str:
    return f"compaction-{session_id}"


def _raise_if_cancelled(cancel_event: asyncio.Event | None) -> None:
    if cancel_event is not None and cancel_event.is_set():
        raise CompactionCancelledError("Compaction cancelled")
