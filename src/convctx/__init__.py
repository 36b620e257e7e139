"""convctx: conversation context and concurrency engine."""

from __future__ import annotations

__version__ = "0.1.0"

from .compaction import (
    CompactionOrchestrator,
    CompactionResult,
    CompactionStateBus,
    CompactionStatus,
    CompactionUIState,
    KeyedTaskScheduler,
    StubTextGenerator,
    SummaryGenerator,
    SummaryResult,
    TextGenerator,
    is_auto_compaction_enabled,
)
from .config import EngineConfig
from .context import (
    ModelContextRegistry,
    OverflowResult,
    build_context,
    build_context_for_session,
    build_context_for_thread,
    check_model_overflow,
    check_overflow,
    clean_tool_calls,
    context_message_ids,
    select_messages_for_send,
)
from .conversation import submit_new_user_message
from .errors import (
    ApiError,
    CompactionCancelledError,
    CompactionError,
    CompactionFailedError,
    ConvctxError,
    ErrorReporter,
    LoggingErrorReporter,
    NetworkError,
    SessionNotFoundError,
    StaleCompactionError,
)
from .models import (
    CompactionPoint,
    GlobalSettings,
    Message,
    MessageFile,
    MessageForkEntry,
    MessageForkList,
    MessageLink,
    MessageRole,
    Session,
    SessionSettings,
    SessionThread,
    SessionType,
    TextPart,
    TokenCacheKey,
    ToolCallPart,
)
from .sessions import (
    InMemorySessionStorage,
    SessionStorage,
    SessionStore,
    SqliteSessionStorage,
    UpdateQueue,
    cleanup_empty_fork_branches,
)
from .telemetry import EngineTracer, TelemetryConfig, configure_tracing, get_tracer
from .token_estimation import (
    TokenCountPersister,
    TokenEstimator,
    TokenizerType,
    estimate_tokens,
)

__all__ = [
    "ApiError",
    "CompactionCancelledError",
    "CompactionError",
    "CompactionFailedError",
    "CompactionOrchestrator",
    "CompactionPoint",
    "CompactionResult",
    "CompactionStateBus",
    "CompactionStatus",
    "CompactionUIState",
    "ConvctxError",
    "EngineConfig",
    "EngineTracer",
    "ErrorReporter",
    "GlobalSettings",
    "InMemorySessionStorage",
    "KeyedTaskScheduler",
    "LoggingErrorReporter",
    "Message",
    "MessageFile",
    "MessageForkEntry",
    "MessageForkList",
    "MessageLink",
    "MessageRole",
    "ModelContextRegistry",
    "NetworkError",
    "OverflowResult",
    "Session",
    "SessionNotFoundError",
    "SessionSettings",
    "SessionStorage",
    "SessionStore",
    "SessionThread",
    "SessionType",
    "SqliteSessionStorage",
    "StaleCompactionError",
    "StubTextGenerator",
    "SummaryGenerator",
    "SummaryResult",
    "TelemetryConfig",
    "TextGenerator",
    "TextPart",
    "TokenCacheKey",
    "TokenCountPersister",
    "TokenEstimator",
    "TokenizerType",
    "ToolCallPart",
    "UpdateQueue",
    "__version__",
    "build_context",
    "build_context_for_session",
    "build_context_for_thread",
    "check_model_overflow",
    "check_overflow",
    "clean_tool_calls",
    "cleanup_empty_fork_branches",
    "configure_tracing",
    "context_message_ids",
    "estimate_tokens",
    "get_tracer",
    "is_auto_compaction_enabled",
    "select_messages_for_send",
    "submit_new_user_message",
]
