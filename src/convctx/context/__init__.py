"""Context window accounting: overflow detection and context building."""

from .builder import (
    build_context,
    build_context_for_session,
    build_context_for_thread,
    context_message_ids,
    latest_compaction_point,
    select_messages_for_send,
)
from .model_context import (
    BUILTIN_MODEL_CONTEXT,
    ModelContextRegistry,
    parse_models_dev,
    parse_models_dev_tool_use,
)
from .overflow import (
    DEFAULT_COMPACTION_THRESHOLD,
    OUTPUT_RESERVE_TOKENS,
    OverflowResult,
    check_model_overflow,
    check_overflow,
    compaction_threshold_tokens,
)
from .tool_cleanup import clean_tool_calls

__all__ = [
    "BUILTIN_MODEL_CONTEXT",
    "DEFAULT_COMPACTION_THRESHOLD",
    "OUTPUT_RESERVE_TOKENS",
    "ModelContextRegistry",
    "OverflowResult",
    "build_context",
    "build_context_for_session",
    "build_context_for_thread",
    "check_model_overflow",
    "check_overflow",
    "clean_tool_calls",
    "compaction_threshold_tokens",
    "context_message_ids",
    "latest_compaction_point",
    "parse_models_dev",
    "parse_models_dev_tool_use",
    "select_messages_for_send",
]
