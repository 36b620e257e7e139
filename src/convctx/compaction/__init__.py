"""Compaction: summarising old context and tracking the run state."""

from .orchestrator import (
    CompactionOrchestrator,
    CompactionResult,
    is_auto_compaction_enabled,
    select_summary_span,
)
from .scheduler import KeyedTaskScheduler
from .state import CompactionStateBus, CompactionStatus, CompactionUIState
from .summary import (
    PromptMessage,
    StubTextGenerator,
    SummaryGenerator,
    SummaryResult,
    TextGenerator,
    build_summary_prompt,
    strip_think_tags,
)

__all__ = [
    "CompactionOrchestrator",
    "CompactionResult",
    "CompactionStateBus",
    "CompactionStatus",
    "CompactionUIState",
    "KeyedTaskScheduler",
    "PromptMessage",
    "StubTextGenerator",
    "SummaryGenerator",
    "SummaryResult",
    "TextGenerator",
    "build_summary_prompt",
    "is_auto_compaction_enabled",
    "select_summary_span",
    "strip_think_tags",
]
