"""Overflow detection: does the current context exceed the compaction threshold?"""

from __future__ import annotations

from dataclasses import dataclass

from ..models import SessionSettings
from .model_context import ModelContextRegistry

OUTPUT_RESERVE_TOKENS = 32_000
DEFAULT_COMPACTION_THRESHOLD = 0.6


@dataclass(frozen=True)
class OverflowResult:
    is_overflow: bool
    context_window: int | None
    threshold_tokens: int | None
    current_tokens: int


def available_window(context_window: int, output_reserve: int = OUTPUT_RESERVE_TOKENS) -> int:
    """Usable input budget: the window minus the output reserve, never below half the window."""
    return max(context_window - output_reserve, context_window // 2)


def check_overflow(
    tokens: int,
    context_window: int | None,
    threshold_ratio: float = DEFAULT_COMPACTION_THRESHOLD,
    *,
    output_reserve: int = OUTPUT_RESERVE_TOKENS,
) -> OverflowResult:
    """Compare *tokens* against ``floor(available_window * threshold_ratio)``.

    An unknown window, a non-positive token count or a non-positive
    available window never overflow.

    >>> check_overflow(57_601, 128_000).is_overflow
    True
    """
    if tokens <= 0 or context_window is None:
        return OverflowResult(False, None, None, tokens)

    available = available_window(context_window, output_reserve)
    if available <= 0:
        return OverflowResult(False, context_window, None, tokens)

    threshold = int(available * threshold_ratio)
    return OverflowResult(tokens > threshold, context_window, threshold, tokens)


def resolve_context_window(
    model_id: str | None,
    settings: SessionSettings | None = None,
    registry: ModelContextRegistry | None = None,
) -> int | None:
    """Explicit ``settings.context_window`` wins over the registry lookup."""
    if settings is not None and settings.context_window is not None:
        return settings.context_window
    return (registry or ModelContextRegistry()).context_window_for(model_id)


def check_model_overflow(
    tokens: int,
    model_id: str | None,
    settings: SessionSettings | None = None,
    registry: ModelContextRegistry | None = None,
    *,
    default_threshold: float = DEFAULT_COMPACTION_THRESHOLD,
    output_reserve: int = OUTPUT_RESERVE_TOKENS,
) -> OverflowResult:
    if tokens <= 0:
        return OverflowResult(False, None, None, tokens)
    window = resolve_context_window(model_id, settings, registry)
    ratio = default_threshold
    if settings is not None and settings.compaction_threshold is not None:
        ratio = settings.compaction_threshold
    return check_overflow(tokens, window, ratio, output_reserve=output_reserve)


def compaction_threshold_tokens(
    model_id: str | None,
    settings: SessionSettings | None = None,
    registry: ModelContextRegistry | None = None,
    *,
    default_threshold: float = DEFAULT_COMPACTION_THRESHOLD,
    output_reserve: int = OUTPUT_RESERVE_TOKENS,
) -> int | None:
    window = resolve_context_window(model_id, settings, registry)
    if window is None:
        return None
    available = available_window(window, output_reserve)
    if available <= 0:
        return None
    ratio = default_threshold
    if settings is not None and settings.compaction_threshold is not None:
        ratio = settings.compaction_threshold
    return int(available * ratio)
