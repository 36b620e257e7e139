"""Token Estimator: heuristic token counts with per-message memoisation."""

from .cache_keys import is_attachment_cache_valid, is_message_text_cache_valid, token_cache_key
from .estimator import (
    MAX_INLINE_FILE_LINES,
    PREVIEW_LINES,
    TOKENS_PER_MESSAGE,
    TOKENS_PER_NAME,
    PendingTokenCount,
    TokenEstimator,
)
from .persister import TokenCountPersister
from .tokenizer import (
    ContentMode,
    TokenizerType,
    estimate_tokens,
    is_deepseek_model,
    tokenizer_type_for,
)

__all__ = [
    "MAX_INLINE_FILE_LINES",
    "PREVIEW_LINES",
    "TOKENS_PER_MESSAGE",
    "TOKENS_PER_NAME",
    "ContentMode",
    "PendingTokenCount",
    "TokenCountPersister",
    "TokenEstimator",
    "TokenizerType",
    "estimate_tokens",
    "is_attachment_cache_valid",
    "is_deepseek_model",
    "is_message_text_cache_valid",
    "token_cache_key",
    "tokenizer_type_for",
]
