"""Cache keys and freshness rules for memoised token counts."""

from __future__ import annotations

from ..models import Attachment, TokenCacheKey
from .tokenizer import ContentMode, TokenizerType

_KEYS: dict[tuple[TokenizerType, ContentMode], TokenCacheKey] = {
    (TokenizerType.DEFAULT, ContentMode.FULL): TokenCacheKey.DEFAULT,
    (TokenizerType.DEEPSEEK, ContentMode.FULL): TokenCacheKey.DEEPSEEK,
    (TokenizerType.DEFAULT, ContentMode.PREVIEW): TokenCacheKey.DEFAULT_PREVIEW,
    (TokenizerType.DEEPSEEK, ContentMode.PREVIEW): TokenCacheKey.DEEPSEEK_PREVIEW,
}


def token_cache_key(
    tokenizer: TokenizerType, mode: ContentMode = ContentMode.FULL
) -> TokenCacheKey:
    """Map a tokenizer profile and content mode to its cache key.

    >>> token_cache_key(TokenizerType.DEEPSEEK, ContentMode.PREVIEW)
    <TokenCacheKey.DEEPSEEK_PREVIEW: 'deepseek_preview'>
    """
    return _KEYS[(tokenizer, mode)]


def is_message_text_cache_valid(
    token_value: int | None,
    calculated_at: int | None,
    message_updated_at: int | None,
) -> bool:
    """A cached message count is usable unless the message changed after it was taken.

    Values without a timestamp (legacy data) and messages never modified are
    trusted.
    """
    if token_value is None:
        return False
    if calculated_at is None or message_updated_at is None:
        return True
    return calculated_at >= message_updated_at


def is_attachment_cache_valid(attachment: Attachment, key: TokenCacheKey) -> bool:
    """Attachments are immutable, so a cached count is valid once metadata is present."""
    if attachment.line_count is None or attachment.byte_length is None:
        return False
    return key in attachment.token_count_map
