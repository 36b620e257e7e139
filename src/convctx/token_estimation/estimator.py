"""Per-message and whole-conversation token estimation with memoised counts."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Any, Literal, Protocol

from ..errors import ErrorReporter, report_unexpected
from ..models import (
    Attachment,
    Message,
    MessageFile,
    TokenCacheKey,
    is_empty_message,
    message_text,
    now_ms,
)
from .cache_keys import (
    is_attachment_cache_valid,
    is_message_text_cache_valid,
    token_cache_key,
)
from .tokenizer import ContentMode, TokenizerType, estimate_tokens, tokenizer_type_for

logger = logging.getLogger(__name__)

MAX_INLINE_FILE_LINES = 500
PREVIEW_LINES = 100
TOKENS_PER_MESSAGE = 3
TOKENS_PER_NAME = 1
FALLBACK_WRAPPER_SAFETY_MARGIN_TOKENS = 50


# ---------------------------------------------------------------------------
# Attachment framing
# ---------------------------------------------------------------------------


def build_attachment_wrapper_prefix(
    attachment_index: int,
    file_name: str,
    file_key: str,
    file_lines: int,
    file_size: int,
) -> str:
    return (
        "\n\n<ATTACHMENT_FILE>\n"
        f"<FILE_INDEX>{attachment_index}</FILE_INDEX>\n"
        f"<FILE_NAME>{file_name}</FILE_NAME>\n"
        f"<FILE_KEY>{file_key}</FILE_KEY>\n"
        f"<FILE_LINES>{file_lines}</FILE_LINES>\n"
        f"<FILE_SIZE>{file_size} bytes</FILE_SIZE>\n"
        "<FILE_CONTENT>\n"
    )


def build_attachment_wrapper_suffix(
    is_truncated: bool,  # noqa: FBT001
    preview_lines: int | None = None,
    total_lines: int | None = None,
    file_key: str | None = None,
) -> str:
    suffix = "</FILE_CONTENT>\n"
    if is_truncated and preview_lines is not None and total_lines is not None and file_key:
        suffix += (
            f"<TRUNCATED>Content truncated. Showing first {preview_lines} of {total_lines} lines. "
            f'Use read_file or search_file_content tool with FILE_KEY="{file_key}" '
            "to read more content.</TRUNCATED>\n"
        )
    suffix += "</ATTACHMENT_FILE>\n"
    return suffix


def preview_text(content: str, lines: int = PREVIEW_LINES) -> str:
    return "\n".join(content.splitlines()[:lines])


# ---------------------------------------------------------------------------
# Collaborators & results
# ---------------------------------------------------------------------------


class AttachmentContentLoader(Protocol):
    """Reads attachment text from external storage."""

    def load(self, storage_key: str) -> str: ...


@dataclass
class PendingTokenCount:
    """A count computed during estimation that is not yet persisted."""

    message_id: str
    key: TokenCacheKey
    tokens: int
    calculated_at: int
    attachment_id: str | None = None
    attachment_kind: Literal["file", "link"] | None = None
    line_count: int | None = None
    byte_length: int | None = None


# ---------------------------------------------------------------------------
# Estimator
# ---------------------------------------------------------------------------


class TokenEstimator:
    """Estimates the send cost of messages for one tokenizer profile.

    Counts already present in a message's or attachment's
    ``token_count_map`` are reused. Counts computed here are memoised on the
    estimator and exposed through :meth:`pending_results` so a caller can
    persist them.
    """

    def __init__(
        self,
        tokenizer: TokenizerType = TokenizerType.DEFAULT,
        *,
        model_supports_tool_use: bool = False,
        content_loader: AttachmentContentLoader | None = None,
        reporter: ErrorReporter | None = None,
    ) -> None:
        self.tokenizer = tokenizer
        self.model_supports_tool_use = model_supports_tool_use
        self._loader = content_loader
        self._reporter = reporter
        self._memo: dict[tuple[str, TokenCacheKey], int] = {}
        self._pending: list[PendingTokenCount] = []

    @classmethod
    def for_model(cls, model_id: str | None, **kwargs: Any) -> TokenEstimator:
        return cls(tokenizer_type_for(model_id), **kwargs)

    @property
    def text_key(self) -> TokenCacheKey:
        return token_cache_key(self.tokenizer, ContentMode.FULL)

    def estimate(self, content: Any) -> int:
        return estimate_tokens(content, self.tokenizer, self._reporter)

    # -- messages ------------------------------------------------------------

    def estimate_text(self, message: Message) -> int:
        """Tokens of the message body, from cache when the cache is fresh."""
        key = self.text_key
        cached = message.token_count_map.get(key)
        if is_message_text_cache_valid(
            cached, message.token_calculated_at.get(key), message.updated_at
        ):
            return cached or 0

        memo_key = (message.id, key)
        if memo_key in self._memo:
            return self._memo[memo_key]

        tokens = self.estimate(message_text(message))
        self._memo[memo_key] = tokens
        self._pending.append(
            PendingTokenCount(message_id=message.id, key=key, tokens=tokens, calculated_at=now_ms())
        )
        return tokens

    def estimate_message(self, message: Message) -> int:
        """Role framing + body + name + attachments; empty messages cost nothing."""
        if is_empty_message(message):
            return 0
        total = TOKENS_PER_MESSAGE
        total += self.estimate_text(message)
        total += self.estimate(str(message.role))
        if message.name:
            total += self.estimate(message.name) + TOKENS_PER_NAME

        index = 1
        attachments: list[Attachment] = [*message.files, *message.links]
        for attachment in attachments:
            if not attachment.storage_key:
                continue
            total += self.estimate_attachment(attachment, index, message_id=message.id)
            index += 1
        return total

    def estimate_messages(self, messages: list[Message]) -> int:
        try:
            return sum(self.estimate_message(m) for m in messages)
        except Exception as exc:
            logger.warning("Conversation estimation failed, counting 0: %s", exc)
            report_unexpected(self._reporter, exc)
            return 0

    # -- attachments ---------------------------------------------------------

    def estimate_attachment(
        self, attachment: Attachment, index: int = 1, *, message_id: str = ""
    ) -> int:
        """Framing plus content cost of one attachment.

        Large attachments sent to a model that can read files through tools
        only carry a preview; the preview count is used when cached, else
        the full count. Without line metadata the full count plus a safety
        margin is charged.
        """
        line_count = attachment.line_count
        byte_length = attachment.byte_length
        content: str | None = None

        if (line_count is None or byte_length is None) and self._loader and attachment.storage_key:
            content = self._load(attachment)
            if content is not None:
                line_count = len(content.splitlines())
                byte_length = len(content.encode("utf-8"))

        file_name = attachment.display_name
        file_key = attachment.storage_key or attachment.id
        full_key = token_cache_key(self.tokenizer, ContentMode.FULL)

        if line_count is None or byte_length is None:
            wrapper = build_attachment_wrapper_prefix(
                index, file_name, file_key, 0, 0
            ) + build_attachment_wrapper_suffix(is_truncated=False)
            content_tokens = self._cached_count(attachment, full_key, require_metadata=False) or 0
            return self.estimate(wrapper) + content_tokens + FALLBACK_WRAPPER_SAFETY_MARGIN_TOKENS

        use_preview = self.model_supports_tool_use and line_count > MAX_INLINE_FILE_LINES
        mode = ContentMode.PREVIEW if use_preview else ContentMode.FULL
        key = token_cache_key(self.tokenizer, mode)

        wrapper = build_attachment_wrapper_prefix(
            index, file_name, file_key, line_count, byte_length
        ) + build_attachment_wrapper_suffix(
            is_truncated=use_preview,
            preview_lines=PREVIEW_LINES if use_preview else None,
            total_lines=line_count if use_preview else None,
            file_key=file_key if use_preview else None,
        )

        content_tokens = self._cached_count(attachment, key)
        if content_tokens is None and use_preview:
            content_tokens = self._cached_count(attachment, full_key)
        if content_tokens is None:
            content_tokens = self._compute_attachment(
                attachment, key, mode, message_id, content, line_count, byte_length
            )

        return self.estimate(wrapper) + content_tokens + self.estimate("\n")

    def _cached_count(
        self, attachment: Attachment, key: TokenCacheKey, *, require_metadata: bool = True
    ) -> int | None:
        """Stored count for *key*, then the memo. Stored counts need line metadata."""
        if not require_metadata or is_attachment_cache_valid(attachment, key):
            value = attachment.token_count_map.get(key)
            if value is not None:
                return value
        return self._memo.get((attachment.id, key))

    def _compute_attachment(
        self,
        attachment: Attachment,
        key: TokenCacheKey,
        mode: ContentMode,
        message_id: str,
        content: str | None,
        line_count: int,
        byte_length: int,
    ) -> int:
        if content is None:
            content = self._load(attachment)
        if content is None:
            logger.debug("No cached count or content for attachment %s", attachment.id)
            return 0
        text = preview_text(content) if mode == ContentMode.PREVIEW else content
        tokens = self.estimate(text)
        self._memo[(attachment.id, key)] = tokens
        self._pending.append(
            PendingTokenCount(
                message_id=message_id,
                key=key,
                tokens=tokens,
                calculated_at=now_ms(),
                attachment_id=attachment.id,
                attachment_kind="file" if isinstance(attachment, MessageFile) else "link",
                line_count=line_count,
                byte_length=byte_length,
            )
        )
        return tokens

    def _load(self, attachment: Attachment) -> str | None:
        if self._loader is None or not attachment.storage_key:
            return None
        try:
            return self._loader.load(attachment.storage_key)
        except Exception as exc:
            logger.warning("Could not load attachment %s: %s", attachment.id, exc)
            report_unexpected(self._reporter, exc)
            return None

    # -- pending results -----------------------------------------------------

    def pending_results(self) -> list[PendingTokenCount]:
        return list(self._pending)

    def drain_pending(self) -> list[PendingTokenCount]:
        """Return and forget the counts computed since the last drain."""
        drained, self._pending = self._pending, []
        return drained
