"""Conversation data model: messages, threads, compaction points and forks."""

from __future__ import annotations

import time
import uuid
from enum import StrEnum
from typing import Annotated, Any, Literal

from pydantic import BaseModel, Field

# ---------------------------------------------------------------------------
# Enums
# ---------------------------------------------------------------------------


class MessageRole(StrEnum):
    """Role of a message author."""

    USER = "user"
    ASSISTANT = "assistant"
    SYSTEM = "system"
    TOOL = "tool"


class TokenCacheKey(StrEnum):
    """Keys of a token-count cache map (tokenizer profile x content mode)."""

    DEFAULT = "default"
    DEEPSEEK = "deepseek"
    DEFAULT_PREVIEW = "default_preview"
    DEEPSEEK_PREVIEW = "deepseek_preview"


class SessionType(StrEnum):
    CHAT = "chat"
    PICTURE = "picture"


def now_ms() -> int:
    return int(time.time() * 1000)


def new_id() -> str:
    return str(uuid.uuid4())


# ---------------------------------------------------------------------------
# Content parts
# ---------------------------------------------------------------------------


class TextPart(BaseModel):
    type: Literal["text"] = "text"
    text: str


class ImagePart(BaseModel):
    type: Literal["image"] = "image"
    storage_key: str


class ReasoningPart(BaseModel):
    type: Literal["reasoning"] = "reasoning"
    text: str


class ToolCallPart(BaseModel):
    type: Literal["tool-call"] = "tool-call"
    tool_call_id: str
    tool_name: str
    args: dict[str, Any] = Field(default_factory=dict)
    state: Literal["call", "result", "error"] = "call"
    result: Any = None


class InfoPart(BaseModel):
    type: Literal["info"] = "info"
    text: str


ContentPart = Annotated[
    TextPart | ImagePart | ReasoningPart | ToolCallPart | InfoPart,
    Field(discriminator="type"),
]

TokenCountMap = dict[TokenCacheKey, int]


# ---------------------------------------------------------------------------
# Attachments
# ---------------------------------------------------------------------------


class MessageFile(BaseModel):
    """File attached to a message. Content bytes live in external storage."""

    id: str = Field(default_factory=new_id)
    name: str
    storage_key: str | None = None
    line_count: int | None = None
    byte_length: int | None = None
    token_count_map: TokenCountMap = Field(default_factory=dict)
    token_calculated_at: dict[TokenCacheKey, int] = Field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.name


class MessageLink(BaseModel):
    """Web page attached to a message."""

    id: str = Field(default_factory=new_id)
    url: str
    title: str
    storage_key: str | None = None
    line_count: int | None = None
    byte_length: int | None = None
    token_count_map: TokenCountMap = Field(default_factory=dict)
    token_calculated_at: dict[TokenCacheKey, int] = Field(default_factory=dict)

    @property
    def display_name(self) -> str:
        return self.title


Attachment = MessageFile | MessageLink


# ---------------------------------------------------------------------------
# Messages
# ---------------------------------------------------------------------------


class Message(BaseModel):
    """Single entry of a conversation log."""

    id: str = Field(default_factory=new_id)
    role: MessageRole
    content_parts: list[ContentPart] = Field(default_factory=list)
    timestamp: int = Field(default_factory=now_ms)
    name: str | None = None
    is_summary: bool = False
    token_count: int | None = None
    token_count_map: TokenCountMap = Field(default_factory=dict)
    token_calculated_at: dict[TokenCacheKey, int] = Field(default_factory=dict)
    updated_at: int | None = None
    files: list[MessageFile] = Field(default_factory=list)
    links: list[MessageLink] = Field(default_factory=list)
    generating: bool = False
    error: str | None = None
    error_code: int | None = None
    model: str | None = None

    @classmethod
    def text(cls, role: MessageRole | str, text: str, **fields: Any) -> Message:
        """Build a message holding a single text part (no part when *text* is empty)."""
        parts: list[Any] = [TextPart(text=text)] if text else []
        return cls(role=MessageRole(role), content_parts=parts, **fields)

    @property
    def has_error(self) -> bool:
        return bool(self.error) or self.error_code is not None


def message_text(message: Message, *, include_reasoning: bool = False) -> str:
    """Concatenate the text-bearing parts of *message*, in order."""
    chunks: list[str] = []
    for part in message.content_parts:
        if isinstance(part, TextPart | InfoPart):
            chunks.append(part.text)
        elif include_reasoning and isinstance(part, ReasoningPart):
            chunks.append(part.text)
    return "\n".join(c for c in chunks if c)


def is_empty_message(message: Message) -> bool:
    if message_text(message, include_reasoning=True):
        return False
    if message.files or message.links:
        return False
    return not any(isinstance(p, ImagePart | ToolCallPart) for p in message.content_parts)


# ---------------------------------------------------------------------------
# Compaction, threads, forks
# ---------------------------------------------------------------------------


class CompactionPoint(BaseModel):
    """Marks where a summary begins: everything up to the boundary is covered."""

    summary_message_id: str
    boundary_message_id: str
    created_at: int = Field(default_factory=now_ms)


class SessionThread(BaseModel):
    """Named, archived sub-conversation with its own log and compaction points."""

    id: str = Field(default_factory=new_id)
    name: str = ""
    messages: list[Message] = Field(default_factory=list)
    created_at: int = Field(default_factory=now_ms)
    compaction_points: list[CompactionPoint] | None = None


class MessageForkList(BaseModel):
    """One stored branch of a fork. Empty while the branch is the live one."""

    id: str = Field(default_factory=new_id)
    messages: list[Message] = Field(default_factory=list)


class MessageForkEntry(BaseModel):
    """Alternate continuations after a fork message; ``position`` is the live branch."""

    position: int = 0
    lists: list[MessageForkList] = Field(default_factory=list)
    created_at: int = Field(default_factory=now_ms)


MessageForksHash = dict[str, MessageForkEntry]


# ---------------------------------------------------------------------------
# Settings & session
# ---------------------------------------------------------------------------


class SessionSettings(BaseModel):
    """Per-session overrides; ``None`` means inherit the global value."""

    provider: str | None = None
    model_id: str | None = None
    auto_compaction: bool | None = None
    compaction_threshold: float | None = Field(default=None, gt=0, le=1)
    max_context_message_count: int | None = Field(default=None, ge=0)
    context_window: int | None = Field(default=None, gt=0)
    keep_tool_call_rounds: int | None = None
    language: str | None = None
    # None defers to the model registry.
    model_supports_tool_use: bool | None = None


class GlobalSettings(BaseModel):
    """Application-wide defaults."""

    auto_compaction: bool = True
    compaction_threshold: float = Field(default=0.6, gt=0, le=1)
    language: str = "en"
    max_context_message_count: int | None = Field(default=None, ge=0)


class Session(BaseModel):
    """A conversation: primary log plus threads, compaction points and forks."""

    id: str = Field(default_factory=new_id)
    name: str = ""
    type: SessionType = SessionType.CHAT
    messages: list[Message] = Field(default_factory=list)
    threads: list[SessionThread] | None = None
    compaction_points: list[CompactionPoint] | None = None
    message_forks_hash: MessageForksHash | None = None
    settings: SessionSettings = Field(default_factory=SessionSettings)

    def find_thread(self, thread_id: str) -> SessionThread | None:
        for thread in self.threads or []:
            if thread.id == thread_id:
                return thread
        return None


# ---------------------------------------------------------------------------
# Copy helpers
# ---------------------------------------------------------------------------


def copy_message(source: Message) -> Message:
    """Deep copy of *source* under a fresh id."""
    return source.model_copy(update={"id": new_id()}, deep=True)


def copy_messages_with_mapping(messages: list[Message]) -> tuple[list[Message], dict[str, str]]:
    """Copy *messages* and return the old-id -> new-id mapping."""
    mapping: dict[str, str] = {}
    copies: list[Message] = []
    for msg in messages:
        new_msg = copy_message(msg)
        mapping[msg.id] = new_msg.id
        copies.append(new_msg)
    return copies, mapping


def remap_compaction_points(
    points: list[CompactionPoint] | None, mapping: dict[str, str]
) -> list[CompactionPoint] | None:
    """Rewrite point ids through *mapping*, dropping points that cannot be mapped.

    ``None`` stays ``None``; a list whose points all drop becomes ``[]``.
    """
    if points is None:
        return None
    remapped: list[CompactionPoint] = []
    for cp in points:
        summary_id = mapping.get(cp.summary_message_id)
        boundary_id = mapping.get(cp.boundary_message_id)
        if summary_id is None or boundary_id is None:
            continue
        remapped.append(
            cp.model_copy(
                update={"summary_message_id": summary_id, "boundary_message_id": boundary_id}
            )
        )
    return remapped


def copy_threads(
    source: list[SessionThread] | None, id_mapping: dict[str, str] | None = None
) -> list[SessionThread] | None:
    """Copy threads with fresh ids, remapping each thread's compaction points."""
    if source is None:
        return None
    copies: list[SessionThread] = []
    for thread in source:
        messages, thread_mapping = copy_messages_with_mapping(thread.messages)
        combined = {**(id_mapping or {}), **thread_mapping}
        copies.append(
            SessionThread(
                name=thread.name,
                messages=messages,
                compaction_points=remap_compaction_points(thread.compaction_points, combined),
            )
        )
    return copies
