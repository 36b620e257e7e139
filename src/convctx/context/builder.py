"""Context Builder: the exact message list sent to a model.

The builder applies, in order: removal of unfinished and failed messages,
the latest compaction point (summary first, then what follows its
boundary), the message-count limit and tool-call pruning. Inputs are never
mutated.
"""

from __future__ import annotations

import logging

from ..models import (
    CompactionPoint,
    GlobalSettings,
    Message,
    MessageRole,
    Session,
    SessionSettings,
    SessionThread,
)
from .tool_cleanup import clean_tool_calls

logger = logging.getLogger(__name__)

DEFAULT_KEEP_TOOL_CALL_ROUNDS = 2


def latest_compaction_point(points: list[CompactionPoint] | None) -> CompactionPoint | None:
    """Point with the greatest ``created_at``; the first one wins ties."""
    latest: CompactionPoint | None = None
    for cp in points or []:
        if latest is None or cp.created_at > latest.created_at:
            latest = cp
    return latest


def is_sendable(message: Message) -> bool:
    return not message.generating and not message.has_error


def apply_compaction(messages: list[Message], point: CompactionPoint | None) -> list[Message]:
    """Replace everything up to the point's boundary with its summary.

    Leading system messages cut by the boundary are kept in front. A
    boundary that no longer exists leaves *messages* as they are.
    """
    if point is None:
        return list(messages)

    boundary_index = next(
        (i for i, m in enumerate(messages) if m.id == point.boundary_message_id), -1
    )
    if boundary_index < 0:
        logger.warning(
            "Compaction boundary %s not found, using full history", point.boundary_message_id
        )
        return list(messages)

    result: list[Message] = []
    for msg in messages[: boundary_index + 1]:
        if msg.role != MessageRole.SYSTEM:
            break
        result.append(msg)

    summary = next((m for m in messages if m.id == point.summary_message_id), None)
    if summary is not None:
        result.append(summary)

    result.extend(m for m in messages[boundary_index + 1 :] if not m.is_summary)
    return result


def limit_messages(
    messages: list[Message], max_count: int | None, *, preserve_last_user_message: bool
) -> list[Message]:
    """Keep the newest *max_count* messages, one more when the pending user turn is preserved."""
    if max_count is None:
        return messages
    limit = max_count + 1 if preserve_last_user_message else max_count
    if limit <= 0:
        return []
    return messages[-limit:] if len(messages) > limit else messages


def build_context(
    messages: list[Message],
    compaction_points: list[CompactionPoint] | None = None,
    *,
    keep_tool_call_rounds: int = DEFAULT_KEEP_TOOL_CALL_ROUNDS,
    max_message_count: int | None = None,
    preserve_last_user_message: bool = True,
) -> list[Message]:
    sendable = [m for m in messages if is_sendable(m)]
    context = apply_compaction(sendable, latest_compaction_point(compaction_points))
    context = limit_messages(
        context, max_message_count, preserve_last_user_message=preserve_last_user_message
    )
    return clean_tool_calls(context, keep_tool_call_rounds)


def build_context_for_thread(
    thread: SessionThread,
    *,
    keep_tool_call_rounds: int = DEFAULT_KEEP_TOOL_CALL_ROUNDS,
    max_message_count: int | None = None,
    preserve_last_user_message: bool = True,
) -> list[Message]:
    return build_context(
        thread.messages,
        thread.compaction_points,
        keep_tool_call_rounds=keep_tool_call_rounds,
        max_message_count=max_message_count,
        preserve_last_user_message=preserve_last_user_message,
    )


def build_context_for_session(
    session: Session,
    thread_id: str | None = None,
    *,
    keep_tool_call_rounds: int | None = None,
    max_message_count: int | None = None,
    preserve_last_user_message: bool = True,
) -> list[Message]:
    """Context of the session's main log, or of one of its threads.

    An unknown *thread_id* falls back to the main log. The session's
    ``keep_tool_call_rounds`` setting applies when none is given.
    """
    if keep_tool_call_rounds is None:
        keep_tool_call_rounds = session.settings.keep_tool_call_rounds
    if keep_tool_call_rounds is None:
        keep_tool_call_rounds = DEFAULT_KEEP_TOOL_CALL_ROUNDS

    thread = session.find_thread(thread_id) if thread_id else None
    if thread is not None:
        return build_context_for_thread(
            thread,
            keep_tool_call_rounds=keep_tool_call_rounds,
            max_message_count=max_message_count,
            preserve_last_user_message=preserve_last_user_message,
        )
    return build_context(
        session.messages,
        session.compaction_points,
        keep_tool_call_rounds=keep_tool_call_rounds,
        max_message_count=max_message_count,
        preserve_last_user_message=preserve_last_user_message,
    )


def context_message_ids(session: Session, max_count: int | None = None) -> list[str]:
    """Ids of the main-log messages in the current context; ``max_count`` of 0 means no limit."""
    context = build_context_for_session(
        session,
        max_message_count=max_count or None,
        preserve_last_user_message=False,
    )
    return [m.id for m in context]


def select_messages_for_send(
    messages: list[Message],
    settings: SessionSettings | None = None,
    compaction_points: list[CompactionPoint] | None = None,
    *,
    global_settings: GlobalSettings | None = None,
    preserve_last_user_message: bool = True,
    keep_tool_call_rounds: int = DEFAULT_KEEP_TOOL_CALL_ROUNDS,
) -> list[Message]:
    """Context for an outbound call honouring ``max_context_message_count``.

    The session setting wins; ``None`` there falls back to the global one.
    """
    max_count = settings.max_context_message_count if settings else None
    if max_count is None and global_settings is not None:
        max_count = global_settings.max_context_message_count
    return build_context(
        messages,
        compaction_points,
        keep_tool_call_rounds=keep_tool_call_rounds,
        max_message_count=max_count,
        preserve_last_user_message=preserve_last_user_message,
    )
