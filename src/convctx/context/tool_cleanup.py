"""Strip tool-call parts from all but the most recent conversation rounds."""

from __future__ import annotations

from ..models import Message, MessageRole, ToolCallPart


def round_boundary_index(messages: list[Message], keep_rounds: int) -> int:
    """Index of the first message inside the newest *keep_rounds* rounds.

    Walking backwards, an assistant message opens a round and the user
    message before it closes the round. With fewer complete rounds than
    requested the boundary is 0, so nothing is stripped.
    """
    if keep_rounds <= 0:
        return len(messages)

    rounds = 0
    in_round = False
    for i in range(len(messages) - 1, -1, -1):
        role = messages[i].role
        if role == MessageRole.ASSISTANT:
            in_round = True
        elif role == MessageRole.USER and in_round:
            rounds += 1
            in_round = False
            if rounds >= keep_rounds:
                return i
    return 0


def strip_tool_calls(message: Message) -> Message:
    parts = [p for p in message.content_parts if not isinstance(p, ToolCallPart)]
    return message.model_copy(update={"content_parts": parts})


def clean_tool_calls(messages: list[Message], keep_rounds: int = 2) -> list[Message]:
    """Copies of *messages* with tool calls removed before the kept rounds."""
    boundary = round_boundary_index(messages, keep_rounds)
    return [
        msg.model_copy() if i >= boundary else strip_tool_calls(msg)
        for i, msg in enumerate(messages)
    ]
