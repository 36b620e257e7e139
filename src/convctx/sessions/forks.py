"""Fork branch bookkeeping.

A fork entry is keyed by the id of the message the conversation forked
after. The live branch is whatever follows that message in its log; the
entry's ``lists[position]`` is empty while that branch is live and every
other list stores an inactive continuation.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass

from ..models import (
    Message,
    MessageForkEntry,
    MessageForkList,
    MessageForksHash,
    Session,
    SessionThread,
    now_ms,
)

logger = logging.getLogger(__name__)


@dataclass
class ForkCleanupResult:
    messages: list[Message]
    fork_hash: MessageForksHash | None


def _index_of(messages: list[Message], message_id: str) -> int:
    for i, msg in enumerate(messages):
        if msg.id == message_id:
            return i
    return -1


def _without(fork_hash: MessageForksHash, key: str) -> MessageForksHash | None:
    rest = {k: v for k, v in fork_hash.items() if k != key}
    return rest or None


def cleanup_empty_fork_branches(
    fork_hash: MessageForksHash | None,
    messages: list[Message],
    threads: list[SessionThread] | None = None,
) -> ForkCleanupResult:
    """Drop live branches left empty by a deletion and switch to a survivor.

    A branch is empty when its fork message is the last message of its
    log. For forks in the main log the surviving branch is spliced in
    after the fork message; when at most one branch survives the fork
    entry is removed altogether. Forks inside threads only have their
    entry updated. Inputs are never mutated.
    """
    if not fork_hash:
        return ForkCleanupResult(messages=messages, fork_hash=fork_hash)

    result_hash: MessageForksHash | None = dict(fork_hash)
    result_messages = messages

    for fork_id, entry in fork_hash.items():
        index = _index_of(result_messages, fork_id)
        if index >= 0:
            if index != len(result_messages) - 1:
                continue
            remaining = [lst for i, lst in enumerate(entry.lists) if i != entry.position]
            head = result_messages[: index + 1]
            if len(remaining) <= 1:
                tail = remaining[0].messages if remaining else []
                result_messages = head + list(tail)
                result_hash = _without(result_hash or {}, fork_id)
                logger.debug("Fork %s collapsed into its last branch", fork_id)
            else:
                position = min(entry.position, len(remaining) - 1)
                result_messages = head + list(remaining[position].messages)
                lists = [
                    lst.model_copy(update={"messages": []}) if i == position else lst
                    for i, lst in enumerate(remaining)
                ]
                result_hash = {
                    **(result_hash or {}),
                    fork_id: entry.model_copy(update={"position": position, "lists": lists}),
                }
                logger.debug("Fork %s switched to branch %d", fork_id, position)
            continue

        for thread in threads or []:
            thread_index = _index_of(thread.messages, fork_id)
            if thread_index < 0:
                continue
            if thread_index == len(thread.messages) - 1:
                remaining = [lst for i, lst in enumerate(entry.lists) if i != entry.position]
                if len(remaining) <= 1:
                    result_hash = _without(result_hash or {}, fork_id)
                else:
                    position = min(entry.position, len(remaining) - 1)
                    result_hash = {
                        **(result_hash or {}),
                        fork_id: entry.model_copy(
                            update={"position": position, "lists": remaining}
                        ),
                    }
            break

    return ForkCleanupResult(messages=result_messages, fork_hash=result_hash)


# ---------------------------------------------------------------------------
# Fork actions
# ---------------------------------------------------------------------------


def _require_fork_point(session: Session, fork_message_id: str) -> int:
    index = _index_of(session.messages, fork_message_id)
    if index < 0:
        msg = f"Fork message {fork_message_id} not found in session {session.id}"
        raise ValueError(msg)
    return index


def create_fork(session: Session, fork_message_id: str) -> Session:
    """Stash the continuation after *fork_message_id* and start an empty branch."""
    index = _require_fork_point(session, fork_message_id)
    tail = session.messages[index + 1 :]
    fork_hash = dict(session.message_forks_hash or {})
    entry = fork_hash.get(fork_message_id)

    if entry is None:
        lists = [MessageForkList(messages=tail), MessageForkList()]
    else:
        lists = [
            lst.model_copy(update={"messages": tail}) if i == entry.position else lst
            for i, lst in enumerate(entry.lists)
        ]
        lists.append(MessageForkList())

    fork_hash[fork_message_id] = MessageForkEntry(
        position=len(lists) - 1,
        lists=lists,
        created_at=entry.created_at if entry else now_ms(),
    )
    return session.model_copy(
        update={"messages": session.messages[: index + 1], "message_forks_hash": fork_hash}
    )


def switch_fork(session: Session, fork_message_id: str, position: int) -> Session:
    """Make branch *position* the live continuation of *fork_message_id*."""
    index = _require_fork_point(session, fork_message_id)
    entry = (session.message_forks_hash or {}).get(fork_message_id)
    if entry is None:
        msg = f"No fork at message {fork_message_id}"
        raise ValueError(msg)
    if not 0 <= position < len(entry.lists):
        msg = f"Fork position {position} out of range (0..{len(entry.lists) - 1})"
        raise ValueError(msg)
    if position == entry.position:
        return session

    tail = session.messages[index + 1 :]
    target = entry.lists[position].messages
    lists = []
    for i, lst in enumerate(entry.lists):
        if i == entry.position:
            lists.append(lst.model_copy(update={"messages": tail}))
        elif i == position:
            lists.append(lst.model_copy(update={"messages": []}))
        else:
            lists.append(lst)

    fork_hash = {
        **(session.message_forks_hash or {}),
        fork_message_id: entry.model_copy(update={"position": position, "lists": lists}),
    }
    return session.model_copy(
        update={
            "messages": session.messages[: index + 1] + list(target),
            "message_forks_hash": fork_hash,
        }
    )


def delete_fork_branch(session: Session, fork_message_id: str) -> Session:
    """Discard the live branch after *fork_message_id* and fall back to a survivor."""
    index = _require_fork_point(session, fork_message_id)
    if fork_message_id not in (session.message_forks_hash or {}):
        msg = f"No fork at message {fork_message_id}"
        raise ValueError(msg)
    result = cleanup_empty_fork_branches(
        session.message_forks_hash, session.messages[: index + 1], session.threads
    )
    return session.model_copy(
        update={"messages": result.messages, "message_forks_hash": result.fork_hash}
    )
