"""convctx compaction walkthrough.

Shows a conversation growing past its context budget and being compacted
before the next user message is sent:
1. Token estimate of the current context vs. the compaction threshold
2. Send path triggers compaction, summary streamed through the state bus
3. Context after compaction: summary + most recent round + new message
4. Computed token counts persisted back onto the messages
5. Fork of the conversation, then cleanup after deleting the new branch

Uses the stub text generator -- no real LLM needed.

Run: python examples/compaction_walkthrough.py
"""

from __future__ import annotations

import asyncio
import logging
import sys
import tempfile
from pathlib import Path

sys.path.insert(0, str(Path(__file__).resolve().parent.parent / "src"))

from convctx import (
    CompactionOrchestrator,
    EngineConfig,
    Message,
    MessageRole,
    Session,
    SessionSettings,
    SessionStore,
    SqliteSessionStorage,
    StubTextGenerator,
    SummaryGenerator,
    TokenCountPersister,
    build_context_for_session,
    configure_tracing,
    submit_new_user_message,
)
from convctx.context.overflow import compaction_threshold_tokens
from convctx.sessions.forks import create_fork, delete_fork_branch


def _check(condition: bool, msg: str) -> None:  # noqa: FBT001
    """Raise RuntimeError if *condition* is False (demo validation)."""
    if not condition:
        raise RuntimeError(msg)


def _history() -> list[Message]:
    long_answer = " ".join(["The deployment uses blue-green rollouts with health checks."] * 60)
    return [
        Message.text(MessageRole.SYSTEM, "You are a release engineering assistant."),
        Message.text(MessageRole.USER, "How do we ship the billing service?"),
        Message.text(MessageRole.ASSISTANT, long_answer),
        Message.text(MessageRole.USER, "And the rollback plan?"),
        Message.text(MessageRole.ASSISTANT, "Flip the router back to the previous colour."),
    ]


async def run_demo() -> None:
    print("=" * 60)
    print("convctx Compaction Walkthrough")
    print("=" * 60)

    with tempfile.TemporaryDirectory() as tmpdir:
        storage = SqliteSessionStorage(Path(tmpdir) / "sessions.db")
        store = SessionStore(storage)
        persister = TokenCountPersister(store)
        orchestrator = CompactionOrchestrator(
            store,
            SummaryGenerator(StubTextGenerator()),
            token_persister=persister,
        )
        settings = SessionSettings(model_id="gpt-4", context_window=2000)
        session = await store.create_session(
            Session(name="release", messages=_history(), settings=settings)
        )

        # ------------------------------------------------------------------
        # Step 1: Budget check
        # ------------------------------------------------------------------
        print("\n[1/5] Estimating context size...")
        tokens = orchestrator.estimate_context_tokens(session)
        threshold = compaction_threshold_tokens(settings.model_id, settings)
        print(f"  Messages  : {len(session.messages)}")
        print(f"  Tokens    : {tokens}")
        print(f"  Threshold : {threshold}")
        _check(threshold is not None and tokens > threshold, "History should exceed the threshold")

        # ------------------------------------------------------------------
        # Step 2: Send a new message; compaction runs first
        # ------------------------------------------------------------------
        print("\n[2/5] Sending a new user message...")
        statuses: list[str] = []
        orchestrator.state_bus.subscribe(lambda _sid, st: statuses.append(str(st.status)))
        new_msg = Message.text(MessageRole.USER, "Write the release checklist.")
        updated = await submit_new_user_message(store, orchestrator, session.id, new_msg)
        print(f"  State changes : {len(statuses)} ({statuses[0]} -> {statuses[-1]})")
        print(f"  Points        : {len(updated.compaction_points or [])}")
        _check(bool(updated.compaction_points), "Compaction should have produced a point")

        # ------------------------------------------------------------------
        # Step 3: Inspect the context that would be sent
        # ------------------------------------------------------------------
        print("\n[3/5] Context after compaction...")
        context = build_context_for_session(updated)
        for msg in context:
            label = "summary" if msg.is_summary else str(msg.role)
            print(f"    - {label:10s} | {msg.id[:8]}")
        _check(context[0].role == MessageRole.SYSTEM, "System prompt should lead the context")
        _check(context[1].is_summary, "Summary should follow the system prompt")
        _check(context[-1].id == new_msg.id, "New message should close the context")

        # ------------------------------------------------------------------
        # Step 4: Persist computed token counts
        # ------------------------------------------------------------------
        print("\n[4/5] Persisting token counts...")
        applied = await persister.flush()
        print(f"  Counts written : {applied}")
        _check(applied > 0, "Estimation should have produced counts to persist")

        # ------------------------------------------------------------------
        # Step 5: Fork and delete the new branch
        # ------------------------------------------------------------------
        print("\n[5/5] Forking after the first question...")
        fork_point = updated.messages[1].id
        forked = await store.update_session(session.id, lambda s: create_fork(s, fork_point))
        print(f"  Live branch length : {len(forked.messages)}")
        restored = await store.update_session(
            session.id, lambda s: delete_fork_branch(s, fork_point)
        )
        print(f"  After delete       : {len(restored.messages)}")
        _check(len(restored.messages) == len(updated.messages), "Original branch should return")
        _check(restored.message_forks_hash is None, "Fork entry should be gone")

        await orchestrator.close()
        await storage.close()

    print("\n" + "=" * 60)
    print("Walkthrough complete -- all checks passed!")
    print("=" * 60)


if __name__ == "__main__":
    logging.basicConfig(level=logging.WARNING)
    configure_tracing(EngineConfig.from_env())
    asyncio.run(run_demo())
