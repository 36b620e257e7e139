"""Tests for summary generation."""

from __future__ import annotations

import asyncio

import pytest

from convctx.compaction.summary import (
    PromptMessage,
    StubTextGenerator,
    SummaryGenerator,
    build_summary_prompt,
    language_name,
    strip_think_tags,
)
from convctx.errors import ApiError, CompactionCancelledError, ErrorReporter, NetworkError
from convctx.models import Message, MessageRole


class _RecordingReporter(ErrorReporter):
    def __init__(self) -> None:
        self.captured: list[BaseException] = []

    def capture_exception(self, exc: BaseException) -> None:
        self.captured.append(exc)


def _history() -> list[Message]:
    return [
        Message.text(MessageRole.USER, "What is the capital of France?"),
        Message.text(MessageRole.ASSISTANT, "Paris."),
    ]


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------


def test_prompt_contains_transcript_and_language() -> None:
    prompt = build_summary_prompt(_history(), "ja")
    assert [p.role for p in prompt] == [MessageRole.SYSTEM, MessageRole.USER]
    assert prompt[0].content.endswith("Write the summary in Japanese.")
    assert prompt[1].content == "user: What is the capital of France?\nassistant: Paris."


def test_unknown_language_code_is_used_verbatim() -> None:
    assert language_name("en") == "English"
    assert language_name("tlh") == "tlh"


def test_strip_think_tags() -> None:
    assert strip_think_tags("<think>\nplanning\n</think>\n  The summary.") == "The summary."
    assert strip_think_tags("plain") == "plain"


# ---------------------------------------------------------------------------
# Stub generator
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_stub_streams_accumulated_text() -> None:
    stub = StubTextGenerator("one two three")
    deltas: list[str] = []
    prompt = [PromptMessage(role=MessageRole.USER, content="x")]
    text = await stub.generate(prompt, on_delta=deltas.append)
    assert text == "one two three"
    assert deltas == ["one", "one two", "one two three"]
    assert len(stub.calls) == 1


@pytest.mark.asyncio
async def test_stub_default_summary_is_deterministic() -> None:
    stub = StubTextGenerator()
    prompt = build_summary_prompt(_history())
    first = await stub.generate(prompt)
    assert first == await stub.generate(prompt)
    assert first.startswith("Summary of 2 messages: user: What is the capital")


# ---------------------------------------------------------------------------
# SummaryGenerator
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
async def test_generate_success_strips_reasoning() -> None:
    generator = SummaryGenerator(StubTextGenerator("<think>hmm</think>Paris was discussed."))
    updates: list[str] = []
    result = await generator.generate(_history(), on_stream_update=updates.append)
    assert result.success
    assert result.summary == "Paris was discussed."
    assert updates[-1] == "<think>hmm</think>Paris was discussed."


@pytest.mark.asyncio
async def test_empty_span_succeeds_without_calling_backend() -> None:
    stub = StubTextGenerator()
    result = await SummaryGenerator(stub).generate([])
    assert result.success
    assert result.summary == ""
    assert stub.calls == []


@pytest.mark.asyncio
async def test_language_override() -> None:
    stub = StubTextGenerator("ok")
    await SummaryGenerator(stub, language="fr").generate(_history())
    await SummaryGenerator(stub, language="fr").generate(_history(), language="de")
    assert stub.calls[0][0].content.endswith("in French.")
    assert stub.calls[1][0].content.endswith("in German.")


@pytest.mark.asyncio
@pytest.mark.parametrize(
    "error", [ApiError("rate limited", status_code=429), NetworkError("offline")]
)
async def test_expected_provider_errors_are_not_reported(error: Exception) -> None:
    reporter = _RecordingReporter()
    generator = SummaryGenerator(StubTextGenerator(error=error), reporter=reporter)
    result = await generator.generate(_history())
    assert not result.success
    assert result.error is error
    assert reporter.captured == []


@pytest.mark.asyncio
async def test_unexpected_errors_are_reported() -> None:
    reporter = _RecordingReporter()
    error = RuntimeError("bug")
    generator = SummaryGenerator(StubTextGenerator(error=error), reporter=reporter)
    result = await generator.generate(_history())
    assert not result.success
    assert reporter.captured == [error]


@pytest.mark.asyncio
async def test_cancellation_propagates() -> None:
    cancel = asyncio.Event()
    cancel.set()
    generator = SummaryGenerator(StubTextGenerator("never sent"))
    with pytest.raises(CompactionCancelledError):
        await generator.generate(_history(), cancel_event=cancel)
