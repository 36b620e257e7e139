"""Summary generation: text-generation collaborator and the summarize prompt."""

from __future__ import annotations

import asyncio
import logging
import re
from abc import ABC, abstractmethod
from collections.abc import Callable
from dataclasses import dataclass

from pydantic import BaseModel

from ..errors import CompactionCancelledError, ErrorReporter, report_unexpected
from ..models import Message, MessageRole, message_text
from ..telemetry import trace_summary_generation

logger = logging.getLogger(__name__)

StreamCallback = Callable[[str], None]

LANGUAGE_NAMES: dict[str, str] = {
    "en": "English",
    "zh-Hans": "Simplified Chinese",
    "zh-Hant": "Traditional Chinese",
    "ja": "Japanese",
    "ko": "Korean",
    "fr": "French",
    "de": "German",
    "es": "Spanish",
    "pt-PT": "Portuguese",
    "ru": "Russian",
    "it-IT": "Italian",
    "ar": "Arabic",
}

_THINK_RE = re.compile(r"<think>.*?</think>", re.DOTALL)


class PromptMessage(BaseModel):
    role: MessageRole
    content: str


# ---------------------------------------------------------------------------
# TextGenerator ABC
# ---------------------------------------------------------------------------


class TextGenerator(ABC):
    """Abstract text-generation backend used to write summaries."""

    @abstractmethod
    def name(self) -> str:
        """Return the backend name."""

    @abstractmethod
    async def generate(
        self,
        messages: list[PromptMessage],
        *,
        on_delta: StreamCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> str:
        """Generate a completion, reporting the accumulated text through *on_delta*.

        Raises :class:`CompactionCancelledError` once *cancel_event* is set.
        """


class StubTextGenerator(TextGenerator):
    """Deterministic offline generator.

    Produces ``"Summary of N messages: ..."`` from the transcript, streamed
    word by word. ``response`` replaces the generated text and ``error`` is
    raised instead of answering.
    """

    def __init__(
        self,
        response: str | None = None,
        *,
        error: BaseException | None = None,
        chunk_delay: float = 0.0,
    ) -> None:
        self.response = response
        self.error = error
        self.chunk_delay = chunk_delay
        self.calls: list[list[PromptMessage]] = []

    def name(self) -> str:
        return "stub"

    async def generate(
        self,
        messages: list[PromptMessage],
        *,
        on_delta: StreamCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> str:
        self.calls.append(messages)
        if self.error is not None:
            raise self.error

        text = self.response if self.response is not None else self._summarize(messages)
        produced = ""
        for word in text.split(" "):
            if cancel_event is not None and cancel_event.is_set():
                raise CompactionCancelledError("Summary generation cancelled")
            if self.chunk_delay:
                await asyncio.sleep(self.chunk_delay)
            else:
                await asyncio.sleep(0)
            produced = f"{produced} {word}" if produced else word
            if on_delta is not None:
                on_delta(produced)
        if cancel_event is not None and cancel_event.is_set():
            raise CompactionCancelledError("Summary generation cancelled")
        return produced

    @staticmethod
    def _summarize(messages: list[PromptMessage]) -> str:
        transcript = messages[-1].content if messages else ""
        lines = [ln for ln in transcript.splitlines() if ln.strip()]
        head = " / ".join(ln[:40] for ln in lines[:3])
        return f"Summary of {len(lines)} messages: {head}"


# ---------------------------------------------------------------------------
# Prompt
# ---------------------------------------------------------------------------


def language_name(language: str) -> str:
    return LANGUAGE_NAMES.get(language, language)


def build_summary_prompt(messages: list[Message], language: str = "en") -> list[PromptMessage]:
    transcript = "\n".join(
        f"{msg.role}: {message_text(msg)}" for msg in messages if message_text(msg)
    )
    instruction = (
        "You are summarizing a conversation so that it can continue without its "
        "earlier messages. Keep facts, decisions, open tasks, names, numbers and "
        "code identifiers. Omit greetings and repetition. "
        f"Write the summary in {language_name(language)}."
    )
    return [
        PromptMessage(role=MessageRole.SYSTEM, content=instruction),
        PromptMessage(role=MessageRole.USER, content=transcript),
    ]


def strip_think_tags(text: str) -> str:
    return _THINK_RE.sub("", text).strip()


# ---------------------------------------------------------------------------
# SummaryGenerator
# ---------------------------------------------------------------------------


@dataclass
class SummaryResult:
    success: bool
    summary: str = ""
    error: BaseException | None = None


class SummaryGenerator:
    """Turns a message span into summary text.

    Provider failures come back as an unsuccessful :class:`SummaryResult`;
    only unexpected ones are sent to the error reporter. Cancellation
    propagates.
    """

    def __init__(
        self,
        generator: TextGenerator,
        *,
        language: str = "en",
        reporter: ErrorReporter | None = None,
    ) -> None:
        self._generator = generator
        self.language = language
        self._reporter = reporter

    async def generate(
        self,
        messages: list[Message],
        *,
        session_id: str = "",
        language: str | None = None,
        on_stream_update: StreamCallback | None = None,
        cancel_event: asyncio.Event | None = None,
    ) -> SummaryResult:
        if not messages:
            return SummaryResult(success=True, summary="")

        prompt = build_summary_prompt(messages, language or self.language)
        with trace_summary_generation(session_id, len(messages)):
            try:
                raw = await self._generator.generate(
                    prompt, on_delta=on_stream_update, cancel_event=cancel_event
                )
            except CompactionCancelledError:
                raise
            except Exception as exc:
                if report_unexpected(self._reporter, exc):
                    logger.warning("Summary generation failed unexpectedly: %s", exc)
                else:
                    logger.info("Summary generation failed: %s", exc)
                return SummaryResult(success=False, error=exc)

        return SummaryResult(success=True, summary=strip_think_tags(raw))
