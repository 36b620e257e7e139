"""Model metadata lookup: context window sizes and tool-use support by model id."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any, TypeVar

logger = logging.getLogger(__name__)

V = TypeVar("V")

# Fallback context windows for common models (tokens).
BUILTIN_MODEL_CONTEXT: dict[str, int] = {
    # OpenAI
    "gpt-5.1": 400_000,
    "gpt-5": 400_000,
    "gpt-5-mini": 128_000,
    "gpt-5-nano": 128_000,
    "gpt-5-chat-latest": 400_000,
    "gpt-4o": 128_000,
    "gpt-4o-mini": 128_000,
    "gpt-4-turbo": 128_000,
    "gpt-4": 8_192,
    "gpt-3.5-turbo": 16_385,
    "o4-mini": 200_000,
    "o3-mini": 200_000,
    "o3": 200_000,
    "o3-pro": 200_000,
    "o1": 200_000,
    "o1-mini": 128_000,
    "o1-preview": 128_000,
    # Anthropic
    "claude-opus-4-1": 200_000,
    "claude-sonnet-4-5": 200_000,
    "claude-haiku-4-5": 200_000,
    "claude-4-opus": 200_000,
    "claude-4-sonnet": 200_000,
    "claude-3-7-sonnet": 200_000,
    "claude-3-5-sonnet": 200_000,
    "claude-3-5-sonnet-20241022": 200_000,
    "claude-3-5-haiku": 200_000,
    "claude-3-opus": 200_000,
    "claude-3-sonnet": 200_000,
    "claude-3-haiku": 200_000,
    # Google
    "gemini-3-pro-preview": 1_000_000,
    "gemini-2.5-pro": 1_000_000,
    "gemini-2.5-flash": 1_000_000,
    "gemini-2.0-flash": 1_000_000,
    "gemini-1.5-pro": 2_000_000,
    "gemini-1.5-flash": 1_000_000,
    # DeepSeek
    "deepseek-chat": 128_000,
    "deepseek-coder": 128_000,
    "deepseek-reasoner": 128_000,
    "deepseek-v3": 128_000,
    "deepseek-r1": 128_000,
    # xAI
    "grok-4-1-fast-reasoning": 2_000_000,
    "grok-4-1-fast-non-reasoning": 2_000_000,
    "grok-3": 131_072,
    "grok-3-mini": 131_072,
    "grok-2": 131_072,
    "grok-beta": 131_072,
    # Mistral
    "mistral-large-latest": 32_000,
    "mistral-medium-latest": 32_000,
    "mistral-small-latest": 32_000,
    "pixtral-large-latest": 128_000,
    "codestral-latest": 32_000,
    "magistral-medium-latest": 32_000,
    "magistral-small-latest": 32_000,
    # Meta
    "llama-3.3-70b-versatile": 131_072,
    "llama-3.2-90b-vision": 128_000,
    "llama-3.1-405b": 128_000,
    "llama-3.1-70b": 128_000,
    "llama-3.1-8b": 128_000,
    # Qwen
    "qwen-2.5-72b": 128_000,
    "qwen-2.5-32b": 32_000,
    "qwen-2.5-14b": 32_000,
    "qwen-2.5-7b": 32_000,
    "qwq-32b": 32_000,
    # Cohere
    "command-r-plus": 128_000,
    "command-r": 128_000,
}


def _exact_match(model_id: str, data: Mapping[str, V]) -> V | None:
    normalized = model_id.lower()
    for key, value in data.items():
        if key.lower() == normalized:
            return value
    return None


def _prefix_match(model_id: str, data: Mapping[str, V]) -> V | None:
    """Longest key that is a prefix of *model_id* or that *model_id* prefixes."""
    normalized = model_id.lower()
    best_key: str | None = None
    for key in data:
        lowered = key.lower()
        if normalized.startswith(lowered) or lowered.startswith(normalized):
            if best_key is None or len(key) > len(best_key):
                best_key = key
    return data[best_key] if best_key is not None else None


def parse_models_dev(response: Mapping[str, Any]) -> dict[str, int]:
    """Extract ``{model_id: context}`` from a models.dev style catalogue."""
    result: dict[str, int] = {}
    for model_id, model in _catalogue_models(response):
        context = (model.get("limit") or {}).get("context")
        if isinstance(context, int) and context > 0:
            result[model_id] = context
    return result


def parse_models_dev_tool_use(response: Mapping[str, Any]) -> dict[str, bool]:
    """Extract ``{model_id: tool_call}`` for models that declare the flag."""
    return {
        model_id: model["tool_call"]
        for model_id, model in _catalogue_models(response)
        if isinstance(model.get("tool_call"), bool)
    }


def _catalogue_models(response: Mapping[str, Any]) -> list[tuple[str, Mapping[str, Any]]]:
    found: list[tuple[str, Mapping[str, Any]]] = []
    for provider in response.values():
        models = provider.get("models") if isinstance(provider, Mapping) else None
        if not models:
            continue
        found.extend((mid, m) for mid, m in models.items() if isinstance(m, Mapping))
    return found


class ModelContextRegistry:
    """Resolves a model's context window and whether it can call tools.

    Runtime data (loaded catalogues or explicit registrations) is consulted
    before the builtin table; in each, an exact case-insensitive match beats
    the longest prefix match. Unknown models resolve to ``None`` for the
    window and to ``False`` for tool use.
    """

    def __init__(
        self,
        overrides: Mapping[str, int] | None = None,
        tool_use: Mapping[str, bool] | None = None,
    ) -> None:
        self._runtime: dict[str, int] = dict(overrides or {})
        self._tool_use: dict[str, bool] = dict(tool_use or {})

    def register(
        self, model_id: str, context_window: int, *, tool_use: bool | None = None
    ) -> None:
        if context_window <= 0:
            msg = f"context_window must be positive, got {context_window}"
            raise ValueError(msg)
        self._runtime[model_id] = context_window
        if tool_use is not None:
            self._tool_use[model_id] = tool_use

    def load(self, data: Mapping[str, int]) -> int:
        """Merge a catalogue into the runtime table; returns the entry count."""
        self._runtime.update(data)
        logger.debug("Loaded %d model context entries", len(data))
        return len(data)

    def load_catalogue(self, response: Mapping[str, Any]) -> int:
        """Merge context windows and tool-use flags of a models.dev catalogue."""
        self._tool_use.update(parse_models_dev_tool_use(response))
        return self.load(parse_models_dev(response))

    def context_window_for(self, model_id: str | None) -> int | None:
        if not model_id:
            return None
        for data in (self._runtime, BUILTIN_MODEL_CONTEXT):
            if not data:
                continue
            found = _exact_match(model_id, data)
            if found is None:
                found = _prefix_match(model_id, data)
            if found is not None:
                return found
        return None

    def supports_tool_use(self, model_id: str | None) -> bool:
        if not model_id or not self._tool_use:
            return False
        found = _exact_match(model_id, self._tool_use)
        if found is None:
            found = _prefix_match(model_id, self._tool_use)
        return bool(found)
