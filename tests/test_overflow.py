"""Tests for overflow detection and the model context registry."""

from __future__ import annotations

import pytest

from convctx.context.model_context import (
    ModelContextRegistry,
    parse_models_dev,
    parse_models_dev_tool_use,
)
from convctx.context.overflow import (
    available_window,
    check_model_overflow,
    check_overflow,
    compaction_threshold_tokens,
)
from convctx.models import SessionSettings

# ---------------------------------------------------------------------------
# check_overflow
# ---------------------------------------------------------------------------


def test_threshold_for_large_window() -> None:
    # (128000 - 32000) * 0.6
    assert check_overflow(57_600, 128_000).is_overflow is False
    result = check_overflow(57_601, 128_000)
    assert result.is_overflow is True
    assert result.threshold_tokens == 57_600
    assert result.context_window == 128_000
    assert result.current_tokens == 57_601


def test_small_window_keeps_half_available() -> None:
    assert available_window(8192) == 4096
    result = check_overflow(3000, 8192)
    assert result.threshold_tokens == 2457
    assert result.is_overflow is True


def test_custom_ratio() -> None:
    assert check_overflow(48_000, 128_000, 0.5).threshold_tokens == 48_000
    assert check_overflow(48_000, 128_000, 0.5).is_overflow is False


def test_unknown_window_never_overflows() -> None:
    result = check_overflow(10_000_000, None)
    assert result.is_overflow is False
    assert result.context_window is None
    assert result.threshold_tokens is None


def test_zero_tokens_never_overflow() -> None:
    result = check_overflow(0, 128_000)
    assert result.is_overflow is False
    assert result.context_window is None


def test_degenerate_window() -> None:
    result = check_overflow(100, 1)
    assert result.is_overflow is False
    assert result.threshold_tokens is None


# ---------------------------------------------------------------------------
# Registry
# ---------------------------------------------------------------------------


def test_registry_exact_and_prefix() -> None:
    registry = ModelContextRegistry()
    assert registry.context_window_for("gpt-4") == 8192
    assert registry.context_window_for("GPT-4o") == 128_000
    assert registry.context_window_for("gpt-4o-2024-08-06") == 128_000
    assert registry.context_window_for("claude-3-5-sonnet-latest") == 200_000


def test_registry_unknown_model() -> None:
    registry = ModelContextRegistry()
    assert registry.context_window_for("totally-unknown-model") is None
    assert registry.context_window_for(None) is None
    assert registry.context_window_for("") is None


def test_runtime_entries_win_over_builtin() -> None:
    registry = ModelContextRegistry({"gpt-4o": 64_000})
    assert registry.context_window_for("gpt-4o") == 64_000
    registry.register("house-model", 10_000)
    assert registry.context_window_for("house-model") == 10_000


def test_register_rejects_non_positive() -> None:
    with pytest.raises(ValueError, match="must be positive"):
        ModelContextRegistry().register("x", 0)


def test_parse_models_dev_catalogue() -> None:
    catalogue = {
        "acme": {
            "models": {
                "acme-large": {"limit": {"context": 300_000}},
                "acme-broken": {"limit": {}},
                "acme-zero": {"limit": {"context": 0}},
            }
        },
        "empty": {"models": {}},
    }
    parsed = parse_models_dev(catalogue)
    assert parsed == {"acme-large": 300_000}

    registry = ModelContextRegistry()
    assert registry.load(parsed) == 1
    assert registry.context_window_for("acme-large") == 300_000


def test_tool_use_from_catalogue_and_registration() -> None:
    catalogue = {
        "acme": {
            "models": {
                "acme-tools": {"limit": {"context": 200_000}, "tool_call": True},
                "acme-plain": {"limit": {"context": 32_000}, "tool_call": False},
                "acme-unknown": {"limit": {"context": 16_000}},
            }
        }
    }
    assert parse_models_dev_tool_use(catalogue) == {"acme-tools": True, "acme-plain": False}

    registry = ModelContextRegistry()
    assert registry.load_catalogue(catalogue) == 3
    assert registry.supports_tool_use("acme-tools")
    assert registry.supports_tool_use("ACME-tools-2025")
    assert not registry.supports_tool_use("acme-plain")
    assert not registry.supports_tool_use("acme-unknown")
    assert not registry.supports_tool_use(None)

    registry.register("house-model", 10_000, tool_use=True)
    assert registry.supports_tool_use("house-model")


# ---------------------------------------------------------------------------
# Model-level helpers
# ---------------------------------------------------------------------------


def test_check_model_overflow_uses_registry() -> None:
    assert check_model_overflow(57_601, "gpt-4o").is_overflow is True
    assert check_model_overflow(57_601, "unknown-model").is_overflow is False


def test_settings_override_window_and_ratio() -> None:
    settings = SessionSettings(context_window=1000, compaction_threshold=0.5)
    # max(1000 - 32000, 500) * 0.5
    result = check_model_overflow(251, "gpt-4o", settings)
    assert result.context_window == 1000
    assert result.threshold_tokens == 250
    assert result.is_overflow is True


def test_compaction_threshold_tokens() -> None:
    assert compaction_threshold_tokens("gpt-4o") == 57_600
    assert compaction_threshold_tokens("unknown-model") is None
    settings = SessionSettings(context_window=1000)
    assert compaction_threshold_tokens(None, settings) == 300
