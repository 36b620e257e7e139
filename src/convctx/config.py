"""Engine configuration: dataclass defaults overridable from the environment."""

from __future__ import annotations

import os
from collections.abc import Mapping
from dataclasses import dataclass

_TRUE = frozenset({"1", "true", "yes", "on"})
_FALSE = frozenset({"0", "false", "no", "off"})

_VALID_EXPORTERS = frozenset({"none", "stdout", "otlp"})


@dataclass
class EngineConfig:
    """Tunables for the context engine.

    Configuration via environment variables:
        - ``CONVCTX_OUTPUT_RESERVE_TOKENS``: tokens reserved for model output (default 32000)
        - ``CONVCTX_COMPACTION_THRESHOLD``: fraction of the usable window (default 0.6)
        - ``CONVCTX_AUTO_COMPACTION``: global auto-compaction default (default true)
        - ``CONVCTX_KEEP_TOOL_CALL_ROUNDS``: rounds whose tool calls survive pruning (default 2)
        - ``CONVCTX_KEEP_RECENT_ROUNDS``: rounds left out of a summary (default 1)
        - ``CONVCTX_SCHEDULER_DELAY_SEC``: debounce delay for scheduled checks (default 1.0)
        - ``CONVCTX_LANGUAGE``: summary language (default ``en``)
        - ``CONVCTX_TRACE_EXPORTER``: ``none`` | ``stdout`` | ``otlp`` (default ``none``)
    """

    output_reserve_tokens: int = 32_000
    compaction_threshold: float = 0.6
    auto_compaction: bool = True
    keep_tool_call_rounds: int = 2
    keep_recent_rounds: int = 1
    scheduler_delay_sec: float = 1.0
    language: str = "en"
    trace_exporter: str = "none"

    def __post_init__(self) -> None:
        if self.output_reserve_tokens < 0:
            msg = "output_reserve_tokens must be >= 0"
            raise ValueError(msg)
        if not 0 < self.compaction_threshold <= 1:
            msg = "compaction_threshold must be in (0, 1]"
            raise ValueError(msg)
        if self.scheduler_delay_sec < 0:
            msg = "scheduler_delay_sec must be >= 0"
            raise ValueError(msg)
        if self.trace_exporter not in _VALID_EXPORTERS:
            msg = (
                f"Unknown trace exporter '{self.trace_exporter}'. "
                f"Valid values: {', '.join(sorted(_VALID_EXPORTERS))}"
            )
            raise ValueError(msg)

    @classmethod
    def from_env(cls, environ: Mapping[str, str] | None = None) -> EngineConfig:
        """Build a config from ``CONVCTX_*`` variables, falling back to defaults."""
        env = os.environ if environ is None else environ
        d = cls()
        p = "CONVCTX_"
        return cls(
            output_reserve_tokens=_int(env, p + "OUTPUT_RESERVE_TOKENS", d.output_reserve_tokens),
            compaction_threshold=_float(env, p + "COMPACTION_THRESHOLD", d.compaction_threshold),
            auto_compaction=_bool(env, p + "AUTO_COMPACTION", d.auto_compaction),
            keep_tool_call_rounds=_int(env, p + "KEEP_TOOL_CALL_ROUNDS", d.keep_tool_call_rounds),
            keep_recent_rounds=_int(env, p + "KEEP_RECENT_ROUNDS", d.keep_recent_rounds),
            scheduler_delay_sec=_float(env, p + "SCHEDULER_DELAY_SEC", d.scheduler_delay_sec),
            language=env.get(p + "LANGUAGE", "").strip() or d.language,
            trace_exporter=env.get(p + "TRACE_EXPORTER", "").strip().lower() or d.trace_exporter,
        )


def _int(env: Mapping[str, str], name: str, default: int) -> int:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except ValueError:
        msg = f"{name} must be an integer, got '{raw}'"
        raise ValueError(msg) from None


def _float(env: Mapping[str, str], name: str, default: float) -> float:
    raw = env.get(name, "").strip()
    if not raw:
        return default
    try:
        return float(raw)
    except ValueError:
        msg = f"{name} must be a number, got '{raw}'"
        raise ValueError(msg) from None


def _bool(env: Mapping[str, str], name: str, default: bool) -> bool:  # noqa: FBT001
    raw = env.get(name, "").strip().lower()
    if not raw:
        return default
    if raw in _TRUE:
        return True
    if raw in _FALSE:
        return False
    msg = f"{name} must be a boolean, got '{raw}'"
    raise ValueError(msg)
