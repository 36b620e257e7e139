"""OpenTelemetry tracing for convctx.

Three span kinds are emitted: ``compaction/run`` around a compaction
attempt, ``compaction/summary`` around the summary call and
``update_queue/set`` around one serialised session write. Nothing is
exported unless a tracer is configured with an exporter.
"""

from __future__ import annotations

import contextlib
import logging
from collections.abc import Generator, Mapping
from dataclasses import dataclass

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import SimpleSpanProcessor, SpanExporter
from opentelemetry.trace import NoOpTracer, Span, Tracer
from opentelemetry.util.types import AttributeValue

from .config import EngineConfig

logger = logging.getLogger(__name__)

Attributes = Mapping[str, AttributeValue]


@dataclass
class TelemetryConfig:
    """Where engine spans go."""

    service_name: str = "convctx"
    enabled: bool = True
    exporter: str = "none"  # "stdout" | "otlp" | "none"
    otlp_endpoint: str = "http://localhost:4317"

    @classmethod
    def from_engine_config(cls, config: EngineConfig) -> TelemetryConfig:
        return cls(exporter=config.trace_exporter)


def _span_exporter(config: TelemetryConfig) -> SpanExporter | None:
    if not config.enabled or config.exporter == "none":
        return None
    if config.exporter == "stdout":
        from opentelemetry.sdk.trace.export import ConsoleSpanExporter

        return ConsoleSpanExporter()
    if config.exporter == "otlp":
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
                OTLPSpanExporter,
            )
        except ImportError:  # pragma: no cover
            logger.warning("OTLP exporter not installed, engine spans are dropped")
            return None
        return OTLPSpanExporter(endpoint=config.otlp_endpoint, insecure=True)
    msg = f"Unknown trace exporter '{config.exporter}'"
    raise ValueError(msg)


class EngineTracer:
    """Owns the engine's ``TracerProvider``.

    Until :meth:`init` finds an exporter every span is a noop, so tracing
    costs nothing when it is not configured. An explicit *exporter*
    overrides the one named in *config*.
    """

    def __init__(
        self,
        config: TelemetryConfig | None = None,
        *,
        exporter: SpanExporter | None = None,
    ) -> None:
        self._config = config or TelemetryConfig()
        self._exporter = exporter
        self._provider: TracerProvider | None = None
        self._tracer: Tracer = NoOpTracer()

    @property
    def is_recording(self) -> bool:
        return self._provider is not None

    def init(self) -> None:
        if self._provider is not None:
            return
        exporter = self._exporter or _span_exporter(self._config)
        if exporter is None:
            return
        provider = TracerProvider(
            resource=Resource.create({"service.name": self._config.service_name})
        )
        provider.add_span_processor(SimpleSpanProcessor(exporter))
        self._provider = provider
        self._tracer = provider.get_tracer(self._config.service_name)
        logger.debug("Engine tracing enabled (%s)", type(exporter).__name__)

    @contextlib.contextmanager
    def span(self, name: str, attributes: Attributes | None = None) -> Generator[Span, None, None]:
        with self._tracer.start_as_current_span(name, attributes=attributes) as s:
            yield s

    def record_event(self, name: str, attributes: Attributes | None = None) -> None:
        """Attach an event to the active span; ignored outside a recording span."""
        current = trace.get_current_span()
        if current.is_recording():
            current.add_event(name, dict(attributes or {}))

    def shutdown(self) -> None:
        """Flush and drop the provider. Safe to call more than once."""
        if self._provider is not None:
            self._provider.shutdown()
            self._provider = None
            self._tracer = NoOpTracer()


_DEFAULT_TRACER: EngineTracer | None = None


def get_tracer() -> EngineTracer:
    global _DEFAULT_TRACER  # noqa: PLW0603
    if _DEFAULT_TRACER is None:
        _DEFAULT_TRACER = EngineTracer()
    return _DEFAULT_TRACER


def configure_tracing(
    config: TelemetryConfig | EngineConfig | None = None,
    *,
    exporter: SpanExporter | None = None,
) -> EngineTracer:
    """Replace the default tracer; an :class:`EngineConfig` supplies its ``trace_exporter``."""
    global _DEFAULT_TRACER  # noqa: PLW0603
    if isinstance(config, EngineConfig):
        config = TelemetryConfig.from_engine_config(config)
    if _DEFAULT_TRACER is not None:
        _DEFAULT_TRACER.shutdown()
    _DEFAULT_TRACER = EngineTracer(config, exporter=exporter)
    _DEFAULT_TRACER.init()
    return _DEFAULT_TRACER


# ---------------------------------------------------------------------------
# Engine spans
# ---------------------------------------------------------------------------


@contextlib.contextmanager
def trace_compaction_run(session_id: str, *, forced: bool = False) -> Generator[Span, None, None]:
    attrs = {"session.id": session_id, "compaction.forced": forced}
    with get_tracer().span("compaction/run", attrs) as s:
        yield s


@contextlib.contextmanager
def trace_summary_generation(session_id: str, message_count: int) -> Generator[Span, None, None]:
    attrs = {"session.id": session_id, "summary.messages": message_count}
    with get_tracer().span("compaction/summary", attrs) as s:
        yield s


@contextlib.contextmanager
def trace_queue_update(key: str) -> Generator[Span, None, None]:
    with get_tracer().span("update_queue/set", {"queue.key": key}) as s:
        yield s
