"""OpenTelemetry spans around compaction passes and summarizer calls.

Nothing is exported until a :class:`ContextTracer` is initialised with an
exporter and installed as the default (see :func:`configure_tracing`); until
then every span is a non-recording no-op, so the compaction path can trace
unconditionally.
"""

from __future__ import annotations

import contextlib
import logging
import os
from collections.abc import Generator, Mapping
from dataclasses import dataclass

from opentelemetry import trace
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import SpanProcessor, TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    ConsoleSpanExporter,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import NoOpTracer, Span, Tracer
from opentelemetry.util.types import AttributeValue

from .config import _env_bool
from .errors import InvalidConfigError

_log = logging.getLogger(__name__)

EXPORTERS = ("none", "stdout", "otlp")

# ---------------------------------------------------------------------------
# Configuration
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class TelemetryConfig:
    """Where compaction spans go.

    ``stdout`` writes each span as JSON when it ends; ``otlp`` batches spans
    to a gRPC collector and needs the ``otlp`` extra installed.
    """

    service_name: str = "ctxkeeper"
    enabled: bool = True
    exporter: str = "none"
    otlp_endpoint: str = "http://localhost:4317"

    def __post_init__(self) -> None:
        if self.exporter not in EXPORTERS:
            msg = f"exporter must be one of {', '.join(EXPORTERS)}, got {self.exporter!r}"
            raise InvalidConfigError(msg)

    @classmethod
    def from_env(cls) -> TelemetryConfig:
        return cls(
            service_name=os.environ.get("CTXKEEPER_SERVICE_NAME", "ctxkeeper"),
            enabled=_env_bool("CTXKEEPER_TRACING", True),
            exporter=os.environ.get("CTXKEEPER_TRACE_EXPORTER", "none").strip().lower() or "none",
            otlp_endpoint=os.environ.get("CTXKEEPER_OTLP_ENDPOINT", "http://localhost:4317"),
        )


# ---------------------------------------------------------------------------
# ContextTracer
# ---------------------------------------------------------------------------


class ContextTracer:
    """Owns a tracer provider for one :class:`TelemetryConfig`."""

    def __init__(self, config: TelemetryConfig | None = None) -> None:
        self._config = config or TelemetryConfig()
        self._provider: TracerProvider | None = None
        self._tracer: Tracer = NoOpTracer()

    @property
    def config(self) -> TelemetryConfig:
        return self._config

    @property
    def provider(self) -> TracerProvider | None:
        """The SDK provider, once :meth:`init` has configured an exporter."""
        return self._provider

    @property
    def recording(self) -> bool:
        return self._provider is not None

    def _build_processor(self) -> SpanProcessor | None:
        cfg = self._config
        if not cfg.enabled or cfg.exporter == "none":
            return None
        if cfg.exporter == "stdout":
            exporter: SpanExporter = ConsoleSpanExporter(service_name=cfg.service_name)
            return SimpleSpanProcessor(exporter)
        try:
            from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
                OTLPSpanExporter,
            )
        except ImportError:
            _log.warning(
                "OTLP exporter requested but opentelemetry-exporter-otlp is not "
                "installed; compaction spans will not be exported"
            )
            return None
        exporter = OTLPSpanExporter(endpoint=cfg.otlp_endpoint, insecure=True)
        return BatchSpanProcessor(exporter)

    def init(self) -> None:
        """Create the provider for the configured exporter. Idempotent."""
        if self._provider is not None:
            return
        processor = self._build_processor()
        if processor is None:
            return
        resource = Resource.create({"service.name": self._config.service_name})
        provider = TracerProvider(resource=resource)
        provider.add_span_processor(processor)
        self._provider = provider
        self._tracer = provider.get_tracer(__name__)
        _log.debug("tracing enabled with %s exporter", self._config.exporter)

    @contextlib.contextmanager
    def span(
        self,
        name: str,
        attributes: Mapping[str, AttributeValue] | None = None,
    ) -> Generator[Span, None, None]:
        """Run the block inside a span that is current for nested spans."""
        with self._tracer.start_as_current_span(name, attributes=attributes) as s:
            yield s

    def record_event(
        self,
        name: str,
        attributes: Mapping[str, AttributeValue] | None = None,
    ) -> None:
        """Attach an event to the current span; ignored outside a recording span."""
        current = trace.get_current_span()
        if current.is_recording():
            current.add_event(name, dict(attributes or {}))

    def shutdown(self) -> None:
        """Flush pending spans and fall back to the no-op tracer. Idempotent."""
        if self._provider is None:
            return
        self._provider.shutdown()
        self._provider = None
        self._tracer = NoOpTracer()


# ---------------------------------------------------------------------------
# Module-level default tracer
# ---------------------------------------------------------------------------

_DEFAULT_TRACER: ContextTracer | None = None


def get_tracer() -> ContextTracer:
    global _DEFAULT_TRACER  # noqa: PLW0603
    if _DEFAULT_TRACER is None:
        _DEFAULT_TRACER = ContextTracer()
    return _DEFAULT_TRACER


def set_tracer(tracer: ContextTracer | None) -> None:
    """Replace the default tracer (None restores a fresh noop tracer)."""
    global _DEFAULT_TRACER  # noqa: PLW0603
    _DEFAULT_TRACER = tracer


def configure_tracing(config: TelemetryConfig | None = None) -> ContextTracer:
    """Initialise a tracer (from ``CTXKEEPER_*`` variables by default) and install it."""
    tracer = ContextTracer(config or TelemetryConfig.from_env())
    tracer.init()
    set_tracer(tracer)
    return tracer


@contextlib.contextmanager
def trace_compaction(session_id: str) -> Generator[Span, None, None]:
    """Span covering one coordinator pass, from selection to append."""
    with get_tracer().span("compaction/run", {"session.id": session_id}) as s:
        yield s


@contextlib.contextmanager
def trace_summarize(event_count: int) -> Generator[Span, None, None]:
    """Span covering the summarizer's generation call."""
    with get_tracer().span("compaction/summarize", {"compaction.event_count": event_count}) as s:
        yield s
