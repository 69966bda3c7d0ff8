"""OpenTelemetry spans around the operator's own reconciliations.

Tracing is off unless ``OTEL_TRACES_ENABLED`` is ``true``; spans are then
exported over OTLP/gRPC to ``OTEL_EXPORTER_OTLP_ENDPOINT``
(default ``http://localhost:4317``). While it is off, the helpers here do
nothing.
"""

from __future__ import annotations

import logging
import os
from contextlib import contextmanager
from typing import Any, Iterator

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter
from opentelemetry.sdk.resources import SERVICE_NAME, SERVICE_VERSION, Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, Status, StatusCode, Tracer

from .utils.errors import sanitize_exception

logger = logging.getLogger(__name__)

_provider: TracerProvider | None = None
_tracer: Tracer | None = None


def tracing_enabled() -> bool:
    return os.getenv("OTEL_TRACES_ENABLED", "false").strip().lower() == "true"


def initialize_tracing(service_name: str = "lumigo-operator", service_version: str = "unknown") -> bool:
    """Install an OTLP-exporting tracer provider.

    ``OTEL_SERVICE_NAME`` overrides ``service_name``.

    Returns:
        Whether tracing is on
    """
    global _provider, _tracer

    if not tracing_enabled():
        logger.debug("Tracing is disabled")
        return False

    endpoint = os.getenv("OTEL_EXPORTER_OTLP_ENDPOINT", "http://localhost:4317")
    resource = Resource.create({
        SERVICE_NAME: os.getenv("OTEL_SERVICE_NAME", service_name),
        SERVICE_VERSION: service_version,
    })
    _provider = TracerProvider(resource=resource)
    _provider.add_span_processor(BatchSpanProcessor(OTLPSpanExporter(endpoint=endpoint)))
    trace.set_tracer_provider(_provider)
    _tracer = _provider.get_tracer(__name__, service_version)

    logger.info("Tracing initialized, exporting to %s", endpoint)
    return True


def shutdown_tracing() -> None:
    """Flush pending spans and stop tracing."""
    global _provider, _tracer
    if _provider is not None:
        _provider.shutdown()
    _provider = None
    _tracer = None


@contextmanager
def trace_span(
    name: str,
    kind: str | None = None,
    attributes: dict[str, Any] | None = None,
) -> Iterator[Span | None]:
    """Run a block inside a span; yields None while tracing is off.

    Exceptions escaping the block mark the span as failed. Their message is
    sanitized first, since errors about secrets may quote the token.
    """
    if _tracer is None:
        yield None
        return

    attrs = dict(attributes or {})
    if kind:
        attrs["resource.kind"] = kind

    with _tracer.start_as_current_span(
        name, attributes=attrs, record_exception=False, set_status_on_exception=False
    ) as span:
        try:
            yield span
        except Exception as e:
            message = sanitize_exception(e)
            span.add_event("exception", {"exception.type": type(e).__name__, "exception.message": message})
            span.set_status(Status(StatusCode.ERROR, message))
            raise


def add_span_attribute(key: str, value: Any) -> None:
    """Add an attribute to the current span."""
    span = trace.get_current_span()
    if span.is_recording():
        span.set_attribute(key, value)
