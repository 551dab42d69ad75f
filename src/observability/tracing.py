"""
OpenTelemetry tracing for record evaluation.

Provides:
- setup_tracing(): Initialize TracerProvider with OTLP exporter
- get_tracer(): Get a named tracer instance
- traced(): Context manager creating a span that records exceptions
- inject_trace_context() / extract_trace_context(): Redis Streams propagation
- add_trace_context(): structlog processor adding trace_id/span_id to logs

A record published onto the stream carries the publisher's W3C traceparent
in a message field, so the worker's evaluation span joins the producer's
trace:

    publish_record → evaluate_record → dispatch (one span per matched alert)

Usage:
    from src.observability.tracing import setup_tracing, get_tracer, traced

    setup_tracing("activity-alerts", "http://localhost:4317")
    tracer = get_tracer("src.alerts.service")

    with traced(tracer, "evaluate_record", record_attributes(record)):
        ...
"""

from __future__ import annotations

import logging
from contextlib import contextmanager
from typing import TYPE_CHECKING, Any

from opentelemetry import trace
from opentelemetry.context import Context
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import (
    BatchSpanProcessor,
    SimpleSpanProcessor,
    SpanExporter,
)
from opentelemetry.trace import SpanContext, StatusCode, TraceFlags, Tracer
from opentelemetry.trace.propagation import get_current_span

if TYPE_CHECKING:
    from src.alerts.schemas import Record

logger = logging.getLogger(__name__)

_tracing_enabled = False

# Stream message field carrying the W3C traceparent
TRACE_PARENT_FIELD = "traceparent"


def setup_tracing(
    service_name: str,
    otlp_endpoint: str | None = None,
    *,
    exporter: SpanExporter | None = None,
) -> TracerProvider:
    """
    Install a global TracerProvider.

    Exports over OTLP gRPC in batches unless ``exporter`` is given, in
    which case spans are exported synchronously (InMemorySpanExporter in
    tests).

    Args:
        service_name: ``service.name`` resource attribute.
        otlp_endpoint: Collector endpoint, e.g. "http://localhost:4317".
        exporter: Exporter to use instead of OTLP.

    Returns:
        The configured TracerProvider.
    """
    global _tracing_enabled

    provider = TracerProvider(resource=Resource.create({"service.name": service_name}))

    if exporter is None:
        from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import (
            OTLPSpanExporter,
        )

        provider.add_span_processor(
            BatchSpanProcessor(
                OTLPSpanExporter(
                    endpoint=otlp_endpoint or "http://localhost:4317",
                    insecure=True,
                )
            )
        )
    else:
        provider.add_span_processor(SimpleSpanProcessor(exporter))
    trace.set_tracer_provider(provider)

    _tracing_enabled = True
    logger.info(
        "OpenTelemetry tracing initialized: service=%s endpoint=%s",
        service_name,
        otlp_endpoint or "(custom exporter)",
    )
    return provider


def get_tracer(name: str) -> Tracer:
    """Named tracer; a no-op tracer until ``setup_tracing`` runs."""
    return trace.get_tracer(name)


def is_tracing_enabled() -> bool:
    return _tracing_enabled


def record_attributes(record: Record) -> dict[str, str]:
    """Span attributes identifying an activity record."""
    return {
        "record.id": record.record_id,
        "record.connector": record.connector,
        "record.context": record.context,
        "record.action": record.action,
    }


# ── Redis Streams trace context propagation ──────────────────────────


def inject_trace_context() -> dict[str, str]:
    """
    Current span as stream message fields.

    Returns ``{"traceparent": "00-<trace>-<span>-<flags>"}``, or an empty
    dict outside any valid span.
    """
    ctx = get_current_span().get_span_context()
    if not ctx.is_valid:
        return {}

    traceparent = f"00-{ctx.trace_id:032x}-{ctx.span_id:016x}-{ctx.trace_flags:02x}"
    return {TRACE_PARENT_FIELD: traceparent}


def extract_trace_context(fields: dict[str, str]) -> Context | None:
    """
    Rebuild the publisher's span context from stream message fields.

    Pass the result as ``parent_context`` to ``traced`` so the consumer's
    span becomes a child of the publishing span.

    Args:
        fields: Message fields, possibly containing ``traceparent``.

    Returns:
        Context holding a remote span, or None if absent or malformed.
    """
    traceparent = fields.get(TRACE_PARENT_FIELD)
    if not traceparent:
        return None

    parts = traceparent.split("-")
    if len(parts) != 4:
        logger.debug("Malformed traceparent: %s", traceparent)
        return None

    try:
        remote_ctx = SpanContext(
            trace_id=int(parts[1], 16),
            span_id=int(parts[2], 16),
            is_remote=True,
            trace_flags=TraceFlags(int(parts[3], 16)),
        )
    except ValueError:
        logger.debug("Malformed traceparent: %s", traceparent)
        return None

    return trace.set_span_in_context(trace.NonRecordingSpan(remote_ctx))


@contextmanager
def traced(
    tracer: Tracer,
    name: str,
    attributes: dict[str, Any] | None = None,
    parent_context: Context | None = None,
):
    """
    Open a span, marking it as errored if the block raises.

    Args:
        tracer: Tracer instance.
        name: Span name.
        attributes: Optional span attributes.
        parent_context: Optional parent (from ``extract_trace_context``).
    """
    kwargs: dict[str, Any] = {}
    if parent_context is not None:
        kwargs["context"] = parent_context

    with tracer.start_as_current_span(name, **kwargs) as span:
        for key, value in (attributes or {}).items():
            span.set_attribute(key, value)
        try:
            yield span
        except Exception as exc:
            span.set_status(StatusCode.ERROR, str(exc))
            span.record_exception(exc)
            raise


def add_trace_context(
    logger_: Any, method: str, event_dict: dict[str, Any]
) -> dict[str, Any]:
    """
    Structlog processor adding ``trace_id`` and ``span_id`` to log entries.

    Installed by ``setup_logging`` when tracing is enabled.
    """
    ctx = get_current_span().get_span_context()
    if ctx.is_valid:
        event_dict["trace_id"] = f"{ctx.trace_id:032x}"
        event_dict["span_id"] = f"{ctx.span_id:016x}"
    return event_dict
