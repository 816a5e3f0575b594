"""OpenTelemetry spans for reconciliation cycles and scheduler tasks."""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import logging
from typing import Any

from opentelemetry import trace
from opentelemetry.exporter.otlp.proto.grpc.trace_exporter import OTLPSpanExporter as GrpcSpanExporter
from opentelemetry.exporter.otlp.proto.http.trace_exporter import OTLPSpanExporter as HttpSpanExporter
from opentelemetry.sdk.resources import Resource
from opentelemetry.sdk.trace import TracerProvider
from opentelemetry.sdk.trace.export import BatchSpanProcessor
from opentelemetry.trace import Span, SpanKind

from od_discovery.config import ObservabilityCollectorConfig
from od_discovery.observability.context import bound_fields


logger = logging.getLogger(__name__)

TRACER_NAME = "od_discovery"


def _span_exporter(collector: ObservabilityCollectorConfig):
    if collector.otlp_protocol == "grpc":
        return GrpcSpanExporter(
            endpoint=collector.collector_endpoint,
            headers=collector.headers,
            timeout=collector.timeout_seconds,
            insecure=collector.grpc_insecure,
        )
    return HttpSpanExporter(
        endpoint=collector.collector_endpoint,
        headers=collector.headers,
        timeout=collector.timeout_seconds,
    )


def setup_tracing(service_name: str, collector: ObservabilityCollectorConfig | None = None) -> TracerProvider:
    """Install the global tracer provider.

    Spans are only exported when ``collector`` is enabled. A collector that
    cannot be configured is logged and tracing continues without export.
    """
    attributes = {"service.name": service_name}
    if collector is not None:
        attributes.update(collector.resource_attributes)
    provider = TracerProvider(resource=Resource.create(attributes))

    if collector is not None and collector.enabled:
        try:
            exporter = _span_exporter(collector)
        except Exception:
            logger.exception("OTLP span exporter for %s could not be created", collector.collector_endpoint)
        else:
            provider.add_span_processor(BatchSpanProcessor(exporter))
            logger.info("OTLP trace export enabled (%s) to %s", collector.otlp_protocol, collector.collector_endpoint)

    trace.set_tracer_provider(provider)
    return provider


@contextmanager
def create_span(
    name: str,
    attributes: dict[str, Any] | None = None,
    kind: SpanKind = SpanKind.INTERNAL,
) -> Iterator[Span]:
    """Start a span whose id tags log lines until the block exits.

    Exceptions leaving the block are recorded on the span and re-raised.
    """
    tracer = trace.get_tracer(TRACER_NAME)
    with tracer.start_as_current_span(name, kind=kind, attributes=attributes) as span:
        with bound_fields(span_id=format(span.get_span_context().span_id, "016x")):
            yield span
