"""Reconciler metrics.

Every metric lives in the Prometheus default registry (scraped through
``start_metrics_server``) and is mirrored into an OpenTelemetry instrument so
the same numbers reach an OTLP collector when one is configured.
"""

from __future__ import annotations

from collections.abc import Iterator
from contextlib import contextmanager
import logging
import time
from typing import Any, Literal

from opentelemetry import metrics as otel_metrics
from opentelemetry.exporter.otlp.proto.grpc.metric_exporter import OTLPMetricExporter as GrpcMetricExporter
from opentelemetry.exporter.otlp.proto.http.metric_exporter import OTLPMetricExporter as HttpMetricExporter
from opentelemetry.sdk.metrics import MeterProvider
from opentelemetry.sdk.metrics.export import PeriodicExportingMetricReader
from opentelemetry.sdk.resources import Resource
import prometheus_client

from od_discovery.config import ObservabilityCollectorConfig


logger = logging.getLogger(__name__)

MetricKind = Literal["counter", "histogram", "gauge"]

METER_NAME = "od_discovery"

_PROMETHEUS_TYPES = {
    "counter": prometheus_client.Counter,
    "histogram": prometheus_client.Histogram,
    "gauge": prometheus_client.Gauge,
}

_meter_provider: list[MeterProvider] = []


class Metric:
    """One named metric with a Prometheus series and an OpenTelemetry twin.

    The OpenTelemetry instrument is created on first use from the global meter,
    so metrics defined at import time follow whatever provider ``setup_metrics``
    installs later.
    """

    def __init__(self, kind: MetricKind, name: str, description: str, labelnames: list[str], **options: Any):
        self.kind = kind
        self.name = name
        self.description = description
        self.prometheus = _PROMETHEUS_TYPES[kind](name, description, labelnames, **options)
        self._instrument: Any = None
        # Gauges become up/down counters in OTel, which need deltas
        self._last_set: dict[tuple[tuple[str, str], ...], float] = {}

    @property
    def instrument(self) -> Any:
        if self._instrument is None:
            meter = otel_metrics.get_meter(METER_NAME)
            if self.kind == "counter":
                self._instrument = meter.create_counter(self.name, description=self.description)
            elif self.kind == "histogram":
                self._instrument = meter.create_histogram(self.name, description=self.description)
            else:
                self._instrument = meter.create_up_down_counter(self.name, description=self.description)
        return self._instrument

    def labels(self, **labels: str) -> LabelledMetric:
        return LabelledMetric(self, labels)


class LabelledMetric:
    __slots__ = ("metric", "attributes")

    def __init__(self, metric: Metric, attributes: dict[str, str]):
        self.metric = metric
        self.attributes = attributes

    def inc(self, amount: float = 1.0) -> None:
        self.metric.prometheus.labels(**self.attributes).inc(amount)
        self.metric.instrument.add(amount, self.attributes)

    def observe(self, value: float) -> None:
        self.metric.prometheus.labels(**self.attributes).observe(value)
        self.metric.instrument.record(value, self.attributes)

    def set(self, value: float) -> None:
        self.metric.prometheus.labels(**self.attributes).set(value)
        key = tuple(sorted(self.attributes.items()))
        delta = value - self.metric._last_set.get(key, 0.0)
        if delta:
            self.metric.instrument.add(delta, self.attributes)
        self.metric._last_set[key] = value


PROBE_COUNT = Metric("counter", "od_probes_total", "Reachability probes by outcome", ["outcome"])
PROBE_LATENCY = Metric(
    "histogram",
    "od_probe_latency_seconds",
    "Reachability probe latency",
    ["outcome"],
    buckets=(0.05, 0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0),
)
STREAK_TRANSITIONS = Metric(
    "counter", "od_streak_transitions_total", "Liveness transitions applied by the reconciler", ["entity", "action"]
)
INDEX_CHUNKS = Metric(
    "counter", "od_index_chunks_total", "Bulk chunks submitted to the search index", ["operation", "status"]
)
SCHEDULER_TASK_RUNS = Metric("counter", "od_scheduler_task_runs_total", "Scheduler task executions", ["task", "status"])
SCHEDULER_TASK_LATENCY = Metric(
    "histogram",
    "od_scheduler_task_latency_seconds",
    "Scheduler task duration",
    ["task"],
    buckets=(0.1, 1.0, 10.0, 60.0, 300.0, 900.0, 3600.0),
)
CORPUS_SIZE = Metric("gauge", "od_corpus_size", "Tracked roots and links", ["kind"])


def _metric_exporter(collector: ObservabilityCollectorConfig):
    endpoint = collector.collector_endpoint
    if collector.otlp_protocol == "grpc":
        return GrpcMetricExporter(
            endpoint=endpoint,
            headers=collector.headers,
            timeout=collector.timeout_seconds,
            insecure=collector.grpc_insecure,
        )
    # The shared endpoint setting usually names the traces path
    if endpoint.endswith("/v1/traces"):
        endpoint = endpoint.removesuffix("/v1/traces") + "/v1/metrics"
    return HttpMetricExporter(endpoint=endpoint, headers=collector.headers, timeout=collector.timeout_seconds)


def setup_metrics(service_name: str, collector: ObservabilityCollectorConfig | None = None) -> MeterProvider:
    """Install the global meter provider once, exporting over OTLP when the collector is enabled."""
    if _meter_provider:
        return _meter_provider[0]

    readers = []
    attributes = {"service.name": service_name}
    if collector is not None and collector.enabled:
        readers.append(PeriodicExportingMetricReader(_metric_exporter(collector)))
        attributes.update(collector.resource_attributes)
        logger.info("OTLP metric export enabled (%s)", collector.otlp_protocol)

    provider = MeterProvider(resource=Resource.create(attributes), metric_readers=readers)
    otel_metrics.set_meter_provider(provider)
    _meter_provider.append(provider)
    return provider


@contextmanager
def track_latency(histogram: Metric, **labels: str) -> Iterator[None]:
    """Observe the wall time of the enclosed block, even when it raises."""
    started = time.perf_counter()
    try:
        yield
    finally:
        histogram.labels(**labels).observe(time.perf_counter() - started)


def start_metrics_server(port: int) -> None:
    """Serve ``/metrics`` on ``port``; 0 leaves the endpoint off."""
    if not port:
        return
    prometheus_client.start_http_server(port)
    logger.info("Prometheus metrics exposed on port %d", port)
