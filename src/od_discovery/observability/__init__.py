"""Logging, metrics and tracing for the reconciler."""

from od_discovery.observability.context import bound_fields, current_fields
from od_discovery.observability.logging import JsonFormatter, configure_logging
from od_discovery.observability.metrics import Metric, setup_metrics, start_metrics_server, track_latency
from od_discovery.observability.tracing import create_span, setup_tracing


__all__ = [
    "JsonFormatter",
    "Metric",
    "bound_fields",
    "configure_logging",
    "create_span",
    "current_fields",
    "setup_metrics",
    "setup_tracing",
    "start_metrics_server",
    "track_latency",
]
