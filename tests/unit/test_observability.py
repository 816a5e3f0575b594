"""Unit tests for structured logging, log fields and metrics."""

import logging
import sys

import orjson
from prometheus_client import REGISTRY
import pytest

from od_discovery.observability import context, metrics
from od_discovery.observability.context import bound_fields, current_fields
from od_discovery.observability.logging import MAX_MESSAGE_CHARS, JsonFormatter, configure_logging
from od_discovery.observability.metrics import CORPUS_SIZE, start_metrics_server, track_latency
from od_discovery.observability.tracing import create_span


def _record(message: str, **extra) -> logging.LogRecord:
    record = logging.LogRecord("od_discovery.services.reconciliation", logging.INFO, __file__, 1, message, None, None)
    for key, value in extra.items():
        setattr(record, key, value)
    return record


@pytest.fixture(autouse=True)
def fresh_log_fields():
    token = context._log_fields.set(None)
    yield
    context._log_fields.reset(token)


@pytest.mark.unit
class TestJsonFormatter:
    def test_basic_fields(self):
        fields = current_fields()

        entry = orjson.loads(JsonFormatter().format(_record("Checking 3 roots")))

        assert entry["message"] == "Checking 3 roots"
        assert entry["level"] == "INFO"
        assert entry["component"] == "reconciliation"
        assert entry["trace_id"] == fields["trace_id"]
        assert entry["span_id"] == fields["span_id"]
        assert "task" not in entry

    def test_task_from_bound_fields(self):
        with bound_fields(task="reconcile roots"):
            entry = orjson.loads(JsonFormatter().format(_record("tick")))

        assert entry["task"] == "reconcile roots"

    def test_extra_fields_redacted(self):
        entry = orjson.loads(JsonFormatter().format(_record("connecting", elastic_password="hunter2", root="x")))

        assert entry["elastic_password"] == "[REDACTED]"
        assert entry["root"] == "x"

    def test_long_message_clipped(self):
        entry = orjson.loads(JsonFormatter().format(_record("x" * 5000)))

        assert len(entry["message"]) == MAX_MESSAGE_CHARS + 3
        assert entry["message"].endswith("...")

    def test_set_extra_is_serialized(self):
        entry = orjson.loads(JsonFormatter().format(_record("kinds", kinds={"b", "a"})))

        assert entry["kinds"] == ["a", "b"]

    def test_exception_included(self):
        try:
            raise ValueError("bad row")
        except ValueError:
            record = _record("failed")
            record.exc_info = sys.exc_info()

        entry = orjson.loads(JsonFormatter().format(record))

        assert "ValueError: bad row" in entry["exception"]


@pytest.mark.unit
class TestLogFields:
    def test_generated_when_missing(self):
        fields = current_fields()

        assert len(fields["trace_id"]) == 32
        assert len(fields["span_id"]) == 16
        assert current_fields() == fields

    def test_bound_fields_restore_on_exit(self):
        outer = current_fields()

        with bound_fields(task="reexport") as inner:
            assert inner["trace_id"] == outer["trace_id"]
            assert inner["span_id"] != outer["span_id"]
            assert current_fields()["task"] == "reexport"

        assert current_fields() == outer

    def test_span_id_restored_after_span(self):
        outer = dict(current_fields())

        with create_span("unit.span") as span:
            assert current_fields()["span_id"] == format(span.get_span_context().span_id, "016x")
            assert current_fields()["trace_id"] == outer["trace_id"]

        assert current_fields() == outer

    def test_span_id_restored_when_block_raises(self):
        outer = dict(current_fields())

        with pytest.raises(ValueError), create_span("unit.failing"):
            raise ValueError("bad chunk")

        assert current_fields() == outer


@pytest.mark.unit
def test_configure_logging_installs_single_handler(monkeypatch):
    root = logging.getLogger()
    monkeypatch.setattr(root, "handlers", list(root.handlers))
    monkeypatch.setattr(root, "level", root.level)

    configure_logging("debug", json_output=True, logger_levels={"od_discovery.utils.probe": "warning"})

    assert root.level == logging.DEBUG
    assert len(root.handlers) == 1
    assert isinstance(root.handlers[0].formatter, JsonFormatter)
    assert logging.getLogger("httpx").level == logging.WARNING
    assert logging.getLogger("od_discovery.utils.probe").level == logging.WARNING


@pytest.mark.unit
class TestMetrics:
    def test_gauge_set_reaches_prometheus(self):
        CORPUS_SIZE.labels(kind="test_roots").set(5)
        CORPUS_SIZE.labels(kind="test_roots").set(3)

        assert REGISTRY.get_sample_value("od_corpus_size", {"kind": "test_roots"}) == 3

    def test_track_latency_observes_on_error(self):
        histogram = metrics.SCHEDULER_TASK_LATENCY
        before = REGISTRY.get_sample_value("od_scheduler_task_latency_seconds_count", {"task": "latency probe"}) or 0

        with pytest.raises(RuntimeError), track_latency(histogram, task="latency probe"):
            raise RuntimeError("boom")

        after = REGISTRY.get_sample_value("od_scheduler_task_latency_seconds_count", {"task": "latency probe"})
        assert after == before + 1

    def test_metrics_server_disabled_on_port_zero(self, monkeypatch):
        started = []
        monkeypatch.setattr(metrics.prometheus_client, "start_http_server", lambda port: started.append(port))

        start_metrics_server(0)
        start_metrics_server(9464)

        assert started == [9464]
