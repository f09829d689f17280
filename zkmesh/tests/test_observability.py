"""
Unit Tests: Logging and Metrics

Tests:
    - JSON log formatting and scoped context
    - Counter, Gauge, Histogram semantics
    - Prometheus text export
"""

import io
import json
import logging

import pytest

from zkmesh.observability.logging import JsonFormatter, LogLevel, StructuredLogger
from zkmesh.observability.metrics import Counter, Gauge, Histogram, MetricsCollector


@pytest.fixture
def captured():
    """A logger writing JSON lines into a buffer."""
    buffer = io.StringIO()
    handler = logging.StreamHandler(buffer)
    handler.setFormatter(JsonFormatter())
    target = logging.getLogger("zkmesh.tests.captured")
    target.addHandler(handler)
    target.setLevel(logging.DEBUG)
    target.propagate = False
    yield buffer
    target.removeHandler(handler)


def records(buffer):
    return [json.loads(line) for line in buffer.getvalue().splitlines()]


class TestLogging:
    """Tests for structured logging."""

    def test_level_from_name(self):
        assert LogLevel.from_name("debug") is LogLevel.DEBUG
        assert LogLevel.from_name("nonsense") is LogLevel.INFO

    def test_fields_become_json(self, captured):
        logger = StructuredLogger("zkmesh.tests.captured")
        logger.info("Session dialed", servers="localhost:2181", timeout_ms=5000)
        record = records(captured)[0]
        assert record["message"] == "Session dialed"
        assert record["level"] == "INFO"
        assert record["logger"] == "zkmesh.tests.captured"
        assert record["servers"] == "localhost:2181"
        assert record["timeout_ms"] == 5000
        assert "thread" in record

    def test_scoped_context(self, captured):
        logger = StructuredLogger("zkmesh.tests.captured")
        with logger.context(session_id="0x1"):
            logger.warning("inside")
        logger.warning("outside")
        inside, outside = records(captured)
        assert inside["session_id"] == "0x1"
        assert "session_id" not in outside

    def test_with_extra(self, captured):
        logger = StructuredLogger("zkmesh.tests.captured").with_extra(component="dispatcher")
        logger.error("overflow", watch_id=3)
        record = records(captured)[0]
        assert record["component"] == "dispatcher"
        assert record["watch_id"] == 3


class TestInstruments:
    """Tests for metric instruments."""

    def test_counter(self):
        counter = Counter("c_total", ["reason"])
        counter.inc(reason="a")
        counter.inc(2, reason="a")
        assert counter.get(reason="a") == 3
        assert counter.get(reason="b") == 0
        with pytest.raises(ValueError):
            counter.inc(-1, reason="a")

    def test_gauge(self):
        gauge = Gauge("g")
        gauge.set(5)
        gauge.dec(2)
        gauge.inc()
        assert gauge.get() == 4

    def test_histogram(self):
        histogram = Histogram("h", ["operation"], buckets=(0.1, 1.0))
        histogram.observe(0.05, operation="get")
        histogram.observe(0.5, operation="get")
        assert histogram.count(operation="get") == 2
        assert histogram.get_percentile(50, operation="get") == 0.1
        assert histogram.get_percentile(100, operation="get") == 1.0
        assert histogram.get_percentile(50, operation="set") is None

    def test_timer(self):
        histogram = Histogram("h", ["operation"])
        with histogram.time(operation="get"):
            pass
        assert histogram.count(operation="get") == 1


class TestCollector:
    """Tests for MetricsCollector."""

    def test_same_instrument_returned(self):
        collector = MetricsCollector()
        assert collector.counter("x_total", ["a"]) is collector.counter("x_total", ["a"])

    def test_singleton(self):
        assert MetricsCollector.get_instance() is MetricsCollector.get_instance()

    def test_prometheus_export(self):
        collector = MetricsCollector()
        collector.counter("events_total", ["kind"], "Events seen").inc(kind="session")
        collector.gauge("pending").set(2)
        collector.histogram("latency", ["operation"], buckets=(1.0,)).observe(0.5, operation="get")

        text = collector.export_prometheus()
        assert "# HELP events_total Events seen" in text
        assert 'events_total{kind="session"} 1.0' in text
        assert "pending 2" in text
        assert 'latency_bucket{le="1.0",operation="get"} 1' in text
        assert 'latency_bucket{le="+Inf",operation="get"} 1' in text
        assert 'latency_count{operation="get"} 1' in text
