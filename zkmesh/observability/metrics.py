"""
Metrics Collector: Prometheus-Compatible Observability

Provides in-process metrics with:
- Watch registry bookkeeping (registered, pending, overflowed)
- Event routing counters per watch kind and event type
- Operation latency histograms
- Custom label dimensions

All instruments are thread-safe; the dispatcher thread and caller
threads update them concurrently.
"""

from __future__ import annotations

import threading
import time
from collections import defaultdict
from dataclasses import dataclass
from typing import Any, Iterator, Optional, Sequence


@dataclass(frozen=True)
class MetricLabels:
    """Immutable label set for metric dimensions."""
    labels: tuple[tuple[str, str], ...]

    @classmethod
    def from_dict(cls, d: dict[str, str]) -> MetricLabels:
        return cls(labels=tuple(sorted(d.items())))

    def to_dict(self) -> dict[str, str]:
        return dict(self.labels)


class _Instrument:
    """Shared label handling for all instruments."""

    __slots__ = ("_name", "_help", "_label_names", "_lock")

    def __init__(self, name: str, label_names: Sequence[str], help_text: str) -> None:
        self._name = name
        self._help = help_text
        self._label_names = tuple(label_names)
        self._lock = threading.Lock()

    def _make_key(self, labels: dict[str, str]) -> MetricLabels:
        filtered = {k: str(labels.get(k, "")) for k in self._label_names}
        return MetricLabels.from_dict(filtered)

    @property
    def name(self) -> str:
        return self._name

    @property
    def help(self) -> str:
        return self._help


class Counter(_Instrument):
    """
    Monotonically increasing counter metric.

    Usage:
        dispatched = Counter("zkmesh_events_dispatched_total", ["kind", "type"])
        dispatched.inc(kind="session", type="SESSION")
    """

    __slots__ = ("_values",)

    def __init__(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
    ) -> None:
        super().__init__(name, label_names, help_text)
        self._values: dict[MetricLabels, float] = defaultdict(float)

    def inc(self, value: float = 1.0, **labels: str) -> None:
        """Increment counter."""
        if value < 0:
            raise ValueError("Counter can only increase")
        key = self._make_key(labels)
        with self._lock:
            self._values[key] += value

    def get(self, **labels: str) -> float:
        """Get current value."""
        key = self._make_key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def collect(self) -> Iterator[tuple[dict[str, str], float]]:
        """Iterate all label combinations."""
        with self._lock:
            items = list(self._values.items())
        for key, value in items:
            yield (key.to_dict(), value)


class Gauge(_Instrument):
    """
    Gauge metric that can go up and down.

    Usage:
        pending = Gauge("zkmesh_watches_pending")
        pending.set(3)
    """

    __slots__ = ("_values",)

    def __init__(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
    ) -> None:
        super().__init__(name, label_names, help_text)
        self._values: dict[MetricLabels, float] = {}

    def set(self, value: float, **labels: str) -> None:
        """Set gauge value."""
        key = self._make_key(labels)
        with self._lock:
            self._values[key] = value

    def inc(self, value: float = 1.0, **labels: str) -> None:
        """Increment gauge."""
        key = self._make_key(labels)
        with self._lock:
            self._values[key] = self._values.get(key, 0.0) + value

    def dec(self, value: float = 1.0, **labels: str) -> None:
        """Decrement gauge."""
        self.inc(-value, **labels)

    def get(self, **labels: str) -> float:
        """Get current value."""
        key = self._make_key(labels)
        with self._lock:
            return self._values.get(key, 0.0)

    def collect(self) -> Iterator[tuple[dict[str, str], float]]:
        with self._lock:
            items = list(self._values.items())
        for key, value in items:
            yield (key.to_dict(), value)


class Histogram(_Instrument):
    """
    Histogram with configurable buckets.

    Usage:
        latency = Histogram("zkmesh_operation_seconds", ["operation"])

        with latency.time(operation="get"):
            runtime.get(handle, "/config", None)
    """

    __slots__ = ("_buckets", "_bucket_counts", "_sums", "_counts")

    DEFAULT_BUCKETS = (
        0.0005, 0.001, 0.005, 0.01, 0.025, 0.05,
        0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, float("inf"),
    )

    def __init__(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
        buckets: Optional[Sequence[float]] = None,
    ) -> None:
        super().__init__(name, label_names, help_text)
        self._buckets = tuple(sorted(buckets or self.DEFAULT_BUCKETS))

        if self._buckets[-1] != float("inf"):
            self._buckets = self._buckets + (float("inf"),)

        self._bucket_counts: dict[MetricLabels, list[int]] = {}
        self._sums: dict[MetricLabels, float] = defaultdict(float)
        self._counts: dict[MetricLabels, int] = defaultdict(int)

    def observe(self, value: float, **labels: str) -> None:
        """Record observation."""
        key = self._make_key(labels)

        with self._lock:
            if key not in self._bucket_counts:
                self._bucket_counts[key] = [0] * len(self._buckets)

            # Cumulative buckets
            for i, bound in enumerate(self._buckets):
                if value <= bound:
                    self._bucket_counts[key][i] += 1

            self._sums[key] += value
            self._counts[key] += 1

    def time(self, **labels: str) -> HistogramTimer:
        """Context manager for timing operations."""
        return HistogramTimer(self, labels)

    def count(self, **labels: str) -> int:
        key = self._make_key(labels)
        with self._lock:
            return self._counts.get(key, 0)

    def get_percentile(self, percentile: float, **labels: str) -> Optional[float]:
        """
        Estimate percentile from histogram buckets.

        Note: Approximation based on bucket boundaries.
        """
        key = self._make_key(labels)

        with self._lock:
            if key not in self._bucket_counts:
                return None

            total = self._counts.get(key, 0)
            if total == 0:
                return None

            target_count = total * (percentile / 100.0)

            for i, count in enumerate(self._bucket_counts[key]):
                if count >= target_count:
                    return self._buckets[i]

        return None

    def collect(self) -> Iterator[dict[str, Any]]:
        """Collect all histogram data."""
        with self._lock:
            snapshot = [
                {
                    "labels": key.to_dict(),
                    "buckets": list(zip(self._buckets, self._bucket_counts[key])),
                    "sum": self._sums.get(key, 0.0),
                    "count": self._counts.get(key, 0),
                }
                for key in self._bucket_counts
            ]
        yield from snapshot


class HistogramTimer:
    """Context manager for histogram timing."""

    __slots__ = ("_histogram", "_labels", "_start")

    def __init__(self, histogram: Histogram, labels: dict[str, str]) -> None:
        self._histogram = histogram
        self._labels = labels
        self._start = 0.0

    def __enter__(self) -> HistogramTimer:
        self._start = time.perf_counter()
        return self

    def __exit__(self, *args: Any) -> None:
        elapsed = time.perf_counter() - self._start
        self._histogram.observe(elapsed, **self._labels)


class MetricsCollector:
    """
    Central registry for all metrics.

    Usage:
        collector = MetricsCollector.get_instance()

        pending = collector.gauge("zkmesh_watches_pending")
        latency = collector.histogram("zkmesh_operation_seconds", ["operation"])

        # Export to Prometheus
        output = collector.export_prometheus()
    """

    __slots__ = ("_counters", "_gauges", "_histograms", "_lock")

    _instance: Optional[MetricsCollector] = None
    _instance_lock = threading.Lock()

    def __init__(self) -> None:
        self._counters: dict[str, Counter] = {}
        self._gauges: dict[str, Gauge] = {}
        self._histograms: dict[str, Histogram] = {}
        self._lock = threading.Lock()

    @classmethod
    def get_instance(cls) -> MetricsCollector:
        """Get singleton instance."""
        with cls._instance_lock:
            if cls._instance is None:
                cls._instance = cls()
            return cls._instance

    def counter(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
    ) -> Counter:
        """Get or create counter."""
        with self._lock:
            if name not in self._counters:
                self._counters[name] = Counter(name, label_names, help_text)
            return self._counters[name]

    def gauge(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
    ) -> Gauge:
        """Get or create gauge."""
        with self._lock:
            if name not in self._gauges:
                self._gauges[name] = Gauge(name, label_names, help_text)
            return self._gauges[name]

    def histogram(
        self,
        name: str,
        label_names: Sequence[str] = (),
        help_text: str = "",
        buckets: Optional[Sequence[float]] = None,
    ) -> Histogram:
        """Get or create histogram."""
        with self._lock:
            if name not in self._histograms:
                self._histograms[name] = Histogram(name, label_names, help_text, buckets)
            return self._histograms[name]

    def export_prometheus(self) -> str:
        """Export all metrics in Prometheus text format."""
        lines: list[str] = []

        with self._lock:
            counters = list(self._counters.values())
            gauges = list(self._gauges.values())
            histograms = list(self._histograms.values())

        for counter in counters:
            if counter.help:
                lines.append(f"# HELP {counter.name} {counter.help}")
            lines.append(f"# TYPE {counter.name} counter")
            for labels, value in counter.collect():
                lines.append(f"{counter.name}{self._format_labels(labels)} {value}")

        for gauge in gauges:
            if gauge.help:
                lines.append(f"# HELP {gauge.name} {gauge.help}")
            lines.append(f"# TYPE {gauge.name} gauge")
            for labels, value in gauge.collect():
                lines.append(f"{gauge.name}{self._format_labels(labels)} {value}")

        for histogram in histograms:
            name = histogram.name
            lines.append(f"# TYPE {name} histogram")
            for data in histogram.collect():
                label_str = self._format_labels(data["labels"])
                inner = label_str[1:-1]
                for bound, count in data["buckets"]:
                    bound_str = "+Inf" if bound == float("inf") else str(bound)
                    le = f'le="{bound_str}"'
                    lines.append(f"{name}_bucket{{{le + ',' + inner if inner else le}}} {count}")
                lines.append(f'{name}_sum{label_str} {data["sum"]}')
                lines.append(f'{name}_count{label_str} {data["count"]}')

        return "\n".join(lines)

    def _format_labels(self, labels: dict[str, str]) -> str:
        """Format labels as Prometheus label string."""
        if not labels:
            return ""
        pairs = [f'{k}="{v}"' for k, v in sorted(labels.items())]
        return "{" + ",".join(pairs) + "}"


# =============================================================================
# CLIENT INSTRUMENTS
# =============================================================================
class ClientMetrics:
    """
    The instruments recorded by the session and watch subsystem.

    Bound to a collector so tests can observe an isolated set.
    """

    __slots__ = (
        "watches_registered",
        "watches_pending",
        "events_dispatched",
        "events_dropped",
        "watch_overflows",
        "operation_seconds",
        "retry_change_conflicts",
    )

    def __init__(self, collector: Optional[MetricsCollector] = None) -> None:
        collector = collector or MetricsCollector.get_instance()
        self.watches_registered = collector.counter(
            "zkmesh_watches_registered_total", ["kind"],
            "Watches allocated in the registry",
        )
        self.watches_pending = collector.gauge(
            "zkmesh_watches_pending", (),
            "Watches currently held, summed over every registry sharing the collector",
        )
        self.events_dispatched = collector.counter(
            "zkmesh_events_dispatched_total", ["kind", "type"],
            "Events forwarded to event streams",
        )
        self.events_dropped = collector.counter(
            "zkmesh_events_dropped_total", ["reason"],
            "Notifications not forwarded to any stream",
        )
        self.watch_overflows = collector.counter(
            "zkmesh_watch_overflows_total", (),
            "Events that found their stream buffer full",
        )
        self.operation_seconds = collector.histogram(
            "zkmesh_operation_seconds", ["operation"],
            "Node operation latency",
        )
        self.retry_change_conflicts = collector.counter(
            "zkmesh_retry_change_conflicts_total", ["reason"],
            "Optimistic retry restarts caused by concurrent writers",
        )
