"""
Observability module: Metrics and structured logging.
"""

from zkmesh.observability.metrics import (
    MetricsCollector,
    ClientMetrics,
    Counter,
    Gauge,
    Histogram,
)
from zkmesh.observability.logging import StructuredLogger, LogLevel, setup_logging

__all__ = [
    "MetricsCollector",
    "ClientMetrics",
    "Counter",
    "Gauge",
    "Histogram",
    "StructuredLogger",
    "LogLevel",
    "setup_logging",
]
