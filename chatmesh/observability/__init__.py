"""
Observability module: Metrics and structured logging.
"""

from chatmesh.observability.metrics import (
    ChatMeshMetrics,
    Counter,
    Gauge,
    Histogram,
    MetricsCollector,
)
from chatmesh.observability.logging import LogLevel, StructuredLogger, setup_logging

__all__ = [
    "ChatMeshMetrics",
    "MetricsCollector",
    "Counter",
    "Gauge",
    "Histogram",
    "StructuredLogger",
    "LogLevel",
    "setup_logging",
]
