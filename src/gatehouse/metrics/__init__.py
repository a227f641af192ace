"""
Prometheus metrics for the Gatehouse audit store.

collect() aggregates the store, format_metrics() renders the text format,
and MetricsServer serves it at /metrics.
"""

from gatehouse.metrics.exporter import (
    CONTENT_TYPE,
    DURATION_BUCKETS,
    MetricsData,
    collect,
    escape_label_value,
    format_metrics,
)
from gatehouse.metrics.server import DEFAULT_PORT, MetricsServer

__all__ = [
    "CONTENT_TYPE",
    "DEFAULT_PORT",
    "DURATION_BUCKETS",
    "MetricsData",
    "MetricsServer",
    "collect",
    "escape_label_value",
    "format_metrics",
]
