"""Metrics for DashQL statement execution."""

from .collector import MetricsCollector, StatementMetrics

__all__ = [
    'MetricsCollector',
    'StatementMetrics',
]
