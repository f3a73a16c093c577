"""Observability layer - logging and metrics."""

from forumwatch.observability.logging import setup_logging
from forumwatch.observability.metrics import MetricsCollector, get_metrics

__all__ = ["setup_logging", "MetricsCollector", "get_metrics"]
