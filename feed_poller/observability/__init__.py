"""Observability layer - logging and metrics."""

from feed_poller.observability.logging import setup_logging
from feed_poller.observability.metrics import MetricsCollector, get_metrics

__all__ = ["setup_logging", "MetricsCollector", "get_metrics"]
