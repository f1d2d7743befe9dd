"""
Prometheus metrics for monitoring the polling scheduler.

Defines and exposes metrics for:
- Source check outcomes and fetch latency
- Failures by error class, auto-disables
- Items delivered and notices sent
- Due-queue size and process memory

Metrics are exposed via HTTP endpoint for Prometheus scraping.
"""

import logging

from prometheus_client import (
    Counter,
    Gauge,
    Histogram,
    start_http_server,
)

from feed_poller.config.settings import get_settings

logger = logging.getLogger(__name__)

# Buckets for latency histograms (in seconds)
LATENCY_BUCKETS = (0.1, 0.25, 0.5, 1.0, 2.5, 5.0, 10.0, 30.0, 60.0)


class MetricsCollector:
    """
    Prometheus metrics collector for the feed poller.

    Usage:
        metrics = MetricsCollector()
        metrics.start_server()

        metrics.record_check("success")
        metrics.fetch_latency.observe(0.42)
    """

    def __init__(self):
        """Initialize Prometheus metrics."""

        self.sources_checked = Counter(
            "feed_poller_sources_checked_total",
            "Total source checks by outcome",
            ["outcome"],  # success, skipped_backoff, failed, disabled, removed
        )

        self.source_failures = Counter(
            "feed_poller_source_failures_total",
            "Total recorded source failures",
            ["error_class"],
        )

        self.sources_auto_disabled = Counter(
            "feed_poller_sources_auto_disabled_total",
            "Total sources automatically disabled",
            ["reason"],
        )

        self.items_delivered = Counter(
            "feed_poller_items_delivered_total",
            "Total feed items delivered downstream",
        )

        self.notices_sent = Counter(
            "feed_poller_notices_sent_total",
            "Total notices sent to destinations",
            ["kind"],  # error_message, failure_alert, disabled
        )

        self.ticks_skipped = Counter(
            "feed_poller_ticks_skipped_total",
            "Batch ticks skipped because the previous tick was still running",
        )

        self.queue_overflows = Counter(
            "feed_poller_queue_overflows_total",
            "Reconciliations that found the due-queue above its size ceiling",
        )

        self.fetch_latency = Histogram(
            "feed_poller_fetch_latency_seconds",
            "Time to fetch and parse a single feed",
            buckets=LATENCY_BUCKETS,
        )

        self.tick_duration = Histogram(
            "feed_poller_tick_duration_seconds",
            "Time to run one batch tick",
            buckets=LATENCY_BUCKETS,
        )

        self.queue_size = Gauge(
            "feed_poller_queue_size",
            "Number of sources in the due-queue",
        )

        self.process_rss_mb = Gauge(
            "feed_poller_process_rss_megabytes",
            "Resident set size sampled after each batch",
        )

    def start_server(self, port: int | None = None) -> None:
        """
        Start Prometheus metrics HTTP server.

        Args:
            port: Port to listen on (defaults to settings.metrics_port)
        """
        port = port or get_settings().metrics_port
        start_http_server(port)
        logger.info(f"Metrics server started on port {port}")

    def record_check(self, outcome: str) -> None:
        """Record the outcome of a single source check."""
        self.sources_checked.labels(outcome=outcome).inc()

    def record_failure(self, error_class: str) -> None:
        """Record a failure event by error class."""
        self.source_failures.labels(error_class=error_class).inc()

    def record_auto_disable(self, reason: str) -> None:
        """Record an automatic disablement."""
        self.sources_auto_disabled.labels(reason=reason).inc()

    def record_delivery(self, count: int) -> None:
        """Record delivered items."""
        if count > 0:
            self.items_delivered.inc(count)

    def record_notice(self, kind: str) -> None:
        """Record a notice sent to a destination."""
        self.notices_sent.labels(kind=kind).inc()

    def set_queue_size(self, size: int) -> None:
        """Set the due-queue size gauge."""
        self.queue_size.set(size)

    def set_rss(self, rss_mb: float) -> None:
        """Set the sampled process RSS gauge."""
        self.process_rss_mb.set(rss_mb)


# Global metrics instance
_metrics: MetricsCollector | None = None


def get_metrics() -> MetricsCollector:
    """Get global metrics collector instance."""
    global _metrics
    if _metrics is None:
        _metrics = MetricsCollector()
    return _metrics
