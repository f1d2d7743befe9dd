"""Tests for metrics and logging helpers."""

import structlog
from prometheus_client import REGISTRY

from feed_poller.config.settings import Settings
from feed_poller.observability.logging import _use_json, bind_context, clear_context
from feed_poller.observability.metrics import get_metrics


def _sample(name: str, **labels) -> float:
    return REGISTRY.get_sample_value(name, labels or None) or 0.0


class TestMetrics:
    def test_singleton(self):
        assert get_metrics() is get_metrics()

    def test_record_check_increments_label(self):
        before = _sample("feed_poller_sources_checked_total", outcome="success")

        get_metrics().record_check("success")

        assert _sample("feed_poller_sources_checked_total", outcome="success") == before + 1

    def test_record_delivery_ignores_zero(self):
        before = _sample("feed_poller_items_delivered_total")

        get_metrics().record_delivery(0)
        get_metrics().record_delivery(3)

        assert _sample("feed_poller_items_delivered_total") == before + 3

    def test_queue_size_gauge(self):
        get_metrics().set_queue_size(42)

        assert _sample("feed_poller_queue_size") == 42


class TestLoggingContext:
    def test_bind_and_clear(self):
        bind_context(source_id="src-1")
        assert structlog.contextvars.get_contextvars()["source_id"] == "src-1"

        clear_context()
        assert structlog.contextvars.get_contextvars() == {}


class TestLogFormat:
    def test_auto_follows_environment(self):
        assert _use_json(Settings(_env_file=None, environment="production")) is True
        assert _use_json(Settings(_env_file=None, environment="development")) is False
        assert _use_json(Settings(_env_file=None, log_format="json")) is True
