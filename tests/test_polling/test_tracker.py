"""Tests for failure tracking, notices and auto-disable."""

from datetime import timedelta
from unittest.mock import MagicMock

import pytest

from feed_poller.polling.config import PollingConfig
from feed_poller.polling.tracker import (
    FailureTracker,
    can_send_error_message,
    evaluate_auto_disable,
    should_send_threshold_alert,
)
from feed_poller.sources.schemas import ErrorClass, FailureEvent


def _kinds(notifier) -> list[str]:
    return [c.args[1].kind for c in notifier.send.await_args_list]


class TestPolicyFunctions:
    def test_threshold_is_edge_triggered(self, clock):
        now = clock()
        assert should_send_threshold_alert(5, None, now, 5, 48) is True
        assert should_send_threshold_alert(4, None, now, 5, 48) is False
        assert should_send_threshold_alert(6, None, now, 5, 48) is False

    def test_threshold_respects_quiet_period(self, clock):
        now = clock()
        assert should_send_threshold_alert(5, now - timedelta(hours=47), now, 5, 48) is False
        assert should_send_threshold_alert(5, now - timedelta(hours=48), now, 5, 48) is True

    def test_error_message_rate_limit(self, clock):
        now = clock()
        assert can_send_error_message(None, now, 6) is True
        assert can_send_error_message(now - timedelta(hours=5), now, 6) is False
        assert can_send_error_message(now - timedelta(hours=6), now, 6) is True


class TestEvaluateAutoDisable:
    def test_dead_feed_after_three_days(self, clock, polling_config):
        now = clock()
        events = [
            FailureEvent("s", now - timedelta(days=3, hours=1), "404", ErrorClass.CLIENT),
            FailureEvent("s", now, "404", ErrorClass.CLIENT),
        ]

        decision = evaluate_auto_disable(events, now, polling_config)

        assert decision is not None
        assert decision.reason == "dead_feed"

    def test_short_client_run_kept(self, clock, polling_config):
        now = clock()
        events = [FailureEvent("s", now - timedelta(days=2), "404", ErrorClass.CLIENT)]

        assert evaluate_auto_disable(events, now, polling_config) is None

    def test_run_broken_by_other_class(self, clock, polling_config):
        now = clock()
        events = [
            FailureEvent("s", now - timedelta(days=5), "404", ErrorClass.CLIENT),
            FailureEvent("s", now - timedelta(days=1), "timeout", ErrorClass.TRANSIENT),
            FailureEvent("s", now, "404", ErrorClass.CLIENT),
        ]

        assert evaluate_auto_disable(events, now, polling_config) is None

    def test_server_errors_need_longer_window(self, clock, polling_config):
        now = clock()
        four_days = [
            FailureEvent("s", now - timedelta(days=4), "503", ErrorClass.SERVER),
            FailureEvent("s", now, "503", ErrorClass.SERVER),
        ]
        eight_days = [
            FailureEvent("s", now - timedelta(days=8), "503", ErrorClass.SERVER),
            FailureEvent("s", now, "503", ErrorClass.SERVER),
        ]

        assert evaluate_auto_disable(four_days, now, polling_config) is None
        decision = evaluate_auto_disable(eight_days, now, polling_config)
        assert decision is not None
        assert decision.reason == "server_error_feed"

    def test_transient_never_disables(self, clock, polling_config):
        now = clock()
        events = [FailureEvent("s", now - timedelta(days=30), "t", ErrorClass.TRANSIENT)]

        assert evaluate_auto_disable(events, now, polling_config) is None


class TestFailureTracker:
    @pytest.mark.asyncio
    async def test_alert_sent_once_per_quiet_period(
        self, store, notifier, polling_config, clock, sample_source
    ):
        tracker = FailureTracker(store, notifier, polling_config, clock=clock)

        alerts = 0
        # Two bursts of failures, 12 hours apart, both inside one quiet period
        for _ in range(2):
            for _ in range(polling_config.failure_notification_threshold):
                source = await store.get_source(sample_source.id)
                outcome = await tracker.record_failure(source, "boom", ErrorClass.TRANSIENT)
                alerts += outcome.alert_sent
                clock.advance(minutes=5)
            store.failures.clear()
            clock.advance(hours=12)

        assert alerts == 1
        assert _kinds(notifier).count("failure_alert") == 1

    @pytest.mark.asyncio
    async def test_success_starts_new_notification_cycle(
        self, store, notifier, polling_config, clock, sample_source
    ):
        tracker = FailureTracker(store, notifier, polling_config, clock=clock)

        for _ in range(5):
            source = await store.get_source(sample_source.id)
            await tracker.record_failure(source, "boom", ErrorClass.TRANSIENT)
        assert store.sources["src-1"].last_failure_notification_at is not None

        await tracker.record_success(await store.get_source(sample_source.id))

        stored = store.sources["src-1"]
        assert stored.last_failure_notification_at is None
        assert stored.consecutive_failures == 0
        assert stored.backoff_until is None
        assert await store.get_failure_events("src-1") == []

    @pytest.mark.asyncio
    async def test_error_message_rate_limited(
        self, store, notifier, polling_config, clock, sample_source
    ):
        tracker = FailureTracker(store, notifier, polling_config, clock=clock)

        first = await tracker.record_failure(
            await store.get_source(sample_source.id), "boom", ErrorClass.TRANSIENT
        )
        clock.advance(hours=1)
        second = await tracker.record_failure(
            await store.get_source(sample_source.id), "boom", ErrorClass.TRANSIENT
        )

        assert first.error_message_sent is True
        assert second.error_message_sent is False

    @pytest.mark.asyncio
    async def test_suppressed_source_still_counted(
        self, store, notifier, polling_config, clock, sample_source
    ):
        store.sources["src-1"].ignore_errors = True
        tracker = FailureTracker(store, notifier, polling_config, clock=clock)

        for _ in range(5):
            outcome = await tracker.record_failure(
                await store.get_source(sample_source.id), "boom", ErrorClass.TRANSIENT
            )

        assert outcome.consecutive_failures == 5
        assert outcome.failures_24h == 5
        notifier.send.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_dead_feed_disabled_despite_suppression(
        self, store, notifier, polling_config, clock, sample_source, seed_failures
    ):
        store.sources["src-1"].disable_failure_notifications = True
        seed_failures(
            store, "src-1", ErrorClass.CLIENT,
            clock() - timedelta(days=4), 4, timedelta(days=1),
        )
        on_disable = MagicMock()
        tracker = FailureTracker(
            store, notifier, polling_config, on_disable=on_disable, clock=clock
        )

        outcome = await tracker.record_failure(
            await store.get_source(sample_source.id), "404", ErrorClass.CLIENT
        )

        assert outcome.disabled is True
        assert outcome.disable_reason == "dead_feed"
        assert store.sources["src-1"].disabled is True
        on_disable.assert_called_once_with("src-1")
        assert _kinds(notifier) == ["disabled"]

    @pytest.mark.asyncio
    async def test_disable_notice_sent_once(
        self, store, notifier, polling_config, clock, sample_source, seed_failures
    ):
        seed_failures(
            store, "src-1", ErrorClass.SERVER,
            clock() - timedelta(days=8), 8, timedelta(days=1),
        )
        tracker = FailureTracker(store, notifier, polling_config, clock=clock)
        source = await store.get_source(sample_source.id)
        source.ignore_errors = True

        await tracker.record_failure(source, "503", ErrorClass.SERVER)
        await tracker.record_failure(source, "503", ErrorClass.SERVER)

        assert _kinds(notifier).count("disabled") == 1

    @pytest.mark.asyncio
    async def test_permission_alert_text(
        self, store, notifier, polling_config, clock, sample_source
    ):
        tracker = FailureTracker(store, notifier, polling_config, clock=clock)

        for _ in range(5):
            await tracker.record_failure(
                await store.get_source(sample_source.id),
                "Destination returned 403",
                ErrorClass.DELIVERY_PERMISSION,
                stage="deliver",
            )

        alert = [c.args[1] for c in notifier.send.await_args_list if c.args[1].kind == "failure_alert"][0]
        assert "missing permissions" in alert.message
        assert "poll frequency" not in alert.message
