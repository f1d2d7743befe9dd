"""
Failure and notification tracking with auto-disable.

Per failure, in order:
1. append a failure event and bump the consecutive count
2. send the rate-limited error message (unless suppressed)
3. evaluate auto-disable, which ignores suppression flags
4. send the threshold alert when the rolling 24h count hits the
   threshold exactly, gated by the quiet period

Policy decisions are pure functions so they can be tested without a
store or transport.
"""

from collections.abc import Callable
from dataclasses import dataclass
from datetime import datetime, timedelta

import structlog

from feed_poller.delivery.notifier import (
    Notifier,
    format_disabled_notice,
    format_error_message,
    format_failure_alert,
)
from feed_poller.observability.metrics import get_metrics
from feed_poller.polling.clock import Clock, utcnow
from feed_poller.polling.config import PollingConfig
from feed_poller.sources.repository import SourcesRepository
from feed_poller.sources.schemas import ErrorClass, FailureEvent, Source

logger = structlog.get_logger(__name__)

AUTO_DISABLE_CLASSES = (ErrorClass.CLIENT, ErrorClass.SERVER)


@dataclass
class AutoDisableDecision:
    """Why a source should be disabled."""

    reason: str  # dead_feed | server_error_feed
    error_type: str
    period: str
    run_started_at: datetime


@dataclass
class FailureOutcome:
    """Everything record_failure() did for one failure."""

    consecutive_failures: int
    failures_24h: int = 0
    error_message_sent: bool = False
    alert_sent: bool = False
    disabled: bool = False
    disable_reason: str | None = None


def can_send_error_message(
    last_error_message_at: datetime | None,
    now: datetime,
    interval_hours: int,
) -> bool:
    if last_error_message_at is None:
        return True
    return now - last_error_message_at >= timedelta(hours=interval_hours)


def should_send_threshold_alert(
    failures_24h: int,
    last_notification_at: datetime | None,
    now: datetime,
    threshold: int,
    quiet_period_hours: int,
) -> bool:
    """Edge-triggered: only when the count equals the threshold exactly."""
    if failures_24h != threshold:
        return False
    if last_notification_at is None:
        return True
    return now - last_notification_at >= timedelta(hours=quiet_period_hours)


def evaluate_auto_disable(
    events: list[FailureEvent],
    now: datetime,
    config: PollingConfig,
) -> AutoDisableDecision | None:
    """
    Decide whether sustained errors should disable a source.

    Looks at the trailing run of events sharing the newest event's class.
    A client-class run older than ``dead_feed_days`` marks a dead feed; a
    server-class run older than ``server_error_feed_days`` marks a
    server-error feed. Any other class, or a shorter run, returns None.
    """
    if not events:
        return None

    ordered = sorted(events, key=lambda e: e.timestamp)
    error_class = ordered[-1].error_class
    if error_class not in AUTO_DISABLE_CLASSES:
        return None

    run_start = ordered[-1].timestamp
    for event in reversed(ordered):
        if event.error_class != error_class:
            break
        run_start = event.timestamp

    if error_class == ErrorClass.CLIENT:
        days = config.dead_feed_days
        if now - run_start > timedelta(days=days):
            return AutoDisableDecision(
                reason="dead_feed",
                error_type="client errors (e.g. 404 not found)",
                period=f"{days} days",
                run_started_at=run_start,
            )
    else:
        days = config.server_error_feed_days
        if now - run_start > timedelta(days=days):
            return AutoDisableDecision(
                reason="server_error_feed",
                error_type="server errors (5xx)",
                period=f"{days} days",
                run_started_at=run_start,
            )
    return None


class FailureTracker:
    """Records failures and successes and drives notices and auto-disable."""

    def __init__(
        self,
        sources: SourcesRepository,
        notifier: Notifier,
        config: PollingConfig,
        on_disable: Callable[[str], None] | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._sources = sources
        self._notifier = notifier
        self._config = config
        self._clock = clock or utcnow
        self.on_disable = on_disable
        self._metrics = get_metrics()

    async def record_failure(
        self,
        source: Source,
        error: str | None,
        error_class: ErrorClass,
        stage: str = "fetch",
        effective_frequency: int | None = None,
    ) -> FailureOutcome:
        """
        Record one failure of a source and act on it.

        Args:
            source: Source snapshot (reloaded for this check)
            error: Error message to store and show
            error_class: Classification driving auto-disable and alert text
            stage: fetch, parse or deliver (used in the error message)
            effective_frequency: Current poll frequency, for the alert text

        Returns:
            FailureOutcome
        """
        now = self._clock()
        consecutive = await self._sources.record_failure(source.id, error, error_class, now)
        outcome = FailureOutcome(consecutive_failures=consecutive)
        self._metrics.record_failure(error_class.value)

        log = logger.bind(source_id=source.id, error_class=error_class.value)
        log.warning("Source check failed", stage=stage, consecutive=consecutive, error=error)

        if not source.notifications_suppressed and can_send_error_message(
            source.last_error_message_at, now, self._config.error_message_interval_hours
        ):
            notice = format_error_message(
                source, stage, error, self._config.error_message_interval_hours
            )
            if await self._notifier.send(source, notice):
                await self._sources.set_last_error_message_time(source.id, now)
                outcome.error_message_sent = True

        events = await self._sources.get_failure_events(source.id)
        decision = evaluate_auto_disable(events, now, self._config)
        if decision is not None:
            await self._disable(source, decision)
            outcome.disabled = True
            outcome.disable_reason = decision.reason
            return outcome

        outcome.failures_24h = await self._sources.get_failure_count_24h(source.id, now)
        if source.notifications_suppressed:
            return outcome

        last_alert = await self._sources.get_last_notification_time(source.id)
        if should_send_threshold_alert(
            outcome.failures_24h,
            last_alert,
            now,
            self._config.failure_notification_threshold,
            self._config.failure_quiet_period_hours,
        ):
            notice = format_failure_alert(
                source,
                outcome.failures_24h,
                error,
                effective_frequency or self._config.default_frequency_minutes,
                self._config.failure_quiet_period_hours,
                permission_error=error_class == ErrorClass.DELIVERY_PERMISSION,
            )
            if await self._notifier.send(source, notice):
                await self._sources.set_last_notification_time(source.id, now)
                outcome.alert_sent = True
                log.info("Failure threshold alert sent", failures_24h=outcome.failures_24h)
        elif outcome.failures_24h == self._config.failure_notification_threshold:
            log.info("Failure threshold reached during quiet period")

        return outcome

    async def record_success(self, source: Source) -> None:
        """Clear failures, backoff and the alert timestamp together."""
        await self._sources.mark_success(source.id)

    async def _disable(self, source: Source, decision: AutoDisableDecision) -> None:
        newly_disabled = await self._sources.set_disabled(source.id, decision.reason)
        if newly_disabled:
            self._metrics.record_auto_disable(decision.reason)
            logger.warning(
                "Source auto-disabled",
                source_id=source.id,
                reason=decision.reason,
                since=decision.run_started_at.isoformat(),
            )
            notice = format_disabled_notice(source, decision.error_type, decision.period)
            await self._notifier.send(source, notice)

        if self.on_disable is not None:
            self.on_disable(source.id)
