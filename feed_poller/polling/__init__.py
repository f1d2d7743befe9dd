"""Polling: scheduling, dedup, backoff, failure tracking and resource limits."""

from feed_poller.polling.backoff import (
    BackoffCoordinator,
    BackoffDecision,
    compute_backoff_minutes,
)
from feed_poller.polling.checker import CheckOutcome, SourceChecker
from feed_poller.polling.config import PollingConfig
from feed_poller.polling.dedup import DedupResult, find_new_items, merge_recent_links
from feed_poller.polling.frequency import clamp_frequency, resolve_frequency
from feed_poller.polling.governor import GovernorAction, ResourceGovernor, decide
from feed_poller.polling.scheduler import PollScheduler, ReconcileResult, ScheduleEntry
from feed_poller.polling.tracker import (
    AutoDisableDecision,
    FailureOutcome,
    FailureTracker,
    can_send_error_message,
    evaluate_auto_disable,
    should_send_threshold_alert,
)

__all__ = [
    "AutoDisableDecision",
    "BackoffCoordinator",
    "BackoffDecision",
    "CheckOutcome",
    "DedupResult",
    "FailureOutcome",
    "FailureTracker",
    "GovernorAction",
    "PollScheduler",
    "PollingConfig",
    "ReconcileResult",
    "ResourceGovernor",
    "ScheduleEntry",
    "SourceChecker",
    "can_send_error_message",
    "clamp_frequency",
    "compute_backoff_minutes",
    "decide",
    "evaluate_auto_disable",
    "find_new_items",
    "merge_recent_links",
    "resolve_frequency",
    "should_send_threshold_alert",
]
