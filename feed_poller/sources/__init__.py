"""Sources: database-backed feed subscriptions, failure log and categories."""

from feed_poller.sources.report import FailureReport, build_failure_report, categorize_error
from feed_poller.sources.repository import CategoryRepository, SourcesRepository
from feed_poller.sources.schemas import (
    CategoryFrequency,
    ErrorClass,
    FailureEvent,
    FailureRecord,
    Source,
)

__all__ = [
    "CategoryFrequency",
    "CategoryRepository",
    "ErrorClass",
    "FailureEvent",
    "FailureRecord",
    "FailureReport",
    "Source",
    "SourcesRepository",
    "build_failure_report",
    "categorize_error",
]
