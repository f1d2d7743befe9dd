"""Shared fixtures for polling tests."""

import dataclasses
from datetime import datetime, timedelta
from unittest.mock import AsyncMock

import pytest

from feed_poller.sources.schemas import CategoryFrequency, ErrorClass, FailureEvent, Source


class InMemorySourceStore:
    """Dict-backed stand-in for SourcesRepository."""

    def __init__(self, sources: list[Source] | None = None) -> None:
        self.sources: dict[str, Source] = {s.id: s for s in sources or []}
        self.failures: list[FailureEvent] = []

    def add(self, source: Source) -> None:
        self.sources[source.id] = source

    async def list_active_sources(self, group_id=None):
        return [
            dataclasses.replace(s)
            for s in self.sources.values()
            if not s.disabled and (group_id is None or s.group_id == group_id)
        ]

    async def get_source(self, source_id):
        source = self.sources.get(source_id)
        return dataclasses.replace(source) if source else None

    async def update_identity(self, source_id, last_item_id, recent_links):
        self.sources[source_id].last_item_id = last_item_id
        self.sources[source_id].recent_links = list(recent_links)

    async def update_last_checked(self, source_id, at):
        self.sources[source_id].last_checked = at

    async def record_failure(self, source_id, message, error_class, at):
        self.failures.append(FailureEvent(source_id, at, message, error_class))
        source = self.sources[source_id]
        source.consecutive_failures += 1
        source.last_checked = at
        return source.consecutive_failures

    async def mark_success(self, source_id):
        self.failures = [f for f in self.failures if f.source_id != source_id]
        source = self.sources[source_id]
        source.consecutive_failures = 0
        source.backoff_until = None
        source.last_failure_notification_at = None

    async def get_failure_count_24h(self, source_id, now):
        cutoff = now - timedelta(hours=24)
        return sum(1 for f in self.failures if f.source_id == source_id and f.timestamp >= cutoff)

    async def get_failure_events(self, source_id):
        return sorted(
            (f for f in self.failures if f.source_id == source_id),
            key=lambda f: f.timestamp,
        )

    async def prune_failures(self, older_than):
        before = len(self.failures)
        self.failures = [f for f in self.failures if f.timestamp >= older_than]
        return before - len(self.failures)

    async def set_backoff_until(self, source_id, until):
        self.sources[source_id].backoff_until = until

    async def set_disabled(self, source_id, reason):
        source = self.sources[source_id]
        if source.disabled:
            return False
        source.disabled = True
        source.disabled_reason = reason
        return True

    async def delete_source(self, source_id):
        self.failures = [f for f in self.failures if f.source_id != source_id]
        return self.sources.pop(source_id, None) is not None

    async def get_sibling_sources_in_category(self, group_id, category, exclude_id):
        return [
            dataclasses.replace(s)
            for s in self.sources.values()
            if s.group_id == group_id
            and s.category
            and s.category.lower() == category.lower()
            and s.id != exclude_id
            and not s.disabled
        ]

    async def set_last_notification_time(self, source_id, at):
        self.sources[source_id].last_failure_notification_at = at

    async def get_last_notification_time(self, source_id):
        return self.sources[source_id].last_failure_notification_at

    async def set_last_error_message_time(self, source_id, at):
        self.sources[source_id].last_error_message_at = at


@pytest.fixture
def store(sample_source: Source, new_source: Source) -> InMemorySourceStore:
    return InMemorySourceStore([sample_source, new_source])


@pytest.fixture
def category_repo() -> AsyncMock:
    repo = AsyncMock()
    repo.list_category_frequencies = AsyncMock(
        return_value=[CategoryFrequency("guild-1", "News", 60)]
    )
    return repo


@pytest.fixture
def notifier() -> AsyncMock:
    notifier = AsyncMock()
    notifier.send = AsyncMock(return_value=True)
    return notifier


def add_failures(
    store: InMemorySourceStore,
    source_id: str,
    error_class: ErrorClass,
    start: datetime,
    count: int,
    every: timedelta,
) -> None:
    for n in range(count):
        store.failures.append(
            FailureEvent(source_id, start + every * n, "error", error_class)
        )


@pytest.fixture
def seed_failures():
    return add_failures
