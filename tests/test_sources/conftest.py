"""Shared fixtures for sources tests."""

from datetime import datetime, timezone

import pytest


@pytest.fixture
def sample_db_row() -> dict:
    """A dict mimicking an asyncpg Record for a source."""
    return {
        "id": "src-1",
        "url": "https://example.com/feed.xml",
        "group_id": "guild-1",
        "destination": "https://hooks.example.com/abc",
        "category": "News",
        "frequency_override_minutes": None,
        "nickname": "Example News",
        "last_item_id": "item-0",
        "recent_links": ["https://example.com/0"],
        "consecutive_failures": 2,
        "backoff_until": None,
        "last_checked": datetime(2026, 3, 1, tzinfo=timezone.utc),
        "last_failure_notification_at": None,
        "last_error_message_at": None,
        "ignore_errors": False,
        "disable_failure_notifications": False,
        "disabled": False,
        "disabled_reason": None,
        "created_at": datetime(2026, 1, 1, tzinfo=timezone.utc),
    }


@pytest.fixture
def sample_failure_row() -> dict:
    return {
        "source_id": "src-1",
        "timestamp": datetime(2026, 3, 1, 6, tzinfo=timezone.utc),
        "error_message": "Request failed with status 404",
        "error_class": "client",
    }
