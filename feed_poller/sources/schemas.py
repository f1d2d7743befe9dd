"""Data models for the sources module."""

import enum
from dataclasses import dataclass, field
from datetime import datetime


class ErrorClass(str, enum.Enum):
    """Classification of a recorded failure.

    Drives auto-disable (client/server) and alert wording
    (delivery_permission).
    """

    TRANSIENT = "transient"
    CLIENT = "client"
    SERVER = "server"
    DELIVERY = "delivery"
    DELIVERY_PERMISSION = "delivery_permission"


@dataclass
class Source:
    """A polled feed subscription bound to a delivery destination.

    Owned by the source store. The scheduler keeps a snapshot and
    reloads it before every check.
    """

    id: str
    url: str
    group_id: str
    destination: str
    category: str | None = None
    frequency_override_minutes: int | None = None
    nickname: str | None = None
    last_item_id: str | None = None
    recent_links: list[str] = field(default_factory=list)
    consecutive_failures: int = 0
    backoff_until: datetime | None = None
    last_checked: datetime | None = None
    last_failure_notification_at: datetime | None = None
    last_error_message_at: datetime | None = None
    ignore_errors: bool = False
    disable_failure_notifications: bool = False
    disabled: bool = False
    disabled_reason: str | None = None
    created_at: datetime | None = None

    @property
    def display_name(self) -> str:
        """Nickname if set, otherwise the feed URL."""
        return self.nickname or self.url

    @property
    def notifications_suppressed(self) -> bool:
        """True when the owner opted out of error messages or alerts."""
        return self.ignore_errors or self.disable_failure_notifications


@dataclass
class CategoryFrequency:
    """Polling frequency configured for a category within a group."""

    group_id: str
    name: str
    frequency_minutes: int

    @property
    def key(self) -> tuple[str, str]:
        """Lookup key: (group_id, lowercased category name)."""
        return (self.group_id, self.name.lower())


@dataclass
class FailureEvent:
    """One recorded failure of a source (append-only log row)."""

    source_id: str
    timestamp: datetime
    message: str | None = None
    error_class: ErrorClass = ErrorClass.TRANSIENT


@dataclass
class FailureRecord:
    """A failure event joined with the source it belongs to."""

    source_id: str
    url: str
    group_id: str
    timestamp: datetime
    message: str | None = None
    error_class: ErrorClass = ErrorClass.TRANSIENT
    nickname: str | None = None
    consecutive_failures: int = 0
    ignore_errors: bool = False

    @property
    def label(self) -> str:
        return f"{self.url} ({self.source_id})"
