"""Database repositories for sources, their failure log, and categories."""

import logging
from datetime import datetime, timedelta

from feed_poller.sources.schemas import (
    CategoryFrequency,
    ErrorClass,
    FailureEvent,
    FailureRecord,
    Source,
)
from feed_poller.storage.database import Database

logger = logging.getLogger(__name__)

_CREATE_TABLES_SQL = """
CREATE TABLE IF NOT EXISTS sources (
    id                              TEXT PRIMARY KEY,
    url                             TEXT NOT NULL,
    group_id                        TEXT NOT NULL,
    destination                     TEXT NOT NULL,
    category                        TEXT,
    frequency_override_minutes      INTEGER,
    nickname                        TEXT,
    last_item_id                    TEXT,
    recent_links                    TEXT[] NOT NULL DEFAULT '{}',
    consecutive_failures            INTEGER NOT NULL DEFAULT 0,
    backoff_until                   TIMESTAMPTZ,
    last_checked                    TIMESTAMPTZ,
    last_failure_notification_at    TIMESTAMPTZ,
    last_error_message_at           TIMESTAMPTZ,
    ignore_errors                   BOOLEAN NOT NULL DEFAULT FALSE,
    disable_failure_notifications   BOOLEAN NOT NULL DEFAULT FALSE,
    disabled                        BOOLEAN NOT NULL DEFAULT FALSE,
    disabled_reason                 TEXT,
    created_at                      TIMESTAMPTZ NOT NULL DEFAULT NOW()
);

CREATE INDEX IF NOT EXISTS idx_sources_group_category
    ON sources(group_id, LOWER(category));
CREATE INDEX IF NOT EXISTS idx_sources_active
    ON sources(group_id) WHERE disabled = FALSE;

CREATE TABLE IF NOT EXISTS source_failures (
    id              BIGSERIAL PRIMARY KEY,
    source_id       TEXT NOT NULL REFERENCES sources(id) ON DELETE CASCADE,
    timestamp       TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    error_message   TEXT,
    error_class     TEXT NOT NULL DEFAULT 'transient'
);

CREATE INDEX IF NOT EXISTS idx_source_failures_source_time
    ON source_failures(source_id, timestamp);

CREATE TABLE IF NOT EXISTS categories (
    id                  SERIAL PRIMARY KEY,
    group_id            TEXT NOT NULL,
    name                TEXT NOT NULL,
    name_lower          TEXT NOT NULL,
    frequency_minutes   INTEGER NOT NULL
);

CREATE UNIQUE INDEX IF NOT EXISTS idx_categories_group_name_lower
    ON categories(group_id, name_lower);
"""

_UPSERT_SOURCE_SQL = """
INSERT INTO sources (
    id, url, group_id, destination, category, frequency_override_minutes,
    nickname, ignore_errors, disable_failure_notifications, disabled
)
VALUES ($1, $2, $3, $4, $5, $6, $7, $8, $9, $10)
ON CONFLICT (id) DO UPDATE SET
    url = EXCLUDED.url,
    destination = EXCLUDED.destination,
    category = EXCLUDED.category,
    frequency_override_minutes = EXCLUDED.frequency_override_minutes,
    nickname = EXCLUDED.nickname,
    ignore_errors = EXCLUDED.ignore_errors,
    disable_failure_notifications = EXCLUDED.disable_failure_notifications,
    disabled = EXCLUDED.disabled
"""

_RECORD_FAILURE_SQL = """
WITH inserted AS (
    INSERT INTO source_failures (source_id, timestamp, error_message, error_class)
    VALUES ($1, $2, $3, $4)
)
UPDATE sources
SET consecutive_failures = consecutive_failures + 1,
    last_checked = $2
WHERE id = $1
RETURNING consecutive_failures
"""

_MARK_SUCCESS_SQL = """
UPDATE sources
SET consecutive_failures = 0,
    backoff_until = NULL,
    last_failure_notification_at = NULL
WHERE id = $1
"""

_RECENT_FAILURES_SQL = """
SELECT f.source_id, f.timestamp, f.error_message, f.error_class,
       s.url, s.group_id, s.nickname,
       s.consecutive_failures, s.ignore_errors
FROM source_failures f
JOIN sources s ON s.id = f.source_id
ORDER BY f.timestamp DESC, f.id DESC
LIMIT $1
"""

_UPSERT_CATEGORY_SQL = """
INSERT INTO categories (group_id, name, name_lower, frequency_minutes)
VALUES ($1, $2, $3, $4)
ON CONFLICT (group_id, name_lower) DO UPDATE SET
    name = EXCLUDED.name,
    frequency_minutes = EXCLUDED.frequency_minutes
"""


def _record_to_source(record) -> Source:
    """Convert an asyncpg Record to a Source dataclass."""
    return Source(
        id=record["id"],
        url=record["url"],
        group_id=record["group_id"],
        destination=record["destination"],
        category=record["category"],
        frequency_override_minutes=record["frequency_override_minutes"],
        nickname=record["nickname"],
        last_item_id=record["last_item_id"],
        recent_links=list(record["recent_links"] or []),
        consecutive_failures=record["consecutive_failures"] or 0,
        backoff_until=record["backoff_until"],
        last_checked=record["last_checked"],
        last_failure_notification_at=record["last_failure_notification_at"],
        last_error_message_at=record["last_error_message_at"],
        ignore_errors=record["ignore_errors"],
        disable_failure_notifications=record["disable_failure_notifications"],
        disabled=record["disabled"],
        disabled_reason=record["disabled_reason"],
        created_at=record["created_at"],
    )


def _error_class(value: str | None) -> ErrorClass:
    try:
        return ErrorClass(value)
    except ValueError:
        return ErrorClass.TRANSIENT


def _record_to_failure(record) -> FailureEvent:
    """Convert an asyncpg Record to a FailureEvent."""
    return FailureEvent(
        source_id=record["source_id"],
        timestamp=record["timestamp"],
        message=record["error_message"],
        error_class=_error_class(record["error_class"]),
    )


def _record_to_failure_record(record) -> FailureRecord:
    return FailureRecord(
        source_id=record["source_id"],
        url=record["url"],
        group_id=record["group_id"],
        timestamp=record["timestamp"],
        message=record["error_message"],
        error_class=_error_class(record["error_class"]),
        nickname=record["nickname"],
        consecutive_failures=record["consecutive_failures"] or 0,
        ignore_errors=record["ignore_errors"],
    )


class SourcesRepository:
    """Source store: CRUD, identity, backoff and failure-log operations."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def create_tables(self) -> None:
        """Create sources, source_failures and categories (idempotent)."""
        await self._db.execute(_CREATE_TABLES_SQL)
        logger.info("Source tables ensured")

    async def upsert(self, source: Source) -> None:
        """Insert or update the user-editable fields of a source."""
        await self._db.execute(
            _UPSERT_SOURCE_SQL,
            source.id,
            source.url,
            source.group_id,
            source.destination,
            source.category,
            source.frequency_override_minutes,
            source.nickname,
            source.ignore_errors,
            source.disable_failure_notifications,
            source.disabled,
        )

    async def list_active_sources(self, group_id: str | None = None) -> list[Source]:
        """Fetch every non-disabled source, optionally scoped to one group."""
        if group_id is None:
            rows = await self._db.fetch(
                "SELECT * FROM sources WHERE disabled = FALSE ORDER BY id"
            )
        else:
            rows = await self._db.fetch(
                "SELECT * FROM sources WHERE disabled = FALSE AND group_id = $1 ORDER BY id",
                group_id,
            )
        return [_record_to_source(r) for r in rows]

    async def get_source(self, source_id: str) -> Source | None:
        """Fetch a single source by id."""
        row = await self._db.fetchrow("SELECT * FROM sources WHERE id = $1", source_id)
        return _record_to_source(row) if row else None

    async def update_identity(
        self,
        source_id: str,
        last_item_id: str | None,
        recent_links: list[str],
    ) -> None:
        """Persist the dedup state (last seen item id, recent links)."""
        await self._db.execute(
            "UPDATE sources SET last_item_id = $2, recent_links = $3 WHERE id = $1",
            source_id,
            last_item_id,
            recent_links,
        )

    async def update_last_checked(self, source_id: str, at: datetime) -> None:
        await self._db.execute(
            "UPDATE sources SET last_checked = $2 WHERE id = $1",
            source_id,
            at,
        )

    async def record_failure(
        self,
        source_id: str,
        message: str | None,
        error_class: ErrorClass,
        at: datetime,
    ) -> int:
        """Append a failure event and bump the consecutive counter.

        Returns the new consecutive failure count.
        """
        count = await self._db.fetchval(
            _RECORD_FAILURE_SQL,
            source_id,
            at,
            message,
            error_class.value,
        )
        return count or 0

    async def mark_success(self, source_id: str) -> None:
        """Drop the failure log and reset counter, backoff and alert time together."""
        async with self._db.transaction() as conn:
            await conn.execute(
                "DELETE FROM source_failures WHERE source_id = $1", source_id
            )
            await conn.execute(_MARK_SUCCESS_SQL, source_id)

    async def get_failure_count_24h(self, source_id: str, now: datetime) -> int:
        """Count failures recorded in the 24 hours before now."""
        count = await self._db.fetchval(
            "SELECT COUNT(*) FROM source_failures WHERE source_id = $1 AND timestamp >= $2",
            source_id,
            now - timedelta(hours=24),
        )
        return count or 0

    async def get_failure_events(self, source_id: str) -> list[FailureEvent]:
        """Fetch the failure log of a source, oldest first."""
        rows = await self._db.fetch(
            """
            SELECT source_id, timestamp, error_message, error_class
            FROM source_failures
            WHERE source_id = $1
            ORDER BY timestamp, id
            """,
            source_id,
        )
        return [_record_to_failure(r) for r in rows]

    async def list_recent_failures(self, limit: int = 30) -> list[FailureRecord]:
        """Fetch the newest failure events across all sources, joined with their source."""
        rows = await self._db.fetch(_RECENT_FAILURES_SQL, limit)
        return [_record_to_failure_record(r) for r in rows]

    async def prune_failures(self, older_than: datetime) -> int:
        """Delete failure events older than the cutoff. Returns rows deleted."""
        result = await self._db.execute(
            "DELETE FROM source_failures WHERE timestamp < $1", older_than
        )
        try:
            return int(result.split()[-1])
        except (ValueError, IndexError):
            return 0

    async def set_backoff_until(self, source_id: str, until: datetime) -> None:
        await self._db.execute(
            "UPDATE sources SET backoff_until = $2 WHERE id = $1",
            source_id,
            until,
        )

    async def set_disabled(self, source_id: str, reason: str) -> bool:
        """Mark a source disabled. Returns True if a row was updated."""
        result = await self._db.execute(
            """
            UPDATE sources SET disabled = TRUE, disabled_reason = $2
            WHERE id = $1 AND disabled = FALSE
            """,
            source_id,
            reason,
        )
        return result.endswith("1")

    async def delete_source(self, source_id: str) -> bool:
        """Delete a source (and, by cascade, its failure log)."""
        result = await self._db.execute("DELETE FROM sources WHERE id = $1", source_id)
        return result.endswith("1")

    async def get_sibling_sources_in_category(
        self,
        group_id: str,
        category: str,
        exclude_id: str,
    ) -> list[Source]:
        """Fetch active sources sharing (group_id, category), minus one id."""
        rows = await self._db.fetch(
            """
            SELECT * FROM sources
            WHERE group_id = $1
              AND LOWER(category) = LOWER($2)
              AND id <> $3
              AND disabled = FALSE
            """,
            group_id,
            category,
            exclude_id,
        )
        return [_record_to_source(r) for r in rows]

    async def set_last_notification_time(
        self, source_id: str, at: datetime | None
    ) -> None:
        """Set (or clear, with None) the last threshold-alert time."""
        await self._db.execute(
            "UPDATE sources SET last_failure_notification_at = $2 WHERE id = $1",
            source_id,
            at,
        )

    async def get_last_notification_time(self, source_id: str) -> datetime | None:
        return await self._db.fetchval(
            "SELECT last_failure_notification_at FROM sources WHERE id = $1",
            source_id,
        )

    async def set_last_error_message_time(self, source_id: str, at: datetime) -> None:
        await self._db.execute(
            "UPDATE sources SET last_error_message_at = $2 WHERE id = $1",
            source_id,
            at,
        )


class CategoryRepository:
    """Category config store: per-group category polling frequencies."""

    def __init__(self, database: Database) -> None:
        self._db = database

    async def list_category_frequencies(
        self, group_id: str | None = None
    ) -> list[CategoryFrequency]:
        if group_id is None:
            rows = await self._db.fetch(
                "SELECT group_id, name, frequency_minutes FROM categories"
            )
        else:
            rows = await self._db.fetch(
                "SELECT group_id, name, frequency_minutes FROM categories WHERE group_id = $1",
                group_id,
            )
        return [
            CategoryFrequency(
                group_id=r["group_id"],
                name=r["name"],
                frequency_minutes=r["frequency_minutes"],
            )
            for r in rows
        ]

    async def upsert(self, category: CategoryFrequency) -> None:
        """Insert or update a category frequency (case-insensitive name)."""
        await self._db.execute(
            _UPSERT_CATEGORY_SQL,
            category.group_id,
            category.name,
            category.name.lower(),
            category.frequency_minutes,
        )
