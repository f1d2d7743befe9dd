"""
PostgreSQL connection management for the source store.

Wraps an asyncpg pool. Repositories receive a Database and mostly use
execute/fetch/fetchrow/fetchval, which keeps them easy to mock; writes
that must land together go through transaction().

Every session runs in UTC so TIMESTAMPTZ values round-trip as aware
UTC datetimes, matching the scheduler's clock.
"""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager
from types import TracebackType
from typing import Any

import asyncpg

from feed_poller.config.settings import get_settings

logger = logging.getLogger(__name__)


class Database:
    """
    Async PostgreSQL pool for the sources, failure log and categories.

    Usage:
        async with Database() as db:
            repo = SourcesRepository(db)
            sources = await repo.list_active_sources()

        async with db.transaction() as conn:
            await conn.execute("DELETE FROM source_failures WHERE ...")
            await conn.execute("UPDATE sources SET ...")
    """

    def __init__(
        self,
        database_url: str | None = None,
        min_size: int | None = None,
        max_size: int | None = None,
        command_timeout: float | None = None,
    ):
        settings = get_settings()

        self._database_url = database_url or str(settings.database_url)
        self._min_size = min_size or settings.db_pool_min_size
        self._max_size = max_size or settings.db_pool_max_size
        self._command_timeout = command_timeout or settings.db_command_timeout_seconds
        self._application_name = settings.db_application_name

        self._pool: asyncpg.Pool | None = None

    @property
    def is_connected(self) -> bool:
        return self._pool is not None

    async def connect(self) -> None:
        """Create the connection pool. Calling it twice is a no-op."""
        if self._pool is not None:
            return
        try:
            self._pool = await asyncpg.create_pool(
                self._database_url,
                min_size=self._min_size,
                max_size=self._max_size,
                command_timeout=self._command_timeout,
                server_settings={
                    "application_name": self._application_name,
                    "timezone": "UTC",
                },
            )
        except (OSError, asyncpg.PostgresError) as e:
            logger.error("Failed to connect to database: %s", e)
            raise
        logger.info(
            "Database connected as %s (pool: %d-%d, command timeout %.0fs)",
            self._application_name,
            self._min_size,
            self._max_size,
            self._command_timeout,
        )

    async def close(self) -> None:
        """Close the connection pool."""
        if self._pool:
            await self._pool.close()
            self._pool = None
            logger.info("Database connection closed")

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(
        self,
        exc_type: type[BaseException] | None,
        exc_val: BaseException | None,
        exc_tb: TracebackType | None,
    ) -> None:
        await self.close()

    @property
    def pool(self) -> asyncpg.Pool:
        """Get connection pool, raising if not connected."""
        if self._pool is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._pool

    @asynccontextmanager
    async def acquire(self) -> AsyncIterator[asyncpg.Connection]:
        async with self.pool.acquire() as conn:
            yield conn

    @asynccontextmanager
    async def transaction(self) -> AsyncIterator[asyncpg.Connection]:
        """Yield a connection inside a transaction; commits on clean exit."""
        async with self.pool.acquire() as conn:
            async with conn.transaction():
                yield conn

    async def execute(self, query: str, *args: Any) -> str:
        """Run a statement and return the status string (e.g. "UPDATE 1")."""
        async with self.acquire() as conn:
            return await conn.execute(query, *args)

    async def fetch(self, query: str, *args: Any) -> list[asyncpg.Record]:
        async with self.acquire() as conn:
            return await conn.fetch(query, *args)

    async def fetchrow(self, query: str, *args: Any) -> asyncpg.Record | None:
        async with self.acquire() as conn:
            return await conn.fetchrow(query, *args)

    async def fetchval(self, query: str, *args: Any) -> Any:
        async with self.acquire() as conn:
            return await conn.fetchval(query, *args)

    async def health_check(self) -> bool:
        """Return True if the pool is up and answers a trivial query."""
        if self._pool is None:
            return False
        try:
            return await self.fetchval("SELECT 1") == 1
        except (OSError, asyncpg.PostgresError) as e:
            logger.warning("Database health check failed: %s", e)
            return False
