"""Tests for the asyncpg pool wrapper."""

from contextlib import asynccontextmanager
from unittest.mock import AsyncMock, MagicMock, patch

import asyncpg
import pytest

from feed_poller.storage.database import Database


def _pool_with(conn: MagicMock) -> MagicMock:
    @asynccontextmanager
    async def acquire():
        yield conn

    pool = MagicMock()
    pool.acquire = acquire
    pool.close = AsyncMock()
    return pool


@pytest.fixture
def conn() -> MagicMock:
    conn = MagicMock()
    conn.execute = AsyncMock(return_value="UPDATE 1")
    conn.fetchval = AsyncMock(return_value=1)
    conn.events = []

    @asynccontextmanager
    async def transaction():
        conn.events.append("begin")
        try:
            yield
        except BaseException:
            conn.events.append("rollback")
            raise
        conn.events.append("commit")

    conn.transaction = transaction
    return conn


class TestDatabase:
    @pytest.mark.asyncio
    async def test_connect_sets_utc_session(self):
        pool = _pool_with(MagicMock())
        with patch(
            "feed_poller.storage.database.asyncpg.create_pool",
            AsyncMock(return_value=pool),
        ) as create_pool:
            db = Database("postgresql://u:p@localhost/feeds", command_timeout=5)
            await db.connect()
            await db.connect()

        create_pool.assert_awaited_once()
        kwargs = create_pool.await_args.kwargs
        assert kwargs["command_timeout"] == 5
        assert kwargs["server_settings"]["timezone"] == "UTC"
        assert kwargs["server_settings"]["application_name"] == "feed-poller"
        assert db.is_connected

        await db.close()
        pool.close.assert_awaited_once()
        assert not db.is_connected

    def test_pool_requires_connect(self):
        with pytest.raises(RuntimeError, match="not connected"):
            Database("postgresql://localhost/feeds").pool

    @pytest.mark.asyncio
    async def test_transaction_commits(self, conn):
        db = Database("postgresql://localhost/feeds")
        db._pool = _pool_with(conn)

        async with db.transaction() as tx:
            await tx.execute("DELETE FROM source_failures WHERE source_id = $1", "s")
            await tx.execute("UPDATE sources SET consecutive_failures = 0")

        assert conn.events == ["begin", "commit"]
        assert conn.execute.await_count == 2

    @pytest.mark.asyncio
    async def test_transaction_rolls_back_on_error(self, conn):
        db = Database("postgresql://localhost/feeds")
        db._pool = _pool_with(conn)

        with pytest.raises(ValueError):
            async with db.transaction() as tx:
                await tx.execute("DELETE FROM source_failures WHERE source_id = $1", "s")
                raise ValueError("second statement failed")

        assert conn.events == ["begin", "rollback"]

    @pytest.mark.asyncio
    async def test_health_check(self, conn):
        db = Database("postgresql://localhost/feeds")
        assert await db.health_check() is False

        db._pool = _pool_with(conn)
        assert await db.health_check() is True

        conn.fetchval.side_effect = asyncpg.PostgresError("down")
        assert await db.health_check() is False
