"""Bounded-lifetime pool for the shared feed HTTP client."""

import logging
from collections.abc import AsyncIterator
from contextlib import asynccontextmanager

from feed_poller.ingestion.http_client import HTTPClient, RetryConfig

logger = logging.getLogger(__name__)


class ParserPool:
    """
    Owns the long-lived HTTPClient used by every feed fetch.

    The client's connection pool and buffers grow over a long run, so the
    pool is rotated: after ``max_uses`` leases, or on demand via recycle()
    (the resource governor calls it under memory pressure and during
    maintenance). Rotation retires the current client; a retired client
    is closed once its last outstanding lease is released, so fetches
    already in flight finish on the client they started with.

    Usage:
        async with pool.lease() as client:
            response = await client.get(url)
    """

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        timeout: float = 30.0,
        user_agent: str | None = None,
        max_uses: int = 1000,
    ):
        self._retry_config = retry_config
        self._timeout = timeout
        self._user_agent = user_agent
        self._max_uses = max_uses
        self._client: HTTPClient | None = None
        self._uses = 0
        self._leases: dict[HTTPClient, int] = {}
        self._retired: set[HTTPClient] = set()
        self.generation = 0

    @property
    def uses(self) -> int:
        return self._uses

    @property
    def active_leases(self) -> int:
        return sum(self._leases.values())

    @property
    def retired_count(self) -> int:
        return len(self._retired)

    @asynccontextmanager
    async def lease(self) -> AsyncIterator[HTTPClient]:
        """Borrow the current client for the duration of one fetch."""
        client = await self._checkout()
        try:
            yield client
        finally:
            await self._release(client)

    async def _checkout(self) -> HTTPClient:
        if self._client is not None and self._max_uses and self._uses >= self._max_uses:
            logger.debug("Parser pool reached %d uses, rotating", self._uses)
            await self.recycle()

        if self._client is None:
            self._client = HTTPClient(
                retry_config=self._retry_config,
                timeout=self._timeout,
                user_agent=self._user_agent,
            )
            await self._client.open()

        client = self._client
        self._uses += 1
        self._leases[client] = self._leases.get(client, 0) + 1
        return client

    async def _release(self, client: HTTPClient) -> None:
        remaining = self._leases.get(client, 0) - 1
        if remaining > 0:
            self._leases[client] = remaining
            return

        self._leases.pop(client, None)
        if client in self._retired:
            self._retired.discard(client)
            await client.aclose()
            logger.debug("Closed retired parser client")

    async def recycle(self) -> None:
        """Rotate to a fresh client for the next fetch."""
        client, self._client = self._client, None
        if client is not None:
            if self._leases.get(client):
                self._retired.add(client)
            else:
                await client.aclose()
        self._uses = 0
        self.generation += 1
        logger.info(
            "Parser pool recycled (generation %d, %d retired clients draining)",
            self.generation,
            len(self._retired),
        )

    async def close(self) -> None:
        """Close every client, leased or not. Used at shutdown."""
        clients = set(self._retired)
        if self._client is not None:
            clients.add(self._client)
        self._client = None
        self._retired.clear()
        self._leases.clear()
        for client in clients:
            await client.aclose()
