"""
Poller service - wires the store, fetcher, delivery and scheduler.

Runs continuously until stopped, checking sources on their resolved
frequency and delivering new items.

Features:
- One shared parser pool, recycled by the resource governor
- Graceful shutdown, and a scheduled graceful restart (max_uptime_hours)
- One-off checks for a single source
- Health reporting
"""

import asyncio
from typing import Any

import structlog

from feed_poller.config.settings import get_settings
from feed_poller.delivery.config import DeliveryConfig
from feed_poller.delivery.notifier import Notifier
from feed_poller.delivery.transport import DeliveryTransport, WebhookTransport
from feed_poller.ingestion.fetcher import FeedFetcher
from feed_poller.ingestion.http_client import RetryConfig
from feed_poller.ingestion.parser_pool import ParserPool
from feed_poller.polling.backoff import BackoffCoordinator
from feed_poller.polling.checker import CheckOutcome, SourceChecker
from feed_poller.polling.config import PollingConfig
from feed_poller.polling.governor import ResourceGovernor
from feed_poller.polling.scheduler import PollScheduler
from feed_poller.polling.tracker import FailureTracker
from feed_poller.sources.repository import CategoryRepository, SourcesRepository
from feed_poller.storage.database import Database

logger = structlog.get_logger(__name__)


class PollerService:
    """
    Service that owns every polling component for one database.

    Usage:
        async with Database() as db:
            service = PollerService(db)
            await service.start()  # Runs until stopped
    """

    def __init__(
        self,
        database: Database,
        config: PollingConfig | None = None,
        transport: DeliveryTransport | None = None,
        group_id: str | None = None,
    ):
        settings = get_settings()
        self._config = config or PollingConfig()

        self.sources = SourcesRepository(database)
        self.categories = CategoryRepository(database)

        self.pool = ParserPool(
            retry_config=RetryConfig(
                max_retries=settings.max_http_retries,
                max_backoff_seconds=settings.max_backoff_seconds,
            ),
            timeout=self._config.fetch_timeout_seconds,
            user_agent=settings.http_user_agent,
        )
        self.fetcher = FeedFetcher(self.pool, timeout=self._config.fetch_timeout_seconds)
        self.transport = transport or WebhookTransport(DeliveryConfig())

        self.tracker = FailureTracker(self.sources, Notifier(self.transport), self._config)
        self.backoff = BackoffCoordinator(self.sources, self._config)
        self.governor = ResourceGovernor(
            self._config,
            sources=self.sources,
            pools=[self.pool],
            restart_fn=self.request_restart,
        )
        self._restart_task: asyncio.Task | None = None
        self.checker = SourceChecker(
            self.sources,
            self.fetcher,
            self.transport,
            self.tracker,
            self.backoff,
            self._config,
        )
        self.scheduler = PollScheduler(
            self.sources,
            self.categories,
            self.checker,
            self.governor,
            self._config,
            group_id=group_id,
        )
        self.tracker.on_disable = self.scheduler.remove

        logger.info(
            "Poller service initialized",
            group_id=group_id,
            batch_concurrency=self._config.batch_concurrency,
        )

    async def start(self) -> None:
        """Run the scheduler until stop() is called."""
        try:
            await self.scheduler.start()
        finally:
            await self.pool.close()
            logger.info("Poller service cleaned up")

    async def stop(self) -> None:
        await self.scheduler.stop()

    def request_restart(self) -> None:
        """
        Stop gracefully so the supervisor starts a fresh process.

        Called from inside a tick, so the stop runs as its own task: the
        scheduler waits for in-flight ticks, including the caller.
        """
        if self._restart_task is None:
            logger.info("Graceful restart requested")
            self._restart_task = asyncio.create_task(self.stop())

    @property
    def restart_requested(self) -> bool:
        return self._restart_task is not None

    async def check_once(self, source_id: str) -> CheckOutcome:
        """Check a single source immediately, outside the scheduler."""
        await self.scheduler.reconcile()
        try:
            return await self.checker.check(source_id)
        finally:
            await self.pool.close()

    @property
    def is_running(self) -> bool:
        return self.scheduler.is_running

    async def health_check(self) -> dict[str, Any]:
        return {
            "running": self.scheduler.is_running,
            "queue_size": self.scheduler.queue_size,
            "tick_in_progress": self.scheduler.tick_in_progress,
            "ticks": self.scheduler.tick_count,
            "parser_pool_generation": self.pool.generation,
            "parser_pool_leases": self.pool.active_leases,
            "uptime_seconds": int(self.governor.uptime.total_seconds()),
            "restart_requested": self.restart_requested,
        }
