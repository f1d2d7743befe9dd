"""
Process memory governor.

Sampled after every batch tick. Above the soft limit the shared parser
pools are recycled and a collection is forced. Above the hard limit the
process logs, flushes and exits with status 1 so the supervisor
restarts it: the parsed content is untrusted and variably sized, and a
clean restart beats an OOM kill mid-batch.

Between limits it only watches: a jump in RSS since the previous check
is logged as a warning, and usage is logged every few checks. With
max_uptime_hours set, the maintenance pass also requests a graceful
restart once the process has been up that long.
"""

import enum
import gc
import logging
import os
from collections.abc import Callable
from datetime import timedelta
from typing import Protocol

import psutil
import structlog

from feed_poller.observability.metrics import get_metrics
from feed_poller.polling.clock import Clock, utcnow
from feed_poller.polling.config import PollingConfig
from feed_poller.sources.repository import SourcesRepository

logger = structlog.get_logger(__name__)


class RecyclablePool(Protocol):
    async def recycle(self) -> None: ...


class GovernorAction(str, enum.Enum):
    CONTINUE = "continue"
    SOFT_CLEANUP = "soft_cleanup"
    HARD_EXIT = "hard_exit"


def decide(rss_mb: float, soft_limit_mb: float, hard_limit_mb: float) -> GovernorAction:
    """Map a sampled RSS onto an action. Limits are exclusive."""
    if rss_mb > hard_limit_mb:
        return GovernorAction.HARD_EXIT
    if rss_mb > soft_limit_mb:
        return GovernorAction.SOFT_CLEANUP
    return GovernorAction.CONTINUE


def sample_rss_mb() -> float:
    """Resident set size of this process in megabytes."""
    return psutil.Process(os.getpid()).memory_info().rss / (1024 * 1024)


class ResourceGovernor:
    """Applies decide() to the live process and runs periodic maintenance."""

    def __init__(
        self,
        config: PollingConfig,
        sources: SourcesRepository | None = None,
        pools: list[RecyclablePool] | None = None,
        sampler: Callable[[], float] = sample_rss_mb,
        exit_fn: Callable[[int], None] = os._exit,
        restart_fn: Callable[[], None] | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._config = config
        self._sources = sources
        self._pools: list[RecyclablePool] = list(pools or [])
        self._sampler = sampler
        self._exit_fn = exit_fn
        self._restart_fn = restart_fn
        self._clock = clock or utcnow
        self._metrics = get_metrics()

        self.started_at = self._clock()
        self.restart_requested = False
        self._checks = 0
        self._last_rss_mb: float | None = None

    def register_pool(self, pool: RecyclablePool) -> None:
        self._pools.append(pool)

    @property
    def uptime(self) -> timedelta:
        return self._clock() - self.started_at

    async def check(self, queue_size: int | None = None) -> GovernorAction:
        """Sample memory and act on it. Returns the action taken."""
        rss_mb = self._sampler()
        self._metrics.set_rss(rss_mb)
        self._log_usage(rss_mb, queue_size)
        action = decide(
            rss_mb,
            self._config.soft_memory_limit_mb,
            self._config.hard_memory_limit_mb,
        )

        if action == GovernorAction.HARD_EXIT:
            logger.critical(
                "RSS above hard limit, exiting for restart",
                rss_mb=round(rss_mb, 1),
                hard_limit_mb=self._config.hard_memory_limit_mb,
            )
            logging.shutdown()
            self._exit_fn(1)
        elif action == GovernorAction.SOFT_CLEANUP:
            logger.warning(
                "RSS above soft limit, recycling pools",
                rss_mb=round(rss_mb, 1),
                soft_limit_mb=self._config.soft_memory_limit_mb,
            )
            await self._recycle_pools()
            gc.collect()

        return action

    async def run_maintenance(self) -> int:
        """Prune expired failure events and recycle pools. Returns rows pruned."""
        pruned = 0
        if self._sources is not None:
            cutoff = self._clock() - timedelta(days=self._config.failure_retention_days)
            pruned = await self._sources.prune_failures(cutoff)

        await self._recycle_pools()
        gc.collect()
        logger.info("Maintenance pass complete", failures_pruned=pruned, pools=len(self._pools))
        self.check_uptime()
        return pruned

    def check_uptime(self) -> bool:
        """Request a restart once uptime reaches max_uptime_hours. Returns True if due."""
        limit = self._config.max_uptime_hours
        if limit is None:
            return False
        uptime = self.uptime
        if uptime < timedelta(hours=limit):
            return False
        if self.restart_requested:
            return True

        self.restart_requested = True
        logger.warning(
            "Uptime limit reached, restarting",
            uptime_hours=round(uptime.total_seconds() / 3600, 2),
            max_uptime_hours=limit,
        )
        if self._restart_fn is not None:
            self._restart_fn()
        else:
            logging.shutdown()
            self._exit_fn(0)
        return True

    def _log_usage(self, rss_mb: float, queue_size: int | None) -> None:
        self._checks += 1
        previous, self._last_rss_mb = self._last_rss_mb, rss_mb
        if previous is not None and rss_mb - previous > self._config.rss_growth_warn_mb:
            logger.warning(
                "High memory growth since last check",
                growth_mb=round(rss_mb - previous, 1),
                rss_mb=round(rss_mb, 1),
            )
        if self._checks % self._config.memory_log_every_ticks == 0:
            logger.info("Memory usage", rss_mb=round(rss_mb, 1), queue_size=queue_size)

    async def _recycle_pools(self) -> None:
        for pool in self._pools:
            try:
                await pool.recycle()
            except Exception as e:
                logger.error("Pool recycle failed", pool=type(pool).__name__, error=str(e))
