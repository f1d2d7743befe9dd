"""
Polling scheduler - the due-queue and its two timers.

Runs continuously:
- a reconcile loop syncing the in-memory queue with the source store
- a tick loop checking due sources in bounded-concurrency chunks

Features:
- Single-flight ticks (an overlapping tick is skipped, not queued)
- Per-source error isolation
- Stale-entry eviction and periodic maintenance
- Graceful shutdown
"""

import asyncio
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any

import structlog

from feed_poller.observability.logging import bind_context, clear_context
from feed_poller.observability.metrics import get_metrics
from feed_poller.polling.checker import CheckOutcome, SourceChecker
from feed_poller.polling.clock import Clock, utcnow
from feed_poller.polling.config import PollingConfig
from feed_poller.polling.frequency import resolve_frequency
from feed_poller.polling.governor import ResourceGovernor
from feed_poller.sources.repository import CategoryRepository, SourcesRepository
from feed_poller.sources.schemas import Source

logger = structlog.get_logger(__name__)


@dataclass
class ScheduleEntry:
    """A queued source and the earliest time it may be checked again."""

    source: Source
    next_check: datetime


@dataclass
class ReconcileResult:
    added: int
    removed: int
    total: int


class PollScheduler:
    """
    Owns the due-queue and category map and drives checks.

    The queue is mutated only from this object's coroutines, so no locks
    are needed beyond the single-flight tick flag.

    Usage:
        scheduler = PollScheduler(sources, categories, checker, governor, config)
        await scheduler.start()  # Runs until stop() is called
    """

    def __init__(
        self,
        sources: SourcesRepository,
        categories: CategoryRepository,
        checker: SourceChecker,
        governor: ResourceGovernor | None,
        config: PollingConfig,
        group_id: str | None = None,
        clock: Clock | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self._sources = sources
        self._categories = categories
        self._checker = checker
        self._governor = governor
        self._config = config
        self._group_id = group_id
        self._clock = clock or utcnow
        self._sleep = sleep
        self._metrics = get_metrics()

        self._queue: dict[str, ScheduleEntry] = {}
        self._category_frequencies: dict[tuple[str, str], int] = {}
        self._tick_running = False
        self._tick_count = 0
        self._running = False
        self._loop_tasks: list[asyncio.Task] = []
        self._tick_tasks: set[asyncio.Task] = set()

        checker.set_frequency_resolver(self.effective_frequency)

    # ── Queue state ─────────────────────────────────────

    @property
    def queue_size(self) -> int:
        return len(self._queue)

    @property
    def tick_count(self) -> int:
        return self._tick_count

    @property
    def is_running(self) -> bool:
        return self._running

    @property
    def tick_in_progress(self) -> bool:
        return self._tick_running

    def get_entry(self, source_id: str) -> ScheduleEntry | None:
        return self._queue.get(source_id)

    def source_ids(self) -> list[str]:
        return list(self._queue)

    def effective_frequency(self, source: Source) -> int:
        return resolve_frequency(source, self._category_frequencies, self._config)

    def due_source_ids(self, now: datetime) -> list[str]:
        """Ids whose next_check is at or before now, most overdue first."""
        due = [
            (entry.next_check, source_id)
            for source_id, entry in self._queue.items()
            if entry.next_check <= now
        ]
        due.sort()
        return [source_id for _, source_id in due]

    def remove(self, source_id: str) -> bool:
        """Drop a queue entry. Returns True if it was present."""
        removed = self._queue.pop(source_id, None) is not None
        if removed:
            logger.info("Source removed from queue", source_id=source_id)
            self._metrics.set_queue_size(len(self._queue))
        return removed

    def evict_stale(self, now: datetime) -> int:
        """Remove entries overdue by more than stale_entry_days."""
        threshold = timedelta(days=self._config.stale_entry_days)
        stale = [
            source_id
            for source_id, entry in self._queue.items()
            if now - entry.next_check > threshold
        ]
        for source_id in stale:
            del self._queue[source_id]
            logger.info("Evicted stale queue entry", source_id=source_id)
        if stale:
            self._metrics.set_queue_size(len(self._queue))
        return len(stale)

    # ── Reconciliation ──────────────────────────────────

    async def reconcile(self) -> ReconcileResult:
        """
        Sync the queue with the store.

        New sources are due immediately. Existing entries get a fresh
        source snapshot but keep their next_check. Entries no longer
        active in the store are dropped.
        """
        categories = await self._categories.list_category_frequencies(self._group_id)
        self._category_frequencies = {c.key: c.frequency_minutes for c in categories}

        active = await self._sources.list_active_sources(self._group_id)
        active_by_id = {s.id: s for s in active}

        removed = [source_id for source_id in self._queue if source_id not in active_by_id]
        for source_id in removed:
            del self._queue[source_id]

        now = self._clock()
        added = 0
        for source in active:
            entry = self._queue.get(source.id)
            if entry is None:
                self._queue[source.id] = ScheduleEntry(source=source, next_check=now)
                added += 1
            else:
                entry.source = source

        total = len(self._queue)
        self._metrics.set_queue_size(total)
        if total > self._config.max_queue_size:
            self._metrics.queue_overflows.inc()
            logger.error(
                "Queue size above limit",
                size=total,
                limit=self._config.max_queue_size,
            )

        logger.info(
            "Queue reconciled",
            added=added,
            removed=len(removed),
            total=total,
            categories=len(self._category_frequencies),
        )
        return ReconcileResult(added=added, removed=len(removed), total=total)

    # ── Ticks ───────────────────────────────────────────

    async def run_tick(self) -> int:
        """
        Check every due source. Returns the number of sources checked.

        Returns 0 immediately when another tick is still running.
        """
        if self._tick_running:
            self._metrics.ticks_skipped.inc()
            logger.debug("Previous tick still running, skipping")
            return 0

        self._tick_running = True
        start = time.perf_counter()
        try:
            due = self.due_source_ids(self._clock())
            size = self._config.batch_concurrency
            chunks = [due[i : i + size] for i in range(0, len(due), size)]

            for index, chunk in enumerate(chunks):
                if index > 0 and self._config.chunk_pause_seconds > 0:
                    await self._sleep(self._config.chunk_pause_seconds)
                results = await asyncio.gather(
                    *(self._check_one(source_id) for source_id in chunk),
                    return_exceptions=True,
                )
                for source_id, result in zip(chunk, results):
                    if isinstance(result, BaseException):
                        logger.error(
                            "Unhandled error in source check",
                            source_id=source_id,
                            error=str(result),
                        )

            self._tick_count += 1
            await self._after_tick()

            if due:
                logger.info(
                    "Tick complete",
                    checked=len(due),
                    chunks=len(chunks),
                    elapsed_seconds=round(time.perf_counter() - start, 2),
                )
            return len(due)
        finally:
            self._tick_running = False
            self._metrics.tick_duration.observe(time.perf_counter() - start)
            self._metrics.set_queue_size(len(self._queue))

    async def _check_one(self, source_id: str) -> CheckOutcome:
        bind_context(source_id=source_id)
        try:
            outcome = await self._checker.check(source_id)
        except Exception as e:
            logger.error("Source check error", source_id=source_id, error=str(e))
            outcome = CheckOutcome.FAILED
        self._reschedule(source_id, outcome)
        return outcome

    def _reschedule(self, source_id: str, outcome: CheckOutcome) -> None:
        entry = self._queue.get(source_id)
        if entry is None:
            return

        if outcome in (CheckOutcome.REMOVED, CheckOutcome.DISABLED):
            self.remove(source_id)
            return

        now = self._clock()
        if outcome == CheckOutcome.FAILED:
            entry.next_check = now + timedelta(minutes=self._config.retry_delay_minutes)
        else:
            entry.next_check = now + timedelta(minutes=self.effective_frequency(entry.source))

    async def _after_tick(self) -> None:
        if self._governor is not None:
            await self._governor.check(queue_size=len(self._queue))

        if self._tick_count % self._config.stale_check_every_ticks == 0:
            self.evict_stale(self._clock())

        if self._governor is not None and self._tick_count % self._config.maintenance_every_ticks == 0:
            try:
                await self._governor.run_maintenance()
            except Exception as e:
                logger.error("Maintenance pass failed", error=str(e))

    # ── Lifecycle ───────────────────────────────────────

    async def start(self) -> None:
        """
        Reconcile once, then run both timers until stop() is called.
        """
        self._running = True
        logger.info(
            "Starting poll scheduler",
            tick_interval=self._config.tick_interval_seconds,
            reconcile_interval=self._config.reconcile_interval_seconds,
            group_id=self._group_id,
        )

        try:
            await self.reconcile()
        except Exception as e:
            logger.error("Initial reconciliation failed", error=str(e))

        self._loop_tasks = [
            asyncio.create_task(self._reconcile_loop(), name="reconcile_loop"),
            asyncio.create_task(self._tick_loop(), name="tick_loop"),
        ]
        try:
            await asyncio.gather(*self._loop_tasks, return_exceptions=True)
        except asyncio.CancelledError:
            logger.info("Poll scheduler cancelled")

    async def stop(self) -> None:
        """Stop timers and wait for an in-flight tick to finish."""
        logger.info("Stopping poll scheduler")
        self._running = False

        for task in self._loop_tasks:
            task.cancel()
        if self._loop_tasks:
            await asyncio.gather(*self._loop_tasks, return_exceptions=True)
        self._loop_tasks.clear()

        if self._tick_tasks:
            await asyncio.gather(*self._tick_tasks, return_exceptions=True)

    async def _reconcile_loop(self) -> None:
        while self._running:
            await asyncio.sleep(self._config.reconcile_interval_seconds)
            try:
                await self.reconcile()
            except asyncio.CancelledError:
                raise
            except Exception as e:
                logger.error("Reconciliation failed", error=str(e))

    async def _tick_loop(self) -> None:
        while self._running:
            # Overlapping ticks are skipped by run_tick's single-flight flag
            task = asyncio.create_task(self._safe_tick())
            self._tick_tasks.add(task)
            task.add_done_callback(self._tick_tasks.discard)
            await asyncio.sleep(self._config.tick_interval_seconds)

    async def _safe_tick(self) -> None:
        bind_context(tick=self._tick_count + 1)
        try:
            await self.run_tick()
        except Exception as e:
            logger.error("Tick failed", error=str(e))
        finally:
            clear_context()
