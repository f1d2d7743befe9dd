"""
Single-source check: fetch, dedup, deliver, and route the result.

The checker reloads the source before acting, so flags edited in the
store (disabled, ignore_errors, overrides) take effect on the very next
check even if the scheduler's snapshot is older.
"""

import enum
import time
from collections.abc import Callable

import structlog

from feed_poller.delivery.schemas import DeliveryError, DeliveryResult
from feed_poller.delivery.transport import DeliveryTransport
from feed_poller.ingestion.fetcher import FeedFetcher, FeedParseError, FetchError
from feed_poller.ingestion.schemas import FeedItem
from feed_poller.observability.metrics import get_metrics
from feed_poller.polling.backoff import BackoffCoordinator
from feed_poller.polling.clock import Clock, utcnow
from feed_poller.polling.config import PollingConfig
from feed_poller.polling.dedup import find_new_items, merge_recent_links
from feed_poller.polling.tracker import FailureTracker
from feed_poller.sources.repository import SourcesRepository
from feed_poller.sources.schemas import ErrorClass, Source

logger = structlog.get_logger(__name__)


class CheckOutcome(str, enum.Enum):
    SUCCESS = "success"
    SKIPPED_BACKOFF = "skipped_backoff"
    FAILED = "failed"
    DISABLED = "disabled"
    REMOVED = "removed"


class SourceChecker:
    """Runs one check of one source against its collaborators."""

    def __init__(
        self,
        sources: SourcesRepository,
        fetcher: FeedFetcher,
        transport: DeliveryTransport,
        tracker: FailureTracker,
        backoff: BackoffCoordinator,
        config: PollingConfig,
        frequency_for: Callable[[Source], int] | None = None,
        clock: Clock | None = None,
    ) -> None:
        self._sources = sources
        self._fetcher = fetcher
        self._transport = transport
        self._tracker = tracker
        self._backoff = backoff
        self._config = config
        self._frequency_for = frequency_for
        self._clock = clock or utcnow
        self._metrics = get_metrics()

    def set_frequency_resolver(self, frequency_for: Callable[[Source], int]) -> None:
        self._frequency_for = frequency_for

    async def check(self, source_id: str) -> CheckOutcome:
        outcome = await self._check(source_id)
        self._metrics.record_check(outcome.value)
        return outcome

    async def _check(self, source_id: str) -> CheckOutcome:
        source = await self._sources.get_source(source_id)
        if source is None:
            logger.info("Source no longer exists", source_id=source_id)
            return CheckOutcome.REMOVED
        if source.disabled:
            return CheckOutcome.DISABLED

        now = self._clock()
        if source.backoff_until is not None and source.backoff_until > now:
            logger.debug(
                "Source in backoff, skipping",
                source_id=source_id,
                backoff_until=source.backoff_until.isoformat(),
            )
            return CheckOutcome.SKIPPED_BACKOFF

        start = time.perf_counter()
        try:
            result = await self._fetcher.fetch(source.url)
        except FetchError as e:
            stage = "parse" if isinstance(e, FeedParseError) else "fetch"
            return await self._fail(source, str(e), e.error_class, stage)
        except Exception as e:
            logger.exception("Unexpected fetch error", source_id=source.id)
            message = f"{type(e).__name__}: {e}"
            return await self._fail(source, message, ErrorClass.TRANSIENT, "fetch")
        finally:
            self._metrics.fetch_latency.observe(time.perf_counter() - start)

        await self._sources.update_last_checked(source.id, now)

        dedup = find_new_items(
            result.items,
            source.last_item_id,
            source.recent_links,
            now,
            max_age_hours=self._config.max_item_age_hours,
            max_new_items=self._config.max_new_items,
        )

        # Last-seen id is persisted before delivery, never after.
        if dedup.changed:
            await self._sources.update_identity(
                source.id, dedup.last_item_id, source.recent_links
            )

        if not dedup.new_items:
            await self._tracker.record_success(source)
            return CheckOutcome.SUCCESS

        logger.info("New items found", source_id=source.id, count=len(dedup.new_items))
        delivery = await self._deliver(source, dedup.new_items)
        self._metrics.record_delivery(delivery.sent)

        if delivery.delivered_links:
            merged = merge_recent_links(
                list(reversed(delivery.delivered_links)),
                source.recent_links,
                self._config.recent_links_capacity,
            )
            await self._sources.update_identity(source.id, dedup.last_item_id, merged)

        if delivery.destination_gone:
            logger.warning(
                "Destination gone, deleting source",
                source_id=source.id,
                destination=source.destination,
            )
            await self._sources.delete_source(source.id)
            return CheckOutcome.REMOVED

        if delivery.ok:
            await self._tracker.record_success(source)
            return CheckOutcome.SUCCESS

        first = self._first_error(delivery)
        error_class = (
            ErrorClass.DELIVERY_PERMISSION
            if delivery.permission_denied
            else ErrorClass.DELIVERY
        )
        message = f"Delivered {delivery.sent}/{len(dedup.new_items)} items: {first.message}"
        return await self._fail(source, message, error_class, "deliver")

    async def _deliver(self, source: Source, items: list[FeedItem]) -> DeliveryResult:
        try:
            return await self._transport.deliver(source.destination, items)
        except Exception as e:
            logger.error("Delivery raised", source_id=source.id, error=str(e))
            return DeliveryResult(errors=[DeliveryError(kind="transient", message=str(e))])

    @staticmethod
    def _first_error(delivery: DeliveryResult) -> DeliveryError:
        for error in delivery.errors:
            if error.kind == "permission":
                return error
        return delivery.errors[0]

    async def _fail(
        self,
        source: Source,
        message: str,
        error_class: ErrorClass,
        stage: str,
    ) -> CheckOutcome:
        frequency = self._frequency_for(source) if self._frequency_for else None
        outcome = await self._tracker.record_failure(
            source,
            message,
            error_class,
            stage=stage,
            effective_frequency=frequency,
        )
        if outcome.disabled:
            return CheckOutcome.DISABLED

        await self._backoff.apply(source, outcome.consecutive_failures)
        return CheckOutcome.FAILED
