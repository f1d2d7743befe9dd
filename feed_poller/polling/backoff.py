"""
Exponential backoff with category coordination.

A failing source backs off exponentially. Sources sharing its
(group_id, category) usually share an origin too, so they are pushed
back by a fraction of the same delay. A sibling's backoff is only ever
extended, never shortened.
"""

import math
from dataclasses import dataclass, field
from datetime import datetime, timedelta

import structlog

from feed_poller.polling.clock import Clock, utcnow
from feed_poller.polling.config import PollingConfig
from feed_poller.sources.repository import SourcesRepository
from feed_poller.sources.schemas import Source

logger = structlog.get_logger(__name__)


def compute_backoff_minutes(failures: int, base_minutes: int, cap_minutes: int) -> int:
    """min(base * 2^failures, cap). Non-decreasing in failures."""
    if failures < 0:
        failures = 0
    # Past this exponent every value is above any sane cap
    if failures > 32:
        return cap_minutes
    return min(base_minutes * (2**failures), cap_minutes)


def compute_coordinated_minutes(backoff_minutes: int, factor: float) -> int:
    return math.floor(backoff_minutes * factor)


@dataclass
class BackoffDecision:
    """What apply() did to the failing source and its siblings."""

    source_id: str
    backoff_minutes: int
    backoff_until: datetime
    coordinated_minutes: int = 0
    updated_siblings: list[str] = field(default_factory=list)


class BackoffCoordinator:
    """Applies backoff to a failing source and coordinates its siblings."""

    def __init__(
        self,
        sources: SourcesRepository,
        config: PollingConfig,
        clock: Clock | None = None,
    ) -> None:
        self._sources = sources
        self._config = config
        self._clock = clock or utcnow

    async def apply(self, source: Source, failures: int) -> BackoffDecision:
        """
        Set backoff for a source after its ``failures``-th failure.

        Args:
            source: The failing source
            failures: Consecutive failure count, including this failure

        Returns:
            BackoffDecision describing every update made
        """
        now = self._clock()
        minutes = compute_backoff_minutes(
            failures,
            self._config.backoff_base_minutes,
            self._config.backoff_cap_minutes,
        )
        until = now + timedelta(minutes=minutes)
        await self._sources.set_backoff_until(source.id, until)

        decision = BackoffDecision(
            source_id=source.id,
            backoff_minutes=minutes,
            backoff_until=until,
        )

        if not source.category:
            logger.info(
                "Backoff applied",
                source_id=source.id,
                failures=failures,
                backoff_minutes=minutes,
            )
            return decision

        coordinated = compute_coordinated_minutes(minutes, self._config.coordination_factor)
        decision.coordinated_minutes = coordinated
        if coordinated > 0:
            sibling_until = now + timedelta(minutes=coordinated)
            siblings = await self._sources.get_sibling_sources_in_category(
                source.group_id, source.category, source.id
            )
            for sibling in siblings:
                if sibling.backoff_until is None or sibling.backoff_until < sibling_until:
                    await self._sources.set_backoff_until(sibling.id, sibling_until)
                    decision.updated_siblings.append(sibling.id)

        logger.info(
            "Backoff applied with category coordination",
            source_id=source.id,
            category=source.category,
            failures=failures,
            backoff_minutes=minutes,
            coordinated_minutes=coordinated,
            siblings_updated=len(decision.updated_siblings),
        )
        return decision
