"""Long-running services."""

from feed_poller.services.poller_service import PollerService

__all__ = ["PollerService"]
