"""Storage layer for the source store."""

from feed_poller.storage.database import Database

__all__ = ["Database"]
