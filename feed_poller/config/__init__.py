"""Application-wide configuration."""

from feed_poller.config.settings import Settings, get_settings

__all__ = ["Settings", "get_settings"]
