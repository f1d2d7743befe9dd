"""Effective polling frequency resolution."""

from collections.abc import Mapping

from feed_poller.polling.config import PollingConfig
from feed_poller.sources.schemas import Source


def clamp_frequency(minutes: int, config: PollingConfig) -> int:
    return max(config.min_frequency_minutes, min(config.max_frequency_minutes, minutes))


def resolve_frequency(
    source: Source,
    category_frequencies: Mapping[tuple[str, str], int],
    config: PollingConfig,
) -> int:
    """
    Resolve a source's effective frequency in minutes.

    Precedence: a positive per-source override, then the frequency of the
    source's category within its group (case-insensitive), then the
    global default. The result is always clamped to
    [min_frequency_minutes, max_frequency_minutes].

    Args:
        source: Source to resolve
        category_frequencies: Map of (group_id, lowercased name) -> minutes
        config: Polling configuration

    Returns:
        Effective frequency in minutes
    """
    override = source.frequency_override_minutes
    if override is not None and override > 0:
        return clamp_frequency(override, config)

    if source.category:
        category_minutes = category_frequencies.get(
            (source.group_id, source.category.lower())
        )
        if category_minutes is not None:
            return clamp_frequency(category_minutes, config)

    return clamp_frequency(config.default_frequency_minutes, config)
