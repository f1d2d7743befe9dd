"""
New-item detection for a polled feed.

Two guards are combined:
- the last-seen item id (guid, else link) stops the walk at known items
- a small recent-links set catches items republished under a new guid
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta

from feed_poller.ingestion.schemas import FeedItem


@dataclass
class DedupResult:
    """Outcome of dedup for one fetch.

    Attributes:
        new_items: Items to deliver, oldest first.
        last_item_id: Identity of the newest item, or the previous value
            when the newest item could not be identified.
        changed: True when last_item_id differs from the previous value.

    The recent-links set is only extended with links that were actually
    delivered, so merging happens after delivery (merge_recent_links).
    """

    new_items: list[FeedItem] = field(default_factory=list)
    last_item_id: str | None = None
    changed: bool = False


def merge_recent_links(
    new_links: list[str],
    recent_links: list[str],
    capacity: int,
) -> list[str]:
    """Prepend new links, drop duplicates keeping first occurrence, truncate."""
    merged: list[str] = []
    seen: set[str] = set()
    for link in [*new_links, *recent_links]:
        if link and link not in seen:
            seen.add(link)
            merged.append(link)
    return merged[:capacity]


def find_new_items(
    items: list[FeedItem],
    last_item_id: str | None,
    recent_links: list[str],
    now: datetime,
    max_age_hours: int = 24,
    max_new_items: int = 5,
) -> DedupResult:
    """
    Select the items of a newest-first feed that have not been delivered.

    Walks newest to oldest. Items older than the age cutoff, and items
    with neither guid nor link, are skipped. The identity of the item at
    index 0 becomes the next last-seen id. The walk stops at the previous
    last-seen id; on a first-ever poll it stops after index 0, so a new
    source delivers only its most recent item. Items whose link is in the
    recent-links set are skipped. At most ``max_new_items`` are accepted.

    Args:
        items: Parsed items, newest first
        last_item_id: Previously stored last-seen id (None on first poll)
        recent_links: Previously delivered links, newest first
        now: Current time (timezone-aware)
        max_age_hours: Age cutoff; items without a timestamp are never filtered
        max_new_items: Cap on accepted items

    Returns:
        DedupResult with accepted items oldest-first
    """
    cutoff = now - timedelta(hours=max_age_hours)
    known_links = set(recent_links)
    candidate: str | None = None
    accepted: list[FeedItem] = []

    for index, item in enumerate(items):
        if item.published_at is not None and item.published_at < cutoff:
            continue

        identity = item.identity
        if not identity:
            continue

        if index == 0:
            candidate = identity

        if last_item_id and identity == last_item_id:
            break

        if not last_item_id and index > 0:
            break

        if item.link and item.link in known_links:
            continue

        accepted.append(item)
        if len(accepted) >= max_new_items:
            break

    accepted.reverse()

    new_last_id = last_item_id
    changed = False
    if candidate and candidate != last_item_id:
        new_last_id = candidate
        changed = True

    return DedupResult(
        new_items=accepted,
        last_item_id=new_last_id,
        changed=changed,
    )
