"""Tests for new-item detection and the recent-links set."""

from datetime import timedelta

from feed_poller.ingestion.schemas import FeedItem
from feed_poller.polling.dedup import find_new_items, merge_recent_links


class TestFindNewItems:
    def test_first_poll_delivers_only_newest(self, clock, make_item):
        items = [make_item(0), make_item(1), make_item(2)]

        result = find_new_items(items, None, [], clock())

        assert [i.guid for i in result.new_items] == ["item-0"]
        assert result.last_item_id == "item-0"
        assert result.changed is True

    def test_stops_at_last_seen_and_orders_oldest_first(self, clock, make_item):
        items = [make_item(0), make_item(1), make_item(2), make_item(3)]

        result = find_new_items(items, "item-2", [], clock())

        assert [i.guid for i in result.new_items] == ["item-1", "item-0"]
        assert result.last_item_id == "item-0"

    def test_nothing_new(self, clock, make_item):
        items = [make_item(0), make_item(1)]

        result = find_new_items(items, "item-0", ["https://example.com/0"], clock())

        assert result.new_items == []
        assert result.changed is False
        assert result.last_item_id == "item-0"

    def test_recent_link_skipped_but_walk_continues(self, clock, make_item):
        # item-0 was republished under a new guid with an already delivered link
        items = [
            make_item(0, guid="republished", link="https://example.com/old"),
            make_item(1),
            make_item(2),
        ]

        result = find_new_items(items, "item-2", ["https://example.com/old"], clock())

        assert [i.guid for i in result.new_items] == ["item-1"]
        assert result.last_item_id == "republished"

    def test_old_items_filtered(self, clock, make_item):
        items = [make_item(0, hours_old=1), make_item(1, hours_old=30)]

        result = find_new_items(items, "item-9", [], clock(), max_age_hours=24)

        assert [i.guid for i in result.new_items] == ["item-0"]

    def test_items_without_timestamp_never_filtered(self, clock, make_item):
        items = [make_item(0, published_at=None)]

        result = find_new_items(items, "item-9", [], clock(), max_age_hours=1)

        assert len(result.new_items) == 1

    def test_unidentifiable_items_skipped(self, clock):
        items = [
            FeedItem(title="no id", published_at=clock() - timedelta(minutes=5)),
            FeedItem(guid="g1", link="https://example.com/g1", published_at=clock()),
        ]

        result = find_new_items(items, "g0", [], clock())

        assert [i.guid for i in result.new_items] == ["g1"]
        # index 0 had no identity, so the last-seen id is kept
        assert result.last_item_id == "g0"
        assert result.changed is False

    def test_link_used_when_guid_missing(self, clock, make_item):
        items = [make_item(0, guid=None), make_item(1, guid=None)]

        result = find_new_items(items, "https://example.com/1", [], clock())

        assert [i.link for i in result.new_items] == ["https://example.com/0"]
        assert result.last_item_id == "https://example.com/0"

    def test_caps_new_items(self, clock, make_item):
        items = [make_item(n) for n in range(10)]

        result = find_new_items(items, "unknown", [], clock(), max_new_items=5)

        assert [i.guid for i in result.new_items] == [
            "item-4", "item-3", "item-2", "item-1", "item-0",
        ]


class TestMergeRecentLinks:
    def test_new_first_and_deduplicated(self):
        merged = merge_recent_links(["a", "b"], ["b", "c"], 5)
        assert merged == ["a", "b", "c"]

    def test_truncated_to_capacity(self):
        merged = merge_recent_links(["a", "b", "c"], ["d", "e", "f"], 5)
        assert merged == ["a", "b", "c", "d", "e"]

    def test_empty_links_dropped(self):
        assert merge_recent_links(["", "a"], [], 5) == ["a"]
