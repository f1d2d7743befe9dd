"""Pydantic models for fetched feed content."""

from datetime import datetime

from pydantic import BaseModel, Field


class FeedItem(BaseModel):
    """
    A single item parsed from a syndication feed.

    Identity for dedup is ``guid`` when present, otherwise ``link``.
    ``published_at`` is None when the feed gave no parseable timestamp;
    such items are never filtered by age.
    """

    guid: str | None = Field(default=None, description="Item guid/id element")
    link: str | None = Field(default=None, description="Item permalink")
    title: str = Field(default="", description="Item title")
    published_at: datetime | None = Field(
        default=None, description="Published or updated time (UTC)"
    )
    body: str | None = Field(default=None, description="Summary or content")
    author: str | None = None
    comments: str | None = Field(default=None, description="Comments URL")

    @property
    def identity(self) -> str | None:
        """Stable identifier: guid if present, else link."""
        return self.guid or self.link or None


class FetchResult(BaseModel):
    """Parsed feed: title plus items in feed order (newest first)."""

    url: str
    title: str | None = None
    items: list[FeedItem] = Field(default_factory=list)

    @property
    def item_count(self) -> int:
        return len(self.items)
