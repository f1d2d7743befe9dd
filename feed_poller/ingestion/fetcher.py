"""
Feed fetcher: download a syndication feed and parse it into FeedItems.

Handles:
- RSS/Atom parsing via feedparser
- Timestamp extraction from published/updated fields
- Mapping transport failures onto the FetchError hierarchy, each
  carrying the ErrorClass the failure tracker records
"""

import asyncio
import calendar
import logging
import time
from datetime import datetime, timezone
from typing import Any

import feedparser
import httpx

from feed_poller.ingestion.http_client import HTTPClientError
from feed_poller.ingestion.parser_pool import ParserPool
from feed_poller.ingestion.schemas import FeedItem, FetchResult
from feed_poller.sources.schemas import ErrorClass

logger = logging.getLogger(__name__)


def classify_status(status_code: int) -> ErrorClass:
    """
    Map an HTTP status to an error class.

    408 and 429 are transient; other 4xx are client errors (candidate
    dead feeds); 5xx are server errors.
    """
    if status_code in (408, 429):
        return ErrorClass.TRANSIENT
    if 400 <= status_code < 500:
        return ErrorClass.CLIENT
    if status_code >= 500:
        return ErrorClass.SERVER
    return ErrorClass.TRANSIENT


class FetchError(Exception):
    """Base exception for feed fetch failures. Transient unless overridden."""

    @property
    def error_class(self) -> ErrorClass:
        return ErrorClass.TRANSIENT


class FeedHTTPError(FetchError):
    """Origin answered with an error status."""

    def __init__(self, message: str, status_code: int):
        super().__init__(message)
        self.status_code = status_code

    @property
    def error_class(self) -> ErrorClass:
        return classify_status(self.status_code)


class FeedParseError(FetchError):
    """Response body could not be parsed as a feed."""


class FeedTimeoutError(FetchError):
    """Fetch exceeded its time ceiling."""


class FeedURLError(FetchError):
    """Feed URL cannot be requested at all. Counts as a client error."""

    @property
    def error_class(self) -> ErrorClass:
        return ErrorClass.CLIENT


def _parse_timestamp(entry: dict[str, Any]) -> datetime | None:
    """Parse the entry timestamp from feedparser's *_parsed fields (UTC)."""
    for field in ("published_parsed", "updated_parsed", "created_parsed"):
        value = entry.get(field)
        if value:
            try:
                return datetime.fromtimestamp(calendar.timegm(value), tz=timezone.utc)
            except (TypeError, ValueError, OverflowError):
                continue
    return None


def _entry_body(entry: dict[str, Any]) -> str | None:
    content = entry.get("content")
    if content:
        value = content[0].get("value")
        if value:
            return value
    return entry.get("summary") or None


def entry_to_item(entry: dict[str, Any]) -> FeedItem:
    """Convert a feedparser entry into a FeedItem."""
    return FeedItem(
        guid=entry.get("id") or None,
        link=entry.get("link") or None,
        title=entry.get("title", "") or "",
        published_at=_parse_timestamp(entry),
        body=_entry_body(entry),
        author=entry.get("author") or None,
        comments=entry.get("comments") or None,
    )


def parse_feed(url: str, content: bytes | str) -> FetchResult:
    """
    Parse raw feed content.

    Raises:
        FeedParseError: If the document is malformed and yielded no entries
    """
    parsed = feedparser.parse(content)
    entries = parsed.get("entries", [])

    if parsed.get("bozo") and not entries:
        reason = parsed.get("bozo_exception")
        raise FeedParseError(f"Unparseable feed at {url}: {reason}")

    title = parsed.get("feed", {}).get("title")
    return FetchResult(
        url=url,
        title=title or None,
        items=[entry_to_item(e) for e in entries],
    )


class FeedFetcher:
    """
    Fetch and parse feeds through a shared ParserPool.

    Every fetch carries the httpx timeout of the pooled client plus an
    overall asyncio ceiling (``timeout``). Both surface as
    FeedTimeoutError.
    """

    def __init__(self, pool: ParserPool, timeout: float = 30.0):
        self._pool = pool
        self._timeout = timeout

    @property
    def pool(self) -> ParserPool:
        return self._pool

    async def fetch(self, url: str) -> FetchResult:
        """
        Fetch a feed and return its parsed items, newest first.

        Raises:
            FeedHTTPError: Origin returned an error status
            FeedTimeoutError: Fetch exceeded the ceiling
            FeedParseError: Body is not a feed
            FetchError: Any other network failure
        """
        start = time.perf_counter()
        try:
            content = await asyncio.wait_for(self._download(url), timeout=self._timeout)
        except asyncio.TimeoutError as e:
            raise FeedTimeoutError(
                f"Fetch of {url} exceeded {self._timeout:.0f}s"
            ) from e

        result = parse_feed(url, content)
        logger.debug(
            "Fetched %d items from %s in %.2fs",
            result.item_count,
            url,
            time.perf_counter() - start,
        )
        return result

    async def _download(self, url: str) -> bytes:
        async with self._pool.lease() as client:
            try:
                response = await client.get(url)
            except HTTPClientError as e:
                if e.status_code is not None:
                    raise FeedHTTPError(str(e), status_code=e.status_code) from e
                if isinstance(e.__cause__, httpx.TimeoutException):
                    raise FeedTimeoutError(f"Request to {url} timed out: {e}") from e
                raise FetchError(str(e)) from e
            except httpx.InvalidURL as e:
                raise FeedURLError(f"Invalid feed URL {url!r}: {e}") from e
            except httpx.HTTPError as e:
                raise FetchError(f"Request to {url} failed: {e}") from e
            except Exception as e:
                raise FetchError(f"Request to {url} failed: {type(e).__name__}: {e}") from e
            return response.content
