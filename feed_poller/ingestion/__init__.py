"""Ingestion: HTTP transport, parser pool and feed fetching."""

from feed_poller.ingestion.fetcher import (
    FeedFetcher,
    FeedHTTPError,
    FeedParseError,
    FeedTimeoutError,
    FeedURLError,
    FetchError,
    classify_status,
    parse_feed,
)
from feed_poller.ingestion.http_client import HTTPClient, HTTPClientError, RetryConfig
from feed_poller.ingestion.parser_pool import ParserPool
from feed_poller.ingestion.schemas import FeedItem, FetchResult

__all__ = [
    "FeedFetcher",
    "FeedHTTPError",
    "FeedItem",
    "FeedParseError",
    "FeedTimeoutError",
    "FeedURLError",
    "FetchError",
    "FetchResult",
    "HTTPClient",
    "HTTPClientError",
    "ParserPool",
    "RetryConfig",
    "classify_status",
    "parse_feed",
]
