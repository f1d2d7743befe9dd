"""
HTTP infrastructure layer for feed fetching.

Provides:
- RetryConfig: Exponential backoff configuration for short in-request retries
- HTTPClient: Async HTTP client with automatic retry on transient errors

This layer keeps HTTP concerns (retries, connection reuse) apart from
feed parsing. Long-term per-source backoff is handled by the polling
layer, so the in-request retry budget here is deliberately small.
"""

import asyncio
import logging
import random
from dataclasses import dataclass
from typing import Any

import httpx

logger = logging.getLogger(__name__)


@dataclass
class RetryConfig:
    """
    Exponential backoff configuration for HTTP retries.

    Formula: min(max_backoff, base_delay * 2^attempt) * (1 + random(0, jitter_factor))
    """

    max_retries: int = 1
    max_backoff_seconds: float = 10.0
    base_delay: float = 1.0
    jitter_factor: float = 0.1

    def calculate_backoff(self, attempt: int) -> float:
        """
        Calculate backoff duration for a given retry attempt.

        Args:
            attempt: The retry attempt number (0-indexed)

        Returns:
            Backoff duration in seconds with jitter applied
        """
        delay = min(self.base_delay * (2**attempt), self.max_backoff_seconds)
        return delay + delay * self.jitter_factor * random.random()

    def is_retryable_status(self, status_code: int) -> bool:
        """Retry on 429 and the gateway-style 5xx codes."""
        return status_code in {429, 500, 502, 503, 504}

    def is_retryable_exception(self, exc: Exception) -> bool:
        """Retry on timeouts and connection/read failures."""
        return isinstance(
            exc,
            (
                httpx.TimeoutException,
                httpx.ConnectError,
                httpx.ReadError,
            ),
        )


class HTTPClientError(Exception):
    """Raised when a request fails after retries or with a non-retryable status."""

    def __init__(
        self,
        message: str,
        status_code: int | None = None,
        response_body: str | None = None,
    ):
        super().__init__(message)
        self.status_code = status_code
        self.response_body = response_body


class HTTPClient:
    """
    Async HTTP client with retry logic.

    Can be used as an async context manager, or opened and closed
    explicitly by a long-lived owner (see ParserPool).

    Example:
        async with HTTPClient(RetryConfig(max_retries=1)) as client:
            response = await client.get("https://example.com/feed.xml")
    """

    def __init__(
        self,
        retry_config: RetryConfig | None = None,
        timeout: float = 30.0,
        user_agent: str | None = None,
    ):
        self.retry_config = retry_config or RetryConfig()
        self.timeout = timeout
        self.user_agent = user_agent
        self._client: httpx.AsyncClient | None = None

    @property
    def is_open(self) -> bool:
        return self._client is not None

    async def open(self) -> None:
        """Create the underlying httpx client if not already open."""
        if self._client is None:
            headers = {"User-Agent": self.user_agent} if self.user_agent else None
            self._client = httpx.AsyncClient(
                timeout=self.timeout,
                headers=headers,
                follow_redirects=True,
            )

    async def aclose(self) -> None:
        """Close the underlying httpx client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HTTPClient":
        await self.open()
        return self

    async def __aexit__(self, exc_type: Any, exc_val: Any, exc_tb: Any) -> None:
        await self.aclose()

    async def get(
        self,
        url: str,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """
        Perform GET request with retry logic.

        Retryable statuses and transport errors (per RetryConfig) are
        retried up to max_retries times with backoff. Other transport
        errors fail immediately.

        Raises:
            HTTPClientError: On non-retryable errors or after retries exhausted
            RuntimeError: If the client is not open
        """
        client = self._client
        if client is None:
            raise RuntimeError("HTTPClient is not open")

        max_attempts = self.retry_config.max_retries + 1
        last_status_code: int | None = None
        last_response_body: str | None = None

        for attempt in range(max_attempts):
            try:
                response = await client.get(url, headers=headers)
            except httpx.TransportError as e:
                if (
                    self.retry_config.is_retryable_exception(e)
                    and attempt < self.retry_config.max_retries
                ):
                    backoff = self.retry_config.calculate_backoff(attempt)
                    logger.warning(
                        "Retryable error %s for %s, attempt %d/%d, backing off %.2fs",
                        type(e).__name__,
                        url,
                        attempt + 1,
                        max_attempts,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue

                raise HTTPClientError(
                    f"Request failed after {attempt + 1} attempts: {e}",
                    status_code=last_status_code,
                ) from e

            if self.retry_config.is_retryable_status(response.status_code):
                last_status_code = response.status_code
                last_response_body = response.text

                if attempt < self.retry_config.max_retries:
                    backoff = self.retry_config.calculate_backoff(attempt)
                    logger.warning(
                        "Retryable status %d from %s, attempt %d/%d, backing off %.2fs",
                        response.status_code,
                        url,
                        attempt + 1,
                        max_attempts,
                        backoff,
                    )
                    await asyncio.sleep(backoff)
                    continue

                raise HTTPClientError(
                    f"Request failed with status {response.status_code} "
                    f"after {attempt + 1} attempts",
                    status_code=response.status_code,
                    response_body=last_response_body,
                )

            if response.status_code >= 400:
                raise HTTPClientError(
                    f"Request failed with status {response.status_code}",
                    status_code=response.status_code,
                    response_body=response.text,
                )

            return response

        raise HTTPClientError(
            f"Request failed after {max_attempts} attempts",
            status_code=last_status_code,
            response_body=last_response_body,
        )
