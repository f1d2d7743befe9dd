"""Delivery transports for forwarding feed items downstream.

Provides an ABC for delivery transports plus a webhook implementation.
Each failed item is classified so the checker can tell a destination
that refuses us (permission) from one that no longer exists
(destination_gone) and from plain transient failures.
"""

import logging
from abc import ABC, abstractmethod

import httpx

from feed_poller.delivery.config import DeliveryConfig
from feed_poller.delivery.schemas import DeliveryError, DeliveryResult, Notice
from feed_poller.ingestion.schemas import FeedItem

logger = logging.getLogger(__name__)

# Error codes some chat webhooks return in the JSON body
PERMISSION_ERROR_CODES = frozenset({50001, 50013})
GONE_ERROR_CODES = frozenset({10003, 10015})


def classify_delivery_status(status_code: int, error_code: int | None = None) -> str:
    """Map a destination response onto a DeliveryError kind."""
    if error_code in PERMISSION_ERROR_CODES:
        return "permission"
    if error_code in GONE_ERROR_CODES:
        return "destination_gone"
    if status_code in (401, 403):
        return "permission"
    if status_code in (404, 410):
        return "destination_gone"
    return "transient"


class DeliveryTransport(ABC):
    """Abstract base for delivery surfaces."""

    @property
    @abstractmethod
    def name(self) -> str:
        """Unique identifier for this transport (e.g. 'webhook')."""

    @abstractmethod
    async def deliver(self, destination: str, items: list[FeedItem]) -> DeliveryResult:
        """Deliver items, in the given order, to a destination.

        Args:
            destination: Transport-specific target (a URL for webhooks).
            items: Items to send, oldest first.

        Returns:
            DeliveryResult with sent count, delivered links and errors.
        """

    @abstractmethod
    async def send_notice(self, destination: str, notice: Notice) -> bool:
        """Send an operational notice. Returns True on success."""


class WebhookTransport(DeliveryTransport):
    """Delivers items as JSON POSTs to a per-source webhook URL.

    Creates a new ``httpx.AsyncClient`` per call (short-lived, no pooling).
    Stops at the first permission or destination-gone error since later
    items would fail the same way.
    """

    def __init__(self, config: DeliveryConfig | None = None) -> None:
        self._config = config or DeliveryConfig()

    @property
    def name(self) -> str:
        return "webhook"

    def _build_item_payload(self, item: FeedItem) -> dict:
        payload: dict = {
            "title": item.title,
            "link": item.link,
            "guid": item.guid,
            "published_at": item.published_at.isoformat() if item.published_at else None,
            "author": item.author,
        }
        max_chars = self._config.item_body_max_chars
        if max_chars and item.body:
            payload["body"] = item.body[:max_chars]
        if item.comments:
            payload["comments"] = item.comments
        if self._config.username:
            payload["username"] = self._config.username
        return payload

    def _build_notice_payload(self, notice: Notice) -> dict:
        payload: dict = {
            "kind": notice.kind,
            "title": notice.title,
            "message": notice.message,
        }
        if self._config.username:
            payload["username"] = self._config.username
        return payload

    @staticmethod
    def _error_code(resp: httpx.Response) -> int | None:
        try:
            body = resp.json()
        except ValueError:
            return None
        if isinstance(body, dict) and isinstance(body.get("code"), int):
            return body["code"]
        return None

    async def deliver(self, destination: str, items: list[FeedItem]) -> DeliveryResult:
        result = DeliveryResult()
        if not items:
            return result

        async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
            for item in items:
                try:
                    resp = await client.post(
                        destination,
                        json=self._build_item_payload(item),
                        headers=self._config.headers,
                    )
                except httpx.HTTPError as e:
                    logger.warning("Webhook delivery to %s failed: %s", destination, e)
                    result.errors.append(
                        DeliveryError(kind="transient", message=str(e), link=item.link)
                    )
                    continue

                if resp.is_success:
                    result.sent += 1
                    if item.link:
                        result.delivered_links.append(item.link)
                    continue

                kind = classify_delivery_status(resp.status_code, self._error_code(resp))
                logger.warning(
                    "Webhook %s returned %d (%s) for %s",
                    destination, resp.status_code, kind, item.link,
                )
                result.errors.append(
                    DeliveryError(
                        kind=kind,
                        message=f"Destination returned {resp.status_code}",
                        link=item.link,
                        status_code=resp.status_code,
                    )
                )
                if kind != "transient":
                    break

        return result

    async def send_notice(self, destination: str, notice: Notice) -> bool:
        try:
            async with httpx.AsyncClient(timeout=self._config.timeout_seconds) as client:
                resp = await client.post(
                    destination,
                    json=self._build_notice_payload(notice),
                    headers=self._config.headers,
                )
                if resp.is_success:
                    return True
                logger.warning(
                    "Webhook %s returned %d for %s notice",
                    destination, resp.status_code, notice.kind,
                )
                return False
        except httpx.TimeoutException:
            logger.warning("Webhook %s timed out for %s notice", destination, notice.kind)
            return False
        except Exception as e:
            logger.warning(
                "Webhook %s failed for %s notice: %s", destination, notice.kind, e,
            )
            return False
