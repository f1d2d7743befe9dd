"""Delivery: downstream transports and operational notices."""

from feed_poller.delivery.config import DeliveryConfig
from feed_poller.delivery.notifier import (
    Notifier,
    format_disabled_notice,
    format_error_message,
    format_failure_alert,
)
from feed_poller.delivery.schemas import DeliveryError, DeliveryResult, Notice
from feed_poller.delivery.transport import (
    DeliveryTransport,
    WebhookTransport,
    classify_delivery_status,
)

__all__ = [
    "DeliveryConfig",
    "DeliveryError",
    "DeliveryResult",
    "DeliveryTransport",
    "Notice",
    "Notifier",
    "WebhookTransport",
    "classify_delivery_status",
    "format_disabled_notice",
    "format_error_message",
    "format_failure_alert",
]
