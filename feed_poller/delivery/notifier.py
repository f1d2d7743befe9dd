"""Operational notices sent to a source's destination.

Three kinds:
- error_message: short, rate-limited note after any failure
- failure_alert: threshold alert with the 24h failure count
- disabled: one-time notice when a source is auto-disabled

Formatting is done by pure functions; Notifier only sends. Send failures
are logged and reported as False, never raised, so notification problems
cannot interfere with failure bookkeeping.
"""

import logging

from feed_poller.delivery.schemas import Notice
from feed_poller.delivery.transport import DeliveryTransport
from feed_poller.observability.metrics import get_metrics
from feed_poller.sources.schemas import Source

logger = logging.getLogger(__name__)

_STAGE_VERBS = {
    "fetch": "fetching",
    "parse": "parsing",
    "deliver": "delivering",
}


def _truncate(text: str, length: int) -> str:
    if len(text) <= length:
        return text
    return text[: length - 3] + "..."


def format_error_message(
    source: Source, stage: str, error: str | None, interval_hours: int
) -> Notice:
    verb = _STAGE_VERBS.get(stage, "checking")
    detail = f" ({_truncate(error, 100)})" if error else ""
    return Notice(
        kind="error_message",
        title="Feed error",
        message=(
            f'There was an issue {verb} the feed "{source.display_name}"{detail}.\n\n'
            f"This message is rate limited to once per {interval_hours} hours. "
            "The feed will continue trying automatically."
        ),
    )


def format_failure_alert(
    source: Source,
    failure_count: int,
    error: str | None,
    effective_frequency: int,
    quiet_period_hours: int,
    permission_error: bool = False,
) -> Notice:
    """Build the threshold alert.

    Permission errors get their own reason and no poll-frequency
    suggestion, since polling less often would not help.
    """
    if permission_error:
        reason = "The destination refused delivery (missing permissions)."
    else:
        reason = (
            f"Failed to fetch, parse, or deliver feed content. "
            f"Please check the URL ({source.url}) or the feed source."
        )

    lines = [
        f"The feed subscription ({source.url}, ID: {source.id}) has failed "
        f"{failure_count} times in the last 24 hours.",
        "",
        f"Reason: {reason}",
    ]
    if error:
        lines.append(f"Error: {_truncate(error, 1000)}")
    if not permission_error:
        lines += [
            "",
            f"Suggestion: consider lowering the poll frequency from every "
            f"{effective_frequency} minutes to reduce load on the feed source.",
        ]
    lines += [
        "",
        "Notifications for this feed can be turned off with the ignore-errors "
        "or disable-failure-notifications settings.",
        f"No further failure alerts will be sent for this feed for "
        f"{quiet_period_hours} hours.",
    ]
    return Notice(
        kind="failure_alert",
        title=f"Feed error: {_truncate(source.display_name, 100)}",
        message="\n".join(lines),
    )


def format_disabled_notice(source: Source, error_type: str, period: str) -> Notice:
    return Notice(
        kind="disabled",
        title="Feed auto-disabled",
        message=(
            f'The feed "{source.display_name}" has been automatically disabled '
            f"because it has been consistently returning {error_type} for more "
            f"than {period}.\n\n"
            f"Feed URL: {source.url}\n"
            f"Feed ID: {source.id[:8]}\n\n"
            "The feed will no longer be polled. Re-enable it once the issue is resolved."
        ),
    )


class Notifier:
    """Sends notices through a DeliveryTransport to the source's destination."""

    def __init__(self, transport: DeliveryTransport) -> None:
        self._transport = transport

    async def send(self, source: Source, notice: Notice) -> bool:
        try:
            sent = await self._transport.send_notice(source.destination, notice)
        except Exception as e:
            logger.error(
                "Failed to send %s notice for source %s: %s", notice.kind, source.id, e,
            )
            return False

        if sent:
            get_metrics().record_notice(notice.kind)
            logger.info("Sent %s notice for source %s", notice.kind, source.id)
        else:
            logger.warning("Could not deliver %s notice for source %s", notice.kind, source.id)
        return sent
