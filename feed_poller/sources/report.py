"""
Failure-log analysis.

Groups the most recent failure events by error pattern, source and
group, and turns the dominant patterns into operator recommendations.
Backs the ``feed-poller failures`` command.
"""

import re
from collections import Counter
from collections.abc import Sequence
from dataclasses import dataclass, field

from feed_poller.sources.schemas import ErrorClass, FailureRecord

_STATUS_RE = re.compile(r"\bstatus (\d{3})\b")
_URL_RE = re.compile(r"\S+://\S+")

_STATUS_CATEGORIES = {
    401: "Authentication Error (401)",
    403: "Permission Error (403)",
    404: "Not Found (404)",
    410: "Gone (410)",
    429: "Rate Limit (429)",
}

TIMEOUT = "Timeout"
NETWORK = "Network Error"
SSL = "SSL/TLS Error"
INVALID_URL = "Invalid URL"
INVALID_FORMAT = "Invalid Feed Format"
DELIVERY = "Delivery Error"
DELIVERY_PERMISSION = "Delivery Permission Error"
OTHER = "Other/Unknown"

_NETWORK_MARKERS = ("network", "connect", "refused", "reset", "name resolution", "unreachable")
_SSL_MARKERS = ("certificate", "ssl", "tls")
_PARSE_MARKERS = ("unparseable", "not well-formed", "mismatched tag", "syntax error")


def categorize_error(message: str | None, error_class: ErrorClass = ErrorClass.TRANSIENT) -> str:
    """Map a stored failure to a human-readable error pattern."""
    if error_class == ErrorClass.DELIVERY_PERMISSION:
        return DELIVERY_PERMISSION
    if error_class == ErrorClass.DELIVERY:
        return DELIVERY

    # URLs are dropped so hostnames and paths cannot match a marker
    msg = _URL_RE.sub("", (message or "").lower())
    if any(marker in msg for marker in _SSL_MARKERS):
        return SSL
    if "timed out" in msg or "timeout" in msg or "exceeded" in msg:
        return TIMEOUT

    match = _STATUS_RE.search(msg)
    if match:
        status = int(match.group(1))
        if status in _STATUS_CATEGORIES:
            return _STATUS_CATEGORIES[status]
        if status >= 500:
            return f"Server Error ({status})"
        return f"HTTP Error ({status})"

    if "invalid feed url" in msg:
        return INVALID_URL
    if any(marker in msg for marker in _PARSE_MARKERS):
        return INVALID_FORMAT
    if any(marker in msg for marker in _NETWORK_MARKERS):
        return NETWORK
    return OTHER


@dataclass
class FailureReport:
    """Aggregated view over a window of recent failures."""

    records: list[FailureRecord]
    error_patterns: list[tuple[str, int]] = field(default_factory=list)
    top_sources: list[tuple[str, int]] = field(default_factory=list)
    top_groups: list[tuple[str, int]] = field(default_factory=list)
    repeat_sources: list[tuple[str, int]] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    @property
    def is_empty(self) -> bool:
        return not self.records


def build_failure_report(
    records: Sequence[FailureRecord],
    top_n: int = 10,
    repeat_threshold: int = 3,
) -> FailureReport:
    """
    Aggregate failure records, newest first, into a report.

    Args:
        records: Failure records as returned by list_recent_failures()
        top_n: How many sources and groups to list
        repeat_threshold: Failures within the window that flag a source

    Returns:
        FailureReport with counts sorted by frequency, descending
    """
    patterns = Counter(categorize_error(r.message, r.error_class) for r in records)
    by_source = Counter(r.label for r in records)
    by_group = Counter(r.group_id for r in records)

    report = FailureReport(
        records=list(records),
        error_patterns=patterns.most_common(),
        top_sources=by_source.most_common(top_n),
        top_groups=by_group.most_common(top_n),
        repeat_sources=[
            (label, count)
            for label, count in by_source.most_common()
            if count >= repeat_threshold
        ],
    )
    report.recommendations = _recommendations(patterns, report.repeat_sources, repeat_threshold)
    return report


def _recommendations(
    patterns: Counter,
    repeat_sources: list[tuple[str, int]],
    repeat_threshold: int,
) -> list[str]:
    seen = set(patterns)
    advice = []

    if seen & {TIMEOUT, NETWORK, SSL} or any(p.startswith("Server Error") for p in seen):
        advice.append(
            "Network, timeout or server errors: check whether the feeds are down "
            "or blocking requests, or raise POLLING_FETCH_TIMEOUT_SECONDS."
        )
    if seen & {INVALID_FORMAT, INVALID_URL}:
        advice.append(
            "Parse or URL errors: validate the feed URLs and formats; "
            "the publisher may have moved or changed the feed."
        )
    if seen & {_STATUS_CATEGORIES[401], _STATUS_CATEGORIES[403]}:
        advice.append("Authentication errors: the feeds may require credentials.")
    if DELIVERY_PERMISSION in seen:
        advice.append(
            "Delivery permission errors: the destination rejected the webhook; "
            "check its access."
        )
    if repeat_sources:
        advice.append(
            f"{len(repeat_sources)} source(s) have {repeat_threshold}+ failures. "
            "Consider disabling or investigating them."
        )
    return advice


def render_failure_report(report: FailureReport) -> str:
    """Render a report as plain text for the terminal."""
    if report.is_empty:
        return "No feed failures found."

    rule = "=" * 80
    lines = [f"Found {len(report.records)} failures:", rule]
    for index, record in enumerate(report.records, start=1):
        lines.extend(
            [
                f"[{index}] {record.timestamp.isoformat()}  {record.label}",
                f"  Nickname: {record.nickname or '(none)'}",
                f"  Group: {record.group_id}",
                f"  Consecutive failures: {record.consecutive_failures}"
                f"  Ignore errors: {record.ignore_errors}",
                f"  Class: {record.error_class.value}"
                f"  Error: {record.message or '(no message)'}",
            ]
        )

    sections = [
        ("ERROR PATTERNS", report.error_patterns, "occurrence(s)"),
        ("SOURCES WITH MOST FAILURES", report.top_sources, "failure(s)"),
        ("GROUPS WITH MOST FAILURES", report.top_groups, "failure(s)"),
    ]
    for title, rows, unit in sections:
        lines.extend([rule, title, "-" * 80])
        lines.extend(f"  {name}: {count} {unit}" for name, count in rows)

    if report.recommendations:
        lines.extend([rule, "RECOMMENDATIONS", "-" * 80])
        lines.extend(f"  - {advice}" for advice in report.recommendations)

    return "\n".join(lines)
