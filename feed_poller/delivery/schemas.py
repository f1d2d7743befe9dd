"""Schema definitions for downstream delivery results and notices."""

from dataclasses import dataclass, field
from typing import Literal

DeliveryErrorKind = Literal["permission", "destination_gone", "transient"]

VALID_ERROR_KINDS: frozenset[str] = frozenset({
    "permission",
    "destination_gone",
    "transient",
})

NoticeKind = Literal["error_message", "failure_alert", "disabled"]


@dataclass
class DeliveryError:
    """One failed item delivery.

    Attributes:
        kind: permission (destination refuses us), destination_gone
            (destination no longer exists) or transient.
        message: Human-readable reason.
        link: Link of the item that failed, if any.
        status_code: HTTP status returned by the destination, if any.
    """

    kind: str
    message: str
    link: str | None = None
    status_code: int | None = None

    def __post_init__(self) -> None:
        if self.kind not in VALID_ERROR_KINDS:
            raise ValueError(f"Invalid delivery error kind: {self.kind}")


@dataclass
class DeliveryResult:
    """Outcome of delivering a batch of items to one destination."""

    sent: int = 0
    delivered_links: list[str] = field(default_factory=list)
    errors: list[DeliveryError] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return not self.errors

    @property
    def destination_gone(self) -> bool:
        return any(e.kind == "destination_gone" for e in self.errors)

    @property
    def permission_denied(self) -> bool:
        return any(e.kind == "permission" for e in self.errors)


@dataclass
class Notice:
    """Plain-text operational notice sent to a source's destination."""

    kind: str
    title: str
    message: str
