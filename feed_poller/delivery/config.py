"""Delivery transport configuration.

All settings can be overridden via ``DELIVERY_*`` environment variables.
"""

from pydantic import Field
from pydantic_settings import BaseSettings, SettingsConfigDict


class DeliveryConfig(BaseSettings):
    """Configuration for the webhook delivery transport."""

    model_config = SettingsConfigDict(
        env_prefix="DELIVERY_",
        case_sensitive=False,
        extra="ignore",
    )

    timeout_seconds: float = Field(
        default=10.0,
        ge=1.0,
        le=120.0,
        description="Per-request timeout for webhook posts",
    )
    headers: dict[str, str] = Field(
        default_factory=dict,
        description="Extra headers sent with every webhook post",
    )
    username: str | None = Field(
        default=None,
        description="Display name included in webhook payloads",
    )
    item_body_max_chars: int = Field(
        default=1000,
        ge=0,
        le=4000,
        description="Truncate item bodies to this length in payloads (0 = omit)",
    )
