"""Polling scheduler configuration.

Every scheduling, backoff, notification and resource threshold lives
here. All settings can be overridden via ``POLLING_*`` environment
variables.
"""

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


class PollingConfig(BaseSettings):
    """Configuration for the polling scheduler and its policies."""

    model_config = SettingsConfigDict(
        env_prefix="POLLING_",
        case_sensitive=False,
        extra="ignore",
    )

    # Frequency resolution (minutes)
    min_frequency_minutes: int = Field(
        default=1, ge=1, description="Lower clamp for any effective frequency"
    )
    max_frequency_minutes: int = Field(
        default=1440, ge=1, description="Upper clamp for any effective frequency"
    )
    default_frequency_minutes: int = Field(
        default=15, ge=1, description="Frequency when no override or category applies"
    )

    # Scheduler timers
    tick_interval_seconds: float = Field(
        default=30.0, ge=1.0, le=3600.0, description="Seconds between batch ticks"
    )
    reconcile_interval_seconds: float = Field(
        default=600.0, ge=10.0, le=86400.0, description="Seconds between store reconciliations"
    )
    batch_concurrency: int = Field(
        default=5, ge=1, le=100, description="Sources checked concurrently per chunk"
    )
    chunk_pause_seconds: float = Field(
        default=1.0, ge=0.0, le=60.0, description="Pause between chunks within a tick"
    )
    retry_delay_minutes: int = Field(
        default=5, ge=1, le=1440, description="Next check delay after a failed check"
    )
    fetch_timeout_seconds: float = Field(
        default=30.0, ge=1.0, le=300.0, description="Overall ceiling for one feed fetch"
    )

    # Queue hygiene
    max_queue_size: int = Field(
        default=5000, ge=1, description="Queue size above which reconciliation logs an error"
    )
    stale_entry_days: int = Field(
        default=7, ge=1, description="Evict entries overdue by more than this many days"
    )
    stale_check_every_ticks: int = Field(
        default=20, ge=1, description="Run stale eviction every N ticks"
    )
    maintenance_every_ticks: int = Field(
        default=120, ge=1, description="Run governor maintenance every N ticks"
    )

    # Dedup
    max_item_age_hours: int = Field(
        default=24, ge=1, description="Items older than this are never delivered"
    )
    max_new_items: int = Field(
        default=5, ge=1, le=50, description="Cap on items delivered per check"
    )
    recent_links_capacity: int = Field(
        default=5, ge=1, le=100, description="Size of the per-source recent-links set"
    )

    # Backoff
    backoff_base_minutes: int = Field(
        default=5, ge=1, description="Backoff base: minutes = base * 2^failures"
    )
    backoff_cap_minutes: int = Field(
        default=720, ge=1, description="Maximum backoff in minutes"
    )
    coordination_factor: float = Field(
        default=0.5,
        ge=0.0,
        le=1.0,
        description="Fraction of a source's backoff applied to category siblings",
    )

    # Failure notifications
    failure_notification_threshold: int = Field(
        default=5, ge=1, description="24h failure count that triggers the alert"
    )
    failure_quiet_period_hours: int = Field(
        default=48, ge=1, description="Minimum hours between threshold alerts"
    )
    error_message_interval_hours: int = Field(
        default=6, ge=1, description="Minimum hours between inline error messages"
    )

    # Auto-disable
    dead_feed_days: int = Field(
        default=3, ge=1, description="Sustained client errors for this long disable a source"
    )
    server_error_feed_days: int = Field(
        default=7, ge=1, description="Sustained server errors for this long disable a source"
    )
    failure_retention_days: int = Field(
        default=14, ge=1, description="Failure events older than this are pruned"
    )

    # Resource governor
    soft_memory_limit_mb: float = Field(
        default=280.0, gt=0, description="RSS above which pools are recycled"
    )
    hard_memory_limit_mb: float = Field(
        default=350.0, gt=0, description="RSS above which the process exits for restart"
    )
    rss_growth_warn_mb: float = Field(
        default=10.0, gt=0, description="RSS growth between two checks that logs a warning"
    )
    memory_log_every_ticks: int = Field(
        default=10, ge=1, description="Log memory usage every N governor checks"
    )
    max_uptime_hours: float | None = Field(
        default=None,
        gt=0,
        description="Gracefully stop for a supervisor restart after this much uptime",
    )

    @model_validator(mode="after")
    def _check_ranges(self) -> "PollingConfig":
        if self.min_frequency_minutes > self.max_frequency_minutes:
            raise ValueError("min_frequency_minutes must not exceed max_frequency_minutes")
        if self.soft_memory_limit_mb >= self.hard_memory_limit_mb:
            raise ValueError("soft_memory_limit_mb must be below hard_memory_limit_mb")
        if self.backoff_base_minutes > self.backoff_cap_minutes:
            raise ValueError("backoff_base_minutes must not exceed backoff_cap_minutes")
        return self
