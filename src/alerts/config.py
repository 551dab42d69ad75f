"""Alert evaluation configuration.

Controls dispatch concurrency, notifier timeouts, and the re-delivery
policy for alerts whose notifier is unavailable. All settings can be
overridden via ``ALERTS_*`` environment variables.
"""

from typing import Literal

from pydantic import Field, model_validator
from pydantic_settings import BaseSettings, SettingsConfigDict

UnavailableNotifierPolicy = Literal["retry_later", "skip"]


class AlertsConfig(BaseSettings):
    """Configuration for matching and dispatching alerts."""

    model_config = SettingsConfigDict(
        env_prefix="ALERTS_",
        case_sensitive=False,
        extra="ignore",
    )

    # Bounded worker pool for notifications of a single record
    dispatch_concurrency: int = Field(
        default=8,
        ge=1,
        le=128,
        description="Max notifier invocations running at once per record",
    )

    notify_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=300.0,
        description="A notify call running longer than this is a failed attempt",
    )

    evaluation_timeout_seconds: float = Field(
        default=60.0,
        gt=0.0,
        le=600.0,
        description="Upper bound on one record evaluation run from the ingest listener",
    )

    # retry_later: leave the pair unmarked so a later pass may fire it.
    # skip: mark the pair so it never fires for this record.
    unavailable_notifier_policy: UnavailableNotifierPolicy = Field(
        default="retry_later",
        description="What to do when an alert's notification kind does not resolve",
    )

    webhook_timeout_seconds: float = Field(
        default=10.0,
        gt=0.0,
        le=120.0,
        description="HTTP timeout for webhook and IFTTT notifiers",
    )

    @model_validator(mode="after")
    def check_timeouts(self) -> "AlertsConfig":
        """An evaluation pass must outlive at least one notify call."""
        if self.evaluation_timeout_seconds < self.notify_timeout_seconds:
            raise ValueError(
                "evaluation_timeout_seconds must be >= notify_timeout_seconds"
            )
        return self
