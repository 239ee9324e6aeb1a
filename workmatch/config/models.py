"""Configuration schema models using Pydantic."""

from enum import Enum
from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, model_validator

from workmatch.domain.models import DeliveryMethod


class LogLevel(str, Enum):
    """Logging levels."""

    DEBUG = "DEBUG"
    INFO = "INFO"
    WARNING = "WARNING"
    ERROR = "ERROR"
    CRITICAL = "CRITICAL"


class LogFormat(str, Enum):
    """Log output formats."""

    JSON = "json"
    KEY_VALUE = "key-value"


def _parse_delivery_method(value):
    """Accept channel names in any case ("in_app", "IN_APP", "voice_call")."""
    if isinstance(value, str):
        return value.strip().upper().replace("-", "_")
    return value


class MatchingConfig(BaseModel):
    """Thresholds and scan tuning for worker discovery."""

    min_match_score_for_notification: int = Field(
        60, ge=0, le=100, description="Minimum score for a job-match notification"
    )
    min_match_score_for_general_query: int = Field(
        50, ge=0, le=100, description="Default threshold for ad-hoc match queries"
    )
    scan_batch_size: int = Field(500, ge=1, le=100_000, description="Workers per scoring batch")
    scan_workers: int = Field(4, ge=1, le=64, description="Threads scoring batches concurrently")
    max_candidates: Optional[int] = Field(
        None, ge=1, description="Cap on candidates kept per scan (null = unbounded)"
    )


class ListingConfig(BaseModel):
    """Listing pagination settings."""

    page_size: int = Field(20, ge=1, le=500, description="Default postings per page")


class NotificationConfig(BaseModel):
    """Notification dispatch settings.

    Passed to the dispatcher at construction; there is no process-wide
    channel toggle.
    """

    enabled_channels: List[DeliveryMethod] = Field(
        default_factory=lambda: [DeliveryMethod.IN_APP],
        description="Channels allowed to deliver; others only record the notification",
    )
    job_match_delivery_method: DeliveryMethod = Field(
        DeliveryMethod.IN_APP, description="Channel used for job-match fan-out"
    )
    max_concurrency: int = Field(
        8, ge=1, le=128, description="Concurrent notification writes/deliveries during fan-out"
    )
    max_retries: int = Field(3, ge=0, le=10, description="Retries for transient delivery failures")
    retry_initial_delay: float = Field(1.0, ge=0, le=60, description="First retry delay in seconds")
    retry_backoff_multiplier: float = Field(
        2.0, ge=1.0, le=5.0, description="Exponential backoff multiplier for retries"
    )
    http_timeout: float = Field(10.0, gt=0, le=120, description="Channel provider request timeout")

    @field_validator("enabled_channels", mode="before")
    @classmethod
    def normalize_channels(cls, v):
        if isinstance(v, (list, tuple, set, frozenset)):
            return [_parse_delivery_method(item) for item in v]
        return v

    @field_validator("job_match_delivery_method", mode="before")
    @classmethod
    def normalize_method(cls, v):
        return _parse_delivery_method(v)

    @field_validator("enabled_channels")
    @classmethod
    def dedupe_channels(cls, v: List[DeliveryMethod]) -> List[DeliveryMethod]:
        """Drop repeated channels, keeping first-seen order."""
        return list(dict.fromkeys(v))

    def is_enabled(self, method: DeliveryMethod) -> bool:
        return method in self.enabled_channels


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(
        LogFormat.KEY_VALUE, description="Log output format (json or key-value)"
    )

    model_config = {"use_enum_values": True}


class AppConfig(BaseModel):
    """Root configuration object for the WorkMatch engine."""

    matching: MatchingConfig = Field(default_factory=MatchingConfig)
    listing: ListingConfig = Field(default_factory=ListingConfig)
    notifications: NotificationConfig = Field(default_factory=NotificationConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)

    model_config = {"extra": "forbid"}

    @model_validator(mode="after")
    def validate_thresholds(self):
        """Keep the notification threshold at or above the general one."""
        matching = self.matching
        if matching.min_match_score_for_notification < matching.min_match_score_for_general_query:
            raise ValueError(
                "matching.min_match_score_for_notification "
                f"({matching.min_match_score_for_notification}) must not be lower than "
                "matching.min_match_score_for_general_query "
                f"({matching.min_match_score_for_general_query})"
            )
        return self
