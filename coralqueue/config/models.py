"""Configuration schema models using Pydantic."""

from enum import Enum
from typing import Dict, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from coralqueue.domain.models import (
    DEFAULT_BATCH_WINDOW_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    MergePolicy,
    NotificationType,
)

from .duration import DurationParseError, parse_duration, validate_duration_range

Duration = Union[str, int]

DEFAULT_MERGE_POLICIES: Dict[NotificationType, MergePolicy] = {
    NotificationType.ORDER_CONFIRMATION: MergePolicy.REPLACE,
    NotificationType.STATUS_UPDATE: MergePolicy.REPLACE,
    NotificationType.CLIENT_REGISTRATION: MergePolicy.REPLACE,
    NotificationType.LOW_STOCK: MergePolicy.ACCUMULATE,
    NotificationType.BULLETIN: MergePolicy.ACCUMULATE,
}


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


def _checked_duration(value: Duration, min_seconds: int, max_seconds: int, label: str) -> Duration:
    try:
        seconds = parse_duration(value)
        validate_duration_range(seconds, min_seconds, max_seconds, label=label)
    except DurationParseError as e:
        raise ValueError(str(e)) from e
    return value


class QueueConfig(BaseModel):
    """Worker loop and job defaults."""

    poll_interval: Duration = Field("10s", description="Time between dispatcher ticks")
    batch_size: int = Field(25, ge=1, le=1000, description="Max jobs claimed per tick")
    stale_after: Duration = Field(
        "5m", description="How long a PROCESSING job may go unresolved before it is reclaimed"
    )
    max_workers: int = Field(4, ge=1, le=64, description="Concurrent sends per tick")
    default_max_attempts: int = Field(DEFAULT_MAX_ATTEMPTS, ge=1, le=50)
    default_batch_window: Duration = Field(
        DEFAULT_BATCH_WINDOW_SECONDS, description="Batch window for new jobs"
    )
    auto_cleanup_days: Optional[int] = Field(
        None, ge=1, description="Delete terminal jobs older than this many days, daily"
    )

    @field_validator("poll_interval")
    @classmethod
    def validate_poll_interval(cls, v: Duration) -> Duration:
        return _checked_duration(v, 1, 3600, "poll_interval")

    @field_validator("stale_after")
    @classmethod
    def validate_stale_after(cls, v: Duration) -> Duration:
        return _checked_duration(v, 10, 86400, "stale_after")

    @field_validator("default_batch_window")
    @classmethod
    def validate_batch_window(cls, v: Duration) -> Duration:
        # Zero disables batching delay; anything else must parse
        if v == 0 or v == "0":
            return 0
        return _checked_duration(v, 1, 86400, "default_batch_window")

    @model_validator(mode="after")
    def validate_stale_exceeds_poll(self):
        if self.stale_after_seconds <= self.poll_interval_seconds:
            raise ValueError("stale_after must be longer than poll_interval")
        return self

    @property
    def poll_interval_seconds(self) -> int:
        return parse_duration(self.poll_interval)

    @property
    def stale_after_seconds(self) -> int:
        return parse_duration(self.stale_after)

    @property
    def default_batch_window_seconds(self) -> int:
        if self.default_batch_window in (0, "0"):
            return 0
        return parse_duration(self.default_batch_window)


class BackoffConfig(BaseModel):
    """Retry delay curve for transient send failures."""

    initial_delay: Duration = Field("2s", description="Delay after the first failure")
    multiplier: float = Field(2.0, ge=1.0, le=10.0, description="Growth per attempt")
    max_delay: Duration = Field("1h", description="Cap on any single delay")

    @field_validator("initial_delay", "max_delay")
    @classmethod
    def validate_delay(cls, v: Duration) -> Duration:
        return _checked_duration(v, 1, 7 * 86400, "Backoff delay")

    @model_validator(mode="after")
    def validate_bounds(self):
        if parse_duration(self.max_delay) < parse_duration(self.initial_delay):
            raise ValueError("backoff.max_delay must be at least backoff.initial_delay")
        return self

    @property
    def initial_delay_seconds(self) -> int:
        return parse_duration(self.initial_delay)

    @property
    def max_delay_seconds(self) -> int:
        return parse_duration(self.max_delay)


class BatchingConfig(BaseModel):
    """Merge policy per notification type."""

    enabled: bool = Field(True, description="Set false to create one job per request")
    policies: Dict[NotificationType, MergePolicy] = Field(
        default_factory=lambda: dict(DEFAULT_MERGE_POLICIES)
    )

    @field_validator("policies")
    @classmethod
    def fill_missing_policies(
        cls, v: Dict[NotificationType, MergePolicy]
    ) -> Dict[NotificationType, MergePolicy]:
        """Types not listed keep their default policy."""
        return {**DEFAULT_MERGE_POLICIES, **v}


class EmailConfig(BaseModel):
    """Email channel settings."""

    use_tls: bool = Field(True, description="Use TLS/STARTTLS for secure connection")
    store_name: str = Field("Coral Store", min_length=1, description="Shown in subjects")

    @field_validator("store_name")
    @classmethod
    def strip_store_name(cls, v: str) -> str:
        stripped = v.strip()
        if not stripped:
            raise ValueError("store_name cannot be empty")
        return stripped


class LoggingConfig(BaseModel):
    """Logging configuration."""

    level: LogLevel = Field(LogLevel.INFO, description="Log level")
    format: LogFormat = Field(
        LogFormat.KEY_VALUE, description="Log output format (json or key-value)"
    )

    model_config = {"use_enum_values": True}


class ApiConfig(BaseModel):
    """Admin HTTP API bind address."""

    host: str = Field("127.0.0.1", min_length=1)
    port: int = Field(8000, ge=1, le=65535)


class AppConfig(BaseModel):
    """Root configuration object for the notification queue service."""

    queue: QueueConfig = Field(default_factory=QueueConfig)
    backoff: BackoffConfig = Field(default_factory=BackoffConfig)
    batching: BatchingConfig = Field(default_factory=BatchingConfig)
    email: EmailConfig = Field(default_factory=EmailConfig)
    logging: LoggingConfig = Field(default_factory=LoggingConfig)
    api: ApiConfig = Field(default_factory=ApiConfig)
