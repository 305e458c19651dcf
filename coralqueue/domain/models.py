"""Core domain models for the notification queue.

This module defines the data structures shared by every queue component:
- NotificationType / JobStatus: the closed vocabularies of the queue table
- MergePolicy: how same-target requests are folded together while batching
- NotificationJob: one persisted unit of notification work
- Resolution: the terminal or rescheduling transition recorded for a claimed job
"""

from dataclasses import dataclass
from datetime import datetime
from enum import Enum
from typing import Any, Dict, Optional

from pydantic import BaseModel, Field, field_validator

from coralqueue.utils.timestamps import ensure_utc

DEFAULT_MAX_ATTEMPTS = 3
DEFAULT_BATCH_WINDOW_SECONDS = 300


class NotificationType(str, Enum):
    """Kinds of notification a collaborator can enqueue."""

    ORDER_CONFIRMATION = "ORDER_CONFIRMATION"
    STATUS_UPDATE = "STATUS_UPDATE"
    BULLETIN = "BULLETIN"
    LOW_STOCK = "LOW_STOCK"
    CLIENT_REGISTRATION = "CLIENT_REGISTRATION"


class JobStatus(str, Enum):
    """Lifecycle states of a queued job."""

    PENDING = "PENDING"
    PROCESSING = "PROCESSING"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"

    @property
    def is_terminal(self) -> bool:
        return self in (JobStatus.COMPLETED, JobStatus.FAILED)


class MergePolicy(str, Enum):
    """How a new request is folded into an open batch for the same target."""

    REPLACE = "replace"
    ACCUMULATE = "accumulate"


class NotificationJob(BaseModel):
    """A persisted notification job.

    The payload is owned by the enqueuing collaborator; the queue only reads the
    correlation target out of it when batching. ``version`` is the optimistic
    concurrency token: every stored transition bumps it, and the value observed
    when a job is claimed is the lease required to resolve it.
    """

    id: str = Field(..., description="UUID assigned at creation")
    type: NotificationType
    status: JobStatus = JobStatus.PENDING
    payload: Dict[str, Any] = Field(default_factory=dict)
    attempts: int = Field(0, ge=0)
    max_attempts: int = Field(DEFAULT_MAX_ATTEMPTS, ge=1)
    last_attempt: Optional[datetime] = None
    next_attempt: Optional[datetime] = None
    error: Optional[str] = None
    batch_window: int = Field(DEFAULT_BATCH_WINDOW_SECONDS, ge=0, description="Seconds")
    processed_at: Optional[datetime] = None
    created_at: datetime
    updated_at: datetime
    correlation_key: Optional[str] = None
    version: int = 0

    @field_validator("last_attempt", "next_attempt", "processed_at", "created_at", "updated_at")
    @classmethod
    def ensure_utc(cls, v: Optional[datetime]) -> Optional[datetime]:
        """Normalise all timestamps to aware UTC."""
        return ensure_utc(v)

    @property
    def is_terminal(self) -> bool:
        return self.status.is_terminal

    def summary(self) -> Dict[str, Any]:
        """Operator-facing view used by the admin status report."""
        return {
            "id": self.id,
            "type": self.type.value,
            "error": self.error,
            "attempts": self.attempts,
            "lastAttempt": self.last_attempt.isoformat() if self.last_attempt else None,
            "createdAt": self.created_at.isoformat(),
        }


@dataclass(frozen=True)
class Resolution:
    """Outcome recorded for a claimed job.

    Attributes:
        status: COMPLETED, FAILED, or PENDING (rescheduled)
        attempts: Attempt count after this send
        next_attempt: When a rescheduled job becomes due again
        error: Failure message kept for diagnostics
    """

    status: JobStatus
    attempts: int
    next_attempt: Optional[datetime] = None
    error: Optional[str] = None

    def __post_init__(self):
        if self.status == JobStatus.PROCESSING:
            raise ValueError("A job cannot be resolved back into PROCESSING")
        if self.status == JobStatus.PENDING and self.next_attempt is None:
            raise ValueError("A rescheduled job needs a next_attempt")

    @classmethod
    def completed(cls, attempts: int) -> "Resolution":
        return cls(status=JobStatus.COMPLETED, attempts=attempts)

    @classmethod
    def rescheduled(cls, attempts: int, next_attempt: datetime, error: str) -> "Resolution":
        return cls(
            status=JobStatus.PENDING,
            attempts=attempts,
            next_attempt=next_attempt,
            error=error,
        )

    @classmethod
    def failed(cls, attempts: int, error: str) -> "Resolution":
        return cls(status=JobStatus.FAILED, attempts=attempts, error=error)
