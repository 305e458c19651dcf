"""Database schema definition and ORM models.

The queue has exactly one table, ``notification_queue``. Timestamps are
stored as fixed-width ISO 8601 strings (see coralqueue.utils.timestamps) so
due-time comparisons can be done with plain string operators.
"""

import logging

from sqlalchemy import JSON, Column, Index, Integer, String, Text, inspect
from sqlalchemy.engine import Engine
from sqlalchemy.orm import declarative_base

from coralqueue.domain.models import (
    DEFAULT_BATCH_WINDOW_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    JobStatus,
    NotificationJob,
    NotificationType,
)
from coralqueue.utils.timestamps import format_db_timestamp, parse_db_timestamp

logger = logging.getLogger(__name__)

Base = declarative_base()


class NotificationJobModel(Base):
    """ORM model for the notification_queue table."""

    __tablename__ = "notification_queue"

    id = Column(String(36), primary_key=True, nullable=False)
    type = Column(String(32), nullable=False)
    status = Column(String(16), nullable=False, default=JobStatus.PENDING.value)
    payload = Column(JSON, nullable=False)

    # Retry bookkeeping
    attempts = Column(Integer, nullable=False, default=0)
    max_attempts = Column(Integer, nullable=False, default=DEFAULT_MAX_ATTEMPTS)
    last_attempt = Column(String(32), nullable=True)
    next_attempt = Column(String(32), nullable=True)
    error = Column(Text, nullable=True)

    # Batching
    batch_window = Column(Integer, nullable=False, default=DEFAULT_BATCH_WINDOW_SECONDS)
    correlation_key = Column(String(255), nullable=True)
    # Set only while the job still accepts merges; unique so two enqueues
    # for the same key can never both open a batch.
    open_batch_key = Column(String(255), nullable=True, unique=True)

    processed_at = Column(String(32), nullable=True)
    created_at = Column(String(32), nullable=False)
    updated_at = Column(String(32), nullable=False)

    # Compare-and-swap token, bumped by every transition
    version = Column(Integer, nullable=False, default=0)

    __table_args__ = (
        Index("idx_notification_queue_due", "status", "next_attempt"),
        Index("idx_notification_queue_stale", "status", "updated_at"),
        Index("idx_notification_queue_processed", "status", "processed_at"),
        Index("idx_notification_queue_correlation", "correlation_key"),
    )

    def to_domain(self) -> NotificationJob:
        """Convert ORM model to domain model."""
        return NotificationJob(
            id=self.id,
            type=NotificationType(self.type),
            status=JobStatus(self.status),
            payload=dict(self.payload or {}),
            attempts=self.attempts,
            max_attempts=self.max_attempts,
            last_attempt=parse_db_timestamp(self.last_attempt),
            next_attempt=parse_db_timestamp(self.next_attempt),
            error=self.error,
            batch_window=self.batch_window,
            processed_at=parse_db_timestamp(self.processed_at),
            created_at=parse_db_timestamp(self.created_at),
            updated_at=parse_db_timestamp(self.updated_at),
            correlation_key=self.correlation_key,
            version=self.version,
        )

    @classmethod
    def from_domain(cls, job: NotificationJob, open_batch_key: str | None = None) -> "NotificationJobModel":
        """Create ORM model from domain model."""
        return cls(
            id=job.id,
            type=job.type.value,
            status=job.status.value,
            payload=job.payload,
            attempts=job.attempts,
            max_attempts=job.max_attempts,
            last_attempt=format_db_timestamp(job.last_attempt),
            next_attempt=format_db_timestamp(job.next_attempt),
            error=job.error,
            batch_window=job.batch_window,
            correlation_key=job.correlation_key,
            open_batch_key=open_batch_key,
            processed_at=format_db_timestamp(job.processed_at),
            created_at=format_db_timestamp(job.created_at),
            updated_at=format_db_timestamp(job.updated_at),
            version=job.version,
        )


def create_schema(engine: Engine) -> None:
    """Create the queue table and indexes if they don't exist (idempotent)."""
    logger.info("Creating database schema if not exists")

    try:
        Base.metadata.create_all(engine, checkfirst=True)
        tables = inspect(engine).get_table_names()
        logger.info(f"Database schema ready. Tables: {', '.join(tables)}")

    except Exception as e:
        logger.error(f"Failed to create database schema: {e}", exc_info=True)
        raise
