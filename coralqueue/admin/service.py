"""Operator actions on the notification queue.

Thin layer over the JobStore; it never sends anything itself. The test send
goes through the queue like any other job, so it exercises the whole path.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, List, Optional, Sequence

from coralqueue.domain.models import JobStatus, NotificationJob, NotificationType
from coralqueue.logging import get_logger
from coralqueue.queue.store import JobStore
from coralqueue.utils.timestamps import utc_now

logger = get_logger(__name__, component="admin")

STATUS_LOOKBACK = timedelta(hours=24)
RECENT_FAILURE_LIMIT = 10
DEFAULT_CLEANUP_DAYS = 30


@dataclass
class QueueStatus:
    """Aggregate counts plus the most recent failures."""

    pending: int
    processing: int
    completed_24h: int
    failed: int
    recent_failures: List[NotificationJob] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": {
                "pending": self.pending,
                "processing": self.processing,
                "completed_24h": self.completed_24h,
                "failed": self.failed,
            },
            "recentFailures": [job.summary() for job in self.recent_failures],
        }


class QueueAdmin:
    """Status, retry, cleanup, purge and test-send for operators."""

    def __init__(self, store: JobStore, clock: Callable[[], datetime] = utc_now):
        self.store = store
        self.clock = clock

    def queue_status(self) -> QueueStatus:
        now = self.clock()
        since = now - STATUS_LOOKBACK
        return QueueStatus(
            pending=self.store.count_by_status(JobStatus.PENDING),
            processing=self.store.count_by_status(JobStatus.PROCESSING),
            completed_24h=self.store.count_by_status(JobStatus.COMPLETED, processed_since=since),
            failed=self.store.count_by_status(JobStatus.FAILED),
            recent_failures=self.store.recent_failures(since, limit=RECENT_FAILURE_LIMIT),
        )

    def retry(self, job_ids: Sequence[str]) -> int:
        """Reset FAILED jobs to PENDING with attempts=0. Other ids are ignored.

        Raises:
            ValueError: If job_ids is not a list of ids
        """
        if isinstance(job_ids, (str, bytes)) or not isinstance(job_ids, (list, tuple)):
            raise ValueError("ids must be a list of job ids")

        ids = [str(job_id) for job_id in job_ids]
        reset = self.store.retry_failed(ids)
        logger.info(
            f"Queued {reset} of {len(ids)} job(s) for retry",
            extra={"event": "admin.retry", "requested": len(ids), "reset": reset},
        )
        return reset

    def cleanup(self, days: int = DEFAULT_CLEANUP_DAYS) -> int:
        """Delete COMPLETED/FAILED jobs processed more than ``days`` days ago.

        PENDING and PROCESSING jobs are never removed, however old.

        Raises:
            ValueError: If days is not an integer of at least 1
        """
        if isinstance(days, bool) or not isinstance(days, int) or days < 1:
            raise ValueError("days must be an integer of at least 1")

        deleted = self.store.cleanup(self.clock() - timedelta(days=days))
        logger.info(
            f"Cleaned up {deleted} finished notification(s) older than {days} days",
            extra={"event": "admin.cleanup", "days": days, "deleted": deleted},
        )
        return deleted

    def delete_all(self) -> int:
        """Delete every job in every state."""
        deleted = self.store.delete_all()
        logger.warning(
            f"Deleted all {deleted} notification job(s)",
            extra={"event": "admin.purge", "deleted": deleted},
        )
        return deleted

    def send_test(self, recipient: Optional[str] = None) -> NotificationJob:
        """Queue a test bulletin that is due immediately and never merges."""
        payload: Dict[str, Any] = {
            "test": True,
            "title": "Test Notification",
            "content": "This is a test notification sent from the notification queue.",
            "sentAt": self.clock().isoformat(),
        }
        if recipient:
            payload["recipient"] = recipient

        job = self.store.enqueue(NotificationType.BULLETIN, payload, batch_window=0)
        logger.info(
            f"Queued test notification {job.id}",
            extra={"event": "admin.send_test", "job_id": job.id},
        )
        return job
