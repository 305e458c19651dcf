"""Job store: the queue's only shared state and coordination point.

The dispatcher and admin operations depend on the JobStore interface, not on
SQLAlchemy. SqlJobStore implements it on the notification_queue table; every
method runs in its own transaction so the store never holds locks across a
send.
"""

from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Any, Callable, Dict, Iterable, Iterator, List, Optional
from uuid import uuid4

from sqlalchemy.exc import SQLAlchemyError

from coralqueue.domain.models import (
    DEFAULT_BATCH_WINDOW_SECONDS,
    DEFAULT_MAX_ATTEMPTS,
    JobStatus,
    NotificationJob,
    NotificationType,
    Resolution,
)
from coralqueue.logging import get_logger
from coralqueue.persistence.database import get_session
from coralqueue.persistence.exceptions import PersistenceError
from coralqueue.persistence.repositories import (
    BatchConflictError,
    NotificationJobRepository,
    translate_store_error,
)
from coralqueue.utils.timestamps import utc_now

logger = get_logger(__name__, component="job_store")

# Merge function: (payload of the open batch or None for a new batch, incoming payload) -> stored payload
PayloadMerger = Callable[[Optional[Dict[str, Any]], Dict[str, Any]], Dict[str, Any]]

MAX_MERGE_RETRIES = 5


@dataclass(frozen=True)
class EnqueueOutcome:
    """Result of merge-or-create: the stored job and whether it already existed."""

    job: NotificationJob
    merged: bool


class JobStore(ABC):
    """Persistence capability required by the batcher, dispatcher and admin."""

    @abstractmethod
    def enqueue(
        self,
        notification_type: NotificationType,
        payload: Dict[str, Any],
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        batch_window: int = DEFAULT_BATCH_WINDOW_SECONDS,
        next_attempt: Optional[datetime] = None,
    ) -> NotificationJob:
        """Insert a new PENDING job. Raises StoreUnavailable if it cannot."""

    @abstractmethod
    def merge_or_create(
        self,
        correlation_key: str,
        notification_type: NotificationType,
        payload: Dict[str, Any],
        merge: PayloadMerger,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        batch_window: int = DEFAULT_BATCH_WINDOW_SECONDS,
    ) -> EnqueueOutcome:
        """Fold the payload into the open batch for the key, or open a new one."""

    @abstractmethod
    def claim_due(self, limit: int, stale_after: timedelta) -> List[NotificationJob]:
        """Atomically move due and stale jobs to PROCESSING and return them."""

    @abstractmethod
    def resolve(
        self, job_id: str, resolution: Resolution, lease: Optional[int] = None
    ) -> bool:
        """Record a send outcome; a no-op returning False if the job is no longer held."""

    @abstractmethod
    def get(self, job_id: str) -> Optional[NotificationJob]:
        """Return a job by id."""

    @abstractmethod
    def count_by_status(
        self, status: JobStatus, processed_since: Optional[datetime] = None
    ) -> int:
        """Count jobs in a status."""

    @abstractmethod
    def recent_failures(self, since: datetime, limit: int = 10) -> List[NotificationJob]:
        """FAILED jobs updated since a time, newest first."""

    @abstractmethod
    def retry_failed(self, job_ids: Iterable[str]) -> int:
        """Re-arm FAILED jobs; returns how many were reset."""

    @abstractmethod
    def cleanup(self, older_than: datetime) -> int:
        """Delete terminal jobs processed before ``older_than``."""

    @abstractmethod
    def delete_all(self) -> int:
        """Delete every job."""


class SqlJobStore(JobStore):
    """JobStore backed by the notification_queue table.

    Args:
        session_scope: Context manager factory yielding a transactional session
        clock: Returns the current UTC time; injectable for tests
    """

    def __init__(
        self,
        session_scope: Callable = get_session,
        clock: Callable[[], datetime] = utc_now,
    ):
        self._session_scope = session_scope
        self.clock = clock

    @contextmanager
    def _transaction(self, operation: str) -> Iterator[NotificationJobRepository]:
        try:
            with self._session_scope() as session:
                yield NotificationJobRepository(session)
        except SQLAlchemyError as e:
            # Raised by commit; statement errors are translated by the repository
            raise translate_store_error(operation, e) from e

    def _new_job(
        self,
        notification_type: NotificationType,
        payload: Dict[str, Any],
        max_attempts: int,
        batch_window: int,
        next_attempt: Optional[datetime],
        correlation_key: Optional[str],
        now: datetime,
    ) -> NotificationJob:
        return NotificationJob(
            id=str(uuid4()),
            type=notification_type,
            status=JobStatus.PENDING,
            payload=payload,
            attempts=0,
            max_attempts=max_attempts,
            next_attempt=next_attempt,
            batch_window=batch_window,
            correlation_key=correlation_key,
            created_at=now,
            updated_at=now,
        )

    def enqueue(
        self,
        notification_type: NotificationType,
        payload: Dict[str, Any],
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        batch_window: int = DEFAULT_BATCH_WINDOW_SECONDS,
        next_attempt: Optional[datetime] = None,
    ) -> NotificationJob:
        with self._transaction("enqueue job") as repo:
            now = self.clock()
            job = self._new_job(
                notification_type, payload, max_attempts, batch_window, next_attempt, None, now
            )
            repo.add(job)

        logger.info(
            f"Enqueued {notification_type.value} job {job.id}",
            extra={
                "event": "queue.job.enqueued",
                "job_id": job.id,
                "notification_type": notification_type.value,
                "batched": False,
            },
        )
        return job

    def merge_or_create(
        self,
        correlation_key: str,
        notification_type: NotificationType,
        payload: Dict[str, Any],
        merge: PayloadMerger,
        max_attempts: int = DEFAULT_MAX_ATTEMPTS,
        batch_window: int = DEFAULT_BATCH_WINDOW_SECONDS,
    ) -> EnqueueOutcome:
        """Merge into the open batch for ``correlation_key`` or open a new batch.

        A batch is open while its job is PENDING, unattempted, and its
        ``next_attempt`` (created_at + batch_window) is still in the future.
        The UNIQUE ``open_batch_key`` column guarantees that at most one job
        per key is open; a writer that loses the insert race retries and
        merges into the winner.

        Raises:
            StoreUnavailable: If the store cannot be reached
            PersistenceError: If the merge keeps losing races
        """
        for attempt in range(1, MAX_MERGE_RETRIES + 1):
            try:
                with self._transaction("merge or create job") as repo:
                    now = self.clock()
                    repo.release_closed_batches(correlation_key, now)

                    open_job = repo.find_open_batch(correlation_key)
                    if open_job is not None:
                        merged = repo.merge_payload(open_job, merge(open_job.payload, payload), now)
                        if merged is not None:
                            outcome = EnqueueOutcome(job=merged, merged=True)
                        else:
                            outcome = None
                    else:
                        job = self._new_job(
                            notification_type,
                            merge(None, payload),
                            max_attempts,
                            batch_window,
                            now + timedelta(seconds=batch_window),
                            correlation_key,
                            now,
                        )
                        repo.add(job, open_batch_key=correlation_key)
                        outcome = EnqueueOutcome(job=job, merged=False)
            except BatchConflictError:
                outcome = None

            if outcome is not None:
                self._log_enqueue(outcome, correlation_key)
                return outcome

            logger.debug(
                f"Lost batch race for {correlation_key}, retrying",
                extra={
                    "event": "queue.batch.conflict",
                    "correlation_key": correlation_key,
                    "attempt": attempt,
                },
            )

        raise PersistenceError(
            f"Could not merge or create job for {correlation_key} after {MAX_MERGE_RETRIES} attempts"
        )

    def _log_enqueue(self, outcome: EnqueueOutcome, correlation_key: str) -> None:
        job = outcome.job
        if outcome.merged:
            logger.info(
                f"Merged {job.type.value} request into job {job.id}",
                extra={
                    "event": "queue.job.merged",
                    "job_id": job.id,
                    "notification_type": job.type.value,
                    "correlation_key": correlation_key,
                },
            )
        else:
            logger.info(
                f"Enqueued {job.type.value} job {job.id}",
                extra={
                    "event": "queue.job.enqueued",
                    "job_id": job.id,
                    "notification_type": job.type.value,
                    "correlation_key": correlation_key,
                    "batched": True,
                    "next_attempt": job.next_attempt,
                },
            )

    def claim_due(self, limit: int, stale_after: timedelta) -> List[NotificationJob]:
        """Claim up to ``limit`` due or stale jobs.

        Each candidate is claimed with a compare-and-swap on its version; a
        candidate that changed under us is skipped, never double-claimed.
        The returned jobs carry the new version, which is their lease.
        """
        claimed: List[NotificationJob] = []
        reclaimed = 0

        with self._transaction("claim due jobs") as repo:
            now = self.clock()
            for candidate in repo.find_claimable(now, now - stale_after, limit):
                job = repo.mark_processing(candidate, now)
                if job is None:
                    continue
                if candidate.status == JobStatus.PROCESSING:
                    reclaimed += 1
                    logger.warning(
                        f"Reclaimed stale job {job.id}",
                        extra={
                            "event": "queue.job.reclaimed",
                            "job_id": job.id,
                            "stale_since": candidate.updated_at,
                        },
                    )
                claimed.append(job)

        for job in claimed:
            logger.debug(
                f"Claimed job {job.id}",
                extra={
                    "event": "queue.job.claimed",
                    "job_id": job.id,
                    "notification_type": job.type.value,
                    "lease": job.version,
                },
            )

        return claimed

    def resolve(
        self, job_id: str, resolution: Resolution, lease: Optional[int] = None
    ) -> bool:
        with self._transaction("resolve job") as repo:
            applied = repo.resolve(job_id, lease, resolution, self.clock())

        if not applied:
            logger.warning(
                f"Job {job_id} is no longer held by this worker; outcome discarded",
                extra={
                    "event": "queue.resolve.lease_lost",
                    "job_id": job_id,
                    "lease": lease,
                    "outcome": resolution.status.value,
                },
            )
        return applied

    def get(self, job_id: str) -> Optional[NotificationJob]:
        with self._transaction("get job") as repo:
            return repo.get(job_id)

    def count_by_status(
        self, status: JobStatus, processed_since: Optional[datetime] = None
    ) -> int:
        with self._transaction("count jobs") as repo:
            return repo.count_by_status(status, processed_since)

    def recent_failures(self, since: datetime, limit: int = 10) -> List[NotificationJob]:
        with self._transaction("list recent failures") as repo:
            return repo.recent_failures(since, limit)

    def retry_failed(self, job_ids: Iterable[str]) -> int:
        with self._transaction("retry failed jobs") as repo:
            return repo.reset_failed(job_ids, self.clock())

    def cleanup(self, older_than: datetime) -> int:
        with self._transaction("clean up jobs") as repo:
            return repo.delete_terminal_before(older_than)

    def delete_all(self) -> int:
        with self._transaction("delete all jobs") as repo:
            return repo.delete_all()
