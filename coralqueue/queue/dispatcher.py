"""Worker loop body: claim due jobs, send them, record the outcome."""

import threading
from concurrent.futures import ThreadPoolExecutor
from datetime import datetime, timedelta
from typing import Callable, Optional
from uuid import uuid4

from coralqueue.domain.models import JobStatus, NotificationJob, Resolution
from coralqueue.logging import get_logger
from coralqueue.logging.context import log_context
from coralqueue.notifications.channels import NotificationChannel
from coralqueue.persistence.exceptions import PersistenceError
from coralqueue.utils.timestamps import utc_now

from .backoff import BackoffPolicy, RetryAt
from .models import DispatchResult
from .store import JobStore

logger = get_logger(__name__, component="dispatcher")

COMPLETED = "completed"
RESCHEDULED = "rescheduled"
FAILED = "failed"
LEASE_LOST = "lease_lost"
ERROR = "error"


def _describe_error(error: BaseException) -> str:
    message = str(error).strip()
    return f"{type(error).__name__}: {message}" if message else type(error).__name__


class Dispatcher:
    """
    Runs one dispatch tick at a time against a job store.

    Any number of dispatchers, in one process or many, may share a store:
    exclusivity comes from the store's atomic claim, not from this class.
    The in-process lock only stops a slow tick from overlapping the next one.
    """

    def __init__(
        self,
        store: JobStore,
        channel: NotificationChannel,
        backoff: Optional[BackoffPolicy] = None,
        batch_size: int = 25,
        stale_after: timedelta = timedelta(minutes=5),
        max_workers: int = 4,
        clock: Callable[[], datetime] = utc_now,
    ):
        """
        Initialize the dispatcher.

        Args:
            store: Job store to claim from and resolve into
            channel: Send collaborator
            backoff: Retry policy for failed sends
            batch_size: Max jobs claimed per tick
            stale_after: PROCESSING jobs older than this are reclaimed
            max_workers: Concurrent sends per tick
            clock: Returns the current UTC time
        """
        self.store = store
        self.channel = channel
        self.backoff = backoff or BackoffPolicy()
        self.batch_size = batch_size
        self.stale_after = stale_after
        self.max_workers = max_workers
        self.clock = clock
        self._lock = threading.Lock()

    def run_once(self) -> DispatchResult:
        """
        Execute one tick.

        1. Claim up to batch_size due or stale jobs
        2. Send each claimed job on the thread pool
        3. Resolve each job independently from its own outcome

        Never raises for store or channel failures; they are logged and
        reflected in the result.
        """
        run_started_at = self.clock()
        run_id = uuid4().hex

        if not self._lock.acquire(blocking=False):
            with log_context(run_id=run_id):
                logger.warning(
                    "Dispatch tick skipped: previous tick still in progress",
                    extra={"event": "dispatch.run.skipped", "reason": "lock_held"},
                )
            return DispatchResult(
                run_started_at=run_started_at, run_finished_at=self.clock(), skipped=True
            )

        try:
            with log_context(run_id=run_id):
                return self._run(run_id, run_started_at)
        finally:
            self._lock.release()

    def _run(self, run_id: str, run_started_at: datetime) -> DispatchResult:
        try:
            jobs = self.store.claim_due(self.batch_size, self.stale_after)
        except PersistenceError as e:
            logger.error(
                f"Failed to claim jobs: {e}",
                extra={"event": "dispatch.claim.failed", "error_type": type(e).__name__},
            )
            return DispatchResult(
                run_started_at=run_started_at, run_finished_at=self.clock(), error=str(e)
            )

        result = DispatchResult(
            run_started_at=run_started_at, run_finished_at=run_started_at, claimed=len(jobs)
        )

        if jobs:
            with ThreadPoolExecutor(
                max_workers=min(self.max_workers, len(jobs)),
                thread_name_prefix="dispatch",
            ) as pool:
                outcomes = list(pool.map(lambda job: self._process(job, run_id), jobs))

            result.completed = outcomes.count(COMPLETED)
            result.rescheduled = outcomes.count(RESCHEDULED)
            result.failed = outcomes.count(FAILED)
            result.lease_lost = outcomes.count(LEASE_LOST)
            result.errors = outcomes.count(ERROR)

        result.run_finished_at = self.clock()

        if jobs:
            logger.info(
                f"Dispatch tick finished: {result.completed} sent, {result.rescheduled} "
                f"rescheduled, {result.failed} failed",
                extra={
                    "event": "dispatch.run.completed",
                    "duration_ms": int(result.duration_seconds * 1000),
                    "claimed": result.claimed,
                    "completed": result.completed,
                    "rescheduled": result.rescheduled,
                    "failed": result.failed,
                    "lease_lost": result.lease_lost,
                    "errors": result.errors,
                },
            )

        return result

    def _process(self, job: NotificationJob, run_id: str) -> str:
        """Send one claimed job and resolve it. Returns the outcome label."""
        with log_context(run_id=run_id, job_id=job.id, notification_type=job.type.value):
            try:
                resolution = self._attempt(job)
            except Exception as e:
                # Only reachable if the backoff policy itself blows up
                logger.error(
                    f"Could not decide outcome for job {job.id}: {e}",
                    exc_info=True,
                    extra={"event": "dispatch.job.error"},
                )
                return ERROR

            try:
                applied = self.store.resolve(job.id, resolution, lease=job.version)
            except PersistenceError as e:
                logger.error(
                    f"Could not record outcome for job {job.id}; it will be reclaimed: {e}",
                    extra={"event": "dispatch.resolve.failed", "error_type": type(e).__name__},
                )
                return ERROR

            if not applied:
                return LEASE_LOST
            return self._log_resolution(job, resolution)

    def _attempt(self, job: NotificationJob) -> Resolution:
        if job.attempts >= job.max_attempts:
            return Resolution.failed(
                job.attempts, job.error or f"Attempt limit of {job.max_attempts} reached"
            )

        attempts = job.attempts + 1
        try:
            self.channel.send(job.type, job.payload)
        except Exception as e:
            # Any channel failure counts against the job, never against the loop
            error = _describe_error(e)
            decision = self.backoff.next(attempts, job.max_attempts, e, self.clock())
            if isinstance(decision, RetryAt):
                return Resolution.rescheduled(attempts, decision.at, error)
            return Resolution.failed(attempts, error)

        return Resolution.completed(attempts)

    def _log_resolution(self, job: NotificationJob, resolution: Resolution) -> str:
        if resolution.status == JobStatus.COMPLETED:
            logger.info(
                f"Sent {job.type.value} job {job.id}",
                extra={"event": "dispatch.job.completed", "attempts": resolution.attempts},
            )
            return COMPLETED

        if resolution.status == JobStatus.PENDING:
            logger.warning(
                f"Send failed for job {job.id} (attempt {resolution.attempts}/{job.max_attempts}); "
                f"retrying at {resolution.next_attempt.isoformat()}",
                extra={
                    "event": "dispatch.job.rescheduled",
                    "attempts": resolution.attempts,
                    "next_attempt": resolution.next_attempt,
                    "error": resolution.error,
                },
            )
            return RESCHEDULED

        logger.error(
            f"Job {job.id} failed permanently after {resolution.attempts} attempt(s): {resolution.error}",
            extra={
                "event": "dispatch.job.failed",
                "attempts": resolution.attempts,
                "error": resolution.error,
            },
        )
        return FAILED
