"""Data access layer for the notification_queue table.

NotificationJobRepository runs inside a caller-owned session (see
``get_session``) and returns domain models. Every state transition is a
compare-and-swap guarded by the row's ``version`` column, so a write based on
a stale read affects zero rows instead of clobbering a concurrent worker.
"""

import logging
from datetime import datetime
from typing import Iterable, List, Optional

from sqlalchemy import and_, delete, func, or_, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from coralqueue.domain.models import JobStatus, NotificationJob, Resolution
from coralqueue.utils.timestamps import format_db_timestamp

from .exceptions import PersistenceError, StoreUnavailable
from .schema import NotificationJobModel

logger = logging.getLogger(__name__)

TERMINAL_STATUSES = (JobStatus.COMPLETED.value, JobStatus.FAILED.value)


class BatchConflictError(PersistenceError):
    """Another writer opened a batch for the same correlation key first."""

    pass


def translate_store_error(operation: str, exc: SQLAlchemyError) -> PersistenceError:
    """Translate a SQLAlchemy failure into the persistence taxonomy."""
    logger.error(f"Error during {operation}: {exc}", exc_info=True)
    if isinstance(exc, OperationalError) or (
        isinstance(exc, DBAPIError) and exc.connection_invalidated
    ):
        return StoreUnavailable(f"Job store unavailable during {operation}: {exc}")
    return PersistenceError(f"Failed to {operation}: {exc}")


class NotificationJobRepository:
    """Repository for notification job operations."""

    def __init__(self, session: Session):
        """Initialize repository with database session.

        Args:
            session: SQLAlchemy session for database operations
        """
        self.session = session

    def get(self, job_id: str) -> Optional[NotificationJob]:
        """Retrieve a job by id, or None if it does not exist.

        Raises:
            PersistenceError: If database error occurs
        """
        try:
            model = self.session.get(NotificationJobModel, job_id)
            return model.to_domain() if model is not None else None
        except SQLAlchemyError as e:
            raise translate_store_error("retrieve job", e) from e

    def add(self, job: NotificationJob, open_batch_key: Optional[str] = None) -> NotificationJob:
        """Insert a new job.

        Args:
            job: Job to persist
            open_batch_key: Correlation key to hold open for merges, if any

        Raises:
            BatchConflictError: If another job already holds ``open_batch_key``
            PersistenceError: If database error occurs
        """
        try:
            self.session.add(NotificationJobModel.from_domain(job, open_batch_key=open_batch_key))
            self.session.flush()
            return job
        except IntegrityError as e:
            if open_batch_key is not None:
                raise BatchConflictError(
                    f"Batch already open for correlation key {open_batch_key}"
                ) from e
            raise translate_store_error("insert job", e) from e
        except SQLAlchemyError as e:
            raise translate_store_error("insert job", e) from e

    def release_closed_batches(self, correlation_key: str, now: datetime) -> int:
        """Stop holding a key open on jobs that can no longer accept merges.

        A job stops accepting merges once its window has elapsed, once it has
        been attempted, or once it left PENDING.

        Returns:
            Number of jobs released
        """
        now_str = format_db_timestamp(now)
        try:
            result = self.session.execute(
                update(NotificationJobModel)
                .where(
                    NotificationJobModel.open_batch_key == correlation_key,
                    or_(
                        NotificationJobModel.status != JobStatus.PENDING.value,
                        NotificationJobModel.attempts > 0,
                        NotificationJobModel.next_attempt.is_(None),
                        NotificationJobModel.next_attempt <= now_str,
                    ),
                )
                .values(open_batch_key=None)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount
        except SQLAlchemyError as e:
            raise translate_store_error("release closed batches", e) from e

    def find_open_batch(self, correlation_key: str) -> Optional[NotificationJob]:
        """Return the job currently accepting merges for a key, if any."""
        try:
            stmt = select(NotificationJobModel).where(
                NotificationJobModel.open_batch_key == correlation_key
            )
            model = self.session.execute(stmt).scalar_one_or_none()
            return model.to_domain() if model is not None else None
        except SQLAlchemyError as e:
            raise translate_store_error("find open batch", e) from e

    def merge_payload(
        self, job: NotificationJob, payload: dict, now: datetime
    ) -> Optional[NotificationJob]:
        """Replace the payload of an open batch job.

        Returns:
            The updated job, or None if the job changed since it was read
        """
        try:
            result = self.session.execute(
                update(NotificationJobModel)
                .where(
                    NotificationJobModel.id == job.id,
                    NotificationJobModel.version == job.version,
                    NotificationJobModel.status == JobStatus.PENDING.value,
                    NotificationJobModel.open_batch_key.is_not(None),
                )
                .values(
                    payload=payload,
                    updated_at=format_db_timestamp(now),
                    version=NotificationJobModel.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            return job.model_copy(
                update={"payload": payload, "updated_at": now, "version": job.version + 1}
            )
        except SQLAlchemyError as e:
            raise translate_store_error("merge payload", e) from e

    def find_claimable(
        self, now: datetime, stale_cutoff: datetime, limit: int
    ) -> List[NotificationJob]:
        """Select due PENDING jobs and stale PROCESSING jobs, oldest first.

        Rows are locked with SKIP LOCKED on backends that support it, so
        concurrent claimers see disjoint candidate sets.
        """
        now_str = format_db_timestamp(now)
        cutoff_str = format_db_timestamp(stale_cutoff)
        try:
            stmt = (
                select(NotificationJobModel)
                .where(
                    or_(
                        and_(
                            NotificationJobModel.status == JobStatus.PENDING.value,
                            or_(
                                NotificationJobModel.next_attempt.is_(None),
                                NotificationJobModel.next_attempt <= now_str,
                            ),
                        ),
                        and_(
                            NotificationJobModel.status == JobStatus.PROCESSING.value,
                            NotificationJobModel.updated_at < cutoff_str,
                        ),
                    )
                )
                .order_by(NotificationJobModel.created_at.asc())
                .limit(max(1, limit))
                .with_for_update(skip_locked=True)
            )
            models = self.session.execute(stmt).scalars().all()
            return [model.to_domain() for model in models]
        except SQLAlchemyError as e:
            raise translate_store_error("find claimable jobs", e) from e

    def mark_processing(self, job: NotificationJob, now: datetime) -> Optional[NotificationJob]:
        """Claim a job observed by find_claimable.

        Returns:
            The claimed job carrying its new version (the lease), or None if
            another worker changed the row first
        """
        now_str = format_db_timestamp(now)
        try:
            result = self.session.execute(
                update(NotificationJobModel)
                .where(
                    NotificationJobModel.id == job.id,
                    NotificationJobModel.version == job.version,
                    NotificationJobModel.status == job.status.value,
                )
                .values(
                    status=JobStatus.PROCESSING.value,
                    last_attempt=now_str,
                    next_attempt=None,
                    updated_at=now_str,
                    open_batch_key=None,
                    version=NotificationJobModel.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            if result.rowcount != 1:
                return None
            return job.model_copy(
                update={
                    "status": JobStatus.PROCESSING,
                    "last_attempt": now,
                    "next_attempt": None,
                    "updated_at": now,
                    "version": job.version + 1,
                }
            )
        except SQLAlchemyError as e:
            raise translate_store_error("claim job", e) from e

    def resolve(
        self, job_id: str, lease: Optional[int], resolution: Resolution, now: datetime
    ) -> bool:
        """Record the outcome of a send for a PROCESSING job.

        Args:
            job_id: Job to resolve
            lease: Version returned by the claim; None skips the lease check
            resolution: Transition to apply
            now: Resolution time

        Returns:
            True if the row was updated, False if the job is no longer held
        """
        now_str = format_db_timestamp(now)
        values = {
            "status": resolution.status.value,
            "attempts": resolution.attempts,
            "next_attempt": format_db_timestamp(resolution.next_attempt),
            "processed_at": now_str if resolution.status.is_terminal else None,
            "updated_at": now_str,
            "version": NotificationJobModel.version + 1,
        }
        if resolution.error is not None:
            values["error"] = resolution.error

        conditions = [
            NotificationJobModel.id == job_id,
            NotificationJobModel.status == JobStatus.PROCESSING.value,
        ]
        if lease is not None:
            conditions.append(NotificationJobModel.version == lease)

        try:
            result = self.session.execute(
                update(NotificationJobModel)
                .where(*conditions)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            return result.rowcount == 1
        except SQLAlchemyError as e:
            raise translate_store_error("resolve job", e) from e

    def count_by_status(
        self, status: JobStatus, processed_since: Optional[datetime] = None
    ) -> int:
        """Count jobs in a status, optionally only those processed since a time."""
        try:
            stmt = select(func.count()).select_from(NotificationJobModel).where(
                NotificationJobModel.status == status.value
            )
            if processed_since is not None:
                stmt = stmt.where(
                    NotificationJobModel.processed_at >= format_db_timestamp(processed_since)
                )
            return int(self.session.execute(stmt).scalar_one())
        except SQLAlchemyError as e:
            raise translate_store_error("count jobs", e) from e

    def recent_failures(self, since: datetime, limit: int = 10) -> List[NotificationJob]:
        """FAILED jobs updated since a time, newest first."""
        try:
            stmt = (
                select(NotificationJobModel)
                .where(
                    NotificationJobModel.status == JobStatus.FAILED.value,
                    NotificationJobModel.updated_at >= format_db_timestamp(since),
                )
                .order_by(NotificationJobModel.updated_at.desc())
                .limit(limit)
            )
            return [model.to_domain() for model in self.session.execute(stmt).scalars().all()]
        except SQLAlchemyError as e:
            raise translate_store_error("list recent failures", e) from e

    def reset_failed(self, job_ids: Iterable[str], now: datetime) -> int:
        """Re-arm FAILED jobs; ids in any other state are left untouched.

        Returns:
            Number of jobs reset to PENDING
        """
        ids = list(job_ids)
        if not ids:
            return 0
        try:
            result = self.session.execute(
                update(NotificationJobModel)
                .where(
                    NotificationJobModel.id.in_(ids),
                    NotificationJobModel.status == JobStatus.FAILED.value,
                )
                .values(
                    status=JobStatus.PENDING.value,
                    attempts=0,
                    error=None,
                    last_attempt=None,
                    next_attempt=None,
                    processed_at=None,
                    updated_at=format_db_timestamp(now),
                    version=NotificationJobModel.version + 1,
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount
        except SQLAlchemyError as e:
            raise translate_store_error("reset failed jobs", e) from e

    def delete_terminal_before(self, cutoff: datetime) -> int:
        """Delete COMPLETED/FAILED jobs processed before cutoff."""
        try:
            result = self.session.execute(
                delete(NotificationJobModel)
                .where(
                    NotificationJobModel.status.in_(TERMINAL_STATUSES),
                    NotificationJobModel.processed_at.is_not(None),
                    NotificationJobModel.processed_at < format_db_timestamp(cutoff),
                )
                .execution_options(synchronize_session=False)
            )
            return result.rowcount
        except SQLAlchemyError as e:
            raise translate_store_error("clean up jobs", e) from e

    def delete_all(self) -> int:
        """Delete every job regardless of state."""
        try:
            result = self.session.execute(
                delete(NotificationJobModel).execution_options(synchronize_session=False)
            )
            return result.rowcount
        except SQLAlchemyError as e:
            raise translate_store_error("delete all jobs", e) from e
