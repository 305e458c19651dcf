"""Tests for SqlJobStore against a real SQLite database."""

from datetime import timedelta

import pytest

from coralqueue.domain.models import JobStatus, NotificationType, Resolution
from coralqueue.persistence import close_database
from coralqueue.persistence.exceptions import StoreUnavailable
from coralqueue.queue.batcher import replace_merger
from coralqueue.queue.store import SqlJobStore

STALE_AFTER = timedelta(minutes=5)


def _enqueue(store, **kwargs):
    payload = kwargs.pop("payload", {"orderId": "1042"})
    return store.enqueue(NotificationType.ORDER_CONFIRMATION, payload, **kwargs)


def _fail(store, job, error="SMTPServerDisconnected: gone"):
    [claimed] = [j for j in store.claim_due(50, STALE_AFTER) if j.id == job.id]
    assert store.resolve(claimed.id, Resolution.failed(claimed.attempts + 1, error), lease=claimed.version)
    return store.get(job.id)


def _complete(store, job):
    [claimed] = [j for j in store.claim_due(50, STALE_AFTER) if j.id == job.id]
    assert store.resolve(claimed.id, Resolution.completed(1), lease=claimed.version)
    return store.get(job.id)


class TestEnqueue:
    def test_new_job_is_pending_and_unattempted(self, store, clock):
        job = _enqueue(store, max_attempts=5)

        stored = store.get(job.id)
        assert stored.status == JobStatus.PENDING
        assert stored.attempts == 0
        assert stored.max_attempts == 5
        assert stored.next_attempt is None
        assert stored.processed_at is None
        assert stored.created_at == clock()
        assert stored.payload == {"orderId": "1042"}

    def test_ids_are_unique(self, store):
        ids = {_enqueue(store).id for _ in range(20)}
        assert len(ids) == 20

    def test_get_unknown_id_returns_none(self, store):
        assert store.get("does-not-exist") is None

    def test_uninitialised_database_is_unavailable(self):
        close_database()
        with pytest.raises(StoreUnavailable):
            SqlJobStore().enqueue(NotificationType.BULLETIN, {})


class TestClaimDue:
    def test_claim_moves_job_to_processing(self, store, clock):
        job = _enqueue(store)

        [claimed] = store.claim_due(10, STALE_AFTER)

        assert claimed.id == job.id
        assert claimed.status == JobStatus.PROCESSING
        assert claimed.last_attempt == clock()
        assert claimed.version == job.version + 1
        assert store.get(job.id).status == JobStatus.PROCESSING

    def test_late_claim_clears_due_time(self, store, clock):
        outcome = store.merge_or_create(
            "LOW_STOCK:acro-12",
            NotificationType.LOW_STOCK,
            {"coralId": "acro-12", "quantity": 1},
            replace_merger,
            batch_window=60,
        )
        clock.advance(90)

        [claimed] = store.claim_due(10, STALE_AFTER)
        stored = store.get(outcome.job.id)

        assert claimed.next_attempt is None
        assert stored.status == JobStatus.PROCESSING
        assert stored.last_attempt == clock()
        assert stored.next_attempt is None or stored.next_attempt >= stored.last_attempt

    def test_claimed_job_is_not_claimed_again(self, store):
        _enqueue(store)

        assert len(store.claim_due(10, STALE_AFTER)) == 1
        assert store.claim_due(10, STALE_AFTER) == []

    def test_future_jobs_wait_until_due(self, store, clock):
        job = _enqueue(store, next_attempt=clock() + timedelta(seconds=60))

        clock.advance(59)
        assert store.claim_due(10, STALE_AFTER) == []

        clock.advance(1)
        assert [j.id for j in store.claim_due(10, STALE_AFTER)] == [job.id]

    def test_claims_oldest_first_up_to_limit(self, store, clock):
        jobs = []
        for _ in range(4):
            jobs.append(_enqueue(store))
            clock.advance(1)

        claimed = store.claim_due(2, STALE_AFTER)

        assert [j.id for j in claimed] == [jobs[0].id, jobs[1].id]

    def test_terminal_jobs_are_never_claimed(self, store):
        _complete(store, _enqueue(store))
        _fail(store, _enqueue(store))

        assert store.claim_due(10, STALE_AFTER) == []

    def test_stale_processing_job_is_reclaimed(self, store, clock):
        job = _enqueue(store)
        [first] = store.claim_due(10, STALE_AFTER)

        clock.advance(minutes=4)
        assert store.claim_due(10, STALE_AFTER) == []

        clock.advance(minutes=1, seconds=1)
        [second] = store.claim_due(10, STALE_AFTER)

        assert second.id == job.id
        assert second.attempts == 0
        assert second.version == first.version + 1


class TestResolve:
    def test_completed_sets_processed_at(self, store, clock):
        _enqueue(store)
        [claimed] = store.claim_due(10, STALE_AFTER)
        clock.advance(2)

        assert store.resolve(claimed.id, Resolution.completed(1), lease=claimed.version)

        stored = store.get(claimed.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.attempts == 1
        assert stored.processed_at == clock()

    def test_resolve_is_idempotent(self, store):
        _enqueue(store)
        [claimed] = store.claim_due(10, STALE_AFTER)

        assert store.resolve(claimed.id, Resolution.completed(1), lease=claimed.version)
        assert not store.resolve(claimed.id, Resolution.completed(1), lease=claimed.version)
        assert not store.resolve(
            claimed.id, Resolution.failed(1, "late duplicate"), lease=claimed.version
        )

        stored = store.get(claimed.id)
        assert stored.status == JobStatus.COMPLETED
        assert stored.error is None

    def test_rescheduled_keeps_job_pending_with_error(self, store, clock):
        _enqueue(store)
        [claimed] = store.claim_due(10, STALE_AFTER)
        retry_at = clock() + timedelta(seconds=2)

        store.resolve(
            claimed.id,
            Resolution.rescheduled(1, retry_at, "DeliveryError: timeout"),
            lease=claimed.version,
        )

        stored = store.get(claimed.id)
        assert stored.status == JobStatus.PENDING
        assert stored.attempts == 1
        assert stored.next_attempt == retry_at
        assert stored.error == "DeliveryError: timeout"
        assert stored.processed_at is None

    def test_stale_lease_cannot_overwrite_new_claim(self, store, clock):
        _enqueue(store)
        [original] = store.claim_due(10, STALE_AFTER)
        clock.advance(minutes=6)
        [reclaimed] = store.claim_due(10, STALE_AFTER)

        assert not store.resolve(original.id, Resolution.completed(1), lease=original.version)
        assert store.get(original.id).status == JobStatus.PROCESSING

        assert store.resolve(reclaimed.id, Resolution.completed(1), lease=reclaimed.version)
        assert store.get(original.id).status == JobStatus.COMPLETED

    def test_pending_job_cannot_be_resolved(self, store):
        job = _enqueue(store)
        assert not store.resolve(job.id, Resolution.completed(1))
        assert store.get(job.id).status == JobStatus.PENDING

    def test_processing_is_not_a_resolution(self):
        with pytest.raises(ValueError):
            Resolution(status=JobStatus.PROCESSING, attempts=1)


class TestMergeOrCreate:
    def test_first_request_opens_batch(self, store, clock):
        outcome = store.merge_or_create(
            "STATUS_UPDATE:1042",
            NotificationType.STATUS_UPDATE,
            {"orderId": "1042", "status": "PAID"},
            replace_merger,
            batch_window=300,
        )

        assert not outcome.merged
        assert outcome.job.correlation_key == "STATUS_UPDATE:1042"
        assert outcome.job.next_attempt == clock() + timedelta(seconds=300)

    def test_second_request_merges(self, store, clock):
        first = store.merge_or_create(
            "STATUS_UPDATE:1042",
            NotificationType.STATUS_UPDATE,
            {"orderId": "1042", "status": "PAID"},
            replace_merger,
        )
        clock.advance(30)
        second = store.merge_or_create(
            "STATUS_UPDATE:1042",
            NotificationType.STATUS_UPDATE,
            {"orderId": "1042", "status": "SHIPPED"},
            replace_merger,
        )

        assert second.merged
        assert second.job.id == first.job.id
        stored = store.get(first.job.id)
        assert stored.payload["status"] == "SHIPPED"
        assert stored.payload["mergedCount"] == 2
        assert stored.next_attempt == first.job.next_attempt

    def test_elapsed_window_opens_new_batch(self, store, clock):
        first = store.merge_or_create(
            "STATUS_UPDATE:1042",
            NotificationType.STATUS_UPDATE,
            {"orderId": "1042"},
            replace_merger,
            batch_window=60,
        )
        clock.advance(60)
        second = store.merge_or_create(
            "STATUS_UPDATE:1042",
            NotificationType.STATUS_UPDATE,
            {"orderId": "1042"},
            replace_merger,
            batch_window=60,
        )

        assert not second.merged
        assert second.job.id != first.job.id


class TestAdminQueries:
    # _complete/_fail claim every due job, so finished jobs are created first

    def test_count_by_status(self, store):
        _complete(store, _enqueue(store))
        _enqueue(store)
        _enqueue(store)

        assert store.count_by_status(JobStatus.PENDING) == 2
        assert store.count_by_status(JobStatus.COMPLETED) == 1
        assert store.count_by_status(JobStatus.FAILED) == 0

    def test_count_processed_since(self, store, clock):
        _complete(store, _enqueue(store))
        clock.advance(hours=25)
        _complete(store, _enqueue(store))

        since = clock() - timedelta(hours=24)
        assert store.count_by_status(JobStatus.COMPLETED, processed_since=since) == 1

    def test_recent_failures_newest_first(self, store, clock):
        older = _fail(store, _enqueue(store), error="first")
        clock.advance(10)
        newer = _fail(store, _enqueue(store), error="second")

        failures = store.recent_failures(clock() - timedelta(hours=1))

        assert [j.id for j in failures] == [newer.id, older.id]
        assert failures[0].error == "second"

    def test_retry_resets_only_failed_jobs(self, store):
        failed = _fail(store, _enqueue(store))
        completed = _complete(store, _enqueue(store))
        pending = _enqueue(store)

        reset = store.retry_failed([failed.id, pending.id, completed.id, "unknown"])

        assert reset == 1
        stored = store.get(failed.id)
        assert stored.status == JobStatus.PENDING
        assert stored.attempts == 0
        assert stored.error is None
        assert stored.next_attempt is None
        assert stored.processed_at is None
        assert store.get(completed.id).status == JobStatus.COMPLETED

    def test_retry_with_no_ids(self, store):
        assert store.retry_failed([]) == 0

    def test_cleanup_removes_only_old_terminal_jobs(self, store, clock):
        old_completed = _complete(store, _enqueue(store))
        old_failed = _fail(store, _enqueue(store))
        old_processing = _enqueue(store)
        store.claim_due(1, STALE_AFTER)
        old_pending = _enqueue(store, next_attempt=clock() + timedelta(days=365))

        clock.advance(days=31)
        deleted = store.cleanup(clock() - timedelta(days=30))

        assert deleted == 2
        assert store.get(old_completed.id) is None
        assert store.get(old_failed.id) is None
        assert store.get(old_pending.id).status == JobStatus.PENDING
        assert store.get(old_processing.id).status == JobStatus.PROCESSING

    def test_cleanup_keeps_recent_terminal_jobs(self, store, clock):
        completed = _complete(store, _enqueue(store))

        assert store.cleanup(clock() - timedelta(days=1)) == 0
        assert store.get(completed.id) is not None

    def test_delete_all(self, store):
        _complete(store, _enqueue(store))
        _enqueue(store)
        store.claim_due(1, STALE_AFTER)
        _enqueue(store)

        assert store.delete_all() == 3
        assert store.count_by_status(JobStatus.PENDING) == 0
        assert store.count_by_status(JobStatus.PROCESSING) == 0
        assert store.count_by_status(JobStatus.COMPLETED) == 0
