"""Tests for operator actions on the queue."""

from datetime import timedelta
from unittest.mock import Mock

import pytest

from coralqueue.admin import QueueAdmin
from coralqueue.domain.models import JobStatus, NotificationType, Resolution
from coralqueue.queue.batcher import Batcher

STALE_AFTER = timedelta(minutes=5)


def _finish(store, resolution):
    """Enqueue a job, claim it and resolve it. Only call with no other due jobs."""
    job = store.enqueue(NotificationType.ORDER_CONFIRMATION, {"orderId": "1042"})
    [claimed] = store.claim_due(1, STALE_AFTER)
    assert claimed.id == job.id
    store.resolve(claimed.id, resolution, lease=claimed.version)
    return store.get(job.id)


@pytest.fixture
def admin(store, clock):
    return QueueAdmin(store, clock=clock)


class TestQueueStatus:
    def test_counts_and_failures(self, admin, store, clock):
        failed = _finish(store, Resolution.failed(3, "DeliveryError: smtp down"))
        _finish(store, Resolution.completed(1))
        store.enqueue(NotificationType.BULLETIN, {"title": "a"})
        store.claim_due(1, STALE_AFTER)
        store.enqueue(NotificationType.BULLETIN, {"title": "b"})

        status = admin.queue_status()

        assert (status.pending, status.processing, status.completed_24h, status.failed) == (1, 1, 1, 1)
        assert [j.id for j in status.recent_failures] == [failed.id]

    def test_to_dict_shape(self, admin, store):
        failed = _finish(store, Resolution.failed(3, "DeliveryError: smtp down"))

        body = admin.queue_status().to_dict()

        assert body["status"] == {"pending": 0, "processing": 0, "completed_24h": 0, "failed": 1}
        [summary] = body["recentFailures"]
        assert summary["id"] == failed.id
        assert summary["type"] == "ORDER_CONFIRMATION"
        assert summary["error"] == "DeliveryError: smtp down"
        assert summary["attempts"] == 3
        assert summary["lastAttempt"] == failed.last_attempt.isoformat()

    def test_old_activity_drops_out_of_window(self, admin, store, clock):
        _finish(store, Resolution.completed(1))
        _finish(store, Resolution.failed(1, "x"))
        clock.advance(hours=25)

        status = admin.queue_status()

        assert status.completed_24h == 0
        assert status.failed == 1
        assert status.recent_failures == []

    def test_recent_failures_are_limited(self, admin, store, clock):
        for _ in range(12):
            _finish(store, Resolution.failed(1, "x"))
            clock.advance(1)

        assert len(admin.queue_status().recent_failures) == 10


class TestRetry:
    def test_retry_failed_job(self, admin, store):
        failed = _finish(store, Resolution.failed(3, "x"))

        assert admin.retry([failed.id]) == 1

        stored = store.get(failed.id)
        assert stored.status == JobStatus.PENDING
        assert stored.attempts == 0

    def test_retry_ignores_non_failed(self, admin, store):
        completed = _finish(store, Resolution.completed(1))
        assert admin.retry([completed.id, "missing"]) == 0

    @pytest.mark.parametrize("ids", ["job-1", None, {"id": "job-1"}, 5])
    def test_retry_requires_a_list(self, ids):
        store = Mock()
        with pytest.raises(ValueError):
            QueueAdmin(store).retry(ids)
        store.retry_failed.assert_not_called()


class TestCleanup:
    def test_cleanup_uses_day_cutoff(self, clock):
        store = Mock()
        store.cleanup.return_value = 4

        assert QueueAdmin(store, clock=clock).cleanup(7) == 4
        store.cleanup.assert_called_once_with(clock() - timedelta(days=7))

    def test_default_is_thirty_days(self, clock):
        store = Mock()
        store.cleanup.return_value = 0

        QueueAdmin(store, clock=clock).cleanup()

        store.cleanup.assert_called_once_with(clock() - timedelta(days=30))

    @pytest.mark.parametrize("days", [0, -1, "7", 1.5, True])
    def test_invalid_days(self, days):
        with pytest.raises(ValueError):
            QueueAdmin(Mock()).cleanup(days)

    def test_cleanup_never_touches_live_jobs(self, admin, store, clock):
        done = _finish(store, Resolution.completed(1))
        stuck = store.enqueue(NotificationType.BULLETIN, {"title": "stuck"})
        store.claim_due(1, STALE_AFTER)
        waiting = store.enqueue(
            NotificationType.BULLETIN, {"title": "later"}, next_attempt=clock() + timedelta(days=90)
        )
        clock.advance(days=60)

        assert admin.cleanup(30) == 1
        assert store.get(done.id) is None
        assert store.get(stuck.id) is not None
        assert store.get(waiting.id) is not None


class TestDeleteAll:
    def test_removes_every_state(self, admin, store):
        _finish(store, Resolution.completed(1))
        _finish(store, Resolution.failed(1, "x"))
        store.enqueue(NotificationType.BULLETIN, {})

        assert admin.delete_all() == 3
        assert admin.queue_status().to_dict()["status"] == {
            "pending": 0,
            "processing": 0,
            "completed_24h": 0,
            "failed": 0,
        }


class TestSendTest:
    def test_queues_immediate_bulletin(self, admin, store):
        job = admin.send_test(recipient="ops@coralshop.org")

        stored = store.get(job.id)
        assert stored.type == NotificationType.BULLETIN
        assert stored.status == JobStatus.PENDING
        assert stored.next_attempt is None
        assert stored.payload["test"] is True
        assert stored.payload["recipient"] == "ops@coralshop.org"

    def test_never_merges_into_open_bulletin(self, admin, store):
        bulletin = Batcher(store).enqueue(NotificationType.BULLETIN, {"title": "Spring sale"})

        first = admin.send_test()
        second = admin.send_test()

        assert len({bulletin.id, first.id, second.id}) == 3
        assert "recipient" not in first.payload
        assert {j.id for j in store.claim_due(10, STALE_AFTER)} == {first.id, second.id}
