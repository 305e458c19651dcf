"""Tests for the admin HTTP API."""

from datetime import timedelta
from unittest.mock import Mock

import pytest
from fastapi.testclient import TestClient

from coralqueue.admin import QueueAdmin
from coralqueue.admin.api import create_app
from coralqueue.domain.models import JobStatus, NotificationType, Resolution
from coralqueue.persistence.exceptions import PersistenceError, StoreUnavailable
from coralqueue.queue.batcher import Batcher

TOKEN = "s3cret"
HEADERS = {"X-Admin-Token": TOKEN}


@pytest.fixture
def admin(store, clock):
    return QueueAdmin(store, clock=clock)


@pytest.fixture
def client(admin, store):
    return TestClient(create_app(admin, Batcher(store), api_token=TOKEN))


def _failed_job(store):
    store.enqueue(NotificationType.STATUS_UPDATE, {"orderId": "1042"})
    [claimed] = store.claim_due(1, timedelta(minutes=5))
    store.resolve(claimed.id, Resolution.failed(3, "DeliveryError: smtp down"), lease=claimed.version)
    return claimed


class TestAuth:
    def test_missing_token_rejected(self, client):
        assert client.get("/notifications/queue/status").status_code == 401

    def test_wrong_token_rejected(self, client):
        response = client.get("/notifications/queue/status", headers={"X-Admin-Token": "nope"})
        assert response.status_code == 401

    def test_non_ascii_token_rejected(self, client):
        response = client.get(
            "/notifications/queue/status", headers={"X-Admin-Token": "récif".encode("utf-8")}
        )
        assert response.status_code == 401

    def test_no_token_configured_allows_requests(self, admin, store):
        client = TestClient(create_app(admin, Batcher(store)))
        assert client.get("/notifications/queue/status").status_code == 200


class TestStatus:
    def test_status_body(self, client, store):
        failed = _failed_job(store)
        store.enqueue(NotificationType.BULLETIN, {"title": "x"})

        response = client.get("/notifications/queue/status", headers=HEADERS)

        assert response.status_code == 200
        body = response.json()
        assert body["status"] == {"pending": 1, "processing": 0, "completed_24h": 0, "failed": 1}
        assert body["recentFailures"][0]["id"] == failed.id
        assert body["recentFailures"][0]["error"] == "DeliveryError: smtp down"


class TestRetry:
    def test_retry(self, client, store):
        failed = _failed_job(store)

        response = client.post("/notifications/queue/retry", json={"ids": [failed.id]}, headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"message": "Notifications queued for retry", "count": 1}
        assert store.get(failed.id).status == JobStatus.PENDING

    @pytest.mark.parametrize("body", [{}, {"ids": "abc"}, {"ids": {"a": 1}}])
    def test_ids_must_be_a_list(self, client, body):
        response = client.post("/notifications/queue/retry", json=body, headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid request format"


class TestCleanup:
    @pytest.mark.parametrize("days", ["abc", "0", "-3"])
    def test_invalid_days(self, client, days):
        response = client.delete(f"/notifications/queue/cleanup?days={days}", headers=HEADERS)

        assert response.status_code == 400
        assert response.json()["detail"] == "Invalid days parameter"

    def test_cleanup(self, client, store, clock):
        _failed_job(store)
        clock.advance(days=8)

        response = client.delete("/notifications/queue/cleanup?days=7", headers=HEADERS)

        assert response.status_code == 200
        assert response.json()["count"] == 1

    def test_default_days(self, client, store, clock):
        _failed_job(store)
        clock.advance(days=8)

        response = client.delete("/notifications/queue/cleanup", headers=HEADERS)

        assert response.json()["count"] == 0


class TestDeleteAll:
    def test_delete_all(self, client, store):
        store.enqueue(NotificationType.BULLETIN, {})
        _failed_job(store)

        response = client.delete("/notifications/queue/all", headers=HEADERS)

        assert response.status_code == 200
        assert response.json() == {"message": "Successfully cleared all notifications", "count": 2}


class TestSendTest:
    def test_send_test_queues_job(self, client, store):
        response = client.post("/notifications/test", json={"recipient": "ops@coralshop.org"}, headers=HEADERS)

        assert response.status_code == 202
        body = response.json()
        assert body["message"] == "Test notification queued"
        assert store.get(body["id"]).payload["recipient"] == "ops@coralshop.org"

    def test_send_test_without_body(self, client, store):
        response = client.post("/notifications/test", headers=HEADERS)

        assert response.status_code == 202
        assert store.get(response.json()["id"]).payload["test"] is True


class TestEnqueue:
    def test_enqueue_batched(self, client, clock):
        response = client.post(
            "/notifications/queue/enqueue",
            json={"type": "STATUS_UPDATE", "payload": {"orderId": "1042", "status": "PAID"}, "batchWindow": 60},
            headers=HEADERS,
        )

        assert response.status_code == 201
        body = response.json()
        assert body["type"] == "STATUS_UPDATE"
        assert body["status"] == "PENDING"
        assert body["correlationKey"] == "STATUS_UPDATE:1042"
        assert body["nextAttempt"] == (clock() + timedelta(seconds=60)).isoformat()

    def test_enqueue_merges(self, client):
        request = {"type": "LOW_STOCK", "payload": {"coralId": "acro-12", "quantity": 1}}

        first = client.post("/notifications/queue/enqueue", json=request, headers=HEADERS).json()
        second = client.post("/notifications/queue/enqueue", json=request, headers=HEADERS).json()

        assert first["id"] == second["id"]

    @pytest.mark.parametrize(
        "body",
        [
            {"type": "SMOKE_SIGNAL", "payload": {}},
            {"type": "BULLETIN", "payload": {}, "maxAttempts": 0},
            {"type": "BULLETIN", "payload": {}, "batchWindow": -1},
            {"payload": {}},
        ],
    )
    def test_invalid_requests(self, client, body):
        response = client.post("/notifications/queue/enqueue", json=body, headers=HEADERS)
        assert response.status_code == 422


class TestStoreErrors:
    def _client(self, **admin_behaviour):
        admin = Mock(spec=QueueAdmin)
        for name, effect in admin_behaviour.items():
            getattr(admin, name).side_effect = effect
        return TestClient(create_app(admin, Mock(spec=Batcher)))

    def test_store_unavailable_is_503(self):
        client = self._client(queue_status=StoreUnavailable("database is locked"))

        response = client.get("/notifications/queue/status")

        assert response.status_code == 503
        assert response.json() == {"detail": "Notification store unavailable"}

    def test_other_store_errors_are_500(self):
        client = self._client(delete_all=PersistenceError("constraint failed"))

        response = client.delete("/notifications/queue/all")

        assert response.status_code == 500
        assert response.json() == {"detail": "Notification store error"}

    def test_value_errors_are_400(self):
        client = self._client(send_test=ValueError("bad recipient"))

        response = client.post("/notifications/test")

        assert response.status_code == 400
        assert response.json() == {"detail": "bad recipient"}
