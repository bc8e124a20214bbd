"""Tests for the health check result API endpoints."""

from datetime import date, timedelta
from unittest.mock import Mock

import pytest
from fastapi.encoders import jsonable_encoder
from fastapi.testclient import TestClient

from src.adapters.storage.memory_repository import InMemoryHealthCheckResultRepository
from src.api.dependencies import get_repository
from src.api.main import app
from src.domain.ports import HealthCheckResultRepositoryPort
from tests.factories import make_detail, make_request

BASE = "/api/health-check-results"
HEADERS = {"X-Actor-Id": "staff-1"}


@pytest.fixture
def repository():
    return InMemoryHealthCheckResultRepository()


@pytest.fixture
def client(repository):
    """Test client backed by a fresh in-memory repository."""
    app.dependency_overrides[get_repository] = lambda: repository
    try:
        with TestClient(app) as test_client:
            yield test_client
    finally:
        app.dependency_overrides.clear()


def create(client, **kwargs) -> str:
    response = client.post(BASE, json=jsonable_encoder(make_request(**kwargs)), headers=HEADERS)
    assert response.status_code == 201
    return response.json()["record_id"]


def future(days: int = 14) -> str:
    return (date.today() + timedelta(days=days)).isoformat()


class TestRootAndHealth:
    def test_root_endpoint(self, client):
        response = client.get("/")
        assert response.status_code == 200
        assert "X-Process-Time" in response.headers

    def test_health_reports_repository(self, client):
        response = client.get("/api/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["repository"]["status"] == "connected"

    def test_health_reports_unreachable_repository(self):
        broken = Mock(spec=HealthCheckResultRepositoryPort)
        broken.list_all.side_effect = RuntimeError("down")
        app.dependency_overrides[get_repository] = lambda: broken
        try:
            with TestClient(app) as client:
                data = client.get("/api/health").json()
        finally:
            app.dependency_overrides.clear()

        assert data["status"] == "unhealthy"
        assert data["repository"]["status"] == "disconnected"


class TestCommands:
    """Lifecycle commands over HTTP."""

    def test_create_returns_waiting_for_approval(self, client):
        response = client.post(BASE, json=jsonable_encoder(make_request()), headers=HEADERS)

        assert response.status_code == 201
        assert response.json()["new_status"] == "WaitingForApproval"

    def test_approve_then_complete(self, client):
        record_id = create(client, follow_up_required=True, follow_up_date=date.today() + timedelta(days=7))

        approved = client.post(f"{BASE}/{record_id}/approve", headers=HEADERS)
        completed = client.post(f"{BASE}/{record_id}/complete", headers=HEADERS)

        assert approved.json()["new_status"] == "FollowUpRequired"
        assert completed.status_code == 200
        assert completed.json()["new_status"] == "Completed"

    def test_adjustment_round_trip(self, client):
        record_id = create(client)

        cancel = client.post(f"{BASE}/{record_id}/cancel-for-adjustment", json={"reason": "missing tests"}, headers=HEADERS)
        edit = client.put(
            f"{BASE}/{record_id}",
            json={"details": [make_detail("Retested blood pressure")], "follow_up_required": False},
            headers=HEADERS,
        )
        resubmit = client.post(f"{BASE}/{record_id}/resubmit", headers=HEADERS)

        assert cancel.json()["new_status"] == "CancelledForAdjustment"
        assert edit.json()["new_status"] == "CancelledForAdjustment"
        assert resubmit.json()["new_status"] == "WaitingForApproval"

    def test_schedule_and_cancel_follow_up(self, client):
        record_id = create(client)
        client.post(f"{BASE}/{record_id}/approve", headers=HEADERS)

        scheduled = client.post(
            f"{BASE}/{record_id}/schedule-follow-up", json={"follow_up_date": future()}, headers=HEADERS
        )
        cancelled = client.post(f"{BASE}/{record_id}/cancel-follow-up", headers=HEADERS)

        assert scheduled.json()["new_status"] == "FollowUpRequired"
        assert cancelled.json()["new_status"] == "NoFollowUpRequired"

    def test_bulk_soft_delete_and_restore(self, client):
        first = create(client)
        second = create(client)

        deleted = client.post(f"{BASE}/soft-delete", json={"ids": [first, second, "missing"]}, headers=HEADERS)
        restored = client.post(f"{BASE}/restore", json={"ids": [first]}, headers=HEADERS)

        assert deleted.status_code == 200
        assert deleted.json()["succeeded"] == 2
        assert deleted.json()["failed"] == 1
        assert deleted.json()["results"][2]["guard"] == "exists"
        assert restored.json()["results"][0]["result"]["new_status"] == "WaitingForApproval"


class TestErrorMapping:
    """Domain errors map to status codes and name the failing guard."""

    def test_missing_actor_header(self, client):
        response = client.post(BASE, json=jsonable_encoder(make_request()))

        assert response.status_code == 422
        assert response.json()["guard"] == "actor"

    def test_unknown_record(self, client):
        response = client.get(f"{BASE}/missing")

        assert response.status_code == 404
        assert response.json()["guard"] == "exists"

    def test_illegal_transition(self, client):
        record_id = create(client)

        response = client.post(f"{BASE}/{record_id}/complete", headers=HEADERS)

        assert response.status_code == 409
        assert response.json()["error"] == "InvalidTransitionError"
        assert response.json()["guard"] == "transition"

    def test_cancellation_requires_reason(self, client):
        record_id = create(client)

        response = client.post(f"{BASE}/{record_id}/cancel-completely", json={}, headers=HEADERS)

        assert response.status_code == 422
        assert response.json()["guard"] == "payload"

    def test_follow_up_flag_without_date(self, client):
        response = client.post(
            BASE, json=jsonable_encoder(make_request(follow_up_required=True)), headers=HEADERS
        )

        assert response.status_code == 422
        assert response.json()["guard"] == "create"

    def test_follow_up_in_the_past(self, client):
        record_id = create(client)
        client.post(f"{BASE}/{record_id}/approve", headers=HEADERS)

        response = client.post(
            f"{BASE}/{record_id}/schedule-follow-up",
            json={"follow_up_date": (date.today() - timedelta(days=1)).isoformat()},
            headers=HEADERS,
        )

        assert response.status_code == 422
        assert response.json()["guard"] == "follow_up_date"


class TestQueries:
    """List views, record reads, history and statistics."""

    def test_get_record_lists_allowed_commands(self, client):
        record_id = create(client)

        data = client.get(f"{BASE}/{record_id}").json()

        assert data["record"]["status"] == "WaitingForApproval"
        assert set(data["allowed_commands"]) == {"Approve", "CancelCompletely", "CancelForAdjustment", "SoftDelete"}

    def test_list_view_with_search(self, client):
        create(client, subject_name="Nguyen Van An")
        create(client, subject_name="Le Thi Chi")

        response = client.get(BASE, params={"view": "waiting-for-approval", "user": "chi"})

        assert response.status_code == 200
        data = response.json()
        assert data["pagination"]["total"] == 1
        assert data["items"][0]["subject"]["full_name"] == "Le Thi Chi"

    def test_follow_up_status_filter(self, client):
        overdue = create(client, follow_up_required=True, follow_up_date=date(2024, 1, 9))
        upcoming = create(client, follow_up_required=True, follow_up_date=date(2024, 1, 20))
        for record_id in (overdue, upcoming):
            client.post(f"{BASE}/{record_id}/approve", headers=HEADERS)

        response = client.get(BASE, params={"view": "follow-up", "follow_up_status": "Overdue", "today": "2024-01-10"})

        assert [item["id"] for item in response.json()["items"]] == [overdue]

    def test_inverted_date_range(self, client):
        response = client.get(BASE, params={"checkup_start": "2024-02-01", "checkup_end": "2024-01-01"})

        assert response.status_code == 422
        assert response.json()["guard"] == "date_range"

    def test_unknown_view(self, client):
        response = client.get(BASE, params={"view": "archived"})

        assert response.status_code == 422
        assert response.json()["guard"] == "view"

    def test_record_history(self, client):
        record_id = create(client)
        client.post(f"{BASE}/{record_id}/approve", headers=HEADERS)

        entries = client.get(f"{BASE}/{record_id}/histories").json()

        assert [e["action"] for e in entries] == ["Created", "Approved"]
        assert entries[1]["previous_status"] == "WaitingForApproval"

    def test_all_histories_newest_first(self, client):
        first = create(client)
        create(client)

        data = client.get(f"{BASE}/histories", params={"page_size": 1, "sort_order": "ASC"}).json()

        assert data["pagination"]["total"] == 2
        assert data["pagination"]["has_next"] is True
        assert data["items"][0]["record_id"] == first

    def test_statistics(self, client):
        create(client)
        approved = create(client)
        client.post(f"{BASE}/{approved}/approve", headers=HEADERS)

        data = client.get(f"{BASE}/statistics").json()

        assert data["total_results"] == 2
        assert data["status_distribution"]["waiting_for_approval"] == 1
        assert data["status_distribution"]["no_follow_up_required"] == 1
