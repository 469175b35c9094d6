"""
Tests for FastAPI endpoints.

The app is built with create_app(service=...) around a real SchedulerService
(temp SQLite file, mock clock, recording submitter), so requests go through
the full stack without network access.
"""

import pytest
from fastapi.testclient import TestClient

from src.api.main import create_app
from src.infra.config import SchedulerSettings
from src.scheduler import SchedulerService, StoreUnavailableError

from tests.scheduler.conftest import MockClock, MockSubmitter, make_payload


SOON = "2026-01-01T09:05:00Z"


@pytest.fixture
def mock_clock() -> MockClock:
    return MockClock()


@pytest.fixture
def mock_submitter() -> MockSubmitter:
    return MockSubmitter()


@pytest.fixture
def service(tmp_path, mock_clock, mock_submitter):
    settings = SchedulerSettings(db_path=tmp_path / "scheduler.db", poll_interval=0.05)
    svc = SchedulerService.create(
        settings, submitter=mock_submitter, clock=mock_clock.now, sleep=lambda s: None
    )
    yield svc
    svc.close()


@pytest.fixture
def client(service):
    with TestClient(create_app(service=service)) as test_client:
        yield test_client


def _create_job(client, terminal_id: str = "T-001", scheduled_time: str = SOON) -> dict:
    response = client.post(
        "/jobs",
        json={"payload": make_payload(terminal_id), "scheduled_time": scheduled_time},
    )
    assert response.status_code == 201, response.text
    return response.json()


class TestHealthEndpoint:

    def test_health_check(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "ok"
        assert data["store"] == "ok"
        assert data["scheduler_running"] is False

    def test_service_not_initialized(self, service):
        # Without the context manager the lifespan never runs
        client = TestClient(create_app(service=service))

        response = client.get("/jobs")

        assert response.status_code == 503


class TestCreateJob:

    def test_create_job(self, client):
        job = _create_job(client)

        assert job["job_id"].startswith("job_")
        assert job["status"] == "pending"
        assert job["executed_at"] is None
        assert job["requeued_at"] is None
        assert job["payload"]["terminal_id"] == "T-001"
        assert job["scheduled_time"].startswith("2026-01-01T09:05:00")

    def test_missing_fields_rejected(self, client):
        payload = make_payload()
        del payload["company"]
        del payload["nvr_condition"]

        response = client.post("/jobs", json={"payload": payload, "scheduled_time": SOON})

        assert response.status_code == 400
        assert sorted(response.json()["missing_fields"]) == ["company", "nvr_condition"]
        assert client.get("/jobs/stats").json()["total"] == 0

    def test_lead_time_rejected(self, client):
        response = client.post(
            "/jobs",
            json={"payload": make_payload(), "scheduled_time": "2026-01-01T09:00:30Z"},
        )

        assert response.status_code == 400
        assert "future" in response.json()["detail"]

    def test_batch_create(self, client):
        response = client.post(
            "/jobs/batch",
            json={"payloads": [make_payload("T-1"), make_payload("T-2")], "scheduled_time": SOON},
        )

        assert response.status_code == 201
        assert response.json()["total"] == 2

    def test_batch_with_invalid_form_creates_nothing(self, client):
        response = client.post(
            "/jobs/batch",
            json={"payloads": [make_payload("T-1"), {"terminal_id": "T-2"}], "scheduled_time": SOON},
        )

        assert response.status_code == 400
        assert "Form 2" in response.json()["detail"]
        assert client.get("/jobs").json()["total"] == 0

    def test_store_unavailable_maps_to_503(self, client, service, monkeypatch):
        def unavailable(*args, **kwargs):
            raise StoreUnavailableError("Job store unavailable")

        monkeypatch.setattr(service.job_service, "add_scheduled_job", unavailable)

        response = client.post("/jobs", json={"payload": make_payload(), "scheduled_time": SOON})

        assert response.status_code == 503


class TestSubmitNow:

    def test_submit_now(self, client, mock_submitter):
        response = client.post("/jobs/submit-now", json={"payload": make_payload("T-NOW")})

        assert response.status_code == 200
        assert response.json()["success"] is True
        assert mock_submitter.submitted_terminals == ["T-NOW"]
        assert client.get("/jobs/stats").json()["total"] == 0

    def test_submit_now_rejected_by_form(self, client, mock_submitter):
        mock_submitter.fail_for["T-NOW"] = "HTTP 400: rejected"

        response = client.post("/jobs/submit-now", json={"payload": make_payload("T-NOW")})

        assert response.status_code == 502
        assert response.json() == {"success": False, "message": "HTTP 400: rejected"}

    def test_submit_now_missing_fields(self, client, mock_submitter):
        response = client.post("/jobs/submit-now", json={"payload": {"terminal_id": "T-NOW"}})

        assert response.status_code == 400
        assert "company" in response.json()["missing_fields"]
        assert mock_submitter.submitted == []

class TestQueryJobs:

    def test_get_job(self, client):
        job = _create_job(client)

        response = client.get(f"/jobs/{job['job_id']}")

        assert response.status_code == 200
        assert response.json()["job_id"] == job["job_id"]

    def test_get_missing_job(self, client):
        assert client.get("/jobs/job_0_missing").status_code == 404

    def test_list_jobs(self, client):
        _create_job(client, "T-1")
        _create_job(client, "T-2")

        data = client.get("/jobs", params={"limit": 10}).json()

        assert data["total"] == 2

    def test_stats(self, client):
        _create_job(client)

        data = client.get("/jobs/stats").json()

        assert data["pending"] == 1
        assert data["total"] == 1
        assert data["error"] is None


class TestJobActions:

    def test_cancel_then_cancel_again(self, client):
        job = _create_job(client)

        first = client.post(f"/jobs/{job['job_id']}/cancel")
        second = client.post(f"/jobs/{job['job_id']}/cancel")

        assert first.status_code == 200
        assert first.json()["job"]["status"] == "cancelled"
        assert second.status_code == 409

    def test_cancel_missing(self, client):
        assert client.post("/jobs/job_0_missing/cancel").status_code == 404

    def test_reset_requires_failed(self, client):
        job = _create_job(client)

        assert client.post(f"/jobs/{job['job_id']}/reset").status_code == 409

    def test_reset_missing(self, client):
        assert client.post("/jobs/job_0_missing/reset").status_code == 404

    def test_trigger_fail_and_reset(self, client, mock_clock, mock_submitter):
        """
        Setup: Job due now; the submitter rejects it
        Action: Trigger processing, then reset
        Assertion: FAILED with message, then PENDING again
        """
        job = _create_job(client, "T-BAD")
        mock_submitter.fail_for["T-BAD"] = "HTTP 400: rejected"
        mock_clock.tick(300)

        response = client.post("/scheduler/trigger")
        assert response.status_code == 202
        assert response.json()["triggered"] is True

        failed = client.get(f"/jobs/{job['job_id']}").json()
        assert failed["status"] == "failed"
        assert failed["error_message"] == "HTTP 400: rejected"

        reset = client.post(f"/jobs/{job['job_id']}/reset")
        assert reset.status_code == 200
        assert reset.json()["job"]["status"] == "pending"
        assert reset.json()["job"]["requeued_at"] is not None

    def test_delete(self, client):
        job = _create_job(client)

        assert client.delete(f"/jobs/{job['job_id']}").status_code == 200
        assert client.delete(f"/jobs/{job['job_id']}").status_code == 404


class TestSchedulerControl:

    def test_status(self, client):
        data = client.get("/scheduler/status").json()

        assert data["running"] is False
        assert data["processing"] is False
        assert data["current_job"] is None

    def test_start_and_stop(self, client):
        started = client.post("/scheduler/start", json={"run_recovery": True})
        assert started.status_code == 200
        assert started.json()["success"] is True
        assert client.get("/scheduler/status").json()["running"] is True

        again = client.post("/scheduler/start")
        assert again.json()["message"] == "Scheduler is already running"

        stopped = client.post("/scheduler/stop", json={"timeout": 5})
        assert stopped.json()["success"] is True
        assert client.get("/scheduler/status").json()["running"] is False

    def test_trigger_runs_due_jobs(self, client, mock_clock, mock_submitter):
        job = _create_job(client)
        mock_clock.tick(300)

        client.post("/scheduler/trigger")

        assert client.get(f"/jobs/{job['job_id']}").json()["status"] == "completed"
        assert mock_submitter.submitted_terminals == ["T-001"]


class TestTemplates:

    def test_template_crud_and_schedule(self, client):
        created = client.post(
            "/templates", json={"name": "Site A", "payload": make_payload("T-A")}
        )
        assert created.status_code == 201
        template_id = created.json()["template_id"]

        updated = client.put(f"/templates/{template_id}", json={"name": "Site A (north)"})
        assert updated.json()["name"] == "Site A (north)"

        scheduled = client.post(
            f"/templates/{template_id}/schedule",
            json={"scheduled_time": SOON, "payload_overrides": {"camera_condition": "problem"}},
        )
        assert scheduled.status_code == 201
        assert scheduled.json()["template_id"] == template_id
        assert scheduled.json()["payload"]["camera_condition"] == "problem"

        assert client.get("/templates").json()["total"] == 1
        assert client.delete(f"/templates/{template_id}").status_code == 200
        assert client.get("/templates").json()["total"] == 0

    def test_invalid_template_payload(self, client):
        response = client.post("/templates", json={"name": "Broken", "payload": {}})

        assert response.status_code == 400

    def test_schedule_from_missing_template(self, client):
        response = client.post("/templates/nope/schedule", json={"scheduled_time": SOON})

        assert response.status_code == 404

    def test_update_missing_template(self, client):
        assert client.put("/templates/nope", json={"name": "x"}).status_code == 404
