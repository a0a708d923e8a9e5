"""
Tests for the REST control surface.

The app runs with an in-memory store and sink; the pacing sleep stalls
forever so a started broadcast stays running for the whole test.
"""
import asyncio
import pytest
from fastapi.testclient import TestClient

from api.main import create_app
from config.settings import Settings, StorageConfig
from database.store_memory import InMemoryCheckpointStore
from models.schemas import BroadcastJob, JobStatus

from helpers import make_recipients


async def stall(_seconds: float) -> None:
    await asyncio.Event().wait()


@pytest.fixture
def app_settings() -> Settings:
    return Settings(log_level="WARNING", log_dir="", storage=StorageConfig(backend="memory"))


@pytest.fixture
def client_for(app_settings, sink):
    def _client(store=None):
        app = create_app(app_settings, store=store or InMemoryCheckpointStore(), sink=sink, sleep=stall)
        return TestClient(app)
    return _client


def _payload(**overrides):
    body = {
        "recipients": [{"id": "u1", "tag": "user1#0001"}, {"id": "u2", "tag": "user2#0002"}],
        "message": "Hello {user}",
        "context": {"id": "g1", "name": "Test Guild"},
    }
    body.update(overrides)
    return body


class TestHealthAndStatus:
    def test_health(self, client_for):
        with client_for() as client:
            resp = client.get("/health")
        assert resp.status_code == 200
        data = resp.json()
        assert data["status"] == "healthy"
        assert data["sink"]["channel"] == "memory"
        assert data["is_running"] is False

    def test_idle_status(self, client_for):
        with client_for() as client:
            data = client.get("/broadcasts/status").json()
        assert data["status"] == "idle"
        assert data["job_id"] is None
        assert "no broadcast running" in data["text"]


class TestStartBroadcast:
    def test_dry_run(self, client_for):
        with client_for() as client:
            resp = client.post("/broadcasts", json=_payload(dry_run=True))
            status = client.get("/broadcasts/status").json()
        assert resp.status_code == 200
        data = resp.json()
        assert data["dry_run"] is True
        assert data["recipient_count"] == 2
        assert data["message_preview"] == "Hello {user}"
        assert data["audience"] == "managed_list"
        assert status["status"] == "idle"

    def test_unknown_pacing(self, client_for):
        with client_for() as client:
            resp = client.post("/broadcasts", json=_payload(pacing="reckless"))
        assert resp.status_code == 422

    def test_empty_recipients_rejected(self, client_for):
        store = InMemoryCheckpointStore()
        previous = BroadcastJob(recipients=make_recipients("u1"), message_template="Old", context_id="g1")
        previous.finish(JobStatus.COMPLETED)
        store.save(previous)

        with client_for(store) as client:
            resp = client.post("/broadcasts", json=_payload(recipients=[]))
        assert resp.status_code == 422
        assert store.load().message_template == "Old"

    def test_start_then_conflict(self, client_for):
        with client_for() as client:
            first = client.post("/broadcasts", json=_payload())
            second = client.post("/broadcasts", json=_payload())
            status = client.get("/broadcasts/status").json()
        assert first.status_code == 200
        assert first.json()["job_id"]
        assert second.status_code == 409
        assert "already running" in second.json()["detail"]
        assert status["is_running"] is True
        assert status["total_recipients"] == 2


class TestControls:
    def test_controls_without_job(self, client_for):
        with client_for() as client:
            for action in ("pause", "resume", "cancel"):
                resp = client.post(f"/broadcasts/{action}")
                assert resp.status_code == 409

    def test_pause_resume_cancel(self, client_for):
        with client_for() as client:
            client.post("/broadcasts", json=_payload())

            assert client.post("/broadcasts/pause").json()["status"] == "paused"
            assert client.get("/broadcasts/status").json()["is_paused"] is True

            assert client.post("/broadcasts/resume").status_code == 200
            assert client.post("/broadcasts/resume").status_code == 409

            assert client.post("/broadcasts/cancel").json()["status"] == "cancelled"
            assert client.post("/broadcasts/cancel").status_code == 409
            status = client.get("/broadcasts/status").json()
        assert status["status"] == "cancelled"
        assert status["is_running"] is False


class TestResultsAndRecovery:
    def test_archived_results(self, client_for):
        store = InMemoryCheckpointStore()
        job = BroadcastJob(
            recipients=make_recipients("u1"), message_template="Hi", context_id="g1",
            success_count=1,
        )
        job.finish(JobStatus.COMPLETED)
        store.archive(job)

        with client_for(store) as client:
            found = client.get(f"/broadcasts/{job.id}/results")
            missing = client.get("/broadcasts/0/results")
        assert found.status_code == 200
        assert found.json()["status"] == "completed"
        assert found.json()["success_count"] == 1
        assert missing.status_code == 404

    def test_interrupted_job_resumes_on_startup(self, client_for, sink):
        store = InMemoryCheckpointStore()
        store.save(BroadcastJob(
            recipients=make_recipients("u1", "u2"), message_template="Hi", context_id="g1",
        ))

        with client_for(store) as client:
            status = client.get("/broadcasts/status").json()
            assert status["status"] == "running"
            assert status["is_running"] is True

        # Shutdown leaves the job resumable
        assert store.load().status == JobStatus.RUNNING
