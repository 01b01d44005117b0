"""
API tests through the FastAPI app, with external services faked.
"""

import time

import pytest
from fastapi.testclient import TestClient

from app.main import app
from app.services.retention_sweeper import RetentionSweeper

VIDEO_URL = "https://www.youtube.com/watch?v=abc123"


@pytest.fixture
def client(mocker, registry, publisher, transcoder, runner, service):
    """TestClient with the service graph built from the test fakes."""
    mocker.patch(
        "app.main.build_services",
        return_value={
            "registry": registry,
            "publisher": publisher,
            "transcoder": transcoder,
            "job_runner": runner,
            "retention_sweeper": RetentionSweeper(registry, publisher),
            "shorts_service": service,
        },
    )
    with TestClient(app) as test_client:
        yield test_client


def _register(client, email="creator@example.com", password="pw123456") -> dict:
    response = client.post("/api/register", json={"email": email, "password": password})
    assert response.status_code == 200, response.text
    return response.json()


def _auth(token: str) -> dict:
    return {"Authorization": f"Bearer {token}"}


class TestHealth:
    def test_health(self, client):
        response = client.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "ok"
        assert response.json()["service"] == "shorts-generator"

    def test_ready(self, client):
        data = client.get("/health/ready").json()

        assert data["workers_running"] is True
        assert data["ffmpeg"] == "available"


class TestAccountsApi:
    """Tests for /api/register and /api/login."""

    def test_register(self, client):
        data = _register(client)

        assert data["user"]["credits"] == 100
        assert data["user"]["email"] == "creator@example.com"
        assert data["token"]

    def test_register_duplicate(self, client):
        _register(client)
        response = client.post("/api/register", json={"email": "creator@example.com", "password": "x"})
        assert response.status_code == 400

    def test_login(self, client):
        registered = _register(client)

        response = client.post("/api/login", json={"email": "creator@example.com", "password": "pw123456"})

        assert response.status_code == 200
        assert response.json()["user"]["id"] == registered["user"]["id"]

    def test_login_wrong_password(self, client):
        _register(client)
        response = client.post("/api/login", json={"email": "creator@example.com", "password": "nope"})
        assert response.status_code == 401


class TestShortsApi:
    """Tests for /api/preview and /api/jobs."""

    def test_requires_token(self, client):
        assert client.get("/api/jobs").status_code == 401
        assert client.get("/api/jobs", headers=_auth("garbage")).status_code == 401

    def test_preview(self, client):
        token = _register(client)["token"]

        response = client.post("/api/preview", json={"youtube_url": VIDEO_URL}, headers=_auth(token))

        assert response.status_code == 200
        data = response.json()
        assert data["segment_count"] == 5
        assert data["total_cost"] == 25
        assert data["can_afford"] is True
        assert data["user_credits"] == 100

    def test_preview_invalid_url(self, client):
        token = _register(client)["token"]
        response = client.post("/api/preview", json={"youtube_url": "https://vimeo.com/1"}, headers=_auth(token))
        assert response.status_code == 400

    def test_preview_invalid_config(self, client):
        token = _register(client)["token"]
        response = client.post(
            "/api/preview",
            json={"youtube_url": VIDEO_URL, "segment_count": 50},
            headers=_auth(token),
        )
        assert response.status_code == 400

    def test_submit_insufficient_credits(self, client):
        token = _register(client)["token"]

        response = client.post(
            "/api/jobs",
            json={"youtube_url": VIDEO_URL, "segment_count": 10, "segment_duration_seconds": 120},
            headers=_auth(token),
        )

        assert response.status_code == 402

    def test_submit_and_fetch_completed_job(self, client):
        token = _register(client)["token"]

        response = client.post("/api/jobs", json={"youtube_url": VIDEO_URL}, headers=_auth(token))
        assert response.status_code == 202
        submitted = response.json()
        assert submitted["credits_used"] == 25
        assert submitted["remaining_credits"] == 75

        job_id = submitted["job_id"]
        data = None
        for _ in range(100):
            data = client.get(f"/api/jobs/{job_id}", headers=_auth(token)).json()
            if data["status"] in ("completed", "failed"):
                break
            time.sleep(0.05)

        assert data["status"] == "completed"
        assert len(data["segments"]) == 5
        first = data["segments"][0]
        assert first["preview_url"].endswith("expires=604800")
        assert first["download_url"].endswith("expires=86400")
        assert first["share_urls"]["tiktok"].startswith("tiktok://upload?video_url=")
        assert data["expires_in_days"] == 7
        assert data["run_state"] in ("running", "done")

        listed = client.get("/api/jobs", headers=_auth(token)).json()["jobs"]
        assert [j["job_id"] for j in listed] == [job_id]

    def test_other_users_job_is_404(self, client):
        owner_token = _register(client, email="owner@example.com")["token"]
        other_token = _register(client, email="other@example.com")["token"]

        job_id = client.post("/api/jobs", json={"youtube_url": VIDEO_URL}, headers=_auth(owner_token)).json()["job_id"]

        assert client.get(f"/api/jobs/{job_id}", headers=_auth(other_token)).status_code == 404
        assert client.get("/api/jobs/job_missing", headers=_auth(owner_token)).status_code == 404
