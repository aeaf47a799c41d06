"""
API tests for the trailer and health endpoints.
"""

import asyncio
import os

import httpx
import pytest
from fastapi.testclient import TestClient

from trailer_service.main import app
from trailer_service.routers import youtube
from trailer_service.services.channel_resolver import YouTubeClient
from trailer_service.services.job_workspace import JobWorkspace
from trailer_service.services.trailer_pipeline import JobProgress, JobState, TrailerPipeline

VIDEOS = [f"https://www.youtube.com/watch?v=vid{i}" for i in range(3)]


@pytest.fixture
def client(fake_runner):
    """Test client whose pipeline uses the scripted runner."""
    pipeline = TrailerPipeline(runner=fake_runner, progress_callback=youtube.record_progress)
    app.dependency_overrides[youtube.get_trailer_pipeline] = lambda: pipeline
    youtube._job_semaphore = None
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()
    youtube._job_store.clear()
    youtube._cancel_events.clear()


class TestTrailerEndpoint:
    """Tests for POST /api/youtube/trailer."""

    def test_returns_trailer(self, client, workspace_root):
        response = client.post("/api/youtube/trailer?id=job42", json=VIDEOS)

        assert response.status_code == 200
        assert response.headers["content-type"] == "video/webm"
        assert response.headers["x-job-id"] == "job42"
        assert "trailer.webm" in response.headers["content-disposition"]
        assert response.content.decode().count("file '") == 3

        workspace = JobWorkspace.find(workspace_root, "job42")
        assert workspace is not None
        assert os.path.isfile(workspace.final_path())

    def test_empty_list_rejected_without_job(self, client, workspace_root, fake_runner):
        response = client.post("/api/youtube/trailer?id=emptyjob", json=[])

        assert response.status_code == 400
        assert fake_runner.calls == []
        assert JobWorkspace.find(workspace_root, "emptyjob") is None

    def test_blank_urls_count_as_empty(self, client):
        response = client.post("/api/youtube/trailer", json=["", "   "])
        assert response.status_code == 400

    def test_job_id_is_sanitized(self, client, workspace_root):
        response = client.post("/api/youtube/trailer", params={"id": "../ab-c"}, json=VIDEOS[:1])

        assert response.status_code == 200
        assert response.headers["x-job-id"] == "abc"
        assert JobWorkspace.find(workspace_root, "abc") is not None

    def test_job_id_generated_when_absent(self, client, workspace_root):
        response = client.post("/api/youtube/trailer", json=VIDEOS[:1])

        job_id = response.headers["x-job-id"]
        assert len(job_id) == 32
        assert JobWorkspace.find(workspace_root, job_id) is not None

    def test_no_clips_is_server_error(self, client, fake_runner):
        fake_runner.failing_references.update(VIDEOS)

        response = client.post("/api/youtube/trailer?id=nothing", json=VIDEOS)

        assert response.status_code == 500
        body = response.json()
        assert body == {
            "job_id": "nothing",
            "status": "failed",
            "reason": "no_clips",
            "detail": "Failed to create any clips.",
        }

    def test_assembly_failure_is_server_error(self, client, fake_runner):
        fake_runner.fail_concat = True

        response = client.post("/api/youtube/trailer?id=noconcat", json=VIDEOS)

        assert response.status_code == 500
        assert response.json()["reason"] == "assembly"

    def test_cleanup_removes_workspace(self, client, workspace_root):
        response = client.post("/api/youtube/trailer?id=tidy&cleanup=true", json=VIDEOS[:2])

        assert response.status_code == 200
        assert response.content
        assert JobWorkspace.find(workspace_root, "tidy") is None

    def test_default_keeps_workspace_after_failure(self, client, fake_runner, workspace_root):
        fake_runner.failing_references.update(VIDEOS)

        client.post("/api/youtube/trailer?id=kept", json=VIDEOS)

        workspace = JobWorkspace.find(workspace_root, "kept")
        assert workspace is not None
        assert "source[2] fetch failed" in workspace.read_status()

    def test_running_job_id_conflicts(self, client):
        youtube._cancel_events["busy"] = object()

        response = client.post("/api/youtube/trailer?id=busy", json=VIDEOS)

        assert response.status_code == 409


class TestJobEndpoints:
    """Tests for logs, status and cancellation endpoints."""

    def test_logs_after_build(self, client):
        client.post("/api/youtube/trailer?id=logged", json=VIDEOS[:2])

        response = client.get("/api/youtube/logs/logged")

        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/plain")
        assert "source[0] fetched" in response.text
        assert "job succeeded" in response.text

    def test_logs_unknown_job(self, client):
        assert client.get("/api/youtube/logs/nosuchjob").status_code == 404

    def test_progress_tracked_only_while_running(self, client, fake_runner):
        seen = []

        def snapshot(command, arguments):
            progress = youtube._job_store.get("tracked")
            seen.append((progress.state.value, progress.source_index, progress.clips_completed))

        fake_runner.before_run = snapshot

        response = client.post("/api/youtube/trailer?id=tracked", json=VIDEOS)

        assert response.status_code == 200
        assert ("fetching", 2, 2) in seen
        assert seen[-1][0] == "assembling"
        assert "tracked" not in youtube._job_store
        assert client.get("/api/youtube/jobs/tracked").status_code == 404

    def test_progress_dropped_after_failure(self, client, fake_runner):
        fake_runner.failing_references.update(VIDEOS)

        client.post("/api/youtube/trailer?id=failedjob", json=VIDEOS)

        assert youtube._job_store == {}

    def test_status_lookup_sanitizes_id(self, client):
        youtube._job_store["myjob"] = JobProgress(job_id="myjob", state=JobState.FETCHING, total_sources=2)

        response = client.get("/api/youtube/jobs/my-job")

        assert response.status_code == 200
        assert response.json()["status"] == "fetching"
        assert response.json()["job_id"] == "myjob"

    def test_cancel_sanitizes_id(self, client):
        event = asyncio.Event()
        youtube._cancel_events["myjob"] = event

        response = client.delete("/api/youtube/jobs/my-job")

        assert response.status_code == 202
        assert response.json() == {"job_id": "myjob", "status": "cancelling"}
        assert event.is_set()

    def test_status_unknown_job(self, client):
        assert client.get("/api/youtube/jobs/ghost").status_code == 404

    def test_cancel_unknown_job(self, client):
        assert client.delete("/api/youtube/jobs/ghost").status_code == 404

    def test_cancel_sets_event(self, client):
        event = asyncio.Event()
        youtube._cancel_events["running"] = event

        response = client.delete("/api/youtube/jobs/running")

        assert response.status_code == 202
        assert event.is_set()


class TestSubmitEndpoint:
    """Tests for POST /api/youtube/submit."""

    def test_missing_api_key(self, client):
        response = client.post("/api/youtube/submit", json="https://www.youtube.com/@someone")
        assert response.status_code == 400
        assert "API key" in response.json()["detail"]

    def _override_youtube(self, handler):
        http_client = httpx.AsyncClient(transport=httpx.MockTransport(handler))
        app.dependency_overrides[youtube.get_youtube_client] = lambda: YouTubeClient(http_client, "key")

    def test_resolves_and_samples(self, client, workspace_root):
        def handler(request):
            if request.url.params.get("type") == "channel":
                return httpx.Response(200, json={"items": [{"snippet": {"channelId": "UCsomeone"}}]})
            ids = [f"v{i}" for i in range(10)]
            return httpx.Response(200, json={"items": [{"id": {"videoId": v}} for v in ids]})

        self._override_youtube(handler)

        response = client.post("/api/youtube/submit", json="https://www.youtube.com/@someone")

        assert response.status_code == 200
        body = response.json()
        assert body["channel_id"] == "UCsomeone"
        assert len(body["videos"]) == 3
        assert len(set(body["videos"])) == 3

        logs = client.get(f"/api/youtube/logs/{body['id']}")
        assert logs.status_code == 200
        assert "channel UCsomeone resolved" in logs.text

    def test_unresolvable_url(self, client):
        self._override_youtube(lambda request: httpx.Response(200, json={"items": []}))

        response = client.post("/api/youtube/submit", json="https://example.com/nothing")

        assert response.status_code == 400

    def test_api_failure_is_bad_gateway(self, client):
        self._override_youtube(lambda request: httpx.Response(500))

        response = client.post("/api/youtube/submit", json="https://www.youtube.com/user/someone")

        assert response.status_code == 502


class TestHealth:
    """Tests for health endpoints."""

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        assert response.json()["status"] == "healthy"

    def test_readiness_reports_executables(self, client, mocker):
        mocker.patch("trailer_service.routers.health.shutil.which", return_value=None)

        response = client.get("/health/ready")

        assert response.json() == {"ready": False, "ytdlp": "not_found", "ffmpeg": "not_found"}

    def test_root(self, client):
        assert client.get("/").json()["service"] == "channel-trailer"
