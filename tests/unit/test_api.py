"""Tests for FastAPI endpoints."""
from __future__ import annotations

import asyncio
from types import SimpleNamespace
from typing import Any, Dict
from unittest.mock import patch

import httpx
import pytest
from fastapi.testclient import TestClient

import audiograb.app as app_module
from audiograb.app import app, run_until_disconnected
from audiograb.errors import JobStartError

from conftest import FakeJobRunner

FAST_POLL = {"pollIntervalMs": 1, "maxWaitMs": 2000}
AUDIO = b"\xff\xfb" + b"\x00" * 4096


def upstream(request: httpx.Request) -> httpx.Response:
    if request.url.path == "/missing.mp3":
        return httpx.Response(404, text="not here")
    return httpx.Response(200, content=AUDIO, headers={"content-type": "audio/mpeg"})


@pytest.fixture
def mock_upstream():
    """Route media downloads to an in-memory upstream."""

    def factory(timeout=None) -> httpx.AsyncClient:
        return httpx.AsyncClient(transport=httpx.MockTransport(upstream))

    with patch("audiograb.app.open_http_client", factory):
        yield


class TestHealth:
    def test_health(self, api_client: TestClient):
        response = api_client.get("/health")
        assert response.status_code == 200
        assert response.json() == {"status": "ok"}


class TestExtractEndpoint:
    def test_extract(self, api_client: TestClient, fake_runner: FakeJobRunner):
        """POST /api/extract returns the selected media and transcode decision."""
        response = api_client.post(
            "/api/extract",
            json={"videoUrl": "https://youtu.be/abc", **FAST_POLL},
        )
        assert response.status_code == 200
        item = response.json()["item"]
        assert item["title"] == "Artist - Song"
        assert item["chosenMedia"]["sourceUrl"] == "https://cdn.example.com/b.mp3"
        assert item["transcodeNeeded"] is False
        assert item["hasNativeForMp3"] is True
        assert item["provider"] == app_module.settings.provider.actors[0]
        assert len(item["medias"]) == 2
        assert fake_runner.count("fetch") == 1

    def test_extract_forwards_options(self, api_client: TestClient, fake_runner: FakeJobRunner):
        api_client.post(
            "/api/extract",
            json={
                "videoUrl": "https://youtu.be/abc",
                "desiredFormat": "M4A",
                "proxyCountry": "DE",
                "includeInfo": False,
                **FAST_POLL,
            },
        )
        options = fake_runner.options[0]
        assert options.desired_format == "m4a"
        assert options.proxy_country == "DE"
        assert options.include_info is False

    def test_missing_video_url(self, api_client: TestClient):
        response = api_client.post("/api/extract", json={"desiredFormat": "mp3"})
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid request"

    def test_invalid_json(self, api_client: TestClient):
        response = api_client.post(
            "/api/extract",
            content="not valid json",
            headers={"Content-Type": "application/json"},
        )
        assert response.status_code == 400

    def test_no_audio(self, api_client: TestClient, fake_runner: FakeJobRunner, video_only_item):
        fake_runner.items = [video_only_item]
        response = api_client.post("/api/extract", json={"videoUrl": "https://youtu.be/abc", **FAST_POLL})
        assert response.status_code == 502
        body = response.json()
        assert body["error"] == "No audio streams found"
        assert body["details"]["chosenMedia"]["extension"] == "mp4"

    def test_video_allowed_when_not_audio_only(
        self, api_client: TestClient, fake_runner: FakeJobRunner, video_only_item
    ):
        fake_runner.items = [video_only_item]
        response = api_client.post(
            "/api/extract",
            json={"videoUrl": "https://youtu.be/abc", "audioOnly": False, **FAST_POLL},
        )
        assert response.status_code == 200
        assert response.json()["item"]["transcodeNeeded"] is True

    def test_providers_failing(self, api_client: TestClient, fake_runner: FakeJobRunner):
        fake_runner.start_errors = {
            actor: JobStartError("rejected") for actor in app_module.settings.provider.actors
        }
        response = api_client.post("/api/extract", json={"videoUrl": "https://youtu.be/abc", **FAST_POLL})
        assert response.status_code == 502
        assert "error" in response.json()
        assert fake_runner.count("fetch") == 0

    def test_missing_token(self):
        """Without a token the real provider client reports a configuration error."""
        with patch.object(app_module.settings.provider, "token", None):
            with TestClient(app) as client:
                response = client.post(
                    "/api/extract", json={"videoUrl": "https://youtu.be/abc", **FAST_POLL}
                )
        assert response.status_code == 500
        assert response.json() == {"error": "Server missing Apify token"}

    def test_event_stream(self, api_client: TestClient):
        response = api_client.post(
            "/api/extract/events",
            json={"videoUrl": "https://youtu.be/abc", **FAST_POLL},
        )
        assert response.status_code == 200
        assert response.headers["content-type"].startswith("text/event-stream")
        assert "event: stage" in response.text
        assert "event: result" in response.text
        assert "https://cdn.example.com/b.mp3" in response.text


class TestRunEndpoints:
    def test_start_extract(self, api_client: TestClient):
        response = api_client.post("/api/start-extract", json={"videoUrl": "https://youtu.be/abc"})
        assert response.status_code == 200
        assert response.json() == {
            "runId": "run-1",
            "actor": app_module.settings.provider.actors[0],
            "quality": "192",
            "attempt": 1,
        }

    def test_start_extract_quality(self, api_client: TestClient, fake_runner: FakeJobRunner):
        response = api_client.post(
            "/api/start-extract",
            json={"videoUrl": "https://youtu.be/abc", "audioFormat": "m4a", "quality": "128"},
        )
        assert response.json()["quality"] == "128"
        assert fake_runner.options[0].audio_quality == "128"
        assert fake_runner.options[0].desired_format == "m4a"

    def test_run_status(self, api_client: TestClient, fake_runner: FakeJobRunner):
        fake_runner.statuses = fake_runner.statuses[-1:]
        response = api_client.get("/api/run-status", params={"runId": "run-1"})
        assert response.status_code == 200
        assert response.json() == {"status": "SUCCEEDED", "datasetId": "ds-1"}

    def test_run_status_requires_id(self, api_client: TestClient):
        response = api_client.get("/api/run-status")
        assert response.status_code == 400
        assert response.json()["error"] == "Missing runId"

    def test_run_result(self, api_client: TestClient, fake_runner: FakeJobRunner):
        usable: Dict[str, Any] = {"audioUrl": "https://cdn.example.com/a.mp3", "title": "A"}
        fake_runner.items = [{"error": "blocked", "url": "https://x"}, {"title": "no url"}, usable]
        response = api_client.get("/api/run-result", params={"datasetId": "ds-1"})
        assert response.status_code == 200
        assert response.json() == {"item": usable}

    def test_run_result_without_audio(self, api_client: TestClient, fake_runner: FakeJobRunner):
        fake_runner.items = [{"error": "blocked"}]
        response = api_client.get("/api/run-result", params={"datasetId": "ds-1"})
        assert response.status_code == 502
        assert response.json()["error"] == "No audio URL in dataset items"


class TestDeliveryEndpoints:
    def test_download(self, api_client: TestClient, mock_upstream):
        response = api_client.get(
            "/api/download",
            params={"url": "https://cdn.example.com/song.mp3", "filename": "Ünïcode song.mp3"},
        )
        assert response.status_code == 200
        assert response.content == AUDIO
        assert response.headers["content-type"] == "audio/mpeg"
        disposition = response.headers["content-disposition"]
        assert disposition.startswith('attachment; filename="-n-code song.mp3"')
        assert "filename*=UTF-8''%C3%9Cn%C3%AFcode%20song.mp3" in disposition

    def test_download_upstream_error(self, api_client: TestClient, mock_upstream):
        response = api_client.get("/api/download", params={"url": "https://cdn.example.com/missing.mp3"})
        assert response.status_code == 502
        assert response.json() == {
            "error": "Upstream fetch failed (HTTP 404)",
            "details": "not here",
        }

    @pytest.mark.parametrize("url", ["file:///etc/passwd", "ftp://cdn.example.com/a.mp3"])
    def test_download_rejects_non_http(self, api_client: TestClient, url: str):
        response = api_client.get("/api/download", params={"url": url})
        assert response.status_code == 400
        assert response.json()["error"] == "Invalid URL protocol"

    def test_download_requires_url(self, api_client: TestClient):
        response = api_client.get("/api/download")
        assert response.status_code == 400

    def test_transcode_unknown_format(self, api_client: TestClient):
        response = api_client.get(
            "/api/transcode",
            params={"url": "https://cdn.example.com/a.webm", "format": "mkv"},
        )
        assert response.status_code == 400
        assert response.json()["error"] == "Unsupported target format: mkv"

    def test_transcode(self, api_client: TestClient, mock_upstream, passthrough_ffmpeg):
        with patch.object(app_module.transcoder, "ffmpeg_bin", str(passthrough_ffmpeg)):
            response = api_client.post(
                "/api/transcode",
                params={"url": "https://cdn.example.com/a.webm", "filename": "My Song"},
            )
        assert response.status_code == 200
        assert response.content == AUDIO
        assert response.headers["content-type"] == "audio/mpeg"
        assert 'filename="My Song.mp3"' in response.headers["content-disposition"]

    def test_transcode_failure(self, api_client: TestClient, mock_upstream, failing_ffmpeg):
        with patch.object(app_module.transcoder, "ffmpeg_bin", str(failing_ffmpeg)):
            response = api_client.get(
                "/api/transcode",
                params={"url": "https://cdn.example.com/a.webm"},
            )
        assert response.status_code == 500
        body = response.json()
        assert body["error"] == "ffmpeg error"
        assert body["details"]["code"] == 1

    def test_fetch_audio(self, api_client: TestClient, mock_upstream):
        response = api_client.post(
            "/api/fetch-audio",
            json={"url": "https://cdn.example.com/path/track.mp3", "contentType": "audio/x-test"},
        )
        assert response.status_code == 200
        assert response.content == AUDIO
        assert response.headers["content-type"] == "audio/x-test"
        assert 'filename="track.mp3"' in response.headers["content-disposition"]

    def test_transcode_failure_mid_stream(self, mock_upstream, failing_after_output_ffmpeg):
        """Once bytes are sent an ffmpeg failure can only cut the body short."""
        with patch.object(app_module.transcoder, "ffmpeg_bin", str(failing_after_output_ffmpeg)):
            with TestClient(app, raise_server_exceptions=False) as client:
                response = client.get(
                    "/api/transcode",
                    params={"url": "https://cdn.example.com/a.webm"},
                )
        assert response.status_code == 200
        assert response.headers["content-type"] == "audio/mpeg"
        assert response.content == AUDIO[:10]


class FakeRequest:
    def __init__(self, disconnected: bool):
        self.disconnected = disconnected
        self.url = SimpleNamespace(path="/api/extract")

    async def is_disconnected(self) -> bool:
        return self.disconnected


class TestRunUntilDisconnected:
    @pytest.mark.asyncio
    async def test_returns_result(self):
        async def work() -> str:
            await asyncio.sleep(0.03)
            return "done"

        assert await run_until_disconnected(FakeRequest(False), work(), interval=0.01) == "done"

    @pytest.mark.asyncio
    async def test_cancels_work_when_client_leaves(self):
        """Polling stops once the caller has gone away."""
        cancelled = asyncio.Event()

        async def work() -> str:
            try:
                await asyncio.sleep(60)
            except asyncio.CancelledError:
                cancelled.set()
                raise
            return "unreachable"

        result = await asyncio.wait_for(
            run_until_disconnected(FakeRequest(True), work(), interval=0.01), timeout=5
        )
        assert result is None
        assert cancelled.is_set()

    @pytest.mark.asyncio
    async def test_errors_propagate(self):
        async def work() -> str:
            raise JobStartError("rejected")

        with pytest.raises(JobStartError):
            await run_until_disconnected(FakeRequest(False), work(), interval=0.01)
