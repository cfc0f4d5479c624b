"""Pytest configuration and shared fixtures."""
from __future__ import annotations

import stat
from pathlib import Path
from typing import Any, Dict, Generator, List, Optional, Sequence, Tuple
from unittest.mock import patch

import pytest
from fastapi.testclient import TestClient

# Add project root to path
import sys
sys.path.insert(0, str(Path(__file__).parent.parent))

from audiograb.app import app
from audiograb.clients.base import JobOptions, JobStatus, JobStatusReport
from audiograb.errors import JobError


class FakeJobRunner:
    """In-memory job runner that replays scripted poll responses."""

    def __init__(
        self,
        statuses: Optional[Sequence[JobStatusReport]] = None,
        items: Optional[List[Any]] = None,
        start_errors: Optional[Dict[str, JobError]] = None,
    ) -> None:
        self.statuses = list(
            statuses
            or [JobStatusReport(JobStatus.succeeded, result_set_id="ds-1", raw_status="SUCCEEDED")]
        )
        self.items = items if items is not None else []
        self.start_errors = dict(start_errors or {})
        self.calls: List[Tuple[str, str]] = []
        self.options: List[JobOptions] = []

    async def start_job(self, source_url: str, provider: str, options: JobOptions) -> str:
        self.calls.append(("start", provider))
        self.options.append(options)
        error = self.start_errors.get(provider)
        if error is not None:
            raise error
        started = sum(1 for kind, _ in self.calls if kind == "start")
        return f"run-{started}"

    async def get_job_status(self, job_id: str) -> JobStatusReport:
        self.calls.append(("status", job_id))
        if len(self.statuses) > 1:
            return self.statuses.pop(0)
        return self.statuses[0]

    async def get_result_set(self, result_set_id: str) -> List[Any]:
        self.calls.append(("fetch", result_set_id))
        return self.items

    def count(self, kind: str) -> int:
        return sum(1 for call, _ in self.calls if call == kind)


class FakeClock:
    """Monotonic clock advanced only by the fake ``sleep``."""

    def __init__(self) -> None:
        self.now = 0.0
        self.sleeps: List[float] = []

    def __call__(self) -> float:
        return self.now

    async def sleep(self, seconds: float) -> None:
        self.sleeps.append(seconds)
        self.now += seconds


def running(count: int) -> List[JobStatusReport]:
    return [JobStatusReport(JobStatus.running, raw_status="RUNNING") for _ in range(count)]


def succeeded(dataset_id: str = "ds-1") -> JobStatusReport:
    return JobStatusReport(JobStatus.succeeded, result_set_id=dataset_id, raw_status="SUCCEEDED")


@pytest.fixture
def two_audio_item() -> Dict[str, Any]:
    """A result item offering a webm and an mp3 audio stream."""
    return {
        "title": "Artist - Song",
        "result": {
            "medias": [
                {"url": "https://cdn.example.com/a.webm", "type": "audio", "extension": "webm"},
                {"url": "https://cdn.example.com/b.mp3", "type": "audio", "extension": "mp3"},
            ]
        },
    }


@pytest.fixture
def video_only_item() -> Dict[str, Any]:
    return {
        "title": "Clip",
        "medias": [
            {"url": "https://cdn.example.com/v.mp4", "type": "video", "label": "720p"},
        ],
    }


@pytest.fixture
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def fake_runner(two_audio_item: Dict[str, Any]) -> FakeJobRunner:
    return FakeJobRunner(statuses=running(1) + [succeeded()], items=[two_audio_item])


@pytest.fixture
def api_client(fake_runner: FakeJobRunner) -> Generator[TestClient, None, None]:
    """Create a test client whose provider calls go to ``fake_runner``."""
    with patch("audiograb.app.build_job_runner", return_value=fake_runner):
        with TestClient(app) as client:
            yield client


def write_script(directory: Path, name: str, body: str) -> Path:
    """Write an executable shell script used as an ffmpeg stand-in."""
    path = directory / name
    path.write_text("#!/bin/sh\n" + body)
    path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
    return path


@pytest.fixture
def passthrough_ffmpeg(tmp_path: Path) -> Path:
    """Copies stdin to stdout, ignoring every argument."""
    return write_script(tmp_path, "ffmpeg-cat", "cat\n")


@pytest.fixture
def failing_ffmpeg(tmp_path: Path) -> Path:
    return write_script(
        tmp_path,
        "ffmpeg-fail",
        "cat >/dev/null\necho 'Invalid data found when processing input' >&2\nexit 1\n",
    )


@pytest.fixture
def failing_after_output_ffmpeg(tmp_path: Path) -> Path:
    """Writes ten bytes, then exits non-zero once its input is drained."""
    return write_script(tmp_path, "ffmpeg-partial", "head -c 10\ncat >/dev/null\nexit 1\n")
