import asyncio
import time

import pytest
from fastapi.testclient import TestClient

from app.core.config import Settings
from app.core.errors import EngineError, ProbeError
from app.main import create_app
from app.services.ffmpeg import MediaInfo


class FakeEngine:
    """stands in for ffmpeg: fixed probe result, scripted progress stream"""

    def __init__(self, info=None, progress=(10, 50, 90), error=None, write_output=True):
        self.info = info or MediaInfo(duration=10.0, width=1920, height=1080, format="mov,mp4,m4a,3gp,3g2,mj2")
        self.progress = progress
        self.error = error
        self.probe_error = None
        self.write_output = write_output
        self.calls = []

    def available(self):
        return {"ffmpeg": True, "ffprobe": True}

    def probe(self, file_path):
        if self.probe_error:
            raise ProbeError(self.probe_error)
        return self.info

    async def transcode(self, spec, input_path, output_path, expected_duration=None):
        self.calls.append((spec, input_path, output_path, expected_duration))
        for percent in self.progress:
            await asyncio.sleep(0)
            yield percent
        if self.error:
            raise EngineError(self.error)
        if self.write_output:
            with open(output_path, "wb") as f:
                f.write(b"processed-bytes")


@pytest.fixture(name="settings")
def settings_fixture(tmp_path):
    return Settings(
        DATA_DIR=str(tmp_path),
        UPLOAD_DIR=str(tmp_path / "uploads"),
        OUTPUT_DIR=str(tmp_path / "outputs"),
        MAX_FILE_SIZE=1024,
        REDIS_URL="",
        CLEANUP_INTERVAL_SEC=3600,
        RETENTION_WINDOW_SEC=1800,
    )


@pytest.fixture(name="engine")
def engine_fixture():
    return FakeEngine()


@pytest.fixture(name="client")
def client_fixture(settings, engine):
    app = create_app(settings, engine=engine)
    # the context manager keeps one event loop alive so background jobs run
    with TestClient(app) as client:
        yield client


def upload_video(client, content=b"fake video bytes", filename="clip.mp4", content_type="video/mp4"):
    return client.post("/api/upload", files={"video": (filename, content, content_type)})


def wait_for_terminal(client, job_id, timeout=5.0):
    """poll the status endpoint until the job completes or fails"""
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        body = client.get(f"/api/status/{job_id}").json()
        if body["status"] in ("completed", "failed"):
            return body
        time.sleep(0.01)
    raise AssertionError(f"job {job_id} did not finish in {timeout}s")
