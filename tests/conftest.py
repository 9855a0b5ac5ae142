"""
Common fixtures for gateway tests.

Provides:
- Settings bound to a temporary upload dir
- A scripted stand-in for the requests module
- A recording async sleep so polling runs on a fake clock
- FastAPI TestClient for both deployment modes
"""

import io
from unittest.mock import MagicMock

import pytest
from fastapi.testclient import TestClient

from transcribe_gateway.config import Settings
from transcribe_gateway.main import create_app

RUNPOD_BASE = "https://api.runpod.ai/v2/ep-test"
BACKEND_BASE = "http://backend.test"
PUBLIC_BASE = "https://cdn.test"


class FakeResponse:
    def __init__(self, status_code=200, json_data=None, content=b""):
        self.status_code = status_code
        self._json = json_data
        self.content = content

    @property
    def text(self):
        return self.content.decode("utf-8", errors="replace")

    def json(self):
        if self._json is None:
            raise ValueError("no json body")
        return self._json


class FakeSession:
    """Replays scripted responses per (method, url); the last one repeats."""

    def __init__(self):
        self.routes = {}
        self.calls = []

    def add(self, method, url, *responses):
        self.routes.setdefault((method, url), []).extend(responses)

    def _dispatch(self, method, url, **kwargs):
        if "files" in kwargs:
            kwargs["files"] = {
                field: (name, fh.read(), ctype) for field, (name, fh, ctype) in kwargs["files"].items()
            }
        self.calls.append((method, url, kwargs))
        queue = self.routes.get((method, url))
        if not queue:
            raise AssertionError(f"unexpected {method} {url}")
        item = queue.pop(0) if len(queue) > 1 else queue[0]
        if isinstance(item, Exception):
            raise item
        return item

    def post(self, url, **kwargs):
        return self._dispatch("POST", url, **kwargs)

    def get(self, url, **kwargs):
        return self._dispatch("GET", url, **kwargs)

    def urls(self, method=None):
        return [url for m, url, _ in self.calls if method is None or m == method]


class RecordingSleep:
    def __init__(self):
        self.calls = []

    async def __call__(self, seconds):
        self.calls.append(seconds)

    @property
    def elapsed(self):
        return sum(self.calls)


@pytest.fixture
def upload_dir(tmp_path):
    return tmp_path / "uploads"


@pytest.fixture
def settings(upload_dir):
    return Settings(
        mode="queue",
        runpod_endpoint_id="ep-test",
        runpod_api_key="secret-key",
        s3_bucket="bucket",
        s3_public_base_url=PUBLIC_BASE,
        backend_base_url=BACKEND_BASE,
        upload_dir=str(upload_dir),
    )


@pytest.fixture
def direct_settings(settings):
    return settings.model_copy(update={"mode": "direct"})


@pytest.fixture
def session():
    return FakeSession()


@pytest.fixture
def fake_sleep():
    return RecordingSleep()


@pytest.fixture
def storage_client():
    """Mock boto3 S3 client."""
    return MagicMock()


@pytest.fixture
def client(settings, session, storage_client, fake_sleep):
    app = create_app(settings, http=session, storage_client=storage_client, sleep=fake_sleep)
    return TestClient(app)


@pytest.fixture
def direct_client(direct_settings, session, storage_client, fake_sleep):
    app = create_app(direct_settings, http=session, storage_client=storage_client, sleep=fake_sleep)
    return TestClient(app)


@pytest.fixture
def audio_file():
    return ("song.mp3", io.BytesIO(b"ID3\x03\x00fake-mp3-bytes"), "audio/mpeg")
