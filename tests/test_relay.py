"""
Tests for DirectRelay and ResultFetcher.
"""

import pytest
import requests

from transcribe_gateway.errors import BackendRelayError, ResultFetchError
from transcribe_gateway.models import UploadedAsset
from transcribe_gateway.relay import DEFAULT_ENDPOINTS, DirectRelay
from transcribe_gateway.results import ResultFetcher

from conftest import BACKEND_BASE, FakeResponse


def _endpoint(path):
    return next(e for e in DEFAULT_ENDPOINTS if e.path == path)


@pytest.fixture
def asset(tmp_path):
    path = tmp_path / "song.wav"
    path.write_bytes(b"RIFF-wave")
    return UploadedAsset(path=str(path), filename="song.wav", content_type="audio/wav")


def test_endpoints_are_configuration_only():
    transcribe, separate, analyze = (_endpoint(p) for p in ("/transcribe", "/separate", "/analyze"))

    assert transcribe.content_type == "audio/midi"
    assert separate.extra_field == "two_stems"
    assert analyze.timeout_sec < transcribe.timeout_sec < separate.timeout_sec


def test_relay_forwards_multipart_and_returns_verbatim(direct_settings, session, asset):
    session.add("POST", f"{BACKEND_BASE}/separate", FakeResponse(content=b"PK-zip"))
    relay = DirectRelay(direct_settings, http=session)

    result = relay.relay(_endpoint("/separate"), asset, {"two_stems": "true"})

    assert result.status_code == 200
    assert result.body == b"PK-zip"
    assert result.content_type == "application/zip"
    _, _, kwargs = session.calls[0]
    assert kwargs["files"] == {"file": ("song.wav", b"RIFF-wave", "audio/wav")}
    assert kwargs["data"] == {"two_stems": "true"}
    assert kwargs["timeout"] == 900


def test_relay_passes_backend_error_status_through(direct_settings, session, asset):
    session.add("POST", f"{BACKEND_BASE}/transcribe", FakeResponse(status_code=422, content=b'{"detail":"bad"}'))
    relay = DirectRelay(direct_settings, http=session)

    result = relay.relay(_endpoint("/transcribe"), asset)

    assert result.status_code == 422
    assert result.body == b'{"detail":"bad"}'


def test_relay_network_failure_raises(direct_settings, session, asset):
    session.add("POST", f"{BACKEND_BASE}/transcribe", requests.ConnectTimeout("timed out"))
    relay = DirectRelay(direct_settings, http=session)

    with pytest.raises(BackendRelayError, match="timed out"):
        relay.relay(_endpoint("/transcribe"), asset)


def test_relay_without_backend_configured(direct_settings, session, asset):
    relay = DirectRelay(direct_settings.model_copy(update={"backend_base_url": ""}), http=session)

    with pytest.raises(BackendRelayError, match="BACKEND_BASE_URL"):
        relay.relay(_endpoint("/transcribe"), asset)
    assert session.calls == []


def test_ping_uses_primary_path(direct_settings, session):
    session.add("GET", f"{BACKEND_BASE}/ping", FakeResponse(json_data={"status": "ok"}))

    result = DirectRelay(direct_settings, http=session).ping()

    assert result.ok
    assert result.path == "/ping"
    assert result.backend == {"status": "ok"}


def test_ping_falls_back_to_health(direct_settings, session):
    session.add("GET", f"{BACKEND_BASE}/ping", FakeResponse(status_code=404))
    session.add("GET", f"{BACKEND_BASE}/health", FakeResponse(content=b"alive"))

    result = DirectRelay(direct_settings, http=session).ping()

    assert result.path == "/health"
    assert result.backend == "alive"
    assert session.urls() == [f"{BACKEND_BASE}/ping", f"{BACKEND_BASE}/health"]


def test_ping_gives_up_after_fallback(direct_settings, session):
    session.add("GET", f"{BACKEND_BASE}/ping", requests.ConnectionError("refused"))
    session.add("GET", f"{BACKEND_BASE}/health", requests.ConnectionError("refused"))

    with pytest.raises(BackendRelayError, match="unreachable"):
        DirectRelay(direct_settings, http=session).ping()


def test_fetch_returns_body(settings, session):
    session.add("GET", "https://x/y.mid", FakeResponse(content=b"MThd"))

    assert ResultFetcher(settings, http=session).fetch("https://x/y.mid") == b"MThd"


@pytest.mark.parametrize("status_code", [403, 304, 300])
def test_fetch_non_2xx_raises(settings, session, status_code):
    session.add("GET", "https://x/y.mid", FakeResponse(status_code=status_code, content=b"<html>"))

    with pytest.raises(ResultFetchError, match=str(status_code)):
        ResultFetcher(settings, http=session).fetch("https://x/y.mid")


def test_ping_falls_back_on_redirect_status(direct_settings, session):
    session.add("GET", f"{BACKEND_BASE}/ping", FakeResponse(status_code=301))
    session.add("GET", f"{BACKEND_BASE}/health", FakeResponse(json_data={"status": "ok"}))

    result = DirectRelay(direct_settings, http=session).ping()

    assert result.path == "/health"


def test_components_default_to_per_call_requests(settings):
    assert ResultFetcher(settings).http is requests
    assert DirectRelay(settings).http is requests
