import logging
from pathlib import Path
from typing import Dict, List, Optional

import requests

from .config import Settings
from .errors import BackendRelayError
from .models import PingResponse, RelayEndpoint, RelayResult, UploadedAsset

# Endpoints differ only in configuration. Timeouts follow the expected workload.
DEFAULT_ENDPOINTS: List[RelayEndpoint] = [
    RelayEndpoint(path="/transcribe", content_type="audio/midi", timeout_sec=300),
    RelayEndpoint(
        path="/separate",
        content_type="application/zip",
        timeout_sec=900,
        extra_field="two_stems",
        extra_default="false",
    ),
    RelayEndpoint(path="/analyze", content_type="application/json", timeout_sec=60),
]

PING_PATHS = ("/ping", "/health")
PING_TIMEOUT_SEC = 10


class DirectRelay:
    """Forwards uploads synchronously to a directly addressable backend."""

    def __init__(self, settings: Settings, http=None):
        self.settings = settings
        self.http = http or requests

    def _url(self, path: str) -> str:
        if not self.settings.backend_base_url:
            raise BackendRelayError("BACKEND_BASE_URL is not configured")
        return f"{self.settings.backend_base_url}{path}"

    def relay(
        self,
        endpoint: RelayEndpoint,
        asset: UploadedAsset,
        extra_fields: Optional[Dict[str, str]] = None,
    ) -> RelayResult:
        url = self._url(endpoint.path)
        data = {k: str(v) for k, v in (extra_fields or {}).items()}
        content_type = asset.content_type or "application/octet-stream"

        logging.info("Relaying %s to %s", asset.filename, url)
        try:
            with Path(asset.path).open("rb") as fh:
                resp = self.http.post(
                    url,
                    files={endpoint.file_field: (asset.filename, fh, content_type)},
                    data=data,
                    timeout=endpoint.timeout_sec,
                )
        except (requests.RequestException, OSError) as exc:
            raise BackendRelayError(f"Relay to {url} failed: {exc}") from exc

        if not 200 <= resp.status_code < 300:
            logging.warning("Backend %s answered %d", url, resp.status_code)
        return RelayResult(status_code=resp.status_code, body=resp.content, content_type=endpoint.content_type)

    def ping(self) -> PingResponse:
        errors = []
        for path in PING_PATHS:
            url = self._url(path)
            try:
                resp = self.http.get(url, timeout=PING_TIMEOUT_SEC)
            except requests.RequestException as exc:
                logging.warning("Backend health check %s failed: %s", url, exc)
                errors.append(f"{path}: {exc}")
                continue
            if not 200 <= resp.status_code < 300:
                logging.warning("Backend health check %s answered %d", url, resp.status_code)
                errors.append(f"{path}: status {resp.status_code}")
                continue

            try:
                body = resp.json()
            except ValueError:
                body = resp.text
            return PingResponse(ok=True, path=path, backend_status=resp.status_code, backend=body)

        raise BackendRelayError("Backend is unreachable. " + "; ".join(errors))
