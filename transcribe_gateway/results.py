import logging

import requests

from .config import Settings
from .errors import ResultFetchError


class ResultFetcher:
    """Downloads the finished artifact referenced by a completed job."""

    def __init__(self, settings: Settings, http=None):
        self.settings = settings
        self.http = http or requests

    def fetch(self, url: str) -> bytes:
        logging.info("Downloading result from: %s", url)
        try:
            resp = self.http.get(url, timeout=self.settings.request_timeout_sec)
        except requests.RequestException as exc:
            raise ResultFetchError(f"Result download from {url} failed: {exc}") from exc
        if not 200 <= resp.status_code < 300:
            raise ResultFetchError(f"Result download from {url} returned {resp.status_code}")
        return resp.content
