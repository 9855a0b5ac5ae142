"""
Job orchestration against a RunPod-style queue API.

A job is submitted with ``POST /run`` and observed with ``GET /status/{id}``
until it reaches a terminal state or the attempt budget runs out. Each attempt
waits the fixed interval first, then queries the status exactly once.

Polling is cooperative: the wait is an ``anyio`` sleep on the event loop and
only the status request itself runs on a worker thread, so any number of
requests can be polling at once, each on its own schedule.
"""
import json
import logging
from typing import Any, Awaitable, Callable

import anyio
import requests
from fastapi.concurrency import run_in_threadpool

from .config import Settings
from .errors import (
    JobFailedError,
    JobStatusError,
    JobSubmissionError,
    JobTimeoutError,
    MissingResultError,
)
from .models import JobState, JobStatus

COMPLETED: JobStatus = "COMPLETED"
FAILED: JobStatus = "FAILED"


class JobOrchestrator:
    def __init__(
        self,
        settings: Settings,
        http=None,
        sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
    ):
        self.settings = settings
        # Module-level requests calls use a fresh Session each time.
        self.http = http or requests
        self.sleep = sleep

    def _url(self, path: str) -> str:
        return f"{self.settings.runpod_base_url}{path}"

    def submit(self, staged_url: str) -> str:
        payload = {"input": {self.settings.runpod_input_key: staged_url}}
        try:
            resp = self.http.post(
                self._url("/run"),
                json=payload,
                headers=self.settings.runpod_headers,
                timeout=self.settings.request_timeout_sec,
            )
        except requests.RequestException as exc:
            raise JobSubmissionError(f"Job submission failed: {exc}") from exc
        if not 200 <= resp.status_code < 300:
            raise JobSubmissionError(f"Job submission failed: job queue returned {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise JobSubmissionError(f"Job submission returned invalid JSON: {exc}") from exc

        job_id = data.get("id") if isinstance(data, dict) else None
        if not job_id:
            raise JobSubmissionError("Failed to get Job ID from the job queue.")
        logging.info("Job ID: %s. Polling for status...", job_id)
        return job_id

    def status(self, job_id: str) -> JobState:
        try:
            resp = self.http.get(
                self._url(f"/status/{job_id}"),
                headers=self.settings.runpod_headers,
                timeout=self.settings.request_timeout_sec,
            )
        except requests.RequestException as exc:
            raise JobStatusError(f"Status check for job {job_id} failed: {exc}") from exc
        if not 200 <= resp.status_code < 300:
            raise JobStatusError(f"Status check for job {job_id} returned {resp.status_code}")

        try:
            data = resp.json()
        except ValueError as exc:
            raise JobStatusError(f"Status check for job {job_id} returned invalid JSON: {exc}") from exc

        if not isinstance(data, dict):
            raise JobStatusError(f"Unexpected status payload for job {job_id}: {data!r}")
        return JobState(
            id=job_id,
            status=str(data.get("status") or "IN_PROGRESS"),
            output=data.get("output"),
        )

    async def poll(self, job_id: str) -> Any:
        interval = self.settings.poll_interval_sec
        max_attempts = self.settings.poll_max_attempts

        for attempt in range(1, max_attempts + 1):
            await self.sleep(interval)
            state = await run_in_threadpool(self.status, job_id)

            if state.status == COMPLETED:
                logging.info("Job %s COMPLETED after %d status checks", job_id, attempt)
                return state.output
            if state.status == FAILED:
                raise JobFailedError(f"Job failed. Details: {json.dumps(state.output)}")

            logging.debug("Job %s is %s (attempt %d/%d)", job_id, state.status, attempt, max_attempts)

        raise JobTimeoutError(
            f"Job {job_id} timed out after {max_attempts} status checks "
            f"({max_attempts * interval:g} seconds)."
        )

    def result_url(self, output: Any) -> str:
        key = self.settings.runpod_output_key
        url = output.get(key) if isinstance(output, dict) else None
        if not url:
            raise MissingResultError(f"Job completed but no '{key}' found in output.")
        return url

    async def run(self, staged_url: str) -> str:
        job_id = await run_in_threadpool(self.submit, staged_url)
        output = await self.poll(job_id)
        return self.result_url(output)
