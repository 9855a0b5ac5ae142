import logging
from typing import Awaitable, Callable, Optional

import anyio
import anyio.to_thread
import uvicorn
from fastapi import FastAPI, File, Form, Request, UploadFile
from fastapi.concurrency import run_in_threadpool
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, Response

from . import __version__
from .config import Settings
from .errors import GatewayError
from .jobs import JobOrchestrator
from .models import ErrorResponse, HealthResponse, PingResponse, RelayEndpoint
from .relay import DEFAULT_ENDPOINTS, DirectRelay
from .results import ResultFetcher
from .storage import UploadRelay, saved_upload

FILE_FIELD = "file"
QUEUE_CONTENT_TYPE = "audio/midi"


def _error(status_code: int, error: str, details: Optional[str] = None) -> JSONResponse:
    return JSONResponse(status_code=status_code, content=ErrorResponse(error=error, details=details).model_dump())


def _no_file(field: str) -> JSONResponse:
    return _error(400, "No file uploaded.", f"Expected a file in form field '{field}'")


async def _guarded(work: Awaitable):
    # Anything unexpected still ends as a single error envelope, never a partial body.
    try:
        return await work
    except GatewayError:
        raise
    except Exception as exc:
        logging.exception("Unexpected error while handling upload")
        raise GatewayError(str(exc)) from exc


def create_app(
    settings: Optional[Settings] = None,
    *,
    http=None,
    storage_client=None,
    sleep: Callable[[float], Awaitable[None]] = anyio.sleep,
) -> FastAPI:
    settings = settings or Settings.from_env()

    app = FastAPI(title="Transcribe Gateway", version=__version__)
    app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_allow_origins,
        allow_methods=["GET", "POST", "OPTIONS"],
        allow_headers=["Content-Type", "Authorization"],
    )

    app.state.settings = settings
    app.state.uploads = UploadRelay(settings, client=storage_client)
    app.state.orchestrator = JobOrchestrator(settings, http=http, sleep=sleep)
    app.state.fetcher = ResultFetcher(settings, http=http)
    app.state.relay = DirectRelay(settings, http=http)
    app.state.relay_limiter = None

    def relay_limiter() -> anyio.CapacityLimiter:
        # Direct relays hold a thread for up to the endpoint timeout, so they get
        # their own pool instead of starving the shared one.
        if app.state.relay_limiter is None:
            app.state.relay_limiter = anyio.CapacityLimiter(settings.relay_thread_limit)
        return app.state.relay_limiter

    @app.exception_handler(GatewayError)
    async def gateway_error_handler(request: Request, exc: GatewayError):
        logging.error("%s %s failed: %s", request.method, request.url.path, exc)
        return _error(exc.status_code, exc.summary, str(exc))

    @app.get("/health", response_model=HealthResponse)
    async def health():
        return HealthResponse()

    @app.get("/ping", response_model=PingResponse)
    async def ping():
        return await run_in_threadpool(app.state.relay.ping)

    async def transcribe_via_queue(upload: UploadFile) -> bytes:
        uploads = app.state.uploads
        with saved_upload(settings, upload.file, upload.filename, upload.content_type) as asset:
            staged = await run_in_threadpool(uploads.stage, asset)
            try:
                result_url = await app.state.orchestrator.run(staged.url)
                return await run_in_threadpool(app.state.fetcher.fetch, result_url)
            finally:
                # Staged objects are kept unless explicitly configured otherwise.
                if settings.s3_delete_staged:
                    await run_in_threadpool(uploads.discard, staged)

    async def relay_direct(endpoint: RelayEndpoint, upload: UploadFile, extra_fields: dict):
        with saved_upload(settings, upload.file, upload.filename, upload.content_type) as asset:
            return await anyio.to_thread.run_sync(
                app.state.relay.relay, endpoint, asset, extra_fields, limiter=relay_limiter()
            )

    if settings.mode == "queue":

        @app.post("/transcribe")
        async def transcribe(file: Optional[UploadFile] = File(None)):
            if file is None:
                return _no_file(FILE_FIELD)
            body = await _guarded(transcribe_via_queue(file))
            return Response(content=body, media_type=QUEUE_CONTENT_TYPE)

    else:
        for endpoint in DEFAULT_ENDPOINTS:
            app.add_api_route(endpoint.path, _direct_handler(endpoint, relay_direct), methods=["POST"])

    return app


async def _relay_response(endpoint: RelayEndpoint, relay_direct: Callable, file, extra_fields: dict):
    if file is None:
        return _no_file(endpoint.file_field)
    result = await _guarded(relay_direct(endpoint, file, extra_fields))
    return Response(content=result.body, status_code=result.status_code, media_type=result.content_type)


def _direct_handler(endpoint: RelayEndpoint, relay_direct: Callable):
    if endpoint.extra_field:

        async def handler(
            file: Optional[UploadFile] = File(None, alias=endpoint.file_field),
            extra: Optional[str] = Form(None, alias=endpoint.extra_field),
        ):
            value = extra if extra is not None else endpoint.extra_default
            fields = {endpoint.extra_field: value} if value is not None else {}
            return await _relay_response(endpoint, relay_direct, file, fields)

    else:

        async def handler(file: Optional[UploadFile] = File(None, alias=endpoint.file_field)):
            return await _relay_response(endpoint, relay_direct, file, {})

    handler.__name__ = "relay_" + endpoint.path.strip("/").replace("/", "_")
    return handler


def build_app() -> FastAPI:
    """
    Production entry point: read and validate the environment, set up logging.

    Usable directly as ``uvicorn --factory transcribe_gateway.main:build_app``.
    """
    settings = Settings.from_env()
    logging.basicConfig(level=settings.log_level, format="%(asctime)s %(levelname)s %(message)s")
    settings.require()
    if settings.mode == "queue":
        logging.info("Job queue base URL: %s", settings.runpod_base_url)
    else:
        logging.info("Backend base URL: %s", settings.backend_base_url)
    return create_app(settings)


def serve() -> None:
    app = build_app()
    settings = app.state.settings
    logging.info("Gateway running on port %d in %s mode", settings.port, settings.mode)
    uvicorn.run(app, host="0.0.0.0", port=settings.port)


if __name__ == "__main__":
    serve()
