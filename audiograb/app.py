"""FastAPI entrypoint for the audio extraction service."""
from __future__ import annotations

import asyncio
import json
import logging
from typing import Any, Awaitable, Dict, Optional, TypeVar

import httpx
import uvicorn
from fastapi import Body, FastAPI, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response, StreamingResponse
from sse_starlette.sse import EventSourceResponse
from starlette.background import BackgroundTask

from . import __version__
from .clients.apify import ApifyJobRunner
from .clients.base import JobOptions, JobRunner
from .config import load_settings
from .constants import DEFAULT_AUDIO_QUALITY, ITEM_URL_KEYS, NATIVE_AUDIO_EXTENSIONS
from .errors import AudiograbError, InvalidInputError, NoResultsError
from .logging_setup import setup_logging
from .models import (
    ExtractItem,
    ExtractRequest,
    ExtractResponse,
    FetchAudioRequest,
    RunStatusResponse,
    StageEvent,
    StartExtractRequest,
    StartExtractResponse,
)
from .pipeline.delivery import Delivery, MediaDeliverer, filename_from_url
from .pipeline.orchestrator import (
    EventSink,
    ExtractionOrchestrator,
    ExtractionOutcome,
    ProviderAttemptPolicy,
)
from .pipeline.transcode import Transcoder

log = logging.getLogger(__name__)

T = TypeVar("T")

# Seconds between client-disconnect checks while a job is polled.
DISCONNECT_CHECK_SECONDS = 0.5
# Non-standard status used by nginx for requests the client abandoned.
CLIENT_CLOSED_REQUEST = 499

settings = load_settings()
setup_logging(settings)
if not settings.provider.token:
    log.warning("APIFY_TOKEN is not set; extraction endpoints will return 500")

app = FastAPI(title="audiograb", version=__version__)
transcoder = Transcoder(settings.delivery.ffmpeg_bin, settings.delivery.mp3_bitrate)


def open_http_client(timeout: Optional[float] = None) -> httpx.AsyncClient:
    """Create the outbound HTTP client used for one request."""
    return httpx.AsyncClient(
        timeout=timeout or settings.provider.request_timeout_seconds,
        follow_redirects=True,
    )


def build_job_runner(client: httpx.AsyncClient) -> JobRunner:
    return ApifyJobRunner(client, settings.provider)


def build_deliverer(timeout: Optional[float] = None) -> MediaDeliverer:
    fetch_timeout = timeout or settings.delivery.fetch_timeout_seconds
    return MediaDeliverer(
        client_factory=lambda: open_http_client(fetch_timeout),
        transcoder=transcoder,
        chunk_size=settings.delivery.chunk_size,
    )


def build_orchestrator(
    runner: JobRunner,
    request: Optional[ExtractRequest] = None,
    on_event: Optional[EventSink] = None,
) -> ExtractionOrchestrator:
    poll_interval = settings.polling.interval_seconds
    max_wait = settings.polling.max_wait_seconds
    if request is not None and request.poll_interval_ms:
        poll_interval = request.poll_interval_ms / 1000
    if request is not None and request.max_wait_ms:
        max_wait = request.max_wait_ms / 1000
    policy = ProviderAttemptPolicy.from_list(
        settings.provider.actors,
        max_attempts=settings.provider.max_attempts,
    )
    return ExtractionOrchestrator(
        runner,
        policy,
        poll_interval=poll_interval,
        max_wait=max_wait,
        on_event=on_event,
    )


# ---------------------------------------------------------------- errors


@app.exception_handler(AudiograbError)
async def handle_audiograb_error(request: Request, exc: AudiograbError) -> JSONResponse:
    if exc.status_code >= 500:
        log.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    else:
        log.info("%s %s rejected: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=jsonable_encoder(exc.to_payload()))


@app.exception_handler(RequestValidationError)
async def handle_validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
    return JSONResponse(
        status_code=400,
        content={"error": "Invalid request", "details": jsonable_encoder(exc.errors())},
    )


@app.exception_handler(Exception)
async def handle_unexpected_error(request: Request, exc: Exception) -> JSONResponse:
    log.exception("Unhandled error on %s %s", request.method, request.url.path)
    return JSONResponse(status_code=500, content={"error": "Internal server error"})


# ---------------------------------------------------------------- routes


@app.get("/health")
def health() -> Dict[str, str]:
    return {"status": "ok"}


@app.post("/api/extract", response_model=ExtractResponse)
async def extract(body: ExtractRequest, request: Request):
    """Run a provider job to completion and describe the selected media.

    Polling stops as soon as the caller disconnects.
    """
    outcome = await run_until_disconnected(request, _run_extraction(body))
    if outcome is None:
        return Response(status_code=CLIENT_CLOSED_REQUEST)
    return _extract_response(outcome)


@app.post("/api/extract/events")
async def extract_events(request: ExtractRequest) -> EventSourceResponse:
    """Same as ``/api/extract`` but streams stage progress as SSE."""
    queue: asyncio.Queue = asyncio.Queue()

    def on_event(event: StageEvent) -> None:
        queue.put_nowait(("stage", event.model_dump_json()))

    async def run_pipeline() -> None:
        try:
            outcome = await _run_extraction(request, on_event=on_event)
        except AudiograbError as exc:
            queue.put_nowait(("error", json.dumps(exc.to_payload(), default=str)))
        except Exception:
            log.exception("Extraction failed")
            queue.put_nowait(("error", json.dumps({"error": "Internal server error"})))
        else:
            queue.put_nowait(("result", _extract_response(outcome).model_dump_json(by_alias=True)))

    async def event_generator():
        task = asyncio.create_task(run_pipeline())
        try:
            while True:
                kind, data = await queue.get()
                yield {"event": kind, "data": data}
                if kind != "stage":
                    return
        finally:
            if not task.done():
                task.cancel()
            await asyncio.gather(task, return_exceptions=True)

    return EventSourceResponse(event_generator())


@app.post("/api/start-extract", response_model=StartExtractResponse)
async def start_extract(request: StartExtractRequest) -> StartExtractResponse:
    """Start a provider job without waiting for it to finish."""
    quality = request.quality or DEFAULT_AUDIO_QUALITY
    options = JobOptions(desired_format=request.audio_format, audio_quality=quality)
    async with open_http_client() as client:
        orchestrator = build_orchestrator(build_job_runner(client))
        run_id, actor, attempt = await orchestrator.start_with_fallback(request.video_url, options)
    return StartExtractResponse(run_id=run_id, actor=actor, quality=quality, attempt=attempt)


@app.get("/api/run-status", response_model=RunStatusResponse)
async def run_status(run_id: Optional[str] = Query(default=None, alias="runId")) -> RunStatusResponse:
    if not run_id:
        raise InvalidInputError("Missing runId")
    async with open_http_client() as client:
        report = await build_job_runner(client).get_job_status(run_id)
    return RunStatusResponse(
        status=report.raw_status or report.status.value,
        dataset_id=report.result_set_id,
    )


@app.get("/api/run-result")
async def run_result(dataset_id: Optional[str] = Query(default=None, alias="datasetId")) -> Dict[str, Any]:
    """Return the first dataset item that carries a downloadable URL."""
    if not dataset_id:
        raise InvalidInputError("Missing datasetId")
    async with open_http_client() as client:
        items = await build_job_runner(client).get_result_set(dataset_id)
    for item in items:
        if isinstance(item, dict) and "error" not in item and _item_url(item):
            return {"item": item}
    raise NoResultsError("No audio URL in dataset items", {"datasetId": dataset_id})


@app.get("/api/download")
async def download(
    url: Optional[str] = Query(default=None),
    filename: Optional[str] = Query(default=None),
) -> StreamingResponse:
    delivery = await build_deliverer().relay(url, filename=filename)
    return _stream(delivery)


@app.api_route("/api/transcode", methods=["GET", "POST"])
async def transcode(
    url: Optional[str] = Query(default=None),
    format: str = Query(default="mp3"),
    filename: str = Query(default="audio.mp3"),
) -> StreamingResponse:
    delivery = await build_deliverer().transcode(url, format, filename)
    return _stream(delivery)


@app.post("/api/fetch-audio")
async def fetch_audio(request: FetchAudioRequest = Body(...)) -> StreamingResponse:
    """Download a media URL server-side and return it as an attachment."""
    filename = request.filename or filename_from_url(request.url, "audio")
    delivery = await build_deliverer().relay(
        request.url,
        filename=filename,
        content_type=request.content_type,
    )
    return _stream(delivery)


# ---------------------------------------------------------------- helpers


async def _run_extraction(
    request: ExtractRequest,
    on_event: Optional[EventSink] = None,
) -> ExtractionOutcome:
    options = JobOptions(
        desired_format=request.desired_format,
        include_info=request.include_info,
        proxy_country=request.proxy_country,
    )
    async with open_http_client() as client:
        orchestrator = build_orchestrator(build_job_runner(client), request, on_event)
        return await orchestrator.run(
            request.video_url,
            request.desired_format,
            options,
            require_audio=request.audio_only,
        )


async def run_until_disconnected(
    request: Request,
    work: Awaitable[T],
    interval: float = DISCONNECT_CHECK_SECONDS,
) -> Optional[T]:
    """Await ``work``, cancelling it and returning ``None`` if the client goes away."""
    task = asyncio.ensure_future(work)
    try:
        while True:
            done, _ = await asyncio.wait({task}, timeout=interval)
            if done:
                return task.result()
            if await request.is_disconnected():
                log.info("Client disconnected from %s; cancelling", request.url.path)
                task.cancel()
                await asyncio.gather(task, return_exceptions=True)
                return None
    finally:
        if not task.done():
            task.cancel()
            await asyncio.gather(task, return_exceptions=True)


def _extract_response(outcome: ExtractionOutcome) -> ExtractResponse:
    selection = outcome.selection
    return ExtractResponse(
        item=ExtractItem(
            title=outcome.title,
            medias=[candidate.to_dict() for candidate in outcome.candidates],
            chosen_media=selection.winner.to_dict(),
            transcode_needed=selection.requires_transcode,
            has_native_for_mp3=any(
                candidate.extension in NATIVE_AUDIO_EXTENSIONS for candidate in outcome.candidates
            ),
            provider=outcome.provider,
        )
    )


def _item_url(item: Dict[str, Any]) -> Optional[str]:
    for key in ITEM_URL_KEYS:
        value = item.get(key)
        if isinstance(value, str) and value:
            return value
    return None


def _stream(delivery: Delivery) -> StreamingResponse:
    return StreamingResponse(
        delivery.body,
        media_type=delivery.media_type,
        headers=delivery.headers,
        background=BackgroundTask(delivery.aclose),
    )


def main() -> None:
    uvicorn.run(app, host=settings.server.host, port=settings.server.port)


if __name__ == "__main__":  # pragma: no cover
    main()
