"""
pagelens HTTP API - FastAPI application.

REST commands and queries for crawl jobs plus a WebSocket event feed.
Validation of URL and depth happens here; the registry trusts its input.
"""

import asyncio
from collections.abc import AsyncGenerator
from contextlib import asynccontextmanager

from fastapi import Depends, FastAPI, Query, Request, WebSocket, WebSocketDisconnect
from fastapi.exceptions import RequestValidationError
from fastapi.responses import JSONResponse, Response

from pagelens.advisory.client import GeminiAdvisoryClient
from pagelens.api.errors import (
    ErrorCode,
    InvalidParamsError,
    InvalidStateError,
    PageLensError,
    generate_error_id,
)
from pagelens.api.schemas import (
    CommandResponse,
    ErrorsResponse,
    HealthResponse,
    JobListResponse,
    JobStatusResponse,
    KeywordsResponse,
    LogsResponse,
    RecognitionRecord,
    RecognitionsResponse,
    StartCrawlRequest,
    StartCrawlResponse,
)
from pagelens.events.broadcaster import EventBroadcaster
from pagelens.ocr.recognition import TesseractRecognitionClient
from pagelens.scheduler.registry import JobCommand, JobRegistry
from pagelens.storage.database import close_database, get_database
from pagelens.utils.config import get_settings
from pagelens.utils.lifecycle import ResourceType, get_lifecycle_manager
from pagelens.utils.logging import get_logger

logger = get_logger(__name__)


def create_app(
    registry: JobRegistry | None = None,
    broadcaster: EventBroadcaster | None = None,
) -> FastAPI:
    """Build the API application.

    With no registry, the lifespan connects the default database, resets
    jobs interrupted by a previous process and builds a registry with the
    Playwright, Tesseract and Gemini clients. An injected registry has its
    database connected on the serving loop.

    Args:
        registry: Pre-built registry (tests, embedding).
        broadcaster: Event channel shared with the registry.
    """

    @asynccontextmanager
    async def lifespan(app: FastAPI) -> AsyncGenerator[None]:
        events = broadcaster or EventBroadcaster(get_settings().events.subscriber_queue_size)
        if registry is None:
            database = await get_database()
            app.state.registry = JobRegistry(
                database,
                events,
                recognition_client=TesseractRecognitionClient(),
                advisory_client=GeminiAdvisoryClient(),
            )
        else:
            database = registry.database
            await database.connect()
            await database.initialize_schema()
            app.state.registry = registry
        await database.mark_interrupted_jobs()
        app.state.broadcaster = events
        events.start()
        logger.info("API server starting up")

        yield

        logger.info("API server shutting down")
        await app.state.registry.shutdown()
        await events.stop()
        if registry is None:
            await close_database()
        else:
            await database.close()

    app = FastAPI(
        title="pagelens",
        description="Crawl job orchestration: capture, OCR and live status",
        version=get_settings().general.version,
        lifespan=lifespan,
    )
    if registry is not None:
        app.state.registry = registry
    if broadcaster is not None:
        app.state.broadcaster = broadcaster

    @app.exception_handler(PageLensError)
    async def _pagelens_error(request: Request, exc: PageLensError) -> JSONResponse:
        return JSONResponse(status_code=exc.code.http_status, content=exc.to_dict())

    @app.exception_handler(RequestValidationError)
    async def _validation_error(request: Request, exc: RequestValidationError) -> JSONResponse:
        error = InvalidParamsError("Invalid request parameters", received=exc.errors())
        return JSONResponse(status_code=error.code.http_status, content=error.to_dict())

    @app.exception_handler(Exception)
    async def _unexpected_error(request: Request, exc: Exception) -> JSONResponse:
        error = PageLensError(
            ErrorCode.INTERNAL_ERROR,
            "Internal error",
            error_id=generate_error_id(),
        )
        logger.exception("Unhandled API error", path=request.url.path, error_id=error.error_id)
        return JSONResponse(status_code=500, content=error.to_dict())

    _register_routes(app)
    return app


def _get_registry(request: Request) -> JobRegistry:
    return request.app.state.registry


def _register_routes(app: FastAPI) -> None:
    # =========================================================================
    # Health Check
    # =========================================================================

    @app.get("/health", response_model=HealthResponse)
    async def health_check(registry: JobRegistry = Depends(_get_registry)) -> HealthResponse:
        logger.debug("health_check")
        broadcaster: EventBroadcaster | None = getattr(app.state, "broadcaster", None)
        return HealthResponse(
            status="ok",
            active_jobs=registry.active_count,
            subscribers=broadcaster.subscriber_count if broadcaster else 0,
            browser_sessions=get_lifecycle_manager().get_resource_count(ResourceType.BROWSER),
        )

    # =========================================================================
    # Commands
    # =========================================================================

    @app.post("/api/crawler/start", response_model=StartCrawlResponse)
    async def start_crawl(
        request: StartCrawlRequest,
        registry: JobRegistry = Depends(_get_registry),
    ) -> StartCrawlResponse:
        job_id = await registry.create_and_start(str(request.url), request.depth, request.options)
        snapshot = await registry.status(job_id)
        return StartCrawlResponse(job_id=job_id, status=snapshot.status.value)

    async def _command(
        registry: JobRegistry, job_id: str, command: JobCommand
    ) -> CommandResponse:
        success = await registry.command(job_id, command)
        if not success:
            snapshot = await registry.status(job_id)
            raise InvalidStateError(job_id, command.value, snapshot.status.value)
        return CommandResponse(success=True)

    @app.post("/api/crawler/{job_id}/pause", response_model=CommandResponse)
    async def pause_crawl(job_id: str, registry: JobRegistry = Depends(_get_registry)):
        return await _command(registry, job_id, JobCommand.PAUSE)

    @app.post("/api/crawler/{job_id}/resume", response_model=CommandResponse)
    async def resume_crawl(job_id: str, registry: JobRegistry = Depends(_get_registry)):
        return await _command(registry, job_id, JobCommand.RESUME)

    @app.post("/api/crawler/{job_id}/stop", response_model=CommandResponse)
    async def stop_crawl(job_id: str, registry: JobRegistry = Depends(_get_registry)):
        return await _command(registry, job_id, JobCommand.STOP)

    # =========================================================================
    # Queries
    # =========================================================================

    @app.get("/api/crawler/jobs", response_model=JobListResponse)
    async def list_jobs(
        active_only: bool = False,
        limit: int = Query(default=50, ge=1, le=500),
        registry: JobRegistry = Depends(_get_registry),
    ) -> JobListResponse:
        snapshots = await registry.list_jobs(active_only=active_only, limit=limit)
        return JobListResponse(
            jobs=[JobStatusResponse(**s.to_status_dict()) for s in snapshots]
        )

    @app.get("/api/crawler/{job_id}/status", response_model=JobStatusResponse)
    async def job_status(
        job_id: str,
        registry: JobRegistry = Depends(_get_registry),
    ) -> JobStatusResponse:
        snapshot = await registry.status(job_id)
        return JobStatusResponse(**snapshot.to_status_dict())

    @app.get("/api/crawler/{job_id}/logs", response_model=LogsResponse)
    async def job_logs(
        job_id: str,
        limit: int | None = Query(default=None, ge=1, le=1000),
        offset: int = Query(default=0, ge=0),
        registry: JobRegistry = Depends(_get_registry),
    ) -> LogsResponse:
        if limit is None:
            limit = get_settings().api.default_log_limit
        logs = await registry.logs(job_id, limit=limit, offset=offset)
        return LogsResponse(job_id=job_id, logs=logs, limit=limit, offset=offset)

    @app.get("/api/crawler/{job_id}/errors", response_model=ErrorsResponse)
    async def job_errors(
        job_id: str,
        registry: JobRegistry = Depends(_get_registry),
    ) -> ErrorsResponse:
        errors = await registry.errors(job_id)
        return ErrorsResponse(job_id=job_id, errors=[e.to_dict() for e in errors])

    @app.get("/api/crawler/{job_id}/ocr", response_model=RecognitionsResponse)
    async def job_recognitions(
        job_id: str,
        limit: int = Query(default=50, ge=1, le=500),
        offset: int = Query(default=0, ge=0),
        registry: JobRegistry = Depends(_get_registry),
    ) -> RecognitionsResponse:
        results = await registry.recognitions(job_id, limit=limit, offset=offset)
        return RecognitionsResponse(job_id=job_id, results=results, limit=limit, offset=offset)

    @app.get("/api/crawler/{job_id}/ocr/{recognition_id}", response_model=RecognitionRecord)
    async def job_recognition(
        job_id: str,
        recognition_id: str,
        registry: JobRegistry = Depends(_get_registry),
    ) -> RecognitionRecord:
        return RecognitionRecord(**await registry.recognition(job_id, recognition_id))

    @app.get("/api/crawler/{job_id}/screenshot")
    async def latest_screenshot(
        job_id: str,
        registry: JobRegistry = Depends(_get_registry),
    ) -> Response:
        image = await registry.screenshot(job_id)
        return Response(content=image, media_type="image/png")

    @app.get("/api/crawler/{job_id}/screenshots/{artifact_id}")
    async def screenshot(
        job_id: str,
        artifact_id: str,
        registry: JobRegistry = Depends(_get_registry),
    ) -> Response:
        image = await registry.screenshot(job_id, artifact_id)
        return Response(content=image, media_type="image/png")

    @app.get("/api/keywords/top", response_model=KeywordsResponse)
    async def top_keywords(
        limit: int = Query(default=20, ge=1, le=200),
        registry: JobRegistry = Depends(_get_registry),
    ) -> KeywordsResponse:
        return KeywordsResponse(keywords=await registry.top_keywords(limit))

    # =========================================================================
    # Event feed
    # =========================================================================

    @app.websocket("/ws/events")
    async def event_feed(websocket: WebSocket) -> None:
        broadcaster: EventBroadcaster = websocket.app.state.broadcaster
        await websocket.accept()
        queue = broadcaster.subscribe()
        await websocket.send_json({"type": "connected", "payload": {}})
        logger.debug("Event subscriber connected", subscribers=broadcaster.subscriber_count)

        receiver = asyncio.create_task(_drain_client(websocket))
        try:
            while not receiver.done():
                getter = asyncio.create_task(queue.get())
                done, _ = await asyncio.wait(
                    {getter, receiver}, return_when=asyncio.FIRST_COMPLETED
                )
                if getter in done:
                    event = getter.result()
                    await websocket.send_json(event.to_dict())
                else:
                    getter.cancel()
        except WebSocketDisconnect:
            pass
        finally:
            broadcaster.unsubscribe(queue)
            receiver.cancel()
            logger.debug("Event subscriber disconnected")


async def _drain_client(websocket: WebSocket) -> None:
    """Consume client frames until the connection closes."""
    try:
        while True:
            await websocket.receive_text()
    except WebSocketDisconnect:
        return
