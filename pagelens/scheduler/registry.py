"""
Job registry.

Holds one handle (job, frontier, controller, task) per job, brokers
commands from the command surface, and answers read-only projections by
combining live state with the durable snapshot. The registry is an explicit
object built once at process start and injected where needed.
"""

import asyncio
from collections import OrderedDict
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import ValidationError

from pagelens.advisory.client import AdvisoryClient
from pagelens.api.errors import (
    AdmissionLimitError,
    ArtifactNotFoundError,
    InvalidParamsError,
    JobNotFoundError,
    RecognitionNotFoundError,
)
from pagelens.crawler.capture import CaptureClientFactory, open_playwright_session
from pagelens.crawler.frontier import FrontierScheduler
from pagelens.crawler.pipeline import PipelineCoordinator
from pagelens.events.broadcaster import EventBroadcaster
from pagelens.ocr.recognition import RecognitionClient
from pagelens.scheduler.lifecycle import LifecycleController
from pagelens.scheduler.models import (
    Artifact,
    CrawlError,
    CrawlJob,
    CrawlOptions,
    JobSnapshot,
    JobStatus,
    elapsed_seconds,
)
from pagelens.scheduler.runner import CrawlJobRunner
from pagelens.storage.database import Database
from pagelens.utils.config import get_settings
from pagelens.utils.lifecycle import get_lifecycle_manager
from pagelens.utils.logging import get_logger

logger = get_logger(__name__)

MIN_DEPTH = 1
MAX_DEPTH = 10


class JobCommand(str, Enum):
    """Commands accepted for a running job."""

    PAUSE = "pause"
    RESUME = "resume"
    STOP = "stop"


@dataclass
class JobHandle:
    job: CrawlJob
    frontier: FrontierScheduler
    controller: LifecycleController
    runner: CrawlJobRunner
    task: asyncio.Task | None = None

    def snapshot(self) -> JobSnapshot:
        snapshot = self.job.snapshot(self.frontier.visited_count)
        if not self.controller.is_terminal and snapshot.started_at:
            snapshot.duration_seconds = elapsed_seconds(snapshot.started_at)
        return snapshot


class JobRegistry:
    """Ownership table from job id to job handle."""

    def __init__(
        self,
        database: Database,
        broadcaster: EventBroadcaster,
        *,
        capture_factory: CaptureClientFactory | None = None,
        recognition_client: RecognitionClient | None = None,
        advisory_client: AdvisoryClient | None = None,
        max_active_jobs: int | None = None,
        retain_finished: int | None = None,
    ):
        settings = get_settings().registry
        self._db = database
        self._broadcaster = broadcaster
        self._capture_factory = capture_factory or open_playwright_session
        self._recognition = recognition_client
        self._advisory = advisory_client
        self.max_active_jobs = (
            settings.max_active_jobs if max_active_jobs is None else max_active_jobs
        )
        self.retain_finished = (
            settings.retain_finished if retain_finished is None else retain_finished
        )
        self._handles: OrderedDict[str, JobHandle] = OrderedDict()
        self._lock = asyncio.Lock()

    @property
    def database(self) -> Database:
        return self._db

    @property
    def active_count(self) -> int:
        return sum(1 for h in self._handles.values() if not h.controller.is_terminal)

    # ============================================================
    # Commands
    # ============================================================

    async def create_and_start(
        self,
        root_url: str,
        depth: int,
        options: CrawlOptions | dict[str, Any] | None = None,
    ) -> str:
        """Create a job and launch its task.

        URL and depth are validated by the command surface; only the
        options are validated here.

        Raises:
            InvalidParamsError: If options contain unknown keys or bad values.
            AdmissionLimitError: If the active-job limit is reached.

        Returns:
            The new job id.
        """
        if not isinstance(options, CrawlOptions):
            try:
                options = CrawlOptions.from_overrides(options)
            except ValidationError as e:
                raise InvalidParamsError(
                    "Invalid crawl options",
                    param_name="options",
                    received=e.errors(include_url=False),
                ) from e

        async with self._lock:
            if self.max_active_jobs and self.active_count >= self.max_active_jobs:
                raise AdmissionLimitError(self.max_active_jobs)

            job = CrawlJob(root_url=root_url, max_depth=depth, options=options)
            frontier = FrontierScheduler(depth)
            controller = LifecycleController(job, frontier, self._db, self._broadcaster)
            pipeline = PipelineCoordinator(
                job,
                frontier,
                self._db,
                self._broadcaster,
                recognition_client=self._recognition,
                advisory_client=self._advisory,
            )
            runner = CrawlJobRunner(
                controller,
                pipeline,
                self._db,
                self._broadcaster,
                self._capture_factory,
                advisory_client=self._advisory,
            )
            handle = JobHandle(job, frontier, controller, runner)

            await self._db.create_job(job.snapshot())
            self._handles[job.job_id] = handle
            handle.task = asyncio.create_task(runner.run(), name=f"crawl-{job.job_id}")
            self._evict_finished()

        logger.info("Crawl job created", job_id=job.job_id, url=root_url, max_depth=depth)
        self._broadcaster.status_update(job.job_id, job.status.value, 0)
        return job.job_id

    async def command(self, job_id: str, command: JobCommand | str) -> bool:
        """Forward pause/resume/stop to the job's controller.

        Returns:
            Whether the command applied (stop on an already stopped job is True).

        Raises:
            JobNotFoundError: If the job is unknown or has been evicted.
        """
        command = JobCommand(command)
        handle = self._handles.get(job_id)
        if handle is None:
            raise JobNotFoundError(job_id)

        if command == JobCommand.PAUSE:
            success = await handle.controller.pause()
        elif command == JobCommand.RESUME:
            success = await handle.controller.resume()
        else:
            success = await handle.controller.stop()

        logger.info(
            "Job command",
            job_id=job_id,
            command=command.value,
            success=success,
            status=handle.job.status.value,
        )
        return success

    async def pause(self, job_id: str) -> bool:
        return await self.command(job_id, JobCommand.PAUSE)

    async def resume(self, job_id: str) -> bool:
        return await self.command(job_id, JobCommand.RESUME)

    async def stop(self, job_id: str) -> bool:
        return await self.command(job_id, JobCommand.STOP)

    # ============================================================
    # Projections
    # ============================================================

    async def status(self, job_id: str) -> JobSnapshot:
        """Current snapshot of a job (live if held, stored otherwise)."""
        handle = self._handles.get(job_id)
        if handle is not None:
            return handle.snapshot()
        snapshot = await self._db.find_job_by_id(job_id)
        if snapshot is None:
            raise JobNotFoundError(job_id)
        return snapshot

    async def logs(self, job_id: str, limit: int = 100, offset: int = 0) -> list[dict[str, Any]]:
        """Activity log of a job, newest first."""
        await self._ensure_known(job_id)
        return await self._db.get_job_logs(job_id, limit=limit, offset=offset)

    async def latest_screenshot(self, job_id: str) -> Artifact:
        """Most recent artifact of a job."""
        await self._ensure_known(job_id)
        handle = self._handles.get(job_id)
        if handle is not None and handle.job.artifacts:
            return handle.job.artifacts[-1]
        artifact = await self._db.get_latest_artifact(job_id)
        if artifact is None:
            raise ArtifactNotFoundError(job_id)
        return artifact

    async def screenshot(self, job_id: str, artifact_id: str | None = None) -> bytes:
        """Image bytes of an artifact (the latest one if no id is given)."""
        if artifact_id is None:
            artifact = await self.latest_screenshot(job_id)
        else:
            await self._ensure_known(job_id)
            artifact = await self._db.get_artifact(job_id, artifact_id)
            if artifact is None:
                raise ArtifactNotFoundError(job_id, artifact_id)

        path = Path(artifact.screenshot_ref)
        try:
            return await asyncio.to_thread(path.read_bytes)
        except OSError as e:
            logger.warning("Screenshot file unreadable", path=str(path), error=str(e))
            raise ArtifactNotFoundError(job_id, artifact.id) from e

    async def errors(self, job_id: str) -> list[CrawlError]:
        """Errors recorded for a job, oldest first."""
        await self._ensure_known(job_id)
        return await self._db.get_job_errors(job_id)

    async def recognitions(
        self, job_id: str, limit: int = 50, offset: int = 0
    ) -> list[dict[str, Any]]:
        """OCR results of a job, newest first."""
        await self._ensure_known(job_id)
        return await self._db.list_recognitions(job_id, limit=limit, offset=offset)

    async def recognition(self, job_id: str, recognition_id: str) -> dict[str, Any]:
        """One OCR result of a job, with its text and keywords."""
        await self._ensure_known(job_id)
        record = await self._db.get_recognition(job_id, recognition_id)
        if record is None:
            raise RecognitionNotFoundError(job_id, recognition_id)
        return record

    async def list_jobs(self, active_only: bool = False, limit: int = 50) -> list[JobSnapshot]:
        """Jobs newest first, live handles overriding stored snapshots."""
        snapshots = {s.job_id: s for s in await self._db.list_jobs(active_only, limit)}
        for job_id, handle in self._handles.items():
            if active_only and handle.controller.is_terminal:
                snapshots.pop(job_id, None)
                continue
            snapshots[job_id] = handle.snapshot()
        ordered = sorted(snapshots.values(), key=lambda s: s.created_at or "", reverse=True)
        return ordered[:limit]

    async def top_keywords(self, limit: int = 20) -> list[dict[str, Any]]:
        """Keywords aggregated across all jobs, most frequent first."""
        return await self._db.top_keywords(limit)

    async def wait(self, job_id: str) -> JobStatus:
        """Wait for a job's task to finish."""
        handle = self._handles.get(job_id)
        if handle is None:
            raise JobNotFoundError(job_id)
        if handle.task is not None:
            await asyncio.shield(handle.task)
        return handle.job.status

    # ============================================================
    # Shutdown
    # ============================================================

    async def shutdown(self) -> None:
        """Stop every live job, wait for their tasks and release all resources."""
        handles = list(self._handles.values())
        for handle in handles:
            if not handle.controller.is_terminal:
                await handle.controller.stop()

        tasks = [h.task for h in handles if h.task is not None and not h.task.done()]
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

        if self._advisory is not None:
            await self._advisory.close()
        await get_lifecycle_manager().cleanup_all()
        logger.info("Job registry shut down", jobs=len(handles))

    # ============================================================
    # Internals
    # ============================================================

    async def _ensure_known(self, job_id: str) -> None:
        if job_id in self._handles:
            return
        if await self._db.find_job_by_id(job_id) is None:
            raise JobNotFoundError(job_id)

    def _evict_finished(self) -> None:
        """Drop the oldest finished handles beyond the retention limit."""
        finished = [
            job_id
            for job_id, h in self._handles.items()
            if h.controller.is_terminal and h.task is not None and h.task.done()
        ]
        excess = len(finished) - self.retain_finished
        for job_id in finished[: max(0, excess)]:
            del self._handles[job_id]
            logger.debug("Evicted finished job handle", job_id=job_id)
