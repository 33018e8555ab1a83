"""
Crawl job state machine.

    pending -> running <-> paused
    pending | running | paused -> stopped
    running -> completed
    pending | running | paused -> failed

stopped, completed and failed are terminal. Pause and stop are cooperative:
the job loop observes them between URLs through `wait_until_runnable()`.
Every transition persists a snapshot and emits a status event. The capture
session is released exactly once, whichever terminal transition wins.
"""

import asyncio
from typing import Any

from pagelens.crawler.capture import CaptureClient
from pagelens.crawler.frontier import FrontierScheduler
from pagelens.events.broadcaster import EventBroadcaster
from pagelens.scheduler.models import (
    TERMINAL_STATUSES,
    CrawlJob,
    JobStatus,
    elapsed_seconds,
    utc_now,
)
from pagelens.storage.database import Database
from pagelens.utils.logging import get_logger

logger = get_logger(__name__)

_ALLOWED: dict[JobStatus, frozenset[JobStatus]] = {
    JobStatus.RUNNING: frozenset({JobStatus.PENDING, JobStatus.PAUSED}),
    JobStatus.PAUSED: frozenset({JobStatus.RUNNING}),
    JobStatus.STOPPED: frozenset({JobStatus.PENDING, JobStatus.RUNNING, JobStatus.PAUSED}),
    JobStatus.COMPLETED: frozenset({JobStatus.RUNNING}),
    JobStatus.FAILED: frozenset({JobStatus.PENDING, JobStatus.RUNNING, JobStatus.PAUSED}),
}

# Timestamp field stamped when entering a state
_TIMESTAMP_FIELDS = {
    JobStatus.PAUSED: "paused_at",
    JobStatus.STOPPED: "stopped_at",
    JobStatus.COMPLETED: "completed_at",
    JobStatus.FAILED: "failed_at",
}


class LifecycleController:
    """Owns the status of one CrawlJob and mediates every transition."""

    def __init__(
        self,
        job: CrawlJob,
        frontier: FrontierScheduler,
        database: Database,
        broadcaster: EventBroadcaster,
    ):
        self.job = job
        self.frontier = frontier
        self._db = database
        self._broadcaster = broadcaster
        self._lock = asyncio.Lock()
        self._runnable = asyncio.Event()
        self._session: CaptureClient | None = None
        self._released = False

    @property
    def status(self) -> JobStatus:
        return self.job.status

    @property
    def is_terminal(self) -> bool:
        return self.job.status in TERMINAL_STATUSES

    @property
    def released(self) -> bool:
        return self._released

    # ============================================================
    # Commands
    # ============================================================

    async def start(self) -> bool:
        """pending -> running; seeds the frontier with the root URL."""
        async with self._lock:
            if not await self._transition(JobStatus.RUNNING, expected=JobStatus.PENDING):
                return False
            self.frontier.seed(self.job.root_url)
        return True

    async def pause(self) -> bool:
        """running -> paused. Takes effect once the in-flight URL finishes."""
        async with self._lock:
            return await self._transition(JobStatus.PAUSED)

    async def resume(self) -> bool:
        """paused -> running, reusing the existing frontier and visited set."""
        async with self._lock:
            return await self._transition(JobStatus.RUNNING, expected=JobStatus.PAUSED)

    async def stop(self) -> bool:
        """Any non-terminal state -> stopped.

        Returns:
            True once the job is stopped (including repeated calls),
            False if it already completed or failed.
        """
        async with self._lock:
            if self.job.status == JobStatus.STOPPED:
                return True
            if not await self._transition(JobStatus.STOPPED):
                return False
            idle = self.frontier.in_flight == 0
        if idle:
            await self.release()
        return True

    async def complete(self) -> bool:
        """running -> completed (frontier exhausted)."""
        async with self._lock:
            return await self._transition(JobStatus.COMPLETED)

    async def fail(self, reason: str) -> bool:
        """Any non-terminal state -> failed."""
        async with self._lock:
            return await self._transition(JobStatus.FAILED, error_message=reason)

    async def wait_until_runnable(self) -> bool:
        """Block while paused.

        Returns:
            True when the job is running, False once it is terminal.
        """
        while True:
            if self.is_terminal:
                return False
            if self.job.status == JobStatus.RUNNING:
                return True
            await self._runnable.wait()

    # ============================================================
    # Owned resources
    # ============================================================

    async def attach_session(self, session: CaptureClient) -> None:
        """Hand the job's capture session to the controller.

        A session attached after release is closed immediately.
        """
        async with self._lock:
            if not self._released:
                self._session = session
                return
        await self._close_session(session)

    async def release(self) -> bool:
        """Release owned resources. Only the first call does anything.

        Returns:
            True if this call performed the release.
        """
        async with self._lock:
            if self._released:
                return False
            self._released = True
            session, self._session = self._session, None

        if session is not None:
            await self._close_session(session)
        logger.debug("Job resources released", job_id=self.job.job_id)
        return True

    async def _close_session(self, session: CaptureClient) -> None:
        try:
            await session.close()
        except Exception as e:
            logger.warning("Capture session close failed", job_id=self.job.job_id, error=str(e))

    # ============================================================
    # Internals
    # ============================================================

    async def _transition(
        self,
        target: JobStatus,
        expected: JobStatus | None = None,
        error_message: str | None = None,
    ) -> bool:
        """Apply a transition. Caller holds the lock."""
        current = self.job.status
        if expected is not None and current != expected:
            return False
        if current not in _ALLOWED[target]:
            logger.debug(
                "Transition rejected",
                job_id=self.job.job_id,
                current=current.value,
                target=target.value,
            )
            return False

        now = utc_now()
        job = self.job
        job.status = target
        if target == JobStatus.RUNNING:
            if current == JobStatus.PENDING:
                job.started_at = now
            else:
                job.resumed_at = now
        else:
            setattr(job, _TIMESTAMP_FIELDS[target], now)
        if target in TERMINAL_STATUSES:
            job.duration_seconds = elapsed_seconds(job.started_at, now)
        if error_message is not None:
            job.error_message = error_message

        if target == JobStatus.PAUSED:
            self._runnable.clear()
        else:
            self._runnable.set()

        logger.info(
            "Job status changed",
            job_id=job.job_id,
            previous=current.value,
            status=target.value,
        )
        await self._persist()
        self._emit(error_message)
        return True

    async def _persist(self) -> None:
        try:
            await self._db.save_snapshot(self.job.snapshot(self.frontier.visited_count))
        except Exception as e:
            logger.error("Failed to persist job snapshot", job_id=self.job.job_id, error=str(e))

    def _emit(self, error_message: str | None) -> None:
        extra: dict[str, Any] = {
            "screenshot_count": self.job.screenshot_count,
            "error_count": self.job.error_count,
        }
        if error_message is not None:
            extra["error_message"] = error_message
        self._broadcaster.status_update(
            self.job.job_id,
            self.job.status.value,
            self.job.pages_processed,
            **extra,
        )
        self._broadcaster.log_entry(
            "error" if self.job.status == JobStatus.FAILED else "info",
            f"Crawl job {self.job.status.value}",
            {"job_id": self.job.job_id, "status": self.job.status.value},
        )
