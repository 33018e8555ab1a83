"""
Job task: drives one crawl job from start to a terminal state.

Each job runs as one asyncio task; within it URLs are processed strictly
one after another. Any exception that escapes the loop (as opposed to a
collaborator failure already converted by the pipeline) fails the job.
"""

import asyncio
from typing import Any

from pagelens.advisory.client import AdvisoryClient
from pagelens.crawler.capture import CaptureClient, CaptureClientFactory
from pagelens.crawler.frontier import FrontierScheduler
from pagelens.crawler.links import resolve_same_origin
from pagelens.crawler.pipeline import PipelineCoordinator
from pagelens.events.broadcaster import EventBroadcaster
from pagelens.scheduler.lifecycle import LifecycleController
from pagelens.scheduler.models import CrawlJob, JobStatus
from pagelens.storage.database import Database
from pagelens.utils.logging import CausalTrace, LogContext, get_logger

logger = get_logger(__name__)


class CrawlJobRunner:
    """Frontier loop for one job."""

    def __init__(
        self,
        controller: LifecycleController,
        pipeline: PipelineCoordinator,
        database: Database,
        broadcaster: EventBroadcaster,
        capture_factory: CaptureClientFactory,
        advisory_client: AdvisoryClient | None = None,
    ):
        self.controller = controller
        self.pipeline = pipeline
        self._db = database
        self._broadcaster = broadcaster
        self._capture_factory = capture_factory
        self._advisory = advisory_client

    @property
    def job(self) -> CrawlJob:
        return self.controller.job

    @property
    def frontier(self) -> FrontierScheduler:
        return self.controller.frontier

    async def run(self) -> JobStatus:
        """Run the job until it reaches a terminal state.

        Returns:
            Final job status.
        """
        with LogContext(job_id=self.job.job_id):
            try:
                await self._run()
            except Exception as e:
                logger.exception("Crawl job failed", error=str(e))
                await self.controller.fail(str(e) or type(e).__name__)
            finally:
                await self.controller.release()
            await self._reflect()
        return self.job.status

    async def _run(self) -> None:
        job = self.job
        priority_urls = await self._plan()
        if self.controller.is_terminal:
            return

        session = await self._capture_factory(job.job_id, job.options)
        await self.controller.attach_session(session)

        if not await self.controller.start():
            return
        logger.info("Crawl job started", url=job.root_url, max_depth=job.max_depth)

        await self._loop(session, priority_urls)

    async def _loop(self, session: CaptureClient, planned: list[str]) -> None:
        while await self.controller.wait_until_runnable():
            entry = self.frontier.next()
            if entry is None:
                if self.frontier.is_exhausted():
                    await self.controller.complete()
                    logger.info(
                        "Crawl job completed",
                        pages_processed=self.job.pages_processed,
                        visited=self.frontier.visited_count,
                    )
                    return
                # Another entry is still in flight
                await asyncio.sleep(0)
                continue

            self.frontier.begin()
            try:
                await self._db.append_visited_url(self.job.job_id, entry.url, entry.depth)
                with CausalTrace(entry.url, entry.depth):
                    await self.pipeline.process(entry.url, entry.depth, session)
            finally:
                self.frontier.done()

            # Planned URLs go ahead of the root's links once the root is done
            if planned:
                self.frontier.enqueue_priority(planned, 1)
                planned = []

            if self.controller.is_terminal:
                return
            if len(self.frontier) and self.job.options.rate_limit_ms:
                await asyncio.sleep(self.job.options.rate_limit_ms / 1000)

    async def _plan(self) -> list[str]:
        """Ask for a crawl strategy and apply it to the job options.

        Returns:
            Same-origin URLs to visit first.
        """
        job = self.job
        if not job.options.advisory_enabled or self._advisory is None:
            return []
        try:
            plan = await self._advisory.plan_strategy(job.root_url)
        except Exception as e:
            logger.warning("Crawl planning failed", error=str(e))
            return []
        if not plan.success:
            logger.debug("Using configured crawl strategy", reason=plan.reason)
            return []

        updates: dict[str, Any] = {}
        if plan.rate_limit_ms is not None:
            updates["rate_limit_ms"] = plan.rate_limit_ms
        if plan.max_scrolls is not None:
            updates["max_scrolls"] = plan.max_scrolls
        if plan.user_agent:
            updates["user_agent"] = plan.user_agent
        if updates:
            job.options = job.options.model_copy(update=updates)
            await self._db.update_job(job.job_id, {"options_json": job.options.model_dump_json()})
            logger.info("Applied crawl strategy", **updates)

        priority_urls = resolve_same_origin(plan.priority_urls, job.root_url)
        self._broadcaster.log_entry(
            "info",
            "Crawl strategy planned",
            {"job_id": job.job_id, "site_type": plan.site_type, "priority_urls": priority_urls},
        )
        return priority_urls

    async def _reflect(self) -> None:
        """Best-effort review of the finished crawl, emitted as a log event."""
        job = self.job
        if not job.options.advisory_enabled or self._advisory is None:
            return
        try:
            reflection = await self._advisory.reflect(
                {
                    "job_id": job.job_id,
                    "status": job.status.value,
                    "pages_processed": job.pages_processed,
                    "visited_urls": self.frontier.visited_urls,
                    "errors": [e.to_dict() for e in job.errors],
                }
            )
        except Exception as e:
            logger.warning("Crawl reflection failed", job_id=job.job_id, error=str(e))
            return
        if not reflection.success:
            return
        self._broadcaster.log_entry(
            "info",
            "Crawl reflection",
            {
                "job_id": job.job_id,
                "progress_evaluation": reflection.progress_evaluation,
                "suggestions": reflection.suggestions,
                "potential_issues": reflection.potential_issues,
            },
        )
