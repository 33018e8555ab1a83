"""
Per-URL processing pipeline.

Stages, in order:

    navigate      fatal for the URL
    scroll        best-effort
    screenshot    fatal for the URL
    recognize     best-effort (empty text, zero confidence on failure)
    keywords      best-effort, only when text was recognised
    links         best-effort, only when depth < max_depth
    analyze       best-effort advisory hint feeding priority URLs

Collaborator exceptions are caught where each collaborator is called and
turned into a StageOutcome; nothing a collaborator raises reaches the job
loop. Store and event-channel calls are not collaborator calls and
propagate.
"""

import time
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

from pagelens.advisory.client import AdvisoryClient
from pagelens.crawler.capture import CaptureClient
from pagelens.crawler.frontier import FrontierScheduler
from pagelens.crawler.links import resolve_same_origin
from pagelens.crawler.scroll import ScrollCompletionDetector
from pagelens.events.broadcaster import EventBroadcaster
from pagelens.ocr.keywords import Keyword, extract_keywords
from pagelens.ocr.recognition import RecognitionClient, RecognitionResult
from pagelens.scheduler.models import Artifact, CrawlError, CrawlJob, utc_now
from pagelens.storage.database import Database
from pagelens.utils.config import get_settings
from pagelens.utils.logging import get_logger

logger = get_logger(__name__)


class StageStatus(str, Enum):
    """Outcome of one pipeline stage."""

    SUCCESS = "success"
    DEGRADED = "degraded"
    ERROR = "error"
    SKIPPED = "skipped"


@dataclass
class StageOutcome:
    stage: str
    status: StageStatus
    error: str | None = None
    duration_ms: float = 0.0


@dataclass
class PipelineResult:
    """Transient result of processing one URL."""

    url: str
    depth: int
    screenshot_ref: str | None = None
    recognition: RecognitionResult | None = None
    keywords: list[Keyword] = field(default_factory=list)
    title: str | None = None
    links: list[str] = field(default_factory=list)
    priority_urls: list[str] = field(default_factory=list)
    artifact_id: str | None = None
    outcomes: list[StageOutcome] = field(default_factory=list)
    timestamp: str = field(default_factory=utc_now)

    @property
    def abandoned(self) -> bool:
        """True when a fatal stage failed and the URL produced no artifact."""
        return self.screenshot_ref is None

    def outcome(self, stage: str) -> StageOutcome | None:
        for outcome in self.outcomes:
            if outcome.stage == stage:
                return outcome
        return None

    def to_dict(self) -> dict[str, Any]:
        return {
            "url": self.url,
            "depth": self.depth,
            "screenshot_ref": self.screenshot_ref,
            "recognition": self.recognition.to_dict() if self.recognition else None,
            "title": self.title,
            "links": len(self.links),
            "priority_urls": self.priority_urls,
            "artifact_id": self.artifact_id,
            "stages": {o.stage: o.status.value for o in self.outcomes},
            "timestamp": self.timestamp,
        }


class PipelineCoordinator:
    """Runs the capture/recognition stages for the URLs of one job."""

    def __init__(
        self,
        job: CrawlJob,
        frontier: FrontierScheduler,
        database: Database,
        broadcaster: EventBroadcaster,
        recognition_client: RecognitionClient | None = None,
        advisory_client: AdvisoryClient | None = None,
    ):
        self._job = job
        self._frontier = frontier
        self._db = database
        self._broadcaster = broadcaster
        self._recognition = recognition_client
        self._advisory = advisory_client
        self._keyword_limit = get_settings().ocr.keyword_limit

    @property
    def _options(self):
        # Options can be replaced by a strategy plan before the job starts
        return self._job.options

    async def process(self, url: str, depth: int, session: CaptureClient) -> PipelineResult:
        """Run every stage for one URL.

        Args:
            url: URL to process.
            depth: Depth of the URL in the crawl.
            session: The job's capture session.

        Returns:
            PipelineResult folding the outcome of every stage.
        """
        result = PipelineResult(url=url, depth=depth)
        self._log("info", f"Processing {url}", url=url, depth=depth)

        # navigate (fatal)
        outcome = await self._run_stage(
            "navigate", session.navigate(url, self._options.navigation_timeout_ms)
        )
        result.outcomes.append(outcome)
        if outcome.status == StageStatus.ERROR:
            await self._record_error(url, "navigate", outcome.error, fatal=True)
            return result

        # scroll (best-effort)
        if self._options.handle_infinite_scroll:
            detector = ScrollCompletionDetector(
                max_scrolls=self._options.max_scrolls,
                timeout_ms=self._options.scroll_timeout_ms,
                wait_ms=self._options.scroll_wait_ms,
            )
            outcome = await self._run_stage("scroll", detector.run(session))
            if outcome.status == StageStatus.ERROR:
                outcome.status = StageStatus.DEGRADED
                await self._record_error(url, "scroll", outcome.error, fatal=False)
        else:
            outcome = StageOutcome("scroll", StageStatus.SKIPPED)
        result.outcomes.append(outcome)

        try:
            result.title = await session.title()
        except Exception as e:
            logger.debug("Title unavailable", url=url, error=str(e))

        # screenshot (fatal)
        start = time.perf_counter()
        try:
            result.screenshot_ref = await session.screenshot()
            result.outcomes.append(StageOutcome("screenshot", StageStatus.SUCCESS, duration_ms=_ms(start)))
        except Exception as e:
            result.outcomes.append(StageOutcome("screenshot", StageStatus.ERROR, str(e), _ms(start)))
            await self._record_error(url, "screenshot", str(e), fatal=True)
            return result

        self._job.screenshot_count += 1
        self._job.pages_processed += 1
        self._broadcaster.screenshot_update(
            self._job.job_id, url, result.screenshot_ref, title=result.title
        )

        # recognize (best-effort) + keywords
        recognition_ref = await self._recognize(result)

        artifact = Artifact(
            url=url,
            depth=depth,
            screenshot_ref=result.screenshot_ref,
            recognition_ref=recognition_ref,
            title=result.title,
        )
        self._job.artifacts.append(artifact)
        await self._db.append_artifact(self._job.job_id, artifact)
        result.artifact_id = artifact.id

        # links (best-effort)
        if depth < self._job.max_depth:
            start = time.perf_counter()
            try:
                result.links = resolve_same_origin(await session.extract_links(url), url)
                result.outcomes.append(StageOutcome("links", StageStatus.SUCCESS, duration_ms=_ms(start)))
            except Exception as e:
                result.outcomes.append(StageOutcome("links", StageStatus.DEGRADED, str(e), _ms(start)))
                await self._record_error(url, "links", str(e), fatal=False)
            added = self._frontier.enqueue_discovered(result.links, depth + 1)
            if added:
                self._log("info", f"Queued {len(added)} links from {url}", url=url, count=len(added))
        else:
            result.outcomes.append(StageOutcome("links", StageStatus.SKIPPED))

        # advisory page analysis (best-effort)
        await self._analyze(result)

        await self._db.update_job(
            self._job.job_id,
            {
                "pages_processed": self._job.pages_processed,
                "screenshot_count": self._job.screenshot_count,
                "error_count": self._job.error_count,
            },
        )
        self._broadcaster.status_update(
            self._job.job_id,
            self._job.status.value,
            self._job.pages_processed,
            screenshot_count=self._job.screenshot_count,
            error_count=self._job.error_count,
        )
        return result

    # ============================================================
    # Stages
    # ============================================================

    async def _run_stage(self, stage: str, awaitable) -> StageOutcome:
        start = time.perf_counter()
        try:
            await awaitable
        except Exception as e:
            logger.warning("Stage failed", stage=stage, error=str(e))
            return StageOutcome(stage, StageStatus.ERROR, str(e) or type(e).__name__, _ms(start))
        return StageOutcome(stage, StageStatus.SUCCESS, duration_ms=_ms(start))

    async def _recognize(self, result: PipelineResult) -> str | None:
        """Run OCR and the keyword hook; returns the stored recognition id."""
        if not self._options.ocr_enabled or self._recognition is None:
            result.outcomes.append(StageOutcome("recognize", StageStatus.SKIPPED))
            self._log("info", f"OCR skipped for {result.url}", url=result.url, type="ocr")
            return None

        language = self._options.ocr_language
        start = time.perf_counter()
        try:
            recognition = await self._recognition.recognize(result.screenshot_ref, language)
            status = StageStatus.SUCCESS if recognition.ok else StageStatus.DEGRADED
            result.outcomes.append(StageOutcome("recognize", status, recognition.error, _ms(start)))
        except Exception as e:
            error = str(e) or type(e).__name__
            recognition = RecognitionResult.failed(error, language=language)
            result.outcomes.append(StageOutcome("recognize", StageStatus.DEGRADED, error, _ms(start)))

        if recognition.error:
            await self._record_error(result.url, "recognize", recognition.error, fatal=False)
        result.recognition = recognition

        if recognition.text:
            try:
                result.keywords = extract_keywords(recognition.text, self._keyword_limit)
                result.outcomes.append(StageOutcome("keywords", StageStatus.SUCCESS))
            except Exception as e:
                result.outcomes.append(StageOutcome("keywords", StageStatus.DEGRADED, str(e)))
                logger.warning("Keyword extraction failed", url=result.url, error=str(e))

        recognition_id = await self._db.save_recognition(
            self._job.job_id,
            result.url,
            result.screenshot_ref,
            recognition,
            result.keywords,
        )
        if result.keywords:
            await self._db.record_keywords(self._job.job_id, result.keywords)

        if recognition.ok:
            self._log(
                "info",
                f"OCR completed for {result.url}",
                url=result.url,
                type="ocr",
                confidence=recognition.confidence,
                keywords=[k.word for k in result.keywords[:5]],
            )
        return recognition_id

    async def _analyze(self, result: PipelineResult) -> None:
        if not self._options.advisory_enabled or self._advisory is None:
            result.outcomes.append(StageOutcome("analyze", StageStatus.SKIPPED))
            return

        start = time.perf_counter()
        try:
            analysis = await self._advisory.analyze_page(
                {
                    "url": result.url,
                    "title": result.title,
                    "depth": result.depth,
                    "job_id": self._job.job_id,
                }
            )
        except Exception as e:
            result.outcomes.append(StageOutcome("analyze", StageStatus.DEGRADED, str(e), _ms(start)))
            logger.warning("Page analysis failed", url=result.url, error=str(e))
            return

        status = StageStatus.SUCCESS if analysis.success else StageStatus.DEGRADED
        result.outcomes.append(StageOutcome("analyze", status, analysis.reason, _ms(start)))

        candidates = resolve_same_origin(analysis.priority_urls, result.url)
        result.priority_urls = self._frontier.enqueue_priority(candidates, result.depth + 1)
        if result.priority_urls:
            self._log(
                "info",
                f"Prioritised {len(result.priority_urls)} URLs from advisory analysis",
                url=result.url,
                relevance=analysis.relevance_score,
            )

    # ============================================================
    # Helpers
    # ============================================================

    async def _record_error(self, url: str, stage: str, message: str | None, fatal: bool) -> None:
        error = CrawlError(url=url, message=message or "unknown error", stage=stage, fatal=fatal)
        self._job.errors.append(error)
        if fatal:
            self._job.error_count += 1
        await self._db.append_error(self._job.job_id, error)
        if fatal:
            await self._db.update_job(self._job.job_id, {"error_count": self._job.error_count})
        self._log(
            "error" if fatal else "warning",
            f"{stage} failed for {url}: {error.message}",
            url=url,
            stage=stage,
            fatal=fatal,
        )

    def _log(self, level: str, message: str, **data: Any) -> None:
        getattr(logger, level)(message, **data)
        self._broadcaster.log_entry(level, message, {"job_id": self._job.job_id, **data})


def _ms(start: float) -> float:
    return round((time.perf_counter() - start) * 1000, 1)
