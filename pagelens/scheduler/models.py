"""
Data model for crawl jobs.

CrawlJob is the live, mutable object owned by a job's registry entry.
JobSnapshot is the plain record written to and read back from the durable
store; derived values are computed from it, never stored.
"""

import math
import uuid
from dataclasses import asdict, dataclass, field
from datetime import UTC, datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from pagelens.utils.config import get_settings


def utc_now() -> str:
    """Current UTC time as an ISO 8601 string."""
    return datetime.now(UTC).isoformat(timespec="microseconds")


class JobStatus(str, Enum):
    """Crawl job lifecycle states."""

    PENDING = "pending"
    RUNNING = "running"
    PAUSED = "paused"
    COMPLETED = "completed"
    FAILED = "failed"
    STOPPED = "stopped"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATUSES


TERMINAL_STATUSES = frozenset({JobStatus.COMPLETED, JobStatus.FAILED, JobStatus.STOPPED})
ACTIVE_STATUSES = frozenset({JobStatus.PENDING, JobStatus.RUNNING, JobStatus.PAUSED})


# ============================================================
# Options
# ============================================================


class Viewport(BaseModel):
    """Browser viewport size."""

    model_config = ConfigDict(extra="forbid")

    width: int = Field(default=1280, ge=320)
    height: int = Field(default=800, ge=240)


class CrawlOptions(BaseModel):
    """Per-job crawl options, validated once at job creation."""

    model_config = ConfigDict(extra="forbid")

    rate_limit_ms: int = Field(default=2000, ge=0)
    max_scrolls: int = Field(default=10, ge=0)
    scroll_timeout_ms: int = Field(default=30000, ge=0)
    scroll_wait_ms: int = Field(default=1000, ge=0)
    navigation_timeout_ms: int = Field(default=30000, ge=1000)
    handle_infinite_scroll: bool = True
    ocr_enabled: bool = True
    ocr_language: str = "eng"
    advisory_enabled: bool = True
    user_agent: str | None = None
    viewport: Viewport = Field(default_factory=Viewport)

    @classmethod
    def from_overrides(cls, overrides: dict[str, Any] | None = None) -> "CrawlOptions":
        """Build options from the `crawler`/`browser`/`ocr` settings plus caller overrides.

        Raises:
            pydantic.ValidationError: If an override is unknown or out of range.
        """
        settings = get_settings()
        crawler = settings.crawler
        base: dict[str, Any] = {
            "rate_limit_ms": crawler.rate_limit_ms,
            "max_scrolls": crawler.max_scrolls,
            "scroll_timeout_ms": crawler.scroll_timeout_ms,
            "scroll_wait_ms": crawler.scroll_wait_ms,
            "navigation_timeout_ms": crawler.navigation_timeout_ms,
            "handle_infinite_scroll": crawler.handle_infinite_scroll,
            "ocr_enabled": crawler.ocr_enabled,
            "ocr_language": settings.ocr.language,
            "advisory_enabled": crawler.advisory_enabled,
            "user_agent": settings.browser.user_agent,
            "viewport": {
                "width": settings.browser.viewport_width,
                "height": settings.browser.viewport_height,
            },
        }
        base.update(overrides or {})
        return cls.model_validate(base)


# ============================================================
# Records
# ============================================================


@dataclass
class CrawlError:
    """An error recorded against a job."""

    url: str
    message: str
    stage: str
    fatal: bool = True
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Artifact:
    """Persisted capture/recognition outcome of one URL."""

    url: str
    depth: int
    screenshot_ref: str
    recognition_ref: str | None = None
    title: str | None = None
    id: str = field(default_factory=lambda: str(uuid.uuid4()))
    timestamp: str = field(default_factory=utc_now)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class JobSnapshot:
    """Serialized state of a crawl job as held by the durable store."""

    job_id: str
    url: str
    max_depth: int
    status: JobStatus
    options: dict[str, Any] = field(default_factory=dict)
    pages_processed: int = 0
    screenshot_count: int = 0
    error_count: int = 0
    visited_count: int = 0
    created_at: str | None = None
    started_at: str | None = None
    paused_at: str | None = None
    resumed_at: str | None = None
    completed_at: str | None = None
    failed_at: str | None = None
    stopped_at: str | None = None
    duration_seconds: float | None = None
    error_message: str | None = None

    def to_status_dict(self) -> dict[str, Any]:
        """Status projection exposed by the command surface."""
        return {
            "job_id": self.job_id,
            "url": self.url,
            "status": self.status.value,
            "max_depth": self.max_depth,
            "pages_processed": self.pages_processed,
            "screenshot_count": self.screenshot_count,
            "error_count": self.error_count,
            "visited_count": self.visited_count,
            "started_at": self.started_at,
            "duration": self.duration_seconds,
            "completion_percentage": completion_percentage(self),
            "error_message": self.error_message,
        }


def completion_percentage(snapshot: JobSnapshot) -> int:
    """Rough progress estimate for dashboards.

    The expected page count of a crawl is taken to be 10 ** max_depth.
    """
    if snapshot.status == JobStatus.COMPLETED:
        return 100
    if snapshot.status == JobStatus.PENDING:
        return 0
    estimated_total = 10 ** max(snapshot.max_depth, 0)
    return min(100, math.floor(snapshot.pages_processed / estimated_total * 100))


def elapsed_seconds(started_at: str | None, ended_at: str | None = None) -> float | None:
    """Seconds between two ISO timestamps (end defaults to now)."""
    if started_at is None:
        return None
    start = datetime.fromisoformat(started_at)
    end = datetime.fromisoformat(ended_at) if ended_at else datetime.now(UTC)
    return round((end - start).total_seconds(), 3)


# ============================================================
# Live job
# ============================================================


@dataclass
class CrawlJob:
    """Live state of one crawl job.

    Only the LifecycleController changes `status` and the timestamp fields;
    the runner and pipeline update counters, errors and artifacts.
    """

    root_url: str
    max_depth: int
    options: CrawlOptions
    job_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    status: JobStatus = JobStatus.PENDING
    pages_processed: int = 0
    screenshot_count: int = 0
    error_count: int = 0
    errors: list[CrawlError] = field(default_factory=list)
    artifacts: list[Artifact] = field(default_factory=list)
    created_at: str = field(default_factory=utc_now)
    started_at: str | None = None
    paused_at: str | None = None
    resumed_at: str | None = None
    completed_at: str | None = None
    failed_at: str | None = None
    stopped_at: str | None = None
    duration_seconds: float | None = None
    error_message: str | None = None

    def snapshot(self, visited_count: int = 0) -> JobSnapshot:
        """Plain record of the current state."""
        return JobSnapshot(
            job_id=self.job_id,
            url=self.root_url,
            max_depth=self.max_depth,
            status=self.status,
            options=self.options.model_dump(),
            pages_processed=self.pages_processed,
            screenshot_count=self.screenshot_count,
            error_count=self.error_count,
            visited_count=visited_count,
            created_at=self.created_at,
            started_at=self.started_at,
            paused_at=self.paused_at,
            resumed_at=self.resumed_at,
            completed_at=self.completed_at,
            failed_at=self.failed_at,
            stopped_at=self.stopped_at,
            duration_seconds=self.duration_seconds,
            error_message=self.error_message,
        )
