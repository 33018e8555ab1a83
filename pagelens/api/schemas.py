"""
Pydantic schemas for the pagelens HTTP API.
"""

from typing import Any

from pydantic import AnyHttpUrl, BaseModel, Field, field_validator

# =============================================================================
# Health Check
# =============================================================================


class HealthResponse(BaseModel):
    """Health check response."""

    status: str = "ok"
    active_jobs: int = 0
    subscribers: int = 0
    browser_sessions: int = 0


# =============================================================================
# Commands
# =============================================================================


class StartCrawlRequest(BaseModel):
    """Start a crawl job."""

    url: AnyHttpUrl = Field(..., description="Absolute http(s) URL to start from")
    depth: int = Field(default=2, ge=1, le=10, strict=True)
    options: dict[str, Any] = Field(default_factory=dict)

    @field_validator("url")
    @classmethod
    def _require_host(cls, value: AnyHttpUrl) -> AnyHttpUrl:
        if not value.host:
            raise ValueError("URL must include a host")
        return value


class StartCrawlResponse(BaseModel):
    ok: bool = True
    job_id: str
    status: str


class CommandResponse(BaseModel):
    success: bool


# =============================================================================
# Queries
# =============================================================================


class JobStatusResponse(BaseModel):
    """Status projection of a job."""

    job_id: str
    url: str
    status: str
    max_depth: int
    pages_processed: int
    screenshot_count: int
    error_count: int
    visited_count: int
    started_at: str | None = None
    duration: float | None = None
    completion_percentage: int = 0
    error_message: str | None = None


class LogEntry(BaseModel):
    level: str
    message: str
    timestamp: str
    type: str
    url: str | None = None


class LogsResponse(BaseModel):
    job_id: str
    logs: list[LogEntry] = Field(default_factory=list)
    limit: int
    offset: int


class JobListResponse(BaseModel):
    jobs: list[JobStatusResponse] = Field(default_factory=list)


class KeywordStat(BaseModel):
    word: str
    frequency: int
    total_score: float
    average_score: float
    job_count: int
    first_seen_at: str
    last_seen_at: str


class KeywordsResponse(BaseModel):
    keywords: list[KeywordStat] = Field(default_factory=list)


class CrawlErrorEntry(BaseModel):
    url: str
    stage: str
    message: str
    fatal: bool
    timestamp: str


class ErrorsResponse(BaseModel):
    job_id: str
    errors: list[CrawlErrorEntry] = Field(default_factory=list)


# =============================================================================
# OCR results
# =============================================================================


class RecognitionRecord(BaseModel):
    """Stored OCR output for one screenshot."""

    id: str
    job_id: str
    url: str
    screenshot_ref: str
    text: str
    confidence: int
    language: str | None = None
    error: str | None = None
    keywords: list[dict[str, Any]] = Field(default_factory=list)
    created_at: str


class RecognitionsResponse(BaseModel):
    job_id: str
    results: list[RecognitionRecord] = Field(default_factory=list)
    limit: int
    offset: int
