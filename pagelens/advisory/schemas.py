"""
Pydantic schemas for advisory model replies.

Field names follow the camelCase keys requested in the prompts. Validation
is lenient about missing fields (defaults apply) and numeric strings, but a
field of the wrong shape (e.g. a string where a list is expected) rejects
the whole reply.
"""

from pydantic import BaseModel, ConfigDict, Field, field_validator


class _Reply(BaseModel):
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    @staticmethod
    def _non_blank(values: list[str]) -> list[str]:
        return [v.strip() for v in values if v.strip()]


class CrawlParametersReply(_Reply):
    user_agent: str | None = Field(default=None, alias="userAgent")
    rate_limit: int | None = Field(default=None, alias="rateLimit", ge=0)
    max_scrolls: int | None = Field(default=None, alias="maxScrolls", ge=0)

    @field_validator("user_agent")
    @classmethod
    def _empty_user_agent(cls, v: str | None) -> str | None:
        if v is None or not v.strip():
            return None
        return v.strip()


class StrategyReply(_Reply):
    """Reply to the crawl planning prompt."""

    site_type: str | None = Field(default=None, alias="siteType")
    recommended_depth: int | None = Field(default=None, alias="recommendedDepth", ge=0)
    priority_paths: list[str] = Field(default_factory=list, alias="priorityPaths")
    crawl_parameters: CrawlParametersReply = Field(
        default_factory=CrawlParametersReply, alias="crawlParameters"
    )

    @field_validator("priority_paths")
    @classmethod
    def _strip_paths(cls, v: list[str]) -> list[str]:
        return cls._non_blank(v)


class AnalysisReply(_Reply):
    """Reply to the page analysis prompt."""

    relevance_score: int | None = Field(default=None, alias="relevanceScore", ge=0)
    focus_areas: list[str] = Field(default_factory=list, alias="focusAreas")
    priority_urls: list[str] = Field(default_factory=list, alias="priorityUrls")

    @field_validator("relevance_score")
    @classmethod
    def _cap_score(cls, v: int | None) -> int | None:
        return min(100, v) if v is not None else None

    @field_validator("focus_areas", "priority_urls")
    @classmethod
    def _strip_items(cls, v: list[str]) -> list[str]:
        return cls._non_blank(v)


class ReflectionReply(_Reply):
    """Reply to the crawl reflection prompt."""

    progress_evaluation: str = Field(default="", alias="progressEvaluation")
    strategy_suggestions: list[str] = Field(default_factory=list, alias="strategySuggestions")
    potential_issues: list[str] = Field(default_factory=list, alias="potentialIssues")
    next_steps: list[str] = Field(default_factory=list, alias="nextSteps")

    @field_validator("strategy_suggestions", "potential_issues", "next_steps")
    @classmethod
    def _strip_items(cls, v: list[str]) -> list[str]:
        return cls._non_blank(v)
