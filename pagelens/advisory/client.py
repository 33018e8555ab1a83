"""
Advisory AI client (Gemini generateContent API).

Every call is best-effort: missing configuration, HTTP failures, timeouts
and malformed replies all degrade to a documented default result with
`success=False` and a `reason`. Nothing here raises into the crawl loop.
"""

import json
import re
from dataclasses import asdict, dataclass, field
from typing import Any, Protocol, TypeVar

import aiohttp
from pydantic import BaseModel, ValidationError

from pagelens.advisory.schemas import AnalysisReply, ReflectionReply, StrategyReply
from pagelens.utils.config import get_settings
from pagelens.utils.lifecycle import ResourceType, get_lifecycle_manager
from pagelens.utils.logging import get_logger

logger = get_logger(__name__)

DEFAULT_RELEVANCE_SCORE = 50

_CODE_BLOCK = re.compile(r"```(?:json)?\s*(\{.*?\})\s*```", re.DOTALL)
_OBJECT_SPAN = re.compile(r"\{.*\}", re.DOTALL)

ReplyT = TypeVar("ReplyT", bound=BaseModel)


class AdvisoryResponseError(Exception):
    """The advisory service returned no usable JSON object."""


# ============================================================
# Results
# ============================================================


@dataclass
class StrategyPlan:
    """Crawl plan for a root URL. None fields mean "keep the configured value"."""

    success: bool = False
    reason: str | None = None
    priority_urls: list[str] = field(default_factory=list)
    rate_limit_ms: int | None = None
    max_scrolls: int | None = None
    user_agent: str | None = None
    site_type: str | None = None
    recommended_depth: int | None = None

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class PageAnalysis:
    """Assessment of one processed page."""

    success: bool = False
    reason: str | None = None
    relevance_score: int = DEFAULT_RELEVANCE_SCORE
    priority_urls: list[str] = field(default_factory=list)
    focus_areas: list[str] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


@dataclass
class Reflection:
    """Review of a finished (or running) crawl."""

    success: bool = False
    reason: str | None = None
    progress_evaluation: str = "Unable to evaluate progress"
    strategy_suggestions: list[str] = field(
        default_factory=lambda: ["Continue with default crawling strategy"]
    )
    potential_issues: list[str] = field(default_factory=list)
    next_steps: list[str] = field(default_factory=list)

    @property
    def suggestions(self) -> list[str]:
        return self.strategy_suggestions + self.next_steps

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


class AdvisoryClient(Protocol):
    """Best-effort crawl advice."""

    async def plan_strategy(self, url: str) -> StrategyPlan: ...

    async def analyze_page(self, page_info: dict[str, Any]) -> PageAnalysis: ...

    async def reflect(self, job_summary: dict[str, Any]) -> Reflection: ...

    async def close(self) -> None: ...


# ============================================================
# Prompts
# ============================================================

_PLAN_PROMPT = """Plan a web crawling strategy for this URL:
{url}

Goal: capture ad assets and marketing content for competitor analysis.
Consider site structure, likely ad locations, infinite scrolling and politeness.

Return valid JSON only:
{{
  "siteType": "e-commerce/social media/corporate/etc",
  "recommendedDepth": number,
  "priorityPaths": ["list", "of", "paths"],
  "crawlParameters": {{"userAgent": "string", "rateLimit": number, "maxScrolls": number}}
}}"""

_ANALYZE_PROMPT = """Analyze this webpage information:
URL: {url}
Title: {title}
Current Depth: {depth}

As a crawler focused on ad assets and marketing content, rate the page's relevance
and list URLs on it that likely contain valuable ad content.

Return valid JSON only:
{{
  "relevanceScore": 0-100,
  "focusAreas": ["list", "of", "areas"],
  "priorityUrls": ["list", "of", "urls"]
}}"""

_REFLECT_PROMPT = """Reflect on this web crawl:
Job ID: {job_id}
Status: {status}
Pages Processed: {pages_processed}
Sample URLs visited:
{sample_urls}

Status Summary:
{error_summary}

Return valid JSON only:
{{
  "progressEvaluation": "string evaluation",
  "strategySuggestions": ["list", "of", "suggestions"],
  "potentialIssues": ["list", "of", "issues"],
  "nextSteps": ["list", "of", "next", "steps"]
}}"""


def extract_json_object(text: str) -> dict[str, Any]:
    """Parse a JSON object out of a model reply.

    Tried in order: the whole reply, a fenced ```json block, then the
    outermost {...} span.

    Raises:
        AdvisoryResponseError: If no JSON object can be found or parsed.
    """
    text = (text or "").strip()
    candidates = [text]
    fenced = _CODE_BLOCK.search(text)
    if fenced:
        candidates.append(fenced.group(1))
    greedy = _OBJECT_SPAN.search(text)
    if greedy:
        candidates.append(greedy.group())

    for candidate in candidates:
        try:
            parsed = json.loads(candidate)
        except json.JSONDecodeError:
            continue
        if isinstance(parsed, dict):
            return parsed
    raise AdvisoryResponseError("Reply is not in the expected JSON format")


def parse_reply(text: str, schema: type[ReplyT]) -> ReplyT:
    """Extract the JSON object of a reply and validate it against a schema.

    Raises:
        AdvisoryResponseError: If there is no JSON object or it fails validation.
    """
    data = extract_json_object(text)
    try:
        return schema.model_validate(data)
    except ValidationError as e:
        logger.warning(
            "Advisory reply failed validation",
            schema=schema.__name__,
            errors=e.errors(include_url=False),
        )
        raise AdvisoryResponseError(
            f"Reply failed {schema.__name__} validation ({e.error_count()} errors)"
        ) from e


# ============================================================
# Gemini client
# ============================================================


class GeminiAdvisoryClient:
    """AdvisoryClient backed by the Gemini generateContent endpoint."""

    def __init__(
        self,
        api_key: str | None = None,
        model: str | None = None,
        api_url: str | None = None,
        timeout: float | None = None,
    ):
        settings = get_settings().advisory
        self._api_key = api_key if api_key is not None else settings.api_key
        self._model = model or settings.model
        self._api_url = (api_url or settings.api_url).rstrip("/")
        self._timeout = timeout if timeout is not None else settings.timeout_seconds
        self._temperature = settings.temperature
        self._max_output_tokens = settings.max_output_tokens
        self._session: aiohttp.ClientSession | None = None
        self._session_resource_id: str | None = None

    @property
    def configured(self) -> bool:
        return bool(self._api_key)

    async def _get_session(self) -> aiohttp.ClientSession:
        """Get or create HTTP session."""
        if self._session is None or self._session.closed:
            self._session = aiohttp.ClientSession(
                timeout=aiohttp.ClientTimeout(total=self._timeout)
            )
            self._session_resource_id = f"advisory_session_{id(self._session)}"
            await get_lifecycle_manager().register_resource(
                self._session_resource_id,
                ResourceType.HTTP_SESSION,
                self._session,
            )
        return self._session

    async def close(self) -> None:
        """Close the HTTP session and drop it from the lifecycle manager."""
        session, self._session = self._session, None
        resource_id, self._session_resource_id = self._session_resource_id, None
        if resource_id is not None and await get_lifecycle_manager().cleanup_resource(resource_id):
            return
        if session is not None and not session.closed:
            await session.close()

    async def generate_text(self, prompt: str, temperature: float | None = None) -> str:
        """Send a prompt and return the concatenated text parts of the first candidate.

        Raises:
            AdvisoryResponseError: If the reply carries no candidate.
            aiohttp.ClientError: On transport failures.
        """
        session = await self._get_session()
        url = f"{self._api_url}/{self._model}:generateContent"
        payload = {
            "contents": [{"parts": [{"text": prompt}]}],
            "generationConfig": {
                "temperature": self._temperature if temperature is None else temperature,
                "maxOutputTokens": self._max_output_tokens,
                "topP": 0.9,
                "topK": 40,
            },
        }
        async with session.post(url, params={"key": self._api_key}, json=payload) as response:
            response.raise_for_status()
            data = await response.json()

        candidates = data.get("candidates") or []
        if not candidates:
            raise AdvisoryResponseError("No candidates in reply")
        parts = (candidates[0].get("content") or {}).get("parts") or []
        return "\n".join(part["text"] for part in parts if part.get("text"))

    async def _ask(self, prompt: str, schema: type[ReplyT], temperature: float) -> ReplyT:
        return parse_reply(await self.generate_text(prompt, temperature), schema)

    async def plan_strategy(self, url: str) -> StrategyPlan:
        if not self.configured:
            return StrategyPlan(reason="advisory service not configured")
        try:
            plan = await self._ask(_PLAN_PROMPT.format(url=url), StrategyReply, temperature=0.3)
        except Exception as e:
            logger.warning("Crawl planning failed", url=url, error=str(e))
            return StrategyPlan(reason=str(e))

        params = plan.crawl_parameters
        return StrategyPlan(
            success=True,
            priority_urls=plan.priority_paths,
            rate_limit_ms=params.rate_limit,
            max_scrolls=params.max_scrolls,
            user_agent=params.user_agent,
            site_type=plan.site_type,
            recommended_depth=plan.recommended_depth,
        )

    async def analyze_page(self, page_info: dict[str, Any]) -> PageAnalysis:
        if not self.configured:
            return PageAnalysis(reason="advisory service not configured")
        prompt = _ANALYZE_PROMPT.format(
            url=page_info.get("url"),
            title=page_info.get("title") or "",
            depth=page_info.get("depth"),
        )
        try:
            analysis = await self._ask(prompt, AnalysisReply, temperature=0.3)
        except Exception as e:
            logger.warning("Page analysis failed", url=page_info.get("url"), error=str(e))
            return PageAnalysis(reason=str(e))

        return PageAnalysis(
            success=True,
            relevance_score=(
                DEFAULT_RELEVANCE_SCORE
                if analysis.relevance_score is None
                else analysis.relevance_score
            ),
            priority_urls=analysis.priority_urls,
            focus_areas=analysis.focus_areas,
        )

    async def reflect(self, job_summary: dict[str, Any]) -> Reflection:
        if not self.configured:
            return Reflection(reason="advisory service not configured")
        visited = job_summary.get("visited_urls") or []
        errors = job_summary.get("errors") or []
        prompt = _REFLECT_PROMPT.format(
            job_id=job_summary.get("job_id"),
            status=job_summary.get("status"),
            pages_processed=job_summary.get("pages_processed", 0),
            sample_urls="\n".join(visited[:5]) if visited else "No URLs processed yet",
            error_summary=f"{len(errors)} errors encountered" if errors else "No errors so far",
        )
        try:
            reflection = await self._ask(prompt, ReflectionReply, temperature=0.4)
        except Exception as e:
            logger.warning("Crawl reflection failed", job_id=job_summary.get("job_id"), error=str(e))
            return Reflection(reason=str(e))

        return Reflection(
            success=True,
            progress_evaluation=reflection.progress_evaluation,
            strategy_suggestions=reflection.strategy_suggestions,
            potential_issues=reflection.potential_issues,
            next_steps=reflection.next_steps,
        )
