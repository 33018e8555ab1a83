"""
Pytest fixtures and configuration for pagelens tests.

=============================================================================
Test Classification
=============================================================================

Primary Markers (Execution Speed):
- @pytest.mark.unit: Single class/function, no external dependencies
  - Fast (<1s per test)
  - DEFAULT: Tests without marker are auto-classified as unit

- @pytest.mark.integration: Multiple components wired together, external
  services replaced by the fakes below
  - Medium (<5s per test)

- @pytest.mark.e2e: Real browser, Tesseract binary or network
  - DEFAULT EXCLUDED: Must use `pytest -m e2e` to run

- @pytest.mark.slow: Tests taking >5 seconds
  - DEFAULT EXCLUDED: Must use `pytest -m slow` to run

=============================================================================
Mock Strategy
=============================================================================

- Browser (Playwright): FakeCaptureClient, a scripted in-memory site
- OCR (Tesseract): FakeRecognitionClient
- Advisory AI (Gemini): FakeAdvisoryClient
- Database: in-memory SQLite (:memory:) or a temp file
- File I/O: temp directories
"""

import asyncio
import os
import tempfile
from collections.abc import Callable, Generator
from pathlib import Path
from typing import Any

import pytest
import pytest_asyncio

# Set test environment before importing anything else
os.environ["PAGELENS_CONFIG_DIR"] = str(Path(__file__).parent.parent / "config")
os.environ["PAGELENS_GENERAL__LOG_LEVEL"] = "DEBUG"

from pagelens.advisory.client import PageAnalysis, Reflection, StrategyPlan  # noqa: E402
from pagelens.crawler.capture import CaptureError  # noqa: E402
from pagelens.events.broadcaster import EventBroadcaster  # noqa: E402
from pagelens.ocr.recognition import RecognitionResult  # noqa: E402

# Minimal valid PNG (1x1 transparent pixel)
PNG_BYTES = bytes.fromhex(
    "89504e470d0a1a0a0000000d4948445200000001000000010806000000"
    "1f15c4890000000d49444154789c6360000002000100e221bc330000000049454e44ae426082"
)

# Crawl options that keep tests fast
FAST_OPTIONS: dict[str, Any] = {
    "rate_limit_ms": 0,
    "scroll_wait_ms": 0,
    "advisory_enabled": False,
}


# =============================================================================
# Pytest Hooks for Test Classification
# =============================================================================


def pytest_configure(config):
    """Register custom markers for test classification."""
    config.addinivalue_line(
        "markers", "unit: Unit tests with no external dependencies (fast, <1s/test)"
    )
    config.addinivalue_line(
        "markers", "integration: Integration tests with faked external services (<5s/test)"
    )
    config.addinivalue_line(
        "markers", "e2e: End-to-end tests requiring real browser/OCR/network (excluded by default)"
    )
    config.addinivalue_line(
        "markers", "slow: Tests that take more than 5 seconds (excluded by default)"
    )


def pytest_collection_modifyitems(config, items):
    """Tests without an explicit classification are unit tests."""
    for item in items:
        has_classification = any(
            marker.name in ("unit", "integration", "e2e") for marker in item.iter_markers()
        )
        if not has_classification:
            item.add_marker(pytest.mark.unit)


# =============================================================================
# Fakes for External Services
# =============================================================================


class FakeCaptureClient:
    """Scripted browser session over an in-memory site.

    Args:
        site: Mapping of URL to the links found on that page.
        screenshot_dir: Where screenshots are written.
        fail_navigate: URLs whose navigation raises CaptureError.
        fail_screenshot: URLs whose screenshot raises CaptureError.
        extents: Successive content heights reported while scrolling.
    """

    def __init__(
        self,
        site: dict[str, list[str]],
        screenshot_dir: Path,
        *,
        fail_navigate: set[str] | None = None,
        fail_screenshot: set[str] | None = None,
        fail_links: set[str] | None = None,
        extents: list[int] | None = None,
    ):
        self.site = site
        self.screenshot_dir = screenshot_dir
        self.fail_navigate = fail_navigate or set()
        self.fail_screenshot = fail_screenshot or set()
        self.fail_links = fail_links or set()
        self.extents = list(extents or [1000, 1000])
        self.current_url: str | None = None
        self.navigations: list[str] = []
        self.scrolls = 0
        self.scroll_to_top_calls = 0
        self.close_calls = 0
        self.navigate_started = asyncio.Event()
        self.navigate_gate: asyncio.Event | None = None
        self._extent_index = 0

    async def navigate(self, url: str, timeout_ms: int) -> None:
        self.navigations.append(url)
        self.navigate_started.set()
        if self.navigate_gate is not None:
            await self.navigate_gate.wait()
        if url in self.fail_navigate:
            raise CaptureError("navigate", f"net::ERR_NAME_NOT_RESOLVED at {url}")
        self.current_url = url
        self._extent_index = 0

    async def current_content_extent(self) -> int:
        index = min(self._extent_index, len(self.extents) - 1)
        self._extent_index += 1
        return self.extents[index]

    async def scroll_to_bottom(self) -> None:
        self.scrolls += 1

    async def scroll_to_top(self) -> None:
        self.scroll_to_top_calls += 1

    async def screenshot(self) -> str:
        if self.current_url in self.fail_screenshot:
            raise CaptureError("screenshot", "Target page crashed")
        self.screenshot_dir.mkdir(parents=True, exist_ok=True)
        path = self.screenshot_dir / f"shot_{len(list(self.screenshot_dir.iterdir()))}.png"
        path.write_bytes(PNG_BYTES)
        return str(path)

    async def extract_links(self, base_url: str) -> list[str]:
        if base_url in self.fail_links:
            raise CaptureError("links", "Execution context was destroyed")
        return list(self.site.get(base_url, []))

    async def title(self) -> str:
        return f"Title of {self.current_url}"

    async def close(self) -> None:
        self.close_calls += 1


class FakeRecognitionClient:
    """Returns canned text, a canned error result, or raises."""

    def __init__(
        self,
        text: str = "Summer sale banner promotion discount promotion",
        *,
        error: str | None = None,
        raises: Exception | None = None,
    ):
        self.text = text
        self.error = error
        self.raises = raises
        self.calls: list[tuple[str, str]] = []

    async def recognize(self, image_ref: str, language: str = "eng") -> RecognitionResult:
        self.calls.append((image_ref, language))
        if self.raises is not None:
            raise self.raises
        if self.error is not None:
            return RecognitionResult.failed(self.error, language=language)
        return RecognitionResult(text=self.text, confidence=72, language=language)


class FakeAdvisoryClient:
    """Records calls and returns configured results."""

    def __init__(
        self,
        plan: StrategyPlan | None = None,
        analysis: PageAnalysis | None = None,
        reflection: Reflection | None = None,
        *,
        raises: Exception | None = None,
    ):
        self.plan = plan or StrategyPlan(reason="not configured")
        self.analysis = analysis or PageAnalysis(reason="not configured")
        self.reflection = reflection or Reflection(reason="not configured")
        self.raises = raises
        self.planned: list[str] = []
        self.analyzed: list[dict[str, Any]] = []
        self.reflected: list[dict[str, Any]] = []
        self.closed = False

    async def plan_strategy(self, url: str) -> StrategyPlan:
        self.planned.append(url)
        if self.raises is not None:
            raise self.raises
        return self.plan

    async def analyze_page(self, page_info: dict[str, Any]) -> PageAnalysis:
        self.analyzed.append(page_info)
        if self.raises is not None:
            raise self.raises
        return self.analysis

    async def reflect(self, job_summary: dict[str, Any]) -> Reflection:
        self.reflected.append(job_summary)
        if self.raises is not None:
            raise self.raises
        return self.reflection

    async def close(self) -> None:
        self.closed = True


# =============================================================================
# Basic Fixtures
# =============================================================================


@pytest.fixture
def temp_dir() -> Generator[Path, None, None]:
    """Create a temporary directory for test files."""
    with tempfile.TemporaryDirectory() as tmpdir:
        yield Path(tmpdir)


@pytest.fixture
def temp_db_path(temp_dir: Path) -> Path:
    """Get path for temporary test database."""
    return temp_dir / "test_pagelens.db"


@pytest.fixture
def fast_options() -> dict[str, Any]:
    return dict(FAST_OPTIONS)


@pytest.fixture
def broadcaster() -> EventBroadcaster:
    return EventBroadcaster()


@pytest.fixture
def make_capture(temp_dir: Path) -> Callable[..., FakeCaptureClient]:
    """Factory for FakeCaptureClient writing screenshots under temp_dir."""

    def _make(site: dict[str, list[str]] | None = None, **kwargs: Any) -> FakeCaptureClient:
        return FakeCaptureClient(site or {}, temp_dir / "screenshots", **kwargs)

    return _make


@pytest.fixture
def recognition_client() -> FakeRecognitionClient:
    return FakeRecognitionClient()


@pytest.fixture
def make_recognition() -> Callable[..., FakeRecognitionClient]:
    return FakeRecognitionClient


@pytest.fixture
def advisory_client() -> FakeAdvisoryClient:
    return FakeAdvisoryClient()


@pytest.fixture
def make_advisory() -> Callable[..., FakeAdvisoryClient]:
    return FakeAdvisoryClient


@pytest.fixture
def png_bytes() -> bytes:
    return PNG_BYTES



@pytest.fixture
def wait_until() -> Callable[..., Any]:
    """Poll a predicate on the running loop until it holds."""

    async def _wait(predicate: Callable[[], bool], timeout: float = 2.0) -> None:
        deadline = asyncio.get_running_loop().time() + timeout
        while not predicate():
            if asyncio.get_running_loop().time() > deadline:
                raise AssertionError("Condition not met before timeout")
            await asyncio.sleep(0.005)

    return _wait


# =============================================================================
# Database Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def test_database(temp_db_path: Path):
    """Create a temporary file-backed test database.

    Guards against global database singleton interference by saving
    and restoring the global state around the test.
    """
    from pagelens.storage import database as db_module
    from pagelens.storage.database import Database

    saved_global = db_module._db
    db_module._db = None

    db = Database(temp_db_path)
    await db.connect()
    await db.initialize_schema()

    yield db

    await db.close()
    db_module._db = saved_global


@pytest_asyncio.fixture
async def memory_database():
    """Create an in-memory database for fast unit tests."""
    from pagelens.storage.database import Database

    db = Database(":memory:")
    await db.connect()
    await db.initialize_schema()

    yield db

    await db.close()


# =============================================================================
# Registry Fixtures
# =============================================================================


@pytest_asyncio.fixture
async def make_registry(memory_database, broadcaster):
    """Factory for JobRegistry instances wired to the in-memory database.

    Every registry built here is shut down after the test.
    """
    from pagelens.scheduler.registry import JobRegistry

    registries: list[JobRegistry] = []

    def _make(capture: FakeCaptureClient, **kwargs: Any) -> JobRegistry:
        async def factory(job_id: str, options: Any) -> FakeCaptureClient:
            return capture

        registry = JobRegistry(memory_database, broadcaster, capture_factory=factory, **kwargs)
        registries.append(registry)
        return registry

    yield _make

    for registry in registries:
        await registry.shutdown()


# =============================================================================
# Global State Reset
# =============================================================================


@pytest.fixture(autouse=True)
def reset_globals():
    """Reset cached settings and process-wide singletons between tests.

    Prevents asyncio primitives from being bound to a stale event loop.
    """
    yield
    from pagelens.storage import database as db_module
    from pagelens.utils import lifecycle as lifecycle_module
    from pagelens.utils.config import get_settings

    get_settings.cache_clear()
    db_module._db = None
    lifecycle_module._lifecycle_manager = None


# =============================================================================
# Utility Functions for Tests
# =============================================================================


def assert_dict_contains(actual: dict, expected: dict) -> None:
    """Assert that actual dict contains all key-value pairs from expected."""
    for key, value in expected.items():
        assert key in actual, (
            f"Key '{key}' not found in actual dict. Keys present: {list(actual.keys())}"
        )
        assert actual[key] == value, (
            f"Value mismatch for key '{key}': expected {value!r}, got {actual[key]!r}"
        )

