"""
Browser capture session for a crawl job.

A CaptureClient wraps one browser page that is owned by exactly one job for
the job's whole lifetime. The Playwright implementation registers its
browser objects with the resource lifecycle manager so that the job's
terminal transition releases them.
"""

from collections.abc import Awaitable, Callable
from datetime import UTC, datetime
from pathlib import Path
from typing import TYPE_CHECKING, Protocol

from playwright.async_api import Error as PlaywrightError
from playwright.async_api import async_playwright

from pagelens.crawler.links import LinkExtractor
from pagelens.utils.config import get_settings
from pagelens.utils.lifecycle import cleanup_job, register_browser_for_job
from pagelens.utils.logging import get_logger

if TYPE_CHECKING:
    from playwright.async_api import ConsoleMessage, Page

    from pagelens.scheduler.models import CrawlOptions

logger = get_logger(__name__)


class CaptureError(Exception):
    """A browser operation failed.

    Attributes:
        stage: Capture step that failed (navigate, screenshot, scroll, session).
    """

    def __init__(self, stage: str, message: str):
        super().__init__(message)
        self.stage = stage


class CaptureClient(Protocol):
    """Browser primitives consumed by the pipeline."""

    async def navigate(self, url: str, timeout_ms: int) -> None: ...

    async def current_content_extent(self) -> int: ...

    async def scroll_to_bottom(self) -> None: ...

    async def scroll_to_top(self) -> None: ...

    async def screenshot(self) -> str:
        """Capture the full page and return a reference to the stored image."""
        ...

    async def extract_links(self, base_url: str) -> list[str]:
        """Absolute same-origin URLs linked from the current page."""
        ...

    async def title(self) -> str: ...

    async def close(self) -> None: ...


CaptureClientFactory = Callable[[str, "CrawlOptions"], Awaitable[CaptureClient]]


class PlaywrightCaptureClient:
    """CaptureClient driving a headless Chromium page."""

    def __init__(self, job_id: str, page: "Page", screenshot_dir: Path):
        self._job_id = job_id
        self._page = page
        self._screenshot_dir = screenshot_dir
        self._link_extractor = LinkExtractor()
        self._closed = False

        page.on("console", self._on_console)
        page.on("pageerror", self._on_page_error)

    @classmethod
    async def open(cls, job_id: str, options: "CrawlOptions") -> "PlaywrightCaptureClient":
        """Launch a browser session for a job.

        Raises:
            CaptureError: If the browser cannot be started.
        """
        settings = get_settings()
        browser_settings = settings.browser
        playwright = None
        try:
            playwright = await async_playwright().start()
            browser = await playwright.chromium.launch(
                headless=browser_settings.headless,
                args=browser_settings.launch_args,
            )
            context = await browser.new_context(
                viewport={
                    "width": options.viewport.width,
                    "height": options.viewport.height,
                },
                user_agent=options.user_agent,
            )
            page = await context.new_page()
        except PlaywrightError as e:
            if playwright is not None:
                await playwright.stop()
            raise CaptureError("session", f"Browser launch failed: {e}") from e

        await register_browser_for_job(
            job_id,
            browser,
            context=context,
            page=page,
            playwright=playwright,
        )

        screenshot_dir = Path(settings.storage.screenshots_dir) / job_id
        screenshot_dir.mkdir(parents=True, exist_ok=True)

        logger.info("Browser session opened", job_id=job_id, user_agent=options.user_agent)
        return cls(job_id, page, screenshot_dir)

    def _on_console(self, message: "ConsoleMessage") -> None:
        if message.type == "error":
            logger.debug("Browser console error", job_id=self._job_id, text=message.text)

    def _on_page_error(self, error: Exception) -> None:
        logger.error("Page error", job_id=self._job_id, error=str(error))

    async def navigate(self, url: str, timeout_ms: int) -> None:
        try:
            response = await self._page.goto(
                url,
                wait_until=get_settings().browser.wait_until,
                timeout=timeout_ms,
            )
        except PlaywrightError as e:
            raise CaptureError("navigate", str(e)) from e

        if response is not None:
            logger.debug("Navigated", url=url, status=response.status)

    async def current_content_extent(self) -> int:
        try:
            return int(await self._page.evaluate("document.body.scrollHeight"))
        except PlaywrightError as e:
            raise CaptureError("scroll", str(e)) from e

    async def scroll_to_bottom(self) -> None:
        try:
            await self._page.evaluate("window.scrollTo(0, document.body.scrollHeight)")
        except PlaywrightError as e:
            raise CaptureError("scroll", str(e)) from e

    async def scroll_to_top(self) -> None:
        try:
            await self._page.evaluate("window.scrollTo(0, 0)")
        except PlaywrightError as e:
            raise CaptureError("scroll", str(e)) from e

    async def screenshot(self) -> str:
        timestamp = datetime.now(UTC).strftime("%Y%m%dT%H%M%S%f")
        path = self._screenshot_dir / f"{timestamp}.png"
        try:
            await self._page.screenshot(
                path=str(path),
                full_page=get_settings().browser.full_page_screenshot,
            )
        except PlaywrightError as e:
            raise CaptureError("screenshot", str(e)) from e
        return str(path)

    async def extract_links(self, base_url: str) -> list[str]:
        try:
            html = await self._page.content()
        except PlaywrightError as e:
            raise CaptureError("links", str(e)) from e
        return self._link_extractor.extract_links(html, base_url)

    async def title(self) -> str:
        try:
            return await self._page.title()
        except PlaywrightError as e:
            raise CaptureError("title", str(e)) from e

    async def close(self) -> None:
        """Release the page, context, browser and driver of this job."""
        if self._closed:
            return
        self._closed = True
        await cleanup_job(self._job_id)
        logger.info("Browser session closed", job_id=self._job_id)


async def open_playwright_session(job_id: str, options: "CrawlOptions") -> CaptureClient:
    """Default CaptureClientFactory."""
    return await PlaywrightCaptureClient.open(job_id, options)
