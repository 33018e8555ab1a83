"""
Infinite-scroll completion detection.

Browsers expose no "content stabilised" signal, so the detector polls:
measure extent, scroll to the bottom, wait, and stop once two consecutive
measurements agree. The scroll count and a wall-clock timeout bound the
loop for pages whose extent never settles.
"""

import asyncio
import time
from dataclasses import dataclass
from enum import Enum

from pagelens.crawler.capture import CaptureClient
from pagelens.utils.logging import get_logger

logger = get_logger(__name__)


class ScrollStopReason(str, Enum):
    """Why scrolling stopped."""

    STABLE = "stable"
    MAX_SCROLLS = "max_scrolls"
    TIMEOUT = "timeout"


@dataclass
class ScrollReport:
    scrolls: int
    stop_reason: ScrollStopReason
    final_extent: int


class ScrollCompletionDetector:
    """Bounded polling loop that scrolls until no new content appears."""

    def __init__(self, max_scrolls: int, timeout_ms: int, wait_ms: int):
        self.max_scrolls = max_scrolls
        self.timeout_ms = timeout_ms
        self.wait_ms = wait_ms

    async def run(self, session: CaptureClient) -> ScrollReport:
        """Scroll the current page to completion, then back to the top.

        Raises:
            CaptureError: If the browser fails to measure or scroll.
        """
        deadline = time.monotonic() + self.timeout_ms / 1000
        scrolls = 0
        previous_extent: int | None = None
        extent = 0
        stop_reason = ScrollStopReason.MAX_SCROLLS

        try:
            while scrolls < self.max_scrolls:
                if time.monotonic() >= deadline:
                    stop_reason = ScrollStopReason.TIMEOUT
                    break

                extent = await session.current_content_extent()
                if extent == previous_extent:
                    stop_reason = ScrollStopReason.STABLE
                    break
                previous_extent = extent

                await session.scroll_to_bottom()
                await asyncio.sleep(self.wait_ms / 1000)
                scrolls += 1
        finally:
            await session.scroll_to_top()

        logger.debug(
            "Scroll finished",
            scrolls=scrolls,
            stop_reason=stop_reason.value,
            extent=extent,
        )
        return ScrollReport(scrolls=scrolls, stop_reason=stop_reason, final_extent=extent)
