"""
Crawl frontier: ordered work queue plus visited set.

Discovered links are appended (breadth-first within a depth level).
Advisory-suggested URLs are pushed to the head; within one priority batch
the last URL inserted ends up frontmost, and a later batch goes in front of
an earlier one. A URL is marked visited in the same step that removes it
from the queue, so it is never yielded twice.
"""

from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass

from pagelens.crawler.links import normalize_url


@dataclass(frozen=True)
class FrontierEntry:
    url: str
    depth: int


class FrontierScheduler:
    """Work queue of (url, depth) pairs for one job."""

    def __init__(self, max_depth: int):
        if max_depth < 0:
            raise ValueError("max_depth must be non-negative")
        self.max_depth = max_depth
        self._queue: deque[FrontierEntry] = deque()
        self._queued: set[str] = set()
        self._visited: set[str] = set()
        self._visit_order: list[str] = []
        self._in_flight = 0

    # ============================================================
    # Queue operations
    # ============================================================

    def seed(self, root_url: str) -> None:
        """Start the frontier with (root_url, 0)."""
        self.enqueue_discovered([root_url], 0)

    def next(self) -> FrontierEntry | None:
        """Remove the head entry and mark its URL visited.

        Entries whose URL was visited since they were queued are discarded.

        Returns:
            The next entry, or None when the frontier is empty.
        """
        while self._queue:
            entry = self._queue.popleft()
            self._queued.discard(entry.url)
            if entry.url in self._visited:
                continue
            self._visited.add(entry.url)
            self._visit_order.append(entry.url)
            return entry
        return None

    def enqueue_discovered(self, urls: Iterable[str], depth: int) -> list[str]:
        """Append URLs found at `depth`, skipping visited, queued and too-deep ones.

        Returns:
            URLs actually enqueued.
        """
        if depth > self.max_depth:
            return []
        added = []
        for url in urls:
            url = normalize_url(url)
            if url in self._visited or url in self._queued:
                continue
            self._queue.append(FrontierEntry(url, depth))
            self._queued.add(url)
            added.append(url)
        return added

    def enqueue_priority(self, urls: Iterable[str], depth: int) -> list[str]:
        """Insert URLs at the head of the frontier.

        A URL already waiting in the queue is moved to the head and keeps the
        shallower of its queued and requested depths.

        Returns:
            URLs inserted at the head.
        """
        if depth > self.max_depth:
            return []
        added = []
        for url in urls:
            url = normalize_url(url)
            if url in self._visited:
                continue
            entry_depth = depth
            if url in self._queued:
                queued = next(e for e in self._queue if e.url == url)
                entry_depth = min(queued.depth, depth)
                self._queue.remove(queued)
            self._queue.appendleft(FrontierEntry(url, entry_depth))
            self._queued.add(url)
            added.append(url)
        return added

    # ============================================================
    # In-flight tracking
    # ============================================================

    def begin(self) -> None:
        """Mark one dequeued entry as being processed."""
        self._in_flight += 1

    def done(self) -> None:
        """Mark the processing of one entry as finished."""
        if self._in_flight > 0:
            self._in_flight -= 1

    # ============================================================
    # Introspection
    # ============================================================

    def is_exhausted(self) -> bool:
        """True when nothing is queued and nothing is being processed."""
        return not self._queue and self._in_flight == 0

    def is_visited(self, url: str) -> bool:
        return normalize_url(url) in self._visited

    @property
    def visited_urls(self) -> list[str]:
        """Visited URLs in visit order."""
        return list(self._visit_order)

    @property
    def visited_count(self) -> int:
        return len(self._visited)

    @property
    def in_flight(self) -> int:
        return self._in_flight

    def pending(self) -> list[FrontierEntry]:
        """Snapshot of the queue, head first."""
        return list(self._queue)

    def __len__(self) -> int:
        return len(self._queue)
