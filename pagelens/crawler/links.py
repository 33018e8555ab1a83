"""
Same-origin link harvesting.

Links are returned in document order so that the frontier keeps
breadth-first insertion order within a depth level.
"""

import re
from collections.abc import Iterable
from urllib.parse import urldefrag, urljoin, urlparse, urlsplit, urlunsplit

from bs4 import BeautifulSoup

from pagelens.utils.logging import get_logger

logger = get_logger(__name__)


def origin_of(url: str) -> str:
    """scheme://host[:port] of an URL, lower-cased."""
    parsed = urlparse(url)
    return f"{parsed.scheme.lower()}://{parsed.netloc.lower()}"


def is_same_origin(url: str, other: str) -> bool:
    return origin_of(url) == origin_of(other)


def normalize_url(url: str) -> str:
    """Strip the fragment and give a bare host the root path.

    `https://example.com#top` and `https://example.com/` both become
    `https://example.com/`; everything else is kept as-is.
    """
    url = urldefrag(url)[0]
    parts = urlsplit(url)
    if parts.netloc and not parts.path and parts.scheme in ("http", "https"):
        url = urlunsplit(parts._replace(path="/"))
    return url


def resolve_same_origin(urls: Iterable[str], base_url: str) -> list[str]:
    """Resolve candidate URLs against base_url, keeping same-origin http(s) ones.

    Used for advisory-suggested URLs and paths, which may be relative,
    absolute or off-site. Order is preserved and duplicates are dropped.
    """
    resolved: list[str] = []
    seen: set[str] = set()
    for candidate in urls:
        if not candidate or not str(candidate).strip():
            continue
        absolute = normalize_url(urljoin(base_url, str(candidate).strip()))
        if urlparse(absolute).scheme not in ("http", "https"):
            continue
        if not is_same_origin(absolute, base_url) or absolute in seen:
            continue
        seen.add(absolute)
        resolved.append(absolute)
    return resolved


class LinkExtractor:
    """Extract same-origin page links from HTML."""

    SKIP_PATTERNS = [
        r"^#",  # Anchor only
        r"^javascript:",
        r"^mailto:",
        r"^tel:",
        r"^data:",
        r"\.(jpg|jpeg|png|gif|svg|webp|pdf|zip|exe|mp3|mp4|avi)(?:$|[?#])",  # Media files
    ]

    def __init__(self) -> None:
        self._skip_patterns = [re.compile(p, re.I) for p in self.SKIP_PATTERNS]

    def extract_links(self, html: str, base_url: str) -> list[str]:
        """Extract absolute same-origin links from HTML content.

        Args:
            html: HTML content.
            base_url: URL of the page, used to resolve relative links.

        Returns:
            Unique, fragment-free absolute URLs in document order.
        """
        soup = BeautifulSoup(html, "html.parser")
        links: list[str] = []
        seen_urls: set[str] = {normalize_url(base_url)}

        for anchor in soup.find_all("a", href=True):
            href = str(anchor.get("href") or "").strip()
            if not href or self._should_skip(href):
                continue

            absolute_url = normalize_url(urljoin(base_url, href))
            if urlparse(absolute_url).scheme not in ("http", "https"):
                continue
            if not is_same_origin(absolute_url, base_url):
                continue
            if absolute_url in seen_urls:
                continue

            seen_urls.add(absolute_url)
            links.append(absolute_url)

        return links

    def _should_skip(self, href: str) -> bool:
        return any(pattern.search(href) for pattern in self._skip_patterns)
