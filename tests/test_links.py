"""
Tests for same-origin link harvesting.

## Test Perspectives Table

| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|---------------------|---------------------------------------|-----------------|-------|
| TC-LK-N-01 | Relative and absolute anchors | Equivalence – normal | Absolute, same-origin, document order | - |
| TC-LK-N-02 | Anchors, mailto, javascript, media | Equivalence – normal | Skipped | - |
| TC-LK-N-03 | Duplicate and self links | Equivalence – normal | Deduplicated, page itself excluded | - |
| TC-LK-N-04 | resolve_same_origin with paths | Equivalence – normal | Resolved against base | - |
| TC-LK-B-01 | Different port or scheme | Boundary – origin | Treated as other origin | - |
| TC-LK-B-02 | No anchors / empty candidates | Boundary – empty | [] | - |
| TC-LK-B-03 | URL with empty path | Boundary – empty path | Path becomes "/", query kept | - |
"""

import pytest

from pagelens.crawler.links import (
    LinkExtractor,
    is_same_origin,
    normalize_url,
    resolve_same_origin,
)

pytestmark = pytest.mark.unit

BASE = "https://shop.example.com/catalog/"


class TestLinkExtractor:
    def test_relative_and_absolute_links(self):
        """TC-LK-N-01: Links are resolved and off-site ones dropped."""
        html = """
        <a href="shoes">Shoes</a>
        <a href="/about">About</a>
        <a href="https://shop.example.com/cart">Cart</a>
        <a href="https://cdn.other.net/promo">Promo</a>
        """

        links = LinkExtractor().extract_links(html, BASE)

        assert links == [
            "https://shop.example.com/catalog/shoes",
            "https://shop.example.com/about",
            "https://shop.example.com/cart",
        ]

    def test_non_page_links_skipped(self):
        """TC-LK-N-02: Anchors, scripts, mail, phone and media are ignored."""
        html = """
        <a href="#top">Top</a>
        <a href="javascript:void(0)">JS</a>
        <a href="mailto:sales@example.com">Mail</a>
        <a href="tel:+100">Call</a>
        <a href="/banner.PNG">Banner</a>
        <a href="/brochure.pdf?v=2">Brochure</a>
        <a href="/deals">Deals</a>
        """

        links = LinkExtractor().extract_links(html, BASE)

        assert links == ["https://shop.example.com/deals"]

    def test_duplicates_and_self_removed(self):
        """TC-LK-N-03: Each URL appears once; fragments do not create new URLs."""
        html = """
        <a href="/deals">Deals</a>
        <a href="/deals#summer">Summer deals</a>
        <a href="https://shop.example.com/catalog/">Catalog</a>
        """

        links = LinkExtractor().extract_links(html, BASE)

        assert links == ["https://shop.example.com/deals"]

    def test_no_anchors(self):
        """TC-LK-B-02: A page without links yields nothing."""
        assert LinkExtractor().extract_links("<p>No links</p>", BASE) == []


class TestOrigins:
    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://SHOP.example.com/x", True),
            ("http://shop.example.com/x", False),
            ("https://shop.example.com:8443/x", False),
            ("https://blog.example.com/x", False),
        ],
    )
    def test_is_same_origin(self, url, expected):
        """TC-LK-B-01: Scheme, host and port must all match."""
        assert is_same_origin(url, BASE) is expected

    def test_normalize_strips_fragment(self):
        assert normalize_url("https://shop.example.com/a?b=1#c") == "https://shop.example.com/a?b=1"

    @pytest.mark.parametrize(
        ("url", "expected"),
        [
            ("https://shop.example.com", "https://shop.example.com/"),
            ("https://shop.example.com?ref=mail", "https://shop.example.com/?ref=mail"),
            ("https://shop.example.com#top", "https://shop.example.com/"),
            ("https://shop.example.com/", "https://shop.example.com/"),
        ],
    )
    def test_normalize_bare_host_gets_root_path(self, url, expected):
        """TC-LK-B-03: An empty path is normalised to "/"."""
        assert normalize_url(url) == expected

    def test_resolve_same_origin(self):
        """TC-LK-N-04: Suggested paths are resolved, filtered and deduplicated."""
        resolved = resolve_same_origin(
            ["/sale", "new-in", "https://other.org/x", "/sale#top", "", "ftp://shop.example.com/f"],
            BASE,
        )

        assert resolved == [
            "https://shop.example.com/sale",
            "https://shop.example.com/catalog/new-in",
        ]

    def test_resolve_empty(self):
        """TC-LK-B-02: No candidates means no URLs."""
        assert resolve_same_origin([], BASE) == []
