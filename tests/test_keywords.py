"""
Tests for keyword extraction.

## Test Perspectives Table

| Case ID | Input / Precondition | Perspective (Equivalence / Boundary) | Expected Result | Notes |
|---------|---------------------|---------------------------------------|-----------------|-------|
| TC-KW-N-01 | Repeated words | Equivalence – normal | Higher frequency ranks first | - |
| TC-KW-N-02 | Inflected forms | Equivalence – normal | Grouped by stem, most common form shown | - |
| TC-KW-N-03 | Stop words, digits, punctuation | Equivalence – normal | Removed | - |
| TC-KW-N-04 | Score formula | Equivalence – normal | frequency * (0.5 + min(0.5, len/10)) | - |
| TC-KW-B-01 | Empty text | Boundary – empty | [] | - |
| TC-KW-B-02 | limit | Boundary – limit | Truncated | - |
| TC-KW-B-03 | Two-letter tokens | Boundary – min length | Dropped | - |
"""

import pytest

from pagelens.ocr.keywords import extract_keywords, preprocess_text, tokenize

pytestmark = pytest.mark.unit


class TestPreprocessing:
    def test_punctuation_and_digits_removed(self):
        """TC-KW-N-03: Text is lower-cased and cleaned."""
        assert preprocess_text("SALE! 50% off -- Today, only.") == "sale off today only"

    def test_stopwords_and_short_tokens_dropped(self):
        """TC-KW-B-03: Stop words and tokens under three letters are dropped."""
        assert tokenize("The new app is on sale for you") == ["new", "app", "sale"]


class TestExtractKeywords:
    def test_frequency_ranking(self):
        """TC-KW-N-01: Repeated words outrank single ones."""
        keywords = extract_keywords("banner banner banner coupon")

        assert [k.word for k in keywords] == ["banner", "coupon"]
        assert keywords[0].frequency == 3

    def test_stem_grouping(self):
        """TC-KW-N-02: Inflections share one entry under the most common form."""
        keywords = extract_keywords("discount discounts discount discounted")

        assert len(keywords) == 1
        assert keywords[0].word == "discount"
        assert keywords[0].frequency == 4

    def test_score_formula(self):
        """TC-KW-N-04: Longer words weigh more at equal frequency."""
        keywords = {k.word: k for k in extract_keywords("promotion ads ads")}

        assert keywords["promotion"].score == pytest.approx(1.0)
        assert keywords["ads"].score == pytest.approx(2 * 0.8)

    @pytest.mark.parametrize("text", ["", "   ", "12 34 !!"])
    def test_empty(self, text):
        """TC-KW-B-01: Nothing usable yields no keywords."""
        assert extract_keywords(text) == []

    def test_limit(self):
        """TC-KW-B-02: Only the top `limit` keywords are returned."""
        text = "alpha bravo charlie delta echo foxtrot golf hotel"

        assert len(extract_keywords(text, limit=3)) == 3

    def test_to_dict(self):
        keyword = extract_keywords("campaign")[0]

        assert keyword.to_dict() == {"word": "campaign", "score": 1.0, "frequency": 1}
