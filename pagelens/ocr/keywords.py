"""
Keyword extraction from recognised page text.

A plain term-frequency heuristic: tokens are lower-cased, stripped of
punctuation and digits, filtered against stop words and grouped by Porter
stem. Each stem is reported under its most common surface form.
"""

import re
from collections import Counter
from dataclasses import asdict, dataclass
from typing import Any

from nltk.stem import PorterStemmer

DEFAULT_KEYWORD_LIMIT = 20
MIN_TOKEN_LENGTH = 3

STOPWORDS_EN = frozenset(
    [
        "the", "and", "but", "for", "with", "from", "was", "are", "were",
        "been", "have", "has", "had", "does", "did", "will", "would", "could",
        "should", "may", "might", "must", "shall", "can", "need", "this",
        "that", "these", "those", "its", "they", "them", "their", "our",
        "you", "your", "she", "him", "her", "his", "not", "yes", "then",
        "than", "when", "where", "what", "which", "who", "whom", "how", "why",
        "all", "each", "every", "both", "few", "more", "most", "other", "some",
        "such", "only", "own", "same", "just", "also", "very", "any", "about",
        "into", "over", "after", "before", "there", "here", "out", "off",
        "again", "once", "because", "while", "until", "being", "doing",
        "having", "too", "nor", "now", "under", "above", "below", "between",
        "through", "during", "against", "further", "ours", "yours", "theirs",
        "himself", "herself", "itself", "themselves", "myself", "yourself",
    ]
)

_NON_WORD = re.compile(r"[^\w\s]")
_DIGITS = re.compile(r"\d+")
_stemmer = PorterStemmer()


@dataclass
class Keyword:
    """A ranked keyword."""

    word: str
    score: float
    frequency: int

    def to_dict(self) -> dict[str, Any]:
        return asdict(self)


def preprocess_text(text: str) -> str:
    """Lower-case, drop punctuation and digits, collapse whitespace."""
    processed = _NON_WORD.sub(" ", text.lower())
    processed = _DIGITS.sub(" ", processed)
    return " ".join(processed.split())


def tokenize(text: str) -> list[str]:
    """Split preprocessed text into candidate keyword tokens."""
    return [
        token
        for token in preprocess_text(text).replace("_", " ").split()
        if len(token) >= MIN_TOKEN_LENGTH and token not in STOPWORDS_EN
    ]


def extract_keywords(text: str, limit: int = DEFAULT_KEYWORD_LIMIT) -> list[Keyword]:
    """Rank keywords in a block of text.

    Score is frequency * (0.5 + min(0.5, len(word) / 10)), so longer words
    weigh up to twice as much as short ones at the same frequency.

    Args:
        text: Raw recognised text.
        limit: Maximum number of keywords returned.

    Returns:
        Keywords sorted by descending score.
    """
    if not text or not text.strip():
        return []

    tokens = tokenize(text)
    forms_by_stem: dict[str, Counter[str]] = {}
    for token in tokens:
        forms_by_stem.setdefault(_stemmer.stem(token), Counter())[token] += 1

    keywords = []
    for forms in forms_by_stem.values():
        frequency = sum(forms.values())
        word = forms.most_common(1)[0][0]
        score = frequency * (0.5 + min(0.5, len(word) / 10))
        keywords.append(Keyword(word=word, score=round(score, 3), frequency=frequency))

    keywords.sort(key=lambda k: (-k.score, k.word))
    return keywords[:limit]
