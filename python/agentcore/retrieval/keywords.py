"""Keyword extraction and lexical scoring for retrieval."""

import math
import re
from typing import Iterable, List, Sequence

STOP_WORDS = frozenset({
    "the", "is", "at", "which", "on", "a", "an", "and", "or", "but", "in",
    "with", "to", "for", "of", "as", "by", "that", "this", "it", "from",
    "are", "was", "were", "been", "be", "have", "has", "had", "do", "does",
    "did", "will", "would", "could", "should",
})

_PUNCTUATION = re.compile(r"[^\w\s]")

BM25_K1 = 1.5
BM25_B = 0.75


def extract_keywords(query: str) -> List[str]:
    """Lowercase, strip punctuation, drop stop words and words of 2 chars or fewer.

    Order of first appearance is kept; duplicates are dropped.
    """
    words = _PUNCTUATION.sub(" ", query.lower()).split()
    seen = []
    for word in words:
        if len(word) > 2 and word not in STOP_WORDS and word not in seen:
            seen.append(word)
    return seen


def _word_pattern(keyword: str) -> "re.Pattern[str]":
    return re.compile(rf"\b{re.escape(keyword)}\b", re.IGNORECASE)


def count_occurrences(text: str, keyword: str) -> int:
    return len(_word_pattern(keyword).findall(text))


def find_matched_keywords(text: str, keywords: Iterable[str]) -> List[str]:
    return [k for k in keywords if _word_pattern(k).search(text)]


def keyword_score(text: str, keywords: Sequence[str]) -> float:
    """Score in [0, 1]: 70% log-damped frequency, 30% keyword coverage."""
    if not keywords:
        return 0.0

    total = 0.0
    matched = 0
    for keyword in keywords:
        count = count_occurrences(text, keyword)
        if count > 0:
            total += math.log(count + 1)
            matched += 1

    normalized = min(total / (len(keywords) * math.log(10)), 1.0)
    coverage = matched / len(keywords)
    return 0.7 * normalized + 0.3 * coverage


def bm25_score(text: str, keywords: Sequence[str], avg_doc_length: float) -> float:
    """BM25 term-frequency component (no IDF)."""
    doc_length = len(text.split())
    if avg_doc_length <= 0:
        avg_doc_length = float(doc_length or 1)

    score = 0.0
    for keyword in keywords:
        tf = count_occurrences(text, keyword)
        if tf > 0:
            numerator = tf * (BM25_K1 + 1)
            denominator = tf + BM25_K1 * (1 - BM25_B + BM25_B * (doc_length / avg_doc_length))
            score += numerator / denominator
    return score
