"""Edit-distance and keyword-overlap similarity used for duplicate detection."""

from __future__ import annotations

import re
from collections.abc import Hashable, Iterable, Sequence
from dataclasses import dataclass, field

_TERM_PATTERN = re.compile(r"\w+")
_MIN_TERM_LENGTH = 3


@dataclass(frozen=True)
class Weights:
    string: float = 0.7
    keyword: float = 0.3


DEFAULT_WEIGHTS = Weights()
DEFAULT_THRESHOLD = 0.65


def levenshtein_distance(a: Sequence[Hashable], b: Sequence[Hashable]) -> int:
    """Minimum number of single-element insertions, deletions and substitutions."""
    if len(a) < len(b):
        a, b = b, a
    if not b:
        return len(a)

    previous = list(range(len(b) + 1))
    for i, item_a in enumerate(a, 1):
        current = [i] + [0] * len(b)
        for j, item_b in enumerate(b, 1):
            cost = 0 if item_a == item_b else 1
            current[j] = min(previous[j] + 1, current[j - 1] + 1, previous[j - 1] + cost)
        previous = current
    return previous[-1]


def sequence_similarity(a: Sequence[Hashable], b: Sequence[Hashable]) -> float:
    longest = max(len(a), len(b))
    if longest == 0:
        return 1.0
    return 1.0 - levenshtein_distance(a, b) / longest


def string_similarity(a: str, b: str) -> float:
    """Edit-distance ratio of two lower-cased, trimmed strings; 1.0 means identical."""
    norm_a = a.lower().strip()
    norm_b = b.lower().strip()
    if norm_a == norm_b:
        return 1.0
    return sequence_similarity(norm_a, norm_b)


def normalize_keywords(keywords: Iterable[str]) -> set[str]:
    return {keyword.lower().strip() for keyword in keywords if keyword and keyword.strip()}


def jaccard_index(a: set[str], b: set[str]) -> float:
    # Two empty sets score 0 so keyword-less items never look like duplicates.
    if not a and not b:
        return 0.0
    union = len(a | b)
    return len(a & b) / union if union else 0.0


def keyword_overlap(a: Iterable[str], b: Iterable[str]) -> float:
    return jaccard_index(normalize_keywords(a), normalize_keywords(b))


def combined_score(string_score: float, keyword_score: float, weights: Weights = DEFAULT_WEIGHTS) -> float:
    return weights.string * string_score + weights.keyword * keyword_score


def title_terms(title: str) -> set[str]:
    return {term for term in _TERM_PATTERN.findall(title.lower()) if len(term) >= _MIN_TERM_LENGTH}


@dataclass
class TitleCandidate:
    id: int | str | None
    title: str
    keywords: list[str] = field(default_factory=list)


@dataclass
class SimilarTitle:
    id: int | str | None
    title: str
    score: float


def find_similar_titles(
    title: str,
    keywords: Iterable[str],
    existing: Iterable[TitleCandidate],
    threshold: float = DEFAULT_THRESHOLD,
    weights: Weights = DEFAULT_WEIGHTS,
    include_title_terms: bool = True,
) -> list[SimilarTitle]:
    """Return existing titles whose combined score meets the threshold, best first.

    With ``include_title_terms`` the keyword axis also counts the significant
    words of each title, so two projects that share most of their title words
    are compared on vocabulary as well as spelling.
    """
    candidate_terms = normalize_keywords(keywords)
    if include_title_terms:
        candidate_terms |= title_terms(title)

    matches: list[SimilarTitle] = []
    for item in existing:
        item_terms = normalize_keywords(item.keywords)
        if include_title_terms:
            item_terms |= title_terms(item.title)

        score = combined_score(
            string_similarity(title, item.title),
            jaccard_index(candidate_terms, item_terms),
            weights,
        )
        if score >= threshold:
            matches.append(SimilarTitle(id=item.id, title=item.title, score=round(score, 2)))

    return sorted(matches, key=lambda match: match.score, reverse=True)
