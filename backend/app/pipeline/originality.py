"""Full-document originality scoring against a corpus of earlier submissions."""

from __future__ import annotations

import re
from dataclasses import dataclass

from app.pipeline.similarity import DEFAULT_WEIGHTS, Weights, combined_score, jaccard_index, sequence_similarity

_PUNCTUATION = re.compile(r"[^\w\s]")
_MIN_TOKEN_LENGTH = 3
_MAX_MATCH_WEIGHT = 0.7
_MEAN_MATCH_WEIGHT = 0.3


def tokenize(text: str) -> list[str]:
    """Lower-case, strip punctuation and drop tokens shorter than three characters."""
    return [token for token in _PUNCTUATION.sub(" ", text.lower()).split() if len(token) >= _MIN_TOKEN_LENGTH]


def build_shingles(tokens: list[str], size: int = 3) -> set[str]:
    return {" ".join(tokens[i : i + size]) for i in range(len(tokens) - size + 1)}


@dataclass
class CorpusDocument:
    source_id: int | None
    title: str
    text: str


@dataclass
class SourceMatch:
    source_id: int | None
    title: str
    match_percentage: int


@dataclass
class OriginalityReport:
    score: int
    matches: list[SourceMatch]


class OriginalityScorer:
    """Scores a document against every corpus entry with the weighted similarity primitive.

    The string axis is an edit-distance ratio over the leading ``max_tokens``
    word tokens of each text; the keyword axis is the Jaccard index of word
    shingles. Each source's combined score becomes its match percentage. The
    overall originality blends the strongest match with the mean of the
    reported ones so that several partial copies also cost points.
    """

    def __init__(
        self,
        weights: Weights = DEFAULT_WEIGHTS,
        shingle_size: int = 3,
        max_tokens: int = 250,
        min_match_percentage: int = 5,
        max_matches: int = 10,
    ) -> None:
        if shingle_size <= 0:
            raise ValueError("shingle_size must be positive")
        self.weights = weights
        self.shingle_size = shingle_size
        self.max_tokens = max_tokens
        self.min_match_percentage = min_match_percentage
        self.max_matches = max_matches

    def similarity(self, tokens_a: list[str], shingles_a: set[str], tokens_b: list[str]) -> float:
        string_axis = sequence_similarity(tokens_a[: self.max_tokens], tokens_b[: self.max_tokens])
        keyword_axis = jaccard_index(shingles_a, build_shingles(tokens_b, self.shingle_size))
        return combined_score(string_axis, keyword_axis, self.weights)

    def score(self, text: str, corpus: list[CorpusDocument]) -> OriginalityReport:
        tokens = tokenize(text)
        shingles = build_shingles(tokens, self.shingle_size)

        matches: list[SourceMatch] = []
        max_similarity = 0.0
        for document in corpus:
            if not document.text or not document.text.strip():
                continue
            similarity = self.similarity(tokens, shingles, tokenize(document.text))
            max_similarity = max(max_similarity, similarity)
            percentage = round(similarity * 100)
            if percentage > self.min_match_percentage:
                matches.append(SourceMatch(source_id=document.source_id, title=document.title, match_percentage=percentage))

        matches.sort(key=lambda match: match.match_percentage, reverse=True)
        mean_reported = sum(match.match_percentage for match in matches) / len(matches) / 100 if matches else 0.0
        blended = _MAX_MATCH_WEIGHT * max_similarity + _MEAN_MATCH_WEIGHT * mean_reported
        originality = max(0, min(100, round((1 - blended) * 100)))
        return OriginalityReport(score=originality, matches=matches[: self.max_matches])
