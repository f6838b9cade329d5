from __future__ import annotations

import pytest

from app.pipeline.similarity import (
    TitleCandidate,
    Weights,
    combined_score,
    find_similar_titles,
    jaccard_index,
    keyword_overlap,
    levenshtein_distance,
    string_similarity,
)


def test_levenshtein_distance_counts_single_character_edits() -> None:
    assert levenshtein_distance("kitten", "sitting") == 3
    assert levenshtein_distance("", "abc") == 3
    assert levenshtein_distance(["a", "b"], ["a", "b"]) == 0


@pytest.mark.parametrize("value", ["a", "Smart Attendance", "  padded  "])
def test_string_similarity_of_identical_strings_is_one(value: str) -> None:
    assert string_similarity(value, value) == 1.0


def test_string_similarity_normalizes_case_and_whitespace() -> None:
    assert string_similarity("", "") == 1.0
    assert string_similarity("  Hello World", "hello world ") == 1.0
    assert string_similarity("abc", "xyz") == 0.0
    assert string_similarity("abcd", "abcx") == pytest.approx(0.75)


def test_keyword_overlap_of_two_empty_lists_is_zero() -> None:
    assert keyword_overlap([], []) == 0
    assert jaccard_index({"a"}, set()) == 0
    assert keyword_overlap(["IoT", "Attendance"], ["iot", "attendance "]) == 1.0
    assert keyword_overlap(["IoT", "attendance"], ["IoT", "biometric"]) == pytest.approx(1 / 3)


def test_combined_score_uses_configured_weights() -> None:
    assert combined_score(1.0, 0.0) == pytest.approx(0.7)
    assert combined_score(1.0, 0.0, Weights(string=0.5, keyword=0.5)) == pytest.approx(0.5)


def test_near_duplicate_title_with_overlapping_keywords_is_flagged() -> None:
    existing = [TitleCandidate(id=7, title="Smart Attendance Monitoring System", keywords=["IoT", "biometric"])]

    matches = find_similar_titles("Smart Attendance System", ["IoT", "attendance"], existing)

    assert len(matches) == 1
    assert matches[0].id == 7
    assert matches[0].score > 0.65
    assert matches[0].score == 0.67


def test_similar_titles_are_sorted_and_filtered_by_threshold() -> None:
    existing = [
        TitleCandidate(id=1, title="Library Book Tracker", keywords=["rfid"]),
        TitleCandidate(id=2, title="Smart Attendance System", keywords=["iot"]),
        TitleCandidate(id=3, title="Smart Attendance Monitoring System", keywords=["iot"]),
    ]

    matches = find_similar_titles("Smart Attendance System", ["iot"], existing)

    assert [m.id for m in matches] == [2, 3]
    assert matches[0].score == 1.0
    assert matches[0].score >= matches[1].score


def test_keyword_less_titles_are_not_flagged_without_title_terms() -> None:
    existing = [TitleCandidate(id=1, title="Smart Attendance Monitoring System")]

    matches = find_similar_titles("Smart Attendance System", [], existing, include_title_terms=False)

    assert matches == []
