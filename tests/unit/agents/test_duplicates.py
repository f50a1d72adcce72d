"""Unit tests for DuplicateDetector."""

import pytest

import anthropic
import httpx

from feedback_triage.agents.duplicates import (
    DuplicateDetector,
    DuplicateOptions,
    FeedbackText,
    classify_similarity,
)
from feedback_triage.exceptions import DuplicateCheckUnavailable, InvalidInput
from feedback_triage.services.anthropic_client import SimilarityScore


@pytest.fixture
def target():
    return FeedbackText(id="target", title="Add dark mode", description="Too bright at night")


@pytest.fixture
def candidates():
    return [
        FeedbackText(id=f"c{i}", title=f"Candidate {i}", description="")
        for i in range(5)
    ]


class TestFindDuplicates:
    """Tests for find_duplicates method."""

    def test_returns_matches_above_threshold_sorted(self, mock_anthropic, target, candidates):
        mock_anthropic.score_similarity.return_value = [
            SimilarityScore(index=0, score=0.3, reason="Unrelated"),
            SimilarityScore(index=1, score=0.72, reason="Overlapping request"),
            SimilarityScore(index=2, score=0.5, reason=""),
            SimilarityScore(index=3, score=0.93, reason="Same request"),
            SimilarityScore(index=4, score=0.1, reason=""),
        ]
        detector = DuplicateDetector(anthropic_client=mock_anthropic)

        results = detector.find_duplicates(target, candidates, DuplicateOptions(threshold=0.7))

        assert len(results) == 2
        assert [r.candidate_id for r in results] == ["c3", "c1"]
        assert results[0].score >= results[1].score
        assert all(r.candidate_id != target.id for r in results)
        assert all(r.target_id == "target" for r in results)

    def test_target_and_merged_items_are_never_scored(self, mock_anthropic, target):
        pool = [
            FeedbackText(id="target", title="Add dark mode"),
            FeedbackText(id="merged", title="Dark theme", duplicate_of_id="other"),
            FeedbackText(id="open", title="Night mode"),
        ]
        mock_anthropic.score_similarity.return_value = [
            SimilarityScore(index=0, score=0.9, reason="Same"),
        ]
        detector = DuplicateDetector(anthropic_client=mock_anthropic)

        results = detector.find_duplicates(target, pool)

        texts = mock_anthropic.score_similarity.call_args.kwargs["candidate_texts"]
        assert texts == ["Night mode"]
        assert [r.candidate_id for r in results] == ["open"]

    def test_empty_candidates_make_no_external_call(self, mock_anthropic, target):
        detector = DuplicateDetector(anthropic_client=mock_anthropic)

        assert detector.find_duplicates(target, []) == []
        mock_anthropic.score_similarity.assert_not_called()

    def test_results_truncated_to_max_results(self, mock_anthropic, target, candidates):
        mock_anthropic.score_similarity.return_value = [
            SimilarityScore(index=i, score=0.8 + i * 0.01, reason="Close") for i in range(5)
        ]
        detector = DuplicateDetector(anthropic_client=mock_anthropic)

        results = detector.find_duplicates(target, candidates, DuplicateOptions(max_results=2))

        assert [r.candidate_id for r in results] == ["c4", "c3"]

    def test_candidate_set_is_capped(self, mock_anthropic, target):
        pool = [FeedbackText(id=f"c{i}", title=f"Item {i}") for i in range(30)]
        mock_anthropic.score_similarity.return_value = []
        detector = DuplicateDetector(anthropic_client=mock_anthropic, candidate_limit=15)

        detector.find_duplicates(target, pool)

        assert len(mock_anthropic.score_similarity.call_args.kwargs["candidate_texts"]) == 15

    def test_ties_break_by_candidate_id(self, mock_anthropic, target):
        pool = [FeedbackText(id="b", title="B"), FeedbackText(id="a", title="A")]
        mock_anthropic.score_similarity.return_value = [
            SimilarityScore(index=0, score=0.8, reason="x"),
            SimilarityScore(index=1, score=0.8, reason="y"),
        ]
        detector = DuplicateDetector(anthropic_client=mock_anthropic)

        results = detector.find_duplicates(target, pool)

        assert [r.candidate_id for r in results] == ["a", "b"]

    def test_generated_reason_when_model_gives_none(self, mock_anthropic, target):
        pool = [FeedbackText(id="c0", title="Dark theme please")]
        mock_anthropic.score_similarity.return_value = [
            SimilarityScore(index=0, score=0.82, reason=""),
        ]
        detector = DuplicateDetector(anthropic_client=mock_anthropic)

        results = detector.find_duplicates(target, pool)

        assert results[0].reason == "82% similar: Dark theme please"

    def test_out_of_range_scores_are_clamped_and_unknown_indexes_ignored(
        self, mock_anthropic, target
    ):
        pool = [FeedbackText(id="c0", title="Dark theme")]
        mock_anthropic.score_similarity.return_value = [
            SimilarityScore(index=0, score=1.7, reason="Same"),
            SimilarityScore(index=9, score=0.99, reason="Hallucinated"),
        ]
        detector = DuplicateDetector(anthropic_client=mock_anthropic)

        results = detector.find_duplicates(target, pool)

        assert len(results) == 1
        assert results[0].score == 1.0
        assert results[0].duplicate_type == "exact"
        assert results[0].merge_recommendation == "merge"

    def test_related_matches_need_include_related(self, mock_anthropic, target):
        pool = [FeedbackText(id="c0", title="Theme editor")]
        mock_anthropic.score_similarity.return_value = [
            SimilarityScore(index=0, score=0.65, reason="Related"),
        ]
        detector = DuplicateDetector(anthropic_client=mock_anthropic)

        assert detector.find_duplicates(target, pool, DuplicateOptions(threshold=0.6)) == []

        results = detector.find_duplicates(
            target, pool, DuplicateOptions(threshold=0.6, include_related=True)
        )
        assert results[0].duplicate_type == "related"
        assert results[0].merge_recommendation == "keep_separate"

    def test_api_error_becomes_duplicate_check_unavailable(self, mock_anthropic, target, candidates):
        request = httpx.Request("POST", "https://api.anthropic.com/v1/messages")
        mock_anthropic.score_similarity.side_effect = anthropic.APIConnectionError(request=request)
        detector = DuplicateDetector(anthropic_client=mock_anthropic)

        with pytest.raises(DuplicateCheckUnavailable):
            detector.find_duplicates(target, candidates)

    def test_unparseable_response_becomes_duplicate_check_unavailable(
        self, mock_anthropic, target, candidates
    ):
        mock_anthropic.score_similarity.side_effect = ValueError("Unparseable similarity response")
        detector = DuplicateDetector(anthropic_client=mock_anthropic)

        with pytest.raises(DuplicateCheckUnavailable):
            detector.find_duplicates(target, candidates)


class TestDuplicateOptions:
    """Tests for option validation."""

    @pytest.mark.parametrize("kwargs", [
        {"threshold": -0.1},
        {"threshold": 1.5},
        {"max_results": 0},
    ])
    def test_invalid_options_rejected(self, kwargs):
        with pytest.raises(InvalidInput):
            DuplicateOptions(**kwargs)

    def test_effective_threshold_never_below_partial_band(self):
        assert DuplicateOptions(threshold=0.5).effective_threshold == 0.7
        assert DuplicateOptions(threshold=0.9).effective_threshold == 0.9
        assert DuplicateOptions(threshold=0.5, include_related=True).effective_threshold == 0.5


@pytest.mark.parametrize("score,expected", [
    (0.97, ("exact", "merge")),
    (0.9, ("semantic", "merge")),
    (0.75, ("partial", "link")),
    (0.62, ("related", "keep_separate")),
    (0.2, ("none", "keep_separate")),
])
def test_classify_similarity_bands(score, expected):
    assert classify_similarity(score) == expected
