"""Duplicate detection agent.

Scores a bounded set of existing feedback against a new item and returns
the likely duplicates, ranked by similarity.
"""

import logging
from dataclasses import dataclass
from typing import Optional

import anthropic

from feedback_triage.exceptions import DuplicateCheckUnavailable, InvalidInput
from feedback_triage.services.anthropic_client import AnthropicClient

logger = logging.getLogger(__name__)


# Similarity bands used to label matches
THRESHOLDS = {
    "exact": 0.95,     # Nearly identical
    "semantic": 0.85,  # Same issue, different wording
    "partial": 0.70,   # Partially overlapping
    "related": 0.60,   # Related but distinct
}


@dataclass
class FeedbackText:
    """Minimal view of a feedback item for similarity scoring."""
    id: str
    title: str
    description: str = ""
    duplicate_of_id: Optional[str] = None

    @property
    def text(self) -> str:
        return f"{self.title} {self.description}".strip()


@dataclass
class DuplicateOptions:
    threshold: float = 0.7
    max_results: int = 4
    include_related: bool = False

    def __post_init__(self):
        if not 0.0 <= self.threshold <= 1.0:
            raise InvalidInput(f"threshold must be within [0, 1], got {self.threshold}")
        if self.max_results < 1:
            raise InvalidInput(f"max_results must be at least 1, got {self.max_results}")

    @property
    def effective_threshold(self) -> float:
        """Threshold actually applied; related-only matches need include_related."""
        if self.include_related:
            return self.threshold
        return max(self.threshold, THRESHOLDS["partial"])


@dataclass
class DuplicateCandidate:
    """A likely duplicate of the target item. Never persisted."""
    target_id: str
    candidate_id: str
    score: float
    reason: str
    duplicate_type: str
    merge_recommendation: str


def classify_similarity(score: float) -> tuple[str, str]:
    """Map a similarity score to (duplicate_type, merge_recommendation)."""
    if score >= THRESHOLDS["exact"]:
        return "exact", "merge"
    elif score >= THRESHOLDS["semantic"]:
        return "semantic", "merge"
    elif score >= THRESHOLDS["partial"]:
        return "partial", "link"
    elif score >= THRESHOLDS["related"]:
        return "related", "keep_separate"
    else:
        return "none", "keep_separate"


class DuplicateDetector:
    """Finds likely duplicates of a feedback item among recent items."""

    def __init__(
        self,
        anthropic_client: Optional[AnthropicClient] = None,
        candidate_limit: int = 15,
    ):
        self.client = anthropic_client or AnthropicClient()
        self.candidate_limit = candidate_limit

    def eligible_candidates(
        self, target: FeedbackText, candidates: list[FeedbackText]
    ) -> list[FeedbackText]:
        """Drop the target itself and already-merged items, then cap the set."""
        eligible = [
            c for c in candidates
            if c.id != target.id and c.duplicate_of_id is None
        ]
        return eligible[: self.candidate_limit]

    def find_duplicates(
        self,
        target: FeedbackText,
        candidates: list[FeedbackText],
        options: Optional[DuplicateOptions] = None,
    ) -> list[DuplicateCandidate]:
        """Return candidates at or above the threshold, most similar first.

        Args:
            target: The new feedback item
            candidates: Existing items, most recent or most relevant first
            options: Threshold, result cap and related-match toggle

        Returns:
            Ranked DuplicateCandidate list, possibly empty

        Raises:
            DuplicateCheckUnavailable: If the similarity call fails or times out
        """
        options = options or DuplicateOptions()
        pool = self.eligible_candidates(target, candidates)
        if not pool:
            return []

        try:
            scores = self.client.score_similarity(
                target_text=target.text,
                candidate_texts=[c.text for c in pool],
            )
        except (anthropic.APIError, ValueError) as e:
            raise DuplicateCheckUnavailable(f"Similarity scoring failed: {e}") from e

        threshold = options.effective_threshold
        best: dict[str, DuplicateCandidate] = {}

        for entry in scores:
            if not 0 <= entry.index < len(pool):
                logger.warning(f"Ignoring similarity score for unknown index {entry.index}")
                continue

            candidate = pool[entry.index]
            score = min(1.0, max(0.0, entry.score))
            if score < threshold:
                continue

            duplicate_type, recommendation = classify_similarity(score)
            reason = entry.reason.strip() or f"{score:.0%} similar: {candidate.title[:80]}"

            existing = best.get(candidate.id)
            if existing is None or score > existing.score:
                best[candidate.id] = DuplicateCandidate(
                    target_id=target.id,
                    candidate_id=candidate.id,
                    score=score,
                    reason=reason,
                    duplicate_type=duplicate_type,
                    merge_recommendation=recommendation,
                )

        ranked = sorted(best.values(), key=lambda d: (-d.score, d.candidate_id))
        results = ranked[: options.max_results]

        logger.info(
            f"Duplicate check for {target.id}: {len(results)} of {len(pool)} "
            f"candidates at or above {threshold:.2f}"
        )
        return results
