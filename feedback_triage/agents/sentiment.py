"""Sentiment and urgency estimation from fixed word lists.

Purely local: no model call, no I/O. Kept separate from classification.
"""

import logging
from dataclasses import dataclass

from feedback_triage.models.enums import Sentiment

logger = logging.getLogger(__name__)


POSITIVE_TERMS = ["love", "great", "amazing", "thank", "awesome", "excited", "delight", "helpful"]
NEGATIVE_TERMS = ["crash", "broken", "hate", "pain", "urgent", "issue", "problem", "hard"]
URGENCY_TERMS = ["urgent", "critical", "blocker", "important", "now"]

EMOTION_TAGS = {
    Sentiment.POSITIVE: "Excitement",
    Sentiment.NEGATIVE: "Frustration",
    Sentiment.MIXED: "Conflicted",
    Sentiment.NEUTRAL: "Curiosity",
}


@dataclass
class SentimentReading:
    """Sentiment, intensity and triage tags for one piece of feedback."""
    sentiment: Sentiment
    intensity: int
    emotion: str
    impact: str
    urgency: str
    positive_hits: int
    negative_hits: int
    urgency_hits: int


def count_terms(text: str, terms: list[str]) -> int:
    """Count how many terms appear in text (each term counts once)."""
    return sum(1 for term in terms if term in text)


class SentimentAgent:
    """Lexicon-based sentiment and urgency estimator."""

    def analyze(self, text: str, vote_count: int = 0) -> SentimentReading:
        lowered = (text or "").lower()

        pos = count_terms(lowered, POSITIVE_TERMS)
        neg = count_terms(lowered, NEGATIVE_TERMS)
        urg = count_terms(lowered, URGENCY_TERMS)

        intensity = max(0, min(100, 60 + pos * 12 - neg * 15 + urg * 5))

        if pos > neg + 1:
            sentiment = Sentiment.POSITIVE
        elif neg > pos + 1:
            sentiment = Sentiment.NEGATIVE
        elif pos > 0 and neg > 0:
            sentiment = Sentiment.MIXED
        else:
            sentiment = Sentiment.NEUTRAL

        if sentiment is Sentiment.NEUTRAL:
            if intensity >= 70:
                sentiment = Sentiment.POSITIVE
            elif intensity <= 40:
                sentiment = Sentiment.NEGATIVE

        reading = SentimentReading(
            sentiment=sentiment,
            intensity=intensity,
            emotion=EMOTION_TAGS[sentiment],
            impact=self._impact_tag(vote_count),
            urgency=self._urgency_tag(urg),
            positive_hits=pos,
            negative_hits=neg,
            urgency_hits=urg,
        )

        logger.debug(
            f"Sentiment {sentiment.value} (intensity {intensity}, "
            f"+{pos}/-{neg}/!{urg})"
        )
        return reading

    def _impact_tag(self, vote_count: int) -> str:
        if vote_count >= 40:
            return "High impact"
        elif vote_count >= 20:
            return "Moderate impact"
        return "Early traction"

    def _urgency_tag(self, urgency_hits: int) -> str:
        if urgency_hits >= 2:
            return "Action needed this sprint"
        elif urgency_hits == 1:
            return "Review before next release"
        return "Schedule in roadmap review"
