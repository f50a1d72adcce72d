"""Classification agent for feedback categorization.

Uses Claude models to classify feedback with confidence-based escalation,
and validates the model's label against the fixed category set.
"""

import logging
from dataclasses import dataclass

import anthropic

from feedback_triage.config import CATEGORIES
from feedback_triage.exceptions import ClassificationUnavailable, InvalidInput
from feedback_triage.models.enums import Category
from feedback_triage.services.anthropic_client import AnthropicClient

logger = logging.getLogger(__name__)


@dataclass
class Classification:
    """Validated classification of one feedback item."""
    category: Category
    confidence: float
    reasoning: str
    model_used: str
    raw_label: str

    @property
    def was_remapped(self) -> bool:
        return self.raw_label != self.category.value


class ClassificationAgent:
    """Agent for categorizing feedback using Claude models.

    Implements a two-tier model strategy:
    1. Fast model (Haiku) for initial classification
    2. Quality model (Sonnet) for low-confidence escalation
    """

    def __init__(
        self,
        anthropic_client: AnthropicClient | None = None,
        escalation_threshold: float = 0.7,
    ):
        """Initialize classification agent.

        Args:
            anthropic_client: Anthropic client instance. If None, creates one.
            escalation_threshold: Below this confidence, ask the quality model.
        """
        self.client = anthropic_client or AnthropicClient()
        self.escalation_threshold = escalation_threshold
        self.categories = CATEGORIES

    def classify(self, title: str, description: str | None = None) -> Classification:
        """Classify a feedback item.

        Args:
            title: Feedback title (required, non-empty)
            description: Optional free-text description

        Returns:
            Classification with a category from the fixed set

        Raises:
            InvalidInput: If the title is missing or blank
            ClassificationUnavailable: If the model call fails or times out
        """
        if not title or not title.strip():
            raise InvalidInput("Feedback title is required for classification")

        logger.info(f"Classifying feedback: {title[:50]}...")

        try:
            result = self.client.classify_with_escalation(
                title=title.strip(),
                description=description or "",
                categories=self.categories,
                confidence_threshold=self.escalation_threshold,
            )
        except anthropic.APIError as e:
            raise ClassificationUnavailable(f"Classification call failed: {e}") from e

        category = Category.from_label(result.category)
        if category is Category.OTHER and result.category.strip().lower() != "other":
            logger.warning(
                f"Model returned unknown category {result.category!r}, mapped to {category.value}"
            )

        return Classification(
            category=category,
            confidence=min(1.0, max(0.0, result.confidence)),
            reasoning=result.reasoning,
            model_used=result.model_used,
            raw_label=result.category,
        )
