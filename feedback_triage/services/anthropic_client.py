"""Anthropic Claude API client for feedback triage.

Provides a unified interface for Claude models with model selection
based on task complexity. Every call is a single attempt: failed calls are
retried by the next scheduled reclassification run, not here.
"""

import json
import logging
from dataclasses import dataclass
from typing import Any, Optional

import anthropic

from feedback_triage.config import get_config, AnthropicConfig

logger = logging.getLogger(__name__)


@dataclass
class ClassificationResult:
    """Raw result of feedback classification (label not yet validated)."""
    category: str
    confidence: float
    reasoning: str
    model_used: str
    input_tokens: int
    output_tokens: int


@dataclass
class SimilarityScore:
    """Similarity of one candidate text to the target text."""
    index: int
    score: float
    reason: str


def parse_json_content(content: str) -> Any:
    """Parse a JSON model response, tolerating markdown code fences."""
    content = content.strip()
    if content.startswith("```"):
        content = content.split("```")[1]
        if content.startswith("json"):
            content = content[4:]
        content = content.strip()
    return json.loads(content)


class AnthropicClient:
    """Anthropic Claude API client.

    Provides model selection based on task:
    - Claude Haiku: Fast/cheap for first-pass classification and scoring
    - Claude Sonnet: Quality model for low-confidence escalation
    """

    def __init__(self, config: Optional[AnthropicConfig] = None):
        """Initialize Anthropic client.

        Args:
            config: Anthropic configuration. If None, loads from environment.
        """
        self.config = config or get_config().anthropic
        self._client = None

    @property
    def client(self) -> anthropic.Anthropic:
        """Get or create Anthropic client."""
        if self._client is None:
            self._client = anthropic.Anthropic(
                api_key=self.config.api_key,
                timeout=self.config.timeout_seconds,
                max_retries=0,
            )
        return self._client

    def _complete(self, model: str, system: str, prompt: str, max_tokens: int):
        return self.client.messages.create(
            model=model,
            max_tokens=max_tokens,
            messages=[{"role": "user", "content": prompt}],
            system=system,
        )

    def classify_feedback(
        self,
        title: str,
        description: str,
        categories: dict[str, dict],
        use_quality_model: bool = False,
    ) -> ClassificationResult:
        """Classify a feedback item into a category.

        Args:
            title: Feedback title
            description: Feedback description (truncated to ~5k chars)
            categories: Dictionary of available categories with descriptions
            use_quality_model: If True, use Claude Sonnet instead of Haiku

        Returns:
            ClassificationResult with raw category label, confidence, and reasoning

        Raises:
            anthropic.APIError: On API failure or timeout
        """
        model = self.config.quality_model if use_quality_model else self.config.fast_model

        category_descriptions = "\n".join(
            f"- {name}: {info.get('description', 'No description')}"
            + (f" (signals: {', '.join(info['keywords'])})" if info.get("keywords") else "")
            for name, info in categories.items()
        )

        system_prompt = """You are an expert at categorizing SaaS product feedback. Your job is to categorize feedback accurately and explain your reasoning.

You must respond with ONLY a valid JSON object in this exact format:
{
  "category": "<exact category name from the list>",
  "confidence": <number between 0.0 and 1.0>,
  "reasoning": "<one sentence explaining why this category was chosen>"
}

Confidence guidelines:
- 0.9-1.0: Very certain (obvious keywords, unambiguous request)
- 0.7-0.9: Confident (good keyword/pattern match)
- 0.5-0.7: Uncertain (ambiguous, could fit multiple categories)
- Below 0.5: Low confidence (no clear signals)

Be conservative with confidence scores. If unsure, use a lower score."""

        user_prompt = f"""Categorize this feedback into exactly ONE of these categories:

{category_descriptions}

Feedback to categorize:
Title: {title}
Description:
{(description or '')[:5000]}

Respond with ONLY a JSON object, no other text."""

        response = self._complete(model, system_prompt, user_prompt, max_tokens=300)

        try:
            result = parse_json_content(response.content[0].text)
            category = result["category"]
            if not isinstance(category, str) or not category.strip():
                raise ValueError(f"category must be a non-empty string, got {category!r}")
            confidence = float(result["confidence"])
            reasoning = str(result.get("reasoning", ""))
        except (json.JSONDecodeError, KeyError, TypeError, ValueError) as e:
            logger.error(f"Failed to parse classification response: {e}")
            # Low-confidence result; the reclassification job will revisit it
            return ClassificationResult(
                category="Other",
                confidence=0.0,
                reasoning=f"Failed to parse model response: {str(e)[:100]}",
                model_used=model,
                input_tokens=0,
                output_tokens=0,
            )

        logger.info(
            f"Classified feedback as {category} "
            f"(confidence: {confidence:.2f}) using {model}"
        )

        return ClassificationResult(
            category=category,
            confidence=confidence,
            reasoning=reasoning,
            model_used=model,
            input_tokens=response.usage.input_tokens,
            output_tokens=response.usage.output_tokens,
        )

    def classify_with_escalation(
        self,
        title: str,
        description: str,
        categories: dict[str, dict],
        confidence_threshold: float = 0.7,
    ) -> ClassificationResult:
        """Classify feedback with automatic escalation to quality model.

        First tries the fast model (Haiku). If confidence is below threshold,
        escalates to quality model (Sonnet).

        Args:
            title: Feedback title
            description: Feedback description
            categories: Available categories
            confidence_threshold: Below this, escalate to quality model

        Returns:
            ClassificationResult from either fast or quality model
        """
        result = self.classify_feedback(
            title=title,
            description=description,
            categories=categories,
            use_quality_model=False,
        )

        if result.confidence < confidence_threshold:
            logger.info(
                f"Escalating classification from {result.model_used} "
                f"(confidence {result.confidence:.2f}) to quality model"
            )
            result = self.classify_feedback(
                title=title,
                description=description,
                categories=categories,
                use_quality_model=True,
            )

        return result

    def score_similarity(
        self,
        target_text: str,
        candidate_texts: list[str],
    ) -> list[SimilarityScore]:
        """Score how similar each candidate is to the target feedback.

        Args:
            target_text: Title and description of the new feedback
            candidate_texts: Texts of existing feedback items, in order

        Returns:
            One SimilarityScore per candidate the model scored

        Raises:
            anthropic.APIError: On API failure or timeout
            ValueError: If the response cannot be parsed
        """
        system_prompt = """You are an expert at identifying duplicate feedback in a SaaS product feedback system.

For each candidate, judge whether it describes the same underlying problem or request as the target:
- Root problem: are users describing the same issue?
- Solution space: would implementing one satisfy both?
- User intent: are users trying to achieve the same goal?

Respond with ONLY a valid JSON array, one entry per candidate:
[{"index": <candidate number>, "score": <0.0-1.0>, "reason": "<short explanation>"}]

Score guidelines:
- 0.95-1.0: Nearly identical
- 0.85-0.95: Same issue, different wording
- 0.70-0.85: Partially overlapping
- 0.60-0.70: Related but distinct
- Below 0.60: Unrelated"""

        numbered = "\n".join(
            f"{i}. {text[:1000]}" for i, text in enumerate(candidate_texts)
        )
        user_prompt = f"""Target feedback:
{target_text[:2000]}

Candidates:
{numbered}

Respond with ONLY a JSON array."""

        response = self._complete(
            self.config.fast_model, system_prompt, user_prompt, max_tokens=800
        )

        try:
            raw_scores = parse_json_content(response.content[0].text)
            scores = [
                SimilarityScore(
                    index=int(entry["index"]),
                    score=float(entry["score"]),
                    reason=str(entry.get("reason", "")),
                )
                for entry in raw_scores
            ]
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise ValueError(f"Unparseable similarity response: {e}") from e

        logger.info(f"Scored {len(scores)} duplicate candidates")
        return scores

    def estimate_priority_factors(
        self,
        title: str,
        description: str,
        strategy: str,
        milestone: Optional[str] = None,
    ) -> dict[str, Any]:
        """Estimate the text-derived priority factors for a feedback item.

        Args:
            title: Feedback title
            description: Feedback description
            strategy: Workspace company strategy
            milestone: Upcoming business milestone, if any

        Returns:
            Dictionary with strategic_alignment, implementation_ease,
            competitive_pressure (0-10), is_bug, frustration and reasoning

        Raises:
            anthropic.APIError: On API failure or timeout
            ValueError: If the response cannot be parsed
        """
        system_prompt = f"""You are a senior product strategist for a SaaS company. Estimate prioritization factors for a piece of feedback.

Company strategy: {strategy}
Upcoming milestone: {milestone or 'none'}

Respond with ONLY a valid JSON object:
{{
  "strategic_alignment": <0-10, fit with the company strategy>,
  "implementation_ease": <0-10, 10 = a day of work, 0 = months of work>,
  "competitive_pressure": <0-10, 8-10 differentiating, 6-8 table stakes, 2-4 me-too>,
  "is_bug": <true if this reports broken existing behaviour>,
  "frustration": <true if the author expresses frustration or blockage>,
  "reasoning": "<one sentence business case>"
}}"""

        user_prompt = f"""Estimate prioritization factors for this feedback:

Title: {title}
Description:
{(description or '')[:3000]}

Respond with ONLY a JSON object."""

        response = self._complete(
            self.config.fast_model, system_prompt, user_prompt, max_tokens=300
        )

        try:
            result = parse_json_content(response.content[0].text)
            factors = {
                "strategic_alignment": float(result["strategic_alignment"]),
                "implementation_ease": float(result["implementation_ease"]),
                "competitive_pressure": float(result["competitive_pressure"]),
                "is_bug": bool(result.get("is_bug", False)),
                "frustration": bool(result.get("frustration", False)),
                "reasoning": str(result.get("reasoning", "")),
            }
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise ValueError(f"Unparseable priority response: {e}") from e

        return factors
