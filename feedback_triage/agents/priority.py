"""Priority Agent for multi-factor business-impact scoring.

Combines seven factors into a weighted composite:
- Revenue impact, user reach, risk mitigation, user satisfaction are computed
  locally from engagement signals and requester context
- Strategic alignment, implementation effort (ease), competitive advantage are
  estimated by Claude from the feedback text

Weights depend on the workspace's company strategy.
"""

import logging
from dataclasses import dataclass, field
from typing import Optional

import anthropic

from feedback_triage.exceptions import InvalidInput, PriorityScoringUnavailable
from feedback_triage.models.enums import CompanyStrategy, PlanTier, PriorityLevel
from feedback_triage.services.anthropic_client import AnthropicClient

logger = logging.getLogger(__name__)


# Factor declaration order; used to break ties for the dominant factor
FACTORS = (
    "revenue_impact",
    "user_reach",
    "strategic_alignment",
    "implementation_effort",
    "competitive_advantage",
    "risk_mitigation",
    "user_satisfaction",
)

# Factor weights per company strategy
WEIGHT_PROFILES = {
    CompanyStrategy.GROWTH: {
        "revenue_impact": 0.20,
        "user_reach": 0.25,
        "strategic_alignment": 0.10,
        "implementation_effort": 0.10,
        "competitive_advantage": 0.20,
        "risk_mitigation": 0.05,
        "user_satisfaction": 0.10,
    },
    CompanyStrategy.RETENTION: {
        "revenue_impact": 0.15,
        "user_reach": 0.15,
        "strategic_alignment": 0.10,
        "implementation_effort": 0.10,
        "competitive_advantage": 0.10,
        "risk_mitigation": 0.15,
        "user_satisfaction": 0.25,
    },
    CompanyStrategy.ENTERPRISE: {
        "revenue_impact": 0.25,
        "user_reach": 0.10,
        "strategic_alignment": 0.15,
        "implementation_effort": 0.05,
        "competitive_advantage": 0.15,
        "risk_mitigation": 0.20,
        "user_satisfaction": 0.10,
    },
    CompanyStrategy.PROFITABILITY: {
        "revenue_impact": 0.30,
        "user_reach": 0.10,
        "strategic_alignment": 0.15,
        "implementation_effort": 0.20,
        "competitive_advantage": 0.10,
        "risk_mitigation": 0.10,
        "user_satisfaction": 0.05,
    },
}

TIER_MULTIPLIERS = {
    PlanTier.FREE: 1.0,
    PlanTier.PRO: 1.1,
    PlanTier.ENTERPRISE: 1.3,
}

TIER_REVENUE_BASE = {
    PlanTier.FREE: 2.0,
    PlanTier.PRO: 4.0,
    PlanTier.ENTERPRISE: 6.0,
}

COMPANY_SIZE_BONUS = {
    "enterprise": 2.0,
    "large": 2.0,
    "mid": 1.0,
    "medium": 1.0,
}

SUGGESTED_ACTIONS = {
    PriorityLevel.CRITICAL: "ship now",
    PriorityLevel.HIGH: "plan next sprint",
    PriorityLevel.MEDIUM: "backlog",
    PriorityLevel.LOW: "monitor",
}

FACTOR_LABELS = {
    "revenue_impact": "revenue impact",
    "user_reach": "user reach",
    "strategic_alignment": "strategic alignment",
    "implementation_effort": "ease of implementation",
    "competitive_advantage": "competitive advantage",
    "risk_mitigation": "risk mitigation",
    "user_satisfaction": "user satisfaction",
}


@dataclass
class PostSignals:
    """Engagement signals for a feedback item."""
    vote_count: int = 0
    comment_count: int = 0
    unique_voters: int = 0
    percentage_of_active_users: float = 0.0
    similar_posts_count: int = 0

    def __post_init__(self):
        for name in ("vote_count", "comment_count", "unique_voters", "similar_posts_count"):
            if getattr(self, name) < 0:
                raise InvalidInput(f"{name} cannot be negative")
        if self.percentage_of_active_users < 0:
            raise InvalidInput("percentage_of_active_users cannot be negative")


@dataclass
class RequesterContext:
    """Who asked for it."""
    tier: PlanTier = PlanTier.FREE
    company_size: Optional[str] = None
    is_champion: bool = False


@dataclass
class BusinessContext:
    """Workspace-level business context."""
    company_strategy: CompanyStrategy = CompanyStrategy.GROWTH
    current_period_label: Optional[str] = None
    upcoming_milestone: Optional[str] = None


@dataclass
class PriorityAssessment:
    """Scored priority of one feedback item. Never persisted as a whole."""
    factors: dict[str, float]
    weights: dict[str, float]
    composite: float
    display_score: int
    level: PriorityLevel
    suggested_action: str
    justification: str
    dominant_factor: str
    runner_up_factor: str
    model_used: Optional[str] = None
    reasoning: str = ""
    flags: dict[str, bool] = field(default_factory=dict)


def _clamp(value: float, low: float = 0.0, high: float = 10.0) -> float:
    return min(high, max(low, value))


def score_to_level(composite: float) -> PriorityLevel:
    """Convert a 0-10 composite to a priority level."""
    if composite >= 8:
        return PriorityLevel.CRITICAL
    elif composite >= 6:
        return PriorityLevel.HIGH
    elif composite >= 4:
        return PriorityLevel.MEDIUM
    else:
        return PriorityLevel.LOW


class PriorityAgent:
    """Agent for scoring feedback priority using multiple factors."""

    def __init__(self, anthropic_client: Optional[AnthropicClient] = None):
        self.client = anthropic_client or AnthropicClient()

    def assess(
        self,
        item_text: tuple[str, str],
        signals: PostSignals,
        requester: Optional[RequesterContext] = None,
        business: Optional[BusinessContext] = None,
    ) -> PriorityAssessment:
        """Score a feedback item.

        Args:
            item_text: (title, description) of the feedback
            signals: Engagement counters
            requester: Author tier, company size and champion flag
            business: Company strategy and milestone

        Returns:
            PriorityAssessment with composite, display score and level

        Raises:
            PriorityScoringUnavailable: If the text-derived estimates fail
        """
        requester = requester or RequesterContext()
        business = business or BusinessContext()
        title, description = item_text

        logger.info(f"Scoring priority for: {title[:50]}...")

        try:
            estimates = self.client.estimate_priority_factors(
                title=title,
                description=description or "",
                strategy=business.company_strategy.value,
                milestone=business.upcoming_milestone,
            )
        except (anthropic.APIError, ValueError) as e:
            raise PriorityScoringUnavailable(f"Priority estimation failed: {e}") from e

        is_bug = estimates["is_bug"]
        frustration = estimates["frustration"]

        factors = {
            "revenue_impact": self._score_revenue_impact(signals, requester),
            "user_reach": self._score_user_reach(signals),
            "strategic_alignment": _clamp(estimates["strategic_alignment"]),
            "implementation_effort": _clamp(estimates["implementation_ease"]),
            "competitive_advantage": _clamp(estimates["competitive_pressure"]),
            "risk_mitigation": self._score_risk_mitigation(signals, is_bug),
            "user_satisfaction": self._score_user_satisfaction(signals, frustration),
        }

        weights = WEIGHT_PROFILES[business.company_strategy]
        weighted_sum = sum(factors[name] * weights[name] for name in FACTORS)
        multiplier = TIER_MULTIPLIERS[requester.tier]
        composite = round(min(10.0, weighted_sum * multiplier), 1)

        level = score_to_level(composite)
        dominant, runner_up = self._rank_factors(factors, weights)

        justification = (
            f"Driven by {FACTOR_LABELS[dominant]} ({factors[dominant]:.1f}/10), "
            f"followed by {FACTOR_LABELS[runner_up]} ({factors[runner_up]:.1f}/10)"
        )
        if estimates.get("reasoning"):
            justification += f". {estimates['reasoning']}"

        logger.info(
            f"Priority: {level.value} (composite: {composite}, "
            f"strategy: {business.company_strategy.value}, tier: {requester.tier.value})"
        )

        return PriorityAssessment(
            factors=factors,
            weights=dict(weights),
            composite=composite,
            display_score=round(composite * 10),
            level=level,
            suggested_action=SUGGESTED_ACTIONS[level],
            justification=justification,
            dominant_factor=dominant,
            runner_up_factor=runner_up,
            model_used=self.client.config.fast_model,
            reasoning=estimates.get("reasoning", ""),
            flags={"is_bug": is_bug, "frustration": frustration},
        )

    def _rank_factors(
        self, factors: dict[str, float], weights: dict[str, float]
    ) -> tuple[str, str]:
        """Return the dominant and runner-up factors by weighted contribution."""
        ranked = sorted(
            FACTORS,
            key=lambda name: (
                -(factors[name] * weights[name]),
                -weights[name],
                FACTORS.index(name),
            ),
        )
        return ranked[0], ranked[1]

    def _score_revenue_impact(self, signals: PostSignals, requester: RequesterContext) -> float:
        score = TIER_REVENUE_BASE[requester.tier]
        score += COMPANY_SIZE_BONUS.get((requester.company_size or "").lower(), 0.0)
        if requester.is_champion:
            score += 1.0
        score += min(2.0, signals.vote_count / 10)
        return _clamp(score)

    def _score_user_reach(self, signals: PostSignals) -> float:
        score = min(4.0, signals.percentage_of_active_users / 5)
        score += min(3.0, signals.unique_voters / 5)
        score += min(3.0, signals.vote_count / 10)
        return _clamp(score)

    def _score_risk_mitigation(self, signals: PostSignals, is_bug: bool) -> float:
        # Bugs cause churn
        score = 5.0 if is_bug else 1.0
        score += min(3.0, float(signals.similar_posts_count))
        score += min(2.0, signals.vote_count / 20)
        return _clamp(score)

    def _score_user_satisfaction(self, signals: PostSignals, frustration: bool) -> float:
        score = 2.0
        score += min(4.0, signals.vote_count / 10)
        score += min(2.0, signals.comment_count / 5)
        if frustration:
            score += 2.0
        return _clamp(score)
