"""Closed value sets shared by the models, agents and workflow."""

import enum
import re


class Category(str, enum.Enum):
    """Feedback categories the classifier may assign."""
    FEATURE_REQUEST = "Feature Request"
    BUG = "Bug"
    IMPROVEMENT = "Improvement"
    UI_UX = "UI/UX"
    INTEGRATION = "Integration"
    PERFORMANCE = "Performance"
    DOCUMENTATION = "Documentation"
    OTHER = "Other"

    @classmethod
    def from_label(cls, label: str | None) -> "Category":
        """Map a raw model label onto the enumeration.

        Exact value, case-insensitive value and alphanumeric-only matches are
        accepted ("ui ux", "feature-request"). Anything else becomes OTHER.
        """
        if not label:
            return cls.OTHER

        cleaned = label.strip()
        for category in cls:
            if category.value == cleaned or category.value.lower() == cleaned.lower():
                return category

        normalized = _normalize(cleaned)
        for category in cls:
            if _normalize(category.value) == normalized:
                return category

        return cls.OTHER


def _normalize(value: str) -> str:
    return re.sub(r"[^a-z0-9]", "", value.lower())


class FeedbackStatus(str, enum.Enum):
    OPEN = "open"
    PLANNED = "planned"
    IN_PROGRESS = "in_progress"
    DONE = "done"
    DECLINED = "declined"


class PriorityLevel(str, enum.Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class Sentiment(str, enum.Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"
    MIXED = "mixed"


class PlanTier(str, enum.Enum):
    FREE = "free"
    PRO = "pro"
    ENTERPRISE = "enterprise"


class CompanyStrategy(str, enum.Enum):
    GROWTH = "growth"
    RETENTION = "retention"
    ENTERPRISE = "enterprise"
    PROFITABILITY = "profitability"


class TraceFeature(str, enum.Enum):
    """Automated decision kinds recorded in the audit trail."""
    CLASSIFICATION = "classification"
    DUPLICATE_DETECTION = "duplicate-detection"
    PRIORITY_SCORING = "priority-scoring"
    SENTIMENT_ANALYSIS = "sentiment-analysis"
    RECLASSIFICATION = "reclassification"


class StepOutcome(str, enum.Enum):
    SUCCESS = "success"
    ERROR = "error"
