"""Agents that enrich feedback items."""

from feedback_triage.agents.classification import ClassificationAgent, Classification
from feedback_triage.agents.duplicates import DuplicateDetector, DuplicateCandidate, DuplicateOptions
from feedback_triage.agents.priority import PriorityAgent, PriorityAssessment
from feedback_triage.agents.sentiment import SentimentAgent, SentimentReading

__all__ = [
    "ClassificationAgent",
    "Classification",
    "DuplicateDetector",
    "DuplicateCandidate",
    "DuplicateOptions",
    "PriorityAgent",
    "PriorityAssessment",
    "SentimentAgent",
    "SentimentReading",
]
