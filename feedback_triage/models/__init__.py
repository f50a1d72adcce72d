"""Database models for the Feedback Triage Engine."""

from feedback_triage.models.base import Base, get_async_engine, get_async_session
from feedback_triage.models.workspace import Workspace
from feedback_triage.models.feedback_item import FeedbackItem
from feedback_triage.models.decision_trace import DecisionTrace

__all__ = [
    "Base",
    "get_async_engine",
    "get_async_session",
    "Workspace",
    "FeedbackItem",
    "DecisionTrace",
]
