"""LangGraph workflows for feedback triage."""

from feedback_triage.workflows.state import TriageStage, TriageState, create_initial_state
from feedback_triage.workflows.triage import TriageOrchestrator

__all__ = ["TriageStage", "TriageState", "create_initial_state", "TriageOrchestrator"]
