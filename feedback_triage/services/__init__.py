"""Service integrations for the Feedback Triage Engine."""

from feedback_triage.services.anthropic_client import AnthropicClient
from feedback_triage.services.trace_recorder import TraceRecorder
from feedback_triage.services.task_queue import TriageQueue

__all__ = [
    "AnthropicClient",
    "TraceRecorder",
    "TriageQueue",
]
