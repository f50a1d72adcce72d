"""State definitions for the LangGraph triage workflow."""

import enum
import operator
from typing import Annotated, Any, Optional, TypedDict


class TriageStage(str, enum.Enum):
    """Per-item triage states.

    Each enrichment step ends in exactly one of its terminal states; a
    failed step ends in its ``*_skipped`` state with an error outcome.
    """
    CREATED = "created"
    CLASSIFYING = "classifying"
    CLASSIFIED = "classified"
    CLASSIFICATION_SKIPPED = "classification_skipped"
    DUPLICATE_CHECKING = "duplicate_checking"
    DUPLICATES_FOUND = "duplicates_found"
    NO_DUPLICATES = "no_duplicates"
    DUPLICATE_CHECK_SKIPPED = "duplicate_check_skipped"
    PRIORITY_SCORING = "priority_scoring"
    SCORED = "scored"
    SCORING_SKIPPED = "scoring_skipped"
    TRACED = "traced"


class StepRecord(TypedDict, total=False):
    """What one executed step decided, kept until traces are written."""
    feature: str
    outcome: str
    summary: str
    inputs: dict[str, Any]
    outputs: dict[str, Any]
    confidence: Optional[float]
    reasoning_steps: list[str]
    model_used: Optional[str]
    latency_ms: int


class TriageState(TypedDict, total=False):
    """State passed between LangGraph nodes for one feedback item."""
    # Item identifiers and content
    item_id: str
    workspace_id: str
    title: str
    description: str

    # Engagement signals and requester
    vote_count: int
    comment_count: int
    unique_voters: int
    author_tier: str
    author_company_size: Optional[str]
    author_is_champion: bool

    # Workspace context
    enrichment_enabled: bool
    company_strategy: str
    current_period_label: Optional[str]
    upcoming_milestone: Optional[str]

    # Progress
    stage: TriageStage
    classification_stage: TriageStage
    duplicate_stage: TriageStage
    priority_stage: TriageStage
    # Every stage entered, in order, appended by each node
    stage_history: Annotated[list[TriageStage], operator.add]

    # Step results
    classification: Optional[dict[str, Any]]
    duplicates: list[dict[str, Any]]
    priority: Optional[dict[str, Any]]
    sentiment: Optional[dict[str, Any]]

    # Executed steps, appended by each node
    steps: Annotated[list[StepRecord], operator.add]
    traces_written: int


def create_initial_state(
    item_id: str,
    workspace_id: str,
    title: str,
    description: Optional[str] = None,
    vote_count: int = 0,
    comment_count: int = 0,
    unique_voters: int = 0,
    author_tier: str = "free",
    author_company_size: Optional[str] = None,
    author_is_champion: bool = False,
    enrichment_enabled: bool = False,
    company_strategy: str = "growth",
    current_period_label: Optional[str] = None,
    upcoming_milestone: Optional[str] = None,
) -> TriageState:
    """Create the initial state for triaging one item.

    Returns:
        TriageState in the ``created`` stage
    """
    return TriageState(
        item_id=item_id,
        workspace_id=workspace_id,
        title=title,
        description=description or "",
        vote_count=vote_count,
        comment_count=comment_count,
        unique_voters=unique_voters,
        author_tier=author_tier,
        author_company_size=author_company_size,
        author_is_champion=author_is_champion,
        enrichment_enabled=enrichment_enabled,
        company_strategy=company_strategy,
        current_period_label=current_period_label,
        upcoming_milestone=upcoming_milestone,
        stage=TriageStage.CREATED,
        classification_stage=TriageStage.CREATED,
        duplicate_stage=TriageStage.CREATED,
        priority_stage=TriageStage.CREATED,
        stage_history=[TriageStage.CREATED],
        classification=None,
        duplicates=[],
        priority=None,
        sentiment=None,
        steps=[],
        traces_written=0,
    )
