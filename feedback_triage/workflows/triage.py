"""Triage workflow using LangGraph.

Runs the enrichment pipeline for one feedback item:

1. Gate on the workspace's enrichment capability
2. Classify into a fixed category
3. Check for duplicates among recent items
4. Score priority
5. Estimate sentiment and urgency
6. Write one decision trace per executed step

Each model-backed step may fail independently; a failure ends that step in
its skipped state and the pipeline continues.
"""

import asyncio
import logging
import time
from dataclasses import asdict
from typing import Any, Callable, Literal, Optional

from langgraph.graph import StateGraph, START, END
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feedback_triage.agents.classification import ClassificationAgent
from feedback_triage.agents.duplicates import (
    DuplicateCandidate,
    DuplicateDetector,
    DuplicateOptions,
    FeedbackText,
)
from feedback_triage.agents.priority import (
    BusinessContext,
    PostSignals,
    PriorityAgent,
    RequesterContext,
)
from feedback_triage.agents.sentiment import SentimentAgent
from feedback_triage.config import TriageConfig
from feedback_triage.exceptions import (
    ClassificationUnavailable,
    DuplicateCheckUnavailable,
    PriorityScoringUnavailable,
    ServiceUnavailable,
)
from feedback_triage.models import FeedbackItem, Workspace, get_async_session
from feedback_triage.models.enums import CompanyStrategy, PlanTier, StepOutcome, TraceFeature
from feedback_triage.services.trace_recorder import TraceRecorder
from feedback_triage.workflows.state import (
    StepRecord,
    TriageStage,
    TriageState,
    create_initial_state,
)

logger = logging.getLogger(__name__)


def _elapsed_ms(started: float) -> int:
    return int((time.monotonic() - started) * 1000)


def _failed_step(
    feature: TraceFeature, inputs: dict[str, Any], error: ServiceUnavailable, latency_ms: int
) -> StepRecord:
    message = str(error) or error.kind
    return StepRecord(
        feature=feature.value,
        outcome=StepOutcome.ERROR.value,
        summary=f"{feature.value} failed: {message[:200]}",
        inputs=inputs,
        outputs={"error": error.kind, "message": message},
        confidence=0.0,
        reasoning_steps=[f"{error.kind}: {message}"],
        model_used=None,
        latency_ms=latency_ms,
    )


def _plan_tier(value: Optional[str]) -> PlanTier:
    try:
        return PlanTier((value or "free").lower())
    except ValueError:
        return PlanTier.FREE


def _strategy(value: Optional[str]) -> CompanyStrategy:
    try:
        return CompanyStrategy((value or "growth").lower())
    except ValueError:
        return CompanyStrategy.GROWTH


class TriageOrchestrator:
    """Runs the triage workflow for feedback items.

    Components are passed in explicitly; anything omitted is built from the
    triage config.
    """

    def __init__(
        self,
        classifier: Optional[ClassificationAgent] = None,
        duplicate_detector: Optional[DuplicateDetector] = None,
        priority_agent: Optional[PriorityAgent] = None,
        sentiment_agent: Optional[SentimentAgent] = None,
        trace_recorder: Optional[TraceRecorder] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        config: Optional[TriageConfig] = None,
    ):
        self.config = config or TriageConfig()
        self.classifier = classifier or ClassificationAgent(
            escalation_threshold=self.config.escalation_threshold
        )
        self.duplicate_detector = duplicate_detector or DuplicateDetector(
            anthropic_client=self.classifier.client,
            candidate_limit=self.config.duplicate_candidate_limit,
        )
        self.priority_agent = priority_agent or PriorityAgent(
            anthropic_client=self.classifier.client
        )
        self.sentiment_agent = sentiment_agent or SentimentAgent()
        self.session_factory = session_factory or get_async_session()
        self.traces = trace_recorder or TraceRecorder(self.session_factory)
        self._workflow = None

    @property
    def workflow(self):
        """Get or create the compiled LangGraph workflow."""
        if self._workflow is None:
            self._workflow = self.create_workflow()
        return self._workflow

    def create_workflow(self):
        """Build the workflow.

        START -> gate -> classify -> check_duplicates -> score_priority
              -> analyze_sentiment -> record_traces -> END

        The gate routes straight to END for workspaces without enrichment.
        """
        workflow = StateGraph(TriageState)

        workflow.add_node("gate", self.gate)
        workflow.add_node("classify", self.classify)
        workflow.add_node("check_duplicates", self.check_duplicates)
        workflow.add_node("score_priority", self.score_priority)
        workflow.add_node("analyze_sentiment", self.analyze_sentiment)
        workflow.add_node("record_traces", self.record_traces)

        def route_after_gate(state: TriageState) -> Literal["classify", "__end__"]:
            if state.get("enrichment_enabled"):
                return "classify"
            return END

        workflow.add_edge(START, "gate")
        workflow.add_conditional_edges(
            "gate",
            route_after_gate,
            {"classify": "classify", END: END},
        )
        workflow.add_edge("classify", "check_duplicates")
        workflow.add_edge("check_duplicates", "score_priority")
        workflow.add_edge("score_priority", "analyze_sentiment")
        workflow.add_edge("analyze_sentiment", "record_traces")
        workflow.add_edge("record_traces", END)

        return workflow.compile()

    async def triage(self, item_id: str) -> Optional[TriageState]:
        """Triage one persisted feedback item.

        Never raises for model failures; those end in the step's skipped
        state. Returns None if the item no longer exists.
        """
        async with self.session_factory() as session:
            item = await session.get(FeedbackItem, item_id)
            if item is None:
                logger.warning(f"Feedback item {item_id} not found, skipping triage")
                return None
            workspace = await session.get(Workspace, item.workspace_id)

            state = create_initial_state(
                item_id=item.id,
                workspace_id=item.workspace_id,
                title=item.title,
                description=item.description,
                vote_count=item.vote_count or 0,
                comment_count=item.comment_count or 0,
                unique_voters=item.unique_voters or 0,
                author_tier=item.author_tier,
                author_company_size=item.author_company_size,
                author_is_champion=bool(item.author_is_champion),
                enrichment_enabled=bool(workspace and workspace.has_enrichment),
                company_strategy=workspace.company_strategy if workspace else "growth",
                current_period_label=workspace.current_period_label if workspace else None,
                upcoming_milestone=workspace.upcoming_milestone if workspace else None,
            )

        logger.info(f"Triaging feedback {item_id}: {state['title'][:50]}...")
        final_state = await self.workflow.ainvoke(state)

        logger.info(
            f"Triage finished for {item_id}: stage={final_state['stage'].value}, "
            f"classification={final_state['classification_stage'].value}, "
            f"duplicates={final_state['duplicate_stage'].value}, "
            f"priority={final_state['priority_stage'].value}"
        )
        return final_state

    async def _call(self, func: Callable, *args, **kwargs):
        """Run a blocking agent call off the event loop with the step timeout."""
        return await asyncio.wait_for(
            asyncio.to_thread(func, *args, **kwargs),
            timeout=self.config.step_timeout_seconds,
        )

    async def _update_item(self, item_id: str, **fields) -> Optional[FeedbackItem]:
        async with self.session_factory() as session:
            item = await session.get(FeedbackItem, item_id)
            if item is None:
                return None
            for name, value in fields.items():
                setattr(item, name, value)
            await session.commit()
            return item

    # Nodes

    async def gate(self, state: TriageState) -> dict[str, Any]:
        if state.get("enrichment_enabled"):
            return {}

        logger.info(f"Workspace {state['workspace_id']} has no enrichment, skipping triage")
        return {
            "classification_stage": TriageStage.CLASSIFICATION_SKIPPED,
            "duplicate_stage": TriageStage.DUPLICATE_CHECK_SKIPPED,
            "priority_stage": TriageStage.SCORING_SKIPPED,
        }

    async def classify(self, state: TriageState) -> dict[str, Any]:
        item_id = state["item_id"]
        logger.debug(f"Item {item_id} entering {TriageStage.CLASSIFYING.value}")
        inputs = {"title": state["title"], "description": state["description"][:500]}
        started = time.monotonic()

        try:
            result = await self._call(
                self.classifier.classify, state["title"], state["description"]
            )
        except (ClassificationUnavailable, asyncio.TimeoutError) as e:
            error = e if isinstance(e, ServiceUnavailable) else ClassificationUnavailable(
                f"timed out after {self.config.step_timeout_seconds}s"
            )
            logger.error(f"Triage step classify failed for item {item_id}: {error}")
            return {
                "stage": TriageStage.CLASSIFICATION_SKIPPED,
                "classification_stage": TriageStage.CLASSIFICATION_SKIPPED,
                "stage_history": [TriageStage.CLASSIFYING, TriageStage.CLASSIFICATION_SKIPPED],
                "steps": [_failed_step(
                    TraceFeature.CLASSIFICATION, inputs, error, _elapsed_ms(started)
                )],
            }

        latency_ms = _elapsed_ms(started)
        async with self.session_factory() as session:
            item = await session.get(FeedbackItem, item_id)
            if item is not None and not item.is_human_categorized:
                item.category = result.category.value
                item.classification_confidence = result.confidence
                item.classification_reasoning = result.reasoning
                item.is_machine_classified = True
                await session.commit()
            elif item is not None:
                logger.info(f"Item {item_id} was categorized by a person, keeping their category")

        reasoning = [result.reasoning] if result.reasoning else []
        if result.was_remapped:
            reasoning.append(f"Model label {result.raw_label!r} mapped to {result.category.value}")

        return {
            "stage": TriageStage.CLASSIFIED,
            "classification_stage": TriageStage.CLASSIFIED,
            "stage_history": [TriageStage.CLASSIFYING, TriageStage.CLASSIFIED],
            "classification": {
                "category": result.category.value,
                "confidence": result.confidence,
                "reasoning": result.reasoning,
            },
            "steps": [StepRecord(
                feature=TraceFeature.CLASSIFICATION.value,
                outcome=StepOutcome.SUCCESS.value,
                summary=f"Classified as {result.category.value} ({result.confidence:.0%} confidence)",
                inputs=inputs,
                outputs={"category": result.category.value, "raw_label": result.raw_label},
                confidence=result.confidence,
                reasoning_steps=reasoning,
                model_used=result.model_used,
                latency_ms=latency_ms,
            )],
        }

    async def check_duplicates(self, state: TriageState) -> dict[str, Any]:
        item_id = state["item_id"]
        logger.debug(f"Item {item_id} entering {TriageStage.DUPLICATE_CHECKING.value}")
        inputs = {"title": state["title"], "threshold": self.config.similarity_threshold}
        started = time.monotonic()

        try:
            duplicates, candidate_count = await self._detect_duplicates(
                FeedbackText(id=item_id, title=state["title"], description=state["description"]),
                state["workspace_id"],
            )
        except DuplicateCheckUnavailable as e:
            logger.error(f"Triage step check_duplicates failed for item {item_id}: {e}")
            return {
                "stage": TriageStage.DUPLICATE_CHECK_SKIPPED,
                "duplicate_stage": TriageStage.DUPLICATE_CHECK_SKIPPED,
                "stage_history": [TriageStage.DUPLICATE_CHECKING, TriageStage.DUPLICATE_CHECK_SKIPPED],
                "steps": [_failed_step(
                    TraceFeature.DUPLICATE_DETECTION, inputs, e, _elapsed_ms(started)
                )],
            }

        inputs["candidate_count"] = candidate_count
        stage = TriageStage.DUPLICATES_FOUND if duplicates else TriageStage.NO_DUPLICATES
        return {
            "stage": stage,
            "duplicate_stage": stage,
            "stage_history": [TriageStage.DUPLICATE_CHECKING, stage],
            "duplicates": [asdict(d) for d in duplicates],
            "steps": [self._duplicate_step(inputs, duplicates, _elapsed_ms(started))],
        }

    async def score_priority(self, state: TriageState) -> dict[str, Any]:
        item_id = state["item_id"]
        logger.debug(f"Item {item_id} entering {TriageStage.PRIORITY_SCORING.value}")
        signals = PostSignals(
            vote_count=state.get("vote_count", 0),
            comment_count=state.get("comment_count", 0),
            unique_voters=state.get("unique_voters", 0),
            similar_posts_count=len(state.get("duplicates") or []),
        )
        requester = RequesterContext(
            tier=_plan_tier(state.get("author_tier")),
            company_size=state.get("author_company_size"),
            is_champion=bool(state.get("author_is_champion")),
        )
        business = BusinessContext(
            company_strategy=_strategy(state.get("company_strategy")),
            current_period_label=state.get("current_period_label"),
            upcoming_milestone=state.get("upcoming_milestone"),
        )
        inputs = {
            "signals": asdict(signals),
            "tier": requester.tier.value,
            "strategy": business.company_strategy.value,
        }
        started = time.monotonic()

        try:
            assessment = await self._call(
                self.priority_agent.assess,
                (state["title"], state["description"]),
                signals,
                requester,
                business,
            )
        except (PriorityScoringUnavailable, asyncio.TimeoutError) as e:
            error = e if isinstance(e, ServiceUnavailable) else PriorityScoringUnavailable(
                f"timed out after {self.config.step_timeout_seconds}s"
            )
            logger.error(f"Triage step score_priority failed for item {item_id}: {error}")
            return {
                "stage": TriageStage.SCORING_SKIPPED,
                "priority_stage": TriageStage.SCORING_SKIPPED,
                "stage_history": [TriageStage.PRIORITY_SCORING, TriageStage.SCORING_SKIPPED],
                "steps": [_failed_step(
                    TraceFeature.PRIORITY_SCORING, inputs, error, _elapsed_ms(started)
                )],
            }

        latency_ms = _elapsed_ms(started)
        await self._update_item(
            item_id,
            priority_score=assessment.display_score,
            priority_level=assessment.level.value,
        )

        return {
            "stage": TriageStage.SCORED,
            "priority_stage": TriageStage.SCORED,
            "stage_history": [TriageStage.PRIORITY_SCORING, TriageStage.SCORED],
            "priority": {
                "composite": assessment.composite,
                "display_score": assessment.display_score,
                "level": assessment.level.value,
                "suggested_action": assessment.suggested_action,
                "dominant_factor": assessment.dominant_factor,
            },
            "steps": [StepRecord(
                feature=TraceFeature.PRIORITY_SCORING.value,
                outcome=StepOutcome.SUCCESS.value,
                summary=(
                    f"Priority {assessment.level.value} ({assessment.display_score}/100): "
                    f"{assessment.suggested_action}"
                ),
                inputs=inputs,
                outputs={
                    "composite": assessment.composite,
                    "display_score": assessment.display_score,
                    "level": assessment.level.value,
                    "suggested_action": assessment.suggested_action,
                    "factors": assessment.factors,
                    "dominant_factor": assessment.dominant_factor,
                },
                confidence=None,
                reasoning_steps=[assessment.justification],
                model_used=assessment.model_used,
                latency_ms=latency_ms,
            )],
        }

    async def analyze_sentiment(self, state: TriageState) -> dict[str, Any]:
        started = time.monotonic()
        text = f"{state['title']} {state['description']}"
        reading = self.sentiment_agent.analyze(text, state.get("vote_count", 0))

        await self._update_item(
            state["item_id"],
            sentiment_label=reading.sentiment.value,
            sentiment_score=reading.intensity,
        )

        return {
            "sentiment": {
                "sentiment": reading.sentiment.value,
                "intensity": reading.intensity,
                "emotion": reading.emotion,
                "impact": reading.impact,
                "urgency": reading.urgency,
            },
            "steps": [StepRecord(
                feature=TraceFeature.SENTIMENT_ANALYSIS.value,
                outcome=StepOutcome.SUCCESS.value,
                summary=f"Sentiment {reading.sentiment.value} ({reading.intensity}/100), {reading.urgency}",
                inputs={"vote_count": state.get("vote_count", 0)},
                outputs={
                    "sentiment": reading.sentiment.value,
                    "intensity": reading.intensity,
                    "emotion": reading.emotion,
                    "impact": reading.impact,
                    "urgency": reading.urgency,
                },
                confidence=None,
                reasoning_steps=[
                    f"{reading.positive_hits} positive, {reading.negative_hits} negative, "
                    f"{reading.urgency_hits} urgency terms"
                ],
                model_used=None,
                latency_ms=_elapsed_ms(started),
            )],
        }

    async def record_traces(self, state: TriageState) -> dict[str, Any]:
        written = 0
        for step in state.get("steps", []):
            await self.traces.record(
                workspace_id=state["workspace_id"],
                feature=TraceFeature(step["feature"]),
                entity_type="feedback",
                entity_id=state["item_id"],
                decision_summary=step["summary"],
                inputs=step.get("inputs", {}),
                outputs=step.get("outputs", {}),
                confidence=step.get("confidence"),
                reasoning_steps=step.get("reasoning_steps", []),
                status=StepOutcome(step["outcome"]),
                model_used=step.get("model_used"),
                latency_ms=step.get("latency_ms"),
            )
            written += 1

        logger.info(f"Wrote {written} decision traces for {state['item_id']}")
        return {
            "stage": TriageStage.TRACED,
            "stage_history": [TriageStage.TRACED],
            "traces_written": written,
        }

    # Duplicate detection, shared with the on-demand endpoint

    async def _load_candidates(self, target_id: str, workspace_id: str) -> list[FeedbackText]:
        query = (
            select(FeedbackItem)
            .where(
                FeedbackItem.workspace_id == workspace_id,
                FeedbackItem.id != target_id,
                FeedbackItem.duplicate_of_id.is_(None),
            )
            .order_by(FeedbackItem.created_at.desc(), FeedbackItem.id.asc())
            .limit(self.config.duplicate_candidate_limit)
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return [
                FeedbackText(
                    id=row.id,
                    title=row.title,
                    description=row.description or "",
                    duplicate_of_id=row.duplicate_of_id,
                )
                for row in result.scalars().all()
            ]

    async def _detect_duplicates(
        self,
        target: FeedbackText,
        workspace_id: str,
        options: Optional[DuplicateOptions] = None,
    ) -> tuple[list[DuplicateCandidate], int]:
        options = options or DuplicateOptions(
            threshold=self.config.similarity_threshold,
            max_results=self.config.max_duplicate_results,
            include_related=self.config.include_related,
        )
        candidates = await self._load_candidates(target.id, workspace_id)

        try:
            duplicates = await self._call(
                self.duplicate_detector.find_duplicates, target, candidates, options
            )
        except asyncio.TimeoutError as e:
            raise DuplicateCheckUnavailable(
                f"timed out after {self.config.step_timeout_seconds}s"
            ) from e
        return duplicates, len(candidates)

    def _duplicate_step(
        self, inputs: dict[str, Any], duplicates: list[DuplicateCandidate], latency_ms: int
    ) -> StepRecord:
        top_score = duplicates[0].score if duplicates else None
        summary = (
            f"Found {len(duplicates)} likely duplicates (top {top_score:.0%})"
            if duplicates else "No likely duplicates found"
        )
        return StepRecord(
            feature=TraceFeature.DUPLICATE_DETECTION.value,
            outcome=StepOutcome.SUCCESS.value,
            summary=summary,
            inputs=inputs,
            outputs={"duplicates": [asdict(d) for d in duplicates]},
            confidence=top_score,
            reasoning_steps=[d.reason for d in duplicates],
            model_used=self.duplicate_detector.client.config.fast_model,
            latency_ms=latency_ms,
        )

    async def find_duplicates_for_item(
        self, item: FeedbackItem, options: Optional[DuplicateOptions] = None
    ) -> list[DuplicateCandidate]:
        """On-demand duplicate check for one item; always traced.

        Raises:
            DuplicateCheckUnavailable: If the similarity call fails or times out
        """
        inputs = {"title": item.title, "threshold": (options.threshold if options else None)}
        started = time.monotonic()
        target = FeedbackText(id=item.id, title=item.title, description=item.description or "")

        try:
            duplicates, candidate_count = await self._detect_duplicates(
                target, item.workspace_id, options
            )
        except DuplicateCheckUnavailable as e:
            await self.traces.record_failure(
                workspace_id=item.workspace_id,
                feature=TraceFeature.DUPLICATE_DETECTION,
                entity_type="feedback",
                entity_id=item.id,
                inputs=inputs,
                error=e,
                latency_ms=_elapsed_ms(started),
            )
            raise

        inputs["candidate_count"] = candidate_count
        step = self._duplicate_step(inputs, duplicates, _elapsed_ms(started))
        await self.traces.record(
            workspace_id=item.workspace_id,
            feature=TraceFeature.DUPLICATE_DETECTION,
            entity_type="feedback",
            entity_id=item.id,
            decision_summary=step["summary"],
            inputs=step["inputs"],
            outputs=step["outputs"],
            confidence=step["confidence"],
            reasoning_steps=step["reasoning_steps"],
            status=StepOutcome.SUCCESS,
            model_used=step["model_used"],
            latency_ms=step["latency_ms"],
        )
        return duplicates
