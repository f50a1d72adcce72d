"""Decision trace recorder.

Writes one immutable DecisionTrace per automated decision and serves the
audit-trail queries.
"""

import logging
import uuid
from typing import Any, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feedback_triage.exceptions import InvalidInput, ServiceUnavailable
from feedback_triage.models import DecisionTrace, get_async_session
from feedback_triage.models.enums import StepOutcome, TraceFeature

logger = logging.getLogger(__name__)

MAX_TRACE_LIMIT = 200


class TraceRecorder:
    """Persists and queries decision traces."""

    def __init__(self, session_factory: Optional[async_sessionmaker[AsyncSession]] = None):
        self.session_factory = session_factory or get_async_session()

    async def record(
        self,
        *,
        workspace_id: Optional[str],
        feature: TraceFeature,
        entity_type: str,
        entity_id: str,
        decision_summary: str,
        inputs: dict[str, Any],
        outputs: dict[str, Any],
        confidence: Optional[float] = None,
        reasoning_steps: Optional[list[str]] = None,
        status: StepOutcome = StepOutcome.SUCCESS,
        model_used: Optional[str] = None,
        latency_ms: Optional[int] = None,
    ) -> DecisionTrace:
        """Insert one decision trace.

        The confidence is also mirrored into ``outputs["confidence"]``.
        """
        outputs = {**outputs, "confidence": confidence}
        trace = DecisionTrace(
            id=str(uuid.uuid4()),
            workspace_id=workspace_id,
            feature=feature.value,
            entity_type=entity_type,
            entity_id=entity_id,
            decision_summary=decision_summary,
            inputs=inputs,
            outputs=outputs,
            confidence=confidence,
            reasoning_steps=list(reasoning_steps or []),
            status=status.value,
            model_used=model_used,
            latency_ms=latency_ms,
        )

        async with self.session_factory() as session:
            session.add(trace)
            await session.commit()

        logger.debug(f"Recorded {feature.value} trace for {entity_type} {entity_id} ({status.value})")
        return trace

    async def record_failure(
        self,
        *,
        workspace_id: Optional[str],
        feature: TraceFeature,
        entity_type: str,
        entity_id: str,
        inputs: dict[str, Any],
        error: Exception,
        latency_ms: Optional[int] = None,
    ) -> DecisionTrace:
        """Insert an error trace for a step that did not produce a decision."""
        kind = error.kind if isinstance(error, ServiceUnavailable) else type(error).__name__
        message = str(error) or kind
        return await self.record(
            workspace_id=workspace_id,
            feature=feature,
            entity_type=entity_type,
            entity_id=entity_id,
            decision_summary=f"{feature.value} failed: {message[:200]}",
            inputs=inputs,
            outputs={"error": kind, "message": message},
            confidence=0.0,
            reasoning_steps=[f"{kind}: {message}"],
            status=StepOutcome.ERROR,
            latency_ms=latency_ms,
        )

    async def list_traces(
        self,
        workspace_id: str,
        feature: Optional[TraceFeature] = None,
        search: Optional[str] = None,
        limit: int = 50,
    ) -> list[DecisionTrace]:
        """List a workspace's traces, newest first.

        Args:
            workspace_id: Workspace to list
            feature: Only traces of this decision kind
            search: Case-insensitive substring of the decision summary
            limit: Maximum rows (1-200)
        """
        if not 1 <= limit <= MAX_TRACE_LIMIT:
            raise InvalidInput(f"limit must be between 1 and {MAX_TRACE_LIMIT}, got {limit}")

        query = select(DecisionTrace).where(DecisionTrace.workspace_id == workspace_id)
        if feature is not None:
            query = query.where(DecisionTrace.feature == feature.value)
        if search:
            query = query.where(DecisionTrace.decision_summary.icontains(search, autoescape=True))
        query = query.order_by(
            DecisionTrace.created_at.desc(), DecisionTrace.id.desc()
        ).limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def get_for_entity(self, entity_type: str, entity_id: str) -> list[DecisionTrace]:
        """All traces for one entity, newest first."""
        query = (
            select(DecisionTrace)
            .where(
                DecisionTrace.entity_type == entity_type,
                DecisionTrace.entity_id == entity_id,
            )
            .order_by(DecisionTrace.created_at.desc(), DecisionTrace.id.desc())
        )
        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())
