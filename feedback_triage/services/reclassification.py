"""Batch reclassification job.

Periodically revisits feedback whose classification is missing, weak or
stale, reclassifies it, and reports how much work is left. Triggered by the
scheduler through POST /cron/reclassify.
"""

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any, Optional, Union

from sqlalchemy import and_, func, or_, select
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feedback_triage.agents.classification import ClassificationAgent
from feedback_triage.config import TriageConfig
from feedback_triage.exceptions import ClassificationUnavailable, InvalidInput, TriageError
from feedback_triage.models import FeedbackItem, get_async_session
from feedback_triage.models.enums import Category, StepOutcome, TraceFeature
from feedback_triage.services.trace_recorder import TraceRecorder

logger = logging.getLogger(__name__)


@dataclass
class ReclassificationSummary:
    """Outcome of one batch run."""
    processed_count: int = 0
    updated_count: int = 0
    skipped_count: int = 0
    remaining: Union[int, str] = "unknown"
    errors: list[dict[str, str]] = field(default_factory=list)

    def to_dict(self) -> dict[str, Any]:
        return {
            "processed_count": self.processed_count,
            "updated_count": self.updated_count,
            "skipped_count": self.skipped_count,
            "remaining": self.remaining,
            "errors": list(self.errors),
        }


def needs_reclassification(confidence_threshold: float):
    """SQL predicate for items the batch job should revisit.

    Items already merged into another item and human overrides are never
    revisited.
    """
    return and_(
        FeedbackItem.duplicate_of_id.is_(None),
        FeedbackItem.is_human_categorized.is_(False),
        or_(
            FeedbackItem.category.is_(None),
            FeedbackItem.category == Category.OTHER.value,
            FeedbackItem.classification_confidence.is_(None),
            FeedbackItem.classification_confidence < confidence_threshold,
            FeedbackItem.is_machine_classified.is_(False),
        ),
    )


class ReclassificationJob:
    """Selects weakly-classified feedback and reclassifies it sequentially."""

    def __init__(
        self,
        classifier: Optional[ClassificationAgent] = None,
        trace_recorder: Optional[TraceRecorder] = None,
        session_factory: Optional[async_sessionmaker[AsyncSession]] = None,
        config: Optional[TriageConfig] = None,
    ):
        self.config = config or TriageConfig()
        self.classifier = classifier or ClassificationAgent(
            escalation_threshold=self.config.escalation_threshold
        )
        self.session_factory = session_factory or get_async_session()
        self.traces = trace_recorder or TraceRecorder(self.session_factory)

    def validate(self, confidence_threshold: float, limit: int) -> None:
        if not 0.0 <= confidence_threshold <= 1.0:
            raise InvalidInput(
                f"confidence_threshold must be within [0, 1], got {confidence_threshold}"
            )
        max_limit = self.config.reclassify_max_batch_size
        if not 1 <= limit <= max_limit:
            raise InvalidInput(f"limit must be between 1 and {max_limit}, got {limit}")

    async def select_candidates(
        self,
        confidence_threshold: float,
        limit: int,
        workspace_id: Optional[str] = None,
    ) -> list[str]:
        """Ids of items to revisit, oldest first (ties by id)."""
        query = select(FeedbackItem.id).where(needs_reclassification(confidence_threshold))
        if workspace_id:
            query = query.where(FeedbackItem.workspace_id == workspace_id)
        query = query.order_by(FeedbackItem.created_at.asc(), FeedbackItem.id.asc()).limit(limit)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return list(result.scalars().all())

    async def count_remaining(
        self, confidence_threshold: float, workspace_id: Optional[str] = None
    ) -> int:
        query = select(func.count(FeedbackItem.id)).where(
            needs_reclassification(confidence_threshold)
        )
        if workspace_id:
            query = query.where(FeedbackItem.workspace_id == workspace_id)

        async with self.session_factory() as session:
            result = await session.execute(query)
            return int(result.scalar_one())

    async def run(
        self,
        confidence_threshold: Optional[float] = None,
        limit: Optional[int] = None,
        workspace_id: Optional[str] = None,
    ) -> ReclassificationSummary:
        """Run one batch.

        Args:
            confidence_threshold: Items below this confidence are revisited
            limit: Maximum items to process (1-100)
            workspace_id: Restrict the run to one workspace

        Returns:
            ReclassificationSummary; per-item failures are listed in errors

        Raises:
            InvalidInput: If threshold or limit are out of range
        """
        if confidence_threshold is None:
            confidence_threshold = self.config.reclassify_confidence_threshold
        if limit is None:
            limit = self.config.reclassify_batch_size
        self.validate(confidence_threshold, limit)

        start = time.monotonic()
        summary = ReclassificationSummary()

        item_ids = await self.select_candidates(confidence_threshold, limit, workspace_id)
        logger.info(
            f"Reclassification run: {len(item_ids)} items selected "
            f"(threshold {confidence_threshold}, limit {limit})"
        )

        for item_id in item_ids:
            summary.processed_count += 1
            try:
                updated = await self._reclassify_item(item_id)
            except Exception as e:
                # One failed item must not cancel the rest of the batch
                logger.error(f"Reclassification failed for {item_id}: {e}")
                summary.errors.append({"id": item_id, "message": str(e) or type(e).__name__})
                continue

            if updated:
                summary.updated_count += 1
            else:
                summary.skipped_count += 1

        try:
            summary.remaining = await self.count_remaining(confidence_threshold, workspace_id)
        except SQLAlchemyError as e:
            logger.error(f"Could not count remaining items: {e}")
            summary.remaining = "unknown"

        elapsed = time.monotonic() - start
        logger.info(
            f"Reclassification complete: {summary.updated_count} updated, "
            f"{summary.skipped_count} skipped, {len(summary.errors)} errors, "
            f"{summary.remaining} remaining in {elapsed:.1f}s"
        )
        return summary

    async def _reclassify_item(self, item_id: str) -> bool:
        """Reclassify one item. Returns False if it was no longer eligible."""
        async with self.session_factory() as session:
            item = await session.get(FeedbackItem, item_id)
            if item is None or item.is_human_categorized:
                logger.info(f"Skipping {item_id}: no longer eligible")
                return False

            workspace_id = item.workspace_id
            previous = item.category
            inputs = {
                "title": item.title,
                "previous_category": previous,
                "previous_confidence": item.classification_confidence,
            }
            started = time.monotonic()

            error: Optional[TriageError] = None
            try:
                classification = await asyncio.wait_for(
                    asyncio.to_thread(self.classifier.classify, item.title, item.description),
                    timeout=self.config.step_timeout_seconds,
                )
            except TriageError as e:
                error = e
            except asyncio.TimeoutError:
                error = ClassificationUnavailable(
                    f"Classification timed out after {self.config.step_timeout_seconds}s"
                )

            latency_ms = int((time.monotonic() - started) * 1000)
            if error is None:
                item.category = classification.category.value
                item.classification_confidence = classification.confidence
                item.classification_reasoning = classification.reasoning
                item.is_machine_classified = True
                await session.commit()

        if error is not None:
            await self.traces.record_failure(
                workspace_id=workspace_id,
                feature=TraceFeature.RECLASSIFICATION,
                entity_type="feedback",
                entity_id=item_id,
                inputs=inputs,
                error=error,
                latency_ms=latency_ms,
            )
            raise error

        await self.traces.record(
            workspace_id=workspace_id,
            feature=TraceFeature.RECLASSIFICATION,
            entity_type="feedback",
            entity_id=item_id,
            decision_summary=(
                f"Reclassified from {previous or 'uncategorized'} to "
                f"{classification.category.value}"
            ),
            inputs=inputs,
            outputs={
                "category": classification.category.value,
                "raw_label": classification.raw_label,
            },
            confidence=classification.confidence,
            reasoning_steps=[classification.reasoning] if classification.reasoning else [],
            status=StepOutcome.SUCCESS,
            model_used=classification.model_used,
            latency_ms=latency_ms,
        )
        return True
