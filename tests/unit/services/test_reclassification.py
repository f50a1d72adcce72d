"""Unit tests for the batch reclassification job.

Uses the in-memory database for selection and persistence and a mock
classification agent.
"""

import pytest
import pytest_asyncio
from unittest.mock import AsyncMock, MagicMock

from sqlalchemy import select
from sqlalchemy.exc import OperationalError

from feedback_triage.agents.classification import Classification, ClassificationAgent
from feedback_triage.exceptions import ClassificationUnavailable, InvalidInput
from feedback_triage.models import DecisionTrace, FeedbackItem
from feedback_triage.models.enums import Category
from feedback_triage.services.reclassification import ReclassificationJob
from feedback_triage.services.trace_recorder import TraceRecorder


WS = "ws-1"


def classification(category=Category.BUG, confidence=0.9):
    return Classification(
        category=category,
        confidence=confidence,
        reasoning="Describes broken behaviour",
        model_used="claude-3-haiku-20240307",
        raw_label=category.value,
    )


@pytest.fixture
def classifier():
    agent = MagicMock(spec=ClassificationAgent)
    agent.classify.return_value = classification()
    return agent


@pytest.fixture
def job(classifier, session_factory, triage_config):
    return ReclassificationJob(
        classifier=classifier,
        trace_recorder=TraceRecorder(session_factory),
        session_factory=session_factory,
        config=triage_config,
    )


@pytest_asyncio.fixture
async def workspace(add_rows, workspace_factory):
    await add_rows(workspace_factory(workspace_id=WS))
    return WS


def weak_item(feedback_factory, item_id, confidence, minutes, **kwargs):
    return feedback_factory(
        WS,
        item_id=item_id,
        title=f"Item {item_id}",
        minutes=minutes,
        category=kwargs.pop("category", "Bug"),
        classification_confidence=confidence,
        is_machine_classified=kwargs.pop("is_machine_classified", True),
        **kwargs,
    )


class TestReclassificationRun:
    """Tests for run method."""

    @pytest.mark.asyncio
    async def test_processes_oldest_weak_items_up_to_limit(
        self, job, workspace, add_rows, feedback_factory, session_factory
    ):
        await add_rows(
            weak_item(feedback_factory, "a", 0.3, minutes=0),
            weak_item(feedback_factory, "b", 0.5, minutes=1),
            weak_item(feedback_factory, "c", None, minutes=2),
        )

        summary = await job.run(confidence_threshold=0.6, limit=2)

        assert summary.processed_count == 2
        assert summary.updated_count == 2
        assert summary.errors == []
        assert summary.remaining == 1

        async with session_factory() as session:
            a = await session.get(FeedbackItem, "a")
            c = await session.get(FeedbackItem, "c")
        assert a.classification_confidence == 0.9
        assert a.is_machine_classified is True
        assert c.classification_confidence is None

    @pytest.mark.asyncio
    async def test_second_run_only_selects_what_is_left(
        self, job, classifier, workspace, add_rows, feedback_factory
    ):
        await add_rows(
            weak_item(feedback_factory, "a", 0.3, minutes=0),
            weak_item(feedback_factory, "b", 0.5, minutes=1),
            weak_item(feedback_factory, "c", None, minutes=2),
        )
        await job.run(confidence_threshold=0.6, limit=2)
        classifier.classify.reset_mock()

        summary = await job.run(confidence_threshold=0.6, limit=2)

        assert summary.processed_count == 1
        assert summary.remaining == 0
        assert classifier.classify.call_args.args[0] == "Item c"

    @pytest.mark.asyncio
    async def test_selection_excludes_confident_merged_and_human_items(
        self, job, workspace, add_rows, feedback_factory
    ):
        await add_rows(
            weak_item(feedback_factory, "confident", 0.95, minutes=0),
            weak_item(feedback_factory, "parent", 0.2, minutes=1),
            weak_item(feedback_factory, "merged", 0.2, minutes=2, duplicate_of_id="parent"),
            weak_item(feedback_factory, "human", 0.2, minutes=3, is_human_categorized=True),
            weak_item(feedback_factory, "other", 0.9, minutes=4, category="Other"),
            weak_item(feedback_factory, "manual", 0.9, minutes=5, is_machine_classified=False),
        )

        selected = await job.select_candidates(0.6, limit=10)

        assert selected == ["parent", "other", "manual"]

    @pytest.mark.asyncio
    async def test_selection_is_stable_without_writes(
        self, job, workspace, add_rows, feedback_factory
    ):
        await add_rows(*[
            weak_item(feedback_factory, f"i{n}", 0.1 * n, minutes=n % 3) for n in range(6)
        ])

        first = await job.select_candidates(0.6, limit=4)
        second = await job.select_candidates(0.6, limit=4)

        assert first == second
        assert len(first) == 4

    @pytest.mark.asyncio
    async def test_selection_ties_break_by_id(self, job, workspace, add_rows, feedback_factory):
        await add_rows(
            weak_item(feedback_factory, "b", 0.1, minutes=0),
            weak_item(feedback_factory, "a", 0.1, minutes=0),
        )

        assert await job.select_candidates(0.6, limit=10) == ["a", "b"]

    @pytest.mark.asyncio
    async def test_failed_item_is_reported_and_run_continues(
        self, job, classifier, workspace, add_rows, feedback_factory, session_factory
    ):
        await add_rows(
            weak_item(feedback_factory, "a", 0.3, minutes=0),
            weak_item(feedback_factory, "b", 0.4, minutes=1),
        )
        classifier.classify.side_effect = [
            ClassificationUnavailable("upstream timeout"),
            classification(),
        ]

        summary = await job.run(confidence_threshold=0.6, limit=10)

        assert summary.processed_count == 2
        assert summary.updated_count == 1
        assert summary.errors == [{"id": "a", "message": "upstream timeout"}]
        assert summary.remaining == 1

        async with session_factory() as session:
            result = await session.execute(
                select(DecisionTrace).where(DecisionTrace.entity_id == "a")
            )
            traces = list(result.scalars().all())
        assert len(traces) == 1
        assert traces[0].status == "error"
        assert traces[0].feature == "reclassification"

    @pytest.mark.asyncio
    async def test_database_error_on_one_item_does_not_stop_batch(
        self, job, classifier, workspace, add_rows, feedback_factory
    ):
        await add_rows(
            weak_item(feedback_factory, "a", 0.3, minutes=0),
            weak_item(feedback_factory, "b", 0.4, minutes=1),
        )
        record = job.traces.record
        calls = []

        async def flaky_record(**kwargs):
            calls.append(kwargs["entity_id"])
            if len(calls) == 1:
                raise OperationalError("INSERT INTO decision_traces", {}, Exception("disk I/O error"))
            return await record(**kwargs)

        job.traces.record = flaky_record

        summary = await job.run(confidence_threshold=0.6, limit=10)

        assert classifier.classify.call_count == 2
        assert summary.processed_count == 2
        assert summary.updated_count == 1
        assert [e["id"] for e in summary.errors] == ["a"]
        assert calls == ["a", "b"]

    @pytest.mark.asyncio
    async def test_unexpected_classifier_error_is_isolated(
        self, job, classifier, workspace, add_rows, feedback_factory
    ):
        await add_rows(
            weak_item(feedback_factory, "a", 0.3, minutes=0),
            weak_item(feedback_factory, "b", 0.4, minutes=1),
        )
        classifier.classify.side_effect = [KeyError("category"), classification()]

        summary = await job.run(confidence_threshold=0.6, limit=10)

        assert summary.updated_count == 1
        assert [e["id"] for e in summary.errors] == ["a"]

    @pytest.mark.asyncio
    async def test_success_writes_reclassification_trace(
        self, job, workspace, add_rows, feedback_factory, session_factory
    ):
        await add_rows(weak_item(feedback_factory, "a", 0.3, minutes=0, category=None))

        await job.run(confidence_threshold=0.6, limit=5)

        async with session_factory() as session:
            result = await session.execute(select(DecisionTrace))
            trace = result.scalars().one()
        assert trace.entity_id == "a"
        assert trace.status == "success"
        assert trace.outputs["category"] == "Bug"
        assert trace.decision_summary == "Reclassified from uncategorized to Bug"

    @pytest.mark.asyncio
    async def test_remaining_unknown_when_count_fails(
        self, job, workspace, add_rows, feedback_factory
    ):
        await add_rows(weak_item(feedback_factory, "a", 0.3, minutes=0))
        job.count_remaining = AsyncMock(
            side_effect=OperationalError("SELECT count", {}, Exception("db gone"))
        )

        summary = await job.run(confidence_threshold=0.6, limit=5)

        assert summary.updated_count == 1
        assert summary.remaining == "unknown"

    @pytest.mark.asyncio
    async def test_workspace_filter(self, job, add_rows, workspace_factory, feedback_factory):
        await add_rows(workspace_factory(workspace_id=WS), workspace_factory(workspace_id="ws-2"))
        await add_rows(
            weak_item(feedback_factory, "a", 0.3, minutes=0),
            feedback_factory("ws-2", item_id="z", classification_confidence=0.1),
        )

        summary = await job.run(confidence_threshold=0.6, limit=5, workspace_id="ws-2")

        assert summary.processed_count == 1
        assert summary.remaining == 0

    @pytest.mark.asyncio
    async def test_defaults_come_from_config(self, job, workspace):
        summary = await job.run()

        assert summary.processed_count == 0
        assert summary.remaining == 0

    @pytest.mark.asyncio
    @pytest.mark.parametrize("threshold,limit", [
        (1.5, 10),
        (-0.1, 10),
        (0.6, 0),
        (0.6, 101),
    ])
    async def test_invalid_parameters_rejected(self, job, threshold, limit):
        with pytest.raises(InvalidInput):
            await job.run(confidence_threshold=threshold, limit=limit)


def test_summary_to_dict():
    from feedback_triage.services.reclassification import ReclassificationSummary

    summary = ReclassificationSummary(processed_count=2, updated_count=1, remaining=4)

    assert summary.to_dict() == {
        "processed_count": 2,
        "updated_count": 1,
        "skipped_count": 0,
        "remaining": 4,
        "errors": [],
    }
