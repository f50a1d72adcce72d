"""Shared test fixtures for Feedback Triage Engine testing.

This module provides pytest fixtures for:
- In-memory SQLite database (via aiosqlite)
- Mock Anthropic client and API responses
- Test data factories (workspaces, feedback items, classification results)
- FastAPI test client wiring
"""

import json
import os
import uuid
from datetime import datetime, timedelta
from typing import AsyncGenerator
from unittest.mock import AsyncMock, MagicMock

import pytest
import pytest_asyncio
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker, create_async_engine
from sqlalchemy.pool import StaticPool


# ---------------------------------------------------------------------------
# Environment Setup - Must happen before importing app modules
# ---------------------------------------------------------------------------

os.environ["ENVIRONMENT"] = "test"
os.environ["DATABASE_URL"] = "sqlite+aiosqlite:///:memory:"
os.environ["ANTHROPIC_API_KEY"] = "test-api-key-sk-ant-xxxxx"
os.environ["CRON_SECRET"] = "test-cron-secret"
os.environ["STEP_TIMEOUT_SECONDS"] = "2"

TEST_ASYNC_DATABASE_URL = "sqlite+aiosqlite:///:memory:"
BASE_TIME = datetime(2025, 1, 1, 12, 0, 0)


# ---------------------------------------------------------------------------
# Database Fixtures (in-memory SQLite)
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def async_engine():
    """Create a fresh in-memory database with all tables."""
    engine = create_async_engine(
        TEST_ASYNC_DATABASE_URL,
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from feedback_triage.models.base import Base
    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.create_all)

    yield engine

    async with engine.begin() as conn:
        await conn.run_sync(Base.metadata.drop_all)
    await engine.dispose()


@pytest.fixture
def session_factory(async_engine) -> async_sessionmaker[AsyncSession]:
    """Session factory bound to the test database."""
    return async_sessionmaker(async_engine, class_=AsyncSession, expire_on_commit=False)


@pytest_asyncio.fixture
async def async_session(session_factory) -> AsyncGenerator[AsyncSession, None]:
    """Provide a session for arranging and inspecting rows."""
    async with session_factory() as session:
        yield session


# ---------------------------------------------------------------------------
# Mock Anthropic API Client
# ---------------------------------------------------------------------------

def make_api_response(payload) -> MagicMock:
    """Build a mock Messages API response whose text is the JSON payload."""
    text = payload if isinstance(payload, str) else json.dumps(payload)
    mock_response = MagicMock()
    mock_response.content = [MagicMock(text=text)]
    mock_response.usage = MagicMock(input_tokens=150, output_tokens=75)
    return mock_response


@pytest.fixture
def api_response():
    """Builder for mock Messages API responses."""
    return make_api_response


@pytest.fixture
def anthropic_config():
    from feedback_triage.config import AnthropicConfig
    return AnthropicConfig(api_key="test-api-key")


@pytest.fixture
def mock_anthropic_response_high_confidence():
    """Mock Anthropic response with high confidence classification."""
    return make_api_response({
        "category": "UI/UX",
        "confidence": 0.92,
        "reasoning": "Requests a visual theme change to the interface",
    })


@pytest.fixture
def mock_anthropic_response_low_confidence():
    """Mock Anthropic response with low confidence (triggers escalation)."""
    return make_api_response({
        "category": "Improvement",
        "confidence": 0.55,
        "reasoning": "Could be an improvement or a new feature, unclear",
    })


@pytest.fixture
def mock_sdk_client(mock_anthropic_response_high_confidence):
    """Mock anthropic.Anthropic SDK client returning a high confidence result."""
    mock_client = MagicMock()
    mock_client.messages.create.return_value = mock_anthropic_response_high_confidence
    return mock_client


@pytest.fixture
def mock_anthropic(anthropic_config):
    """Mock AnthropicClient wrapper; configure per test."""
    from feedback_triage.services.anthropic_client import AnthropicClient

    mock_client = MagicMock(spec=AnthropicClient)
    mock_client.config = anthropic_config
    return mock_client


@pytest.fixture
def priority_estimates():
    """Text-derived priority estimates as returned by the model wrapper."""
    return {
        "strategic_alignment": 6.0,
        "implementation_ease": 5.0,
        "competitive_pressure": 4.0,
        "is_bug": False,
        "frustration": False,
        "reasoning": "Common request from paying customers",
    }


# ---------------------------------------------------------------------------
# Test Data Factories
# ---------------------------------------------------------------------------

@pytest.fixture
def classification_result_factory():
    """Factory for creating raw ClassificationResult objects."""
    from feedback_triage.services.anthropic_client import ClassificationResult

    def _create_result(
        category: str = "Feature Request",
        confidence: float = 0.85,
        reasoning: str = "Asks for functionality that does not exist yet",
        **kwargs
    ) -> ClassificationResult:
        return ClassificationResult(
            category=category,
            confidence=confidence,
            reasoning=reasoning,
            model_used=kwargs.get("model_used", "claude-3-haiku-20240307"),
            input_tokens=kwargs.get("input_tokens", 150),
            output_tokens=kwargs.get("output_tokens", 75),
        )

    return _create_result


@pytest.fixture
def workspace_factory():
    """Factory for creating Workspace instances."""
    from feedback_triage.models import Workspace

    def _create_workspace(
        workspace_id: str = None,
        has_enrichment: bool = True,
        **kwargs
    ) -> Workspace:
        return Workspace(
            id=workspace_id or str(uuid.uuid4()),
            name=kwargs.get("name", "Acme"),
            plan=kwargs.get("plan", "pro" if has_enrichment else "free"),
            has_enrichment=has_enrichment,
            company_strategy=kwargs.get("company_strategy", "growth"),
            current_period_label=kwargs.get("current_period_label"),
            upcoming_milestone=kwargs.get("upcoming_milestone"),
        )

    return _create_workspace


@pytest.fixture
def feedback_factory():
    """Factory for creating FeedbackItem instances.

    created_at is set explicitly (offset in minutes from a fixed base time)
    so ordering does not depend on timestamp resolution.
    """
    from feedback_triage.models import FeedbackItem

    def _create_feedback(
        workspace_id: str,
        item_id: str = None,
        title: str = "Add dark mode",
        description: str = "The app is too bright at night",
        minutes: int = 0,
        **kwargs
    ) -> FeedbackItem:
        return FeedbackItem(
            id=item_id or str(uuid.uuid4()),
            workspace_id=workspace_id,
            title=title,
            description=description,
            category=kwargs.get("category"),
            classification_confidence=kwargs.get("classification_confidence"),
            classification_reasoning=kwargs.get("classification_reasoning"),
            is_machine_classified=kwargs.get("is_machine_classified", False),
            is_human_categorized=kwargs.get("is_human_categorized", False),
            vote_count=kwargs.get("vote_count", 0),
            comment_count=kwargs.get("comment_count", 0),
            unique_voters=kwargs.get("unique_voters", 0),
            author_tier=kwargs.get("author_tier", "free"),
            author_company_size=kwargs.get("author_company_size"),
            author_is_champion=kwargs.get("author_is_champion", False),
            duplicate_of_id=kwargs.get("duplicate_of_id"),
            created_at=BASE_TIME + timedelta(minutes=minutes),
        )

    return _create_feedback


@pytest_asyncio.fixture
async def add_rows(session_factory):
    """Persist model instances and return them."""

    async def _add(*rows):
        async with session_factory() as session:
            session.add_all(rows)
            await session.commit()
        return rows

    return _add


# ---------------------------------------------------------------------------
# Test Configuration
# ---------------------------------------------------------------------------

@pytest.fixture
def triage_config():
    """Triage settings with a short step timeout."""
    from feedback_triage.config import TriageConfig
    return TriageConfig(step_timeout_seconds=2.0)


@pytest.fixture
def categories():
    """Feedback categories."""
    from feedback_triage.config import CATEGORIES
    return CATEGORIES


# ---------------------------------------------------------------------------
# FastAPI Test Wiring
# ---------------------------------------------------------------------------

@pytest_asyncio.fixture
async def app_services(session_factory, triage_config):
    """Services container backed by the test database and a mock triage handler."""
    from feedback_triage.main import Services
    from feedback_triage.services.reclassification import ReclassificationJob
    from feedback_triage.services.task_queue import TriageQueue
    from feedback_triage.services.trace_recorder import TraceRecorder

    traces = TraceRecorder(session_factory)
    orchestrator = MagicMock()
    orchestrator.config = triage_config
    orchestrator.triage = AsyncMock(return_value=None)
    orchestrator.find_duplicates_for_item = AsyncMock(return_value=[])

    queue = TriageQueue(orchestrator.triage, worker_count=1)
    await queue.start()

    services = Services(
        session_factory=session_factory,
        orchestrator=orchestrator,
        queue=queue,
        traces=traces,
        reclassification=MagicMock(spec=ReclassificationJob),
        cron_secret="test-cron-secret",
    )

    yield services

    await queue.stop()


@pytest.fixture
def api_app(app_services):
    """FastAPI app with the shared services replaced by test ones."""
    from feedback_triage.main import app, get_services

    app.dependency_overrides[get_services] = lambda: app_services
    yield app
    app.dependency_overrides.clear()
