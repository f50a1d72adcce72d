"""FastAPI application for the Feedback Triage Engine.

Provides HTTP endpoints for:
- Feedback creation (triage runs in the background)
- Scheduled batch reclassification (called by the scheduler)
- Decision trace lookup
- On-demand duplicate checks and human category overrides
- Health checks
"""

import hmac
import logging
import os
import uuid
from contextlib import asynccontextmanager
from dataclasses import asdict, dataclass
from datetime import datetime
from typing import Any, Optional

from fastapi import Depends, FastAPI, Header, HTTPException, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field
from sqlalchemy import text
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker

from feedback_triage.agents.duplicates import DuplicateOptions
from feedback_triage.config import get_config
from feedback_triage.exceptions import InvalidInput, ServiceUnavailable, Unauthorized
from feedback_triage.models import FeedbackItem, Workspace, get_async_session
from feedback_triage.models.enums import Category, PlanTier, TraceFeature
from feedback_triage.services.reclassification import ReclassificationJob
from feedback_triage.services.task_queue import TriageQueue
from feedback_triage.services.trace_recorder import TraceRecorder
from feedback_triage.workflows.triage import TriageOrchestrator

# Configure logging
logging.basicConfig(
    level=logging.INFO,
    format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
)
logger = logging.getLogger(__name__)

VERSION = "0.1.0"


@dataclass
class Services:
    """Components shared by the request handlers."""
    session_factory: async_sessionmaker[AsyncSession]
    orchestrator: TriageOrchestrator
    queue: TriageQueue
    traces: TraceRecorder
    reclassification: ReclassificationJob
    cron_secret: str


_services: Optional[Services] = None


def build_services() -> Services:
    """Wire the components from the environment configuration."""
    config = get_config()
    session_factory = get_async_session()
    traces = TraceRecorder(session_factory)
    orchestrator = TriageOrchestrator(
        trace_recorder=traces,
        session_factory=session_factory,
        config=config.triage,
    )
    return Services(
        session_factory=session_factory,
        orchestrator=orchestrator,
        queue=TriageQueue(orchestrator.triage, worker_count=config.triage.worker_count),
        traces=traces,
        reclassification=ReclassificationJob(
            classifier=orchestrator.classifier,
            trace_recorder=traces,
            session_factory=session_factory,
            config=config.triage,
        ),
        cron_secret=config.cron_secret,
    )


def get_services() -> Services:
    """Get or create the shared components."""
    global _services
    if _services is None:
        _services = build_services()
    return _services


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Application lifespan manager."""
    logger.info("Feedback Triage Engine starting up...")
    config = get_config()
    logger.info(f"Environment: {config.environment}")
    services = get_services()
    await services.queue.start()
    yield
    await services.queue.stop()
    logger.info("Feedback Triage Engine shutting down...")


app = FastAPI(
    title="Feedback Triage Engine",
    description="Classification, duplicate detection, prioritization and audit trail for product feedback",
    version=VERSION,
    lifespan=lifespan,
)


@app.exception_handler(InvalidInput)
async def invalid_input_handler(request: Request, exc: InvalidInput):
    return JSONResponse(status_code=400, content={"detail": str(exc)})


@app.exception_handler(Unauthorized)
async def unauthorized_handler(request: Request, exc: Unauthorized):
    return JSONResponse(status_code=401, content={"detail": str(exc)})


@app.exception_handler(ServiceUnavailable)
async def service_unavailable_handler(request: Request, exc: ServiceUnavailable):
    return JSONResponse(status_code=503, content={"detail": str(exc), "error": exc.kind})


# Request/Response models
class CreateFeedbackRequest(BaseModel):
    """Request body for POST /feedback."""
    workspace_id: str
    title: str
    description: Optional[str] = None
    vote_count: int = Field(default=0, ge=0)
    comment_count: int = Field(default=0, ge=0)
    unique_voters: int = Field(default=0, ge=0)
    author_tier: PlanTier = PlanTier.FREE
    author_company_size: Optional[str] = None
    author_is_champion: bool = False


class FeedbackResponse(BaseModel):
    """A feedback item with its enrichment fields."""
    id: str
    workspace_id: str
    title: str
    description: Optional[str]
    status: str
    category: str
    classification_confidence: Optional[float]
    is_machine_classified: bool
    vote_count: int
    priority_score: Optional[int]
    priority_level: Optional[str]
    sentiment_label: Optional[str]
    duplicate_of_id: Optional[str]
    created_at: Optional[datetime]

    @classmethod
    def from_item(cls, item: FeedbackItem) -> "FeedbackResponse":
        return cls(
            id=item.id,
            workspace_id=item.workspace_id,
            title=item.title,
            description=item.description,
            status=item.status,
            category=item.display_category,
            classification_confidence=item.classification_confidence,
            is_machine_classified=bool(item.is_machine_classified),
            vote_count=item.vote_count or 0,
            priority_score=item.priority_score,
            priority_level=item.priority_level,
            sentiment_label=item.sentiment_label,
            duplicate_of_id=item.duplicate_of_id,
            created_at=item.created_at,
        )


class FeedbackCreatedEvent(BaseModel):
    """Request body for POST /events/feedback-created."""
    id: str
    title: str
    description: Optional[str] = None
    workspace_id: str


class ReclassifyRequest(BaseModel):
    """Request body for POST /cron/reclassify."""
    confidence_threshold: Optional[float] = None
    limit: Optional[int] = None
    workspace_id: Optional[str] = None


class ReclassifyResponse(BaseModel):
    """Response body for POST /cron/reclassify."""
    processed_count: int
    updated_count: int
    skipped_count: int
    remaining: int | str
    errors: list[dict[str, str]] = []


class DuplicateCheckRequest(BaseModel):
    """Request body for POST /feedback/{id}/duplicates."""
    threshold: Optional[float] = None
    max_results: Optional[int] = None
    include_related: Optional[bool] = None


class CategoryOverrideRequest(BaseModel):
    """Request body for PUT /feedback/{id}/category."""
    category: str


class HealthResponse(BaseModel):
    """Response body for /health endpoint."""
    status: str
    service: str
    version: str
    environment: str
    checks: dict[str, str]


@app.get("/", response_model=dict)
async def root():
    """Root endpoint with basic service info."""
    config = get_config()
    return {
        "service": "feedback-triage",
        "version": VERSION,
        "environment": config.environment,
        "status": "running",
    }


@app.get("/health", response_model=HealthResponse)
async def health_check(services: Services = Depends(get_services)):
    """Health check endpoint.

    Verifies:
    - Database connectivity
    - Anthropic API key configured
    """
    config = get_config()
    checks = {}

    # Check database
    try:
        async with services.session_factory() as session:
            await session.execute(text("SELECT 1"))
        checks["database"] = "ok"
    except Exception as e:
        logger.error(f"Database health check failed: {e}")
        checks["database"] = f"error: {str(e)[:50]}"

    # Check Anthropic API key
    if config.anthropic.api_key:
        checks["anthropic"] = "configured"
    else:
        checks["anthropic"] = "missing"

    all_ok = all(v in ["ok", "configured"] for v in checks.values())

    return HealthResponse(
        status="healthy" if all_ok else "degraded",
        service="feedback-triage",
        version=VERSION,
        environment=config.environment,
        checks=checks,
    )


@app.post("/feedback", response_model=FeedbackResponse, status_code=201)
async def create_feedback(
    request: CreateFeedbackRequest,
    services: Services = Depends(get_services),
):
    """Create a feedback item and queue it for triage.

    Returns as soon as the item is persisted; classification, duplicate
    detection and scoring happen in the background.
    """
    title = request.title.strip()
    if not title:
        raise InvalidInput("Feedback title is required")

    async with services.session_factory() as session:
        workspace = await session.get(Workspace, request.workspace_id)
        if workspace is None:
            raise HTTPException(status_code=404, detail="Workspace not found")

        item = FeedbackItem(
            id=str(uuid.uuid4()),
            workspace_id=request.workspace_id,
            title=title,
            description=request.description,
            vote_count=request.vote_count,
            comment_count=request.comment_count,
            unique_voters=request.unique_voters,
            author_tier=request.author_tier.value,
            author_company_size=request.author_company_size,
            author_is_champion=request.author_is_champion,
        )
        session.add(item)
        await session.commit()
        await session.refresh(item)

    logger.info(f"Created feedback {item.id} in workspace {item.workspace_id}")
    await _enqueue_triage(services, item.id)
    return FeedbackResponse.from_item(item)


@app.post("/events/feedback-created", status_code=202)
async def feedback_created(
    event: FeedbackCreatedEvent,
    services: Services = Depends(get_services),
):
    """Queue triage for an item that was persisted elsewhere."""
    async with services.session_factory() as session:
        item = await session.get(FeedbackItem, event.id)
    if item is None:
        raise HTTPException(status_code=404, detail="Feedback not found")

    queued = await _enqueue_triage(services, event.id)
    return {"status": "queued" if queued else "not_queued", "id": event.id}


async def _enqueue_triage(services: Services, item_id: str) -> bool:
    try:
        await services.queue.enqueue(item_id)
    except RuntimeError as e:
        # Item stays uncategorized until the next reclassification run
        logger.error(f"Could not queue triage for {item_id}: {e}")
        return False
    return True


@app.post("/cron/reclassify", response_model=ReclassifyResponse)
async def reclassify(
    request: Optional[ReclassifyRequest] = None,
    authorization: Optional[str] = Header(default=None),
    services: Services = Depends(get_services),
):
    """Run one batch of reclassification.

    Called by the scheduler with the shared secret as a Bearer token.
    """
    expected = f"Bearer {services.cron_secret}"
    if not services.cron_secret or not authorization or not hmac.compare_digest(
        authorization.encode(), expected.encode()
    ):
        logger.warning("Rejected reclassification trigger without valid secret")
        raise Unauthorized("Invalid or missing cron secret")

    request = request or ReclassifyRequest()
    summary = await services.reclassification.run(
        confidence_threshold=request.confidence_threshold,
        limit=request.limit,
        workspace_id=request.workspace_id,
    )
    return ReclassifyResponse(**summary.to_dict())


@app.get("/workspaces/{workspace_id}/traces")
async def list_workspace_traces(
    workspace_id: str,
    feature: Optional[str] = None,
    search: Optional[str] = None,
    limit: int = 50,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """List a workspace's decision traces, newest first."""
    trace_feature = None
    if feature:
        try:
            trace_feature = TraceFeature(feature)
        except ValueError:
            raise InvalidInput(f"Unknown feature: {feature}")

    traces = await services.traces.list_traces(
        workspace_id, feature=trace_feature, search=search, limit=limit
    )
    return {"traces": [t.to_dict() for t in traces], "count": len(traces)}


@app.get("/traces/{entity_type}/{entity_id}")
async def get_entity_traces(
    entity_type: str,
    entity_id: str,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """All decision traces for one entity, newest first."""
    traces = await services.traces.get_for_entity(entity_type, entity_id)
    return {"traces": [t.to_dict() for t in traces], "count": len(traces)}


@app.post("/feedback/{item_id}/duplicates")
async def check_duplicates(
    item_id: str,
    request: Optional[DuplicateCheckRequest] = None,
    services: Services = Depends(get_services),
) -> dict[str, Any]:
    """Run a duplicate check for one item now and return the candidates."""
    async with services.session_factory() as session:
        item = await session.get(FeedbackItem, item_id)
    if item is None:
        raise HTTPException(status_code=404, detail="Feedback not found")

    config = services.orchestrator.config
    request = request or DuplicateCheckRequest()
    options = DuplicateOptions(
        threshold=request.threshold if request.threshold is not None else config.similarity_threshold,
        max_results=(
            request.max_results if request.max_results is not None
            else config.max_duplicate_results
        ),
        include_related=(
            request.include_related if request.include_related is not None else config.include_related
        ),
    )

    duplicates = await services.orchestrator.find_duplicates_for_item(item, options)
    return {"id": item_id, "duplicates": [asdict(d) for d in duplicates]}


@app.put("/feedback/{item_id}/category", response_model=FeedbackResponse)
async def override_category(
    item_id: str,
    request: CategoryOverrideRequest,
    services: Services = Depends(get_services),
):
    """Set the category by hand. Human overrides are never reclassified."""
    category = Category.from_label(request.category)
    if category is Category.OTHER and request.category.strip().lower() != "other":
        raise InvalidInput(f"Unknown category: {request.category}")

    async with services.session_factory() as session:
        item = await session.get(FeedbackItem, item_id)
        if item is None:
            raise HTTPException(status_code=404, detail="Feedback not found")

        item.category = category.value
        item.classification_confidence = 1.0
        item.classification_reasoning = "Set manually"
        item.is_machine_classified = False
        item.is_human_categorized = True
        await session.commit()
        await session.refresh(item)

    logger.info(f"Category of {item_id} set manually to {category.value}")
    return FeedbackResponse.from_item(item)


# Run with uvicorn when called directly
if __name__ == "__main__":
    import uvicorn

    port = int(os.environ.get("PORT", 8080))
    uvicorn.run(app, host="0.0.0.0", port=port)
