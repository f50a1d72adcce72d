"""DecisionTrace model - audit record for every automated decision."""

from datetime import datetime
from typing import Any, Optional
from sqlalchemy import String, Integer, Float, Text, TIMESTAMP, JSON, Index
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from feedback_triage.models.base import Base


class DecisionTrace(Base):
    """Immutable audit record of one automated decision.

    Maps to the 'decision_traces' table. Written once per executed step
    (successful or failed) and never updated afterwards.
    """
    __tablename__ = "decision_traces"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    workspace_id: Mapped[Optional[str]] = mapped_column(String(36))
    feature: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_type: Mapped[str] = mapped_column(String(50), nullable=False)
    entity_id: Mapped[str] = mapped_column(String(36), nullable=False)
    decision_summary: Mapped[str] = mapped_column(Text, nullable=False)

    inputs: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    outputs: Mapped[dict[str, Any]] = mapped_column(JSON, nullable=False)
    confidence: Mapped[Optional[float]] = mapped_column(Float)
    reasoning_steps: Mapped[list[str]] = mapped_column(JSON, nullable=False)

    status: Mapped[str] = mapped_column(String(20), nullable=False)
    model_used: Mapped[Optional[str]] = mapped_column(String(100))
    latency_ms: Mapped[Optional[int]] = mapped_column(Integer)
    created_at: Mapped[datetime] = mapped_column(TIMESTAMP, server_default=func.now())

    __table_args__ = (
        Index("idx_decision_traces_workspace", "workspace_id"),
        Index("idx_decision_traces_entity", "entity_type", "entity_id"),
        Index("idx_decision_traces_created_at", "created_at"),
    )

    def __repr__(self) -> str:
        return f"<DecisionTrace {self.id}: {self.feature} on {self.entity_id} ({self.status})>"

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "workspace_id": self.workspace_id,
            "feature": self.feature,
            "entity_type": self.entity_type,
            "entity_id": self.entity_id,
            "decision_summary": self.decision_summary,
            "inputs": self.inputs,
            "outputs": self.outputs,
            "confidence": self.confidence,
            "reasoning_steps": self.reasoning_steps,
            "status": self.status,
            "model_used": self.model_used,
            "latency_ms": self.latency_ms,
            "created_at": self.created_at.isoformat() if self.created_at else None,
        }
