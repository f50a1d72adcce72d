"""FeedbackItem model - user-submitted feedback and its enrichment fields."""

from datetime import datetime
from typing import Optional
from sqlalchemy import (
    String, Text, Float, Integer, Boolean, TIMESTAMP, ForeignKey, Index, CheckConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from feedback_triage.models.base import Base
from feedback_triage.models.enums import FeedbackStatus


STATUS_VALUES = ", ".join(f"'{s.value}'" for s in FeedbackStatus)


class FeedbackItem(Base):
    """A unit of user feedback.

    Maps to the 'feedback_items' table. Category, confidence and reasoning
    are written only by the triage workflow, the reclassification job or a
    human override.
    """
    __tablename__ = "feedback_items"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    workspace_id: Mapped[str] = mapped_column(
        String(36),
        ForeignKey("workspaces.id", ondelete="CASCADE"),
        nullable=False,
    )

    title: Mapped[str] = mapped_column(String(500), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text)
    status: Mapped[str] = mapped_column(String(20), default=FeedbackStatus.OPEN.value)

    # Classification results
    category: Mapped[Optional[str]] = mapped_column(String(50))
    classification_confidence: Mapped[Optional[float]] = mapped_column(Float)
    classification_reasoning: Mapped[Optional[str]] = mapped_column(Text)
    is_machine_classified: Mapped[bool] = mapped_column(Boolean, default=False)
    is_human_categorized: Mapped[bool] = mapped_column(Boolean, default=False)

    # Engagement counters
    vote_count: Mapped[int] = mapped_column(Integer, default=0)
    comment_count: Mapped[int] = mapped_column(Integer, default=0)
    unique_voters: Mapped[int] = mapped_column(Integer, default=0)

    # Requester attributes
    author_tier: Mapped[str] = mapped_column(String(20), default="free")
    author_company_size: Mapped[Optional[str]] = mapped_column(String(20))
    author_is_champion: Mapped[bool] = mapped_column(Boolean, default=False)

    # Enrichment
    priority_score: Mapped[Optional[int]] = mapped_column(Integer)
    priority_level: Mapped[Optional[str]] = mapped_column(String(20))
    sentiment_label: Mapped[Optional[str]] = mapped_column(String(20))
    sentiment_score: Mapped[Optional[int]] = mapped_column(Integer)

    duplicate_of_id: Mapped[Optional[str]] = mapped_column(
        String(36),
        ForeignKey("feedback_items.id", ondelete="SET NULL"),
    )

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP, server_default=func.now())
    updated_at: Mapped[datetime] = mapped_column(
        TIMESTAMP, server_default=func.now(), onupdate=func.now()
    )

    __table_args__ = (
        Index("idx_feedback_items_workspace", "workspace_id"),
        Index("idx_feedback_items_created_at", "created_at"),
        Index("idx_feedback_items_category", "category"),
        CheckConstraint(f"status IN ({STATUS_VALUES})", name="ck_feedback_items_status"),
    )

    def __repr__(self) -> str:
        return f"<FeedbackItem {self.id}: {self.title[:50]}>"

    @property
    def text(self) -> str:
        """Title and description combined for text analysis."""
        return f"{self.title} {self.description or ''}".strip()

    @property
    def display_category(self) -> str:
        """Category label for downstream display."""
        return self.category or "uncategorized"
