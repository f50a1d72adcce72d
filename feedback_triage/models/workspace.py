"""Workspace model - the tenant that owns feedback and gates enrichment."""

from datetime import datetime
from typing import Optional
from sqlalchemy import String, Boolean, TIMESTAMP
from sqlalchemy.orm import Mapped, mapped_column
from sqlalchemy.sql import func

from feedback_triage.models.base import Base


class Workspace(Base):
    """Tenant / billing boundary.

    Maps to the 'workspaces' table. Only workspaces whose plan includes
    automated enrichment (``has_enrichment``) are triaged.
    """
    __tablename__ = "workspaces"

    id: Mapped[str] = mapped_column(String(36), primary_key=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    plan: Mapped[str] = mapped_column(String(20), default="free")
    has_enrichment: Mapped[bool] = mapped_column(Boolean, default=False)

    # Business context fed to the priority model
    company_strategy: Mapped[str] = mapped_column(String(20), default="growth")
    current_period_label: Mapped[Optional[str]] = mapped_column(String(20))
    upcoming_milestone: Mapped[Optional[str]] = mapped_column(String(255))

    created_at: Mapped[datetime] = mapped_column(TIMESTAMP, server_default=func.now())

    def __repr__(self) -> str:
        return f"<Workspace {self.id}: {self.name} ({self.plan})>"
