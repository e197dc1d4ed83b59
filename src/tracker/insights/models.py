"""Transcript insight persistence models.

GongCallModel and GranolaNoteModel hold one parsed meeting each (the two
transcript sources). Both share the insight shape consumed by consolidation:
meeting_date, optional calendar_event_id link, pain_points, goals, and
risk_assessment JSON.

ConsolidatedInsightsModel is the per-opportunity snapshot, unique on
opportunity_id and overwritten on every successful consolidation run.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import DateTime, Integer, String, Text, UniqueConstraint, func, text
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.tracker.core.database import Base


class _ParsedTranscriptColumns:
    """Columns shared by both transcript sources."""

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    opportunity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False, index=True)
    title: Mapped[str] = mapped_column(String(500), nullable=False)
    meeting_date: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    calendar_event_id: Mapped[str | None] = mapped_column(String(1024), nullable=True)
    transcript: Mapped[str | None] = mapped_column(Text, nullable=True)
    parsing_status: Mapped[str] = mapped_column(
        String(20), default="pending", server_default=text("'pending'")
    )
    parsed_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    pain_points: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    goals: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    risk_assessment: Mapped[dict | None] = mapped_column(JSON, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class GongCallModel(_ParsedTranscriptColumns, Base):
    """Parsed Gong call recording."""

    __tablename__ = "gong_calls"

    gong_call_id: Mapped[str | None] = mapped_column(String(200), nullable=True)


class GranolaNoteModel(_ParsedTranscriptColumns, Base):
    """Parsed Granola meeting note."""

    __tablename__ = "granola_notes"


class ConsolidatedInsightsModel(Base):
    """Latest consolidated insight snapshot for an opportunity."""

    __tablename__ = "consolidated_opportunity_insights"
    __table_args__ = (
        UniqueConstraint("opportunity_id", name="uq_consolidated_insights_opportunity"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    opportunity_id: Mapped[uuid.UUID] = mapped_column(UUID(as_uuid=True), nullable=False)
    pain_points: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    goals: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    risk_assessment: Mapped[dict] = mapped_column(
        JSON, default=dict, server_default=text("'{}'::json")
    )
    why_and_why_now: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    quantifiable_metrics: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    key_quotes: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    objections: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    meeting_count: Mapped[int] = mapped_column(Integer, default=0, server_default=text("0"))
    consolidated_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
