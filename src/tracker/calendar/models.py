"""Calendar persistence models -- mirrored events and per-user sync cursors.

CalendarEventModel is unique per (user_id, google_event_id); the sync engine
upserts by that key. CalendarSyncStateModel is unique per (user_id, provider)
and holds the opaque provider cursor plus the window used for full syncs.
"""

from __future__ import annotations

import uuid
from datetime import datetime

from sqlalchemy import (
    Boolean,
    DateTime,
    ForeignKey,
    Index,
    String,
    Text,
    UniqueConstraint,
    func,
    text,
)
from sqlalchemy.dialects.postgresql import JSON, UUID
from sqlalchemy.orm import Mapped, mapped_column

from src.tracker.core.database import Base


class CalendarSyncStateModel(Base):
    """Incremental sync bookkeeping for one user's calendar."""

    __tablename__ = "calendar_sync_states"
    __table_args__ = (
        UniqueConstraint("user_id", "provider", name="uq_calendar_sync_state_user_provider"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    provider: Mapped[str] = mapped_column(
        String(50), default="google", server_default=text("'google'")
    )
    sync_token: Mapped[str | None] = mapped_column(Text, nullable=True)
    time_min: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    time_max: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_sync_at: Mapped[datetime | None] = mapped_column(DateTime(timezone=True), nullable=True)
    last_sync_status: Mapped[str | None] = mapped_column(String(30), nullable=True)
    last_sync_error: Mapped[str | None] = mapped_column(Text, nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )


class CalendarEventModel(Base):
    """Locally stored copy of an external calendar event."""

    __tablename__ = "calendar_events"
    __table_args__ = (
        UniqueConstraint("user_id", "google_event_id", name="uq_calendar_event_user_google_id"),
        Index("ix_calendar_events_user_start", "user_id", "start_time"),
        Index("ix_calendar_events_opportunity", "opportunity_id"),
    )

    id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        primary_key=True,
        server_default=text("gen_random_uuid()"),
    )
    user_id: Mapped[uuid.UUID] = mapped_column(
        UUID(as_uuid=True),
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
    )
    google_event_id: Mapped[str] = mapped_column(String(1024), nullable=False)
    summary: Mapped[str] = mapped_column(String(1000), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    start_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    end_time: Mapped[datetime] = mapped_column(DateTime(timezone=True), nullable=False)
    attendees: Mapped[list] = mapped_column(
        JSON, default=list, server_default=text("'[]'::json")
    )
    organizer_email: Mapped[str | None] = mapped_column(String(255), nullable=True)
    meeting_url: Mapped[str | None] = mapped_column(String(1000), nullable=True)
    is_external: Mapped[bool] = mapped_column(
        Boolean, default=False, server_default=text("false")
    )
    opportunity_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    account_id: Mapped[uuid.UUID | None] = mapped_column(UUID(as_uuid=True), nullable=True)
    created_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        server_default=func.now(),
    )
    updated_at: Mapped[datetime | None] = mapped_column(
        DateTime(timezone=True),
        onupdate=func.now(),
        nullable=True,
    )
