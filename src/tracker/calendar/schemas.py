"""Pydantic schemas for calendar sync -- sync state, stored events, run results.

Defines:
- Enums: SyncStatus, SyncMode, MatchSource
- Stored records: SyncStateRead, CalendarEventRead, CalendarEventUpsert
- Results: UserSyncResult, SyncErrorDetail, BatchSyncResult, RecalculateResult
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


# ── Enums ───────────────────────────────────────────────────────────────────


class SyncStatus(str, Enum):
    """Outcome recorded on SyncState after each attempt."""

    SUCCESS = "success"
    FAILED = "failed"
    TOKEN_INVALIDATED = "token_invalidated"


class SyncMode(str, Enum):
    """Full window fetch vs. sync-token delta fetch."""

    FULL = "full"
    INCREMENTAL = "incremental"


class MatchSource(str, Enum):
    """Which matching strategy linked an event to CRM records."""

    CONTACT = "contact"
    DOMAIN = "domain"
    NONE = "none"


# ── Stored Records ──────────────────────────────────────────────────────────


class SyncStateRead(BaseModel):
    """Per-user, per-provider sync cursor and bookkeeping."""

    id: str
    user_id: str
    provider: str = "google"
    sync_token: str | None = None
    time_min: datetime | None = None
    time_max: datetime | None = None
    last_sync_at: datetime | None = None
    last_sync_status: SyncStatus | None = None
    last_sync_error: str | None = None


class SyncStateUpdate(BaseModel):
    """Partial SyncState update; only explicitly set fields are written.

    Setting ``sync_token=None`` explicitly clears the cursor.
    """

    sync_token: str | None = None
    time_min: datetime | None = None
    time_max: datetime | None = None
    last_sync_at: datetime | None = None
    last_sync_status: SyncStatus | None = None
    last_sync_error: str | None = None


class CalendarEventUpsert(BaseModel):
    """Fields written when creating or updating a stored calendar event."""

    google_event_id: str
    summary: str
    description: str | None = None
    location: str | None = None
    start_time: datetime
    end_time: datetime
    attendees: list[str] = Field(default_factory=list)
    organizer_email: str | None = None
    meeting_url: str | None = None
    is_external: bool = False
    opportunity_id: str | None = None
    account_id: str | None = None


class CalendarEventRead(CalendarEventUpsert):
    """Stored calendar event."""

    id: str
    user_id: str
    created_at: datetime | None = None
    updated_at: datetime | None = None


# ── Results ─────────────────────────────────────────────────────────────────


class UserSyncResult(BaseModel):
    """Counters and outcome for one user's sync invocation."""

    user_id: str
    mode: SyncMode
    status: SyncStatus
    token_invalidated: bool = False
    pages_fetched: int = 0
    events_processed: int = 0
    events_created: int = 0
    events_updated: int = 0
    events_deleted: int = 0
    events_skipped: int = 0
    events_failed: int = 0
    matched_by_contact: int = 0
    matched_by_domain: int = 0
    error: str | None = None


class SyncErrorDetail(BaseModel):
    user_id: str
    error: str


class BatchSyncResult(BaseModel):
    """Summary of a scheduled sync over all eligible users."""

    total_users: int = 0
    successful: int = 0
    failed: int = 0
    errors: list[SyncErrorDetail] = Field(default_factory=list)


class RecalculateResult(BaseModel):
    """Result of re-evaluating is_external for an organization's events."""

    processed: int = 0
    updated: int = 0
    error: str | None = None
