"""Pydantic models for Google API payloads used by the calendar sync."""

from __future__ import annotations

from datetime import datetime

from pydantic import BaseModel, Field


class GoogleCalendarEvent(BaseModel):
    """Normalized Google Calendar event.

    Cancelled events arrive minimal from the API (id and status only), so
    every field except ``id`` and ``status`` is optional.
    """

    id: str
    status: str = "confirmed"
    summary: str = "(No title)"
    description: str | None = None
    location: str | None = None
    start: datetime | None = None
    end: datetime | None = None
    attendees: list[str] = Field(default_factory=list)
    organizer_email: str | None = None
    meeting_url: str | None = None

    @property
    def is_cancelled(self) -> bool:
        return self.status == "cancelled"


class CalendarPage(BaseModel):
    """One page of a Calendar events.list response.

    ``next_sync_token`` is only present on the final page.
    """

    events: list[GoogleCalendarEvent] = Field(default_factory=list)
    next_page_token: str | None = None
    next_sync_token: str | None = None


class StoredOAuthToken(BaseModel):
    """OAuth token row as persisted (token values still encrypted)."""

    user_id: str
    provider: str
    access_token: str
    refresh_token: str | None = None
    expires_at: datetime
    scope: str | None = None


class OAuthTokenGrant(BaseModel):
    """Response from Google's OAuth token endpoint (refresh grant)."""

    access_token: str
    expires_in: int = 3600
    refresh_token: str | None = None
    scope: str | None = None
    token_type: str = "Bearer"
