"""Google Calendar API v3 client for incremental event sync.

Lists a user's primary calendar one page at a time in one of two modes:

- Full sync: ``time_min``/``time_max`` window, ordered by start time.
- Incremental sync: ``sync_token`` only; Google ignores any date range and
  returns changes since the token was issued.

Deleted events are requested (``showDeleted``) so removals can be mirrored.
An HTTP 410 response means the sync token is no longer valid and is raised as
SyncTokenInvalidError; the caller is expected to fall back to a full sync.

All Google API calls are wrapped in asyncio.to_thread() to avoid blocking the
event loop.
"""

from __future__ import annotations

import asyncio
from datetime import datetime, timezone
from typing import TYPE_CHECKING, Any

import structlog
from google.oauth2.credentials import Credentials
from googleapiclient.discovery import build
from googleapiclient.errors import HttpError

from src.tracker.services.google.models import CalendarPage, GoogleCalendarEvent

if TYPE_CHECKING:
    from src.tracker.services.google.oauth import OAuthTokenService

logger = structlog.get_logger(__name__)

CALENDAR_SCOPES = [
    "https://www.googleapis.com/auth/calendar.readonly",
]

HTTP_GONE = 410


class SyncTokenInvalidError(Exception):
    """Raised when Google rejects a sync token (HTTP 410 Gone)."""

    def __init__(self, message: str = "Sync token has been invalidated") -> None:
        super().__init__(message)


class CalendarAPIError(Exception):
    """Raised for any other Calendar API failure."""

    def __init__(self, message: str, status_code: int | None = None) -> None:
        super().__init__(message)
        self.status_code = status_code


# ── Event Parsing ────────────────────────────────────────────────────────────


def _parse_event_time(value: dict | None) -> datetime | None:
    """Parse a Calendar start/end object (``dateTime`` or all-day ``date``)."""
    if not value:
        return None
    raw = value.get("dateTime") or value.get("date")
    if not raw:
        return None
    parsed = datetime.fromisoformat(raw.replace("Z", "+00:00"))
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def _extract_meeting_url(event: dict) -> str | None:
    if event.get("hangoutLink"):
        return event["hangoutLink"]
    entry_points = (event.get("conferenceData") or {}).get("entryPoints", [])
    for ep in entry_points:
        if ep.get("entryPointType") == "video" and ep.get("uri"):
            return ep["uri"]
    return None


def parse_event(event: dict) -> GoogleCalendarEvent | None:
    """Normalize a raw Calendar event dict.

    Cancelled events come back with only an id, so they are returned as a
    minimal record. Non-cancelled events missing an id, start, or end are
    dropped (None).
    """
    event_id = event.get("id")
    if not event_id:
        return None

    if event.get("status") == "cancelled":
        return GoogleCalendarEvent(
            id=event_id,
            status="cancelled",
            summary=event.get("summary") or "(Deleted)",
        )

    start = _parse_event_time(event.get("start"))
    end = _parse_event_time(event.get("end"))
    if start is None or end is None:
        return None

    attendees = [a["email"] for a in event.get("attendees", []) if a.get("email")]

    return GoogleCalendarEvent(
        id=event_id,
        status=event.get("status") or "confirmed",
        summary=event.get("summary") or "(No title)",
        description=event.get("description") or None,
        location=event.get("location") or None,
        start=start,
        end=end,
        attendees=attendees,
        organizer_email=(event.get("organizer") or {}).get("email"),
        meeting_url=_extract_meeting_url(event),
    )


# ── Client ───────────────────────────────────────────────────────────────────


class GoogleCalendarClient:
    """Async wrapper around Calendar API v3 ``events.list`` for one user at a time.

    Args:
        token_service: OAuthTokenService resolving each user's access token.
        calendar_id: Calendar to sync (default: the user's primary calendar).
    """

    def __init__(
        self, token_service: OAuthTokenService, calendar_id: str = "primary"
    ) -> None:
        self._token_service = token_service
        self._calendar_id = calendar_id

    def _build_service(self, access_token: str) -> Any:
        credentials = Credentials(token=access_token, scopes=CALENDAR_SCOPES)
        return build("calendar", "v3", credentials=credentials, cache_discovery=False)

    async def list_events_page(
        self,
        user_id: str,
        *,
        sync_token: str | None = None,
        time_min: datetime | None = None,
        time_max: datetime | None = None,
        page_token: str | None = None,
        max_results: int = 50,
    ) -> CalendarPage:
        """Fetch one page of events for a user.

        Args:
            user_id: User whose calendar to read.
            sync_token: Cursor from a previous pass (incremental mode).
            time_min: Window start (full mode, required without sync_token).
            time_max: Window end (full mode, required without sync_token).
            page_token: Token for the next page of the current pass.
            max_results: Page size.

        Returns:
            CalendarPage with parsed events and the next page/sync tokens.

        Raises:
            TokenInvalidError: If the user's OAuth credentials are unusable.
            SyncTokenInvalidError: If Google rejects ``sync_token`` (410).
            CalendarAPIError: On any other Calendar API error.
        """
        params: dict[str, Any] = {
            "calendarId": self._calendar_id,
            "singleEvents": True,
            "showDeleted": True,
            "maxResults": max_results,
        }
        if sync_token:
            params["syncToken"] = sync_token
        else:
            if time_min is None or time_max is None:
                raise ValueError("time_min and time_max are required for a full sync")
            params["timeMin"] = time_min.isoformat()
            params["timeMax"] = time_max.isoformat()
            params["orderBy"] = "startTime"
        if page_token:
            params["pageToken"] = page_token

        access_token = await self._token_service.get_valid_access_token(user_id)
        service = self._build_service(access_token)

        def _list() -> dict:
            return service.events().list(**params).execute()

        try:
            response = await asyncio.to_thread(_list)
        except HttpError as exc:
            status_code = exc.resp.status if exc.resp is not None else None
            if status_code == HTTP_GONE:
                logger.info("google_calendar.sync_token_invalid", user_id=user_id)
                raise SyncTokenInvalidError() from exc
            logger.error(
                "google_calendar.list_failed",
                user_id=user_id,
                status_code=status_code,
            )
            raise CalendarAPIError(
                f"Failed to fetch calendar events: HTTP {status_code}",
                status_code=status_code,
            ) from exc

        events = []
        for raw in response.get("items") or []:
            parsed = parse_event(raw)
            if parsed is not None:
                events.append(parsed)

        return CalendarPage(
            events=events,
            next_page_token=response.get("nextPageToken"),
            next_sync_token=response.get("nextSyncToken"),
        )
