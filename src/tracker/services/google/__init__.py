"""Google integration services for calendar sync.

Provides the OAuth token service (encrypted storage and refresh of
user-consented tokens) and an async-wrapped Calendar API v3 client supporting
full and sync-token incremental listing.
"""

from src.tracker.services.google.calendar import (
    CalendarAPIError,
    GoogleCalendarClient,
    SyncTokenInvalidError,
)
from src.tracker.services.google.models import CalendarPage, GoogleCalendarEvent
from src.tracker.services.google.oauth import OAuthTokenService, TokenInvalidError
from src.tracker.services.google.repository import OAuthTokenRepository

__all__ = [
    "CalendarAPIError",
    "CalendarPage",
    "GoogleCalendarClient",
    "GoogleCalendarEvent",
    "OAuthTokenRepository",
    "OAuthTokenService",
    "SyncTokenInvalidError",
    "TokenInvalidError",
]
