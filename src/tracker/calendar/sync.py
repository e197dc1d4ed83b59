"""Incremental calendar sync engine.

Each user's calendar moves through a small state machine stored in
CalendarSyncStateModel:

- No state yet: a state is created with no cursor and a window of
  ``window_days`` either side of now.
- No cursor: full sync over the stored window.
- Cursor present: incremental sync from the cursor (the window is ignored).
- Cursor rejected (HTTP 410): the cursor is cleared, the invalidation is
  recorded, and a full sync runs immediately in the same invocation.

A pass paginates until Google stops returning a next-page token. Success
persists the new cursor and ``last_sync_at``; failure persists the error and
leaves the cursor as it was so the next run retries the same mode.

Events are reconciled one at a time in page order:

1. Cancelled upstream -> delete the stored copy (no-op when absent).
2. Internal and not stored -> skip; only external events are kept.
3. Internal but stored (was external before) -> delete the stored copy.
4. External -> match to an opportunity/account and upsert.

A failure on one event is logged and counted; it never aborts the pass.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import structlog

from src.tracker.calendar.classifier import is_external_event
from src.tracker.calendar.matching import MatchMaps, build_match_maps, match_event
from src.tracker.calendar.schemas import (
    BatchSyncResult,
    CalendarEventUpsert,
    MatchSource,
    SyncErrorDetail,
    SyncMode,
    SyncStateRead,
    SyncStateUpdate,
    SyncStatus,
    UserSyncResult,
)
from src.tracker.services.google.calendar import CalendarAPIError, SyncTokenInvalidError
from src.tracker.services.google.oauth import GOOGLE_PROVIDER, TokenInvalidError

if TYPE_CHECKING:
    from src.tracker.calendar.repository import CalendarRepository
    from src.tracker.deals.repository import DealRepository
    from src.tracker.deals.schemas import UserRead
    from src.tracker.services.google.calendar import GoogleCalendarClient
    from src.tracker.services.google.models import GoogleCalendarEvent

logger = structlog.get_logger(__name__)


class CalendarSyncEngine:
    """Syncs users' Google calendars into stored CalendarEvent rows.

    Args:
        calendar_client: GoogleCalendarClient for paginated event listing.
        calendar_repository: CalendarRepository for sync state and events.
        deal_repository: DealRepository for users and matching inputs.
        window_days: Days either side of now covered by a full sync.
        page_size: Events requested per page.
        max_pages: Safety limit on pages fetched in one pass.
    """

    def __init__(
        self,
        calendar_client: GoogleCalendarClient,
        calendar_repository: CalendarRepository,
        deal_repository: DealRepository,
        window_days: int = 90,
        page_size: int = 50,
        max_pages: int = 100,
    ) -> None:
        self._client = calendar_client
        self._calendar_repo = calendar_repository
        self._deal_repo = deal_repository
        self._window_days = window_days
        self._page_size = page_size
        self._max_pages = max_pages

    # ── Batch ────────────────────────────────────────────────────────────────

    async def sync_all_users(self) -> BatchSyncResult:
        """Sync every user with a connected Google calendar, one at a time.

        A user whose credentials are unusable or whose calendar cannot be
        read is recorded as failed and skipped. Anything else (database
        outage and the like) propagates so the job-level retry can handle it.
        """
        users = await self._deal_repo.list_users_with_oauth(GOOGLE_PROVIDER)
        batch = BatchSyncResult(total_users=len(users))

        if not users:
            logger.info("calendar_sync.no_connected_users")
            return batch

        for user in users:
            result = await self.sync_user(user)
            if result.status == SyncStatus.FAILED:
                batch.failed += 1
                batch.errors.append(
                    SyncErrorDetail(user_id=user.id, error=result.error or "Unknown error")
                )
            else:
                batch.successful += 1

        logger.info(
            "calendar_sync.batch_completed",
            total_users=batch.total_users,
            successful=batch.successful,
            failed=batch.failed,
        )
        return batch

    async def sync_user_by_id(self, user_id: str) -> UserSyncResult:
        """Sync one user's calendar.

        Raises:
            LookupError: If the user does not exist.
        """
        user = await self._deal_repo.get_user(user_id)
        if user is None:
            raise LookupError(f"User not found: {user_id}")
        return await self.sync_user(user)

    # ── Per-user ─────────────────────────────────────────────────────────────

    async def sync_user(self, user: UserRead) -> UserSyncResult:
        """Run one sync invocation for a user (including 410 recovery)."""
        state = await self._ensure_sync_state(user.id)
        maps = await self._load_match_maps(user)
        mode = SyncMode.INCREMENTAL if state.sync_token else SyncMode.FULL
        token_invalidated = False

        try:
            try:
                result = await self._run_pass(user, state, mode, maps)
            except SyncTokenInvalidError as exc:
                logger.warning(
                    "calendar_sync.sync_token_invalidated",
                    user_id=user.id,
                    reason=str(exc),
                )
                state = await self._calendar_repo.update_sync_state(
                    user.id,
                    SyncStateUpdate(
                        sync_token=None,
                        last_sync_status=SyncStatus.TOKEN_INVALIDATED,
                        last_sync_error=str(exc),
                    ),
                )
                token_invalidated = True
                mode = SyncMode.FULL
                result = await self._run_pass(user, state, mode, maps)
        except (TokenInvalidError, CalendarAPIError, SyncTokenInvalidError) as exc:
            error = str(exc) or type(exc).__name__
            logger.warning(
                "calendar_sync.user_failed",
                user_id=user.id,
                mode=mode.value,
                error=error,
            )
            await self._calendar_repo.update_sync_state(
                user.id,
                SyncStateUpdate(last_sync_status=SyncStatus.FAILED, last_sync_error=error),
            )
            return UserSyncResult(
                user_id=user.id,
                mode=mode,
                status=SyncStatus.FAILED,
                token_invalidated=token_invalidated,
                error=error,
            )

        result.token_invalidated = token_invalidated
        return result

    async def _ensure_sync_state(self, user_id: str) -> SyncStateRead:
        state = await self._calendar_repo.get_sync_state(user_id, GOOGLE_PROVIDER)
        if state is not None:
            return state
        now = datetime.now(timezone.utc)
        window = timedelta(days=self._window_days)
        return await self._calendar_repo.create_sync_state(
            user_id, now - window, now + window, GOOGLE_PROVIDER
        )

    async def _load_match_maps(self, user: UserRead) -> MatchMaps:
        if not user.organization_id:
            return MatchMaps()
        contacts = await self._deal_repo.list_contacts_with_email(user.organization_id)
        accounts = await self._deal_repo.list_accounts(user.organization_id)
        opportunities = await self._deal_repo.list_opportunities(user.organization_id)
        return build_match_maps(contacts, accounts, opportunities)

    def _full_sync_window(self, state: SyncStateRead) -> tuple[datetime, datetime]:
        if state.time_min and state.time_max:
            return state.time_min, state.time_max
        now = datetime.now(timezone.utc)
        window = timedelta(days=self._window_days)
        return now - window, now + window

    async def _run_pass(
        self,
        user: UserRead,
        state: SyncStateRead,
        mode: SyncMode,
        maps: MatchMaps,
    ) -> UserSyncResult:
        result = UserSyncResult(user_id=user.id, mode=mode, status=SyncStatus.SUCCESS)
        sync_token = state.sync_token if mode == SyncMode.INCREMENTAL else None
        time_min, time_max = (None, None)
        if mode == SyncMode.FULL:
            time_min, time_max = self._full_sync_window(state)

        page_token: str | None = None
        next_sync_token: str | None = None

        while True:
            page = await self._client.list_events_page(
                user.id,
                sync_token=sync_token,
                time_min=time_min,
                time_max=time_max,
                page_token=page_token,
                max_results=self._page_size,
            )
            result.pages_fetched += 1

            for event in page.events:
                await self._reconcile_event(user, event, maps, result)

            if page.next_sync_token:
                next_sync_token = page.next_sync_token
            page_token = page.next_page_token
            if not page_token:
                break
            if result.pages_fetched >= self._max_pages:
                logger.warning(
                    "calendar_sync.max_pages_reached",
                    user_id=user.id,
                    max_pages=self._max_pages,
                )
                break

        update = SyncStateUpdate(
            last_sync_at=datetime.now(timezone.utc),
            last_sync_status=SyncStatus.SUCCESS,
            last_sync_error=None,
        )
        if next_sync_token:
            update.sync_token = next_sync_token
        await self._calendar_repo.update_sync_state(user.id, update)

        logger.info(
            "calendar_sync.user_completed",
            user_id=user.id,
            mode=mode.value,
            pages=result.pages_fetched,
            processed=result.events_processed,
            created=result.events_created,
            updated=result.events_updated,
            deleted=result.events_deleted,
            failed=result.events_failed,
            matched_by_contact=result.matched_by_contact,
            matched_by_domain=result.matched_by_domain,
        )
        return result

    async def _reconcile_event(
        self,
        user: UserRead,
        event: GoogleCalendarEvent,
        maps: MatchMaps,
        result: UserSyncResult,
    ) -> None:
        result.events_processed += 1
        try:
            existing = await self._calendar_repo.get_event(user.id, event.id)

            if event.is_cancelled:
                if existing is not None:
                    await self._calendar_repo.delete_event(user.id, event.id)
                    result.events_deleted += 1
                else:
                    result.events_skipped += 1
                return

            is_external = is_external_event(
                event.attendees, user.organization_domain, user.email
            )
            if not is_external:
                if existing is not None:
                    await self._calendar_repo.delete_event(user.id, event.id)
                    result.events_deleted += 1
                else:
                    result.events_skipped += 1
                return

            match = match_event(event.attendees, event.summary, maps)
            if match.matched_by == MatchSource.CONTACT:
                result.matched_by_contact += 1
            elif match.matched_by == MatchSource.DOMAIN:
                result.matched_by_domain += 1

            await self._calendar_repo.upsert_event(
                user.id,
                CalendarEventUpsert(
                    google_event_id=event.id,
                    summary=event.summary,
                    description=event.description,
                    location=event.location,
                    start_time=event.start,
                    end_time=event.end,
                    attendees=event.attendees,
                    organizer_email=event.organizer_email,
                    meeting_url=event.meeting_url,
                    is_external=True,
                    opportunity_id=match.opportunity_id,
                    account_id=match.account_id,
                ),
            )
            if existing is None:
                result.events_created += 1
            else:
                result.events_updated += 1
        except Exception:
            result.events_failed += 1
            logger.exception(
                "calendar_sync.event_failed",
                user_id=user.id,
                google_event_id=event.id,
            )
