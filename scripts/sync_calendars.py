#!/usr/bin/env python3
"""CLI script to run a calendar sync outside the API process.

Usage:
    uv run python scripts/sync_calendars.py                  # every connected user
    uv run python scripts/sync_calendars.py --user-id <uuid> # one user
    uv run python scripts/sync_calendars.py --recalculate-org <uuid>

Connects directly to the database using DATABASE_URL from environment or .env file.
Exit code 0 if every sync succeeded, 1 otherwise.
"""

from __future__ import annotations

import argparse
import asyncio
import os
import sys

# Ensure project root is on sys.path so we can import src.tracker
sys.path.insert(0, os.path.join(os.path.dirname(__file__), ".."))

from dotenv import load_dotenv  # noqa: E402

# Load .env from project root
load_dotenv(os.path.join(os.path.dirname(__file__), "..", ".env"))


def _build_engine():
    """Wire a CalendarSyncEngine from settings, as the API lifespan does."""
    from src.tracker.calendar.repository import CalendarRepository
    from src.tracker.calendar.sync import CalendarSyncEngine
    from src.tracker.config import get_settings
    from src.tracker.core.database import get_session
    from src.tracker.deals.repository import DealRepository
    from src.tracker.services.google import (
        GoogleCalendarClient,
        OAuthTokenRepository,
        OAuthTokenService,
    )

    settings = get_settings()
    if not (settings.GOOGLE_CLIENT_ID and settings.GOOGLE_CLIENT_SECRET):
        print("GOOGLE_CLIENT_ID / GOOGLE_CLIENT_SECRET are not configured.")
        sys.exit(1)

    deal_repository = DealRepository(session_factory=get_session)
    calendar_repository = CalendarRepository(session_factory=get_session)
    token_service = OAuthTokenService(
        repository=OAuthTokenRepository(session_factory=get_session),
        client_id=settings.GOOGLE_CLIENT_ID,
        client_secret=settings.GOOGLE_CLIENT_SECRET,
        token_url=settings.GOOGLE_TOKEN_URL,
        refresh_buffer_seconds=settings.OAUTH_REFRESH_BUFFER_SECONDS,
    )
    engine = CalendarSyncEngine(
        calendar_client=GoogleCalendarClient(token_service=token_service),
        calendar_repository=calendar_repository,
        deal_repository=deal_repository,
        window_days=settings.CALENDAR_SYNC_WINDOW_DAYS,
        page_size=settings.CALENDAR_SYNC_PAGE_SIZE,
        max_pages=settings.CALENDAR_SYNC_MAX_PAGES,
    )
    return engine, deal_repository, calendar_repository


async def run(user_id: str | None, recalculate_org: str | None) -> bool:
    from src.tracker.calendar.recalculate import recalculate_external_flags
    from src.tracker.calendar.schemas import SyncStatus
    from src.tracker.core.database import close_db

    engine, deal_repository, calendar_repository = _build_engine()
    try:
        if recalculate_org:
            result = await recalculate_external_flags(
                recalculate_org, deal_repository, calendar_repository
            )
            if result.error:
                print(f"Recalculation failed: {result.error}")
                return False
            print(f"Recalculated: processed={result.processed} updated={result.updated}")
            return True

        if user_id:
            result = await engine.sync_user_by_id(user_id)
            print(f"User {result.user_id}: {result.status.value} ({result.mode.value})")
            print(
                f"  pages={result.pages_fetched} processed={result.events_processed} "
                f"created={result.events_created} updated={result.events_updated} "
                f"deleted={result.events_deleted} skipped={result.events_skipped} "
                f"failed={result.events_failed}"
            )
            if result.error:
                print(f"  error: {result.error}")
            return result.status == SyncStatus.SUCCESS

        batch = await engine.sync_all_users()
        print(
            f"Synced {batch.total_users} users: "
            f"{batch.successful} succeeded, {batch.failed} failed"
        )
        for err in batch.errors:
            print(f"  {err.user_id}: {err.error}")
        return batch.failed == 0
    finally:
        await close_db()


def main() -> None:
    parser = argparse.ArgumentParser(description="Run a Google Calendar sync")
    group = parser.add_mutually_exclusive_group()
    group.add_argument("--user-id", help="Sync only this user")
    group.add_argument(
        "--recalculate-org",
        help="Re-classify stored events of this organization instead of syncing",
    )
    args = parser.parse_args()

    ok = asyncio.run(run(args.user_id, args.recalculate_org))
    sys.exit(0 if ok else 1)


if __name__ == "__main__":
    main()
