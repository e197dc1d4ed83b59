"""REST API endpoints for the authenticated user's calendar sync.

Provides a manual sync trigger, the current sync cursor/status, and the
stored external events (optionally filtered by linked opportunity).
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, Query, status

from src.tracker.api.deps import (
    get_calendar_repository,
    get_current_user,
    get_sync_engine,
)
from src.tracker.calendar.schemas import CalendarEventRead, SyncStateRead, UserSyncResult
from src.tracker.deals.schemas import UserRead

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/calendar", tags=["calendar"])


@router.post("/sync", response_model=UserSyncResult)
async def sync_calendar(
    user: UserRead = Depends(get_current_user),
    sync_engine: Any = Depends(get_sync_engine),
) -> UserSyncResult:
    """Run one sync for the authenticated user.

    Auth and provider failures are reported in the result (status ``failed``)
    rather than as HTTP errors; the stored sync state carries the same error.
    """
    result = await sync_engine.sync_user(user)
    logger.info(
        "api.calendar_sync_triggered",
        user_id=user.id,
        status=result.status.value,
        mode=result.mode.value,
    )
    return result


@router.get("/sync-state", response_model=SyncStateRead)
async def get_sync_state(
    user: UserRead = Depends(get_current_user),
    calendar_repository: Any = Depends(get_calendar_repository),
) -> SyncStateRead:
    """Return the user's sync cursor, window and last outcome."""
    state = await calendar_repository.get_sync_state(user.id)
    if state is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail="Calendar has not been synced yet",
        )
    return state


@router.get("/events", response_model=list[CalendarEventRead])
async def list_events(
    external_only: bool = Query(True),
    opportunity_id: str | None = Query(None),
    limit: int = Query(200, ge=1, le=1000),
    user: UserRead = Depends(get_current_user),
    calendar_repository: Any = Depends(get_calendar_repository),
) -> list[CalendarEventRead]:
    """List the user's stored events, newest first."""
    try:
        return await calendar_repository.list_events(
            user.id,
            external_only=external_only,
            opportunity_id=opportunity_id,
            limit=limit,
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail=str(exc),
        ) from exc
