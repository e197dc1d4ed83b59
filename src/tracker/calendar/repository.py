"""Calendar repository -- async persistence of sync state and mirrored events.

Provides CalendarRepository with the session_factory callable pattern.
Calendar events are upserted by their unique (user_id, google_event_id) key
using PostgreSQL ``INSERT ... ON CONFLICT DO UPDATE``; there is no transaction
spanning a whole sync pass, each write commits on its own.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import delete, select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.tracker.calendar.models import CalendarEventModel, CalendarSyncStateModel
from src.tracker.calendar.schemas import (
    CalendarEventRead,
    CalendarEventUpsert,
    SyncStateRead,
    SyncStateUpdate,
    SyncStatus,
)

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_sync_state(model: CalendarSyncStateModel) -> SyncStateRead:
    """Convert CalendarSyncStateModel to SyncStateRead schema."""
    return SyncStateRead(
        id=str(model.id),
        user_id=str(model.user_id),
        provider=model.provider,
        sync_token=model.sync_token,
        time_min=model.time_min,
        time_max=model.time_max,
        last_sync_at=model.last_sync_at,
        last_sync_status=(
            SyncStatus(model.last_sync_status) if model.last_sync_status else None
        ),
        last_sync_error=model.last_sync_error,
    )


def _model_to_event(model: CalendarEventModel) -> CalendarEventRead:
    """Convert CalendarEventModel to CalendarEventRead schema."""
    return CalendarEventRead(
        id=str(model.id),
        user_id=str(model.user_id),
        google_event_id=model.google_event_id,
        summary=model.summary,
        description=model.description,
        location=model.location,
        start_time=model.start_time,
        end_time=model.end_time,
        attendees=list(model.attendees or []),
        organizer_email=model.organizer_email,
        meeting_url=model.meeting_url,
        is_external=model.is_external,
        opportunity_id=str(model.opportunity_id) if model.opportunity_id else None,
        account_id=str(model.account_id) if model.account_id else None,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _optional_uuid(value: str | None) -> uuid.UUID | None:
    return uuid.UUID(value) if value else None


# ── Repository ──────────────────────────────────────────────────────────────


class CalendarRepository:
    """Async CRUD for calendar sync state and stored calendar events.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Sync State ──────────────────────────────────────────────────────────

    async def get_sync_state(
        self, user_id: str, provider: str = "google"
    ) -> SyncStateRead | None:
        """Get the sync state for a user and provider, if one exists."""
        async for session in self._session_factory():
            stmt = select(CalendarSyncStateModel).where(
                CalendarSyncStateModel.user_id == uuid.UUID(user_id),
                CalendarSyncStateModel.provider == provider,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_sync_state(model)

    async def create_sync_state(
        self,
        user_id: str,
        time_min: datetime,
        time_max: datetime,
        provider: str = "google",
    ) -> SyncStateRead:
        """Create an uninitialized sync state (no cursor) with a full-sync window."""
        async for session in self._session_factory():
            model = CalendarSyncStateModel(
                user_id=uuid.UUID(user_id),
                provider=provider,
                sync_token=None,
                time_min=time_min,
                time_max=time_max,
            )
            session.add(model)
            await session.commit()
            await session.refresh(model)
            logger.info("calendar_sync.state_created", user_id=user_id, provider=provider)
            return _model_to_sync_state(model)

    async def update_sync_state(
        self, user_id: str, data: SyncStateUpdate, provider: str = "google"
    ) -> SyncStateRead:
        """Apply the explicitly set fields of ``data`` to a sync state.

        Raises:
            ValueError: If no sync state exists for the user.
        """
        async for session in self._session_factory():
            stmt = select(CalendarSyncStateModel).where(
                CalendarSyncStateModel.user_id == uuid.UUID(user_id),
                CalendarSyncStateModel.provider == provider,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                raise ValueError(f"Sync state not found: user={user_id}, provider={provider}")

            for key, value in data.model_dump(exclude_unset=True).items():
                if isinstance(value, SyncStatus):
                    value = value.value
                setattr(model, key, value)

            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            await session.refresh(model)
            return _model_to_sync_state(model)

    # ── Events ──────────────────────────────────────────────────────────────

    async def get_event(
        self, user_id: str, google_event_id: str
    ) -> CalendarEventRead | None:
        """Get a stored event by its upstream id."""
        async for session in self._session_factory():
            stmt = select(CalendarEventModel).where(
                CalendarEventModel.user_id == uuid.UUID(user_id),
                CalendarEventModel.google_event_id == google_event_id,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_event(model)

    async def upsert_event(
        self, user_id: str, data: CalendarEventUpsert
    ) -> CalendarEventRead:
        """Create or update an event keyed by (user_id, google_event_id)."""
        values = {
            "summary": data.summary,
            "description": data.description,
            "location": data.location,
            "start_time": data.start_time,
            "end_time": data.end_time,
            "attendees": data.attendees,
            "organizer_email": data.organizer_email,
            "meeting_url": data.meeting_url,
            "is_external": data.is_external,
            "opportunity_id": _optional_uuid(data.opportunity_id),
            "account_id": _optional_uuid(data.account_id),
        }
        async for session in self._session_factory():
            stmt = (
                insert(CalendarEventModel)
                .values(
                    user_id=uuid.UUID(user_id),
                    google_event_id=data.google_event_id,
                    **values,
                )
                .on_conflict_do_update(
                    index_elements=["user_id", "google_event_id"],
                    set_={**values, "updated_at": datetime.now(timezone.utc)},
                )
                .returning(CalendarEventModel)
            )
            result = await session.execute(stmt)
            model = result.scalar_one()
            await session.commit()
            return _model_to_event(model)

    async def delete_event(self, user_id: str, google_event_id: str) -> bool:
        """Delete a stored event. Returns False if it did not exist."""
        async for session in self._session_factory():
            stmt = delete(CalendarEventModel).where(
                CalendarEventModel.user_id == uuid.UUID(user_id),
                CalendarEventModel.google_event_id == google_event_id,
            )
            result = await session.execute(stmt)
            await session.commit()
            return result.rowcount > 0

    async def list_events(
        self,
        user_id: str,
        external_only: bool = False,
        opportunity_id: str | None = None,
        limit: int = 200,
    ) -> list[CalendarEventRead]:
        """List a user's stored events, most recent first."""
        async for session in self._session_factory():
            stmt = select(CalendarEventModel).where(
                CalendarEventModel.user_id == uuid.UUID(user_id)
            )
            if external_only:
                stmt = stmt.where(CalendarEventModel.is_external.is_(True))
            if opportunity_id:
                stmt = stmt.where(
                    CalendarEventModel.opportunity_id == uuid.UUID(opportunity_id)
                )
            stmt = stmt.order_by(CalendarEventModel.start_time.desc()).limit(limit)
            result = await session.execute(stmt)
            return [_model_to_event(m) for m in result.scalars().all()]

    async def list_events_for_users(self, user_ids: list[str]) -> list[CalendarEventRead]:
        """List every stored event belonging to any of the given users."""
        if not user_ids:
            return []
        async for session in self._session_factory():
            stmt = select(CalendarEventModel).where(
                CalendarEventModel.user_id.in_([uuid.UUID(u) for u in user_ids])
            )
            result = await session.execute(stmt)
            return [_model_to_event(m) for m in result.scalars().all()]

    async def set_event_external(self, event_id: str, is_external: bool) -> None:
        """Overwrite the is_external flag of one stored event."""
        async for session in self._session_factory():
            model = await session.get(CalendarEventModel, uuid.UUID(event_id))
            if model is None:
                raise ValueError(f"Calendar event not found: id={event_id}")
            model.is_external = is_external
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
