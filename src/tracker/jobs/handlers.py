"""Job wiring for calendar sync and insight consolidation.

build_job_registry binds the domain services into a JobRegistry:

- ``calendar.sync_all`` runs every CALENDAR_SYNC_INTERVAL_SECONDS and syncs
  every user holding a Google token. Infrastructure failures (database,
  network) are retried; per-user auth and API failures are already recorded
  on the user's sync state and never reach the envelope.
- ``insights.consolidate`` runs when a transcript finishes parsing (or on a
  manual request). A failed or impossible consolidation is final.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING, Any

import structlog

from src.tracker.insights.consolidation import ConsolidationError
from src.tracker.jobs.scheduler import JobRegistry

if TYPE_CHECKING:
    from src.tracker.calendar.sync import CalendarSyncEngine
    from src.tracker.config import Settings
    from src.tracker.insights.consolidation import InsightConsolidator

logger = structlog.get_logger(__name__)

CALENDAR_SYNC_JOB = "calendar.sync_all"
CONSOLIDATE_EVENT = "insights.consolidate"


def make_calendar_sync_handler(sync_engine: CalendarSyncEngine):
    """Return a zero-argument handler running one batch sync."""

    async def _handler() -> dict[str, Any]:
        result = await sync_engine.sync_all_users()
        logger.info(
            "jobs.calendar_sync_finished",
            total_users=result.total_users,
            successful=result.successful,
            failed=result.failed,
        )
        return result.model_dump(mode="json")

    return _handler


def make_consolidation_handler(consolidator: InsightConsolidator):
    """Return a handler consolidating the opportunity named in the payload.

    Raises:
        LookupError: If the payload has no ``opportunity_id``.
    """

    async def _handler(payload: dict) -> dict[str, Any]:
        opportunity_id = payload.get("opportunity_id")
        if not opportunity_id:
            raise LookupError("Consolidation payload is missing opportunity_id")
        outcome = await consolidator.consolidate(str(opportunity_id))
        return outcome.model_dump(mode="json")

    return _handler


def build_job_registry(
    sync_engine: CalendarSyncEngine | None,
    consolidator: InsightConsolidator | None,
    settings: Settings,
    registry: JobRegistry | None = None,
) -> JobRegistry:
    """Register every available job on a (new) JobRegistry.

    A job whose service is None is skipped, so the app still starts when
    Google or LLM credentials are missing.
    """
    registry = registry if registry is not None else JobRegistry()

    if sync_engine is not None:
        registry.register_interval(
            CALENDAR_SYNC_JOB,
            make_calendar_sync_handler(sync_engine),
            interval_seconds=settings.CALENDAR_SYNC_INTERVAL_SECONDS,
            retries=settings.CALENDAR_SYNC_JOB_RETRIES,
        )

    if consolidator is not None:
        registry.register_event(
            CONSOLIDATE_EVENT,
            make_consolidation_handler(consolidator),
            retries=settings.CONSOLIDATION_JOB_RETRIES,
            final_errors=(ConsolidationError, LookupError),
        )

    logger.info(
        "jobs.registry_built",
        interval_jobs=list(registry.interval_jobs),
        event_jobs=list(registry.event_jobs),
    )
    return registry


def consolidation_window(settings: Settings) -> timedelta:
    return timedelta(minutes=settings.MEETING_DEDUP_WINDOW_MINUTES)
