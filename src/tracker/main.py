"""FastAPI application factory.

Creates the app with logging middleware, CORS, lifespan events for database
initialization and service wiring, and the v1 API router.
"""

from __future__ import annotations

from contextlib import asynccontextmanager
from collections.abc import AsyncGenerator

import structlog
from fastapi import FastAPI
from fastapi.middleware.cors import CORSMiddleware

from src.tracker.api.middleware.logging import LoggingMiddleware, configure_structlog
from src.tracker.api.v1.router import router as v1_router
from src.tracker.calendar.repository import CalendarRepository
from src.tracker.config import get_settings
from src.tracker.core.database import close_db, get_session, init_db
from src.tracker.deals.repository import DealRepository
from src.tracker.insights.repository import InsightRepository
from src.tracker.insights.schemas import TranscriptSource
from src.tracker.jobs.handlers import build_job_registry, consolidation_window

log = structlog.get_logger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI) -> AsyncGenerator[None, None]:
    """Application lifespan: init DB, wire services and jobs, tear down on shutdown."""
    settings = get_settings()
    configure_structlog()
    await init_db()

    deal_repository = DealRepository(session_factory=get_session)
    calendar_repository = CalendarRepository(session_factory=get_session)
    insight_repository = InsightRepository(session_factory=get_session)
    app.state.deal_repository = deal_repository
    app.state.calendar_repository = calendar_repository
    app.state.insight_repository = insight_repository

    # ── Calendar Sync ────────────────────────────────────────────────────
    # Requires a Google OAuth client. Without one the sync endpoints return
    # 503 and no sync loop is started.

    app.state.calendar_sync_engine = None
    if settings.GOOGLE_CLIENT_ID and settings.GOOGLE_CLIENT_SECRET:
        try:
            from src.tracker.calendar.sync import CalendarSyncEngine
            from src.tracker.services.google import (
                GoogleCalendarClient,
                OAuthTokenRepository,
                OAuthTokenService,
            )

            token_service = OAuthTokenService(
                repository=OAuthTokenRepository(session_factory=get_session),
                client_id=settings.GOOGLE_CLIENT_ID,
                client_secret=settings.GOOGLE_CLIENT_SECRET,
                token_url=settings.GOOGLE_TOKEN_URL,
                refresh_buffer_seconds=settings.OAUTH_REFRESH_BUFFER_SECONDS,
            )
            app.state.oauth_token_service = token_service
            app.state.calendar_sync_engine = CalendarSyncEngine(
                calendar_client=GoogleCalendarClient(token_service=token_service),
                calendar_repository=calendar_repository,
                deal_repository=deal_repository,
                window_days=settings.CALENDAR_SYNC_WINDOW_DAYS,
                page_size=settings.CALENDAR_SYNC_PAGE_SIZE,
                max_pages=settings.CALENDAR_SYNC_MAX_PAGES,
            )
            log.info("calendar_sync.initialized")
        except Exception:
            log.warning("calendar_sync.init_failed", exc_info=True)
    else:
        log.warning("calendar_sync.disabled", reason="google_oauth_not_configured")

    # ── Insight Consolidation ────────────────────────────────────────────

    app.state.insight_consolidator = None
    try:
        from src.tracker.insights.consolidation import InsightConsolidator
        from src.tracker.insights.summarizer import InsightSummarizer
        from src.tracker.services.llm import get_llm_service

        llm_service = get_llm_service()
        if llm_service.router is not None:
            app.state.llm_service = llm_service
            app.state.insight_consolidator = InsightConsolidator(
                insight_repository=insight_repository,
                deal_repository=deal_repository,
                summarizer=InsightSummarizer(llm_service=llm_service),
                dedup_window=consolidation_window(settings),
                min_meetings=settings.CONSOLIDATION_MIN_MEETINGS,
                prioritized_source=TranscriptSource(settings.PRIORITIZED_TRANSCRIPT_SOURCE),
            )
            log.info("insights.consolidator_initialized")
        else:
            log.warning("insights.consolidation_disabled", reason="no_llm_keys")
    except Exception:
        log.warning("insights.consolidator_init_failed", exc_info=True)

    # ── Jobs ─────────────────────────────────────────────────────────────

    job_registry = build_job_registry(
        sync_engine=app.state.calendar_sync_engine,
        consolidator=app.state.insight_consolidator,
        settings=settings,
    )
    app.state.job_registry = job_registry
    if settings.CALENDAR_SYNC_ENABLED:
        job_registry.start()

    yield

    # ── Shutdown ─────────────────────────────────────────────────────────
    await job_registry.stop()
    await close_db()


def create_app() -> FastAPI:
    """Create and configure the FastAPI application."""
    settings = get_settings()

    app = FastAPI(
        title="Opportunity Tracker API",
        version="0.1.0",
        description="Calendar sync and meeting insight consolidation for opportunities",
        lifespan=lifespan,
    )

    # Middleware is added in reverse order (last added = outermost)

    if settings.CORS_ALLOWED_ORIGINS == "*":
        origins = ["*"]
    else:
        origins = [o.strip() for o in settings.CORS_ALLOWED_ORIGINS.split(",")]
    app.add_middleware(
        CORSMiddleware,
        allow_origins=origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )

    # Logging middleware (logs every request with timing)
    app.add_middleware(LoggingMiddleware)

    app.include_router(v1_router)

    return app


# Module-level app for uvicorn
app = create_app()
