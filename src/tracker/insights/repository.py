"""Insight repository -- parsed transcript records and consolidated snapshots.

Provides InsightRepository with the session_factory callable pattern. Gong
calls and Granola notes live in separate tables with the same insight
columns; both are returned as ParsedMeetingInsight tagged with their source.
The consolidated snapshot is one row per opportunity, replaced wholesale.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.dialects.postgresql import insert
from sqlalchemy.ext.asyncio import AsyncSession

from src.tracker.insights.models import (
    ConsolidatedInsightsModel,
    GongCallModel,
    GranolaNoteModel,
)
from src.tracker.insights.schemas import (
    ConsolidatedInsights,
    ConsolidatedInsightsRead,
    ParsedInsightPayload,
    ParsedMeetingInsight,
    ParsingStatus,
    RiskAssessment,
    TranscriptSource,
)

logger = structlog.get_logger(__name__)

_SOURCE_MODELS: dict[TranscriptSource, type[GongCallModel] | type[GranolaNoteModel]] = {
    TranscriptSource.GONG: GongCallModel,
    TranscriptSource.GRANOLA: GranolaNoteModel,
}


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_insight(
    model: GongCallModel | GranolaNoteModel, source: TranscriptSource
) -> ParsedMeetingInsight:
    """Convert a transcript model to ParsedMeetingInsight."""
    return ParsedMeetingInsight(
        id=str(model.id),
        source=source,
        opportunity_id=str(model.opportunity_id),
        title=model.title,
        meeting_date=model.meeting_date,
        calendar_event_id=model.calendar_event_id,
        parsing_status=ParsingStatus(model.parsing_status),
        parsed_at=model.parsed_at,
        pain_points=list(model.pain_points or []),
        goals=list(model.goals or []),
        risk_assessment=model.risk_assessment,
    )


def _model_to_snapshot(model: ConsolidatedInsightsModel) -> ConsolidatedInsightsRead:
    """Convert ConsolidatedInsightsModel to ConsolidatedInsightsRead."""
    return ConsolidatedInsightsRead(
        opportunity_id=str(model.opportunity_id),
        insights=ConsolidatedInsights(
            pain_points=model.pain_points or [],
            goals=model.goals or [],
            risk_assessment=RiskAssessment.model_validate(model.risk_assessment),
            why_and_why_now=model.why_and_why_now or [],
            quantifiable_metrics=model.quantifiable_metrics or [],
            key_quotes=model.key_quotes or [],
            objections=model.objections or [],
        ),
        meeting_count=model.meeting_count,
        consolidated_at=model.consolidated_at,
    )


# ── Repository ──────────────────────────────────────────────────────────────


class InsightRepository:
    """Async access to transcript insight records and consolidated snapshots.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Transcript Records ──────────────────────────────────────────────────

    async def list_parsed_meetings(
        self, opportunity_id: str, source: TranscriptSource
    ) -> list[ParsedMeetingInsight]:
        """List records of one source that finished parsing for an opportunity."""
        model_cls = _SOURCE_MODELS[source]
        async for session in self._session_factory():
            stmt = select(model_cls).where(
                model_cls.opportunity_id == uuid.UUID(opportunity_id),
                model_cls.parsing_status == ParsingStatus.COMPLETED.value,
                model_cls.parsed_at.is_not(None),
            )
            result = await session.execute(stmt)
            return [_model_to_insight(m, source) for m in result.scalars().all()]

    async def mark_parsed(
        self,
        source: TranscriptSource,
        record_id: str,
        opportunity_id: str,
        payload: ParsedInsightPayload,
    ) -> ParsedMeetingInsight:
        """Store extracted insights and mark a record as parsed.

        Raises:
            ValueError: If the record does not exist for the opportunity.
        """
        model_cls = _SOURCE_MODELS[source]
        async for session in self._session_factory():
            stmt = select(model_cls).where(
                model_cls.id == uuid.UUID(record_id),
                model_cls.opportunity_id == uuid.UUID(opportunity_id),
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                raise ValueError(
                    f"{source.value} record not found: id={record_id}, opportunity={opportunity_id}"
                )

            now = datetime.now(timezone.utc)
            model.pain_points = payload.pain_points
            model.goals = payload.goals
            model.risk_assessment = payload.risk_assessment
            model.parsing_status = ParsingStatus.COMPLETED.value
            model.parsed_at = now
            model.updated_at = now
            await session.commit()
            await session.refresh(model)
            return _model_to_insight(model, source)

    # ── Consolidated Snapshot ───────────────────────────────────────────────

    async def get_snapshot(self, opportunity_id: str) -> ConsolidatedInsightsRead | None:
        async for session in self._session_factory():
            stmt = select(ConsolidatedInsightsModel).where(
                ConsolidatedInsightsModel.opportunity_id == uuid.UUID(opportunity_id)
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_snapshot(model)

    async def replace_snapshot(
        self,
        opportunity_id: str,
        insights: ConsolidatedInsights,
        meeting_count: int,
    ) -> ConsolidatedInsightsRead:
        """Overwrite the opportunity's snapshot with a fresh consolidation."""
        values = {
            "pain_points": insights.pain_points,
            "goals": insights.goals,
            "risk_assessment": insights.risk_assessment.model_dump(mode="json", by_alias=True),
            "why_and_why_now": insights.why_and_why_now,
            "quantifiable_metrics": insights.quantifiable_metrics,
            "key_quotes": insights.key_quotes,
            "objections": insights.objections,
            "meeting_count": meeting_count,
            "consolidated_at": datetime.now(timezone.utc),
        }
        async for session in self._session_factory():
            stmt = (
                insert(ConsolidatedInsightsModel)
                .values(opportunity_id=uuid.UUID(opportunity_id), **values)
                .on_conflict_do_update(index_elements=["opportunity_id"], set_=values)
                .returning(ConsolidatedInsightsModel)
            )
            result = await session.execute(stmt)
            model = result.scalar_one()
            await session.commit()
            logger.info(
                "insights.snapshot_replaced",
                opportunity_id=opportunity_id,
                meeting_count=meeting_count,
            )
            return _model_to_snapshot(model)
