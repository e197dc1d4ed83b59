"""REST API endpoints for per-opportunity meeting insights.

Transcript parsers report a finished record here; that stores the extracted
fields and emits ``insights.consolidate`` so the opportunity's snapshot is
rebuilt in the background. A manual consolidation runs inline and returns
its outcome.
"""

from __future__ import annotations

from typing import Any

import structlog
from fastapi import APIRouter, Depends, HTTPException, status
from pydantic import BaseModel

from src.tracker.api.deps import (
    get_consolidator,
    get_current_user,
    get_deal_repository,
    get_insight_repository,
    get_job_registry,
)
from src.tracker.deals.schemas import UserRead
from src.tracker.insights.consolidation import ConsolidationError
from src.tracker.insights.schemas import (
    ConsolidationOutcome,
    OpportunityInsights,
    ParsedInsightPayload,
    ParsedMeetingInsight,
    TranscriptSource,
)
from src.tracker.jobs.handlers import CONSOLIDATE_EVENT

logger = structlog.get_logger(__name__)

router = APIRouter(prefix="/api/v1/opportunities", tags=["insights"])


# ── Response Schemas ─────────────────────────────────────────────────────────


class TranscriptParsedResponse(BaseModel):
    """Stored record plus whether a consolidation was queued."""

    record: ParsedMeetingInsight
    consolidation_queued: bool


# ── Helpers ──────────────────────────────────────────────────────────────────


async def _require_opportunity(
    opportunity_id: str, user: UserRead, deal_repository: Any
) -> Any:
    """Load an opportunity visible to the user, 404 otherwise."""
    try:
        opportunity = await deal_repository.get_opportunity(opportunity_id)
    except ValueError:
        opportunity = None
    if opportunity is None or opportunity.organization_id != user.organization_id:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=f"Opportunity not found: {opportunity_id}",
        )
    return opportunity


# ── Endpoints ────────────────────────────────────────────────────────────────


@router.post(
    "/{opportunity_id}/transcripts/{source}/{record_id}/parsed",
    response_model=TranscriptParsedResponse,
)
async def transcript_parsed(
    opportunity_id: str,
    source: TranscriptSource,
    record_id: str,
    body: ParsedInsightPayload,
    user: UserRead = Depends(get_current_user),
    deal_repository: Any = Depends(get_deal_repository),
    insight_repository: Any = Depends(get_insight_repository),
    job_registry: Any = Depends(get_job_registry),
) -> TranscriptParsedResponse:
    """Store a parsed transcript's insights and queue a consolidation."""
    await _require_opportunity(opportunity_id, user, deal_repository)

    try:
        record = await insight_repository.mark_parsed(
            source, record_id, opportunity_id, body
        )
    except ValueError as exc:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND,
            detail=str(exc),
        ) from exc

    task = job_registry.emit(CONSOLIDATE_EVENT, {"opportunity_id": opportunity_id})
    logger.info(
        "api.transcript_parsed",
        opportunity_id=opportunity_id,
        source=source.value,
        record_id=record_id,
        consolidation_queued=task is not None,
    )
    return TranscriptParsedResponse(record=record, consolidation_queued=task is not None)


@router.post("/{opportunity_id}/consolidate", response_model=ConsolidationOutcome)
async def consolidate_opportunity(
    opportunity_id: str,
    user: UserRead = Depends(get_current_user),
    deal_repository: Any = Depends(get_deal_repository),
    consolidator: Any = Depends(get_consolidator),
) -> ConsolidationOutcome:
    """Run a consolidation now and return what it did.

    Returns 502 when the summarization call fails; the opportunity's status
    is then ``failed``.
    """
    await _require_opportunity(opportunity_id, user, deal_repository)

    try:
        return await consolidator.consolidate(opportunity_id)
    except ConsolidationError as exc:
        raise HTTPException(
            status_code=status.HTTP_502_BAD_GATEWAY,
            detail=str(exc),
        ) from exc


@router.get("/{opportunity_id}/insights", response_model=OpportunityInsights)
async def get_opportunity_insights(
    opportunity_id: str,
    user: UserRead = Depends(get_current_user),
    deal_repository: Any = Depends(get_deal_repository),
    insight_repository: Any = Depends(get_insight_repository),
) -> OpportunityInsights:
    """Return the consolidation status and the latest snapshot, if any."""
    opportunity = await _require_opportunity(opportunity_id, user, deal_repository)
    snapshot = await insight_repository.get_snapshot(opportunity_id)
    return OpportunityInsights(
        opportunity_id=opportunity_id,
        consolidation_status=opportunity.consolidation_status,
        snapshot=snapshot,
    )
