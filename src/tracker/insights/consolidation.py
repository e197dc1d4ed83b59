"""Per-opportunity insight consolidation run.

Status flow on the opportunity: ``processing`` while the run is in flight,
then ``idle`` (fewer than ``min_meetings`` unique meetings, nothing
attempted), ``completed`` (snapshot replaced), or ``failed`` (summarization
or storage failed, no snapshot written). A failed summarization is final; a
new trigger (another transcript finishing parsing, or a manual request)
starts a fresh run. Storage errors are re-raised after the status is set so
the job envelope can retry them.

Concurrent runs for the same opportunity are not coordinated; each run fully
replaces the snapshot, so the last one to finish wins.
"""

from __future__ import annotations

from datetime import timedelta
from typing import TYPE_CHECKING

import structlog

from src.tracker.deals.schemas import ConsolidationStatus
from src.tracker.insights.dedup import DEFAULT_DEDUP_WINDOW, deduplicate_meetings
from src.tracker.insights.schemas import ConsolidationOutcome, TranscriptSource
from src.tracker.insights.summarizer import SummarizationError

if TYPE_CHECKING:
    from src.tracker.deals.repository import DealRepository
    from src.tracker.insights.repository import InsightRepository
    from src.tracker.insights.summarizer import InsightSummarizer

logger = structlog.get_logger(__name__)


class ConsolidationError(Exception):
    """Raised when a consolidation run fails after status was set to failed."""


class InsightConsolidator:
    """Dedupes an opportunity's parsed meetings and consolidates their insights.

    Args:
        insight_repository: InsightRepository for records and snapshots.
        deal_repository: DealRepository for the opportunity status flag.
        summarizer: InsightSummarizer making the LLM call.
        dedup_window: Meeting-date tolerance for time-based dedup.
        min_meetings: Unique meetings required before summarizing.
        prioritized_source: Source kept when both record the same meeting.
    """

    def __init__(
        self,
        insight_repository: InsightRepository,
        deal_repository: DealRepository,
        summarizer: InsightSummarizer,
        dedup_window: timedelta = DEFAULT_DEDUP_WINDOW,
        min_meetings: int = 2,
        prioritized_source: TranscriptSource = TranscriptSource.GONG,
    ) -> None:
        self._insight_repo = insight_repository
        self._deal_repo = deal_repository
        self._summarizer = summarizer
        self._dedup_window = dedup_window
        self._min_meetings = min_meetings
        self._prioritized_source = prioritized_source

    async def consolidate(self, opportunity_id: str) -> ConsolidationOutcome:
        """Run one consolidation for an opportunity.

        Any error after the run has started leaves the status at ``failed``.

        Raises:
            LookupError: If the opportunity does not exist.
            ConsolidationError: If summarization fails (status is ``failed``).
        """
        opportunity = await self._deal_repo.get_opportunity(opportunity_id)
        if opportunity is None:
            raise LookupError(f"Opportunity not found: {opportunity_id}")

        await self._deal_repo.set_consolidation_status(
            opportunity_id, ConsolidationStatus.PROCESSING
        )

        try:
            return await self._consolidate_meetings(opportunity_id)
        except ConsolidationError:
            raise
        except Exception:
            logger.error(
                "insights.consolidation_errored",
                opportunity_id=opportunity_id,
                exc_info=True,
            )
            await self._deal_repo.set_consolidation_status(
                opportunity_id, ConsolidationStatus.FAILED
            )
            raise

    async def _consolidate_meetings(self, opportunity_id: str) -> ConsolidationOutcome:
        gong_calls = await self._insight_repo.list_parsed_meetings(
            opportunity_id, TranscriptSource.GONG
        )
        granola_notes = await self._insight_repo.list_parsed_meetings(
            opportunity_id, TranscriptSource.GRANOLA
        )
        dedup = deduplicate_meetings(
            gong_calls,
            granola_notes,
            window=self._dedup_window,
            prioritized_source=self._prioritized_source,
        )
        unique_count = len(dedup.unique_meetings)

        if unique_count < self._min_meetings:
            await self._deal_repo.set_consolidation_status(
                opportunity_id, ConsolidationStatus.IDLE
            )
            reason = (
                f"Consolidation requires at least {self._min_meetings} unique meetings. "
                f"Found: {unique_count} ({len(gong_calls)} Gong, {len(granola_notes)} Granola, "
                f"{dedup.duplicates_removed} duplicates removed)"
            )
            logger.info(
                "insights.consolidation_skipped",
                opportunity_id=opportunity_id,
                unique_meetings=unique_count,
            )
            return ConsolidationOutcome(
                opportunity_id=opportunity_id,
                status=ConsolidationStatus.IDLE,
                skipped=True,
                reason=reason,
                unique_meetings=unique_count,
                duplicates_removed=dedup.duplicates_removed,
                gong_prioritized=dedup.gong_prioritized,
            )

        try:
            insights = await self._summarizer.consolidate(
                opportunity_id, dedup.unique_meetings
            )
        except SummarizationError as exc:
            await self._deal_repo.set_consolidation_status(
                opportunity_id, ConsolidationStatus.FAILED
            )
            logger.error(
                "insights.consolidation_failed",
                opportunity_id=opportunity_id,
                error=str(exc),
            )
            raise ConsolidationError(f"Consolidation failed: {exc}") from exc

        await self._insight_repo.replace_snapshot(opportunity_id, insights, unique_count)
        await self._deal_repo.set_consolidation_status(
            opportunity_id, ConsolidationStatus.COMPLETED
        )

        logger.info(
            "insights.consolidation_completed",
            opportunity_id=opportunity_id,
            total_meetings=len(gong_calls) + len(granola_notes),
            unique_meetings=unique_count,
            duplicates_removed=dedup.duplicates_removed,
            gong_prioritized=dedup.gong_prioritized,
        )
        return ConsolidationOutcome(
            opportunity_id=opportunity_id,
            status=ConsolidationStatus.COMPLETED,
            unique_meetings=unique_count,
            duplicates_removed=dedup.duplicates_removed,
            gong_prioritized=dedup.gong_prioritized,
        )
