"""Pydantic schemas for transcript insights and their consolidation.

Defines:
- Enums: TranscriptSource, ParsingStatus, RiskLevel, RiskSeverity
- Per-meeting records: ParsedMeetingInsight
- Dedup output: DedupResult
- Summarization output: RiskFactor, RiskAssessment, ConsolidatedInsights
- Persisted snapshot and job outcome: ConsolidatedInsightsRead, ConsolidationOutcome
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from src.tracker.deals.schemas import ConsolidationStatus


# ── Enums ───────────────────────────────────────────────────────────────────


class TranscriptSource(str, Enum):
    """Transcript providers feeding meeting insights."""

    GONG = "gong"
    GRANOLA = "granola"


class ParsingStatus(str, Enum):
    PENDING = "pending"
    PARSING = "parsing"
    COMPLETED = "completed"
    FAILED = "failed"


class RiskLevel(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


class RiskSeverity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


# ── Per-meeting Records ─────────────────────────────────────────────────────


class ParsedMeetingInsight(BaseModel):
    """One parsed meeting from either transcript source.

    ``risk_assessment`` is the raw JSON produced when the transcript was
    parsed; it is only validated when consolidated output is produced.
    """

    id: str
    source: TranscriptSource
    opportunity_id: str
    title: str
    meeting_date: datetime
    calendar_event_id: str | None = None
    parsing_status: ParsingStatus = ParsingStatus.PENDING
    parsed_at: datetime | None = None
    pain_points: list[Any] = Field(default_factory=list)
    goals: list[Any] = Field(default_factory=list)
    risk_assessment: dict[str, Any] | None = None


class ParsedInsightPayload(BaseModel):
    """Extracted fields delivered when a transcript finishes parsing."""

    pain_points: list[Any] = Field(default_factory=list)
    goals: list[Any] = Field(default_factory=list)
    risk_assessment: dict[str, Any] | None = None


class DedupResult(BaseModel):
    """Unique meetings plus counters describing how duplicates were resolved."""

    unique_meetings: list[ParsedMeetingInsight] = Field(default_factory=list)
    duplicates_removed: int = 0
    gong_prioritized: int = 0
    matched_by_calendar_id: int = 0
    matched_by_time: int = 0


# ── Summarization Output ────────────────────────────────────────────────────


class _CamelModel(BaseModel):
    """Accepts the camelCase keys returned by the model, and snake_case."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class RiskFactor(_CamelModel):
    category: str
    description: str
    severity: RiskSeverity
    evidence: str = ""


class RiskAssessment(_CamelModel):
    risk_level: RiskLevel
    risk_factors: list[RiskFactor]
    overall_summary: str


class ConsolidatedInsights(_CamelModel):
    """Validated result of the consolidation summarization call."""

    pain_points: list[str]
    goals: list[str]
    risk_assessment: RiskAssessment
    why_and_why_now: list[str] = Field(default_factory=list)
    quantifiable_metrics: list[str] = Field(default_factory=list)
    key_quotes: list[str] = Field(default_factory=list)
    objections: list[str] = Field(default_factory=list)


# ── Snapshot / Outcome ──────────────────────────────────────────────────────


class ConsolidatedInsightsRead(BaseModel):
    """Latest persisted consolidation snapshot for an opportunity."""

    opportunity_id: str
    insights: ConsolidatedInsights
    meeting_count: int
    consolidated_at: datetime


class ConsolidationOutcome(BaseModel):
    """What a consolidation run did."""

    opportunity_id: str
    status: ConsolidationStatus
    skipped: bool = False
    reason: str | None = None
    unique_meetings: int = 0
    duplicates_removed: int = 0
    gong_prioritized: int = 0


class OpportunityInsights(BaseModel):
    """Consolidation status with the current snapshot, if any."""

    opportunity_id: str
    consolidation_status: ConsolidationStatus
    snapshot: ConsolidatedInsightsRead | None = None
