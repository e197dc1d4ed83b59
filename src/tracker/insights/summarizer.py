"""LLM summarization of deduplicated meeting insights for an opportunity.

Sends the per-meeting pain points, goals, and risk assessments (oldest first)
to the reasoning model with a JSON-only system prompt, then validates the
response into ConsolidatedInsights. Anything that does not validate is a
SummarizationError; nothing loosely-typed leaves this module.
"""

from __future__ import annotations

import json
import re
from typing import Any, Protocol

import structlog
from pydantic import ValidationError

from src.tracker.insights.schemas import ConsolidatedInsights, ParsedMeetingInsight

logger = structlog.get_logger(__name__)


class SummarizationError(Exception):
    """Raised when the summarization call fails or returns unusable output."""


class LLMServiceProtocol(Protocol):
    """Minimal interface for the completion call."""

    async def completion(
        self, messages: list[dict], model: str = ..., **kwargs: Any
    ) -> dict: ...


SYSTEM_PROMPT = """You are a sales analyst consolidating insights from several call transcripts about the same deal.

Merge the per-call pain points, goals, and risk assessments into one deduplicated view:
- Collapse items that say the same thing; keep specifics (numbers, dates, names).
- Order items by how often they came up and how much they matter.
- Calls are listed oldest first; note when a concern was raised early and resolved later.
- Base the overall risk level on cumulative concerns and the most recent calls.

Respond with ONLY a JSON object of this shape, no prose and no markdown:
{
  "painPoints": ["..."],
  "goals": ["..."],
  "riskAssessment": {
    "riskLevel": "low" | "medium" | "high" | "critical",
    "riskFactors": [
      {
        "category": "budget" | "timeline" | "competition" | "technical" | "alignment" | "resistance",
        "description": "...",
        "severity": "low" | "medium" | "high",
        "evidence": "..."
      }
    ],
    "overallSummary": "2-3 sentences on overall deal health"
  },
  "whyAndWhyNow": ["..."],
  "quantifiableMetrics": ["..."],
  "keyQuotes": ["..."],
  "objections": ["..."]
}

Use empty arrays where the calls contain nothing for a field."""

_FENCE_RE = re.compile(r"^```(?:json)?\s*|\s*```$", re.IGNORECASE)


def _strip_fences(content: str) -> str:
    return _FENCE_RE.sub("", content.strip()).strip()


def parse_consolidated_insights(content: str) -> ConsolidatedInsights:
    """Parse and validate a model response.

    Raises:
        SummarizationError: If the response is not valid JSON of the
            expected shape.
    """
    text = _strip_fences(content)
    try:
        parsed = json.loads(text)
    except json.JSONDecodeError:
        start = text.find("{")
        end = text.rfind("}") + 1
        if start < 0 or end <= start:
            raise SummarizationError(f"LLM returned non-JSON response: {text[:200]}") from None
        try:
            parsed = json.loads(text[start:end])
        except json.JSONDecodeError as exc:
            raise SummarizationError(f"LLM returned malformed JSON: {exc}") from exc

    if not isinstance(parsed, dict):
        raise SummarizationError("LLM response is not a JSON object")

    try:
        return ConsolidatedInsights.model_validate(parsed)
    except ValidationError as exc:
        raise SummarizationError(
            f"LLM response failed validation: {exc.error_count()} error(s)"
        ) from exc


def _format_meetings(meetings: list[ParsedMeetingInsight]) -> str:
    calls = []
    for index, meeting in enumerate(sorted(meetings, key=lambda m: m.meeting_date), start=1):
        calls.append({
            "call": index,
            "source": meeting.source.value,
            "date": meeting.meeting_date.date().isoformat(),
            "title": meeting.title,
            "painPoints": meeting.pain_points,
            "goals": meeting.goals,
            "riskAssessment": meeting.risk_assessment,
        })
    return json.dumps(calls, indent=2, default=str)


class InsightSummarizer:
    """Consolidates per-meeting insights via the LLM service.

    Args:
        llm_service: Service exposing ``completion(messages, model, ...)``.
        model: Model group to use.
    """

    def __init__(self, llm_service: LLMServiceProtocol, model: str = "reasoning") -> None:
        self._llm_service = llm_service
        self._model = model

    async def consolidate(
        self, opportunity_id: str, meetings: list[ParsedMeetingInsight]
    ) -> ConsolidatedInsights:
        """Summarize meetings into one validated ConsolidatedInsights.

        Raises:
            SummarizationError: If the call errors or the output is invalid.
        """
        messages = [
            {"role": "system", "content": SYSTEM_PROMPT},
            {
                "role": "user",
                "content": (
                    f"Consolidate insights from these {len(meetings)} calls:\n\n"
                    f"{_format_meetings(meetings)}"
                ),
            },
        ]
        try:
            response = await self._llm_service.completion(
                messages=messages,
                model=self._model,
                temperature=0.2,
                max_tokens=4096,
                metadata={"purpose": "insight_consolidation", "opportunity_id": opportunity_id},
            )
        except Exception as exc:
            raise SummarizationError(f"Summarization call failed: {exc}") from exc

        insights = parse_consolidated_insights(response.get("content") or "")
        logger.info(
            "insights.summarized",
            opportunity_id=opportunity_id,
            meetings=len(meetings),
            pain_points=len(insights.pain_points),
            goals=len(insights.goals),
            risk_level=insights.risk_assessment.risk_level.value,
        )
        return insights
