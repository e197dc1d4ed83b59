"""Deduplication of parsed meetings across the two transcript sources.

The same real meeting can be recorded by both Gong and Granola. Two records
are treated as the same meeting when:

1. both carry a calendar event id and the ids are equal, or
2. at least one lacks a calendar event id and their meeting dates are within
   the dedup window of each other (inclusive).

Two records that both carry calendar event ids which differ are never
duplicates, however close in time (back-to-back meetings).

Records are scanned oldest first. When a duplicate pair is found, the record
from the prioritized source replaces the other; otherwise the first one seen
is kept.
"""

from __future__ import annotations

from datetime import timedelta

import structlog

from src.tracker.insights.schemas import DedupResult, ParsedMeetingInsight, TranscriptSource

logger = structlog.get_logger(__name__)

DEFAULT_DEDUP_WINDOW = timedelta(hours=1)


def _same_calendar_event(a: ParsedMeetingInsight, b: ParsedMeetingInsight) -> bool:
    return bool(a.calendar_event_id and b.calendar_event_id) and (
        a.calendar_event_id == b.calendar_event_id
    )


def are_duplicates(
    a: ParsedMeetingInsight,
    b: ParsedMeetingInsight,
    window: timedelta = DEFAULT_DEDUP_WINDOW,
) -> bool:
    """True when two records describe the same real-world meeting."""
    if a.calendar_event_id and b.calendar_event_id:
        return a.calendar_event_id == b.calendar_event_id
    return abs(a.meeting_date - b.meeting_date) <= window


def deduplicate_meetings(
    gong_calls: list[ParsedMeetingInsight],
    granola_notes: list[ParsedMeetingInsight],
    window: timedelta = DEFAULT_DEDUP_WINDOW,
    prioritized_source: TranscriptSource = TranscriptSource.GONG,
) -> DedupResult:
    """Collapse records of the same meeting, preferring ``prioritized_source``.

    Args:
        gong_calls: Parsed Gong records.
        granola_notes: Parsed Granola records.
        window: Maximum meeting-date gap for time-based matching.
        prioritized_source: Source whose record wins a duplicate pair.

    Returns:
        DedupResult with unique meetings (oldest first) and counters.
    """
    all_meetings = sorted(
        [*gong_calls, *granola_notes],
        key=lambda m: m.meeting_date,
    )

    result = DedupResult()
    unique = result.unique_meetings

    for meeting in all_meetings:
        index = next(
            (i for i, existing in enumerate(unique) if are_duplicates(existing, meeting, window)),
            None,
        )
        if index is None:
            unique.append(meeting)
            continue

        existing = unique[index]
        result.duplicates_removed += 1
        if _same_calendar_event(existing, meeting):
            result.matched_by_calendar_id += 1
        else:
            result.matched_by_time += 1

        if existing.source == prioritized_source:
            continue
        if meeting.source == prioritized_source:
            unique[index] = meeting
            result.gong_prioritized += 1

    logger.debug(
        "insights.deduplicated",
        total=len(all_meetings),
        unique=len(unique),
        duplicates_removed=result.duplicates_removed,
        gong_prioritized=result.gong_prioritized,
        matched_by_calendar_id=result.matched_by_calendar_id,
        matched_by_time=result.matched_by_time,
    )
    return result
