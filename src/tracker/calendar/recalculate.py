"""Re-evaluation of stored events' is_external flags for an organization.

Used after an organization's domain changes: every stored event of every user
in the organization is re-classified, and only rows whose flag actually
changed are written.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

import structlog

from src.tracker.calendar.classifier import is_external_event
from src.tracker.calendar.schemas import RecalculateResult

if TYPE_CHECKING:
    from src.tracker.calendar.repository import CalendarRepository
    from src.tracker.deals.repository import DealRepository

logger = structlog.get_logger(__name__)


async def recalculate_external_flags(
    organization_id: str,
    deal_repository: DealRepository,
    calendar_repository: CalendarRepository,
) -> RecalculateResult:
    """Re-classify all stored events for users of an organization.

    Returns:
        RecalculateResult with processed/updated counts. ``error`` is set
        (and nothing is touched) when the organization or its domain is missing.
    """
    organization = await deal_repository.get_organization(organization_id)
    if organization is None:
        return RecalculateResult(error="Organization not found")
    if not organization.domain:
        return RecalculateResult(error="Organization domain not set")

    users = await deal_repository.list_users_in_organization(organization_id)
    if not users:
        return RecalculateResult()

    emails_by_user = {u.id: u.email for u in users}
    events = await calendar_repository.list_events_for_users(list(emails_by_user))

    result = RecalculateResult(processed=len(events))
    for event in events:
        user_email = emails_by_user.get(event.user_id)
        if user_email is None:
            continue
        should_be_external = is_external_event(
            event.attendees, organization.domain, user_email
        )
        if should_be_external != event.is_external:
            await calendar_repository.set_event_external(event.id, should_be_external)
            result.updated += 1

    logger.info(
        "calendar.external_flags_recalculated",
        organization_id=organization_id,
        processed=result.processed,
        updated=result.updated,
    )
    return result
