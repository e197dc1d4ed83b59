"""REST API endpoints for organization-level maintenance."""

from __future__ import annotations

from typing import Any

from fastapi import APIRouter, Depends, HTTPException, status

from src.tracker.api.deps import (
    get_calendar_repository,
    get_current_user,
    get_deal_repository,
)
from src.tracker.calendar.recalculate import recalculate_external_flags
from src.tracker.calendar.schemas import RecalculateResult
from src.tracker.deals.schemas import UserRead

router = APIRouter(prefix="/api/v1/organizations", tags=["organizations"])


@router.post("/{organization_id}/recalculate-external", response_model=RecalculateResult)
async def recalculate_external(
    organization_id: str,
    user: UserRead = Depends(get_current_user),
    deal_repository: Any = Depends(get_deal_repository),
    calendar_repository: Any = Depends(get_calendar_repository),
) -> RecalculateResult:
    """Re-classify every stored event of the organization's users.

    Call after the organization's domain changes. Only members of the
    organization may trigger it.
    """
    if user.organization_id != organization_id:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Not a member of this organization",
        )

    result = await recalculate_external_flags(
        organization_id, deal_repository, calendar_repository
    )
    if result.error == "Organization not found":
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=result.error)
    if result.error:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=result.error)
    return result
