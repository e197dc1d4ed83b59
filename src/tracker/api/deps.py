"""FastAPI dependency injection for app-state services and authentication.

Services are created once in the application lifespan and stored on
``app.state``. Each getter raises 503 when its service is missing so the API
degrades per feature instead of failing at startup.
"""

from __future__ import annotations

from typing import Any

from fastapi import Depends, HTTPException, Request, status

from src.tracker.core.security import verify_token
from src.tracker.deals.schemas import UserRead


def _get_state_service(request: Request, name: str, label: str) -> Any:
    service = getattr(request.app.state, name, None)
    if service is None:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail=f"{label} not initialized",
        )
    return service


def get_deal_repository(request: Request) -> Any:
    """Retrieve DealRepository from app.state, 503 if not available."""
    return _get_state_service(request, "deal_repository", "Deal repository")


def get_calendar_repository(request: Request) -> Any:
    """Retrieve CalendarRepository from app.state, 503 if not available."""
    return _get_state_service(request, "calendar_repository", "Calendar repository")


def get_sync_engine(request: Request) -> Any:
    """Retrieve CalendarSyncEngine from app.state, 503 if not available."""
    return _get_state_service(request, "calendar_sync_engine", "Calendar sync")


def get_insight_repository(request: Request) -> Any:
    """Retrieve InsightRepository from app.state, 503 if not available."""
    return _get_state_service(request, "insight_repository", "Insight repository")


def get_consolidator(request: Request) -> Any:
    """Retrieve InsightConsolidator from app.state, 503 if not available."""
    return _get_state_service(request, "insight_consolidator", "Insight consolidation")


def get_job_registry(request: Request) -> Any:
    """Retrieve JobRegistry from app.state, 503 if not available."""
    return _get_state_service(request, "job_registry", "Job registry")


async def get_current_user(
    request: Request,
    deal_repository: Any = Depends(get_deal_repository),
) -> UserRead:
    """Extract and validate the current user from the Bearer JWT.

    Raises:
        HTTPException(401): If the token is missing or invalid, or the user
            does not exist or is inactive.
    """
    auth_header = request.headers.get("Authorization")
    if not auth_header or not auth_header.startswith("Bearer "):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Not authenticated",
            headers={"WWW-Authenticate": "Bearer"},
        )

    payload = verify_token(auth_header[7:], token_type="access")
    user_id = payload.get("sub")
    if not user_id:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Token has no subject",
        )

    try:
        user = await deal_repository.get_user(str(user_id))
    except ValueError:
        user = None
    if user is None or not user.is_active:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found or inactive",
        )
    return user
