"""V1 API router -- aggregates all v1 endpoint routers."""

from __future__ import annotations

from fastapi import APIRouter

from src.tracker.api.v1 import calendar, health, insights, organizations

router = APIRouter()

router.include_router(health.router)
router.include_router(calendar.router)
router.include_router(organizations.router)
router.include_router(insights.router)
