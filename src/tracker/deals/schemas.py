"""Pydantic schemas for deal records used by the sync core.

Defines:
- Enums: ConsolidationStatus
- Read schemas: OrganizationRead, UserRead, AccountRead, OpportunityRead, ContactRead
"""

from __future__ import annotations

from datetime import datetime
from enum import Enum

from pydantic import BaseModel


# ── Enums ───────────────────────────────────────────────────────────────────


class ConsolidationStatus(str, Enum):
    """UI-facing state of an opportunity's insight consolidation."""

    IDLE = "idle"
    PROCESSING = "processing"
    COMPLETED = "completed"
    FAILED = "failed"


# ── Organization / User ─────────────────────────────────────────────────────


class OrganizationRead(BaseModel):
    """Organization with the email domain used for event classification."""

    id: str
    name: str
    domain: str | None = None


class UserRead(BaseModel):
    """User with the organization context needed to sync their calendar."""

    id: str
    email: str
    name: str | None = None
    organization_id: str | None = None
    organization_domain: str | None = None
    is_active: bool = True


# ── Deal Records ────────────────────────────────────────────────────────────


class AccountRead(BaseModel):
    """Account as read from the database."""

    id: str
    organization_id: str
    name: str
    website: str | None = None
    created_at: datetime | None = None
    updated_at: datetime | None = None


class OpportunityRead(BaseModel):
    """Opportunity as read from the database."""

    id: str
    organization_id: str
    account_id: str | None = None
    name: str
    stage: str = "discovery"
    consolidation_status: ConsolidationStatus = ConsolidationStatus.IDLE
    created_at: datetime | None = None
    updated_at: datetime | None = None


class ContactRead(BaseModel):
    """Contact as read from the database."""

    id: str
    organization_id: str
    opportunity_id: str | None = None
    account_id: str | None = None
    name: str
    email: str | None = None
    title: str | None = None
