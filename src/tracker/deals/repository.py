"""Deal repository -- async reads of organizations, users, and deal records.

Provides DealRepository with the session_factory callable pattern. Serves the
lookups the calendar sync needs (users with a calendar connection, the
organization domain, contacts/accounts/opportunities for matching) and the
opportunity ``consolidation_status`` writes made by the consolidation job.
"""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.tracker.deals.models import AccountModel, ContactModel, OpportunityModel
from src.tracker.deals.schemas import (
    AccountRead,
    ConsolidationStatus,
    ContactRead,
    OpportunityRead,
    OrganizationRead,
    UserRead,
)
from src.tracker.models.organization import OAuthToken, Organization, User

logger = structlog.get_logger(__name__)


# ── Serialization Helpers ───────────────────────────────────────────────────


def _model_to_organization(model: Organization) -> OrganizationRead:
    return OrganizationRead(id=str(model.id), name=model.name, domain=model.domain)


def _model_to_user(model: User, organization_domain: str | None) -> UserRead:
    return UserRead(
        id=str(model.id),
        email=model.email,
        name=model.name,
        organization_id=str(model.organization_id) if model.organization_id else None,
        organization_domain=organization_domain,
        is_active=model.is_active,
    )


def _model_to_account(model: AccountModel) -> AccountRead:
    """Convert AccountModel to AccountRead schema."""
    return AccountRead(
        id=str(model.id),
        organization_id=str(model.organization_id),
        name=model.name,
        website=model.website,
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_opportunity(model: OpportunityModel) -> OpportunityRead:
    """Convert OpportunityModel to OpportunityRead schema."""
    return OpportunityRead(
        id=str(model.id),
        organization_id=str(model.organization_id),
        account_id=str(model.account_id) if model.account_id else None,
        name=model.name,
        stage=model.stage,
        consolidation_status=ConsolidationStatus(model.consolidation_status),
        created_at=model.created_at,
        updated_at=model.updated_at,
    )


def _model_to_contact(model: ContactModel) -> ContactRead:
    """Convert ContactModel to ContactRead schema."""
    return ContactRead(
        id=str(model.id),
        organization_id=str(model.organization_id),
        opportunity_id=str(model.opportunity_id) if model.opportunity_id else None,
        account_id=str(model.account_id) if model.account_id else None,
        name=model.name,
        email=model.email,
        title=model.title,
    )


# ── Repository ──────────────────────────────────────────────────────────────


class DealRepository:
    """Async reads and status writes for organizations, users, and deals.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    # ── Organizations & Users ───────────────────────────────────────────────

    async def get_organization(self, organization_id: str) -> OrganizationRead | None:
        """Get an organization by ID."""
        async for session in self._session_factory():
            model = await session.get(Organization, uuid.UUID(organization_id))
            if model is None:
                return None
            return _model_to_organization(model)

    async def get_user(self, user_id: str) -> UserRead | None:
        """Get a user together with their organization's domain.

        Returns:
            UserRead if found, None otherwise.
        """
        async for session in self._session_factory():
            stmt = (
                select(User, Organization.domain)
                .outerjoin(Organization, User.organization_id == Organization.id)
                .where(User.id == uuid.UUID(user_id))
            )
            result = await session.execute(stmt)
            row = result.first()
            if row is None:
                return None
            return _model_to_user(row[0], row[1])

    async def list_users_with_oauth(self, provider: str = "google") -> list[UserRead]:
        """List active users who have connected an OAuth account for a provider."""
        async for session in self._session_factory():
            stmt = (
                select(User, Organization.domain)
                .join(OAuthToken, OAuthToken.user_id == User.id)
                .outerjoin(Organization, User.organization_id == Organization.id)
                .where(OAuthToken.provider == provider, User.is_active.is_(True))
                .order_by(User.created_at)
            )
            result = await session.execute(stmt)
            return [_model_to_user(user, domain) for user, domain in result.all()]

    async def list_users_in_organization(self, organization_id: str) -> list[UserRead]:
        """List all users belonging to an organization."""
        async for session in self._session_factory():
            stmt = (
                select(User, Organization.domain)
                .join(Organization, User.organization_id == Organization.id)
                .where(User.organization_id == uuid.UUID(organization_id))
            )
            result = await session.execute(stmt)
            return [_model_to_user(user, domain) for user, domain in result.all()]

    # ── Matching Inputs ─────────────────────────────────────────────────────

    async def list_contacts_with_email(self, organization_id: str) -> list[ContactRead]:
        """List contacts with an email address, the input to contact matching."""
        async for session in self._session_factory():
            stmt = select(ContactModel).where(
                ContactModel.organization_id == uuid.UUID(organization_id),
                ContactModel.email.is_not(None),
            )
            result = await session.execute(stmt)
            return [_model_to_contact(m) for m in result.scalars().all()]

    async def list_accounts(self, organization_id: str) -> list[AccountRead]:
        """List accounts for an organization."""
        async for session in self._session_factory():
            stmt = select(AccountModel).where(
                AccountModel.organization_id == uuid.UUID(organization_id)
            )
            result = await session.execute(stmt)
            return [_model_to_account(m) for m in result.scalars().all()]

    async def list_opportunities(self, organization_id: str) -> list[OpportunityRead]:
        """List opportunities for an organization."""
        async for session in self._session_factory():
            stmt = select(OpportunityModel).where(
                OpportunityModel.organization_id == uuid.UUID(organization_id)
            )
            result = await session.execute(stmt)
            return [_model_to_opportunity(m) for m in result.scalars().all()]

    # ── Opportunities ───────────────────────────────────────────────────────

    async def get_opportunity(self, opportunity_id: str) -> OpportunityRead | None:
        """Get an opportunity by ID."""
        async for session in self._session_factory():
            model = await session.get(OpportunityModel, uuid.UUID(opportunity_id))
            if model is None:
                return None
            return _model_to_opportunity(model)

    async def set_consolidation_status(
        self, opportunity_id: str, status: ConsolidationStatus
    ) -> None:
        """Update an opportunity's consolidation status.

        Raises:
            ValueError: If the opportunity is not found.
        """
        async for session in self._session_factory():
            model = await session.get(OpportunityModel, uuid.UUID(opportunity_id))
            if model is None:
                raise ValueError(f"Opportunity not found: id={opportunity_id}")
            model.consolidation_status = status.value
            model.updated_at = datetime.now(timezone.utc)
            await session.commit()
            logger.debug(
                "deals.consolidation_status_updated",
                opportunity_id=opportunity_id,
                status=status.value,
            )
