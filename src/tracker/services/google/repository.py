"""OAuth token repository -- async persistence of encrypted provider tokens."""

from __future__ import annotations

import uuid
from collections.abc import AsyncGenerator, Callable
from datetime import datetime, timezone

import structlog
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from src.tracker.models.organization import OAuthToken
from src.tracker.services.google.models import StoredOAuthToken

logger = structlog.get_logger(__name__)


def _model_to_token(model: OAuthToken) -> StoredOAuthToken:
    return StoredOAuthToken(
        user_id=str(model.user_id),
        provider=model.provider,
        access_token=model.access_token,
        refresh_token=model.refresh_token,
        expires_at=model.expires_at,
        scope=model.scope,
    )


class OAuthTokenRepository:
    """Reads and upserts encrypted OAuth tokens keyed by (user_id, provider).

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def get_token(self, user_id: str, provider: str) -> StoredOAuthToken | None:
        async for session in self._session_factory():
            stmt = select(OAuthToken).where(
                OAuthToken.user_id == uuid.UUID(user_id),
                OAuthToken.provider == provider,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()
            if model is None:
                return None
            return _model_to_token(model)

    async def save_token(self, token: StoredOAuthToken) -> StoredOAuthToken:
        """Create or replace the token row for (user_id, provider)."""
        async for session in self._session_factory():
            stmt = select(OAuthToken).where(
                OAuthToken.user_id == uuid.UUID(token.user_id),
                OAuthToken.provider == token.provider,
            )
            result = await session.execute(stmt)
            model = result.scalar_one_or_none()

            if model is None:
                model = OAuthToken(
                    user_id=uuid.UUID(token.user_id),
                    provider=token.provider,
                    access_token=token.access_token,
                    refresh_token=token.refresh_token,
                    expires_at=token.expires_at,
                    scope=token.scope,
                )
                session.add(model)
            else:
                model.access_token = token.access_token
                # Google omits refresh_token on refresh grants; keep the stored one
                if token.refresh_token:
                    model.refresh_token = token.refresh_token
                model.expires_at = token.expires_at
                if token.scope:
                    model.scope = token.scope
                model.updated_at = datetime.now(timezone.utc)

            await session.commit()
            await session.refresh(model)
            return _model_to_token(model)
