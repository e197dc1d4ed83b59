"""OAuth token service for user-consented Google API access.

Resolves a usable access token for a user: decrypts the stored token, and when
it expires within the refresh buffer, exchanges the refresh token at Google's
token endpoint (httpx) and persists the new encrypted access token.

Every way a user's credentials can be unusable (never connected, no refresh
token, undecryptable ciphertext, refresh rejected) surfaces as
TokenInvalidError so callers can treat it as a per-user auth failure.
"""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from typing import TYPE_CHECKING

import httpx
import structlog
from tenacity import retry, retry_if_exception_type, stop_after_attempt, wait_exponential

from src.tracker.core.security import TokenDecryptionError, decrypt_token, encrypt_token
from src.tracker.services.google.models import OAuthTokenGrant, StoredOAuthToken

if TYPE_CHECKING:
    from src.tracker.services.google.repository import OAuthTokenRepository

logger = structlog.get_logger(__name__)

GOOGLE_PROVIDER = "google"

# Network-level failures only; an HTTP 4xx from the token endpoint is final
_token_endpoint_retry = retry(
    stop=stop_after_attempt(3),
    wait=wait_exponential(multiplier=1, min=1, max=10),
    retry=retry_if_exception_type((httpx.ConnectError, httpx.TimeoutException)),
    reraise=True,
)


class TokenInvalidError(Exception):
    """Raised when a user's OAuth credentials cannot produce an access token."""


def is_token_expired(
    expires_at: datetime, buffer_seconds: int = 300, now: datetime | None = None
) -> bool:
    """True when the token expires within ``buffer_seconds`` from now."""
    now = now or datetime.now(timezone.utc)
    if expires_at.tzinfo is None:
        expires_at = expires_at.replace(tzinfo=timezone.utc)
    return now > expires_at - timedelta(seconds=buffer_seconds)


class OAuthTokenService:
    """Returns valid (refreshed when needed) access tokens per user.

    Args:
        repository: OAuthTokenRepository for encrypted token rows.
        client_id: Google OAuth client ID.
        client_secret: Google OAuth client secret.
        token_url: Google token endpoint.
        refresh_buffer_seconds: Refresh tokens expiring within this window.
        transport: Optional httpx transport (tests use httpx.MockTransport).
    """

    TIMEOUT = 15.0

    def __init__(
        self,
        repository: OAuthTokenRepository,
        client_id: str,
        client_secret: str,
        token_url: str = "https://oauth2.googleapis.com/token",
        refresh_buffer_seconds: int = 300,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self._repository = repository
        self._client_id = client_id
        self._client_secret = client_secret
        self._token_url = token_url
        self._refresh_buffer_seconds = refresh_buffer_seconds
        self._transport = transport

    async def get_valid_access_token(
        self, user_id: str, provider: str = GOOGLE_PROVIDER
    ) -> str:
        """Return a decrypted access token, refreshing it if near expiry.

        Raises:
            TokenInvalidError: If the user has no usable credentials.
        """
        token = await self._repository.get_token(user_id, provider)
        if token is None:
            raise TokenInvalidError(
                "Calendar not connected. Please connect your calendar in Settings."
            )

        if not is_token_expired(token.expires_at, self._refresh_buffer_seconds):
            try:
                return decrypt_token(token.access_token)
            except TokenDecryptionError as exc:
                raise TokenInvalidError(str(exc)) from exc

        if not token.refresh_token:
            raise TokenInvalidError(
                "No refresh token available. Please reconnect your calendar."
            )

        try:
            refresh_token = decrypt_token(token.refresh_token)
            grant = await self._refresh_access_token(refresh_token)
        except (TokenDecryptionError, httpx.HTTPError, ValueError) as exc:
            logger.warning(
                "oauth.refresh_failed",
                user_id=user_id,
                provider=provider,
                error=type(exc).__name__,
            )
            raise TokenInvalidError(
                "Failed to refresh calendar access. Please reconnect your calendar."
            ) from exc

        await self._repository.save_token(
            StoredOAuthToken(
                user_id=user_id,
                provider=provider,
                access_token=encrypt_token(grant.access_token),
                refresh_token=(
                    encrypt_token(grant.refresh_token) if grant.refresh_token else None
                ),
                expires_at=datetime.now(timezone.utc) + timedelta(seconds=grant.expires_in),
                scope=grant.scope,
            )
        )
        logger.info("oauth.token_refreshed", user_id=user_id, provider=provider)
        return grant.access_token

    async def store_tokens(
        self,
        user_id: str,
        access_token: str,
        refresh_token: str | None,
        expires_in: int,
        scope: str | None = None,
        provider: str = GOOGLE_PROVIDER,
    ) -> None:
        """Encrypt and persist tokens obtained from an OAuth consent flow."""
        await self._repository.save_token(
            StoredOAuthToken(
                user_id=user_id,
                provider=provider,
                access_token=encrypt_token(access_token),
                refresh_token=encrypt_token(refresh_token) if refresh_token else None,
                expires_at=datetime.now(timezone.utc) + timedelta(seconds=expires_in),
                scope=scope,
            )
        )

    @_token_endpoint_retry
    async def _refresh_access_token(self, refresh_token: str) -> OAuthTokenGrant:
        if not self._client_id or not self._client_secret:
            raise ValueError("Google OAuth credentials not configured")

        async with httpx.AsyncClient(
            timeout=self.TIMEOUT, transport=self._transport
        ) as client:
            response = await client.post(
                self._token_url,
                data={
                    "client_id": self._client_id,
                    "client_secret": self._client_secret,
                    "refresh_token": refresh_token,
                    "grant_type": "refresh_token",
                },
            )
            response.raise_for_status()
            return OAuthTokenGrant.model_validate(response.json())
