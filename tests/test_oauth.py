"""Tests for OAuthTokenService: decryption, refresh, and failure mapping."""

from __future__ import annotations

from datetime import datetime, timedelta, timezone
from urllib.parse import parse_qs

import httpx
import pytest
from cryptography.fernet import Fernet

from src.tracker.config import get_settings
from src.tracker.core.security import decrypt_token, encrypt_token
from src.tracker.services.google.models import StoredOAuthToken
from src.tracker.services.google.oauth import (
    OAuthTokenService,
    TokenInvalidError,
    is_token_expired,
)


@pytest.fixture(autouse=True)
def encryption_key(monkeypatch):
    monkeypatch.setenv("OAUTH_ENCRYPTION_KEY", Fernet.generate_key().decode())
    get_settings.cache_clear()
    yield
    get_settings.cache_clear()


class InMemoryTokenRepository:
    def __init__(self) -> None:
        self.tokens: dict[tuple[str, str], StoredOAuthToken] = {}
        self.saved: list[StoredOAuthToken] = []

    async def get_token(self, user_id: str, provider: str) -> StoredOAuthToken | None:
        return self.tokens.get((user_id, provider))

    async def save_token(self, token: StoredOAuthToken) -> StoredOAuthToken:
        self.saved.append(token)
        self.tokens[(token.user_id, token.provider)] = token
        return token


def _stored(expires_in: timedelta, refresh: str | None = "refresh-1") -> StoredOAuthToken:
    return StoredOAuthToken(
        user_id="user-1",
        provider="google",
        access_token=encrypt_token("access-old"),
        refresh_token=encrypt_token(refresh) if refresh else None,
        expires_at=datetime.now(timezone.utc) + expires_in,
    )


def _service(repo, handler=None) -> OAuthTokenService:
    transport = httpx.MockTransport(handler) if handler else None
    return OAuthTokenService(
        repo, client_id="client-id", client_secret="client-secret", transport=transport
    )


async def test_valid_token_is_decrypted_without_refresh():
    repo = InMemoryTokenRepository()
    repo.tokens[("user-1", "google")] = _stored(timedelta(hours=1))

    def handler(request):
        raise AssertionError("token endpoint should not be called")

    token = await _service(repo, handler).get_valid_access_token("user-1")

    assert token == "access-old"
    assert repo.saved == []


async def test_expiring_token_is_refreshed_and_saved():
    repo = InMemoryTokenRepository()
    repo.tokens[("user-1", "google")] = _stored(timedelta(minutes=2))
    requests = []

    def handler(request: httpx.Request) -> httpx.Response:
        requests.append(parse_qs(request.content.decode()))
        return httpx.Response(200, json={"access_token": "access-new", "expires_in": 3600})

    token = await _service(repo, handler).get_valid_access_token("user-1")

    assert token == "access-new"
    assert requests[0]["grant_type"] == ["refresh_token"]
    assert requests[0]["refresh_token"] == ["refresh-1"]
    assert requests[0]["client_id"] == ["client-id"]

    saved = repo.saved[-1]
    assert decrypt_token(saved.access_token) == "access-new"
    assert saved.refresh_token is None
    assert saved.expires_at > datetime.now(timezone.utc) + timedelta(minutes=59)


async def test_missing_token_raises():
    with pytest.raises(TokenInvalidError, match="not connected"):
        await _service(InMemoryTokenRepository()).get_valid_access_token("user-1")


async def test_expired_without_refresh_token_raises():
    repo = InMemoryTokenRepository()
    repo.tokens[("user-1", "google")] = _stored(timedelta(minutes=-5), refresh=None)

    with pytest.raises(TokenInvalidError, match="No refresh token"):
        await _service(repo).get_valid_access_token("user-1")


async def test_rejected_refresh_raises_token_invalid():
    repo = InMemoryTokenRepository()
    repo.tokens[("user-1", "google")] = _stored(timedelta(minutes=-5))
    calls = []

    def handler(request: httpx.Request) -> httpx.Response:
        calls.append(request)
        return httpx.Response(400, json={"error": "invalid_grant"})

    with pytest.raises(TokenInvalidError, match="Failed to refresh"):
        await _service(repo, handler).get_valid_access_token("user-1")
    assert len(calls) == 1
    assert repo.saved == []


async def test_undecryptable_token_raises_token_invalid():
    repo = InMemoryTokenRepository()
    token = _stored(timedelta(hours=1))
    repo.tokens[("user-1", "google")] = token.model_copy(update={"access_token": "not-fernet"})

    with pytest.raises(TokenInvalidError):
        await _service(repo).get_valid_access_token("user-1")


async def test_store_tokens_encrypts():
    repo = InMemoryTokenRepository()
    await _service(repo).store_tokens("user-1", "access-x", "refresh-x", expires_in=3600)

    saved = repo.saved[0]
    assert saved.access_token != "access-x"
    assert decrypt_token(saved.access_token) == "access-x"
    assert decrypt_token(saved.refresh_token) == "refresh-x"


class TestIsTokenExpired:
    NOW = datetime(2026, 3, 2, 12, 0, tzinfo=timezone.utc)

    def test_well_before_expiry(self):
        assert not is_token_expired(self.NOW + timedelta(minutes=10), now=self.NOW)

    def test_within_buffer(self):
        assert is_token_expired(self.NOW + timedelta(minutes=4), now=self.NOW)

    def test_naive_expiry_treated_as_utc(self):
        naive = (self.NOW + timedelta(hours=1)).replace(tzinfo=None)
        assert not is_token_expired(naive, now=self.NOW)
