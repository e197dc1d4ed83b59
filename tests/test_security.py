"""JWT and OAuth token encryption tests."""

from __future__ import annotations

from datetime import timedelta

import pytest
from cryptography.fernet import Fernet
from fastapi import HTTPException
from jose import jwt

from src.tracker.config import get_settings
from src.tracker.core.security import (
    TokenDecryptionError,
    create_access_token,
    decrypt_token,
    encrypt_token,
    verify_token,
)


@pytest.fixture
def fernet_key(monkeypatch):
    key = Fernet.generate_key().decode()
    monkeypatch.setenv("OAUTH_ENCRYPTION_KEY", key)
    get_settings.cache_clear()
    yield key
    get_settings.cache_clear()


# ── JWT ───────────────────────────────────────────────────────────────────────


def test_access_token_round_trip():
    """A freshly issued access token verifies and carries the user id."""
    token = create_access_token("user-123")
    payload = verify_token(token, "access")
    assert payload["sub"] == "user-123"
    assert payload["type"] == "access"


def test_expired_token_rejected():
    """Tokens past their expiry raise 401."""
    token = create_access_token("user-123", expires_delta=timedelta(seconds=-1))
    with pytest.raises(HTTPException) as exc_info:
        verify_token(token)
    assert exc_info.value.status_code == 401


def test_wrong_token_type_rejected():
    """A token whose type claim differs from the expected one raises 401."""
    settings = get_settings()
    token = jwt.encode(
        {"sub": "user-123", "type": "refresh"},
        settings.JWT_SECRET_KEY,
        algorithm=settings.JWT_ALGORITHM,
    )
    with pytest.raises(HTTPException):
        verify_token(token, "access")


def test_token_signed_with_other_key_rejected():
    token = jwt.encode({"sub": "user-123", "type": "access"}, "another-secret", algorithm="HS256")
    with pytest.raises(HTTPException):
        verify_token(token)


# ── Fernet ────────────────────────────────────────────────────────────────────


def test_encrypt_decrypt(fernet_key):
    """Encrypted tokens are opaque and decrypt back to the original."""
    encrypted = encrypt_token("ya29.secret")
    assert "ya29" not in encrypted
    assert decrypt_token(encrypted) == "ya29.secret"


def test_decrypt_with_rotated_key_fails(fernet_key, monkeypatch):
    """Ciphertext from a previous key cannot be decrypted."""
    encrypted = encrypt_token("ya29.secret")
    monkeypatch.setenv("OAUTH_ENCRYPTION_KEY", Fernet.generate_key().decode())
    get_settings.cache_clear()

    with pytest.raises(TokenDecryptionError):
        decrypt_token(encrypted)


def test_missing_key_fails(monkeypatch):
    monkeypatch.setenv("OAUTH_ENCRYPTION_KEY", "")
    get_settings.cache_clear()
    try:
        with pytest.raises(TokenDecryptionError, match="not set"):
            encrypt_token("ya29.secret")
    finally:
        get_settings.cache_clear()
