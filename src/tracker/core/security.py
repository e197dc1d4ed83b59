"""JWT authentication and OAuth token encryption.

Provides the security primitives used by API dependencies (bearer JWT
verification) and by the OAuth token service (at-rest encryption of
provider access/refresh tokens with Fernet).
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone

from cryptography.fernet import Fernet, InvalidToken
from fastapi import HTTPException, status
from jose import JWTError, jwt

from src.tracker.config import get_settings

logger = logging.getLogger(__name__)


class TokenDecryptionError(Exception):
    """Raised when a stored OAuth token cannot be decrypted."""


# ── JWT Token Creation ────────────────────────────────────────────────────────


def create_access_token(user_id: str, expires_delta: timedelta | None = None) -> str:
    """Create a JWT access token whose subject is the user id."""
    settings = get_settings()
    now = datetime.now(timezone.utc)
    expire = now + (expires_delta or timedelta(minutes=30))
    to_encode = {
        "sub": user_id,
        "exp": expire,
        "iat": now,
        "type": "access",
    }
    return jwt.encode(to_encode, settings.JWT_SECRET_KEY, algorithm=settings.JWT_ALGORITHM)


# ── JWT Token Verification ────────────────────────────────────────────────────


def verify_token(token: str, token_type: str = "access") -> dict:
    """Decode and validate a JWT token.

    Args:
        token: The JWT string.
        token_type: Expected token type.

    Returns:
        The decoded payload dict.

    Raises:
        HTTPException(401): If the token is invalid, expired, or wrong type.
    """
    settings = get_settings()
    credentials_exception = HTTPException(
        status_code=status.HTTP_401_UNAUTHORIZED,
        detail="Could not validate credentials",
        headers={"WWW-Authenticate": "Bearer"},
    )
    try:
        payload = jwt.decode(
            token,
            settings.JWT_SECRET_KEY,
            algorithms=[settings.JWT_ALGORITHM],
        )
        if payload.get("type") != token_type:
            raise credentials_exception
        if not payload.get("sub"):
            raise credentials_exception
        return payload
    except JWTError:
        raise credentials_exception


# ── OAuth Token Encryption ────────────────────────────────────────────────────


def _get_fernet() -> Fernet:
    settings = get_settings()
    if not settings.OAUTH_ENCRYPTION_KEY:
        raise TokenDecryptionError(
            "OAUTH_ENCRYPTION_KEY is not set. Generate one with Fernet.generate_key()"
        )
    try:
        return Fernet(settings.OAUTH_ENCRYPTION_KEY.encode("utf-8"))
    except ValueError as exc:
        raise TokenDecryptionError(f"OAUTH_ENCRYPTION_KEY is not a valid Fernet key: {exc}") from exc


def encrypt_token(token: str) -> str:
    """Encrypt an OAuth token for storage."""
    return _get_fernet().encrypt(token.encode("utf-8")).decode("utf-8")


def decrypt_token(encrypted: str) -> str:
    """Decrypt a stored OAuth token.

    Raises:
        TokenDecryptionError: If the ciphertext is invalid or the key is wrong.
    """
    try:
        return _get_fernet().decrypt(encrypted.encode("utf-8")).decode("utf-8")
    except InvalidToken:
        # Never log token material
        logger.error("Failed to decrypt OAuth token")
        raise TokenDecryptionError("Failed to decrypt OAuth token") from None
