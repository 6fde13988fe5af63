"""Security utilities for JWT, password and reset token handling."""

import base64
import hashlib
import hmac
import secrets
from datetime import UTC, datetime, timedelta
from typing import Any

from jose import JWTError, jwt
from passlib.context import CryptContext

from app.config import settings

RESET_TOKEN_BYTES = 32


class PasswordHasher:
    """
    Peppered bcrypt hashing.

    The password is first reduced to HMAC-SHA256(pepper, password), base64
    encoded (44 bytes), so bcrypt's 72 byte input limit never cuts off the
    pepper or the tail of a long password.
    """

    def __init__(self, pepper: str = "", rounds: int = 10):
        """Initialize hasher with a server-wide pepper and bcrypt work factor."""
        self.pepper = pepper
        self._context = CryptContext(
            schemes=["bcrypt"],
            deprecated="auto",
            bcrypt__rounds=rounds,
        )

    def _peppered(self, password: str) -> str:
        digest = hmac.new(
            self.pepper.encode("utf-8"), password.encode("utf-8"), hashlib.sha256
        ).digest()
        return base64.b64encode(digest).decode("ascii")

    def hash(self, password: str) -> str:
        """Hash a password (a fresh salt is generated on every call)."""
        return self._context.hash(self._peppered(password))

    def verify(self, password: str, hashed_password: str | None) -> bool:
        """
        Verify a password against a hash.

        Returns False for a missing or malformed hash instead of raising.
        """
        if not hashed_password:
            return False
        try:
            return self._context.verify(self._peppered(password), hashed_password)
        except (ValueError, TypeError):
            return False


# Password hashing
password_hasher = PasswordHasher(
    pepper=settings.password_pepper,
    rounds=settings.bcrypt_rounds,
)


def generate_reset_token() -> str:
    """Generate a random password reset token (hex encoded)."""
    return secrets.token_hex(RESET_TOKEN_BYTES)


def hash_reset_token(token: str) -> str:
    """SHA-256 digest of a reset token; only the digest is persisted."""
    return hashlib.sha256(token.encode("utf-8")).hexdigest()


def create_access_token(
    data: dict[str, Any],
    expires_delta: timedelta | None = None,
) -> str:
    """
    Create a JWT access token.

    Args:
        data: Payload data to encode
        expires_delta: Optional expiration time delta

    Returns:
        Encoded JWT token
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(UTC) + expires_delta
    else:
        expire = datetime.now(UTC) + timedelta(minutes=settings.access_token_expire_minutes)

    to_encode.update(
        {
            "exp": expire,
            "iat": datetime.now(UTC),
            "type": "access",
        }
    )

    return jwt.encode(
        to_encode,
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )


def create_refresh_token(
    data: dict[str, Any],
    expires_delta: timedelta | None = None,
) -> str:
    """
    Create a JWT refresh token.

    Args:
        data: Payload data to encode
        expires_delta: Optional expiration time delta

    Returns:
        Encoded JWT refresh token
    """
    to_encode = data.copy()

    if expires_delta:
        expire = datetime.now(UTC) + expires_delta
    else:
        expire = datetime.now(UTC) + timedelta(days=settings.refresh_token_expire_days)

    to_encode.update(
        {
            "exp": expire,
            "iat": datetime.now(UTC),
            "type": "refresh",
        }
    )

    return jwt.encode(
        to_encode,
        settings.jwt_secret_key,
        algorithm=settings.jwt_algorithm,
    )


def _decode_token(token: str, expected_type: str) -> dict[str, Any] | None:
    try:
        payload = jwt.decode(
            token,
            settings.jwt_secret_key,
            algorithms=[settings.jwt_algorithm],
        )
    except JWTError:
        return None

    if payload.get("type") != expected_type:
        return None

    return payload


def decode_access_token(token: str) -> dict[str, Any] | None:
    """
    Decode and validate a JWT access token.

    Args:
        token: JWT token to decode

    Returns:
        Decoded payload or None if invalid
    """
    return _decode_token(token, "access")


def decode_refresh_token(token: str) -> dict[str, Any] | None:
    """
    Decode and validate a JWT refresh token.

    Args:
        token: JWT refresh token to decode

    Returns:
        Decoded payload or None if invalid
    """
    return _decode_token(token, "refresh")
