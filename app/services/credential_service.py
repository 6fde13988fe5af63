"""Credential store: password hashing and one-time password reset tokens."""

from datetime import UTC, datetime, timedelta
from uuid import UUID

import structlog
from sqlalchemy import and_, select, update
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import NotFoundException, ValidationException
from app.core.security import (
    PasswordHasher,
    generate_reset_token,
    hash_reset_token,
    password_hasher,
)
from app.models.users import users

logger = structlog.get_logger(__name__)


class CredentialService:
    """Service for password and reset token operations."""

    def __init__(
        self,
        db: AsyncSession,
        hasher: PasswordHasher | None = None,
        reset_token_ttl: timedelta | None = None,
    ):
        """Initialize service with database session and password hasher."""
        self.db = db
        self.hasher = hasher or password_hasher
        self.reset_token_ttl = reset_token_ttl or timedelta(
            minutes=settings.password_reset_token_expire_minutes
        )

    def hash_password(self, password: str) -> str:
        """Validate and hash a new password."""
        if len(password) < settings.password_min_length:
            raise ValidationException(
                f"Password must be at least {settings.password_min_length} characters long"
            )
        return self.hasher.hash(password)

    def verify_password(self, password: str, hashed_password: str | None) -> bool:
        """Check a password; never raises on mismatch."""
        return self.hasher.verify(password, hashed_password)

    async def issue_reset_token(self, user_id: UUID) -> str:
        """
        Issue a password reset token for a user.

        Only the SHA-256 digest and its expiry are stored.

        Args:
            user_id: User the token is issued for

        Returns:
            Plaintext token to be delivered to the user

        Raises:
            NotFoundException: If the user does not exist
        """
        token = generate_reset_token()
        expires_at = datetime.now(UTC) + self.reset_token_ttl

        stmt = (
            update(users)
            .where(users.c.id == user_id)
            .values(
                reset_token_hash=hash_reset_token(token),
                reset_token_expires_at=expires_at,
            )
        )
        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            await self.db.rollback()
            raise NotFoundException("User not found")
        await self.db.commit()

        logger.info("password_reset_token_issued", user_id=str(user_id))
        return token

    async def consume_reset_token(self, token_hash: str) -> dict | None:
        """Find the user holding an unexpired reset token digest."""
        stmt = select(users).where(
            and_(
                users.c.reset_token_hash == token_hash,
                users.c.reset_token_expires_at > datetime.now(UTC),
            )
        )
        result = await self.db.execute(stmt)
        user = result.mappings().first()
        return dict(user) if user else None

    async def clear_reset_token(self, user_id: UUID) -> None:
        """Invalidate any outstanding reset token for a user."""
        stmt = (
            update(users)
            .where(users.c.id == user_id)
            .values(reset_token_hash=None, reset_token_expires_at=None)
        )
        await self.db.execute(stmt)
        await self.db.commit()

    async def reset_password(self, user_id: UUID, new_password: str) -> None:
        """Set a new password and clear the reset token in one statement."""
        password_hash = self.hash_password(new_password)

        stmt = (
            update(users)
            .where(users.c.id == user_id)
            .values(
                password_hash=password_hash,
                reset_token_hash=None,
                reset_token_expires_at=None,
                updated_at=datetime.now(UTC),
            )
        )
        result = await self.db.execute(stmt)
        if result.rowcount == 0:
            await self.db.rollback()
            raise NotFoundException("User not found")
        await self.db.commit()

        logger.info("password_reset", user_id=str(user_id))

    async def reset_password_with_token(self, token: str, new_password: str) -> dict:
        """
        Redeem a reset token.

        The token match, expiry check, new hash and token clearing happen in a
        single UPDATE so a token can only ever be redeemed once.

        Raises:
            NotFoundException: If the token is unknown, used or expired
        """
        password_hash = self.hash_password(new_password)
        now = datetime.now(UTC)

        stmt = (
            update(users)
            .where(
                and_(
                    users.c.reset_token_hash == hash_reset_token(token),
                    users.c.reset_token_expires_at > now,
                )
            )
            .values(
                password_hash=password_hash,
                reset_token_hash=None,
                reset_token_expires_at=None,
                updated_at=now,
            )
            .returning(users)
        )
        result = await self.db.execute(stmt)
        user = result.mappings().first()
        if not user:
            await self.db.rollback()
            raise NotFoundException("Invalid or expired reset token")
        user_dict = dict(user)
        await self.db.commit()

        logger.info("password_reset", user_id=str(user_dict["id"]))
        return user_dict
