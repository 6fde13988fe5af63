"""Authentication service: registration, login, password reset and JWT."""

from collections.abc import Awaitable, Callable
from datetime import timedelta
from uuid import UUID

import structlog
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.exceptions import (
    EmailDeliveryException,
    NotFoundException,
    UnauthorizedException,
    ValidationException,
)
from app.core.firebase import verify_firebase_token
from app.core.redis_client import CacheManager
from app.core.security import (
    create_access_token,
    create_refresh_token,
    decode_refresh_token,
)
from app.schemas.auth import ForgotPasswordRequest, LoginRequest, ResetPasswordRequest, Token
from app.schemas.users import UserCreate, UserRole, UserStatus
from app.services.directory_service import DirectoryService, normalize_domain
from app.services.email_service import (
    RESET_PATHS,
    WELCOME_PATHS,
    EmailService,
    tenant_frontend_url,
)

logger = structlog.get_logger(__name__)

TokenVerifier = Callable[[str], Awaitable[dict]]


class AuthService:
    """Authentication service for local, external (Firebase) and JWT operations."""

    def __init__(
        self,
        db: AsyncSession,
        cache_manager: CacheManager,
        email_service: EmailService | None = None,
        token_verifier: TokenVerifier | None = None,
    ):
        """Initialize auth service with session, cache manager and collaborators."""
        self.db = db
        self.cache = cache_manager
        self.directory = DirectoryService(db)
        self.email = email_service or EmailService()
        self.verify_external_token = token_verifier or verify_firebase_token

    async def register(
        self, data: UserCreate, tenant_header: str | None = None
    ) -> tuple[dict, Token]:
        """
        Register a local user and sign them in.

        A failed welcome email is logged; registration still succeeds.

        Args:
            data: Registration data
            tenant_header: Tenant subdomain (clients only)

        Returns:
            Tuple of (user dict, token pair)
        """
        user = await self.directory.create_user(data, tenant_header)

        role = UserRole(user["role"])
        welcome_url = tenant_frontend_url(
            settings, WELCOME_PATHS[role], role, normalize_domain(tenant_header)
        )
        try:
            await self.email.send_welcome(user, welcome_url)
        except EmailDeliveryException as e:
            logger.warning("welcome_email_failed", user_id=str(user["id"]), error=e.message)

        return user, self.create_tokens(user)

    async def login(
        self, data: LoginRequest, tenant_header: str | None = None
    ) -> tuple[dict, Token]:
        """
        Log a user in with email and password.

        Raises:
            UnauthorizedException: If credentials are invalid
            TenantNotFoundException: Client login against an unknown tenant
        """
        user = await self.directory.authenticate(
            data.email, data.password, data.role, tenant_header
        )
        if user is None:
            raise UnauthorizedException("Invalid credentials")

        return user, self.create_tokens(user)

    async def _find_reset_target(
        self, data: ForgotPasswordRequest, tenant_header: str | None
    ) -> dict | None:
        if data.role == UserRole.CLIENT:
            tenant = await self.directory.require_tenant(tenant_header)
            return await self.directory.find_client_under_tenant(data.email, tenant["id"])
        if data.role == UserRole.CUSTOMER_ADMIN:
            if not data.domain:
                raise ValidationException("Domain is required for customer admins")
            return await self.directory.find_admin_by_email_and_domain(data.email, data.domain)
        return await self.directory.find_by_email_and_role(data.email, UserRole.ADMINISTRATOR)

    async def forgot_password(
        self, data: ForgotPasswordRequest, tenant_header: str | None = None
    ) -> None:
        """
        Issue a reset token and email the reset link.

        Raises:
            NotFoundException: If no matching user exists
            EmailDeliveryException: If the email could not be sent; the
                issued token is cleared again
        """
        user = await self._find_reset_target(data, tenant_header)
        if not user:
            raise NotFoundException("User not found")

        token = await self.directory.credentials.issue_reset_token(user["id"])
        reset_url = tenant_frontend_url(
            settings,
            f"{RESET_PATHS[data.role]}?token={token}",
            data.role,
            normalize_domain(tenant_header),
        )

        try:
            await self.email.send_password_reset(user, reset_url)
        except EmailDeliveryException:
            await self.directory.credentials.clear_reset_token(user["id"])
            logger.warning("password_reset_email_failed", user_id=str(user["id"]))
            raise EmailDeliveryException(
                "There was an error sending the password reset email"
            ) from None

    async def reset_password(self, data: ResetPasswordRequest) -> tuple[dict, Token]:
        """
        Redeem a reset token and sign the user in.

        Raises:
            NotFoundException: If the token is invalid, used or expired
        """
        user = await self.directory.credentials.reset_password_with_token(
            data.token, data.new_password
        )
        return user, self.create_tokens(user)

    async def verify_external_id_token(self, id_token: str) -> dict:
        """
        Verify an external provider ID token and extract its claims.

        Raises:
            UnauthorizedException: If token verification fails
        """
        try:
            return await self.verify_external_token(id_token)
        except ValueError as e:
            raise UnauthorizedException(str(e)) from e

    async def external_login(
        self, id_token: str, tenant_header: str | None = None
    ) -> tuple[dict, Token]:
        """
        Log in (or sign up) with an external identity.

        Args:
            id_token: Firebase ID token
            tenant_header: Tenant subdomain, binds new users to that tenant

        Returns:
            Tuple of (user dict, token pair)
        """
        claims = await self.verify_external_id_token(id_token)

        external_id = claims.get("uid")
        email = claims.get("email")
        if not external_id or not email:
            raise UnauthorizedException("Email is required from the identity provider")

        user = await self.directory.resolve_external_identity(
            external_id,
            email,
            full_name=claims.get("name"),
            profile_picture=claims.get("picture"),
            tenant_header=tenant_header,
        )
        if user["status"] == UserStatus.DISABLED.value:
            raise UnauthorizedException("User account is disabled")

        return user, self.create_tokens(user)

    def create_tokens(self, user: dict) -> Token:
        """
        Create access and refresh tokens for a user.

        Args:
            user: User row; id, role and owning tenant go into the claims

        Returns:
            Token pair (access and refresh)
        """
        claims = {
            "sub": str(user["id"]),
            "role": user["role"],
            "tenant_id": str(user["owning_tenant_id"]) if user.get("owning_tenant_id") else None,
        }

        access_token = create_access_token(
            data=claims,
            expires_delta=timedelta(minutes=settings.access_token_expire_minutes),
        )

        refresh_token = create_refresh_token(
            data={"sub": claims["sub"]},
            expires_delta=timedelta(days=settings.refresh_token_expire_days),
        )

        return Token(
            access_token=access_token,
            refresh_token=refresh_token,
            token_type="bearer",
        )

    async def refresh_access_token(self, refresh_token: str) -> Token:
        """
        Create new tokens from a refresh token.

        Raises:
            UnauthorizedException: If the refresh token is invalid, revoked or
                its user no longer exists
        """
        payload = decode_refresh_token(refresh_token)

        if payload is None or payload.get("sub") is None:
            raise UnauthorizedException("Invalid refresh token")

        # Check if token is blacklisted
        if self.cache.exists(f"blacklist:{refresh_token}"):
            raise UnauthorizedException("Token has been revoked")

        try:
            user_id = UUID(payload["sub"])
        except ValueError as e:
            raise UnauthorizedException("Invalid refresh token") from e
        user = await self.directory.get_by_id(user_id)
        if not user or user["status"] == UserStatus.DISABLED.value:
            raise UnauthorizedException("Invalid refresh token")

        return self.create_tokens(user)

    def revoke_token(self, token: str, ttl: int | None = None) -> None:
        """
        Revoke a refresh token by adding it to blacklist.

        Args:
            token: Token to revoke
            ttl: Time to live for blacklist entry (default: refresh token lifetime)
        """
        ttl = ttl or settings.refresh_token_expire_days * 86400
        self.cache.set(f"blacklist:{token}", "1", ttl=ttl)
