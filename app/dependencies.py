"""FastAPI dependencies."""

from collections.abc import Callable
from typing import Annotated
from uuid import UUID

import redis
from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from app.config import settings
from app.core.redis_client import CacheManager, get_redis_client
from app.core.security import decode_access_token
from app.database import get_db
from app.schemas.users import UserRole, UserStatus
from app.services.auth_service import AuthService
from app.services.booking_service import BookingService
from app.services.directory_service import DirectoryService
from app.services.email_service import EmailService

# Security
security = HTTPBearer()


def get_tenant_header(request: Request) -> str | None:
    """Tenant subdomain sent by the frontend, lower-cased."""
    value = request.headers.get(settings.tenant_header)
    return value.strip().lower() if value and value.strip() else None


def get_cache_manager(
    redis_client: Annotated[redis.Redis, Depends(get_redis_client)],
) -> CacheManager:
    """Cache manager over the shared Redis client."""
    return CacheManager(redis_client)


def get_email_service() -> EmailService:
    """Email service configured from settings."""
    return EmailService(settings)


def get_directory_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> DirectoryService:
    """Directory service bound to the request session."""
    return DirectoryService(db)


def get_booking_service(
    db: Annotated[AsyncSession, Depends(get_db)],
) -> BookingService:
    """Booking service bound to the request session."""
    return BookingService(db)


def get_auth_service(
    db: Annotated[AsyncSession, Depends(get_db)],
    cache: Annotated[CacheManager, Depends(get_cache_manager)],
    email: Annotated[EmailService, Depends(get_email_service)],
) -> AuthService:
    """Auth service bound to the request session."""
    return AuthService(db, cache, email_service=email)


async def get_current_user_id(
    credentials: Annotated[HTTPAuthorizationCredentials, Depends(security)],
) -> UUID:
    """
    Extract and validate user ID from JWT token.

    Args:
        credentials: Bearer token credentials

    Returns:
        User ID from token

    Raises:
        HTTPException: If token is invalid or expired
    """
    payload = decode_access_token(credentials.credentials)

    user_id_str = payload.get("sub") if payload else None
    if user_id_str is None or not isinstance(user_id_str, str):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Could not validate credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )

    try:
        return UUID(user_id_str)
    except ValueError:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid user ID format",
            headers={"WWW-Authenticate": "Bearer"},
        ) from None


async def get_current_user(
    user_id: Annotated[UUID, Depends(get_current_user_id)],
    directory: Annotated[DirectoryService, Depends(get_directory_service)],
) -> dict:
    """
    Get current user from database.

    Raises:
        HTTPException: If user not found or disabled
    """
    user = await directory.get_by_id(user_id)

    if not user:
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="User not found",
            headers={"WWW-Authenticate": "Bearer"},
        )

    if user["status"] == UserStatus.DISABLED.value:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="User account is disabled",
        )

    return user


def require_roles(*roles: UserRole) -> Callable:
    """Dependency factory allowing only users with one of ``roles``."""
    allowed = {role.value for role in roles}

    async def checker(user: Annotated[dict, Depends(get_current_user)]) -> dict:
        if user["role"] not in allowed:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Insufficient permissions",
            )
        return user

    return checker


# Type aliases for dependency injection
CurrentUser = Annotated[dict, Depends(get_current_user)]
AdministratorUser = Annotated[dict, Depends(require_roles(UserRole.ADMINISTRATOR))]
TenantHeader = Annotated[str | None, Depends(get_tenant_header)]
AuthServiceDep = Annotated[AuthService, Depends(get_auth_service)]
DirectoryServiceDep = Annotated[DirectoryService, Depends(get_directory_service)]
BookingServiceDep = Annotated[BookingService, Depends(get_booking_service)]
