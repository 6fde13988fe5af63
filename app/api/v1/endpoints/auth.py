"""Authentication endpoints."""

from fastapi import APIRouter, status

from app.dependencies import AuthServiceDep, TenantHeader
from app.schemas.auth import (
    ExternalAuthRequest,
    ForgotPasswordRequest,
    LoginRequest,
    LoginResponse,
    MessageResponse,
    ResetPasswordRequest,
    Token,
    TokenRefresh,
)
from app.schemas.users import UserCreate, UserResponse

router = APIRouter()


def _login_response(user: dict, tokens: Token) -> LoginResponse:
    return LoginResponse(
        access_token=tokens.access_token,
        refresh_token=tokens.refresh_token,
        token_type=tokens.token_type,
        user=UserResponse.model_validate(user),
    )


@router.post(
    "/register",
    response_model=LoginResponse,
    status_code=status.HTTP_201_CREATED,
    summary="Register a local account",
)
async def register(
    data: UserCreate,
    auth_service: AuthServiceDep,
    tenant: TenantHeader,
) -> LoginResponse:
    """
    Register a user and return JWT tokens.

    Clients must send the tenant subdomain in the ``x-tenant-domain``
    header; customer admins claim a new ``domain`` in the body.
    """
    user, tokens = await auth_service.register(data, tenant)
    return _login_response(user, tokens)


@router.post(
    "/login",
    response_model=LoginResponse,
    status_code=status.HTTP_200_OK,
    summary="Email and password login",
)
async def login(
    data: LoginRequest,
    auth_service: AuthServiceDep,
    tenant: TenantHeader,
) -> LoginResponse:
    """Log in within a role (and tenant, for clients)."""
    user, tokens = await auth_service.login(data, tenant)
    return _login_response(user, tokens)


@router.post(
    "/forgot-password",
    response_model=MessageResponse,
    status_code=status.HTTP_200_OK,
    summary="Request a password reset link",
)
async def forgot_password(
    data: ForgotPasswordRequest,
    auth_service: AuthServiceDep,
    tenant: TenantHeader,
) -> MessageResponse:
    """Email a one-time password reset link."""
    await auth_service.forgot_password(data, tenant)
    return MessageResponse(message="Password reset link sent successfully")


@router.post(
    "/reset-password",
    response_model=LoginResponse,
    status_code=status.HTTP_200_OK,
    summary="Reset password with an emailed token",
)
async def reset_password(
    data: ResetPasswordRequest,
    auth_service: AuthServiceDep,
) -> LoginResponse:
    """Redeem a reset token, set the new password and sign the user in."""
    user, tokens = await auth_service.reset_password(data)
    return _login_response(user, tokens)


@router.post(
    "/external/verify",
    response_model=LoginResponse,
    status_code=status.HTTP_200_OK,
    summary="External (Firebase) ID token verification",
)
async def external_verify(
    data: ExternalAuthRequest,
    auth_service: AuthServiceDep,
    tenant: TenantHeader,
) -> LoginResponse:
    """
    Verify a Firebase ID token and return JWT tokens.

    The identity is linked to an existing account with the same email, or a
    new client account is created (under the tenant when the header is sent).
    """
    user, tokens = await auth_service.external_login(data.id_token, tenant)
    return _login_response(user, tokens)


@router.post(
    "/refresh",
    response_model=Token,
    status_code=status.HTTP_200_OK,
    summary="Refresh access token",
)
async def refresh_token(
    data: TokenRefresh,
    auth_service: AuthServiceDep,
) -> Token:
    """Exchange a valid refresh token for a new token pair."""
    return await auth_service.refresh_access_token(data.refresh_token)


@router.post(
    "/logout",
    status_code=status.HTTP_204_NO_CONTENT,
    summary="Logout and revoke tokens",
)
async def logout(
    data: TokenRefresh,
    auth_service: AuthServiceDep,
) -> None:
    """Revoke a refresh token."""
    auth_service.revoke_token(data.refresh_token)
