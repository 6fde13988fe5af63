"""Authentication schemas."""

from pydantic import BaseModel, EmailStr, Field, field_validator

from app.schemas.users import UserResponse, UserRole, normalize_email


class Token(BaseModel):
    """JWT token response schema."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"


class TokenRefresh(BaseModel):
    """Token refresh request schema."""

    refresh_token: str


class LoginRequest(BaseModel):
    """Email/password login scoped by role (and tenant header for clients)."""

    email: EmailStr
    password: str = Field(..., min_length=1)
    role: UserRole

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        """Emails are compared case-insensitively."""
        return normalize_email(v)


class LoginResponse(BaseModel):
    """Login response with tokens and user info."""

    access_token: str
    refresh_token: str
    token_type: str = "bearer"
    user: UserResponse


class ForgotPasswordRequest(BaseModel):
    """Password reset link request."""

    email: EmailStr
    role: UserRole
    domain: str | None = Field(None, description="Tenant domain, required for customer admins")

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        """Emails are compared case-insensitively."""
        return normalize_email(v)


class ResetPasswordRequest(BaseModel):
    """Password reset with the emailed token."""

    token: str = Field(..., min_length=1)
    new_password: str = Field(..., min_length=1, max_length=128)


class ExternalAuthRequest(BaseModel):
    """External identity provider (Firebase) ID token."""

    id_token: str = Field(..., description="Firebase ID token")


class MessageResponse(BaseModel):
    """Plain message response."""

    message: str
