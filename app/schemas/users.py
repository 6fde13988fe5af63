"""User schemas for request/response validation."""

from datetime import date, datetime
from enum import Enum
from uuid import UUID

from pydantic import BaseModel, EmailStr, Field, field_validator


class UserRole(str, Enum):
    """User role enumeration."""

    ADMINISTRATOR = "administrator"
    CUSTOMER_ADMIN = "customeradmin"
    CLIENT = "client"


class UserStatus(str, Enum):
    """Account status enumeration."""

    PENDING = "pending"
    ACTIVE = "active"
    DISABLED = "disabled"


class IdentityProvider(str, Enum):
    """How the account authenticates."""

    LOCAL = "local"
    EXTERNAL = "external"


def normalize_email(value: str) -> str:
    """Lower-case and trim an email address."""
    return value.strip().lower()


class UserBase(BaseModel):
    """Base user schema with common fields."""

    full_name: str = Field(..., min_length=2, max_length=120)
    email: EmailStr
    phone: str | None = Field(None, max_length=32)
    birthday: date | None = None

    @field_validator("full_name")
    @classmethod
    def strip_full_name(cls, v: str) -> str:
        """Reject names that are only whitespace."""
        v = v.strip()
        if len(v) < 2:
            raise ValueError("Full name must be at least 2 characters long")
        return v

    @field_validator("email")
    @classmethod
    def lower_email(cls, v: str) -> str:
        """Emails are compared case-insensitively."""
        return normalize_email(v)


class UserCreate(UserBase):
    """Schema for local registration."""

    password: str | None = Field(None, max_length=128)
    role: UserRole = UserRole.CLIENT
    domain: str | None = Field(
        None,
        max_length=120,
        description="Tenant subdomain, required for customer admins",
    )


class UserUpdate(BaseModel):
    """Schema for updating user profile."""

    full_name: str | None = Field(None, min_length=2, max_length=120)
    phone: str | None = Field(None, max_length=32)
    birthday: date | None = None
    password: str | None = Field(None, max_length=128)


class UserResponse(BaseModel):
    """User schema for API responses (never includes credentials)."""

    id: UUID
    full_name: str
    email: str
    phone: str | None = None
    birthday: date | None = None
    profile_picture: str | None = None
    role: UserRole
    status: UserStatus
    domain: str | None = None
    owning_tenant_id: UUID | None = None
    external_identity_provider: IdentityProvider
    created_at: datetime
    updated_at: datetime
    last_login_at: datetime | None = None

    model_config = {"from_attributes": True}


class UserProfile(BaseModel):
    """Public user profile schema."""

    id: UUID
    full_name: str
    profile_picture: str | None = None
    role: UserRole

    model_config = {"from_attributes": True}
