"""User endpoints."""

from uuid import UUID

from fastapi import APIRouter, Query, status
from pydantic import BaseModel

from app.core.exceptions import NotFoundException
from app.dependencies import AdministratorUser, CurrentUser, DirectoryServiceDep
from app.schemas.users import UserProfile, UserResponse, UserRole, UserStatus, UserUpdate

router = APIRouter(prefix="/users", tags=["Users"])


class UserStatusUpdate(BaseModel):
    """Account status change."""

    status: UserStatus


@router.get("/me", response_model=UserResponse)
async def get_current_user_profile(current_user: CurrentUser):
    """Get current user's profile."""
    return UserResponse.model_validate(current_user)


@router.patch("/me", response_model=UserResponse)
async def update_current_user_profile(
    user_data: UserUpdate,
    current_user: CurrentUser,
    directory: DirectoryServiceDep,
):
    """Update current user's profile (and optionally password)."""
    user = await directory.update_profile(current_user["id"], user_data)
    return UserResponse.model_validate(user)


@router.delete("/me", status_code=status.HTTP_204_NO_CONTENT)
async def delete_current_user(
    current_user: CurrentUser,
    directory: DirectoryServiceDep,
):
    """Permanently delete current user's account."""
    await directory.delete_user(current_user["id"])


@router.get("", response_model=list[UserResponse])
async def list_users(
    _admin: AdministratorUser,
    directory: DirectoryServiceDep,
    role: UserRole | None = Query(None, description="Filter by role"),
    tenant_id: UUID | None = Query(None, description="Filter by owning tenant"),
):
    """List users (administrators only)."""
    users = await directory.list_users(role=role, tenant_id=tenant_id)
    return [UserResponse.model_validate(user) for user in users]


@router.get("/{user_id}", response_model=UserProfile)
async def get_user_profile(
    user_id: UUID,
    current_user: CurrentUser,
    directory: DirectoryServiceDep,
):
    """Get public profile of a user."""
    user = await directory.get_by_id(user_id)

    if not user or user["status"] == UserStatus.DISABLED.value:
        raise NotFoundException("User not found")

    return UserProfile.model_validate(user)


@router.patch("/{user_id}/status", response_model=UserResponse)
async def update_user_status(
    user_id: UUID,
    data: UserStatusUpdate,
    _admin: AdministratorUser,
    directory: DirectoryServiceDep,
):
    """Activate or disable an account (administrators only)."""
    user = await directory.set_status(user_id, data.status)
    return UserResponse.model_validate(user)
