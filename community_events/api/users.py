"""
User management API endpoints.
"""

from typing import Any, List, Optional
from uuid import UUID

from fastapi import APIRouter, Depends, Query, Response, status

from ..models.attendee import AttendeeStatus
from ..models.user import User
from ..schemas.attendee import AttendanceResponse
from ..schemas.auth import UserProfile
from ..schemas.event import EventResponse
from ..schemas.user import UserAdminUpdate, UserListResponse
from ..services.registration_service import RegistrationService
from ..services.user_service import UserService
from ..utils.dependencies import (
    get_current_admin_user,
    get_current_user,
    get_registration_service,
    get_user_service,
)
from ..utils.exceptions import AuthorizationError


router = APIRouter(prefix="/users", tags=["users"])


def ensure_self_or_admin(current_user: User, user_id: UUID) -> None:
    if current_user.id != user_id and not current_user.is_admin:
        raise AuthorizationError("You can only access your own account")


@router.get("", response_model=UserListResponse)
async def list_users(
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    _admin: User = Depends(get_current_admin_user),
    user_service: UserService = Depends(get_user_service)
) -> Any:
    users, total = await user_service.list_users(limit=limit, offset=offset)
    return UserListResponse(
        users=[UserProfile.model_validate(user) for user in users],
        total=total,
        limit=limit,
        offset=offset
    )


@router.get("/{user_id}", response_model=UserProfile)
async def get_user(
    user_id: UUID,
    current_user: User = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service)
) -> Any:
    ensure_self_or_admin(current_user, user_id)
    return await user_service.get_user(user_id)


@router.put("/{user_id}", response_model=UserProfile)
async def update_user(
    user_id: UUID,
    update_data: UserAdminUpdate,
    current_user: User = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service)
) -> Any:
    """
    Update a profile.

    Users may edit their own profile; only admins may change roles or
    activation, or edit other users.
    """
    ensure_self_or_admin(current_user, user_id)

    privileged = {"role", "is_active"} & update_data.model_fields_set
    if privileged and not current_user.is_admin:
        raise AuthorizationError(
            "Only administrators can change roles or activation",
            required_permission="admin"
        )

    return await user_service.update_user(user_id, update_data)


@router.delete("/{user_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_user(
    user_id: UUID,
    _admin: User = Depends(get_current_admin_user),
    user_service: UserService = Depends(get_user_service)
) -> Response:
    await user_service.delete_user(user_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.get("/{user_id}/attendance", response_model=List[AttendanceResponse])
async def get_user_attendance(
    user_id: UUID,
    status_filter: Optional[AttendeeStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    user_service: UserService = Depends(get_user_service),
    registration_service: RegistrationService = Depends(get_registration_service)
) -> Any:
    """Events a user is registered for, soonest first."""
    ensure_self_or_admin(current_user, user_id)
    await user_service.get_user(user_id)
    return await registration_service.list_user_attendance(user_id, status=status_filter)


@router.get("/{user_id}/events", response_model=List[EventResponse])
async def get_user_events(
    user_id: UUID,
    user_service: UserService = Depends(get_user_service)
) -> Any:
    """Events organised by a user."""
    await user_service.get_user(user_id)
    return await user_service.get_organized_events(user_id)
