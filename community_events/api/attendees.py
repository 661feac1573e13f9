"""
Attendance management API endpoints.
"""

from typing import Any
from uuid import UUID

from fastapi import APIRouter, Depends, Response, status

from ..models import Attendee, AttendeeStatus, User
from ..schemas.attendee import AttendeeResponse, StatusUpdateRequest
from ..services.registration_service import RegistrationService, UNSET
from ..utils.dependencies import get_current_user, get_registration_service
from ..utils.exceptions import AuthorizationError


router = APIRouter(prefix="/attendees", tags=["attendees"])


def is_event_manager(attendee: Attendee, user: User) -> bool:
    return attendee.event.organizer_id == user.id or user.is_admin


@router.put("/{attendee_id}", response_model=AttendeeResponse)
async def update_attendance_status(
    attendee_id: UUID,
    update_data: StatusUpdateRequest,
    current_user: User = Depends(get_current_user),
    registration_service: RegistrationService = Depends(get_registration_service)
) -> Any:
    """
    Change an attendance status.

    Attendees may only decline their own attendance; the organizer and
    admins may set any status.
    """
    attendee = await registration_service.get_attendee(attendee_id)

    if not is_event_manager(attendee, current_user):
        if attendee.user_id != current_user.id:
            raise AuthorizationError("Not allowed to update this attendance")
        if update_data.status != AttendeeStatus.DECLINED:
            raise AuthorizationError("Attendees can only decline their attendance")

    notes = update_data.notes if "notes" in update_data.model_fields_set else UNSET
    return await registration_service.update_status(attendee_id, update_data.status, notes=notes)


@router.post("/{attendee_id}/check-in", response_model=AttendeeResponse)
async def check_in_attendee(
    attendee_id: UUID,
    current_user: User = Depends(get_current_user),
    registration_service: RegistrationService = Depends(get_registration_service)
) -> Any:
    attendee = await registration_service.get_attendee(attendee_id)
    if not is_event_manager(attendee, current_user):
        raise AuthorizationError("Only the organizer or an admin can check in attendees")

    return await registration_service.check_in(attendee_id)


@router.delete("/{attendee_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_attendance(
    attendee_id: UUID,
    current_user: User = Depends(get_current_user),
    registration_service: RegistrationService = Depends(get_registration_service)
) -> Response:
    attendee = await registration_service.get_attendee(attendee_id)
    if attendee.user_id != current_user.id and not is_event_manager(attendee, current_user):
        raise AuthorizationError("Not allowed to delete this attendance")

    await registration_service.delete_attendance(attendee_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)
