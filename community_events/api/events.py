"""
Event management and registration API endpoints.
"""

from datetime import datetime
from typing import Any, Optional
from uuid import UUID

from fastapi import APIRouter, Body, Depends, Query, Response, status

from ..models import AttendeeStatus, User
from ..schemas.attendee import (
    AttendeeListResponse,
    AttendeeResponse,
    RegisterRequest,
    RegistrationStatusResponse,
)
from ..schemas.common import MessageResponse
from ..schemas.event import (
    EventCreate,
    EventDetailResponse,
    EventFilters,
    EventListResponse,
    EventResponse,
    EventUpdate,
)
from ..services.event_service import EventService, to_event_response
from ..services.registration_service import RegistrationService
from ..utils.dependencies import (
    get_current_staff_user,
    get_current_user,
    get_event_service,
    get_optional_user,
    get_registration_service,
)
from ..utils.exceptions import AuthorizationError


router = APIRouter(prefix="/events", tags=["events"])


def ensure_can_manage(event: EventResponse, user: User) -> None:
    """Only the organizer or an admin may change an event."""
    if event.organizer_id != user.id and not user.is_admin:
        raise AuthorizationError("Only the organizer or an admin can manage this event")


@router.get("", response_model=EventListResponse)
async def list_events(
    page: int = Query(1, ge=1, description="Page number"),
    size: int = Query(20, ge=1, le=100, description="Page size"),
    category: Optional[str] = Query(None, description="Filter by category"),
    search: Optional[str] = Query(None, description="Search in title or description"),
    start_date: Optional[datetime] = Query(None, description="Events starting at or after this time"),
    end_date: Optional[datetime] = Query(None, description="Events starting at or before this time"),
    published: Optional[bool] = Query(True, description="Filter on publication state"),
    organizer_id: Optional[UUID] = Query(None, description="Filter by organizer"),
    event_service: EventService = Depends(get_event_service)
) -> Any:
    """
    List events with filtering and pagination, soonest first.

    Each event carries its confirmed ``attendee_count``.
    """
    filters = EventFilters(
        category=category,
        search=search,
        start_date=start_date,
        end_date=end_date,
        published=published,
        organizer_id=organizer_id
    )
    return await event_service.list_events(filters, page=page, size=size)


@router.post("", response_model=EventResponse, status_code=status.HTTP_201_CREATED)
async def create_event(
    event_data: EventCreate,
    current_user: User = Depends(get_current_staff_user),
    event_service: EventService = Depends(get_event_service)
) -> Any:
    """Create an event organised by the caller (staff and admins only)."""
    event = await event_service.create_event(event_data, organizer_id=current_user.id)
    return to_event_response(event)


@router.get("/{event_id}", response_model=EventDetailResponse)
async def get_event(
    event_id: UUID,
    current_user: Optional[User] = Depends(get_optional_user),
    event_service: EventService = Depends(get_event_service),
    registration_service: RegistrationService = Depends(get_registration_service)
) -> Any:
    """Event detail; ``is_registered`` is filled in when a valid token is supplied."""
    event = await event_service.get_event(event_id)
    detail = EventDetailResponse(**event.model_dump())

    if current_user is not None:
        detail.is_registered = await registration_service.is_registered(event_id, current_user.id)

    return detail


@router.put("/{event_id}", response_model=EventResponse)
async def update_event(
    event_id: UUID,
    event_data: EventUpdate,
    current_user: User = Depends(get_current_user),
    event_service: EventService = Depends(get_event_service)
) -> Any:
    """
    Partially update an event.

    Omitted fields are left alone; ``description`` and ``image_url`` can be
    cleared with null.
    """
    ensure_can_manage(await event_service.get_event(event_id), current_user)

    event, attendee_count = await event_service.update_event(event_id, event_data)
    return to_event_response(event, attendee_count)


@router.delete("/{event_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_event(
    event_id: UUID,
    current_user: User = Depends(get_current_user),
    event_service: EventService = Depends(get_event_service)
) -> Response:
    ensure_can_manage(await event_service.get_event(event_id), current_user)

    await event_service.delete_event(event_id)
    return Response(status_code=status.HTTP_204_NO_CONTENT)


@router.post("/{event_id}/register", response_model=AttendeeResponse, status_code=status.HTTP_201_CREATED)
async def register_for_event(
    event_id: UUID,
    request_data: Optional[RegisterRequest] = Body(None),
    current_user: User = Depends(get_current_user),
    registration_service: RegistrationService = Depends(get_registration_service)
) -> Any:
    """
    Register the caller for an event.

    Returns 400 when the event has started, is closed, is full, or the
    caller is already registered; 503 with Retry-After when the registration
    could not be completed in time.
    """
    notes = request_data.notes if request_data else None
    return await registration_service.register(event_id, current_user.id, notes=notes)


@router.delete("/{event_id}/register", response_model=MessageResponse)
async def unregister_from_event(
    event_id: UUID,
    current_user: User = Depends(get_current_user),
    registration_service: RegistrationService = Depends(get_registration_service)
) -> Any:
    await registration_service.unregister(event_id, current_user.id)
    return MessageResponse(message="Registration cancelled")


@router.get("/{event_id}/registration", response_model=RegistrationStatusResponse)
async def get_registration_status(
    event_id: UUID,
    current_user: User = Depends(get_current_user),
    registration_service: RegistrationService = Depends(get_registration_service)
) -> Any:
    is_registered = await registration_service.is_registered(event_id, current_user.id)
    return RegistrationStatusResponse(event_id=event_id, is_registered=is_registered)


@router.get("/{event_id}/attendees", response_model=AttendeeListResponse)
async def list_event_attendees(
    event_id: UUID,
    status_filter: Optional[AttendeeStatus] = Query(None, alias="status"),
    current_user: User = Depends(get_current_user),
    event_service: EventService = Depends(get_event_service),
    registration_service: RegistrationService = Depends(get_registration_service)
) -> Any:
    """Attendees in registration order (organizer, staff and admins only)."""
    event = await event_service.get_event(event_id)
    if event.organizer_id != current_user.id and not current_user.is_staff:
        raise AuthorizationError("Only the organizer or staff can view attendees")

    attendees = await registration_service.list_attendees(event_id, status=status_filter)
    return AttendeeListResponse(
        event_id=event_id,
        attendees=[AttendeeResponse.model_validate(attendee) for attendee in attendees],
        total=len(attendees)
    )
