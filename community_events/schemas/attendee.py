"""
Attendee and registration schemas.
"""

from datetime import datetime
from typing import List, Optional
from uuid import UUID

from pydantic import BaseModel, ConfigDict, Field

from .user import UserSummary
from ..models.attendee import AttendeeStatus


class RegisterRequest(BaseModel):
    """Body of a registration request."""
    notes: Optional[str] = Field(None, max_length=1000, description="Note for the organizer")


class StatusUpdateRequest(BaseModel):
    """Attendance status change. Omitting ``notes`` keeps the stored note."""
    status: AttendeeStatus
    notes: Optional[str] = Field(None, max_length=1000)


class EventSummary(BaseModel):
    id: UUID
    title: str
    location: str
    start_time: datetime
    end_time: datetime

    model_config = ConfigDict(from_attributes=True)


class AttendeeResponse(BaseModel):
    """Schema for an attendee record."""
    id: UUID
    event_id: UUID
    user_id: UUID
    status: AttendeeStatus
    registered_at: datetime
    checked_in_at: Optional[datetime] = None
    notes: Optional[str] = None
    user: Optional[UserSummary] = None

    model_config = ConfigDict(from_attributes=True)


class AttendanceResponse(BaseModel):
    """A user's registration together with the event it belongs to."""
    id: UUID
    status: AttendeeStatus
    registered_at: datetime
    checked_in_at: Optional[datetime] = None
    notes: Optional[str] = None
    event: EventSummary

    model_config = ConfigDict(from_attributes=True)


class AttendeeListResponse(BaseModel):
    event_id: UUID
    attendees: List[AttendeeResponse]
    total: int


class RegistrationStatusResponse(BaseModel):
    event_id: UUID
    is_registered: bool
