"""
Event schemas for request/response validation.
"""

from datetime import datetime
from typing import Optional
from uuid import UUID

from pydantic import BaseModel, Field, ConfigDict, field_validator, model_validator

# Fields that may not be cleared with an explicit null in a patch
REQUIRED_EVENT_FIELDS = ("title", "location", "category", "start_time", "end_time", "capacity",
                         "is_published", "is_cancelled")


class EventBase(BaseModel):
    """Base event schema with common fields."""

    title: str = Field(..., min_length=3, max_length=255, description="Event title")
    description: Optional[str] = Field(None, description="Event description")
    location: str = Field(..., min_length=1, max_length=255, description="Event location")
    category: str = Field(default="General", max_length=100, description="Event category")
    image_url: Optional[str] = Field(None, description="Cover image URL")
    start_time: datetime = Field(..., description="Event start date and time")
    end_time: datetime = Field(..., description="Event end date and time")
    capacity: int = Field(default=0, ge=0, description="Maximum confirmed attendees, 0 for unlimited")
    is_published: bool = Field(default=True, description="Whether the event is visible and open")


class EventCreate(EventBase):
    """Schema for creating a new event."""

    @model_validator(mode="after")
    def end_after_start(self):
        if self.end_time < self.start_time:
            raise ValueError("end_time must not be before start_time")
        return self


class EventUpdate(BaseModel):
    """
    Partial event update.

    Only fields present in the request are applied. ``description`` and
    ``image_url`` are cleared by an explicit null; every other field rejects it.
    """

    title: Optional[str] = Field(None, min_length=3, max_length=255)
    description: Optional[str] = None
    location: Optional[str] = Field(None, min_length=1, max_length=255)
    category: Optional[str] = Field(None, max_length=100)
    image_url: Optional[str] = None
    start_time: Optional[datetime] = None
    end_time: Optional[datetime] = None
    capacity: Optional[int] = Field(None, ge=0)
    is_published: Optional[bool] = None
    is_cancelled: Optional[bool] = None

    @model_validator(mode="after")
    def required_fields_not_null(self):
        nulled = [
            name for name in REQUIRED_EVENT_FIELDS
            if name in self.model_fields_set and getattr(self, name) is None
        ]
        if nulled:
            raise ValueError(f"fields cannot be null: {', '.join(nulled)}")
        return self

    def changes(self) -> dict:
        """Fields explicitly supplied by the caller."""
        return self.model_dump(exclude_unset=True)


class EventResponse(BaseModel):
    """Schema for event response."""

    id: UUID
    title: str
    description: Optional[str] = None
    location: str
    category: str
    image_url: Optional[str] = None
    start_time: datetime
    end_time: datetime
    capacity: int
    is_published: bool
    is_cancelled: bool
    organizer_id: UUID
    version: int
    attendee_count: int = Field(default=0, description="Confirmed attendees")
    created_at: datetime
    updated_at: datetime

    model_config = ConfigDict(from_attributes=True)


class EventDetailResponse(EventResponse):
    """Event detail, with the caller's registration state when authenticated."""
    is_registered: Optional[bool] = None


class EventListResponse(BaseModel):
    """Schema for paginated event list response."""

    events: list[EventResponse]
    total: int
    page: int
    size: int
    pages: int


class EventFilters(BaseModel):
    """Schema for event filtering parameters."""

    category: Optional[str] = Field(None, description="Filter by category")
    search: Optional[str] = Field(None, description="Search in title or description")
    start_date: Optional[datetime] = Field(None, description="Events starting at or after this time")
    end_date: Optional[datetime] = Field(None, description="Events starting at or before this time")
    published: Optional[bool] = Field(True, description="Filter on publication state, None for all")
    organizer_id: Optional[UUID] = Field(None, description="Filter by organizer")

    @field_validator('end_date')
    @classmethod
    def end_date_after_start_date(cls, v, info):
        """Validate that end_date is after start_date."""
        if v is not None and info.data.get('start_date') is not None:
            if v < info.data['start_date']:
                raise ValueError('end_date must be after start_date')
        return v
