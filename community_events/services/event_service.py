"""
Event service for managing events and their operations.
"""

import hashlib
import json
import logging
import math
from typing import Optional, Tuple
from uuid import UUID

from sqlalchemy import and_, func, or_, select, true, update
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from ..cache import CacheInvalidator, CacheKeyBuilder, CacheTTL, get_cache
from ..config import Settings, get_settings
from ..models import SEAT_CONSUMING_STATUSES, Attendee, Event
from ..models.base import as_utc
from ..schemas.event import (
    EventCreate,
    EventFilters,
    EventListResponse,
    EventResponse,
    EventUpdate,
)
from ..utils.exceptions import EventNotFoundError, ValidationError
from . import notification_queue as jobs
from .notification_queue import NotificationQueue

logger = logging.getLogger(__name__)


def confirmed_count_subquery():
    """Correlated count of confirmed attendees for the outer Event row."""
    return (
        select(func.count(Attendee.id))
        .where(
            Attendee.event_id == Event.id,
            Attendee.status.in_(SEAT_CONSUMING_STATUSES)
        )
        .correlate(Event)
        .scalar_subquery()
    )


def to_event_response(event: Event, attendee_count: int = 0) -> EventResponse:
    response = EventResponse.model_validate(event)
    response.attendee_count = attendee_count
    return response


class EventService:
    """Service class for event management operations."""

    def __init__(
        self,
        db: AsyncSession,
        queue: Optional[NotificationQueue] = None,
        settings: Optional[Settings] = None
    ):
        """Initialize the event service with database session."""
        self.db = db
        self.queue = queue
        self.cache = get_cache()
        self.ttl = CacheTTL(settings or get_settings())

    async def _schedule_reminders(self, event_id: UUID) -> None:
        if self.queue is None:
            return
        try:
            await self.queue.enqueue(jobs.EVENT_REMINDERS, {"event_id": str(event_id)})
        except Exception as e:
            logger.warning(f"Failed to queue reminders for event {event_id}: {e}")

    async def create_event(self, event_data: EventCreate, organizer_id: UUID) -> Event:
        """
        Create a new event.

        Args:
            event_data: Event creation data
            organizer_id: User organising the event

        Returns:
            Created event instance

        Raises:
            ValidationError: If the store rejects the event data
        """
        try:
            event = Event(**event_data.model_dump(), organizer_id=organizer_id)

            self.db.add(event)
            await self.db.commit()

        except IntegrityError as e:
            await self.db.rollback()
            raise ValidationError(f"Failed to create event: {e.orig}")

        logger.info(f"Event {event.id} created by {organizer_id}")

        await CacheInvalidator.invalidate_event_list_caches()
        await self._schedule_reminders(event.id)

        return event

    async def get_event_model(self, event_id: UUID) -> Event:
        """
        Load the event row itself.

        Raises:
            EventNotFoundError: If event is not found
        """
        result = await self.db.execute(select(Event).where(Event.id == event_id))
        event = result.scalar_one_or_none()
        if not event:
            raise EventNotFoundError(str(event_id))
        return event

    async def get_event(self, event_id: UUID) -> EventResponse:
        """
        Get event by ID with its confirmed attendee count, cached.

        Raises:
            EventNotFoundError: If event is not found
        """
        cache_key = CacheKeyBuilder.event_detail(str(event_id))
        cached_event = await self.cache.get(cache_key)
        if cached_event:
            return EventResponse.model_validate(cached_event)

        result = await self.db.execute(
            select(Event, confirmed_count_subquery()).where(Event.id == event_id)
        )
        row = result.one_or_none()
        if row is None:
            raise EventNotFoundError(str(event_id))

        response = to_event_response(*row)
        await self.cache.set(cache_key, response.model_dump(mode="json"), self.ttl.event_detail)

        return response

    def _create_filters_hash(self, filters: EventFilters) -> str:
        """Create a hash of filters for cache key generation."""
        filters_str = json.dumps(filters.model_dump(mode="json"), sort_keys=True)
        return hashlib.md5(filters_str.encode()).hexdigest()

    def _filter_conditions(self, filters: EventFilters) -> list:
        conditions = []

        if filters.published is not None:
            conditions.append(Event.is_published == filters.published)

        if filters.category:
            conditions.append(Event.category == filters.category)

        if filters.search:
            search_term = f"%{filters.search}%"
            conditions.append(or_(
                Event.title.ilike(search_term),
                Event.description.ilike(search_term)
            ))

        if filters.start_date:
            conditions.append(Event.start_time >= filters.start_date)

        if filters.end_date:
            conditions.append(Event.start_time <= filters.end_date)

        if filters.organizer_id:
            conditions.append(Event.organizer_id == filters.organizer_id)

        return conditions

    async def list_events(
        self,
        filters: EventFilters,
        page: int = 1,
        size: int = 20
    ) -> EventListResponse:
        """
        Get events with filtering and pagination, soonest first.

        Args:
            filters: Event filtering parameters
            page: Page number (1-based)
            size: Page size

        Returns:
            One page of events, each with its confirmed attendee count
        """
        cache_key = CacheKeyBuilder.event_list(self._create_filters_hash(filters), page, size)
        cached_result = await self.cache.get(cache_key)
        if cached_result:
            return EventListResponse.model_validate(cached_result)

        conditions = self._filter_conditions(filters)
        where_clause = and_(*conditions) if conditions else true()

        count_result = await self.db.execute(select(func.count(Event.id)).where(where_clause))
        total = count_result.scalar_one()

        events_result = await self.db.execute(
            select(Event, confirmed_count_subquery())
            .where(where_clause)
            .order_by(Event.start_time, Event.id)
            .offset((page - 1) * size)
            .limit(size)
        )
        events = [to_event_response(event, count) for event, count in events_result.all()]

        response = EventListResponse(
            events=events,
            total=total,
            page=page,
            size=size,
            pages=math.ceil(total / size) if total else 0
        )
        await self.cache.set(cache_key, response.model_dump(mode="json"), self.ttl.event_list)

        return response

    async def _lock_event(self, event_id: UUID) -> Event:
        """Bump the version, holding the row lock until commit."""
        result = await self.db.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(version=Event.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise EventNotFoundError(str(event_id))

        locked = await self.db.execute(
            select(Event).where(Event.id == event_id).execution_options(populate_existing=True)
        )
        return locked.scalar_one()

    async def _confirmed_count(self, event_id: UUID) -> int:
        result = await self.db.execute(
            select(func.count(Attendee.id)).where(
                Attendee.event_id == event_id,
                Attendee.status.in_(SEAT_CONSUMING_STATUSES)
            )
        )
        return result.scalar_one()

    async def update_event(self, event_id: UUID, event_data: EventUpdate) -> Tuple[Event, int]:
        """
        Apply a partial update to an event.

        Args:
            event_id: Event UUID
            event_data: Fields explicitly supplied by the caller

        Returns:
            Tuple of (updated event, confirmed attendee count)

        Raises:
            EventNotFoundError: If event is not found
            ValidationError: If the capacity or times would become inconsistent
        """
        update_data = event_data.changes()

        try:
            event = await self._lock_event(event_id)
            confirmed = await self._confirmed_count(event_id)

            new_capacity = update_data.get("capacity", event.capacity)
            if new_capacity > 0 and new_capacity < confirmed:
                raise ValidationError(
                    "Cannot reduce capacity below confirmed attendees. "
                    f"Confirmed: {confirmed}, new capacity: {new_capacity}",
                    field_errors={"capacity": [f"must be 0 or at least {confirmed}"]}
                )

            start_time = update_data.get("start_time", event.start_time)
            end_time = update_data.get("end_time", event.end_time)
            if as_utc(end_time) < as_utc(start_time):
                raise ValidationError(
                    "end_time must not be before start_time",
                    field_errors={"end_time": ["must not be before start_time"]}
                )

            for field, value in update_data.items():
                setattr(event, field, value)

            await self.db.commit()

        except IntegrityError as e:
            await self.db.rollback()
            raise ValidationError(f"Failed to update event: {e.orig}")
        except Exception:
            await self.db.rollback()
            raise

        logger.info(f"Event {event_id} updated: {sorted(update_data)}")

        await CacheInvalidator.invalidate_event_caches(str(event_id))
        if "start_time" in update_data:
            await self._schedule_reminders(event_id)

        return event, confirmed

    async def delete_event(self, event_id: UUID) -> None:
        """
        Delete an event together with its attendance records.

        Raises:
            EventNotFoundError: If event is not found
        """
        event = await self.get_event_model(event_id)

        await self.db.delete(event)
        await self.db.commit()

        logger.info(f"Event {event_id} deleted")
        await CacheInvalidator.invalidate_event_caches(str(event_id))
