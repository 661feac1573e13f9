"""
Registration service: the consistency core of event attendance.

Every write that can change how many seats an event holds runs in its own
transaction whose first statement bumps ``events.version``. That UPDATE takes
the event row lock (a write lock on SQLite), so concurrent registrations for
the same event are serialised between the capacity check and the insert. The
unique constraint on ``(event_id, user_id)`` backs up the duplicate check.
"""

import asyncio
import logging
from contextlib import asynccontextmanager
from typing import Any, AsyncGenerator, Awaitable, Callable, Dict, List, Optional
from uuid import UUID

from sqlalchemy import delete, func, select, update
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError
from sqlalchemy.ext.asyncio import AsyncSession, async_sessionmaker
from sqlalchemy.orm import contains_eager, selectinload

from ..cache import CacheInvalidator
from ..config import Settings
from ..models import SEAT_CONSUMING_STATUSES, Attendee, AttendeeStatus, Event, User
from ..models.base import utcnow
from ..utils.exceptions import (
    AlreadyRegisteredError,
    AttendeeNotConfirmedError,
    AttendeeNotFoundError,
    ConcurrencyError,
    EventAtCapacityError,
    EventInPastError,
    EventNotFoundError,
    EventNotOpenError,
    RegistrationNotFoundError,
    TransactionTimeoutError,
    UserNotFoundError,
)
from ..utils.logging_config import log_business_event
from ..utils.retry import retry_async
from . import notification_queue as jobs
from .notification_queue import NotificationQueue

logger = logging.getLogger(__name__)

# SQLSTATEs for serialization failure, deadlock and lock timeout
TRANSIENT_SQLSTATES = {"40001", "40P01", "55P03"}


class _Unset:
    def __repr__(self) -> str:
        return "UNSET"


UNSET: Any = _Unset()


def is_transient_error(exc: DBAPIError) -> bool:
    """Whether a driver error is a lock or serialization failure worth retrying."""
    code = getattr(exc.orig, "sqlstate", None) or getattr(exc.orig, "pgcode", None)
    if code in TRANSIENT_SQLSTATES:
        return True
    return isinstance(exc, OperationalError) and "database is locked" in str(exc.orig)


class RegistrationService:
    """Service class for event registration and attendance operations."""

    def __init__(
        self,
        session_factory: async_sessionmaker[AsyncSession],
        settings: Settings,
        queue: NotificationQueue
    ):
        """
        Args:
            session_factory: Opens one session per operation
            settings: Registration timeout and auto-confirm behaviour
            queue: Receives notification jobs after commit
        """
        self.session_factory = session_factory
        self.settings = settings
        self.queue = queue

    # Transaction plumbing

    @asynccontextmanager
    async def _transaction(self) -> AsyncGenerator[AsyncSession, None]:
        async with self.session_factory() as session:
            try:
                yield session
                await session.commit()
            except BaseException:
                # Also reached on cancellation, so a timed out transaction releases its locks
                await session.rollback()
                raise

    async def _bounded(
        self,
        operation: str,
        func: Callable[..., Awaitable[Any]],
        *args: Any,
        **context: Any
    ) -> Any:
        """Run a transactional step under the registration timeout."""
        timeout = self.settings.registration_timeout_seconds
        try:
            return await asyncio.wait_for(func(*args), timeout=timeout)
        except asyncio.TimeoutError:
            logger.warning(f"{operation} timed out after {timeout}s ({context})")
            raise TransactionTimeoutError(operation, timeout) from None
        except DBAPIError as e:
            if is_transient_error(e):
                logger.warning(f"{operation} hit a lock conflict ({context}): {e.orig}")
                raise ConcurrencyError(f"{operation} conflicted with a concurrent update") from e
            logger.error(f"Unexpected database error during {operation} ({context}): {e}")
            raise

    async def _read(self, func: Callable[..., Awaitable[Any]], *args: Any) -> Any:
        """Run a read, mapping lock failures to ConcurrencyError."""
        try:
            return await func(*args)
        except DBAPIError as e:
            if is_transient_error(e):
                raise ConcurrencyError(f"{func.__name__} conflicted with a concurrent update") from e
            raise

    async def _lock_event(self, session: AsyncSession, event_id: UUID) -> Event:
        """
        Take the event row lock and return the event.

        Must be the first statement of the transaction.
        """
        result = await session.execute(
            update(Event)
            .where(Event.id == event_id)
            .values(version=Event.version + 1)
            .execution_options(synchronize_session=False)
        )
        if result.rowcount == 0:
            raise EventNotFoundError(str(event_id))

        event_result = await session.execute(
            select(Event).where(Event.id == event_id).execution_options(populate_existing=True)
        )
        return event_result.scalar_one()

    @staticmethod
    async def _count_confirmed(session: AsyncSession, event_id: UUID) -> int:
        result = await session.execute(
            select(func.count(Attendee.id)).where(
                Attendee.event_id == event_id,
                Attendee.status.in_(SEAT_CONSUMING_STATUSES)
            )
        )
        return result.scalar_one()

    async def _ensure_seat_available(self, session: AsyncSession, event: Event) -> None:
        if event.is_unlimited:
            return
        confirmed = await self._count_confirmed(session, event.id)
        if confirmed >= event.capacity:
            raise EventAtCapacityError(str(event.id), event.capacity)

    @staticmethod
    async def _load_attendee(session: AsyncSession, attendee_id: UUID) -> Attendee:
        result = await session.execute(
            select(Attendee)
            .where(Attendee.id == attendee_id)
            .options(selectinload(Attendee.user), selectinload(Attendee.event))
            .execution_options(populate_existing=True)
        )
        attendee = result.scalar_one_or_none()
        if attendee is None:
            raise AttendeeNotFoundError(str(attendee_id))
        return attendee

    async def _notify(self, job_type: str, payload: Dict[str, Any]) -> None:
        """Queue a notification; failures never undo the committed change."""
        try:
            await self.queue.enqueue(job_type, payload)
        except Exception as e:
            logger.warning(f"Failed to queue {job_type} notification: {e}")

    # Registration

    async def register(
        self,
        event_id: UUID,
        user_id: UUID,
        notes: Optional[str] = None
    ) -> Attendee:
        """
        Register a user for an event.

        Args:
            event_id: Event to register for
            user_id: Registering user
            notes: Optional note for the organizer

        Returns:
            The new attendee record, with its user loaded

        Raises:
            EventNotFoundError: If the event does not exist
            UserNotFoundError: If the user does not exist
            EventInPastError: If the event has already started
            EventNotOpenError: If the event is cancelled or unpublished
            AlreadyRegisteredError: If the user is already registered
            EventAtCapacityError: If every seat is taken
            TransactionTimeoutError: If the transaction exceeds its time budget
            ConcurrencyError: If the store reports a lock conflict
        """
        logger.info(f"Registering user {user_id} for event {event_id}")

        attendee = await self._bounded(
            "register", self._register, event_id, user_id, notes,
            event_id=str(event_id), user_id=str(user_id)
        )

        logger.info(f"Registered user {user_id} for event {event_id} as {attendee.status.value}")
        log_business_event(
            "registration_created",
            {"event_id": str(event_id), "attendee_id": str(attendee.id), "status": attendee.status.value},
            user_id=str(user_id)
        )

        await CacheInvalidator.invalidate_event_caches(str(event_id))
        await self._notify(jobs.REGISTRATION_CONFIRMATION, {
            "attendee_id": str(attendee.id),
            "event_id": str(event_id),
            "user_id": str(user_id),
        })
        return attendee

    async def _register(self, event_id: UUID, user_id: UUID, notes: Optional[str]) -> Attendee:
        try:
            async with self._transaction() as session:
                event = await self._lock_event(session, event_id)

                if event.has_started:
                    raise EventInPastError(str(event_id))
                if event.is_cancelled:
                    raise EventNotOpenError(str(event_id), "event is cancelled")
                if not event.is_published:
                    raise EventNotOpenError(str(event_id), "event is not published")

                user = await session.get(User, user_id)
                if user is None:
                    raise UserNotFoundError(str(user_id))

                existing = await session.execute(
                    select(Attendee.id).where(
                        Attendee.event_id == event_id,
                        Attendee.user_id == user_id
                    )
                )
                if existing.scalar_one_or_none() is not None:
                    raise AlreadyRegisteredError(str(event_id), str(user_id))

                await self._ensure_seat_available(session, event)

                status = (
                    AttendeeStatus.CONFIRMED
                    if self.settings.auto_confirm_registrations
                    else AttendeeStatus.PENDING
                )
                attendee = Attendee(event_id=event_id, user_id=user_id, status=status, notes=notes)
                attendee.user = user
                session.add(attendee)
                await session.flush()

            return attendee

        except IntegrityError as e:
            # The unique constraint caught a registration the duplicate check missed
            logger.info(f"Duplicate registration rejected by constraint for user {user_id}, event {event_id}")
            raise AlreadyRegisteredError(str(event_id), str(user_id)) from e

    async def unregister(self, event_id: UUID, user_id: UUID) -> None:
        """
        Remove a user's registration for an event.

        Raises:
            RegistrationNotFoundError: If the user is not registered
        """
        logger.info(f"Unregistering user {user_id} from event {event_id}")

        await self._bounded(
            "unregister", self._unregister, event_id, user_id,
            event_id=str(event_id), user_id=str(user_id)
        )

        log_business_event("registration_cancelled", {"event_id": str(event_id)}, user_id=str(user_id))

        await CacheInvalidator.invalidate_event_caches(str(event_id))
        await self._notify(jobs.REGISTRATION_CANCELLED, {
            "event_id": str(event_id),
            "user_id": str(user_id),
        })

    async def _unregister(self, event_id: UUID, user_id: UUID) -> None:
        async with self._transaction() as session:
            result = await session.execute(
                delete(Attendee)
                .where(Attendee.event_id == event_id, Attendee.user_id == user_id)
                .execution_options(synchronize_session=False)
            )
            if result.rowcount == 0:
                raise RegistrationNotFoundError(str(event_id), str(user_id))

    # Reads

    async def is_registered(self, event_id: UUID, user_id: UUID) -> bool:
        """Whether a registration row exists for the pair, whatever its status."""
        return await retry_async(self._read, self._is_registered, event_id, user_id)

    async def _is_registered(self, event_id: UUID, user_id: UUID) -> bool:
        async with self.session_factory() as session:
            result = await session.execute(
                select(Attendee.id).where(
                    Attendee.event_id == event_id,
                    Attendee.user_id == user_id
                )
            )
            return result.scalar_one_or_none() is not None

    async def list_attendees(
        self,
        event_id: UUID,
        status: Optional[AttendeeStatus] = None
    ) -> List[Attendee]:
        """
        List an event's attendees in registration order.

        Raises:
            EventNotFoundError: If the event does not exist
        """
        return await retry_async(self._read, self._list_attendees, event_id, status)

    async def _list_attendees(self, event_id: UUID, status: Optional[AttendeeStatus]) -> List[Attendee]:
        async with self.session_factory() as session:
            exists = await session.execute(select(Event.id).where(Event.id == event_id))
            if exists.scalar_one_or_none() is None:
                raise EventNotFoundError(str(event_id))

            query = (
                select(Attendee)
                .where(Attendee.event_id == event_id)
                .options(selectinload(Attendee.user))
                .order_by(Attendee.registered_at.asc(), Attendee.id.asc())
            )
            if status is not None:
                query = query.where(Attendee.status == status)

            result = await session.execute(query)
            return list(result.scalars().all())

    async def count_confirmed(self, event_id: UUID) -> int:
        """Number of seats currently held for an event."""
        async with self.session_factory() as session:
            return await self._count_confirmed(session, event_id)

    async def list_user_attendance(
        self,
        user_id: UUID,
        status: Optional[AttendeeStatus] = None
    ) -> List[Attendee]:
        """A user's registrations with their events, soonest event first."""
        async with self.session_factory() as session:
            query = (
                select(Attendee)
                .join(Attendee.event)
                .where(Attendee.user_id == user_id)
                .options(contains_eager(Attendee.event))
                .order_by(Event.start_time.asc(), Attendee.id.asc())
            )
            if status is not None:
                query = query.where(Attendee.status == status)

            result = await session.execute(query)
            return list(result.scalars().all())

    async def get_attendee(self, attendee_id: UUID) -> Attendee:
        """
        Fetch an attendee with its event and user loaded.

        Raises:
            AttendeeNotFoundError: If no such record exists
        """
        async with self.session_factory() as session:
            return await self._load_attendee(session, attendee_id)

    # Attendance management

    async def update_status(
        self,
        attendee_id: UUID,
        new_status: AttendeeStatus,
        notes: Any = UNSET
    ) -> Attendee:
        """
        Change an attendee's status.

        Moving an attendee into CONFIRMED takes the event lock and re-checks
        capacity. ``notes`` left as UNSET keeps the stored note, None clears it.

        Raises:
            AttendeeNotFoundError: If no such record exists
            EventAtCapacityError: If confirming would exceed capacity
        """
        attendee, previous = await self._bounded(
            "update_status", self._update_status, attendee_id, new_status, notes,
            attendee_id=str(attendee_id)
        )

        logger.info(
            f"Attendee {attendee_id} status changed from {previous.value} to {new_status.value}"
        )
        log_business_event(
            "attendance_status_changed",
            {"attendee_id": str(attendee_id), "event_id": str(attendee.event_id),
             "from_status": previous.value, "to_status": new_status.value},
            user_id=str(attendee.user_id)
        )

        if previous != new_status:
            await CacheInvalidator.invalidate_event_caches(str(attendee.event_id))
            job_type = {
                AttendeeStatus.CONFIRMED: jobs.ATTENDANCE_CONFIRMED,
                AttendeeStatus.DECLINED: jobs.ATTENDANCE_CANCELLED,
            }.get(new_status)
            if job_type:
                await self._notify(job_type, {
                    "attendee_id": str(attendee.id),
                    "event_id": str(attendee.event_id),
                    "user_id": str(attendee.user_id),
                })

        return attendee

    async def _update_status(self, attendee_id: UUID, new_status: AttendeeStatus, notes: Any):
        async with self._transaction() as session:
            if new_status == AttendeeStatus.CONFIRMED:
                event_id = (await session.execute(
                    select(Attendee.event_id).where(Attendee.id == attendee_id)
                )).scalar_one_or_none()
                if event_id is None:
                    raise AttendeeNotFoundError(str(attendee_id))

                event = await self._lock_event(session, event_id)
                attendee = await self._load_attendee(session, attendee_id)
                if not attendee.holds_seat:
                    await self._ensure_seat_available(session, event)
            else:
                attendee = await self._load_attendee(session, attendee_id)

            previous = attendee.status
            attendee.status = new_status
            if notes is not UNSET:
                attendee.notes = notes
            await session.flush()

        return attendee, previous

    async def check_in(self, attendee_id: UUID) -> Attendee:
        """
        Record that a confirmed attendee arrived.

        Checking in twice keeps the first timestamp.

        Raises:
            AttendeeNotFoundError: If no such record exists
            AttendeeNotConfirmedError: If the attendee is not confirmed
        """
        attendee = await self._bounded(
            "check_in", self._check_in, attendee_id, attendee_id=str(attendee_id)
        )
        log_business_event(
            "attendee_checked_in",
            {"attendee_id": str(attendee_id), "event_id": str(attendee.event_id)},
            user_id=str(attendee.user_id)
        )
        return attendee

    async def _check_in(self, attendee_id: UUID) -> Attendee:
        async with self._transaction() as session:
            attendee = await self._load_attendee(session, attendee_id)
            if attendee.status != AttendeeStatus.CONFIRMED:
                raise AttendeeNotConfirmedError(str(attendee_id), attendee.status.value)
            if attendee.checked_in_at is None:
                attendee.checked_in_at = utcnow()
            await session.flush()
        return attendee

    async def delete_attendance(self, attendee_id: UUID) -> Attendee:
        """
        Delete an attendance record by id.

        Returns:
            The deleted record, detached

        Raises:
            AttendeeNotFoundError: If no such record exists
        """
        attendee = await self._bounded(
            "delete_attendance", self._delete_attendance, attendee_id,
            attendee_id=str(attendee_id)
        )

        logger.info(f"Deleted attendance {attendee_id} for event {attendee.event_id}")
        log_business_event(
            "registration_cancelled",
            {"event_id": str(attendee.event_id), "attendee_id": str(attendee_id)},
            user_id=str(attendee.user_id)
        )

        await CacheInvalidator.invalidate_event_caches(str(attendee.event_id))
        await self._notify(jobs.REGISTRATION_CANCELLED, {
            "event_id": str(attendee.event_id),
            "user_id": str(attendee.user_id),
        })
        return attendee

    async def _delete_attendance(self, attendee_id: UUID) -> Attendee:
        async with self._transaction() as session:
            attendee = await self._load_attendee(session, attendee_id)
            await session.delete(attendee)
            await session.flush()
        return attendee
