"""
Tests for registration consistency: capacity, duplicates and attendance changes.
"""

import asyncio
import sqlite3
import uuid
from datetime import timedelta

import pytest
from sqlalchemy import select
from sqlalchemy.exc import DBAPIError, IntegrityError, OperationalError

from community_events.database import get_session_factory
from community_events.models import AttendeeStatus, Event, UserRole
from community_events.models.base import as_utc
from community_events.services import notification_queue as jobs
from community_events.services.registration_service import RegistrationService, is_transient_error
from community_events.utils.exceptions import (
    AlreadyRegisteredError,
    AttendeeNotConfirmedError,
    AttendeeNotFoundError,
    EventAtCapacityError,
    EventInPastError,
    EventNotFoundError,
    EventNotOpenError,
    RegistrationNotFoundError,
    TransactionTimeoutError,
    UserNotFoundError,
)


class TestRegister:
    async def test_register_confirms_and_queues_notification(self, registration_service, queue, make_user, make_event):
        event = await make_event(capacity=10)
        user = await make_user()

        attendee = await registration_service.register(event.id, user.id, notes="Vegetarian")

        assert attendee.event_id == event.id
        assert attendee.user_id == user.id
        assert attendee.status == AttendeeStatus.CONFIRMED
        assert attendee.notes == "Vegetarian"
        assert attendee.user.display_name == user.display_name
        assert await registration_service.is_registered(event.id, user.id)

        confirmations = queue.of_type(jobs.REGISTRATION_CONFIRMATION)
        assert confirmations == [{
            "attendee_id": str(attendee.id),
            "event_id": str(event.id),
            "user_id": str(user.id),
        }]

    async def test_register_pending_when_auto_confirm_disabled(self, database, settings, queue, make_user, make_event):
        manual = settings.model_copy(update={"auto_confirm_registrations": False})
        service = RegistrationService(get_session_factory(), manual, queue)
        event = await make_event(capacity=1)
        first, second = await make_user(), await make_user()

        assert (await service.register(event.id, first.id)).status == AttendeeStatus.PENDING
        # Pending registrations do not hold a seat
        assert (await service.register(event.id, second.id)).status == AttendeeStatus.PENDING
        assert await service.count_confirmed(event.id) == 0

    async def test_duplicate_registration_rejected(self, registration_service, make_user, make_event):
        event = await make_event()
        user = await make_user()
        await registration_service.register(event.id, user.id)

        with pytest.raises(AlreadyRegisteredError):
            await registration_service.register(event.id, user.id)

        attendees = await registration_service.list_attendees(event.id)
        assert len(attendees) == 1

    async def test_unknown_event(self, registration_service, make_user):
        user = await make_user()
        with pytest.raises(EventNotFoundError):
            await registration_service.register(uuid.uuid4(), user.id)

    async def test_unknown_user(self, registration_service, make_event):
        event = await make_event()
        with pytest.raises(UserNotFoundError):
            await registration_service.register(event.id, uuid.uuid4())

    async def test_started_event_rejected(self, registration_service, make_user, make_event):
        event = await make_event(starts_in=-timedelta(minutes=30))
        user = await make_user()

        with pytest.raises(EventInPastError):
            await registration_service.register(event.id, user.id)
        assert not await registration_service.is_registered(event.id, user.id)

    async def test_cancelled_event_rejected(self, registration_service, make_user, make_event):
        event = await make_event(is_cancelled=True)
        user = await make_user()

        with pytest.raises(EventNotOpenError):
            await registration_service.register(event.id, user.id)

    async def test_unpublished_event_rejected(self, registration_service, make_user, make_event):
        event = await make_event(is_published=False)
        user = await make_user()

        with pytest.raises(EventNotOpenError):
            await registration_service.register(event.id, user.id)

    async def test_capacity_reached(self, registration_service, make_user, make_event):
        event = await make_event(capacity=2)
        users = [await make_user() for _ in range(3)]

        await registration_service.register(event.id, users[0].id)
        await registration_service.register(event.id, users[1].id)
        with pytest.raises(EventAtCapacityError):
            await registration_service.register(event.id, users[2].id)

        assert await registration_service.count_confirmed(event.id) == 2
        assert not await registration_service.is_registered(event.id, users[2].id)

    async def test_failed_registration_queues_nothing(self, registration_service, queue, make_user, make_event):
        event = await make_event(capacity=1)
        first, second = await make_user(), await make_user()
        await registration_service.register(event.id, first.id)
        queue.jobs.clear()

        with pytest.raises(EventAtCapacityError):
            await registration_service.register(event.id, second.id)
        assert queue.jobs == []

    async def test_queue_failure_keeps_registration(self, database, settings, failing_queue, make_user, make_event):
        service = RegistrationService(get_session_factory(), settings, failing_queue)
        event = await make_event()
        user = await make_user()

        attendee = await service.register(event.id, user.id)

        assert attendee.status == AttendeeStatus.CONFIRMED
        assert await service.is_registered(event.id, user.id)

    async def test_timeout_maps_to_transaction_timeout(self, database, settings, queue, make_user, make_event, monkeypatch):
        fast = settings.model_copy(update={"registration_timeout_seconds": 0.05})
        service = RegistrationService(get_session_factory(), fast, queue)
        event = await make_event()
        user = await make_user()

        async def stalled(*args):
            await asyncio.sleep(1)

        monkeypatch.setattr(service, "_register", stalled)

        with pytest.raises(TransactionTimeoutError) as exc_info:
            await service.register(event.id, user.id)

        assert exc_info.value.retry_after == 1
        assert queue.jobs == []
        assert not await service.is_registered(event.id, user.id)

    async def test_timeout_inside_transaction_rolls_back_and_releases_lock(
        self, database, settings, queue, registration_service, make_user, make_event, monkeypatch
    ):
        fast = settings.model_copy(update={"registration_timeout_seconds": 0.3})
        service = RegistrationService(get_session_factory(), fast, queue)
        event = await make_event(capacity=5)
        event_id = event.id
        slow_user, next_user = await make_user(), await make_user()
        seat_check = service._ensure_seat_available

        async def stall_after_lock(session, locked_event):
            await seat_check(session, locked_event)
            await asyncio.sleep(2)

        monkeypatch.setattr(service, "_ensure_seat_available", stall_after_lock)

        with pytest.raises(TransactionTimeoutError):
            await service.register(event_id, slow_user.id)

        assert not await registration_service.is_registered(event_id, slow_user.id)
        async with get_session_factory()() as check:
            version = await check.scalar(select(Event.version).where(Event.id == event_id))
        assert version == 1

        attendee = await asyncio.wait_for(registration_service.register(event_id, next_user.id), timeout=2)
        assert attendee.status == AttendeeStatus.CONFIRMED
        assert queue.of_type(jobs.REGISTRATION_CONFIRMATION) == [{
            "attendee_id": str(attendee.id),
            "event_id": str(event_id),
            "user_id": str(next_user.id),
        }]


class TestConcurrentRegistration:
    async def test_last_seat_goes_to_exactly_one_user(self, registration_service, make_user, make_event):
        event = await make_event(capacity=1)
        users = [await make_user() for _ in range(5)]

        results = await asyncio.gather(
            *(registration_service.register(event.id, user.id) for user in users),
            return_exceptions=True
        )

        successes = [result for result in results if not isinstance(result, Exception)]
        failures = [result for result in results if isinstance(result, Exception)]
        assert len(successes) == 1
        assert len(failures) == 4
        assert all(isinstance(failure, EventAtCapacityError) for failure in failures)
        assert await registration_service.count_confirmed(event.id) == 1

    async def test_capacity_never_exceeded(self, registration_service, make_user, make_event):
        event = await make_event(capacity=3)
        users = [await make_user() for _ in range(8)]

        results = await asyncio.gather(
            *(registration_service.register(event.id, user.id) for user in users),
            return_exceptions=True
        )

        assert sum(1 for result in results if not isinstance(result, Exception)) == 3
        assert await registration_service.count_confirmed(event.id) == 3

    async def test_unlimited_event_admits_everyone(self, registration_service, make_user, make_event):
        event = await make_event(capacity=0)
        users = [await make_user() for _ in range(4)]

        results = await asyncio.gather(
            *(registration_service.register(event.id, user.id) for user in users),
            return_exceptions=True
        )

        assert not any(isinstance(result, Exception) for result in results)
        assert await registration_service.count_confirmed(event.id) == 4

    async def test_concurrent_duplicates_create_one_row(self, registration_service, make_user, make_event):
        event = await make_event()
        user = await make_user()

        results = await asyncio.gather(
            *(registration_service.register(event.id, user.id) for _ in range(3)),
            return_exceptions=True
        )

        failures = [result for result in results if isinstance(result, Exception)]
        assert len(failures) == 2
        assert all(isinstance(failure, AlreadyRegisteredError) for failure in failures)
        assert len(await registration_service.list_attendees(event.id)) == 1

    async def test_mixed_events_do_not_interfere(self, registration_service, make_user, make_event):
        small = await make_event(capacity=1)
        large = await make_event(capacity=5)
        u1, u2, u3 = await make_user(), await make_user(), await make_user()

        await registration_service.register(small.id, u1.id)
        results = await asyncio.gather(
            registration_service.register(small.id, u2.id),
            registration_service.register(large.id, u2.id),
            registration_service.register(large.id, u3.id),
            return_exceptions=True
        )

        assert isinstance(results[0], EventAtCapacityError)
        assert not isinstance(results[1], Exception)
        assert not isinstance(results[2], Exception)
        assert [a.user_id for a in await registration_service.list_attendees(small.id)] == [u1.id]
        assert await registration_service.count_confirmed(large.id) == 2


class TestUnregister:
    async def test_unregister_frees_seat(self, registration_service, queue, make_user, make_event):
        event = await make_event(capacity=1)
        first, second = await make_user(), await make_user()
        await registration_service.register(event.id, first.id)

        await registration_service.unregister(event.id, first.id)

        assert not await registration_service.is_registered(event.id, first.id)
        assert queue.of_type(jobs.REGISTRATION_CANCELLED) == [
            {"event_id": str(event.id), "user_id": str(first.id)}
        ]
        attendee = await registration_service.register(event.id, second.id)
        assert attendee.status == AttendeeStatus.CONFIRMED

    async def test_unregister_twice(self, registration_service, make_user, make_event):
        event = await make_event()
        user = await make_user()
        await registration_service.register(event.id, user.id)
        await registration_service.unregister(event.id, user.id)

        with pytest.raises(RegistrationNotFoundError):
            await registration_service.unregister(event.id, user.id)

    async def test_reregister_after_unregister(self, registration_service, make_user, make_event):
        event = await make_event()
        user = await make_user()
        await registration_service.register(event.id, user.id)
        await registration_service.unregister(event.id, user.id)

        await registration_service.register(event.id, user.id)

        assert await registration_service.is_registered(event.id, user.id)


class TestReads:
    async def test_list_attendees_in_registration_order(self, registration_service, make_user, make_event):
        event = await make_event(capacity=3)
        u1, u2, u3 = await make_user(), await make_user(), await make_user()

        for user in (u1, u2, u3):
            await registration_service.register(event.id, user.id)

        attendees = await registration_service.list_attendees(event.id)
        assert [a.user_id for a in attendees] == [u1.id, u2.id, u3.id]
        assert all(a.user is not None for a in attendees)

        await registration_service.unregister(event.id, u2.id)
        attendees = await registration_service.list_attendees(event.id)
        assert [a.user_id for a in attendees] == [u1.id, u3.id]

    async def test_list_attendees_by_status(self, registration_service, make_user, make_event):
        event = await make_event()
        u1, u2 = await make_user(), await make_user()
        await registration_service.register(event.id, u1.id)
        declined = await registration_service.register(event.id, u2.id)
        await registration_service.update_status(declined.id, AttendeeStatus.DECLINED)

        confirmed = await registration_service.list_attendees(event.id, status=AttendeeStatus.CONFIRMED)
        assert [a.user_id for a in confirmed] == [u1.id]

    async def test_list_attendees_unknown_event(self, registration_service):
        with pytest.raises(EventNotFoundError):
            await registration_service.list_attendees(uuid.uuid4())

    async def test_list_user_attendance_soonest_first(self, registration_service, make_user, make_event):
        later = await make_event(starts_in=timedelta(days=10))
        sooner = await make_event(starts_in=timedelta(days=2))
        user = await make_user()
        await registration_service.register(later.id, user.id)
        await registration_service.register(sooner.id, user.id)

        attendance = await registration_service.list_user_attendance(user.id)

        assert [a.event_id for a in attendance] == [sooner.id, later.id]
        assert attendance[0].event.title == sooner.title


class TestAttendanceManagement:
    async def test_confirm_rechecks_capacity(self, database, settings, queue, make_user, make_event):
        manual = settings.model_copy(update={"auto_confirm_registrations": False})
        service = RegistrationService(get_session_factory(), manual, queue)
        event = await make_event(capacity=1)
        first = await service.register(event.id, (await make_user()).id)
        second = await service.register(event.id, (await make_user()).id)

        await service.update_status(first.id, AttendeeStatus.CONFIRMED)

        with pytest.raises(EventAtCapacityError):
            await service.update_status(second.id, AttendeeStatus.CONFIRMED)
        assert await service.count_confirmed(event.id) == 1
        assert len(queue.of_type(jobs.ATTENDANCE_CONFIRMED)) == 1

    async def test_decline_frees_seat_and_notifies(self, registration_service, queue, make_user, make_event):
        event = await make_event(capacity=1)
        attendee = await registration_service.register(event.id, (await make_user()).id)

        updated = await registration_service.update_status(attendee.id, AttendeeStatus.DECLINED)

        assert updated.status == AttendeeStatus.DECLINED
        assert await registration_service.count_confirmed(event.id) == 0
        assert len(queue.of_type(jobs.ATTENDANCE_CANCELLED)) == 1

    async def test_update_status_keeps_notes_unless_given(self, registration_service, make_user, make_event):
        event = await make_event()
        attendee = await registration_service.register(event.id, (await make_user()).id, notes="Front row")

        updated = await registration_service.update_status(attendee.id, AttendeeStatus.NO_SHOW)
        assert updated.notes == "Front row"

        updated = await registration_service.update_status(attendee.id, AttendeeStatus.NO_SHOW, notes=None)
        assert updated.notes is None

    async def test_update_status_unknown_attendee(self, registration_service):
        with pytest.raises(AttendeeNotFoundError):
            await registration_service.update_status(uuid.uuid4(), AttendeeStatus.CONFIRMED)

    async def test_check_in_keeps_first_timestamp(self, registration_service, make_user, make_event):
        event = await make_event()
        attendee = await registration_service.register(event.id, (await make_user()).id)

        first = await registration_service.check_in(attendee.id)
        second = await registration_service.check_in(attendee.id)

        assert first.checked_in_at is not None
        assert as_utc(second.checked_in_at) == as_utc(first.checked_in_at)

    async def test_check_in_requires_confirmation(self, registration_service, make_user, make_event):
        event = await make_event()
        attendee = await registration_service.register(event.id, (await make_user()).id)
        await registration_service.update_status(attendee.id, AttendeeStatus.DECLINED)

        with pytest.raises(AttendeeNotConfirmedError):
            await registration_service.check_in(attendee.id)

    async def test_delete_attendance(self, registration_service, queue, make_user, make_event):
        event = await make_event()
        user = await make_user()
        attendee = await registration_service.register(event.id, user.id)

        deleted = await registration_service.delete_attendance(attendee.id)

        assert deleted.id == attendee.id
        assert not await registration_service.is_registered(event.id, user.id)
        assert len(queue.of_type(jobs.REGISTRATION_CANCELLED)) == 1
        with pytest.raises(AttendeeNotFoundError):
            await registration_service.get_attendee(attendee.id)


class TestScenario:
    async def test_three_users_one_seat_then_cancellation(self, registration_service, make_user, make_event):
        organizer = await make_user(role=UserRole.STAFF)
        event = await make_event(organizer=organizer, capacity=2)
        u1, u2, u3 = await make_user(), await make_user(), await make_user()

        await registration_service.register(event.id, u1.id)
        await registration_service.register(event.id, u2.id)
        with pytest.raises(EventAtCapacityError):
            await registration_service.register(event.id, u3.id)

        await registration_service.unregister(event.id, u1.id)
        await registration_service.register(event.id, u3.id)

        attendees = await registration_service.list_attendees(event.id)
        assert [a.user_id for a in attendees] == [u2.id, u3.id]


class TestTransientErrors:
    def test_sqlite_lock_is_transient(self):
        error = OperationalError("UPDATE events", {}, sqlite3.OperationalError("database is locked"))
        assert is_transient_error(error)

    def test_postgres_deadlock_is_transient(self):
        class DeadlockDetected(Exception):
            sqlstate = "40P01"

        assert is_transient_error(DBAPIError("UPDATE events", {}, DeadlockDetected()))

    def test_integrity_error_is_not_transient(self):
        error = IntegrityError("INSERT", {}, sqlite3.IntegrityError("UNIQUE constraint failed"))
        assert not is_transient_error(error)
