"""
Celery tasks for attendee notifications and event reminders.

Job handlers look up the current state of the event and user, render an
email and hand it to ``send_email_task``, which owns SMTP delivery and its
retries.
"""

import asyncio
import logging
import smtplib
from datetime import datetime, timedelta
from typing import Any, Awaitable, Callable, Dict, List, Optional, Tuple, TypeVar
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from .celery_app import celery_app
from ..config import get_settings
from ..database import create_database_engine, create_session_factory
from ..models import Attendee, AttendeeStatus, Event, User
from ..models.base import as_utc, utcnow
from ..services.email_service import render_email, send_email

logger = logging.getLogger(__name__)

T = TypeVar("T")

# reminder type -> lead time before the event starts
REMINDER_OFFSETS: Dict[str, timedelta] = {
    "day-before": timedelta(hours=24),
    "hour-before": timedelta(hours=1),
}

REMINDER_WORDING = {
    "day-before": "tomorrow",
    "hour-before": "in one hour",
}


def run_async(func: Callable[[AsyncSession], Awaitable[T]]) -> T:
    """Run ``func`` with a fresh session on a private event loop."""

    async def _run() -> T:
        engine = create_database_engine(get_settings())
        try:
            async with create_session_factory(engine)() as session:
                return await func(session)
        finally:
            await engine.dispose()

    loop = asyncio.new_event_loop()
    asyncio.set_event_loop(loop)
    try:
        return loop.run_until_complete(_run())
    finally:
        loop.close()


def reminder_schedule(start_time: datetime, now: Optional[datetime] = None) -> List[Tuple[str, datetime]]:
    """
    Reminder times still ahead of ``now`` for an event starting at ``start_time``.

    Returns:
        List of (reminder type, eta) pairs, earliest first
    """
    now = now or utcnow()
    start_time = as_utc(start_time)
    schedule = [
        (reminder_type, start_time - offset)
        for reminder_type, offset in REMINDER_OFFSETS.items()
    ]
    return sorted(
        [(reminder_type, eta) for reminder_type, eta in schedule if eta > now],
        key=lambda item: item[1]
    )


def email_context(event: Event, user: User, **extra: Any) -> Dict[str, Any]:
    return {
        "display_name": user.display_name,
        "event_title": event.title,
        "location": event.location,
        "start_time": as_utc(event.start_time).strftime("%Y-%m-%d %H:%M UTC"),
        **extra,
    }


@celery_app.task(
    bind=True,
    name="community_events.tasks.notification_tasks.send_email_task",
    autoretry_for=(smtplib.SMTPException, OSError),
    retry_backoff=60,
    retry_jitter=True,
    max_retries=3,
)
def send_email_task(self, to: str, template: str, context: Dict[str, Any]):
    """
    Deliver one templated email.

    Args:
        to: Recipient address
        template: Template name from the email service
        context: Placeholder values
    """
    subject, text, html = render_email(template, context)
    sent = send_email(get_settings(), to, subject, text, html)
    return {"to": to, "template": template, "status": "sent" if sent else "skipped"}


def _queue_email(event_id: str, user_id: str, template: str, **extra: Any) -> Dict[str, Any]:
    """Look up the event and user, then queue the email."""

    async def _load(session: AsyncSession):
        event = await session.get(Event, UUID(event_id))
        user = await session.get(User, UUID(user_id))
        return event, user

    event, user = run_async(_load)
    if event is None or user is None:
        logger.warning(f"Skipping {template}: event {event_id} or user {user_id} no longer exists")
        return {"event_id": event_id, "user_id": user_id, "status": "skipped"}

    send_email_task.delay(user.email, template, email_context(event, user, **extra))
    logger.info(f"Queued {template} email for user {user_id}, event {event_id}")
    return {"event_id": event_id, "user_id": user_id, "status": "queued"}


@celery_app.task(name="community_events.tasks.notification_tasks.registration_confirmation")
def registration_confirmation(attendee_id: str, event_id: str, user_id: str):
    """Tell a user their registration went through."""

    async def _status(session: AsyncSession) -> Optional[AttendeeStatus]:
        attendee = await session.get(Attendee, UUID(attendee_id))
        return attendee.status if attendee else None

    status = run_async(_status)
    if status is None:
        logger.info(f"Registration {attendee_id} was removed before confirmation was sent")
        return {"attendee_id": attendee_id, "status": "skipped"}

    return _queue_email(event_id, user_id, "registration_confirmation", status=status.value)


@celery_app.task(name="community_events.tasks.notification_tasks.registration_cancelled")
def registration_cancelled(event_id: str, user_id: str):
    return _queue_email(event_id, user_id, "registration_cancelled")


@celery_app.task(name="community_events.tasks.notification_tasks.attendance_confirmed")
def attendance_confirmed(attendee_id: str, event_id: str, user_id: str):
    return _queue_email(event_id, user_id, "attendance_confirmed")


@celery_app.task(name="community_events.tasks.notification_tasks.attendance_cancelled")
def attendance_cancelled(attendee_id: str, event_id: str, user_id: str):
    return _queue_email(event_id, user_id, "attendance_cancelled")


@celery_app.task(name="community_events.tasks.notification_tasks.schedule_event_reminders")
def schedule_event_reminders(event_id: str):
    """
    Schedule the 24h and 1h reminders for an event.

    Reminders whose time has already passed are skipped. Each reminder carries
    the start time it was computed from so a rescheduled event does not get
    stale reminders.
    """

    async def _load(session: AsyncSession) -> Optional[Event]:
        return await session.get(Event, UUID(event_id))

    event = run_async(_load)
    if event is None or event.is_cancelled:
        logger.info(f"Not scheduling reminders for missing or cancelled event {event_id}")
        return {"event_id": event_id, "scheduled": []}

    start_time = as_utc(event.start_time)
    scheduled = []
    for reminder_type, eta in reminder_schedule(start_time):
        send_event_reminder.apply_async(
            args=[event_id, reminder_type, start_time.isoformat()],
            eta=eta
        )
        scheduled.append(reminder_type)

    logger.info(f"Scheduled reminders {scheduled} for event {event_id}")
    return {"event_id": event_id, "scheduled": scheduled}


@celery_app.task(name="community_events.tasks.notification_tasks.send_event_reminder")
def send_event_reminder(event_id: str, reminder_type: str, expected_start: str):
    """Email every confirmed attendee that the event is coming up."""

    async def _load(session: AsyncSession):
        event = await session.get(Event, UUID(event_id))
        if event is None:
            return None, []
        result = await session.execute(
            select(User)
            .join(Attendee, Attendee.user_id == User.id)
            .where(
                Attendee.event_id == event.id,
                Attendee.status == AttendeeStatus.CONFIRMED
            )
        )
        return event, list(result.scalars().all())

    event, users = run_async(_load)
    if event is None or event.is_cancelled:
        return {"event_id": event_id, "status": "skipped"}

    if as_utc(event.start_time) != datetime.fromisoformat(expected_start):
        logger.info(f"Event {event_id} was rescheduled, dropping stale {reminder_type} reminder")
        return {"event_id": event_id, "status": "stale"}

    for user in users:
        send_email_task.delay(
            user.email,
            "event_reminder",
            email_context(event, user, when=REMINDER_WORDING[reminder_type])
        )

    logger.info(f"Queued {reminder_type} reminders for {len(users)} attendees of event {event_id}")
    return {"event_id": event_id, "status": "sent", "recipients": len(users)}
