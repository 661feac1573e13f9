"""
Notification job queue used by the services.

Services only depend on the ``NotificationQueue`` protocol. The production
implementation publishes Celery tasks by name so the web process never
imports task code.
"""

import asyncio
import logging
from typing import Any, Dict, Protocol

from celery import Celery

logger = logging.getLogger(__name__)

# Job types
REGISTRATION_CONFIRMATION = "registration_confirmation"
REGISTRATION_CANCELLED = "registration_cancelled"
ATTENDANCE_CONFIRMED = "attendance_confirmed"
ATTENDANCE_CANCELLED = "attendance_cancelled"
EVENT_REMINDERS = "schedule_event_reminders"

TASK_MODULE = "community_events.tasks.notification_tasks"

JOB_TASKS: Dict[str, str] = {
    job_type: f"{TASK_MODULE}.{job_type}"
    for job_type in (
        REGISTRATION_CONFIRMATION,
        REGISTRATION_CANCELLED,
        ATTENDANCE_CONFIRMED,
        ATTENDANCE_CANCELLED,
        EVENT_REMINDERS,
    )
}


class NotificationQueue(Protocol):
    """Anything that accepts notification jobs."""

    async def enqueue(self, job_type: str, payload: Dict[str, Any]) -> None:
        ...


class CeleryNotificationQueue:
    """Publishes notification jobs to the Celery broker."""

    def __init__(self, app: Celery):
        self.app = app

    async def enqueue(self, job_type: str, payload: Dict[str, Any]) -> None:
        """
        Publish a job.

        Raises:
            KeyError: If the job type is unknown
        """
        task_name = JOB_TASKS[job_type]
        # Broker publishing is blocking I/O
        result = await asyncio.to_thread(self.app.send_task, task_name, kwargs=payload)
        logger.debug(f"Queued {job_type} job {result.id}")
