"""
Business logic services for the Community Events API.
"""

from .event_service import EventService
from .notification_queue import CeleryNotificationQueue, NotificationQueue
from .registration_service import RegistrationService, UNSET
from .user_service import UserService

__all__ = [
    "EventService",
    "CeleryNotificationQueue",
    "NotificationQueue",
    "RegistrationService",
    "UNSET",
    "UserService",
]
