"""
Database models for the Community Events API.
"""

from .base import Base
from .user import User, UserRole
from .event import Event
from .attendee import Attendee, AttendeeStatus, SEAT_CONSUMING_STATUSES

__all__ = [
    "Base",
    "User",
    "UserRole",
    "Event",
    "Attendee",
    "AttendeeStatus",
    "SEAT_CONSUMING_STATUSES",
]
