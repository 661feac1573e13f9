"""
Attendee model linking users to the events they registered for.
"""

import enum
import uuid
from datetime import datetime
from typing import Optional, TYPE_CHECKING

from sqlalchemy import DateTime, Enum, ForeignKey, Text, UniqueConstraint, Uuid
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .base import Base, utcnow

if TYPE_CHECKING:
    from .event import Event
    from .user import User


class AttendeeStatus(str, enum.Enum):
    """Attendance status. Only CONFIRMED holds a seat."""
    PENDING = "pending"
    CONFIRMED = "confirmed"
    DECLINED = "declined"
    NO_SHOW = "no-show"


SEAT_CONSUMING_STATUSES = (AttendeeStatus.CONFIRMED,)


class Attendee(Base):
    """Registration of a user for an event."""

    __tablename__ = "event_attendees"

    event_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("events.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    user_id: Mapped[uuid.UUID] = mapped_column(
        Uuid,
        ForeignKey("users.id", ondelete="CASCADE"),
        nullable=False,
        index=True
    )

    status: Mapped[AttendeeStatus] = mapped_column(
        Enum(AttendeeStatus, name="attendee_status", values_callable=lambda s: [m.value for m in s]),
        default=AttendeeStatus.PENDING,
        nullable=False,
        index=True
    )

    registered_at: Mapped[datetime] = mapped_column(
        DateTime(timezone=True),
        default=utcnow,
        nullable=False
    )

    checked_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)
    notes: Mapped[Optional[str]] = mapped_column(Text, nullable=True)

    # Relationships
    event: Mapped["Event"] = relationship("Event", back_populates="attendees")
    user: Mapped["User"] = relationship("User", back_populates="attendances")

    __table_args__ = (
        UniqueConstraint("event_id", "user_id", name="uq_event_attendees_event_user"),
    )

    @property
    def holds_seat(self) -> bool:
        return self.status in SEAT_CONSUMING_STATUSES

    def __repr__(self) -> str:
        return (
            f"<Attendee(id={self.id}, event_id={self.event_id}, "
            f"user_id={self.user_id}, status={self.status.value})>"
        )
