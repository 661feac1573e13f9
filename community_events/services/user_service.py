"""
User service for handling user-related operations.
"""

import logging
from typing import List, Optional, Tuple
from uuid import UUID

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.exc import IntegrityError

from ..cache import CacheInvalidator
from ..models import Event, User, UserRole
from ..models.base import utcnow
from ..schemas.auth import PasswordChange, UserProfileUpdate, UserRegistration
from ..schemas.event import EventResponse
from ..utils.exceptions import (
    AuthenticationError,
    ConflictError,
    UserNotFoundError,
    ValidationError,
)
from .event_service import confirmed_count_subquery, to_event_response

logger = logging.getLogger(__name__)


class UserService:
    """Service class for user operations."""

    def __init__(self, db: AsyncSession):
        """
        Initialize the user service.

        Args:
            db: Database session
        """
        self.db = db

    async def create_user(self, user_data: UserRegistration, role: UserRole = UserRole.USER) -> User:
        """
        Create a new local account.

        Args:
            user_data: User registration data
            role: Initial role, only elevated by admin tooling

        Returns:
            The created user

        Raises:
            ConflictError: If the email is already registered
        """
        email = user_data.email.lower()

        if await self.get_user_by_email(email):
            raise ConflictError("Email already registered", details={"email": email})

        user = User(
            email=email,
            display_name=user_data.display_name,
            photo_url=user_data.photo_url,
            bio=user_data.bio,
            role=role
        )
        user.set_password(user_data.password)

        try:
            self.db.add(user)
            await self.db.commit()
        except IntegrityError:
            await self.db.rollback()
            raise ConflictError("Email already registered", details={"email": email})

        logger.info(f"User {user.id} created with role {role.value}")
        return user

    async def get_user_by_id(self, user_id: UUID) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.id == user_id))
        return result.scalar_one_or_none()

    async def get_user_by_email(self, email: str) -> Optional[User]:
        result = await self.db.execute(select(User).where(User.email == email.lower()))
        return result.scalar_one_or_none()

    async def get_user(self, user_id: UUID) -> User:
        """
        Get a user by ID.

        Raises:
            UserNotFoundError: If no such user exists
        """
        user = await self.get_user_by_id(user_id)
        if user is None:
            raise UserNotFoundError(str(user_id))
        return user

    async def authenticate_user(self, email: str, password: str) -> Optional[User]:
        """
        Authenticate a user with email and password.

        Returns:
            The user if credentials are valid and the account is active, None otherwise
        """
        user = await self.get_user_by_email(email)
        if user is None or not user.is_active:
            return None
        if not user.verify_password(password):
            return None
        return user

    async def touch_last_login(self, user: User) -> User:
        user.last_login = utcnow()
        await self.db.commit()
        return user

    async def update_user(self, user_id: UUID, update_data: UserProfileUpdate) -> User:
        """
        Apply a partial profile update.

        Only fields present in the request are written; ``role`` and
        ``is_active`` are honoured when the payload carries them (admin updates).

        Raises:
            UserNotFoundError: If no such user exists
        """
        user = await self.get_user(user_id)

        changes = update_data.model_dump(exclude_unset=True)
        for field in ("role", "is_active"):
            if field in changes and changes[field] is None:
                changes.pop(field)

        for field, value in changes.items():
            setattr(user, field, value)

        await self.db.commit()

        logger.info(f"User {user_id} updated: {sorted(changes)}")
        return user

    async def change_password(self, user_id: UUID, password_data: PasswordChange) -> None:
        """
        Change a user's password after verifying the current one.

        Raises:
            UserNotFoundError: If no such user exists
            AuthenticationError: If the current password is wrong
            ValidationError: If the new password equals the current one
        """
        user = await self.get_user(user_id)

        if not user.verify_password(password_data.current_password):
            raise AuthenticationError("Current password is incorrect")

        if password_data.current_password == password_data.new_password:
            raise ValidationError(
                "New password must differ from the current password",
                field_errors={"new_password": ["must differ from the current password"]}
            )

        user.set_password(password_data.new_password)
        await self.db.commit()

        logger.info(f"Password changed for user {user_id}")

    async def set_role(self, user_id: UUID, role: UserRole) -> User:
        """Change a user's role."""
        user = await self.get_user(user_id)
        user.role = role
        await self.db.commit()

        logger.info(f"User {user_id} role set to {role.value}")
        return user

    async def list_users(self, limit: int = 50, offset: int = 0) -> Tuple[List[User], int]:
        """
        List users, newest first.

        Returns:
            Tuple of (users, total count)
        """
        total = (await self.db.execute(select(func.count(User.id)))).scalar_one()

        result = await self.db.execute(
            select(User)
            .order_by(User.created_at.desc(), User.id)
            .offset(offset)
            .limit(limit)
        )
        return list(result.scalars().all()), total

    async def delete_user(self, user_id: UUID) -> None:
        """
        Delete a user with their registrations and the events they organise.

        Raises:
            UserNotFoundError: If no such user exists
        """
        user = await self.get_user(user_id)

        organized = await self.db.execute(select(Event.id).where(Event.organizer_id == user_id))
        organized_ids = list(organized.scalars().all())

        await self.db.delete(user)
        await self.db.commit()

        logger.info(f"User {user_id} deleted along with {len(organized_ids)} organised events")

        for event_id in organized_ids:
            await CacheInvalidator.invalidate_event_caches(str(event_id))
        await CacheInvalidator.invalidate_event_list_caches()

    async def get_organized_events(self, user_id: UUID) -> List[EventResponse]:
        """Events organised by a user, soonest first."""
        result = await self.db.execute(
            select(Event, confirmed_count_subquery())
            .where(Event.organizer_id == user_id)
            .order_by(Event.start_time, Event.id)
        )
        return [to_event_response(event, count) for event, count in result.all()]
