"""
FastAPI dependencies for authentication, authorization and service wiring.
"""

from typing import Callable, Optional
from uuid import UUID

from fastapi import Depends, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from sqlalchemy.ext.asyncio import AsyncSession

from ..config import Settings, get_settings
from ..database import get_db, get_session_factory
from ..models.user import User, UserRole
from ..services.event_service import EventService
from ..services.notification_queue import CeleryNotificationQueue, NotificationQueue
from ..services.registration_service import RegistrationService
from ..services.user_service import UserService
from .auth import verify_token
from .exceptions import AuthenticationError, AuthorizationError

# HTTP Bearer token scheme; missing credentials are handled below
security = HTTPBearer(auto_error=False)


def get_notification_queue() -> NotificationQueue:
    """Celery-backed queue; overridden in tests."""
    from ..tasks.celery_app import celery_app

    return CeleryNotificationQueue(celery_app)


def get_registration_service(
    settings: Settings = Depends(get_settings),
    queue: NotificationQueue = Depends(get_notification_queue)
) -> RegistrationService:
    return RegistrationService(get_session_factory(), settings, queue)


def get_event_service(
    db: AsyncSession = Depends(get_db),
    settings: Settings = Depends(get_settings),
    queue: NotificationQueue = Depends(get_notification_queue)
) -> EventService:
    return EventService(db, queue=queue, settings=settings)


def get_user_service(db: AsyncSession = Depends(get_db)) -> UserService:
    return UserService(db)


async def _resolve_user(token: str, db: AsyncSession) -> Optional[User]:
    token_data = verify_token(token)
    if token_data is None or token_data.user_id is None:
        return None

    try:
        user_id = UUID(token_data.user_id)
    except ValueError:
        return None

    return await UserService(db).get_user_by_id(user_id)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> User:
    """
    Get the current authenticated user from JWT token.

    Raises:
        AuthenticationError: If the token is missing or invalid, or the user is gone or inactive
    """
    if credentials is None:
        raise AuthenticationError("Not authenticated")

    user = await _resolve_user(credentials.credentials, db)
    if user is None:
        raise AuthenticationError("Could not validate credentials")

    if not user.is_active:
        raise AuthenticationError("Inactive user")

    request.state.user = user
    return user


async def get_optional_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db)
) -> Optional[User]:
    """The authenticated user when a valid token is supplied, otherwise None."""
    if credentials is None:
        return None

    user = await _resolve_user(credentials.credentials, db)
    if user is None or not user.is_active:
        return None
    return user


def require_roles(*roles: UserRole) -> Callable:
    """
    Dependency factory that admits only users holding one of ``roles``.

    Usage:
        @router.post("/", dependencies=[Depends(require_roles(UserRole.STAFF, UserRole.ADMIN))])
    """

    async def _check(current_user: User = Depends(get_current_user)) -> User:
        if current_user.role not in roles:
            raise AuthorizationError(
                "Not enough permissions",
                required_permission=" or ".join(role.value for role in roles)
            )
        return current_user

    return _check


get_current_admin_user = require_roles(UserRole.ADMIN)
get_current_staff_user = require_roles(UserRole.STAFF, UserRole.ADMIN)
