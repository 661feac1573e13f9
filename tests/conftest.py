"""
Shared fixtures.

Tests run against a throwaway SQLite database file; the environment is set
before any application module reads its settings.
"""

import itertools
import os
import tempfile
from datetime import timedelta
from typing import Any, Dict, List, Tuple

_test_dir = tempfile.mkdtemp(prefix="community-events-tests-")
os.environ["DATABASE_URL"] = f"sqlite+aiosqlite:///{os.path.join(_test_dir, 'test.db')}"
os.environ["CACHE_ENABLED"] = "false"
os.environ["SECRET_KEY"] = "test-secret-key"
os.environ["LOG_LEVEL"] = "WARNING"
os.environ["ENABLE_REQUEST_LOGGING"] = "false"

import pytest
from httpx import ASGITransport, AsyncClient

from community_events import database as database_module
from community_events.config import get_settings
from community_events.database import close_database, get_session_factory, init_database
from community_events.models import Base, Event, User, UserRole
from community_events.models.base import utcnow
from community_events.services.registration_service import RegistrationService
from community_events.utils.auth import create_access_token

get_settings.cache_clear()


class RecordingQueue:
    """Notification queue that keeps jobs in memory."""

    def __init__(self, fail: bool = False):
        self.jobs: List[Tuple[str, Dict[str, Any]]] = []
        self.fail = fail

    async def enqueue(self, job_type: str, payload: Dict[str, Any]) -> None:
        if self.fail:
            raise ConnectionError("broker unavailable")
        self.jobs.append((job_type, payload))

    def of_type(self, job_type: str) -> List[Dict[str, Any]]:
        return [payload for queued_type, payload in self.jobs if queued_type == job_type]


@pytest.fixture
def settings():
    return get_settings()


@pytest.fixture
async def database():
    await init_database()
    try:
        yield database_module.engine
    finally:
        async with database_module.engine.begin() as conn:
            await conn.run_sync(Base.metadata.drop_all)
        await close_database()


@pytest.fixture
async def session(database):
    async with get_session_factory()() as session:
        yield session


@pytest.fixture
def queue():
    return RecordingQueue()


@pytest.fixture
def failing_queue():
    return RecordingQueue(fail=True)


@pytest.fixture
def registration_service(database, settings, queue):
    return RegistrationService(get_session_factory(), settings, queue)


@pytest.fixture
def make_user(session):
    counter = itertools.count(1)

    async def _make_user(role: UserRole = UserRole.USER, **overrides) -> User:
        n = next(counter)
        values = {"email": f"user{n}@example.com", "display_name": f"User {n}", "role": role}
        values.update(overrides)
        user = User(**values)
        session.add(user)
        await session.commit()
        return user

    return _make_user


@pytest.fixture
def make_event(session, make_user):
    counter = itertools.count(1)

    async def _make_event(
        organizer: User = None,
        capacity: int = 0,
        starts_in: timedelta = timedelta(days=7),
        **overrides
    ) -> Event:
        if organizer is None:
            organizer = await make_user(role=UserRole.STAFF)
        start = utcnow() + starts_in
        values = {
            "title": f"Community Meetup {next(counter)}",
            "location": "Community Hall",
            "start_time": start,
            "end_time": start + timedelta(hours=2),
            "capacity": capacity,
            "organizer_id": organizer.id,
        }
        values.update(overrides)
        event = Event(**values)
        session.add(event)
        await session.commit()
        return event

    return _make_event


def _auth_headers(user: User) -> Dict[str, str]:
    token = create_access_token({"sub": str(user.id), "email": user.email, "role": user.role.value})
    return {"Authorization": f"Bearer {token}"}


@pytest.fixture
def auth_headers():
    return _auth_headers


@pytest.fixture
async def client(database, queue):
    from community_events.main import app
    from community_events.utils.dependencies import get_notification_queue

    app.dependency_overrides[get_notification_queue] = lambda: queue
    transport = ASGITransport(app=app)
    async with AsyncClient(transport=transport, base_url="http://test") as test_client:
        yield test_client
    app.dependency_overrides.clear()
