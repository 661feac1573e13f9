"""
API tests for events, registration and attendance management.
"""

import asyncio
import uuid
from datetime import timedelta

import pytest

from community_events.models import UserRole
from community_events.models.base import utcnow
from community_events.services import notification_queue as jobs
from community_events.services.registration_service import RegistrationService
from community_events.utils.exceptions import TransactionTimeoutError

API = "/api/v1"


def event_body(**overrides):
    start = utcnow() + timedelta(days=5)
    body = {
        "title": "Board Game Night",
        "description": "Bring your favourite game",
        "location": "Library Room 2",
        "category": "Social",
        "start_time": start.isoformat(),
        "end_time": (start + timedelta(hours=3)).isoformat(),
        "capacity": 12,
    }
    body.update(overrides)
    return body


class TestEventsAPI:
    async def test_staff_creates_event(self, client, queue, make_user, auth_headers):
        staff = await make_user(role=UserRole.STAFF)

        response = await client.post(f"{API}/events", json=event_body(), headers=auth_headers(staff))

        assert response.status_code == 201
        data = response.json()
        assert data["organizer_id"] == str(staff.id)
        assert data["attendee_count"] == 0
        assert data["version"] == 1
        assert queue.of_type(jobs.EVENT_REMINDERS) == [{"event_id": data["id"]}]

    async def test_regular_user_cannot_create_event(self, client, make_user, auth_headers):
        user = await make_user()

        response = await client.post(f"{API}/events", json=event_body(), headers=auth_headers(user))

        assert response.status_code == 403
        assert response.json()["error"]["code"] == "FORBIDDEN"

    async def test_create_requires_authentication(self, client):
        response = await client.post(f"{API}/events", json=event_body())
        assert response.status_code == 401

    async def test_invalid_event_body(self, client, make_user, auth_headers):
        staff = await make_user(role=UserRole.STAFF)
        start = utcnow() + timedelta(days=1)

        response = await client.post(
            f"{API}/events",
            json=event_body(start_time=start.isoformat(), end_time=(start - timedelta(hours=1)).isoformat()),
            headers=auth_headers(staff)
        )

        assert response.status_code == 422

    async def test_list_and_get_events(self, client, make_event):
        event = await make_event(capacity=4)
        await make_event(is_published=False)

        listing = await client.get(f"{API}/events")
        assert listing.status_code == 200
        assert [e["id"] for e in listing.json()["events"]] == [str(event.id)]

        detail = await client.get(f"{API}/events/{event.id}")
        assert detail.status_code == 200
        assert detail.json()["capacity"] == 4
        assert detail.json()["is_registered"] is None

    async def test_get_unknown_event(self, client):
        response = await client.get(f"{API}/events/{uuid.uuid4()}")

        assert response.status_code == 404
        body = response.json()
        assert body["error"]["code"] == "NOT_FOUND"
        assert body["error_id"]
        assert body["timestamp"]

    async def test_only_organizer_or_admin_updates(self, client, make_user, make_event, auth_headers):
        organizer = await make_user(role=UserRole.STAFF)
        other_staff = await make_user(role=UserRole.STAFF)
        admin = await make_user(role=UserRole.ADMIN)
        event = await make_event(organizer=organizer)

        response = await client.put(
            f"{API}/events/{event.id}", json={"title": "Hijacked"}, headers=auth_headers(other_staff)
        )
        assert response.status_code == 403

        response = await client.put(
            f"{API}/events/{event.id}", json={"title": "Renamed by organizer"}, headers=auth_headers(organizer)
        )
        assert response.status_code == 200
        assert response.json()["title"] == "Renamed by organizer"

        response = await client.put(
            f"{API}/events/{event.id}", json={"is_cancelled": True}, headers=auth_headers(admin)
        )
        assert response.status_code == 200
        assert response.json()["is_cancelled"] is True

    async def test_update_rejects_null_required_field(self, client, make_user, make_event, auth_headers):
        organizer = await make_user(role=UserRole.STAFF)
        event = await make_event(organizer=organizer)

        response = await client.put(
            f"{API}/events/{event.id}", json={"location": None}, headers=auth_headers(organizer)
        )

        assert response.status_code == 422

    async def test_delete_event(self, client, make_user, make_event, auth_headers):
        organizer = await make_user(role=UserRole.STAFF)
        event = await make_event(organizer=organizer)

        response = await client.delete(f"{API}/events/{event.id}", headers=auth_headers(organizer))
        assert response.status_code == 204

        response = await client.get(f"{API}/events/{event.id}")
        assert response.status_code == 404


class TestRegistrationAPI:
    async def test_register_and_status(self, client, make_user, make_event, auth_headers):
        event = await make_event(capacity=2)
        user = await make_user()
        headers = auth_headers(user)

        response = await client.post(
            f"{API}/events/{event.id}/register", json={"notes": "Wheelchair access"}, headers=headers
        )
        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "confirmed"
        assert data["notes"] == "Wheelchair access"
        assert data["user"]["display_name"] == user.display_name

        status = await client.get(f"{API}/events/{event.id}/registration", headers=headers)
        assert status.json() == {"event_id": str(event.id), "is_registered": True}

        detail = await client.get(f"{API}/events/{event.id}", headers=headers)
        assert detail.json()["is_registered"] is True
        assert detail.json()["attendee_count"] == 1

    async def test_register_without_body(self, client, make_user, make_event, auth_headers):
        event = await make_event()
        user = await make_user()

        response = await client.post(f"{API}/events/{event.id}/register", headers=auth_headers(user))

        assert response.status_code == 201
        assert response.json()["notes"] is None

    async def test_register_requires_authentication(self, client, make_event):
        event = await make_event()

        response = await client.post(f"{API}/events/{event.id}/register")
        assert response.status_code == 401

    @pytest.mark.parametrize("overrides, code", [
        ({"capacity": 1}, "EVENT_AT_CAPACITY"),
        ({"starts_in": -timedelta(hours=1)}, "EVENT_IN_PAST"),
        ({"is_cancelled": True}, "EVENT_NOT_OPEN"),
    ])
    async def test_register_rejections(self, client, make_user, make_event, auth_headers, overrides, code):
        event = await make_event(**overrides)
        if code == "EVENT_AT_CAPACITY":
            await client.post(f"{API}/events/{event.id}/register", headers=auth_headers(await make_user()))

        response = await client.post(f"{API}/events/{event.id}/register", headers=auth_headers(await make_user()))

        assert response.status_code == 400
        assert response.json()["error"]["code"] == code

    async def test_register_twice(self, client, make_user, make_event, auth_headers):
        event = await make_event()
        headers = auth_headers(await make_user())
        await client.post(f"{API}/events/{event.id}/register", headers=headers)

        response = await client.post(f"{API}/events/{event.id}/register", headers=headers)

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "ALREADY_REGISTERED"

    async def test_register_unknown_event(self, client, make_user, auth_headers):
        response = await client.post(
            f"{API}/events/{uuid.uuid4()}/register", headers=auth_headers(await make_user())
        )
        assert response.status_code == 404

    async def test_concurrent_requests_fill_last_seat_once(self, client, make_user, make_event, auth_headers):
        event = await make_event(capacity=1)
        users = [await make_user() for _ in range(4)]

        responses = await asyncio.gather(*(
            client.post(f"{API}/events/{event.id}/register", headers=auth_headers(user))
            for user in users
        ))

        assert sorted(response.status_code for response in responses) == [201, 400, 400, 400]

    async def test_timeout_returns_503_with_retry_after(self, client, make_user, make_event, auth_headers, monkeypatch):
        event = await make_event()

        async def timed_out(self, event_id, user_id, notes=None):
            raise TransactionTimeoutError("register", 5.0)

        monkeypatch.setattr(RegistrationService, "register", timed_out)

        response = await client.post(f"{API}/events/{event.id}/register", headers=auth_headers(await make_user()))

        assert response.status_code == 503
        assert response.headers["Retry-After"] == "1"
        assert response.json()["error"]["code"] == "TRANSACTION_TIMEOUT"

    async def test_unregister(self, client, queue, make_user, make_event, auth_headers):
        event = await make_event()
        headers = auth_headers(await make_user())
        await client.post(f"{API}/events/{event.id}/register", headers=headers)

        response = await client.delete(f"{API}/events/{event.id}/register", headers=headers)
        assert response.status_code == 200
        assert response.json()["message"] == "Registration cancelled"
        assert len(queue.of_type(jobs.REGISTRATION_CANCELLED)) == 1

        response = await client.delete(f"{API}/events/{event.id}/register", headers=headers)
        assert response.status_code == 404

    async def test_attendee_list_visibility(self, client, make_user, make_event, auth_headers):
        organizer = await make_user(role=UserRole.STAFF)
        event = await make_event(organizer=organizer)
        first, second = await make_user(), await make_user()
        for user in (first, second):
            await client.post(f"{API}/events/{event.id}/register", headers=auth_headers(user))

        response = await client.get(f"{API}/events/{event.id}/attendees", headers=auth_headers(first))
        assert response.status_code == 403

        response = await client.get(f"{API}/events/{event.id}/attendees", headers=auth_headers(organizer))
        assert response.status_code == 200
        data = response.json()
        assert data["total"] == 2
        assert [a["user_id"] for a in data["attendees"]] == [str(first.id), str(second.id)]

    async def test_user_attendance(self, client, make_user, make_event, auth_headers):
        event = await make_event()
        user = await make_user()
        headers = auth_headers(user)
        await client.post(f"{API}/events/{event.id}/register", headers=headers)

        response = await client.get(f"{API}/users/{user.id}/attendance", headers=headers)

        assert response.status_code == 200
        assert [a["event"]["id"] for a in response.json()] == [str(event.id)]


class TestAttendeesAPI:
    async def register(self, client, event, user, auth_headers):
        response = await client.post(f"{API}/events/{event.id}/register", headers=auth_headers(user))
        return response.json()["id"]

    async def test_attendee_can_only_decline(self, client, make_user, make_event, auth_headers):
        event = await make_event()
        user = await make_user()
        attendee_id = await self.register(client, event, user, auth_headers)

        response = await client.put(
            f"{API}/attendees/{attendee_id}", json={"status": "no-show"}, headers=auth_headers(user)
        )
        assert response.status_code == 403

        response = await client.put(
            f"{API}/attendees/{attendee_id}", json={"status": "declined"}, headers=auth_headers(user)
        )
        assert response.status_code == 200
        assert response.json()["status"] == "declined"

    async def test_organizer_checks_in(self, client, make_user, make_event, auth_headers):
        organizer = await make_user(role=UserRole.STAFF)
        event = await make_event(organizer=organizer)
        user = await make_user()
        attendee_id = await self.register(client, event, user, auth_headers)

        response = await client.post(f"{API}/attendees/{attendee_id}/check-in", headers=auth_headers(user))
        assert response.status_code == 403

        response = await client.post(f"{API}/attendees/{attendee_id}/check-in", headers=auth_headers(organizer))
        assert response.status_code == 200
        assert response.json()["checked_in_at"] is not None

    async def test_confirm_over_capacity_rejected(self, client, make_user, make_event, auth_headers):
        organizer = await make_user(role=UserRole.STAFF)
        event = await make_event(organizer=organizer, capacity=1)
        first = await self.register(client, event, await make_user(), auth_headers)
        await client.put(
            f"{API}/attendees/{first}", json={"status": "declined"}, headers=auth_headers(organizer)
        )
        await self.register(client, event, await make_user(), auth_headers)

        response = await client.put(
            f"{API}/attendees/{first}", json={"status": "confirmed"}, headers=auth_headers(organizer)
        )

        assert response.status_code == 400
        assert response.json()["error"]["code"] == "EVENT_AT_CAPACITY"

    async def test_delete_attendance(self, client, make_user, make_event, auth_headers):
        event = await make_event()
        user = await make_user()
        attendee_id = await self.register(client, event, user, auth_headers)

        response = await client.delete(f"{API}/attendees/{attendee_id}", headers=auth_headers(user))
        assert response.status_code == 204

        response = await client.delete(f"{API}/attendees/{attendee_id}", headers=auth_headers(user))
        assert response.status_code == 404
