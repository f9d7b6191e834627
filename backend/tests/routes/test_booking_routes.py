"""Public booking API, end to end over HTTP."""

import pytest

from coachdesk.main import app
from coachdesk.ratelimit.limiter import InMemoryRateStore, Policy, RateLimiter
from tests._utils.booking_seed import FRIEND_CODE

SLOTS_URL = "/api/v1/booking/available-slots"
RESERVE_URL = "/api/v1/booking/reservations"
FRIEND_URL = "/api/v1/booking/friend-code"
NINE_AM = "2030-01-07T14:00:00+00:00"
TEN_AM = "2030-01-07T15:00:00+00:00"


def reservation_body(slot=NINE_AM, **overrides):
    body = {
        "slot": slot,
        "session_type": "vod-review",
        "email": "player@example.com",
        "discord_tag": "player#1234",
        "rank": "Diamond",
        "role": "Support",
        "hero": "Ana",
        "replay_code": "ABC123",
    }
    body.update(overrides)
    return body


def list_slots(client, session_type="vod-review"):
    response = client.get(SLOTS_URL, params={"date": "2030-01-07", "sessionType": session_type})
    assert response.status_code == 200
    return response.json()


@pytest.fixture
def seeded_rule(client, admin_headers):
    response = client.post(
        "/api/v1/admin/availability",
        json={
            "day_of_week": 1,
            "start_time": "9:00",
            "end_time": "12:00",
            "slot_duration": 60,
            "session_type": "vod-review",
        },
        headers=admin_headers,
    )
    assert response.status_code == 201
    return response.json()


class TestAvailableSlots:
    def test_lists_monday_slots(self, client, seeded_rule):
        data = list_slots(client)

        assert data["reason"] is None
        assert data["slots"] == [
            {"datetime": NINE_AM, "time": "9:00 AM", "date": "2030-01-07"},
            {"datetime": TEN_AM, "time": "10:00 AM", "date": "2030-01-07"},
            {"datetime": "2030-01-07T16:00:00+00:00", "time": "11:00 AM", "date": "2030-01-07"},
        ]

    def test_empty_listing_explains_why(self, client, seeded_rule):
        data = list_slots(client, "live-coaching")

        assert data["slots"] == []
        assert data["reason"] == "no_rules_configured"
        assert data["message"]

    def test_unsupported_session_type(self, client):
        response = client.get(SLOTS_URL, params={"date": "2030-01-07", "sessionType": "review-async"})

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "UNSUPPORTED_SESSION_TYPE"

    def test_date_is_required(self, client):
        response = client.get(SLOTS_URL, params={"sessionType": "vod-review"})

        assert response.status_code == 422


class TestReservations:
    def test_reserve_then_slot_disappears(self, client, seeded_rule):
        response = client.post(RESERVE_URL, json=reservation_body())

        assert response.status_code == 201
        data = response.json()
        assert data["status"] == "PENDING"
        assert data["awaiting_payment"] is True
        assert [s["datetime"] for s in list_slots(client)["slots"]] == [
            TEN_AM,
            "2030-01-07T16:00:00+00:00",
        ]

        booking = client.get(f"{RESERVE_URL}/{data['booking_id']}")
        assert booking.status_code == 200
        assert booking.json()["status"] == "PENDING"
        assert booking.json()["exception_id"] is not None

    def test_same_slot_twice_conflicts(self, client, seeded_rule):
        assert client.post(RESERVE_URL, json=reservation_body()).status_code == 201

        response = client.post(RESERVE_URL, json=reservation_body(email="other@example.com"))

        assert response.status_code == 409
        assert response.json()["detail"]["code"] == "SLOT_CONFLICT"

    def test_offset_is_required(self, client, seeded_rule):
        response = client.post(RESERVE_URL, json=reservation_body(slot="2030-01-07T09:00:00"))

        assert response.status_code == 422

    def test_unknown_fields_are_rejected(self, client, seeded_rule):
        response = client.post(RESERVE_URL, json=reservation_body(price=0))

        assert response.status_code == 422

    def test_friend_code_confirms(self, client, seeded_rule):
        response = client.post(FRIEND_URL, json=reservation_body(friend_code=FRIEND_CODE))

        assert response.status_code == 201
        assert response.json()["status"] == "CONFIRMED"
        assert response.json()["awaiting_payment"] is False

    def test_invalid_friend_code(self, client, seeded_rule):
        response = client.post(FRIEND_URL, json=reservation_body(friend_code="nope"))

        assert response.status_code == 400
        assert response.json()["detail"]["code"] == "INVALID_FRIEND_CODE"
        assert len(list_slots(client)["slots"]) == 3

    def test_checkout_links_payment(self, client, seeded_rule):
        booking_id = client.post(RESERVE_URL, json=reservation_body()).json()["booking_id"]

        response = client.post(
            f"{RESERVE_URL}/{booking_id}/checkout", json={"stripe_session_id": "cs_test_1"}
        )

        assert response.status_code == 201
        assert response.json()["status"] == "PENDING"
        assert response.json()["amount"] == 4000

    def test_unknown_reservation(self, client):
        response = client.get(f"{RESERVE_URL}/01HZZZZZZZZZZZZZZZZZZZZZZZ")

        assert response.status_code == 404

    def test_malformed_reservation_id(self, client):
        assert client.get(f"{RESERVE_URL}/not-a-ulid").status_code == 422


def test_reservations_are_rate_limited(client):
    app.state.rate_limiter = RateLimiter(
        InMemoryRateStore(),
        {"reservation": Policy(rate_per_min=6, burst=3), "friend_code": Policy(5 / 60, 4)},
    )
    # No rules configured, so every allowed attempt ends in a slot conflict
    statuses = [client.post(RESERVE_URL, json=reservation_body()).status_code for _ in range(5)]

    assert statuses == [409, 409, 409, 409, 429]
    blocked = client.post(RESERVE_URL, json=reservation_body())
    assert blocked.headers["Retry-After"] in {"9", "10"}
    assert blocked.json()["detail"]["code"] == "RATE_LIMITED"
