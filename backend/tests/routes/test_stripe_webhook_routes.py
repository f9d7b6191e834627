"""Signed Stripe deliveries driving the reservation through payment."""

import pytest

from tests._utils.booking_seed import signed_stripe_payload, stripe_event

WEBHOOK_URL = "/api/v1/webhooks/stripe"
RESERVE_URL = "/api/v1/booking/reservations"
NINE_AM = "2030-01-07T14:00:00+00:00"


def deliver(client, event, **kwargs):
    payload, signature = signed_stripe_payload(event, **kwargs)
    return client.post(
        WEBHOOK_URL,
        content=payload,
        headers={"stripe-signature": signature, "content-type": "application/json"},
    )


def listed(client):
    response = client.get(
        "/api/v1/booking/available-slots", params={"date": "2030-01-07", "sessionType": "vod-review"}
    )
    return [s["datetime"] for s in response.json()["slots"]]


@pytest.fixture
def pending_booking(client, admin_headers):
    client.post(
        "/api/v1/admin/availability",
        json={"day_of_week": 1, "start_time": "09:00", "end_time": "12:00", "session_type": "vod-review"},
        headers=admin_headers,
    )
    booking = client.post(
        RESERVE_URL,
        json={"slot": NINE_AM, "session_type": "vod-review", "email": "player@example.com"},
    ).json()
    checkout = client.post(
        f"{RESERVE_URL}/{booking['booking_id']}/checkout", json={"stripe_session_id": "cs_test_1"}
    )
    assert checkout.status_code == 201
    return booking["booking_id"]


def booking_status(client, booking_id):
    return client.get(f"{RESERVE_URL}/{booking_id}").json()["status"]


def test_checkout_completed_then_payment_succeeded(client, pending_booking):
    completed = deliver(
        client,
        stripe_event(
            "evt_1", "checkout.session.completed", {"id": "cs_test_1", "payment_intent": "pi_1"}
        ),
    )
    assert completed.status_code == 200
    assert completed.json()["payment_status"] == "PROCESSING"
    assert booking_status(client, pending_booking) == "PENDING"

    succeeded = deliver(client, stripe_event("evt_2", "payment_intent.succeeded", {"id": "pi_1"}))

    assert succeeded.status_code == 200
    assert succeeded.json()["status"] == "success"
    assert succeeded.json()["booking_status"] == "CONFIRMED"
    assert booking_status(client, pending_booking) == "CONFIRMED"


def test_redelivery_is_acknowledged(client, pending_booking):
    event = stripe_event("evt_1", "payment_intent.succeeded", {"id": "cs_test_1"})
    deliver(client, event)

    again = deliver(client, event)

    assert again.status_code == 200
    assert again.json()["status"] == "duplicate"


def test_payment_failure_frees_the_slot(client, pending_booking):
    assert NINE_AM not in listed(client)

    response = deliver(
        client, stripe_event("evt_1", "payment_intent.payment_failed", {"id": "cs_test_1"})
    )

    assert response.json()["booking_status"] == "CANCELLED"
    assert NINE_AM in listed(client)


def test_intent_event_before_checkout_link_is_retried(client, pending_booking):
    early = stripe_event("evt_2", "payment_intent.succeeded", {"id": "pi_1"})

    first = deliver(client, early)

    assert first.status_code == 503
    assert first.json()["detail"]["code"] == "PAYMENT_NOT_LINKED"
    assert booking_status(client, pending_booking) == "PENDING"

    deliver(
        client,
        stripe_event(
            "evt_1", "checkout.session.completed", {"id": "cs_test_1", "payment_intent": "pi_1"}
        ),
    )
    retried = deliver(client, early)

    assert retried.status_code == 200
    assert retried.json()["booking_status"] == "CONFIRMED"
    assert booking_status(client, pending_booking) == "CONFIRMED"


def test_unrelated_events_are_ignored(client):
    response = deliver(client, stripe_event("evt_1", "invoice.paid", {"id": "in_1"}))

    assert response.status_code == 200
    assert response.json() == {
        "status": "ignored",
        "event_type": "invoice.paid",
        "payment_id": None,
        "outcome": None,
        "changed": None,
        "payment_status": None,
        "booking_id": None,
        "booking_status": None,
    }


def test_bad_signature_is_rejected(client):
    response = deliver(
        client, stripe_event("evt_1", "payment_intent.succeeded", {"id": "pi_1"}), secret="whsec_wrong"
    )

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "INVALID_SIGNATURE"


def test_missing_signature_is_rejected(client):
    response = client.post(WEBHOOK_URL, content=b"{}")

    assert response.status_code == 400
    assert response.json()["detail"]["code"] == "MISSING_SIGNATURE"


def test_unconfigured_secret(client, test_settings, monkeypatch):
    monkeypatch.setattr(test_settings, "stripe_webhook_secret", None)

    response = deliver(client, stripe_event("evt_1", "invoice.paid", {"id": "in_1"}))

    assert response.status_code == 500
