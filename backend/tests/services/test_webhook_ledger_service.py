from coachdesk.models.webhook_event import WebhookEvent
from coachdesk.services.webhook_ledger_service import WebhookLedgerService


def test_log_received_returns_existing_row_for_known_event(db):
    ledger = WebhookLedgerService(db)

    first = ledger.log_received(
        source="stripe", event_type="payment_intent.succeeded", payload={"id": "evt_1"}, event_id="evt_1"
    )
    second = ledger.log_received(
        source="stripe", event_type="payment_intent.succeeded", payload={"id": "evt_1"}, event_id="evt_1"
    )

    assert first.id == second.id
    assert db.query(WebhookEvent).count() == 1
    assert not WebhookLedgerService.is_settled(first)


def test_settled_statuses(db):
    ledger = WebhookLedgerService(db)
    event = ledger.log_received(source="stripe", event_type="charge.refunded", payload={}, event_id="evt_2")

    ledger.mark_processing(event)
    assert not WebhookLedgerService.is_settled(event)

    ledger.mark_failed(event, error="boom")
    assert event.status == "failed"
    assert not WebhookLedgerService.is_settled(event)

    ledger.mark_processed(event, related_entity_type="payment", related_entity_id="p1", duration_ms=3)
    assert WebhookLedgerService.is_settled(event)
    assert event.processing_duration_ms == 3


def test_events_without_id_are_always_logged(db):
    ledger = WebhookLedgerService(db)

    ledger.log_received(source="stripe", event_type="ping", payload={})
    ledger.log_received(source="stripe", event_type="ping", payload={})

    assert db.query(WebhookEvent).count() == 2
