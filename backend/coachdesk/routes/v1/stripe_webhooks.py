"""
Stripe Webhook Endpoint

Verifies the Stripe-Signature header, then hands the event to the payment
reconciler. Redelivered events are acknowledged without reprocessing and
events for unknown checkout sessions are acknowledged as ignored. A payment
event that overtakes its checkout link is answered with 503 so Stripe retries.
"""

import asyncio
import logging
from typing import NoReturn

from fastapi import APIRouter, BackgroundTasks, Depends, HTTPException, Request, status
from sqlalchemy.orm import sessionmaker

from ...api.dependencies import (
    get_payment_reconciliation_service,
    get_session_factory,
    get_stripe_webhook_verifier,
)
from ...core.exceptions import DomainException
from ...schemas.payment import WebhookResponse
from ...services.payment_reconciliation_service import PaymentReconciliationService
from ...services.stripe_service import StripeWebhookVerifier
from ...tasks.event_worker import drain_events

logger = logging.getLogger(__name__)

router = APIRouter(tags=["stripe-webhooks"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post("", response_model=WebhookResponse)
async def handle_stripe_webhook(
    request: Request,
    background_tasks: BackgroundTasks,
    verifier: StripeWebhookVerifier = Depends(get_stripe_webhook_verifier),
    reconciler: PaymentReconciliationService = Depends(get_payment_reconciliation_service),
    session_factory: sessionmaker = Depends(get_session_factory),
) -> WebhookResponse:
    """
    Handle Stripe payment events.

    Processes:
    - checkout.session.completed / checkout.session.expired
    - payment_intent.succeeded / payment_intent.payment_failed
    - charge.refunded

    Raises:
        HTTPException: 400 on a bad signature, 503 when the payment is not linked yet,
            500 when processing fails (Stripe retries both)
    """
    payload = await request.body()
    signature = request.headers.get("stripe-signature")

    try:
        event = verifier.construct_event(payload, signature)
    except DomainException as e:
        logger.warning(f"Rejected Stripe webhook: {e.code}")
        handle_domain_exception(e)

    event_type = event.get("type", "")
    logger.info(f"Processing Stripe webhook event: {event_type}")

    try:
        result = await asyncio.to_thread(reconciler.handle_stripe_event, event)
    except DomainException as e:
        logger.error(f"Error processing Stripe webhook {event.get('id')}: {e.message}")
        handle_domain_exception(e)

    if result.get("changed"):
        background_tasks.add_task(drain_events, session_factory)
    return WebhookResponse(**result)
