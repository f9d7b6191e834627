"""
Stripe integration: webhook verification only.

Checkout session creation lives outside this service; here we authenticate
inbound deliveries before the reconciler acts on them.
"""

import json
from typing import Any, Dict, Optional

import stripe

from ..core.config import settings
from ..core.exceptions import ServiceException, ValidationException


class StripeWebhookVerifier:
    def __init__(self, webhook_secret: Optional[str] = None):
        if webhook_secret is None and settings.stripe_webhook_secret is not None:
            webhook_secret = settings.stripe_webhook_secret.get_secret_value()
        self.webhook_secret = webhook_secret

    def construct_event(self, payload: bytes, signature: Optional[str]) -> Dict[str, Any]:
        """
        Verify the Stripe-Signature header and return the decoded event.

        Raises:
            ValidationException: missing or invalid signature, or malformed body
            ServiceException: webhook secret not configured
        """
        if not self.webhook_secret:
            raise ServiceException("Webhook secret not configured", code="WEBHOOK_NOT_CONFIGURED")
        if not signature:
            raise ValidationException("Missing stripe-signature header", code="MISSING_SIGNATURE")
        try:
            stripe.Webhook.construct_event(payload, signature, self.webhook_secret)
        except stripe.SignatureVerificationError:
            raise ValidationException("Invalid webhook signature", code="INVALID_SIGNATURE")
        except ValueError:
            raise ValidationException("Malformed webhook payload", code="INVALID_PAYLOAD")
        try:
            event = json.loads(payload.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError):
            raise ValidationException("Malformed webhook payload", code="INVALID_PAYLOAD")
        if not isinstance(event, dict):
            raise ValidationException("Malformed webhook payload", code="INVALID_PAYLOAD")
        return event
