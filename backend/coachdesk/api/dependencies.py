# backend/coachdesk/api/dependencies.py
"""
Service layer dependencies for dependency injection.

Routes depend on these factories rather than constructing services, so
tests can swap the database session or the event session factory through
``app.dependency_overrides``.
"""

import hmac
import logging
from typing import Optional

from fastapi import Depends, Header
from sqlalchemy.orm import Session, sessionmaker

from ..core.config import settings
from ..core.exceptions import ServiceException, UnauthorizedException
from ..database import SessionLocal, get_db
from ..services.availability_exception_service import AvailabilityExceptionService
from ..services.availability_service import AvailabilityService
from ..services.payment_reconciliation_service import PaymentReconciliationService
from ..services.reservation_service import ReservationService
from ..services.stripe_service import StripeWebhookVerifier

logger = logging.getLogger(__name__)


def get_session_factory() -> sessionmaker:
    """Session factory used by post-response event drains."""
    return SessionLocal


def get_availability_service(db: Session = Depends(get_db)) -> AvailabilityService:
    return AvailabilityService(db)


def get_availability_exception_service(
    db: Session = Depends(get_db),
) -> AvailabilityExceptionService:
    return AvailabilityExceptionService(db)


def get_reservation_service(db: Session = Depends(get_db)) -> ReservationService:
    return ReservationService(db)


def get_payment_reconciliation_service(
    db: Session = Depends(get_db),
) -> PaymentReconciliationService:
    return PaymentReconciliationService(db)


def get_stripe_webhook_verifier() -> StripeWebhookVerifier:
    return StripeWebhookVerifier()


def require_admin(x_admin_token: Optional[str] = Header(None, alias="X-Admin-Token")) -> None:
    """
    Check the shared admin token.

    Raises:
        ServiceException: no admin token configured (admin API disabled)
        UnauthorizedException: header missing or wrong
    """
    if settings.admin_api_token is None:
        raise ServiceException("Admin API is not configured", code="ADMIN_NOT_CONFIGURED")
    expected = settings.admin_api_token.get_secret_value()
    if not x_admin_token or not hmac.compare_digest(x_admin_token, expected):
        logger.warning("Rejected admin request with invalid token")
        raise UnauthorizedException("Invalid admin token", code="ADMIN_UNAUTHORIZED")
