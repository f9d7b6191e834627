"""Payment linkage persistence."""

from typing import Optional

from sqlalchemy import or_
from sqlalchemy.orm import Session

from ..models.payment import Payment
from .base_repository import BaseRepository


class PaymentRepository(BaseRepository[Payment]):
    def __init__(self, db: Session):
        super().__init__(db, Payment)

    def find_by_external_ref(self, external_ref: str) -> Optional[Payment]:
        """Look up by either Stripe identifier (payment intent or checkout session)."""
        query = self._build_query().filter(
            or_(
                Payment.stripe_payment_id == external_ref,
                Payment.stripe_session_id == external_ref,
            )
        )
        return query.first()
