# backend/coachdesk/repositories/factory.py
"""
Repository Factory.

Centralizes repository creation so services get consistently initialized
repositories and tests can swap implementations in one place.
"""

from sqlalchemy.orm import Session

from .availability_exception_repository import AvailabilityExceptionRepository
from .availability_rule_repository import AvailabilityRuleRepository
from .booking_repository import BookingRepository
from .job_repository import JobRepository
from .payment_repository import PaymentRepository
from .submission_repository import SubmissionRepository
from .webhook_event_repository import WebhookEventRepository


class RepositoryFactory:
    """Factory class for creating repository instances."""

    @staticmethod
    def create_availability_rule_repository(db: Session) -> AvailabilityRuleRepository:
        return AvailabilityRuleRepository(db)

    @staticmethod
    def create_availability_exception_repository(db: Session) -> AvailabilityExceptionRepository:
        return AvailabilityExceptionRepository(db)

    @staticmethod
    def create_booking_repository(db: Session) -> BookingRepository:
        return BookingRepository(db)

    @staticmethod
    def create_submission_repository(db: Session) -> SubmissionRepository:
        return SubmissionRepository(db)

    @staticmethod
    def create_payment_repository(db: Session) -> PaymentRepository:
        return PaymentRepository(db)

    @staticmethod
    def create_webhook_event_repository(db: Session) -> WebhookEventRepository:
        return WebhookEventRepository(db)

    @staticmethod
    def create_job_repository(db: Session) -> JobRepository:
        return JobRepository(db)
