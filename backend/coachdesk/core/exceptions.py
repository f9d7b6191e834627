# backend/coachdesk/core/exceptions.py
"""
Domain-specific exceptions for the coachdesk booking core.

These exceptions carry business-focused messages and a stable error code
so the API layer can translate them into HTTP responses without knowing
which service raised them.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status

HTTP_422_UNPROCESSABLE: int = getattr(status, "HTTP_422_UNPROCESSABLE_CONTENT", 422)


class DomainException(Exception):
    """Base exception for all domain-specific errors."""

    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR

    def __init__(
        self,
        message: str,
        code: Optional[str] = None,
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        self.message = message
        self.code = code or self.__class__.__name__
        self.details = details or {}
        super().__init__(self.message)

    def headers(self) -> Optional[Dict[str, str]]:
        return None

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
            headers=self.headers(),
        )


class ValidationException(DomainException):
    """Raised when business validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated."""

    status_code = HTTP_422_UNPROCESSABLE


class UnauthorizedException(DomainException):
    """Raised when the caller is not authenticated."""

    status_code = status.HTTP_401_UNAUTHORIZED


class RateLimitedException(DomainException):
    """Raised when a caller exceeds its request budget."""

    status_code = status.HTTP_429_TOO_MANY_REQUESTS

    def __init__(
        self,
        retry_after_seconds: float,
        *,
        limit: Optional[int] = None,
        bucket: str = "default",
    ) -> None:
        self.retry_after_seconds = max(0.0, float(retry_after_seconds))
        self.limit = limit
        super().__init__(
            message="Too many requests. Please try again later.",
            code="RATE_LIMITED",
            details={"bucket": bucket, "retry_after_seconds": int(self.retry_after_seconds + 0.999)},
        )

    def headers(self) -> Optional[Dict[str, str]]:
        headers = {"Retry-After": str(int(self.retry_after_seconds + 0.999))}
        if self.limit is not None:
            headers["X-RateLimit-Limit"] = str(self.limit)
            headers["X-RateLimit-Remaining"] = "0"
        return headers


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


# Specific business exceptions


class SlotConflictException(ConflictException):
    """Raised when the requested slot is no longer free."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message
            or "This time slot is no longer available. Please pick another slot.",
            code="SLOT_CONFLICT",
            details=details or {},
        )


class PersistenceException(ServiceException):
    """Raised when a write could not be committed. Retrying is safe."""

    def __init__(self, message: Optional[str] = None, *, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=message or "We could not save your booking. Please try again.",
            code="PERSISTENCE_FAILURE",
            details=details or {},
        )


class PaymentNotLinkedException(ServiceException):
    """Raised when a payment event arrives before its payment is linked; redelivery will apply it."""

    status_code = status.HTTP_503_SERVICE_UNAVAILABLE

    def __init__(self, external_ref: str):
        super().__init__(
            message="No payment is linked to this reference yet. Retry later.",
            code="PAYMENT_NOT_LINKED",
            details={"external_ref": external_ref},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    Used when data access operations fail, such as connection issues,
    query failures, or constraint violations.
    """
