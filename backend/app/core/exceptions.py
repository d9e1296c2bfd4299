# backend/app/core/exceptions.py
"""
Domain-specific exceptions for the marketplace payments core.

These exceptions provide clear, business-focused error messages
that can be caught and handled appropriately at the API layer.
"""

from typing import Any, Dict, Optional

from fastapi import HTTPException, status


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

    def to_http_exception(self) -> HTTPException:
        """Convert to an HTTPException carrying the error envelope."""
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message,
                "code": self.code,
                "details": self.details,
            },
        )


class ValidationException(DomainException):
    """Raised when request validation fails."""

    status_code = status.HTTP_400_BAD_REQUEST


class NotFoundException(DomainException):
    """Raised when a requested resource is not found."""

    status_code = status.HTTP_404_NOT_FOUND


class ConflictException(DomainException):
    """Raised when there's a conflict with existing data."""

    status_code = status.HTTP_409_CONFLICT


class BusinessRuleException(DomainException):
    """Raised when a business rule is violated. No side effects have occurred."""

    status_code = status.HTTP_400_BAD_REQUEST


class UnauthorizedException(DomainException):
    """Raised when user is not authenticated."""

    status_code = status.HTTP_401_UNAUTHORIZED


class ForbiddenException(DomainException):
    """Raised when user lacks permission for an action."""

    status_code = status.HTTP_403_FORBIDDEN


class ServiceException(DomainException):
    """Raised when a service operation fails."""

    status_code = status.HTTP_500_INTERNAL_SERVER_ERROR

    def to_http_exception(self) -> HTTPException:
        return HTTPException(
            status_code=self.status_code,
            detail={
                "message": self.message or "An error occurred processing your request",
                "code": self.code,
                "details": self.details if self.details else {},
            },
        )


class PaymentProcessorException(DomainException):
    """
    Raised when Stripe rejects or fails a call.

    The processor's own error code is kept so callers can act on it.
    """

    status_code = status.HTTP_502_BAD_GATEWAY

    def __init__(
        self,
        message: str,
        *,
        stripe_code: Optional[str] = None,
        code: str = "PAYMENT_PROCESSOR_ERROR",
        details: Optional[Dict[str, Any]] = None,
    ) -> None:
        merged = dict(details or {})
        if stripe_code:
            merged["stripe_code"] = stripe_code
        super().__init__(message=message, code=code, details=merged)
        self.stripe_code = stripe_code


class PaymentDeclinedException(PaymentProcessorException):
    """Raised when the customer's payment method is declined."""

    status_code = status.HTTP_402_PAYMENT_REQUIRED

    def __init__(self, message: str, *, stripe_code: Optional[str] = None) -> None:
        super().__init__(message, stripe_code=stripe_code, code="PAYMENT_DECLINED")


# Specific business exceptions


class BookingConflictException(ConflictException):
    """Raised when a booking conflicts with existing bookings."""

    def __init__(
        self,
        message: Optional[str] = None,
        *,
        details: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(
            message=message or "This time slot conflicts with an existing booking",
            code="BOOKING_CONFLICT",
            details=details or {},
        )


class ServiceNotFoundException(NotFoundException):
    def __init__(self, service_id: str, provider_id: str):
        super().__init__(
            message="Service not found for this provider",
            code="SERVICE_NOT_FOUND",
            details={"service_id": service_id, "provider_id": provider_id},
        )


class ServiceInactiveException(BusinessRuleException):
    def __init__(self, service_id: str):
        super().__init__(
            message="Service is not currently available for booking",
            code="SERVICE_INACTIVE",
            details={"service_id": service_id},
        )


class ScheduleNotFoundException(NotFoundException):
    def __init__(self, provider_id: str):
        super().__init__(
            message="Provider has not set up a schedule",
            code="SCHEDULE_NOT_FOUND",
            details={"provider_id": provider_id},
        )


class SlotUnavailableException(BusinessRuleException):
    """Raised when the requested window fails availability validation."""

    MESSAGES = {
        "provider_unavailable_day": "Provider is not available on this day",
        "blackout_date": "Provider is unavailable on this date",
        "slot_conflict": "This time slot is already booked",
        "outside_working_hours": "Requested time is outside the provider's working hours",
    }

    def __init__(self, reason: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(
            message=self.MESSAGES.get(reason, "Time slot is not available"),
            code="SLOT_UNAVAILABLE",
            details={"reason": reason, **(details or {})},
        )
        self.reason = reason


class PaymentMismatchException(BusinessRuleException):
    def __init__(self, mismatched_fields: list[str]):
        super().__init__(
            message="Payment authorization does not match this booking",
            code="PAYMENT_MISMATCH",
            details={"fields": mismatched_fields},
        )


class PaymentNotAuthorizedException(BusinessRuleException):
    def __init__(self, payment_intent_status: str):
        super().__init__(
            message="Payment has not been authorized",
            code="PAYMENT_NOT_AUTHORIZED",
            details={"payment_intent_status": payment_intent_status},
        )


class BookingNotFoundException(NotFoundException):
    def __init__(self, booking_id: str):
        super().__init__(
            message="Booking not found",
            code="BOOKING_NOT_FOUND",
            details={"booking_id": booking_id},
        )


class InvalidBookingStateException(BusinessRuleException):
    def __init__(self, message: str, details: Optional[Dict[str, Any]] = None):
        super().__init__(message=message, code="INVALID_BOOKING_STATE", details=details)


class InvalidStatusTransitionException(BusinessRuleException):
    def __init__(self, current: str, requested: str):
        super().__init__(
            message=f"Cannot change booking status from '{current}' to '{requested}'",
            code="INVALID_STATUS_TRANSITION",
            details={"current_status": current, "requested_status": requested},
        )


class ConnectedAccountMissingException(BusinessRuleException):
    def __init__(self, provider_id: str):
        super().__init__(
            message="Provider has not set up a payout account",
            code="CONNECTED_ACCOUNT_MISSING",
            details={"provider_id": provider_id},
        )


class ConnectedAccountNotReadyException(BusinessRuleException):
    def __init__(self, provider_id: str, requirements: list[str]):
        super().__init__(
            message="Provider payout account setup is incomplete",
            code="CONNECTED_ACCOUNT_NOT_READY",
            details={"provider_id": provider_id, "requirements": requirements},
        )


class RepositoryException(Exception):
    """
    Exception raised for repository layer errors.

    This exception is used when data access operations fail,
    such as database connection issues, query failures, or
    constraint violations.
    """
