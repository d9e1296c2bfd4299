# backend/app/schemas/__init__.py
"""
Pydantic schemas for the marketplace payments API.
"""

from .availability import ProviderAvailabilityResponse
from .booking import (
    BookingActionRequest,
    BookingCompleteRequest,
    BookingCreate,
    BookingEnvelope,
    BookingSummary,
    SettlementResponse,
)
from .payment_schemas import (
    AccountStatusResponse,
    PaymentIntentCreateRequest,
    PaymentIntentResponse,
    WebhookResponse,
)

__all__ = [
    "AccountStatusResponse",
    "BookingActionRequest",
    "BookingCompleteRequest",
    "BookingCreate",
    "BookingEnvelope",
    "BookingSummary",
    "PaymentIntentCreateRequest",
    "PaymentIntentResponse",
    "ProviderAvailabilityResponse",
    "SettlementResponse",
    "WebhookResponse",
]
