"""
Database models for the marketplace payments core.

Importing this package registers every table on Base.metadata:
- Bookings (escrow ledger)
- Provider catalog, schedule and blackout ranges
- Stripe mirrors and audit rows
"""

from .booking import Booking
from .payment import (
    ConnectedAccount,
    Payment,
    PaymentIntentRecord,
    ProviderPayout,
    StripeCustomer,
)
from .provider import ProviderBlackout, ProviderProfile, ProviderSchedule, ProviderService

__all__ = [
    "Booking",
    "ConnectedAccount",
    "Payment",
    "PaymentIntentRecord",
    "ProviderBlackout",
    "ProviderPayout",
    "ProviderProfile",
    "ProviderSchedule",
    "ProviderService",
    "StripeCustomer",
]
