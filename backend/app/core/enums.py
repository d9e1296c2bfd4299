# backend/app/core/enums.py
"""
Core enums for the marketplace payments core.

Booking and payment states are closed enums. Status changes go through
BOOKING_STATUS_TRANSITIONS so illegal moves are rejected at the model
boundary instead of trusting callers.
"""

from enum import Enum
from typing import Dict, FrozenSet


class BookingStatus(str, Enum):
    """Booking lifecycle statuses."""

    PENDING = "pending"  # Awaiting provider response
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    DECLINED = "declined"
    EXPIRED = "expired"  # Provider never responded


class PaymentStatus(str, Enum):
    """Money state of a booking, independent of its lifecycle status."""

    PENDING = "pending"
    PAID = "paid"
    FUNDS_HELD_IN_ESCROW = "funds_held_in_escrow"
    PAYOUT_COMPLETED = "payout_completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class SlotRejectionReason(str, Enum):
    """Why the availability validator refused a window."""

    PROVIDER_UNAVAILABLE_DAY = "provider_unavailable_day"
    BLACKOUT_DATE = "blackout_date"
    SLOT_CONFLICT = "slot_conflict"
    OUTSIDE_WORKING_HOURS = "outside_working_hours"


BOOKING_STATUS_TRANSITIONS: Dict[BookingStatus, FrozenSet[BookingStatus]] = {
    BookingStatus.PENDING: frozenset(
        {
            BookingStatus.CONFIRMED,
            BookingStatus.DECLINED,
            BookingStatus.CANCELLED,
            BookingStatus.EXPIRED,
        }
    ),
    BookingStatus.CONFIRMED: frozenset(
        {BookingStatus.IN_PROGRESS, BookingStatus.COMPLETED, BookingStatus.CANCELLED}
    ),
    BookingStatus.IN_PROGRESS: frozenset({BookingStatus.COMPLETED, BookingStatus.CANCELLED}),
    BookingStatus.COMPLETED: frozenset(),
    BookingStatus.CANCELLED: frozenset(),
    BookingStatus.DECLINED: frozenset(),
    BookingStatus.EXPIRED: frozenset(),
}

# Statuses that occupy a provider's time for overlap checks
BLOCKING_BOOKING_STATUSES: FrozenSet[BookingStatus] = frozenset(
    {BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS}
)

SETTLEABLE_BOOKING_STATUSES: FrozenSet[BookingStatus] = frozenset(
    {BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS}
)

SETTLEABLE_PAYMENT_STATUSES: FrozenSet[PaymentStatus] = frozenset(
    {PaymentStatus.FUNDS_HELD_IN_ESCROW, PaymentStatus.PAID}
)

# Stripe PaymentIntent statuses meaning funds are reserved or collected
AUTHORIZED_INTENT_STATUSES: FrozenSet[str] = frozenset(
    {"succeeded", "requires_capture", "partially_captured"}
)

# Statuses where the hold has already been captured onto a charge
CAPTURED_INTENT_STATUSES: FrozenSet[str] = frozenset({"succeeded", "partially_captured"})


def can_transition(current: BookingStatus | str, requested: BookingStatus | str) -> bool:
    return BookingStatus(requested) in BOOKING_STATUS_TRANSITIONS[BookingStatus(current)]
