# backend/app/schemas/booking.py
"""
Booking schemas for the marketplace payments core.

A booking request carries the authorized PaymentIntent id; the server
re-validates the slot and the authorization before anything is written.
"""

from datetime import date, time
import re
from typing import TYPE_CHECKING, Optional

from pydantic import Field, field_validator

from .base import Money, StandardizedModel
from ._strict_base import StrictRequestModel

if TYPE_CHECKING:
    from ..models.booking import Booking

DATE_ONLY_REGEX = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _ensure_date_only(value: object, field_name: str) -> object:
    if isinstance(value, str):
        candidate = value.strip()
        if not DATE_ONLY_REGEX.fullmatch(candidate):
            raise ValueError(f"{field_name} must be a YYYY-MM-DD date-only string")
        return candidate
    return value


def _parse_clock_string(value: object) -> object:
    if isinstance(value, str):
        try:
            parts = [int(p) for p in value.strip().split(":")]
            if len(parts) == 2:
                return time(parts[0], parts[1])
            if len(parts) == 3:
                return time(parts[0], parts[1], parts[2])
        except ValueError:
            pass
        raise ValueError(f"Invalid time format: {value}. Expected HH:MM format.")
    return value


class BookingCreate(StrictRequestModel):
    """
    Confirm a booking against an existing payment authorization.

    end_time is not accepted; it is derived from the service duration.
    """

    service_id: str = Field(..., description="Provider service being booked")
    provider_id: str = Field(..., description="Provider to book")
    customer_id: str = Field(..., description="Customer making the booking")
    booking_date: date = Field(..., description="Date of the booking")
    start_time: time = Field(..., description="Start time (HH:MM)")
    customer_notes: Optional[str] = Field(None, max_length=1000)
    service_address: Optional[str] = Field(None, max_length=500)
    payment_intent_id: str = Field(..., min_length=1, description="Authorized Stripe PaymentIntent")

    @field_validator("booking_date", mode="before")
    @classmethod
    def _enforce_date_only(cls, v: object) -> object:
        return _ensure_date_only(v, "booking_date")

    @field_validator("start_time", mode="before")
    @classmethod
    def parse_time_string(cls, v: object) -> object:
        """Convert time strings to time objects."""
        return _parse_clock_string(v)


class BookingActionRequest(StrictRequestModel):
    """Optional reason for decline/cancel."""

    reason: Optional[str] = Field(None, max_length=500)


class BookingCompleteRequest(StrictRequestModel):
    booking_id: str = Field(..., alias="bookingId", min_length=1)


class BookingSummary(StandardizedModel):
    id: str
    booking_date: date
    start_time: str
    end_time: str
    total_amount: Money
    status: str
    payment_status: str

    @classmethod
    def from_booking(cls, booking: "Booking") -> "BookingSummary":
        return cls(
            id=booking.id,
            booking_date=booking.booking_date,
            start_time=booking.start_time.strftime("%H:%M"),
            end_time=booking.end_time.strftime("%H:%M"),
            total_amount=booking.total_amount,
            status=booking.status,
            payment_status=booking.payment_status,
        )


class BookingEnvelope(StandardizedModel):
    booking: BookingSummary


class SettlementResponse(StandardizedModel):
    """Result of releasing a provider's held funds."""

    success: bool
    transfer_id: Optional[str] = Field(None, alias="transferId")
    amount: Money
    payout_recorded: bool = Field(..., alias="payoutRecorded")
