# backend/app/models/booking.py
"""
Booking model for the marketplace.

A booking reserves a provider's time for one service and carries the
escrow split of the authorized payment. Bookings are never deleted; the
status column is the terminal marker.
"""

from datetime import datetime, timezone
import logging
from typing import Any, Optional

from sqlalchemy import (
    Boolean,
    CheckConstraint,
    Column,
    Date,
    DateTime,
    ForeignKey,
    Index,
    Numeric,
    String,
    Text,
    Time,
)
from sqlalchemy.orm import relationship
from sqlalchemy.sql import func
import ulid

from ..core.enums import BookingStatus, PaymentStatus, can_transition
from ..core.exceptions import InvalidStatusTransitionException
from ..database import Base

logger = logging.getLogger(__name__)


def _in_clause(values: Any) -> str:
    return ", ".join(f"'{v.value}'" for v in values)


class Booking(Base):
    """
    One reservation of a provider's time by a customer.

    Money fields are Decimal major units. The authorized total is split into
    amount_held_for_provider and platform_fee_held at creation.
    """

    __tablename__ = "bookings"

    id = Column(String(26), primary_key=True, index=True, default=lambda: str(ulid.ULID()))

    customer_id = Column(String(64), nullable=False, index=True)
    provider_id = Column(String(64), nullable=False)
    service_id = Column(String(26), ForeignKey("provider_services.id"), nullable=False)

    booking_date = Column(Date, nullable=False, index=True)
    start_time = Column(Time, nullable=False)
    end_time = Column(Time, nullable=False)

    status = Column(String(20), nullable=False, default=BookingStatus.PENDING.value, index=True)
    payment_status = Column(
        String(30), nullable=False, default=PaymentStatus.PENDING.value, index=True
    )

    # Escrow split (major units)
    base_amount = Column(Numeric(10, 2), nullable=False)
    platform_fee = Column(Numeric(10, 2), nullable=False)
    total_amount = Column(Numeric(10, 2), nullable=False)
    captured_amount = Column(Numeric(10, 2), nullable=False, default=0)
    amount_held_for_provider = Column(Numeric(10, 2), nullable=False, default=0)
    platform_fee_held = Column(Numeric(10, 2), nullable=False, default=0)

    payment_intent_id = Column(String(255), nullable=True, comment="Stripe payment intent")
    provider_transfer_id = Column(String(255), nullable=True, comment="Stripe transfer to provider")

    auto_confirmed = Column(Boolean, nullable=False, default=False)
    provider_response_deadline = Column(DateTime(timezone=True), nullable=True)

    customer_notes = Column(Text, nullable=True)
    service_address = Column(Text, nullable=True)

    # Timestamps
    created_at = Column(DateTime(timezone=True), server_default=func.now())
    updated_at = Column(DateTime(timezone=True), onupdate=func.now())
    confirmed_at = Column(DateTime(timezone=True), nullable=True)
    completed_at = Column(DateTime(timezone=True), nullable=True)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    declined_at = Column(DateTime(timezone=True), nullable=True)
    provider_paid_at = Column(DateTime(timezone=True), nullable=True)

    cancelled_by_id = Column(String(64), nullable=True)
    cancellation_reason = Column(Text, nullable=True)
    decline_reason = Column(Text, nullable=True)

    service = relationship("ProviderService", backref="bookings")
    payment_intent_record = relationship(
        "PaymentIntentRecord", back_populates="booking", uselist=False
    )
    payments = relationship("Payment", back_populates="booking")
    payouts = relationship("ProviderPayout", back_populates="booking")

    __table_args__ = (
        CheckConstraint(f"status IN ({_in_clause(BookingStatus)})", name="ck_bookings_status"),
        CheckConstraint(
            f"payment_status IN ({_in_clause(PaymentStatus)})",
            name="ck_bookings_payment_status",
        ),
        CheckConstraint("start_time < end_time", name="ck_bookings_time_order"),
        CheckConstraint(
            "ROUND(total_amount - base_amount - platform_fee, 2) = 0",
            name="ck_bookings_total_split",
        ),
        CheckConstraint(
            "ROUND(captured_amount - amount_held_for_provider - platform_fee_held, 2) >= 0",
            name="ck_bookings_held_within_captured",
        ),
        CheckConstraint("base_amount >= 0 AND platform_fee >= 0", name="ck_bookings_amounts"),
        Index("ix_bookings_provider_date_status", "provider_id", "booking_date", "status"),
    )

    def transition_to(self, new_status: BookingStatus) -> None:
        """Move to new_status or raise if the transition table forbids it."""
        current = BookingStatus(self.status)
        requested = BookingStatus(new_status)
        if not can_transition(current, requested):
            raise InvalidStatusTransitionException(current.value, requested.value)
        self.status = requested.value

    def confirm(self) -> None:
        self.transition_to(BookingStatus.CONFIRMED)
        self.confirmed_at = datetime.now(timezone.utc)
        self.provider_response_deadline = None

    def cancel(self, cancelled_by_id: str, reason: Optional[str] = None) -> None:
        self.transition_to(BookingStatus.CANCELLED)
        self.cancelled_at = datetime.now(timezone.utc)
        self.cancelled_by_id = cancelled_by_id
        self.cancellation_reason = reason
        logger.info(f"Booking {self.id} cancelled by {cancelled_by_id}")

    def decline(self, reason: Optional[str] = None) -> None:
        self.transition_to(BookingStatus.DECLINED)
        self.declined_at = datetime.now(timezone.utc)
        self.decline_reason = reason

    def expire(self) -> None:
        self.transition_to(BookingStatus.EXPIRED)

    def complete(self) -> None:
        self.transition_to(BookingStatus.COMPLETED)
        self.completed_at = datetime.now(timezone.utc)

    @property
    def is_pending(self) -> bool:
        return self.status == BookingStatus.PENDING.value

    def to_dict(self) -> dict[str, Any]:
        return {
            "id": self.id,
            "booking_date": self.booking_date.isoformat() if self.booking_date else None,
            "start_time": self.start_time.strftime("%H:%M") if self.start_time else None,
            "end_time": self.end_time.strftime("%H:%M") if self.end_time else None,
            "total_amount": self.total_amount,
            "status": self.status,
            "payment_status": self.payment_status,
        }

    def __repr__(self) -> str:
        return (
            f"<Booking {self.id}: provider={self.provider_id} "
            f"{self.booking_date} {self.start_time}-{self.end_time} status={self.status}>"
        )
