"""
Payment models for Stripe integration.

Local mirrors of Stripe objects plus the escrow and payout audit rows.
Amounts here are Decimal major units; Stripe itself is called with cents.
"""

from datetime import datetime
from decimal import Decimal
from typing import TYPE_CHECKING, Any, Dict, List, Optional

import ulid
from sqlalchemy import JSON, Boolean, DateTime, ForeignKey, Numeric, String, func
from sqlalchemy.orm import Mapped, mapped_column, relationship

from app.database import Base

if TYPE_CHECKING:
    from app.models.booking import Booking


class StripeCustomer(Base):
    """Maps customers to their Stripe customer IDs."""

    __tablename__ = "stripe_customers"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    customer_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False)
    stripe_customer_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    def __repr__(self) -> str:
        return f"<StripeCustomer(customer_id={self.customer_id}, stripe_id={self.stripe_customer_id})>"


class ConnectedAccount(Base):
    """
    Provider Stripe Connect account.

    The flags are a cache of Stripe's live record, refreshed by the account
    status service. They are never trusted alone for a payout decision.
    """

    __tablename__ = "connected_accounts"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    provider_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    stripe_account_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    charges_enabled: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    details_submitted: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    onboarding_completed: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)
    requirements: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    last_synced_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    @property
    def setup_complete(self) -> bool:
        return bool(self.charges_enabled and self.details_submitted)

    def __repr__(self) -> str:
        return f"<ConnectedAccount(provider_id={self.provider_id}, completed={self.onboarding_completed})>"


class PaymentIntentRecord(Base):
    """Local mirror of a Stripe PaymentIntent authorization, owned by its booking."""

    __tablename__ = "payment_intents"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(String(26), ForeignKey("bookings.id"), nullable=False, index=True)
    stripe_payment_intent_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    status: Mapped[str] = mapped_column(String(50), nullable=False)
    client_secret: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    payment_method_types: Mapped[List[str]] = mapped_column(JSON, nullable=False, default=list)
    intent_metadata: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    booking: Mapped["Booking"] = relationship("Booking", back_populates="payment_intent_record")

    def __repr__(self) -> str:
        return f"<PaymentIntentRecord(booking_id={self.booking_id}, amount={self.amount}, status={self.status})>"


class Payment(Base):
    """Audit row of money held in escrow for a booking."""

    __tablename__ = "payments"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(String(26), ForeignKey("bookings.id"), nullable=False, index=True)
    customer_id: Mapped[str] = mapped_column(String(64), nullable=False)
    provider_id: Mapped[str] = mapped_column(String(64), nullable=False)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    platform_fee: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    provider_amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    status: Mapped[str] = mapped_column(String(30), nullable=False)
    stripe_payment_intent_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True, index=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    booking: Mapped["Booking"] = relationship("Booking", back_populates="payments")

    def __repr__(self) -> str:
        return f"<Payment(booking_id={self.booking_id}, amount={self.amount}, status={self.status})>"


class ProviderPayout(Base):
    """Audit row written after a settlement transfer succeeds."""

    __tablename__ = "provider_payouts"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    booking_id: Mapped[str] = mapped_column(String(26), ForeignKey("bookings.id"), nullable=False, index=True)
    provider_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    amount: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False)
    currency: Mapped[str] = mapped_column(String(3), nullable=False, default="usd")
    stripe_transfer_id: Mapped[str] = mapped_column(String(255), unique=True, nullable=False)
    source_charge_id: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    status: Mapped[str] = mapped_column(String(30), nullable=False, default="completed")

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    booking: Mapped["Booking"] = relationship("Booking", back_populates="payouts")

    def __repr__(self) -> str:
        return f"<ProviderPayout(booking_id={self.booking_id}, amount={self.amount}, transfer={self.stripe_transfer_id})>"
