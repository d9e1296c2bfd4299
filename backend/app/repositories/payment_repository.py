# backend/app/repositories/payment_repository.py
"""
Payment Repository

Data access for Stripe mirrors and payment audit rows:
- Stripe customers
- Connected accounts (cached status flags)
- Payment intent records
- Escrow payment rows
- Provider payout rows
"""

from datetime import datetime, timezone
from decimal import Decimal
import logging
from typing import Any, Dict, List, Optional, cast

from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.payment import (
    ConnectedAccount,
    Payment,
    PaymentIntentRecord,
    ProviderPayout,
    StripeCustomer,
)
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class PaymentRepository(BaseRepository[PaymentIntentRecord]):
    """
    Repository for payment data access.

    The primary model is PaymentIntentRecord; the other payment tables are
    reached through dedicated methods.
    """

    def __init__(self, db: Session):
        super().__init__(db, PaymentIntentRecord)
        self.logger = logging.getLogger(__name__)

    # ========== Customer Management ==========

    def get_customer_by_customer_id(self, customer_id: str) -> Optional[StripeCustomer]:
        try:
            return cast(
                Optional[StripeCustomer],
                self.db.query(StripeCustomer).filter(StripeCustomer.customer_id == customer_id).first(),
            )
        except Exception as e:
            self.logger.error(f"Failed to get customer record: {str(e)}")
            raise RepositoryException(f"Failed to get customer record: {str(e)}")

    def create_customer_record(self, customer_id: str, stripe_customer_id: str) -> StripeCustomer:
        try:
            customer = StripeCustomer(customer_id=customer_id, stripe_customer_id=stripe_customer_id)
            self.db.add(customer)
            self.db.flush()
            return customer
        except Exception as e:
            self.logger.error(f"Failed to create customer record: {str(e)}")
            raise RepositoryException(f"Failed to create customer record: {str(e)}")

    # ========== Connected Account Management ==========

    def get_connected_account_by_provider_id(self, provider_id: str) -> Optional[ConnectedAccount]:
        try:
            return cast(
                Optional[ConnectedAccount],
                self.db.query(ConnectedAccount)
                .filter(ConnectedAccount.provider_id == provider_id)
                .first(),
            )
        except Exception as e:
            self.logger.error(f"Failed to get connected account: {str(e)}")
            raise RepositoryException(f"Failed to get connected account: {str(e)}")

    def find_connected_account(self, stripe_account_id: str) -> Optional[ConnectedAccount]:
        try:
            return cast(
                Optional[ConnectedAccount],
                self.db.query(ConnectedAccount)
                .filter(ConnectedAccount.stripe_account_id == stripe_account_id)
                .first(),
            )
        except Exception as e:
            self.logger.error(f"Failed to get connected account: {str(e)}")
            raise RepositoryException(f"Failed to get connected account: {str(e)}")

    def update_account_status(
        self,
        account: ConnectedAccount,
        *,
        charges_enabled: bool,
        details_submitted: bool,
        requirements: List[str],
    ) -> ConnectedAccount:
        """Write Stripe's live flags into the local cache row."""
        try:
            account.charges_enabled = charges_enabled
            account.details_submitted = details_submitted
            account.onboarding_completed = bool(charges_enabled and details_submitted)
            account.requirements = list(requirements)
            account.last_synced_at = datetime.now(timezone.utc)
            self.db.flush()
            return account
        except Exception as e:
            self.logger.error(f"Failed to update account status: {str(e)}")
            raise RepositoryException(f"Failed to update account status: {str(e)}")

    # ========== Payment Intent Records ==========

    def create_payment_intent_record(
        self,
        *,
        booking_id: str,
        stripe_payment_intent_id: str,
        amount: Decimal,
        currency: str,
        status: str,
        client_secret: Optional[str],
        payment_method_types: List[str],
        intent_metadata: Dict[str, Any],
    ) -> PaymentIntentRecord:
        try:
            record = PaymentIntentRecord(
                booking_id=booking_id,
                stripe_payment_intent_id=stripe_payment_intent_id,
                amount=amount,
                currency=currency,
                status=status,
                client_secret=client_secret,
                payment_method_types=payment_method_types,
                intent_metadata=intent_metadata,
            )
            self.db.add(record)
            self.db.flush()
            return record
        except Exception as e:
            self.logger.error(f"Failed to create payment intent record: {str(e)}")
            raise RepositoryException(f"Failed to create payment intent record: {str(e)}")

    def get_intent_record(self, stripe_payment_intent_id: str) -> Optional[PaymentIntentRecord]:
        return self.find_one_by(stripe_payment_intent_id=stripe_payment_intent_id)

    def update_intent_status(
        self, stripe_payment_intent_id: str, status: str
    ) -> Optional[PaymentIntentRecord]:
        try:
            record = self.get_intent_record(stripe_payment_intent_id)
            if record:
                record.status = status
                self.db.flush()
            return record
        except Exception as e:
            self.logger.error(f"Failed to update payment intent status: {str(e)}")
            raise RepositoryException(f"Failed to update payment intent status: {str(e)}")

    # ========== Escrow Payments ==========

    def create_payment(
        self,
        *,
        booking_id: str,
        customer_id: str,
        provider_id: str,
        amount: Decimal,
        platform_fee: Decimal,
        provider_amount: Decimal,
        currency: str,
        status: str,
        stripe_payment_intent_id: Optional[str],
    ) -> Payment:
        try:
            payment = Payment(
                booking_id=booking_id,
                customer_id=customer_id,
                provider_id=provider_id,
                amount=amount,
                platform_fee=platform_fee,
                provider_amount=provider_amount,
                currency=currency,
                status=status,
                stripe_payment_intent_id=stripe_payment_intent_id,
            )
            self.db.add(payment)
            self.db.flush()
            return payment
        except Exception as e:
            self.logger.error(f"Failed to create payment record: {str(e)}")
            raise RepositoryException(f"Failed to create payment record: {str(e)}")

    def update_payments_for_booking(self, booking_id: str, status: str) -> int:
        try:
            payments = self.db.query(Payment).filter(Payment.booking_id == booking_id).all()
            for payment in payments:
                payment.status = status
            self.db.flush()
            return len(payments)
        except Exception as e:
            self.logger.error(f"Failed to update payments for booking: {str(e)}")
            raise RepositoryException(f"Failed to update payments: {str(e)}")

    # ========== Payouts ==========

    def record_provider_payout(
        self,
        *,
        booking_id: str,
        provider_id: str,
        amount: Decimal,
        currency: str,
        stripe_transfer_id: str,
        source_charge_id: Optional[str],
    ) -> ProviderPayout:
        try:
            payout = ProviderPayout(
                booking_id=booking_id,
                provider_id=provider_id,
                amount=amount,
                currency=currency,
                stripe_transfer_id=stripe_transfer_id,
                source_charge_id=source_charge_id,
                status="completed",
            )
            self.db.add(payout)
            self.db.flush()
            return payout
        except Exception as e:
            self.logger.error(f"Failed to record provider payout: {str(e)}")
            raise RepositoryException(f"Failed to record provider payout: {str(e)}")
