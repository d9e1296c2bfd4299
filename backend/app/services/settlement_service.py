# backend/app/services/settlement_service.py
"""
Settlement Service

Releases a completed booking's escrow: the customer's manual-capture hold is
captured, the provider's held amount is transferred to their connected
account funded by that charge, and the platform keeps its fee.

Ordering matters. Every precondition is checked before Stripe is called,
and nothing about the booking changes until the transfer has succeeded.
After that point the money has moved, so later write failures are logged
and never surfaced as a failed settlement.
"""

from datetime import datetime, timezone
import logging
from typing import Any, Dict, Optional

from sqlalchemy.orm import Session

from ..core.booking_lock import booking_lock_sync, settlement_lock_key
from ..core.config import settings
from ..core.enums import (
    SETTLEABLE_BOOKING_STATUSES,
    SETTLEABLE_PAYMENT_STATUSES,
    PaymentStatus,
)
from ..core.exceptions import (
    BookingConflictException,
    BookingNotFoundException,
    ForbiddenException,
    InvalidBookingStateException,
    PaymentNotAuthorizedException,
    PaymentProcessorException,
)
from ..core.money import to_decimal
from ..models.booking import Booking
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from .account_status_service import AccountStatusService
from .base import BaseService
from .payment_gateway import PaymentGateway, stripe_value

logger = logging.getLogger(__name__)

_SETTLEABLE = {s.value for s in SETTLEABLE_BOOKING_STATUSES}
_SETTLEABLE_PAYMENT = {s.value for s in SETTLEABLE_PAYMENT_STATUSES}


class SettlementService(BaseService):
    """Service that pays providers out of escrow."""

    def __init__(
        self,
        db: Session,
        payment_gateway: Optional[PaymentGateway] = None,
        account_status_service: Optional[AccountStatusService] = None,
    ):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.payment_gateway = payment_gateway or PaymentGateway(db)
        self.account_status_service = account_status_service or AccountStatusService(
            db, payment_gateway=self.payment_gateway
        )

    @BaseService.measure_operation("settle_booking")
    def settle_booking(self, booking_id: str, actor_id: Optional[str] = None) -> Dict[str, Any]:
        """
        Complete a booking and transfer the provider's share.

        Args:
            booking_id: Booking to settle
            actor_id: When given, must be the booking's customer or provider

        Returns:
            {success, transferId, amount, payoutRecorded}; amount in major units

        Raises:
            BookingNotFoundException: Unknown booking
            ForbiddenException: actor_id is not a party to the booking
            InvalidBookingStateException: Status or payment status not settleable
            ConnectedAccountMissingException / ConnectedAccountNotReadyException
            PaymentNotAuthorizedException: The hold was released or never funded
            PaymentProcessorException: Capture or transfer failed, booking unchanged
            BookingConflictException: Another settlement holds the lock
        """
        with booking_lock_sync(settlement_lock_key(booking_id)) as acquired:
            if not acquired:
                raise BookingConflictException(
                    "Settlement for this booking is already in progress",
                    details={"booking_id": booking_id},
                )
            return self._settle_locked(booking_id, actor_id)

    def _settle_locked(self, booking_id: str, actor_id: Optional[str]) -> Dict[str, Any]:
        booking = self.booking_repository.get_for_update(booking_id)
        if not booking:
            raise BookingNotFoundException(booking_id)
        if actor_id is not None and actor_id not in (booking.customer_id, booking.provider_id):
            raise ForbiddenException(
                "Only the customer or provider can complete this booking",
                code="NOT_BOOKING_PARTICIPANT",
            )

        if booking.status not in _SETTLEABLE:
            raise InvalidBookingStateException(
                f"Cannot complete booking with status: {booking.status}",
                details={"status": booking.status},
            )
        if booking.payment_status not in _SETTLEABLE_PAYMENT:
            raise InvalidBookingStateException(
                f"Cannot settle booking with payment status: {booking.payment_status}",
                details={"payment_status": booking.payment_status},
            )

        amount = to_decimal(booking.amount_held_for_provider)
        if booking.provider_paid_at is not None:
            self.logger.info(
                "settlement_already_paid",
                extra={"booking_id": booking.id, "transfer_id": booking.provider_transfer_id},
            )
            return self._result(booking.provider_transfer_id, amount, payout_recorded=False)

        account = self.account_status_service.require_payable_account(booking.provider_id)

        source_charge_id = self._capture_source_charge(booking)
        try:
            transfer = self.payment_gateway.transfer_to_provider(
                booking_id=booking.id,
                amount=amount,
                destination_account_id=account.stripe_account_id,
                source_charge_id=source_charge_id,
                metadata={
                    "provider_id": booking.provider_id,
                    "customer_id": booking.customer_id,
                    "platform_fee": str(booking.platform_fee_held),
                },
            )
        except PaymentProcessorException:
            prometheus_metrics.record_settlement_transfer("failed")
            raise
        prometheus_metrics.record_settlement_transfer("success")

        transfer_id = str(stripe_value(transfer, "id"))
        self.log_operation(
            "settlement_transfer_created",
            booking_id=booking.id,
            transfer_id=transfer_id,
            amount=str(amount),
            source_charge_id=source_charge_id,
        )

        self._mark_booking_paid(booking, transfer_id)
        payout_recorded = self._record_payout(booking, amount, transfer_id, source_charge_id)
        return self._result(transfer_id, amount, payout_recorded=payout_recorded)

    def _capture_source_charge(self, booking: Booking) -> Optional[str]:
        """Capture the customer's hold (once) and return the charge that funds the transfer."""
        if not booking.payment_intent_id:
            self.logger.warning(
                "settlement_transfer_without_source_charge",
                extra={"booking_id": booking.id, "payment_intent_id": None},
            )
            return None

        try:
            charge_id = self.payment_gateway.capture_held_funds(
                booking.payment_intent_id, booking_id=booking.id
            )
        except (PaymentProcessorException, PaymentNotAuthorizedException):
            prometheus_metrics.record_settlement_transfer("capture_failed")
            raise
        self._mark_intent_captured(booking)

        if not charge_id:
            self.logger.warning(
                "settlement_transfer_without_source_charge",
                extra={"booking_id": booking.id, "payment_intent_id": booking.payment_intent_id},
            )
        return charge_id

    def _mark_intent_captured(self, booking: Booking) -> None:
        booking_id, payment_intent_id = booking.id, booking.payment_intent_id
        try:
            with self.payment_repository.transaction():
                self.payment_repository.update_intent_status(payment_intent_id, "succeeded")
        except Exception as exc:
            prometheus_metrics.record_secondary_write_failure("payment_intent")
            self.logger.error(
                "settlement_intent_update_failed",
                extra={
                    "booking_id": booking_id,
                    "payment_intent_id": payment_intent_id,
                    "error": str(exc),
                },
            )

    def _mark_booking_paid(self, booking: Booking, transfer_id: str) -> None:
        booking_id = booking.id
        try:
            with self.booking_repository.transaction():
                booking.complete()
                booking.payment_status = PaymentStatus.PAYOUT_COMPLETED.value
                booking.provider_transfer_id = transfer_id
                booking.provider_paid_at = datetime.now(timezone.utc)
        except Exception as exc:
            prometheus_metrics.record_secondary_write_failure("booking_settlement")
            self.logger.error(
                "settlement_booking_update_failed",
                extra={
                    "booking_id": booking_id,
                    "transfer_id": transfer_id,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )

    def _record_payout(
        self,
        booking: Booking,
        amount: Any,
        transfer_id: str,
        source_charge_id: Optional[str],
    ) -> bool:
        booking_id, provider_id = booking.id, booking.provider_id
        try:
            with self.payment_repository.transaction():
                self.payment_repository.record_provider_payout(
                    booking_id=booking_id,
                    provider_id=provider_id,
                    amount=amount,
                    currency=settings.stripe_currency,
                    stripe_transfer_id=transfer_id,
                    source_charge_id=source_charge_id,
                )
            return True
        except Exception as exc:
            prometheus_metrics.record_secondary_write_failure("provider_payout")
            self.logger.error(
                "settlement_payout_record_failed",
                extra={"booking_id": booking_id, "transfer_id": transfer_id, "error": str(exc)},
            )
            return False

    @staticmethod
    def _result(transfer_id: Optional[str], amount: Any, payout_recorded: bool) -> Dict[str, Any]:
        return {
            "success": True,
            "transferId": transfer_id,
            "amount": amount,
            "payoutRecorded": payout_recorded,
        }
