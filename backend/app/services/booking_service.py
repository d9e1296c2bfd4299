# backend/app/services/booking_service.py
"""
Booking Service

Escrow ledger writer and booking lifecycle:
- create_booking: validate an authorized PaymentIntent against the live
  schedule and commit the booking with funds held in escrow
- accept/decline/cancel by the booking's parties
- expiry of pending bookings the provider never answered

The booking insert is the only write that must succeed. Payment audit
rows are written after it in their own transactions and a failure there
is logged and counted, never raised.
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal
import logging
from typing import Any, Callable, Dict, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.booking_lock import booking_lock_sync, provider_slot_lock_key
from ..core.config import settings
from ..core.enums import AUTHORIZED_INTENT_STATUSES, BookingStatus, PaymentStatus
from ..core.exceptions import (
    BookingConflictException,
    BookingNotFoundException,
    ForbiddenException,
    InvalidBookingStateException,
    PaymentMismatchException,
    PaymentNotAuthorizedException,
    PaymentProcessorException,
    ScheduleNotFoundException,
    ServiceException,
    ServiceInactiveException,
    ServiceNotFoundException,
    SlotUnavailableException,
)
from ..core.money import to_decimal
from ..models.booking import Booking
from ..monitoring.prometheus_metrics import prometheus_metrics
from ..repositories.factory import RepositoryFactory
from ..schemas.booking import BookingCreate
from .availability_validator import AvailabilityValidator
from .base import BaseService
from .payment_gateway import Authorization, PaymentGateway, stripe_metadata, stripe_value

logger = logging.getLogger(__name__)

GENERIC_CONFLICT_MESSAGE = "This time slot conflicts with an existing booking"
LOCK_HELD_MESSAGE = "Another booking for this provider and date is being processed"

# Intent metadata that must match the booking request
MATCHED_METADATA_FIELDS = ("service_id", "provider_id", "customer_id")


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """SQLite drops tzinfo on round-trip; stored values are always UTC."""
    if value is None or value.tzinfo is not None:
        return value
    return value.replace(tzinfo=timezone.utc)


class BookingService(BaseService):
    """
    Service layer for booking operations.

    Collaborators are injectable so route tests and unit tests can swap the
    Stripe gateway for a mock.
    """

    def __init__(
        self,
        db: Session,
        payment_gateway: Optional[PaymentGateway] = None,
        availability_validator: Optional[AvailabilityValidator] = None,
    ):
        super().__init__(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.provider_repository = RepositoryFactory.create_provider_repository(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.payment_gateway = payment_gateway or PaymentGateway(db)
        self.availability_validator = availability_validator or AvailabilityValidator(db)

    # ========== Authorization ==========

    @BaseService.measure_operation("create_payment_intent")
    def create_payment_intent(
        self, customer_id: str, provider_id: str, service_id: str
    ) -> Authorization:
        """Authorize base price plus platform fee for one of the provider's services."""
        service = self.provider_repository.get_service_for_provider(service_id, provider_id)
        if not service:
            raise ServiceNotFoundException(service_id, provider_id)
        if not service.is_active:
            raise ServiceInactiveException(service_id)
        return self.payment_gateway.authorize(
            customer_id=customer_id,
            provider_id=provider_id,
            service_id=service_id,
            base_amount=to_decimal(service.base_price),
        )

    # ========== Escrow ledger writer ==========

    @BaseService.measure_operation("create_booking")
    def create_booking(self, booking_data: BookingCreate, caller_id: str) -> Booking:
        """
        Record a booking against an authorized payment hold.

        Args:
            booking_data: Requested booking, including the PaymentIntent id
            caller_id: Authenticated user; must be the booking's customer

        Returns:
            The committed booking

        Raises:
            ForbiddenException: Caller is not the customer
            ServiceNotFoundException / ServiceInactiveException
            ScheduleNotFoundException
            SlotUnavailableException: Availability re-check failed
            PaymentMismatchException: Intent metadata differs from the request
            PaymentNotAuthorizedException: Intent holds no funds
            BookingConflictException: Lock contention or overlap at insert
        """
        if caller_id != booking_data.customer_id:
            raise ForbiddenException(
                "You can only create bookings for yourself", code="NOT_BOOKING_CUSTOMER"
            )

        lock_key = provider_slot_lock_key(booking_data.provider_id, booking_data.booking_date)
        with booking_lock_sync(lock_key) as acquired:
            if not acquired:
                raise BookingConflictException(
                    LOCK_HELD_MESSAGE, details=self._conflict_details(booking_data)
                )
            return self._create_booking_locked(booking_data)

    def _create_booking_locked(self, booking_data: BookingCreate) -> Booking:
        # 1. Service belongs to the provider and is bookable
        service = self.provider_repository.get_service_for_provider(
            booking_data.service_id, booking_data.provider_id
        )
        if not service:
            raise ServiceNotFoundException(booking_data.service_id, booking_data.provider_id)
        if not service.is_active:
            raise ServiceInactiveException(booking_data.service_id)

        # 2. Slot is still free under the current schedule
        schedule = self.provider_repository.get_schedule(booking_data.provider_id)
        if not schedule:
            raise ScheduleNotFoundException(booking_data.provider_id)

        validation = self.availability_validator.validate_slot(
            booking_data.provider_id,
            booking_data.booking_date,
            booking_data.start_time,
            duration_minutes=service.duration_minutes,
            schedule=schedule,
        )
        if not validation.is_available:
            reason = validation.reason.value if validation.reason else "unavailable"
            details: Dict[str, Any] = {}
            if validation.conflicts:
                details["conflicts"] = validation.conflicts
            raise SlotUnavailableException(reason, details=details)

        # 3. Authorization matches this booking and holds funds
        intent = self.payment_gateway.retrieve_intent(booking_data.payment_intent_id)
        metadata = stripe_metadata(intent)
        mismatched = [
            name for name in MATCHED_METADATA_FIELDS if metadata.get(name) != getattr(booking_data, name)
        ]
        if mismatched:
            self.logger.warning(
                "payment_metadata_mismatch",
                extra={"payment_intent_id": booking_data.payment_intent_id, "fields": mismatched},
            )
            raise PaymentMismatchException(mismatched)

        intent_status = str(stripe_value(intent, "status", ""))
        if intent_status not in AUTHORIZED_INTENT_STATUSES:
            raise PaymentNotAuthorizedException(intent_status)

        total = PaymentGateway.amount_from_intent(intent)
        base = to_decimal(service.base_price)
        if total < base:
            raise PaymentMismatchException(["amount"])
        platform_fee = total - base

        # 4. Primary write
        fields = self._booking_fields(booking_data, validation.end_time, base, platform_fee, total)
        try:
            with self.booking_repository.transaction():
                booking = self.booking_repository.create(**fields)
        except IntegrityError as exc:
            self.logger.warning(
                "booking_overlap_constraint_hit",
                extra={"provider_id": booking_data.provider_id, "error": str(exc.orig)},
            )
            raise BookingConflictException(
                GENERIC_CONFLICT_MESSAGE, details=self._conflict_details(booking_data)
            ) from exc

        self.log_operation(
            "booking_created",
            booking_id=booking.id,
            provider_id=booking.provider_id,
            status=booking.status,
            total_amount=str(total),
        )

        # 5. Secondary writes
        currency = str(stripe_value(intent, "currency", None) or settings.stripe_currency)
        self._write_secondary(
            "payment_intent",
            booking.id,
            lambda: self.payment_repository.create_payment_intent_record(
                booking_id=booking.id,
                stripe_payment_intent_id=booking_data.payment_intent_id,
                amount=total,
                currency=currency,
                status=intent_status,
                client_secret=stripe_value(intent, "client_secret"),
                payment_method_types=list(stripe_value(intent, "payment_method_types", None) or []),
                intent_metadata=metadata,
            ),
        )
        self._write_secondary(
            "payment",
            booking.id,
            lambda: self.payment_repository.create_payment(
                booking_id=booking.id,
                customer_id=booking_data.customer_id,
                provider_id=booking_data.provider_id,
                amount=total,
                platform_fee=platform_fee,
                provider_amount=base,
                currency=currency,
                status=PaymentStatus.FUNDS_HELD_IN_ESCROW.value,
                stripe_payment_intent_id=booking_data.payment_intent_id,
            ),
        )
        return booking

    def _booking_fields(
        self,
        booking_data: BookingCreate,
        end_time: Any,
        base: Decimal,
        platform_fee: Decimal,
        total: Decimal,
    ) -> Dict[str, Any]:
        now = datetime.now(timezone.utc)
        profile = self.provider_repository.get_profile(booking_data.provider_id)
        auto_confirm = bool(profile and profile.auto_confirm_bookings)

        fields: Dict[str, Any] = {
            "customer_id": booking_data.customer_id,
            "provider_id": booking_data.provider_id,
            "service_id": booking_data.service_id,
            "booking_date": booking_data.booking_date,
            "start_time": booking_data.start_time,
            "end_time": end_time,
            "payment_status": PaymentStatus.FUNDS_HELD_IN_ESCROW.value,
            "base_amount": base,
            "platform_fee": platform_fee,
            "total_amount": total,
            "captured_amount": total,
            "amount_held_for_provider": base,
            "platform_fee_held": platform_fee,
            "payment_intent_id": booking_data.payment_intent_id,
            "customer_notes": booking_data.customer_notes,
            "service_address": booking_data.service_address,
            "auto_confirmed": auto_confirm,
        }
        if auto_confirm:
            fields["status"] = BookingStatus.CONFIRMED.value
            fields["confirmed_at"] = now
        else:
            fields["status"] = BookingStatus.PENDING.value
            fields["provider_response_deadline"] = now + timedelta(
                hours=settings.provider_response_hours
            )
        return fields

    def _write_secondary(self, record: str, booking_id: str, write: Callable[[], Any]) -> bool:
        """Run one audit write in its own transaction; failures are logged, not raised."""
        try:
            with self.payment_repository.transaction():
                write()
            return True
        except Exception as exc:
            prometheus_metrics.record_secondary_write_failure(record)
            self.logger.error(
                "escrow_secondary_write_failed",
                extra={
                    "booking_id": booking_id,
                    "record": record,
                    "error": str(exc),
                    "error_type": type(exc).__name__,
                },
            )
            return False

    @staticmethod
    def _conflict_details(booking_data: BookingCreate) -> Dict[str, Any]:
        return {
            "provider_id": booking_data.provider_id,
            "booking_date": booking_data.booking_date.isoformat(),
            "start_time": booking_data.start_time.strftime("%H:%M"),
        }

    # ========== Lifecycle ==========

    def get_booking(self, booking_id: str) -> Booking:
        booking = self.booking_repository.get_by_id(booking_id)
        if not booking:
            raise BookingNotFoundException(booking_id)
        return booking

    @BaseService.measure_operation("accept_booking")
    def accept_booking(self, booking_id: str, provider_id: str) -> Booking:
        """
        Provider accepts a pending booking.

        A booking whose response deadline has passed is expired instead.
        Pending bookings do not hold time, so the window is re-checked against
        confirmed and in-progress bookings before this one joins them.
        """
        booking = self.get_booking(booking_id)
        if booking.provider_id != provider_id:
            raise ForbiddenException(
                "Only the booking's provider can accept it", code="NOT_BOOKING_PROVIDER"
            )
        if not booking.is_pending:
            raise InvalidBookingStateException(
                f"Booking is {booking.status}, not pending", details={"status": booking.status}
            )

        deadline = as_utc(booking.provider_response_deadline)
        if deadline is not None and deadline < datetime.now(timezone.utc):
            self._expire_one(booking)
            raise InvalidBookingStateException(
                "The response deadline for this booking has passed",
                details={"status": booking.status},
            )

        lock_key = provider_slot_lock_key(booking.provider_id, booking.booking_date)
        with booking_lock_sync(lock_key) as acquired:
            if not acquired:
                raise BookingConflictException(
                    LOCK_HELD_MESSAGE, details=self._booking_window(booking)
                )
            self._confirm_locked(booking)

        self.log_operation("booking_accepted", booking_id=booking.id, provider_id=provider_id)
        return booking

    def _confirm_locked(self, booking: Booking) -> None:
        overlapping = self.booking_repository.find_overlapping(
            booking.provider_id,
            booking.booking_date,
            booking.start_time,
            booking.end_time,
            exclude_booking_id=booking.id,
        )
        if overlapping:
            details = self._booking_window(booking)
            details["conflicts"] = [
                {
                    "booking_id": other.id,
                    "start_time": other.start_time.strftime("%H:%M"),
                    "end_time": other.end_time.strftime("%H:%M"),
                }
                for other in overlapping
            ]
            self.logger.warning(
                "booking_accept_conflict",
                extra={"booking_id": booking.id, "conflicting_ids": [o.id for o in overlapping]},
            )
            raise BookingConflictException(GENERIC_CONFLICT_MESSAGE, details=details)

        booking_id, details = booking.id, self._booking_window(booking)
        try:
            with self.booking_repository.transaction():
                booking.confirm()
        except IntegrityError as exc:
            self.logger.warning(
                "booking_overlap_constraint_hit",
                extra={"booking_id": booking_id, "error": str(exc.orig)},
            )
            raise BookingConflictException(GENERIC_CONFLICT_MESSAGE, details=details) from exc

    @staticmethod
    def _booking_window(booking: Booking) -> Dict[str, Any]:
        return {
            "provider_id": booking.provider_id,
            "booking_date": booking.booking_date.isoformat(),
            "start_time": booking.start_time.strftime("%H:%M"),
        }

    @BaseService.measure_operation("decline_booking")
    def decline_booking(
        self, booking_id: str, provider_id: str, reason: Optional[str] = None
    ) -> Booking:
        booking = self.get_booking(booking_id)
        if booking.provider_id != provider_id:
            raise ForbiddenException(
                "Only the booking's provider can decline it", code="NOT_BOOKING_PROVIDER"
            )
        if not booking.is_pending:
            raise InvalidBookingStateException(
                f"Booking is {booking.status}, not pending", details={"status": booking.status}
            )

        # Refund first; a Stripe failure leaves the booking untouched
        if booking.payment_intent_id:
            self.payment_gateway.refund_intent(booking.payment_intent_id, booking_id=booking.id)

        with self.transaction():
            booking.decline(reason)
            booking.payment_status = PaymentStatus.REFUNDED.value
        self._mark_payment_records_refunded(booking)
        self.log_operation("booking_declined", booking_id=booking.id, provider_id=provider_id)
        return booking

    @BaseService.measure_operation("cancel_booking")
    def cancel_booking(self, booking_id: str, actor_id: str, reason: Optional[str] = None) -> Booking:
        booking = self.get_booking(booking_id)
        if actor_id not in (booking.customer_id, booking.provider_id):
            raise ForbiddenException(
                "Only the customer or provider can cancel this booking",
                code="NOT_BOOKING_PARTICIPANT",
            )
        if booking.status not in (BookingStatus.PENDING.value, BookingStatus.CONFIRMED.value):
            raise InvalidBookingStateException(
                f"Cannot cancel a booking that is {booking.status}",
                details={"status": booking.status},
            )

        if booking.payment_status != PaymentStatus.REFUNDED.value and booking.payment_intent_id:
            self.payment_gateway.refund_intent(booking.payment_intent_id, booking_id=booking.id)

        with self.transaction():
            booking.cancel(actor_id, reason)
            booking.payment_status = PaymentStatus.REFUNDED.value
        self._mark_payment_records_refunded(booking)
        self.log_operation("booking_cancelled", booking_id=booking.id, cancelled_by=actor_id)
        return booking

    @BaseService.measure_operation("expire_pending_bookings")
    def expire_pending_bookings(self, now: Optional[datetime] = None) -> int:
        """
        Expire pending bookings past their response deadline.

        Each booking is refunded before it is expired. A booking whose refund
        fails stays pending and is picked up by the next run.

        Returns:
            Number of bookings expired
        """
        now = now or datetime.now(timezone.utc)
        expired = 0
        for booking in self.booking_repository.get_expired_pending(now):
            if self._expire_one(booking):
                expired += 1
        self.logger.info(f"Expired {expired} pending bookings", extra={"expired_count": expired})
        return expired

    def _expire_one(self, booking: Booking) -> bool:
        if booking.payment_intent_id and booking.payment_status != PaymentStatus.REFUNDED.value:
            try:
                self.payment_gateway.refund_intent(booking.payment_intent_id, booking_id=booking.id)
            except (PaymentProcessorException, ServiceException) as exc:
                self.logger.warning(
                    "booking_expiry_refund_failed",
                    extra={"booking_id": booking.id, "error": exc.message},
                )
                return False

        with self.transaction():
            booking.expire()
            booking.payment_status = PaymentStatus.REFUNDED.value
        self._mark_payment_records_refunded(booking)
        self.log_operation("booking_expired", booking_id=booking.id)
        return True

    def _mark_payment_records_refunded(self, booking: Booking) -> None:
        if booking.payment_intent_id:
            payment_intent_id = booking.payment_intent_id
            self._write_secondary(
                "payment_intent",
                booking.id,
                lambda: self.payment_repository.update_intent_status(
                    payment_intent_id, PaymentStatus.REFUNDED.value
                ),
            )
        booking_id = booking.id
        self._write_secondary(
            "payment",
            booking_id,
            lambda: self.payment_repository.update_payments_for_booking(
                booking_id, PaymentStatus.REFUNDED.value
            ),
        )
