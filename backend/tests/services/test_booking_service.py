"""
Tests for BookingService.

The escrow writer must reject every bad request before anything is
written, commit exactly one booking for a good one, and treat the payment
audit rows as best-effort.
"""

from datetime import datetime, time, timedelta, timezone
from decimal import Decimal
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from app.core.exceptions import (
    BookingConflictException,
    BookingNotFoundException,
    ForbiddenException,
    InvalidBookingStateException,
    PaymentDeclinedException,
    PaymentMismatchException,
    PaymentNotAuthorizedException,
    PaymentProcessorException,
    RepositoryException,
    ScheduleNotFoundException,
    ServiceInactiveException,
    ServiceNotFoundException,
    SlotUnavailableException,
)
from app.models.booking import Booking
from app.models.payment import Payment, PaymentIntentRecord
from app.schemas.booking import BookingCreate
from app.services.booking_service import BookingService

from ..factories import BOOKING_DATE, SATURDAY, create_test_booking, make_intent


@pytest.fixture
def booking_service(db: Session, mock_gateway: MagicMock) -> BookingService:
    return BookingService(db, payment_gateway=mock_gateway)


@pytest.fixture
def booking_request(provider_id, customer_id, provider_service, provider_schedule) -> BookingCreate:
    return BookingCreate(
        service_id=provider_service.id,
        provider_id=provider_id,
        customer_id=customer_id,
        booking_date=BOOKING_DATE.isoformat(),
        start_time="11:00",
        customer_notes="Side door is open",
        payment_intent_id="pi_test_123",
    )


@pytest.fixture
def authorized_intent(mock_gateway, provider_id, customer_id, provider_service):
    intent = make_intent(
        provider_id=provider_id, customer_id=customer_id, service_id=provider_service.id
    )
    mock_gateway.retrieve_intent.return_value = intent
    return intent


def _counts(db: Session) -> tuple[int, int, int]:
    return (
        db.query(Booking).count(),
        db.query(PaymentIntentRecord).count(),
        db.query(Payment).count(),
    )


class TestCreatePaymentIntent:
    def test_authorizes_service_base_price(
        self, booking_service, mock_gateway, provider_id, customer_id, provider_service
    ):
        booking_service.create_payment_intent(customer_id, provider_id, provider_service.id)

        mock_gateway.authorize.assert_called_once_with(
            customer_id=customer_id,
            provider_id=provider_id,
            service_id=provider_service.id,
            base_amount=Decimal("100.00"),
        )

    def test_unknown_service(self, booking_service, mock_gateway, provider_id, customer_id):
        with pytest.raises(ServiceNotFoundException):
            booking_service.create_payment_intent(customer_id, provider_id, "missing")
        mock_gateway.authorize.assert_not_called()

    def test_inactive_service(
        self, db, booking_service, mock_gateway, provider_id, customer_id, provider_service
    ):
        provider_service.is_active = False
        db.commit()

        with pytest.raises(ServiceInactiveException):
            booking_service.create_payment_intent(customer_id, provider_id, provider_service.id)
        mock_gateway.authorize.assert_not_called()


class TestCreateBooking:
    def test_commits_booking_with_escrow_split(
        self, db, booking_service, booking_request, authorized_intent, customer_id
    ):
        booking = booking_service.create_booking(booking_request, customer_id)

        assert booking.status == "pending"
        assert booking.payment_status == "funds_held_in_escrow"
        assert booking.start_time == time(11, 0)
        assert booking.end_time == time(12, 0)
        assert booking.base_amount == Decimal("100.00")
        assert booking.platform_fee == Decimal("10.00")
        assert booking.total_amount == Decimal("110.00")
        assert booking.captured_amount == Decimal("110.00")
        assert booking.amount_held_for_provider == Decimal("100.00")
        assert booking.platform_fee_held == Decimal("10.00")
        assert booking.payment_intent_id == "pi_test_123"
        assert booking.auto_confirmed is False
        assert booking.provider_response_deadline is not None

        record = db.query(PaymentIntentRecord).one()
        assert record.booking_id == booking.id
        assert record.status == "requires_capture"
        assert record.amount == Decimal("110.00")

        payment = db.query(Payment).one()
        assert payment.status == "funds_held_in_escrow"
        assert payment.platform_fee == Decimal("10.00")
        assert payment.provider_amount == Decimal("100.00")

    def test_fee_comes_from_authorized_amount(
        self, booking_service, booking_request, mock_gateway, authorized_intent, customer_id
    ):
        # Fee policy changed after authorization; the held amount is trusted
        authorized_intent["amount"] = 11500

        booking = booking_service.create_booking(booking_request, customer_id)

        assert booking.platform_fee == Decimal("15.00")
        assert booking.total_amount == Decimal("115.00")

    def test_auto_confirm_provider(
        self, db, booking_service, booking_request, authorized_intent, customer_id, provider_profile
    ):
        provider_profile.auto_confirm_bookings = True
        db.commit()

        booking = booking_service.create_booking(booking_request, customer_id)

        assert booking.status == "confirmed"
        assert booking.auto_confirmed is True
        assert booking.confirmed_at is not None
        assert booking.provider_response_deadline is None

    def test_caller_must_be_the_customer(
        self, db, booking_service, booking_request, mock_gateway, authorized_intent
    ):
        with pytest.raises(ForbiddenException):
            booking_service.create_booking(booking_request, "someone-else")

        mock_gateway.retrieve_intent.assert_not_called()
        assert _counts(db) == (0, 0, 0)

    def test_unknown_service(self, db, booking_service, booking_request, customer_id):
        booking_request.service_id = "missing"

        with pytest.raises(ServiceNotFoundException):
            booking_service.create_booking(booking_request, customer_id)
        assert _counts(db) == (0, 0, 0)

    def test_missing_schedule(self, db, booking_service, booking_request, customer_id, provider_schedule):
        db.delete(provider_schedule)
        db.commit()

        with pytest.raises(ScheduleNotFoundException):
            booking_service.create_booking(booking_request, customer_id)

    def test_slot_conflict_reports_conflicts(
        self,
        db,
        booking_service,
        booking_request,
        mock_gateway,
        authorized_intent,
        provider_id,
        customer_id,
        provider_service,
    ):
        existing = create_test_booking(
            db,
            provider_id=provider_id,
            customer_id=customer_id,
            service_id=provider_service.id,
        )
        booking_request.start_time = time(10, 30)

        with pytest.raises(SlotUnavailableException) as exc_info:
            booking_service.create_booking(booking_request, customer_id)

        assert exc_info.value.details["reason"] == "slot_conflict"
        assert exc_info.value.details["conflicts"][0]["booking_id"] == existing.id
        mock_gateway.retrieve_intent.assert_not_called()
        assert db.query(Booking).count() == 1

    def test_disabled_day(self, db, booking_service, booking_request, customer_id):
        booking_request.booking_date = SATURDAY

        with pytest.raises(SlotUnavailableException) as exc_info:
            booking_service.create_booking(booking_request, customer_id)

        assert exc_info.value.reason == "provider_unavailable_day"
        assert _counts(db) == (0, 0, 0)

    @pytest.mark.parametrize("field_name", ["service_id", "provider_id", "customer_id"])
    def test_metadata_mismatch_writes_nothing(
        self, db, booking_service, booking_request, authorized_intent, customer_id, field_name
    ):
        authorized_intent["metadata"][field_name] = "tampered"

        with pytest.raises(PaymentMismatchException) as exc_info:
            booking_service.create_booking(booking_request, customer_id)

        assert exc_info.value.details == {"fields": [field_name]}
        assert _counts(db) == (0, 0, 0)

    @pytest.mark.parametrize("status", ["requires_payment_method", "requires_confirmation", "canceled"])
    def test_intent_not_authorized(
        self, db, booking_service, booking_request, authorized_intent, customer_id, status
    ):
        authorized_intent["status"] = status

        with pytest.raises(PaymentNotAuthorizedException) as exc_info:
            booking_service.create_booking(booking_request, customer_id)

        assert exc_info.value.details == {"payment_intent_status": status}
        assert _counts(db) == (0, 0, 0)

    @pytest.mark.parametrize("status", ["succeeded", "partially_captured"])
    def test_captured_intents_are_accepted(
        self, booking_service, booking_request, authorized_intent, customer_id, status
    ):
        authorized_intent["status"] = status

        booking = booking_service.create_booking(booking_request, customer_id)

        assert booking.payment_status == "funds_held_in_escrow"

    def test_authorized_amount_below_base_price(
        self, db, booking_service, booking_request, authorized_intent, customer_id
    ):
        authorized_intent["amount"] = 9000

        with pytest.raises(PaymentMismatchException) as exc_info:
            booking_service.create_booking(booking_request, customer_id)

        assert exc_info.value.details == {"fields": ["amount"]}
        assert _counts(db) == (0, 0, 0)

    def test_stripe_failure_on_retrieve(
        self, db, booking_service, booking_request, mock_gateway, customer_id
    ):
        mock_gateway.retrieve_intent.side_effect = PaymentProcessorException(
            "Failed to retrieve payment intent", stripe_code="resource_missing"
        )

        with pytest.raises(PaymentProcessorException):
            booking_service.create_booking(booking_request, customer_id)
        assert _counts(db) == (0, 0, 0)

    def test_integrity_error_becomes_conflict(
        self, db, booking_service, booking_request, authorized_intent, customer_id
    ):
        overlap = IntegrityError(
            "INSERT INTO bookings", {}, Exception("bookings_no_overlap_per_provider")
        )
        with patch.object(booking_service.booking_repository, "create", side_effect=overlap):
            with pytest.raises(BookingConflictException) as exc_info:
                booking_service.create_booking(booking_request, customer_id)

        assert exc_info.value.message == "This time slot conflicts with an existing booking"
        assert exc_info.value.details["start_time"] == "11:00"
        assert _counts(db) == (0, 0, 0)

    def test_lock_held_is_a_conflict(
        self, db, booking_service, booking_request, mock_gateway, customer_id
    ):
        with patch("app.services.booking_service.booking_lock_sync") as lock:
            lock.return_value.__enter__.return_value = False
            with pytest.raises(BookingConflictException):
                booking_service.create_booking(booking_request, customer_id)

        mock_gateway.retrieve_intent.assert_not_called()
        assert _counts(db) == (0, 0, 0)

    def test_secondary_write_failure_is_not_fatal(
        self, db, booking_service, booking_request, authorized_intent, customer_id, caplog
    ):
        with patch.object(
            booking_service.payment_repository,
            "create_payment_intent_record",
            side_effect=RepositoryException("insert failed"),
        ):
            booking = booking_service.create_booking(booking_request, customer_id)

        assert db.query(Booking).filter(Booking.id == booking.id).count() == 1
        assert db.query(PaymentIntentRecord).count() == 0
        # The other audit row is still attempted
        assert db.query(Payment).count() == 1
        assert any(r.getMessage() == "escrow_secondary_write_failed" for r in caplog.records)


class TestBookingLifecycle:
    @pytest.fixture
    def pending_booking(self, db, provider_id, customer_id, provider_service, provider_schedule):
        return create_test_booking(
            db,
            provider_id=provider_id,
            customer_id=customer_id,
            service_id=provider_service.id,
            status="pending",
            provider_response_deadline=datetime.now(timezone.utc) + timedelta(hours=12),
        )

    def test_accept(self, booking_service, pending_booking, provider_id):
        booking = booking_service.accept_booking(pending_booking.id, provider_id)

        assert booking.status == "confirmed"
        assert booking.confirmed_at is not None

    def test_accept_by_customer_is_forbidden(self, booking_service, pending_booking, customer_id):
        with pytest.raises(ForbiddenException):
            booking_service.accept_booking(pending_booking.id, customer_id)

    def test_accept_unknown_booking(self, booking_service, provider_id):
        with pytest.raises(BookingNotFoundException):
            booking_service.accept_booking("missing", provider_id)

    def test_accept_after_deadline_expires_booking(
        self, db, booking_service, mock_gateway, pending_booking, provider_id
    ):
        pending_booking.provider_response_deadline = datetime.now(timezone.utc) - timedelta(minutes=1)
        db.commit()

        with pytest.raises(InvalidBookingStateException):
            booking_service.accept_booking(pending_booking.id, provider_id)

        mock_gateway.refund_intent.assert_called_once_with(
            "pi_test_existing", booking_id=pending_booking.id
        )
        assert pending_booking.status == "expired"
        assert pending_booking.payment_status == "refunded"

    def test_accept_confirmed_booking(self, db, booking_service, pending_booking, provider_id):
        pending_booking.status = "confirmed"
        db.commit()

        with pytest.raises(InvalidBookingStateException):
            booking_service.accept_booking(pending_booking.id, provider_id)

    def test_decline_refunds_then_declines(
        self, booking_service, mock_gateway, pending_booking, provider_id
    ):
        booking = booking_service.decline_booking(pending_booking.id, provider_id, "Fully booked")

        mock_gateway.refund_intent.assert_called_once()
        assert booking.status == "declined"
        assert booking.decline_reason == "Fully booked"
        assert booking.payment_status == "refunded"

    def test_decline_refund_failure_leaves_booking_pending(
        self, booking_service, mock_gateway, pending_booking, provider_id
    ):
        mock_gateway.refund_intent.side_effect = PaymentProcessorException("Stripe down")

        with pytest.raises(PaymentProcessorException):
            booking_service.decline_booking(pending_booking.id, provider_id)

        assert pending_booking.status == "pending"
        assert pending_booking.payment_status == "funds_held_in_escrow"

    def test_customer_cancels_confirmed_booking(
        self, db, booking_service, mock_gateway, pending_booking, customer_id
    ):
        pending_booking.status = "confirmed"
        db.commit()

        booking = booking_service.cancel_booking(pending_booking.id, customer_id, "Plans changed")

        mock_gateway.refund_intent.assert_called_once()
        assert booking.status == "cancelled"
        assert booking.cancelled_by_id == customer_id
        assert booking.cancellation_reason == "Plans changed"
        assert booking.payment_status == "refunded"

    def test_cancel_by_stranger_is_forbidden(self, booking_service, mock_gateway, pending_booking):
        with pytest.raises(ForbiddenException):
            booking_service.cancel_booking(pending_booking.id, "stranger")
        mock_gateway.refund_intent.assert_not_called()

    def test_cancel_completed_booking(self, db, booking_service, pending_booking, customer_id):
        pending_booking.status = "completed"
        db.commit()

        with pytest.raises(InvalidBookingStateException):
            booking_service.cancel_booking(pending_booking.id, customer_id)

    def test_cancel_declined_card_surfaces_402(
        self, booking_service, mock_gateway, pending_booking, customer_id
    ):
        mock_gateway.refund_intent.side_effect = PaymentDeclinedException("Your card was declined")

        with pytest.raises(PaymentDeclinedException) as exc_info:
            booking_service.cancel_booking(pending_booking.id, customer_id)

        assert exc_info.value.status_code == 402
        assert pending_booking.status == "pending"

    def test_cancel_marks_audit_rows_refunded(
        self, db, booking_service, booking_request, authorized_intent, customer_id
    ):
        booking = booking_service.create_booking(booking_request, customer_id)

        booking_service.cancel_booking(booking.id, customer_id)

        assert db.query(PaymentIntentRecord).one().status == "refunded"
        assert db.query(Payment).one().status == "refunded"


class TestAcceptKeepsConfirmedBookingsDisjoint:
    @pytest.fixture
    def intents_by_id(self, mock_gateway, provider_id, customer_id, provider_service):
        mock_gateway.retrieve_intent.side_effect = lambda pi: make_intent(
            provider_id=provider_id,
            customer_id=customer_id,
            service_id=provider_service.id,
            payment_intent_id=pi,
        )

    def _request(self, booking_request: BookingCreate, start: str, pi: str) -> BookingCreate:
        return booking_request.model_copy(
            update={"start_time": time.fromisoformat(start), "payment_intent_id": pi}
        )

    def test_second_overlapping_pending_booking_cannot_be_accepted(
        self, db, booking_service, booking_request, intents_by_id, customer_id, provider_id
    ):
        first = booking_service.create_booking(
            self._request(booking_request, "10:00", "pi_a"), customer_id
        )
        second = booking_service.create_booking(
            self._request(booking_request, "10:30", "pi_b"), customer_id
        )
        assert (first.status, second.status) == ("pending", "pending")

        booking_service.accept_booking(first.id, provider_id)
        with pytest.raises(BookingConflictException) as exc_info:
            booking_service.accept_booking(second.id, provider_id)

        assert exc_info.value.details["conflicts"] == [
            {"booking_id": first.id, "start_time": "10:00", "end_time": "11:00"}
        ]
        assert second.status == "pending"

        confirmed = db.query(Booking).filter(Booking.status.in_(["confirmed", "in_progress"])).all()
        for a in confirmed:
            for b in confirmed:
                if a.id != b.id:
                    assert not (a.start_time < b.end_time and b.start_time < a.end_time)

    def test_back_to_back_booking_can_be_accepted(
        self, booking_service, booking_request, intents_by_id, customer_id, provider_id
    ):
        first = booking_service.create_booking(
            self._request(booking_request, "10:00", "pi_a"), customer_id
        )
        second = booking_service.create_booking(
            self._request(booking_request, "11:00", "pi_b"), customer_id
        )

        booking_service.accept_booking(first.id, provider_id)
        booking = booking_service.accept_booking(second.id, provider_id)

        assert booking.status == "confirmed"

    def test_lock_held_is_a_conflict(
        self, db, booking_service, provider_id, customer_id, provider_service
    ):
        booking = create_test_booking(
            db,
            provider_id=provider_id,
            customer_id=customer_id,
            service_id=provider_service.id,
            status="pending",
        )
        with patch("app.services.booking_service.booking_lock_sync") as lock:
            lock.return_value.__enter__.return_value = False
            with pytest.raises(BookingConflictException):
                booking_service.accept_booking(booking.id, provider_id)

        assert booking.status == "pending"

    def test_overlap_constraint_violation_is_a_conflict(
        self, db, booking_service, provider_id, customer_id, provider_service
    ):
        booking = create_test_booking(
            db,
            provider_id=provider_id,
            customer_id=customer_id,
            service_id=provider_service.id,
            status="pending",
        )
        violation = IntegrityError("UPDATE bookings", {}, Exception("bookings_no_overlap_per_provider"))
        with patch.object(Booking, "confirm", side_effect=violation):
            with pytest.raises(BookingConflictException):
                booking_service.accept_booking(booking.id, provider_id)


class TestExpirePendingBookings:
    def test_only_overdue_pending_bookings_expire(
        self, db, booking_service, mock_gateway, provider_id, customer_id, provider_service
    ):
        now = datetime.now(timezone.utc)
        overdue = create_test_booking(
            db,
            provider_id=provider_id,
            customer_id=customer_id,
            service_id=provider_service.id,
            status="pending",
            payment_intent_id="pi_overdue",
            provider_response_deadline=now - timedelta(hours=1),
        )
        fresh = create_test_booking(
            db,
            provider_id=provider_id,
            customer_id=customer_id,
            service_id=provider_service.id,
            start_time=time(13, 0),
            end_time=time(14, 0),
            status="pending",
            payment_intent_id="pi_fresh",
            provider_response_deadline=now + timedelta(hours=1),
        )

        expired = booking_service.expire_pending_bookings(now=now)

        assert expired == 1
        mock_gateway.refund_intent.assert_called_once_with("pi_overdue", booking_id=overdue.id)
        assert db.get(Booking, overdue.id).status == "expired"
        assert db.get(Booking, fresh.id).status == "pending"

    def test_refund_failure_keeps_booking_pending(
        self, db, booking_service, mock_gateway, provider_id, customer_id, provider_service
    ):
        now = datetime.now(timezone.utc)
        overdue = create_test_booking(
            db,
            provider_id=provider_id,
            customer_id=customer_id,
            service_id=provider_service.id,
            status="pending",
            provider_response_deadline=now - timedelta(hours=1),
        )
        mock_gateway.refund_intent.side_effect = PaymentProcessorException("Stripe down")

        assert booking_service.expire_pending_bookings(now=now) == 0
        assert db.get(Booking, overdue.id).status == "pending"
