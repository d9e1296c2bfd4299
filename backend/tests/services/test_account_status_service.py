"""
Tests for AccountStatusService.

Live Stripe status decides payouts; the local row is only a cache. Webhook
events keep intent records and connected accounts in sync.
"""

from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.orm import Session

from app.core.exceptions import (
    ConnectedAccountMissingException,
    ConnectedAccountNotReadyException,
    PaymentProcessorException,
)
from app.models.payment import PaymentIntentRecord
from app.services.account_status_service import AccountStatusService, collect_requirements

from ..factories import create_test_booking


@pytest.fixture
def account_service(db: Session, mock_gateway: MagicMock) -> AccountStatusService:
    return AccountStatusService(db, payment_gateway=mock_gateway)


def _stripe_account(charges_enabled=True, details_submitted=True, currently_due=None):
    return {
        "id": "acct_test_provider",
        "charges_enabled": charges_enabled,
        "details_submitted": details_submitted,
        "requirements": {
            "currently_due": currently_due or [],
            "past_due": [],
            "pending_verification": [],
        },
    }


class TestCheckAccountStatus:
    def test_no_account(self, account_service, mock_gateway, provider_id):
        status = account_service.check_account_status(provider_id)

        assert status == {
            "hasStripeAccount": False,
            "accountSetupComplete": False,
            "charges_enabled": False,
            "details_submitted": False,
        }
        mock_gateway.retrieve_account.assert_not_called()

    def test_live_status_refreshes_cache(
        self, account_service, mock_gateway, provider_id, connected_account
    ):
        mock_gateway.retrieve_account.return_value = _stripe_account(
            charges_enabled=False, currently_due=["individual.dob.day"]
        )

        status = account_service.check_account_status(provider_id)

        assert status["hasStripeAccount"] is True
        assert status["accountSetupComplete"] is False
        assert status["accountId"] == "acct_test_provider"
        assert status["requirements"] == ["individual.dob.day"]
        assert connected_account.charges_enabled is False
        assert connected_account.onboarding_completed is False
        assert connected_account.last_synced_at is not None

    def test_cache_write_failure_still_returns_live_status(
        self, account_service, mock_gateway, provider_id, connected_account
    ):
        with patch.object(
            account_service.payment_repository,
            "update_account_status",
            side_effect=RuntimeError("db unavailable"),
        ):
            status = account_service.check_account_status(provider_id)

        assert status["accountSetupComplete"] is True

    def test_stripe_failure_propagates(
        self, account_service, mock_gateway, provider_id, connected_account
    ):
        mock_gateway.retrieve_account.side_effect = PaymentProcessorException("Stripe down")

        with pytest.raises(PaymentProcessorException):
            account_service.check_account_status(provider_id)

    def test_cached_status_does_not_call_stripe(
        self, account_service, mock_gateway, provider_id, connected_account
    ):
        status = account_service.get_cached_account_status(provider_id)

        assert status["accountSetupComplete"] is True
        mock_gateway.retrieve_account.assert_not_called()


class TestRequirePayableAccount:
    def test_ready_account(self, account_service, provider_id, connected_account):
        account = account_service.require_payable_account(provider_id)

        assert account.stripe_account_id == "acct_test_provider"

    def test_missing(self, account_service, provider_id):
        with pytest.raises(ConnectedAccountMissingException):
            account_service.require_payable_account(provider_id)

    def test_details_not_submitted(
        self, account_service, mock_gateway, provider_id, connected_account
    ):
        mock_gateway.retrieve_account.return_value = _stripe_account(details_submitted=False)

        with pytest.raises(ConnectedAccountNotReadyException):
            account_service.require_payable_account(provider_id)


def test_collect_requirements_dedupes_across_lists():
    account = {
        "requirements": {
            "currently_due": ["external_account", "tos_acceptance.date"],
            "past_due": ["external_account"],
            "pending_verification": ["individual.id_number"],
        }
    }

    assert collect_requirements(account) == [
        "external_account",
        "tos_acceptance.date",
        "individual.id_number",
    ]
    assert collect_requirements({}) == []


class TestWebhookEvents:
    @pytest.fixture
    def booking_with_record(self, db, provider_id, customer_id, provider_service):
        booking = create_test_booking(
            db,
            provider_id=provider_id,
            customer_id=customer_id,
            service_id=provider_service.id,
            status="pending",
            payment_intent_id="pi_webhook",
        )
        db.add(
            PaymentIntentRecord(
                booking_id=booking.id,
                stripe_payment_intent_id="pi_webhook",
                amount=booking.total_amount,
                currency="usd",
                status="requires_capture",
                payment_method_types=["card"],
                intent_metadata={},
            )
        )
        db.commit()
        return booking

    def test_payment_intent_event_syncs_record(self, db, account_service, booking_with_record):
        event = {
            "type": "payment_intent.succeeded",
            "data": {"object": {"id": "pi_webhook", "status": "succeeded"}},
        }

        assert account_service.handle_webhook_event(event) == "processed"
        assert db.query(PaymentIntentRecord).one().status == "succeeded"

    def test_payment_failed_marks_pending_booking(self, account_service, booking_with_record):
        event = {
            "type": "payment_intent.payment_failed",
            "data": {"object": {"id": "pi_webhook", "status": "requires_payment_method"}},
        }

        assert account_service.handle_webhook_event(event) == "processed"
        assert booking_with_record.payment_status == "failed"

    def test_unknown_intent_is_still_processed(self, account_service):
        event = {
            "type": "payment_intent.canceled",
            "data": {"object": {"id": "pi_unknown", "status": "canceled"}},
        }

        assert account_service.handle_webhook_event(event) == "processed"

    def test_account_updated(self, account_service, connected_account):
        event = {
            "type": "account.updated",
            "data": {"object": _stripe_account(charges_enabled=False, currently_due=["external_account"])},
        }

        assert account_service.handle_webhook_event(event) == "processed"
        assert connected_account.charges_enabled is False
        assert connected_account.requirements == ["external_account"]

    def test_account_updated_for_unknown_account(self, account_service):
        event = {"type": "account.updated", "data": {"object": {"id": "acct_unknown"}}}

        assert account_service.handle_webhook_event(event) == "ignored"

    def test_unhandled_event_type(self, account_service):
        event = {"type": "customer.created", "data": {"object": {"id": "cus_1"}}}

        assert account_service.handle_webhook_event(event) == "ignored"
