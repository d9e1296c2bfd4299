# backend/app/services/account_status_service.py
"""
Account Status Service

Reconciles Stripe's view of connected accounts and payment intents into
local rows. The cached connected-account flags are for display only; any
decision that moves money asks Stripe live through require_payable_account.
"""

import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.enums import BookingStatus, PaymentStatus
from ..core.exceptions import ConnectedAccountMissingException, ConnectedAccountNotReadyException
from ..models.payment import ConnectedAccount, PaymentIntentRecord
from ..repositories.factory import RepositoryFactory
from .base import BaseService
from .payment_gateway import PaymentGateway, stripe_value

logger = logging.getLogger(__name__)

REQUIREMENT_FIELDS = ("currently_due", "past_due", "pending_verification")


def collect_requirements(stripe_account: Any) -> List[str]:
    requirements: List[str] = []
    req_obj = stripe_value(stripe_account, "requirements")
    if not req_obj:
        return requirements
    for field_name in REQUIREMENT_FIELDS:
        items = stripe_value(req_obj, field_name) or []
        if isinstance(items, (list, tuple, set)):
            for item in items:
                if isinstance(item, str) and item not in requirements:
                    requirements.append(item)
    return requirements


def _status_payload(
    account: Optional[ConnectedAccount],
    charges_enabled: bool = False,
    details_submitted: bool = False,
    requirements: Optional[List[str]] = None,
) -> Dict[str, Any]:
    if account is None:
        return {
            "hasStripeAccount": False,
            "accountSetupComplete": False,
            "charges_enabled": False,
            "details_submitted": False,
        }
    return {
        "hasStripeAccount": True,
        "accountSetupComplete": bool(charges_enabled and details_submitted),
        "charges_enabled": charges_enabled,
        "details_submitted": details_submitted,
        "accountId": account.stripe_account_id,
        "requirements": list(requirements or []),
    }


class AccountStatusService(BaseService):
    def __init__(self, db: Session, payment_gateway: Optional[PaymentGateway] = None):
        super().__init__(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)
        self.payment_gateway = payment_gateway or PaymentGateway(db)

    # ========== Connected accounts ==========

    @BaseService.measure_operation("check_account_status")
    def check_account_status(self, provider_id: str) -> Dict[str, Any]:
        """
        Check a provider's connected account against Stripe.

        Args:
            provider_id: Provider whose payout account is checked

        Returns:
            Dictionary with account status information

        Raises:
            PaymentProcessorException: If Stripe cannot be reached
        """
        account = self.payment_repository.get_connected_account_by_provider_id(provider_id)
        if not account:
            return _status_payload(None)

        stripe_account = self.payment_gateway.retrieve_account(account.stripe_account_id)
        charges_enabled = bool(stripe_value(stripe_account, "charges_enabled", False))
        details_submitted = bool(stripe_value(stripe_account, "details_submitted", False))
        requirements = collect_requirements(stripe_account)

        # Keep the cache in sync; the live answer is returned either way
        try:
            with self.payment_repository.transaction():
                self.payment_repository.update_account_status(
                    account,
                    charges_enabled=charges_enabled,
                    details_submitted=details_submitted,
                    requirements=requirements,
                )
        except Exception as exc:
            self.logger.warning(
                "account_status_cache_write_failed",
                extra={"provider_id": provider_id, "error": str(exc)},
            )

        return _status_payload(account, charges_enabled, details_submitted, requirements)

    def get_cached_account_status(self, provider_id: str) -> Dict[str, Any]:
        """Last synced flags from the database. Display only."""
        account = self.payment_repository.get_connected_account_by_provider_id(provider_id)
        if not account:
            return _status_payload(None)
        return _status_payload(
            account,
            bool(account.charges_enabled),
            bool(account.details_submitted),
            list(account.requirements or []),
        )

    def require_payable_account(self, provider_id: str) -> ConnectedAccount:
        """
        Return the provider's connected account if Stripe says it can receive funds.

        Raises:
            ConnectedAccountMissingException: No account on file
            ConnectedAccountNotReadyException: Live status is incomplete
        """
        account = self.payment_repository.get_connected_account_by_provider_id(provider_id)
        if not account:
            raise ConnectedAccountMissingException(provider_id)
        status = self.check_account_status(provider_id)
        if not status["accountSetupComplete"]:
            raise ConnectedAccountNotReadyException(provider_id, status.get("requirements", []))
        return account

    # ========== Payment intents ==========

    @BaseService.measure_operation("sync_payment_intent_status")
    def sync_payment_intent_status(
        self, payment_intent_id: str, status: str
    ) -> Optional[PaymentIntentRecord]:
        with self.transaction():
            record = self.payment_repository.update_intent_status(payment_intent_id, status)
        if record is None:
            self.logger.info(
                "payment_intent_record_missing",
                extra={"payment_intent_id": payment_intent_id, "status": status},
            )
        return record

    @BaseService.measure_operation("handle_webhook_event")
    def handle_webhook_event(self, event: Any) -> str:
        """
        Apply a verified Stripe event.

        Returns:
            "processed" or "ignored"
        """
        event_type = str(stripe_value(event, "type", ""))
        data = stripe_value(event, "data") or {}
        obj = stripe_value(data, "object") or {}
        self.logger.info(f"Processing webhook event: {event_type}", extra={"event_type": event_type})

        if event_type.startswith("payment_intent."):
            payment_intent_id = stripe_value(obj, "id")
            status = stripe_value(obj, "status")
            if not payment_intent_id or not status:
                return "ignored"
            self.sync_payment_intent_status(payment_intent_id, str(status))
            if event_type == "payment_intent.payment_failed":
                self._mark_pending_booking_failed(payment_intent_id)
            return "processed"

        if event_type == "account.updated":
            return self._apply_account_update(obj)

        return "ignored"

    def _mark_pending_booking_failed(self, payment_intent_id: str) -> None:
        booking = self.booking_repository.find_one_by(payment_intent_id=payment_intent_id)
        if not booking or booking.status != BookingStatus.PENDING.value:
            return
        with self.transaction():
            booking.payment_status = PaymentStatus.FAILED.value
        self.log_operation("booking_payment_failed", booking_id=booking.id)

    def _apply_account_update(self, stripe_account: Any) -> str:
        account_id = stripe_value(stripe_account, "id")
        account = (
            self.payment_repository.find_connected_account(account_id) if account_id else None
        )
        if not account:
            return "ignored"
        with self.transaction():
            self.payment_repository.update_account_status(
                account,
                charges_enabled=bool(stripe_value(stripe_account, "charges_enabled", False)),
                details_submitted=bool(stripe_value(stripe_account, "details_submitted", False)),
                requirements=collect_requirements(stripe_account),
            )
        return "processed"
