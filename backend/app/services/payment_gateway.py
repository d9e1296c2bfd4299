"""
Payment Gateway

All Stripe API interactions for the marketplace payment flow:

- Manual-capture authorizations covering base price + platform fee
- Stripe customer lookup/creation
- Refunds for declined, cancelled and expired bookings
- Capturing held authorizations at settlement
- Resolving a PaymentIntent to its underlying charge
- Source-linked transfers to provider connected accounts
- Live connected-account lookups

Amounts cross this boundary as integer cents. Everything returned to the
rest of the application is converted back to Decimal major units.

Error mapping:
- stripe.CardError    -> PaymentDeclinedException (402)
- stripe.StripeError  -> PaymentProcessorException (502) carrying Stripe's code
"""

from dataclasses import dataclass
from decimal import Decimal
import logging
from typing import Any, Dict, NoReturn, Optional

from sqlalchemy.orm import Session
import stripe

from ..core.config import settings
from ..core.enums import CAPTURED_INTENT_STATUSES
from ..core.exceptions import (
    PaymentDeclinedException,
    PaymentNotAuthorizedException,
    PaymentProcessorException,
    ServiceException,
    ValidationException,
)
from ..core.money import from_minor_units, percentage_of, to_decimal, to_minor_units
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger: logging.Logger = logging.getLogger(__name__)


def stripe_value(obj: Any, key: str, default: Any = None) -> Any:
    """Read a field from a Stripe object or a plain dict."""
    if obj is None:
        return default
    if isinstance(obj, dict):
        return obj.get(key, default)
    return getattr(obj, key, default)


def stripe_metadata(obj: Any) -> Dict[str, str]:
    raw = stripe_value(obj, "metadata") or {}
    if isinstance(raw, dict):
        return {str(k): str(v) for k, v in raw.items()}
    to_dict = getattr(raw, "to_dict", None)
    if callable(to_dict):
        return {str(k): str(v) for k, v in to_dict().items()}
    return {}


@dataclass
class Authorization:
    payment_intent_id: str
    client_secret: Optional[str]
    status: str
    amount: Decimal
    base_amount: Decimal
    platform_fee: Decimal


class PaymentGateway(BaseService):
    """
    Service wrapping the Stripe SDK.

    Stateless apart from the Stripe customer mapping it maintains.
    """

    def __init__(self, db: Session):
        super().__init__(db)
        self.payment_repository = RepositoryFactory.create_payment_repository(db)

        self.stripe_configured = False
        if settings.stripe_configured:
            stripe.api_key = settings.stripe_secret_key.get_secret_value()
            try:
                # Bounded network time per call; one retry for transient failures
                stripe.default_http_client = stripe.RequestsClient(
                    timeout=settings.stripe_timeout_seconds
                )
                stripe.max_network_retries = 1
            except Exception as exc:
                self.logger.warning(f"Stripe HTTP client customization unavailable: {str(exc)}")
            self.stripe_configured = True
        else:
            self.logger.warning("Stripe secret key not configured - calls will fail")

    def _check_stripe_configured(self) -> None:
        if not self.stripe_configured:
            raise ServiceException("Stripe is not configured", code="STRIPE_NOT_CONFIGURED")

    def _raise_processor_error(self, action: str, exc: stripe.StripeError) -> NoReturn:
        stripe_code = getattr(exc, "code", None)
        self.logger.error(
            f"Stripe error during {action}: {str(exc)}",
            extra={"stripe_code": stripe_code, "action": action},
        )
        if isinstance(exc, stripe.CardError):
            raise PaymentDeclinedException(
                getattr(exc, "user_message", None) or "Your card was declined",
                stripe_code=stripe_code,
            )
        raise PaymentProcessorException(f"Failed to {action}: {str(exc)}", stripe_code=stripe_code)

    # ========== Fees ==========

    @staticmethod
    def compute_platform_fee(base_amount: Decimal) -> Decimal:
        """Platform fee for a base price, rounded half-up to cents."""
        return percentage_of(base_amount, settings.platform_fee_percentage)

    # ========== Customers ==========

    @BaseService.measure_operation("stripe_get_or_create_customer")
    def get_or_create_customer(self, customer_id: str) -> str:
        """Return the Stripe customer id for a marketplace customer, creating it if needed."""
        existing = self.payment_repository.get_customer_by_customer_id(customer_id)
        if existing:
            return existing.stripe_customer_id

        self._check_stripe_configured()
        try:
            customer = stripe.Customer.create(metadata={"customer_id": customer_id})
        except stripe.StripeError as e:
            self._raise_processor_error("create customer", e)

        with self.transaction():
            self.payment_repository.create_customer_record(customer_id, customer.id)
        self.logger.info(f"Created Stripe customer {customer.id} for customer {customer_id}")
        return str(customer.id)

    # ========== Authorization ==========

    @BaseService.measure_operation("stripe_authorize")
    def authorize(
        self,
        *,
        customer_id: str,
        provider_id: str,
        service_id: str,
        base_amount: Decimal,
        platform_fee: Optional[Decimal] = None,
    ) -> Authorization:
        """
        Create a manual-capture hold for base + fee.

        The fee is computed here once; the escrow writer later trusts the
        authorized amount instead of recomputing it.
        """
        self._check_stripe_configured()
        base = to_decimal(base_amount)
        fee = to_decimal(platform_fee) if platform_fee is not None else self.compute_platform_fee(base)
        total = base + fee
        stripe_customer_id = self.get_or_create_customer(customer_id)

        try:
            intent = stripe.PaymentIntent.create(
                amount=to_minor_units(total),
                currency=settings.stripe_currency,
                customer=stripe_customer_id,
                capture_method="manual",
                automatic_payment_methods={"enabled": True},
                metadata={
                    "service_id": service_id,
                    "provider_id": provider_id,
                    "customer_id": customer_id,
                    "base_amount": str(base),
                    "platform_fee": str(fee),
                    "total_amount": str(total),
                },
            )
        except stripe.StripeError as e:
            self._raise_processor_error("create payment authorization", e)

        self.log_operation(
            "payment_authorized",
            payment_intent_id=intent.id,
            amount_cents=to_minor_units(total),
            customer_id=customer_id,
            provider_id=provider_id,
        )
        return Authorization(
            payment_intent_id=str(intent.id),
            client_secret=stripe_value(intent, "client_secret"),
            status=str(stripe_value(intent, "status", "requires_payment_method")),
            amount=total,
            base_amount=base,
            platform_fee=fee,
        )

    @BaseService.measure_operation("stripe_retrieve_intent")
    def retrieve_intent(self, payment_intent_id: str) -> Any:
        self._check_stripe_configured()
        try:
            return stripe.PaymentIntent.retrieve(payment_intent_id)
        except stripe.StripeError as e:
            self._raise_processor_error("retrieve payment intent", e)

    @BaseService.measure_operation("stripe_refund_intent")
    def refund_intent(self, payment_intent_id: str, booking_id: Optional[str] = None) -> Any:
        """
        Release a customer's money for a booking that will not happen.

        An uncaptured authorization is cancelled; a captured one is refunded.
        """
        self._check_stripe_configured()
        try:
            refund = stripe.Refund.create(
                payment_intent=payment_intent_id,
                reason="requested_by_customer",
                metadata={"booking_id": booking_id} if booking_id else {},
            )
        except stripe.InvalidRequestError as e:
            # Uncaptured holds cannot be refunded; cancelling releases them
            if getattr(e, "code", None) == "charge_not_captured" or "uncaptured" in str(e).lower():
                try:
                    return stripe.PaymentIntent.cancel(payment_intent_id)
                except stripe.StripeError as cancel_error:
                    self._raise_processor_error("cancel payment authorization", cancel_error)
            self._raise_processor_error("refund payment", e)
        except stripe.StripeError as e:
            self._raise_processor_error("refund payment", e)

        self.log_operation("payment_refunded", payment_intent_id=payment_intent_id, booking_id=booking_id)
        return refund

    @staticmethod
    def charge_id_from_intent(intent: Any) -> Optional[str]:
        """`latest_charge` is an id string, or a Charge object when expanded."""
        latest = stripe_value(intent, "latest_charge")
        if isinstance(latest, str) and latest:
            return latest
        charge_id = stripe_value(latest, "id")
        if isinstance(charge_id, str) and charge_id:
            return charge_id
        return None

    @BaseService.measure_operation("stripe_resolve_charge")
    def resolve_charge_id(self, payment_intent_id: str) -> Optional[str]:
        """Resolve a PaymentIntent to its latest charge id, or None when it has none."""
        return self.charge_id_from_intent(self.retrieve_intent(payment_intent_id))

    # ========== Capture ==========

    @BaseService.measure_operation("stripe_capture_intent")
    def capture_intent(
        self,
        payment_intent_id: str,
        booking_id: str,
        amount: Optional[Decimal] = None,
    ) -> Any:
        """
        Capture a manual-capture hold.

        Keyed on the booking, so a retried capture returns the original result.
        With no amount the whole authorization is captured.
        """
        self._check_stripe_configured()
        params: Dict[str, Any] = {}
        if amount is not None:
            params["amount_to_capture"] = to_minor_units(amount)
        try:
            intent = stripe.PaymentIntent.capture(
                payment_intent_id, idempotency_key=f"capture:{booking_id}", **params
            )
        except stripe.StripeError as e:
            self._raise_processor_error("capture payment", e)

        self.log_operation(
            "payment_captured",
            payment_intent_id=payment_intent_id,
            booking_id=booking_id,
            amount_received=stripe_value(intent, "amount_received"),
        )
        return intent

    def capture_held_funds(self, payment_intent_id: str, booking_id: str) -> Optional[str]:
        """
        Make sure a booking's hold has been captured and return the funding charge id.

        Raises:
            PaymentNotAuthorizedException: The intent no longer holds funds
            PaymentProcessorException: Stripe rejected the lookup or the capture
        """
        intent = self.retrieve_intent(payment_intent_id)
        status = str(stripe_value(intent, "status", ""))
        if status == "requires_capture":
            intent = self.capture_intent(payment_intent_id, booking_id)
        elif status not in CAPTURED_INTENT_STATUSES:
            raise PaymentNotAuthorizedException(status)
        return self.charge_id_from_intent(intent)

    # ========== Transfers ==========

    @BaseService.measure_operation("stripe_transfer_to_provider")
    def transfer_to_provider(
        self,
        *,
        booking_id: str,
        amount: Decimal,
        destination_account_id: str,
        source_charge_id: Optional[str],
        metadata: Optional[Dict[str, str]] = None,
    ) -> Any:
        """
        Transfer a provider's held amount to their connected account.

        The idempotency key is derived from the booking id, so a repeated call
        for the same booking returns the original transfer instead of paying twice.
        """
        self._check_stripe_configured()
        params: Dict[str, Any] = {
            "amount": to_minor_units(amount),
            "currency": settings.stripe_currency,
            "destination": destination_account_id,
            "transfer_group": f"booking:{booking_id}",
            "metadata": {"booking_id": booking_id, **(metadata or {})},
        }
        if source_charge_id:
            params["source_transaction"] = source_charge_id
        try:
            return stripe.Transfer.create(**params, idempotency_key=f"transfer:{booking_id}")
        except stripe.StripeError as e:
            self._raise_processor_error("transfer funds to provider", e)

    # ========== Connected accounts ==========

    @BaseService.measure_operation("stripe_retrieve_account")
    def retrieve_account(self, stripe_account_id: str) -> Any:
        self._check_stripe_configured()
        try:
            return stripe.Account.retrieve(stripe_account_id)
        except stripe.StripeError as e:
            self._raise_processor_error("check account status", e)

    @staticmethod
    def amount_from_intent(intent: Any) -> Decimal:
        return from_minor_units(int(stripe_value(intent, "amount", 0) or 0))

    # ========== Webhooks ==========

    def construct_webhook_event(self, payload: bytes, signature: Optional[str]) -> Any:
        """Verify a webhook signature and parse the event."""
        secret = settings.stripe_webhook_secret.get_secret_value()
        if not secret:
            raise ServiceException("Webhook secret not configured", code="WEBHOOK_NOT_CONFIGURED")
        if not signature:
            raise ValidationException("Missing Stripe-Signature header", code="INVALID_WEBHOOK_SIGNATURE")
        try:
            return stripe.Webhook.construct_event(payload, signature, secret)
        except stripe.SignatureVerificationError as e:
            self.logger.warning(f"Invalid webhook signature: {str(e)}")
            raise ValidationException("Invalid webhook signature", code="INVALID_WEBHOOK_SIGNATURE")
        except ValueError as e:
            self.logger.warning(f"Invalid webhook payload: {str(e)}")
            raise ValidationException("Invalid webhook payload", code="INVALID_WEBHOOK_PAYLOAD")
