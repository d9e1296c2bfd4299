"""
Payment-related schemas for the API.
"""

from typing import List, Optional

from pydantic import Field

from .base import Money, StandardizedModel
from ._strict_base import StrictRequestModel


class PaymentIntentCreateRequest(StrictRequestModel):
    """Request an authorization hold for one service."""

    service_id: str = Field(..., min_length=1)
    provider_id: str = Field(..., min_length=1)


class PaymentIntentResponse(StandardizedModel):
    client_secret: Optional[str] = Field(None, alias="clientSecret")
    payment_intent_id: str = Field(..., alias="paymentIntentId")
    amount: Money
    base_amount: Money = Field(..., alias="baseAmount")
    platform_fee: Money = Field(..., alias="platformFee")


class AccountStatusResponse(StandardizedModel):
    """Connected account status as last reported by Stripe."""

    has_stripe_account: bool = Field(..., alias="hasStripeAccount")
    account_setup_complete: bool = Field(..., alias="accountSetupComplete")
    charges_enabled: bool
    details_submitted: bool
    account_id: Optional[str] = Field(None, alias="accountId")
    requirements: List[str] = Field(default_factory=list)


class WebhookResponse(StandardizedModel):
    status: str
    event_type: Optional[str] = Field(None, alias="eventType")
