# backend/app/routes/v1/payments.py
"""
Payment API Routes - API v1

Versioned payment endpoints under /api/v1/payments.

Endpoints:
    POST /intents                        → Authorize base price + platform fee
    GET /connect/status                  → Provider payout account status (live)
    POST /webhooks/stripe                → Handle Stripe webhooks
"""

import asyncio
import logging
from typing import NoReturn

from fastapi import APIRouter, Depends, HTTPException, Request, status

from ...api.dependencies import (
    get_account_status_service,
    get_booking_service,
    get_current_user,
    get_payment_gateway,
)
from ...auth import AuthenticatedUser
from ...core.exceptions import DomainException
from ...schemas.payment_schemas import (
    AccountStatusResponse,
    PaymentIntentCreateRequest,
    PaymentIntentResponse,
    WebhookResponse,
)
from ...services.account_status_service import AccountStatusService
from ...services.booking_service import BookingService
from ...services.payment_gateway import PaymentGateway

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["payments-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post("/intents", response_model=PaymentIntentResponse)
async def create_payment_intent(
    payload: PaymentIntentCreateRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> PaymentIntentResponse:
    """
    Place a manual-capture hold for a service.

    Returns the client secret the browser uses to confirm the card.
    """
    try:
        authorization = await asyncio.to_thread(
            booking_service.create_payment_intent,
            current_user.id,
            payload.provider_id,
            payload.service_id,
        )
    except DomainException as e:
        handle_domain_exception(e)
    return PaymentIntentResponse(
        client_secret=authorization.client_secret,
        payment_intent_id=authorization.payment_intent_id,
        amount=authorization.amount,
        base_amount=authorization.base_amount,
        platform_fee=authorization.platform_fee,
    )


@router.get("/connect/status", response_model=AccountStatusResponse)
async def get_connect_status(
    current_user: AuthenticatedUser = Depends(get_current_user),
    account_status_service: AccountStatusService = Depends(get_account_status_service),
) -> AccountStatusResponse:
    """
    Get the payout account status for the calling provider.

    Always asks Stripe; the stored flags are refreshed as a side effect.
    """
    try:
        result = await asyncio.to_thread(
            account_status_service.check_account_status, current_user.id
        )
        return AccountStatusResponse(**result)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/webhooks/stripe", response_model=WebhookResponse)
async def handle_stripe_webhook(
    request: Request,
    payment_gateway: PaymentGateway = Depends(get_payment_gateway),
    account_status_service: AccountStatusService = Depends(get_account_status_service),
) -> WebhookResponse:
    """
    Handle Stripe webhook events.

    Note:
        This endpoint has no authentication as it uses webhook signature verification
    """
    payload = await request.body()
    sig_header = request.headers.get("stripe-signature")
    try:
        event = payment_gateway.construct_webhook_event(payload, sig_header)
        result = await asyncio.to_thread(account_status_service.handle_webhook_event, event)
    except DomainException as e:
        handle_domain_exception(e)

    event_type = event.get("type") if isinstance(event, dict) else getattr(event, "type", None)
    return WebhookResponse(status=result, event_type=event_type)
