# backend/app/routes/v1/bookings.py
"""
Booking routes - API v1

Versioned booking endpoints under /api/v1/bookings.
All business logic delegated to BookingService and SettlementService.

Endpoints:
    POST /                       - Confirm a booking against an authorized payment
    POST /complete               - Complete a booking and pay the provider
    POST /{booking_id}/accept    - Provider accepts a pending booking
    POST /{booking_id}/decline   - Provider declines a pending booking (refunds)
    POST /{booking_id}/cancel    - Customer or provider cancels (refunds)
"""

import asyncio
import logging
from typing import NoReturn, Optional

from fastapi import APIRouter, Body, Depends, HTTPException, status

from ...api.dependencies import get_booking_service, get_current_user, get_settlement_service
from ...auth import AuthenticatedUser
from ...core.exceptions import DomainException
from ...schemas.booking import (
    BookingActionRequest,
    BookingCompleteRequest,
    BookingCreate,
    BookingEnvelope,
    BookingSummary,
    SettlementResponse,
)
from ...services.booking_service import BookingService
from ...services.settlement_service import SettlementService

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["bookings-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.post("", response_model=BookingEnvelope, status_code=status.HTTP_201_CREATED)
async def create_booking(
    booking_data: BookingCreate,
    current_user: AuthenticatedUser = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingEnvelope:
    """
    Confirm a booking after the customer's card has been authorized.

    The slot and the authorization are re-validated server-side; the
    booking is stored with funds held in escrow.
    """
    try:
        booking = await asyncio.to_thread(
            booking_service.create_booking, booking_data, current_user.id
        )
        return BookingEnvelope(booking=BookingSummary.from_booking(booking))
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/complete", response_model=SettlementResponse)
async def complete_booking(
    payload: BookingCompleteRequest,
    current_user: AuthenticatedUser = Depends(get_current_user),
    settlement_service: SettlementService = Depends(get_settlement_service),
) -> SettlementResponse:
    """Mark a booking completed and transfer the provider's held amount."""
    try:
        result = await asyncio.to_thread(
            settlement_service.settle_booking, payload.booking_id, current_user.id
        )
        return SettlementResponse(**result)
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/accept", response_model=BookingEnvelope)
async def accept_booking(
    booking_id: str,
    current_user: AuthenticatedUser = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingEnvelope:
    try:
        booking = await asyncio.to_thread(
            booking_service.accept_booking, booking_id, current_user.id
        )
        return BookingEnvelope(booking=BookingSummary.from_booking(booking))
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/decline", response_model=BookingEnvelope)
async def decline_booking(
    booking_id: str,
    payload: Optional[BookingActionRequest] = Body(None),
    current_user: AuthenticatedUser = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingEnvelope:
    try:
        booking = await asyncio.to_thread(
            booking_service.decline_booking,
            booking_id,
            current_user.id,
            payload.reason if payload else None,
        )
        return BookingEnvelope(booking=BookingSummary.from_booking(booking))
    except DomainException as e:
        handle_domain_exception(e)


@router.post("/{booking_id}/cancel", response_model=BookingEnvelope)
async def cancel_booking(
    booking_id: str,
    payload: Optional[BookingActionRequest] = Body(None),
    current_user: AuthenticatedUser = Depends(get_current_user),
    booking_service: BookingService = Depends(get_booking_service),
) -> BookingEnvelope:
    try:
        booking = await asyncio.to_thread(
            booking_service.cancel_booking,
            booking_id,
            current_user.id,
            payload.reason if payload else None,
        )
        return BookingEnvelope(booking=BookingSummary.from_booking(booking))
    except DomainException as e:
        handle_domain_exception(e)
