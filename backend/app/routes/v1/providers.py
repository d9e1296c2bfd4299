# backend/app/routes/v1/providers.py
"""
Provider routes - API v1

Endpoints:
    GET /{provider_id}/availability?date=YYYY-MM-DD&service_id= - Bookable start times
"""

import asyncio
from datetime import date
import logging
from typing import NoReturn, Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status

from ...api.dependencies import get_availability_validator, get_current_user
from ...auth import AuthenticatedUser
from ...core.exceptions import DomainException
from ...schemas.availability import ProviderAvailabilityResponse
from ...services.availability_validator import AvailabilityValidator

logger = logging.getLogger(__name__)

# V1 router - no prefix here, will be added when mounting in main.py
router = APIRouter(tags=["providers-v1"])


def handle_domain_exception(exc: DomainException) -> NoReturn:
    """Convert domain exceptions to HTTP exceptions."""
    if hasattr(exc, "to_http_exception"):
        raise exc.to_http_exception()
    raise HTTPException(status_code=status.HTTP_500_INTERNAL_SERVER_ERROR, detail=str(exc))


@router.get("/{provider_id}/availability", response_model=ProviderAvailabilityResponse)
async def get_provider_availability(
    provider_id: str,
    on_date: date = Query(..., alias="date"),
    service_id: Optional[str] = Query(None),
    current_user: AuthenticatedUser = Depends(get_current_user),
    validator: AvailabilityValidator = Depends(get_availability_validator),
) -> ProviderAvailabilityResponse:
    """
    List start times where the service fits the provider's schedule.

    Only confirmed and in-progress bookings take time away; days with no
    schedule, disabled days and blackout dates are fully booked.
    """

    def _slots() -> list[str]:
        duration = validator.resolve_duration(provider_id, service_id)
        return validator.get_available_slots(provider_id, on_date, duration)

    try:
        slots = await asyncio.to_thread(_slots)
    except DomainException as e:
        handle_domain_exception(e)
    return ProviderAvailabilityResponse(
        provider_id=provider_id,
        date=on_date,
        available_slots=slots,
        is_fully_booked=not slots,
    )
