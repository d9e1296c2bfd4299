"""Provider availability response schemas."""

import datetime as dt
from typing import List

from pydantic import Field

from .base import StandardizedModel


class ProviderAvailabilityResponse(StandardizedModel):
    """Bookable start times for one provider on one date."""

    provider_id: str = Field(..., alias="providerId")
    date: dt.date
    available_slots: List[str] = Field(default_factory=list, alias="availableSlots")
    is_fully_booked: bool = Field(..., alias="isFullyBooked")
