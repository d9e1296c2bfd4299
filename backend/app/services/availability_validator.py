# backend/app/services/availability_validator.py
"""
Availability Validator

Decides whether a provider's time window is bookable. Checks run in a fixed
order and the first failure is reported:

1. weekday enabled in the weekly schedule  -> provider_unavailable_day
2. date not inside a blackout range        -> blackout_date
3. no overlap with confirmed/in-progress   -> slot_conflict
4. window inside the day's open hours      -> outside_working_hours

The validator is read-only. The escrow writer re-runs it at commit time
because the client's earlier check may be stale.
"""

from dataclasses import dataclass, field
from datetime import date, datetime, time, timedelta
import logging
from typing import Any, Dict, List, Optional

from sqlalchemy.orm import Session

from ..core.config import settings
from ..core.enums import SlotRejectionReason
from ..core.exceptions import ServiceNotFoundException
from ..models.provider import ProviderSchedule
from ..repositories.factory import RepositoryFactory
from .base import BaseService

logger = logging.getLogger(__name__)

WEEKDAY_NAMES = ("monday", "tuesday", "wednesday", "thursday", "friday", "saturday", "sunday")


@dataclass
class SlotValidation:
    is_available: bool
    start_time: time
    end_time: Optional[time] = None
    reason: Optional[SlotRejectionReason] = None
    conflicts: List[Dict[str, Any]] = field(default_factory=list)

    @classmethod
    def reject(
        cls, start: time, reason: SlotRejectionReason, end: Optional[time] = None, **kw: Any
    ) -> "SlotValidation":
        return cls(is_available=False, start_time=start, end_time=end, reason=reason, **kw)


def weekday_name(day: date) -> str:
    return WEEKDAY_NAMES[day.weekday()]


def parse_clock(value: Any) -> time:
    """Accept "HH:MM", "HH:MM:SS" or a time."""
    if isinstance(value, time):
        return value
    text = str(value).strip()
    fmt = "%H:%M:%S" if text.count(":") == 2 else "%H:%M"
    return datetime.strptime(text, fmt).time()


def add_minutes(day: date, start: time, minutes: int) -> datetime:
    return datetime.combine(day, start) + timedelta(minutes=minutes)


class AvailabilityValidator(BaseService):
    """
    Service for validating a requested booking window against a provider's
    schedule, blackout ranges and existing bookings.
    """

    def __init__(self, db: Session):
        super().__init__(db)
        self.provider_repository = RepositoryFactory.create_provider_repository(db)
        self.booking_repository = RepositoryFactory.create_booking_repository(db)

    @BaseService.measure_operation("validate_slot")
    def validate_slot(
        self,
        provider_id: str,
        booking_date: date,
        start_time: time,
        duration_minutes: Optional[int] = None,
        schedule: Optional[ProviderSchedule] = None,
        exclude_booking_id: Optional[str] = None,
    ) -> SlotValidation:
        """
        Validate a requested window.

        Args:
            provider_id: Provider whose time is requested
            booking_date: Requested date
            start_time: Requested start
            duration_minutes: Service duration, defaults to settings
            schedule: Pre-loaded schedule (loaded when omitted)
            exclude_booking_id: Booking to ignore in the conflict check

        Returns:
            SlotValidation with the computed end time or a rejection reason
        """
        duration = duration_minutes or settings.default_service_duration_minutes
        schedule = schedule or self.provider_repository.get_schedule(provider_id)

        day_name = weekday_name(booking_date)
        day = schedule.day_entry(day_name) if schedule else None
        if not day or not day.get("enabled"):
            return SlotValidation.reject(start_time, SlotRejectionReason.PROVIDER_UNAVAILABLE_DAY)

        blackouts = self.provider_repository.get_blackouts_covering(provider_id, booking_date)
        if blackouts:
            return SlotValidation.reject(start_time, SlotRejectionReason.BLACKOUT_DATE)

        end_dt = add_minutes(booking_date, start_time, duration)
        crosses_midnight = end_dt.date() != booking_date
        # A window running past midnight is compared as ending at 24:00
        end_time = time.max if crosses_midnight else end_dt.time()

        conflicts = self._find_conflicts(
            provider_id, booking_date, start_time, end_time, exclude_booking_id
        )
        if conflicts:
            return SlotValidation.reject(
                start_time,
                SlotRejectionReason.SLOT_CONFLICT,
                end=None if crosses_midnight else end_time,
                conflicts=conflicts,
            )

        day_start = parse_clock(day.get("start", "00:00"))
        day_end = parse_clock(day.get("end", "00:00"))
        if crosses_midnight or start_time < day_start or end_time > day_end:
            return SlotValidation.reject(
                start_time,
                SlotRejectionReason.OUTSIDE_WORKING_HOURS,
                end=None if crosses_midnight else end_time,
            )

        return SlotValidation(is_available=True, start_time=start_time, end_time=end_time)

    def _find_conflicts(
        self,
        provider_id: str,
        booking_date: date,
        start_time: time,
        end_time: time,
        exclude_booking_id: Optional[str],
    ) -> List[Dict[str, Any]]:
        bookings = self.booking_repository.get_blocking_bookings_for_date(
            provider_id, booking_date, exclude_booking_id
        )
        conflicts = []
        for booking in bookings:
            if start_time < booking.end_time and end_time > booking.start_time:
                conflicts.append(
                    {
                        "booking_id": booking.id,
                        "start_time": booking.start_time.strftime("%H:%M"),
                        "end_time": booking.end_time.strftime("%H:%M"),
                    }
                )
        if conflicts:
            self.logger.warning(
                f"Found {len(conflicts)} booking conflicts for {provider_id} "
                f"on {booking_date} between {start_time}-{end_time}"
            )
        return conflicts

    @BaseService.measure_operation("get_available_slots")
    def get_available_slots(
        self,
        provider_id: str,
        booking_date: date,
        duration_minutes: Optional[int] = None,
    ) -> List[str]:
        """
        Start times (HH:MM) on a date where a service of the given duration fits.

        Slots step by settings.slot_interval_minutes from the day's opening time.
        Disabled days and blackout dates have no slots.
        """
        duration = duration_minutes or settings.default_service_duration_minutes
        schedule = self.provider_repository.get_schedule(provider_id)
        day = schedule.day_entry(weekday_name(booking_date)) if schedule else None
        if not day or not day.get("enabled"):
            return []
        if self.provider_repository.get_blackouts_covering(provider_id, booking_date):
            return []

        day_start = datetime.combine(booking_date, parse_clock(day.get("start", "00:00")))
        day_end = datetime.combine(booking_date, parse_clock(day.get("end", "00:00")))
        booked = self.booking_repository.get_blocking_bookings_for_date(provider_id, booking_date)
        step = timedelta(minutes=settings.slot_interval_minutes)
        length = timedelta(minutes=duration)

        slots: List[str] = []
        cursor = day_start
        while cursor + length <= day_end:
            slot_start, slot_end = cursor.time(), (cursor + length).time()
            if not any(slot_start < b.end_time and slot_end > b.start_time for b in booked):
                slots.append(slot_start.strftime("%H:%M"))
            cursor += step
        return slots

    def resolve_duration(self, provider_id: str, service_id: Optional[str]) -> int:
        """Duration of the provider's service, or the default when none is named."""
        if not service_id:
            return settings.default_service_duration_minutes
        service = self.provider_repository.get_service_for_provider(service_id, provider_id)
        if not service:
            raise ServiceNotFoundException(service_id, provider_id)
        return int(service.duration_minutes)
