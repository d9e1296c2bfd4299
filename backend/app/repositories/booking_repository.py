# backend/app/repositories/booking_repository.py
"""
Booking Repository

Data access for the escrow ledger:
- Booking CRUD (create re-raises IntegrityError for conflict translation)
- Overlap queries against confirmed/in-progress bookings
- Pending bookings past their response deadline
"""

from datetime import date, datetime, time
import logging
from typing import Any, List, Optional, cast

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from ..core.enums import BLOCKING_BOOKING_STATUSES, BookingStatus
from ..core.exceptions import RepositoryException
from ..models.booking import Booking
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)

_BLOCKING = [s.value for s in BLOCKING_BOOKING_STATUSES]


class BookingRepository(BaseRepository[Booking]):
    """Repository for booking data access."""

    def __init__(self, db: Session):
        super().__init__(db, Booking)
        self.logger = logging.getLogger(__name__)

    def create(self, **kwargs: Any) -> Booking:
        """Create a booking, exposing integrity errors for conflict handling."""
        try:
            return super().create(**kwargs)
        except RepositoryException as exc:
            if isinstance(exc.__cause__, IntegrityError):
                raise exc.__cause__
            raise

    def get_blocking_bookings_for_date(
        self,
        provider_id: str,
        booking_date: date,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """
        Bookings that occupy the provider's time on a date.

        Only confirmed and in-progress bookings block a slot; pending
        bookings do not hold time until the provider accepts.
        """
        try:
            query = self.db.query(Booking).filter(
                Booking.provider_id == provider_id,
                Booking.booking_date == booking_date,
                Booking.status.in_(_BLOCKING),
            )
            if exclude_booking_id:
                query = query.filter(Booking.id != exclude_booking_id)
            return cast(List[Booking], query.order_by(Booking.start_time).all())
        except Exception as e:
            self.logger.error(f"Error getting blocking bookings: {str(e)}")
            raise RepositoryException(f"Failed to get bookings for date: {str(e)}")

    def find_overlapping(
        self,
        provider_id: str,
        booking_date: date,
        start_time: time,
        end_time: time,
        exclude_booking_id: Optional[str] = None,
    ) -> List[Booking]:
        """Half-open overlap: existing.start < end AND existing.end > start."""
        try:
            query = self.db.query(Booking).filter(
                Booking.provider_id == provider_id,
                Booking.booking_date == booking_date,
                Booking.status.in_(_BLOCKING),
                Booking.start_time < end_time,
                Booking.end_time > start_time,
            )
            if exclude_booking_id:
                query = query.filter(Booking.id != exclude_booking_id)
            return cast(List[Booking], query.all())
        except Exception as e:
            self.logger.error(f"Error checking booking overlap: {str(e)}")
            raise RepositoryException(f"Failed to check overlap: {str(e)}")

    def get_expired_pending(self, now: datetime, limit: int = 200) -> List[Booking]:
        try:
            return cast(
                List[Booking],
                self.db.query(Booking)
                .filter(
                    Booking.status == BookingStatus.PENDING.value,
                    Booking.provider_response_deadline.isnot(None),
                    Booking.provider_response_deadline < now,
                )
                .order_by(Booking.provider_response_deadline)
                .limit(limit)
                .all(),
            )
        except Exception as e:
            self.logger.error(f"Error getting expired pending bookings: {str(e)}")
            raise RepositoryException(f"Failed to get expired bookings: {str(e)}")

    def get_for_update(self, booking_id: str) -> Optional[Booking]:
        """Load a booking with a row lock where the dialect supports it."""
        try:
            query = self.db.query(Booking).filter(Booking.id == booking_id)
            if self.db.get_bind().dialect.name == "postgresql":
                query = query.with_for_update()
            return cast(Optional[Booking], query.first())
        except Exception as e:
            self.logger.error(f"Error locking booking {booking_id}: {str(e)}")
            raise RepositoryException(f"Failed to load booking: {str(e)}")
