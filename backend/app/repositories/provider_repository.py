# backend/app/repositories/provider_repository.py
"""
Provider Repository

Read access to the provider-owned records the payments core validates
against: profile preferences, services, weekly schedule and blackouts.
"""

from datetime import date
import logging
from typing import List, Optional, cast

from sqlalchemy.orm import Session

from ..core.exceptions import RepositoryException
from ..models.provider import ProviderBlackout, ProviderProfile, ProviderSchedule, ProviderService
from .base_repository import BaseRepository

logger = logging.getLogger(__name__)


class ProviderRepository(BaseRepository[ProviderProfile]):
    def __init__(self, db: Session):
        super().__init__(db, ProviderProfile)

    def get_profile(self, provider_id: str) -> Optional[ProviderProfile]:
        return self.find_one_by(user_id=provider_id)

    def get_service_for_provider(self, service_id: str, provider_id: str) -> Optional[ProviderService]:
        try:
            return cast(
                Optional[ProviderService],
                self.db.query(ProviderService)
                .filter(ProviderService.id == service_id, ProviderService.provider_id == provider_id)
                .first(),
            )
        except Exception as e:
            self.logger.error(f"Failed to get service {service_id}: {str(e)}")
            raise RepositoryException(f"Failed to get service: {str(e)}")

    def get_schedule(self, provider_id: str) -> Optional[ProviderSchedule]:
        try:
            return cast(
                Optional[ProviderSchedule],
                self.db.query(ProviderSchedule)
                .filter(ProviderSchedule.provider_id == provider_id)
                .first(),
            )
        except Exception as e:
            self.logger.error(f"Failed to get schedule for {provider_id}: {str(e)}")
            raise RepositoryException(f"Failed to get schedule: {str(e)}")

    def get_blackouts_covering(self, provider_id: str, on_date: date) -> List[ProviderBlackout]:
        """Blackout ranges with start_date <= on_date <= end_date."""
        try:
            return cast(
                List[ProviderBlackout],
                self.db.query(ProviderBlackout)
                .filter(
                    ProviderBlackout.provider_id == provider_id,
                    ProviderBlackout.start_date <= on_date,
                    ProviderBlackout.end_date >= on_date,
                )
                .all(),
            )
        except Exception as e:
            self.logger.error(f"Failed to get blackouts for {provider_id}: {str(e)}")
            raise RepositoryException(f"Failed to get blackouts: {str(e)}")
