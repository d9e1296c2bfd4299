# backend/app/repositories/__init__.py
"""
Repository layer for data access, separating business logic from queries.

Usage:
    from app.repositories import RepositoryFactory

    # In a service:
    booking_repository = RepositoryFactory.create_booking_repository(db)
    overlapping = booking_repository.find_overlapping(provider_id, day, start, end)
"""

from .base_repository import BaseRepository
from .booking_repository import BookingRepository
from .factory import RepositoryFactory
from .payment_repository import PaymentRepository
from .provider_repository import ProviderRepository

__all__ = [
    "BaseRepository",
    "BookingRepository",
    "PaymentRepository",
    "ProviderRepository",
    "RepositoryFactory",
]
