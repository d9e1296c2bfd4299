"""
Central export point for all dependencies.

This module re-exports all dependencies from submodules
for convenient access throughout the application.
"""

from ...database import get_db
from .auth import get_current_user
from .services import (
    get_account_status_service,
    get_availability_validator,
    get_booking_service,
    get_payment_gateway,
    get_settlement_service,
)

__all__ = [
    # Auth
    "get_current_user",
    # Database
    "get_db",
    # Services
    "get_account_status_service",
    "get_availability_validator",
    "get_booking_service",
    "get_payment_gateway",
    "get_settlement_service",
]
