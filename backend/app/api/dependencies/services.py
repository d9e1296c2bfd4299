# backend/app/api/dependencies/services.py
"""
Service layer dependencies for dependency injection.

This module provides factory functions that create service instances
with their required dependencies properly injected. Tests replace them
through app.dependency_overrides.
"""

import logging

from fastapi import Depends
from sqlalchemy.orm import Session

from ...database import get_db
from ...services.account_status_service import AccountStatusService
from ...services.availability_validator import AvailabilityValidator
from ...services.booking_service import BookingService
from ...services.payment_gateway import PaymentGateway
from ...services.settlement_service import SettlementService

logger = logging.getLogger(__name__)


def get_payment_gateway(db: Session = Depends(get_db)) -> PaymentGateway:
    return PaymentGateway(db)


def get_availability_validator(db: Session = Depends(get_db)) -> AvailabilityValidator:
    return AvailabilityValidator(db)


def get_booking_service(
    db: Session = Depends(get_db),
    payment_gateway: PaymentGateway = Depends(get_payment_gateway),
    availability_validator: AvailabilityValidator = Depends(get_availability_validator),
) -> BookingService:
    """
    Get booking service instance with all dependencies.

    Args:
        db: Database session
        payment_gateway: Stripe gateway for intent checks and refunds
        availability_validator: Slot validator shared with the availability route

    Returns:
        BookingService instance
    """
    return BookingService(
        db,
        payment_gateway=payment_gateway,
        availability_validator=availability_validator,
    )


def get_account_status_service(
    db: Session = Depends(get_db),
    payment_gateway: PaymentGateway = Depends(get_payment_gateway),
) -> AccountStatusService:
    return AccountStatusService(db, payment_gateway=payment_gateway)


def get_settlement_service(
    db: Session = Depends(get_db),
    payment_gateway: PaymentGateway = Depends(get_payment_gateway),
    account_status_service: AccountStatusService = Depends(get_account_status_service),
) -> SettlementService:
    return SettlementService(
        db,
        payment_gateway=payment_gateway,
        account_status_service=account_status_service,
    )
