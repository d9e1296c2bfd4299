"""
Provider-side models: profile preferences, service catalog entries,
weekly schedule and blackout ranges.

These are owned by provider-facing screens. The payments core only reads them.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Any, Dict, List, Optional

from sqlalchemy import (
    JSON,
    Boolean,
    CheckConstraint,
    Date,
    DateTime,
    Integer,
    Numeric,
    String,
    Text,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column
import ulid

from app.database import Base


class ProviderProfile(Base):
    """Provider booking preferences. user_id is the provider id used on bookings."""

    __tablename__ = "provider_profiles"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    user_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    business_name: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)
    auto_confirm_bookings: Mapped[bool] = mapped_column(Boolean, default=False, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    def __repr__(self) -> str:
        return f"<ProviderProfile(user_id={self.user_id}, auto_confirm={self.auto_confirm_bookings})>"


class ProviderService(Base):
    """A bookable service offered by one provider."""

    __tablename__ = "provider_services"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    provider_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    name: Mapped[str] = mapped_column(String(255), nullable=False)
    description: Mapped[Optional[str]] = mapped_column(Text, nullable=True)
    base_price: Mapped[Decimal] = mapped_column(Numeric(10, 2), nullable=False, comment="Major units")
    duration_minutes: Mapped[int] = mapped_column(Integer, nullable=False, default=60)
    is_active: Mapped[bool] = mapped_column(Boolean, default=True, nullable=False)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    __table_args__ = (
        CheckConstraint("base_price >= 0", name="ck_provider_services_price"),
        CheckConstraint("duration_minutes > 0", name="ck_provider_services_duration"),
    )

    def __repr__(self) -> str:
        return f"<ProviderService({self.name}, provider={self.provider_id}, price={self.base_price})>"


class ProviderSchedule(Base):
    """
    Weekly recurring availability.

    weekly_schedule is keyed by lower-case weekday name:
        {"monday": {"enabled": true, "start": "09:00", "end": "17:00"}, ...}
    """

    __tablename__ = "provider_schedules"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    provider_id: Mapped[str] = mapped_column(String(64), unique=True, nullable=False, index=True)
    weekly_schedule: Mapped[Dict[str, Any]] = mapped_column(JSON, nullable=False, default=dict)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)
    updated_at: Mapped[Optional[datetime]] = mapped_column(DateTime(timezone=True), onupdate=func.now())

    def day_entry(self, weekday_name: str) -> Optional[Dict[str, Any]]:
        entry = (self.weekly_schedule or {}).get(weekday_name.lower())
        return entry if isinstance(entry, dict) else None

    def __repr__(self) -> str:
        days: List[str] = sorted(
            d for d, v in (self.weekly_schedule or {}).items() if isinstance(v, dict) and v.get("enabled")
        )
        return f"<ProviderSchedule(provider={self.provider_id}, days={days})>"


class ProviderBlackout(Base):
    """Inclusive date range during which the provider takes no bookings."""

    __tablename__ = "provider_blackouts"

    id: Mapped[str] = mapped_column(String(26), primary_key=True, default=lambda: str(ulid.ULID()))
    provider_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    start_date: Mapped[date] = mapped_column(Date, nullable=False)
    end_date: Mapped[date] = mapped_column(Date, nullable=False)
    reason: Mapped[Optional[str]] = mapped_column(String(255), nullable=True)

    created_at: Mapped[datetime] = mapped_column(DateTime(timezone=True), server_default=func.now(), nullable=False)

    __table_args__ = (CheckConstraint("start_date <= end_date", name="ck_provider_blackouts_range"),)

    def covers(self, day: date) -> bool:
        return self.start_date <= day <= self.end_date

    def __repr__(self) -> str:
        return f"<ProviderBlackout(provider={self.provider_id}, {self.start_date}..{self.end_date})>"
