# backend/app/core/config.py
import logging
import os
from pathlib import Path

from dotenv import load_dotenv
from pydantic import Field, SecretStr, field_validator
from pydantic_settings import BaseSettings, SettingsConfigDict


def is_running_tests() -> bool:
    """
    Detect if code is running under pytest.

    PYTEST_CURRENT_TEST is set automatically by pytest during test runs, and is
    not expected to be present in production environments.
    """
    return os.getenv("PYTEST_CURRENT_TEST") is not None


logger = logging.getLogger(__name__)

# Load .env file only if not in CI
if not os.getenv("CI"):
    env_path = Path(__file__).parent.parent.parent / ".env"  # Goes up to backend/.env
    logger.info(f"[CONFIG] Looking for .env at: {env_path}")
    load_dotenv(env_path)


class Settings(BaseSettings):
    environment: str = Field(default="development", description="Deployment environment name")
    log_level: str = Field(default="INFO", description="Root log level")

    # Database
    database_url: str = Field(
        default="sqlite:///./marketplace.db",
        description="SQLAlchemy database URL",
    )

    # Redis (booking and settlement locks)
    redis_url: str = "redis://localhost:6379"
    lock_namespace: str = Field(default="marketplace", description="Prefix for Redis lock keys")
    booking_lock_ttl_seconds: int = Field(default=30, ge=1)

    # Auth
    jwt_audience: str = Field(
        default="authenticated",
        description="Expected aud claim on bearer tokens (checked when present)",
    )

    # Stripe Configuration
    stripe_secret_key: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe secret key for backend API calls",
    )
    stripe_webhook_secret: SecretStr = Field(
        default=SecretStr(""),
        description="Stripe webhook signing secret",
    )
    stripe_currency: str = Field(default="usd", description="Default currency for payments")
    stripe_timeout_seconds: int = Field(
        default=8, ge=1, description="Per-request timeout for Stripe API calls"
    )

    # Marketplace policy
    platform_fee_percentage: float = Field(
        default=10, description="Platform fee percentage applied to base price (10 = 10%)"
    )
    provider_response_hours: int = Field(
        default=24, ge=1, description="Hours a provider has to accept a pending booking"
    )
    slot_interval_minutes: int = Field(default=30, ge=5)
    default_service_duration_minutes: int = Field(default=60, ge=1)

    model_config = SettingsConfigDict(
        env_file=".env" if not os.getenv("CI") else None,
        case_sensitive=False,
        extra="ignore",
    )

    @field_validator("platform_fee_percentage")
    @classmethod
    def validate_fee_percentage(cls, v: float) -> float:
        if v < 0 or v >= 100:
            raise ValueError("platform_fee_percentage must be in [0, 100)")
        return v

    @field_validator("log_level")
    @classmethod
    def normalize_log_level(cls, v: str) -> str:
        return (v or "INFO").strip().upper()

    @property
    def is_sqlite(self) -> bool:
        return self.database_url.startswith("sqlite")

    @property
    def stripe_configured(self) -> bool:
        return bool(self.stripe_secret_key.get_secret_value())


settings = Settings()
