# backend/tests/conftest.py
"""
Pytest configuration for the payments core.

Tests run against an in-memory SQLite database shared across threads, so
routes that hop into worker threads see the same data as the test body.
Stripe is never called: services get a mocked PaymentGateway, and gateway
tests patch the stripe SDK classes directly.
"""

import os
import sys

# CRITICAL: Set test configuration BEFORE any app imports!
os.environ["CI"] = "true"
os.environ["DATABASE_URL"] = "sqlite://"
os.environ["STRIPE_SECRET_KEY"] = "sk_test_payments_core"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test_payments_core"
os.environ.setdefault("PLATFORM_FEE_PERCENTAGE", "10")

# Add the backend directory to Python path so imports work
backend_dir = os.path.dirname(os.path.dirname(os.path.abspath(__file__)))
sys.path.insert(0, backend_dir)

from decimal import Decimal
from unittest.mock import MagicMock

from fastapi.testclient import TestClient
import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.pool import StaticPool

from app.api.dependencies import get_db, get_payment_gateway
from app.database import Base
from app.main import app
from app.models.payment import ConnectedAccount
from app.models.provider import ProviderProfile, ProviderSchedule, ProviderService
from app.services.payment_gateway import PaymentGateway

from .factories import WEEKDAY_SCHEDULE, new_id


# ============================================================================
# Database
# ============================================================================


@pytest.fixture(scope="session")
def test_engine():
    engine = create_engine(
        "sqlite://",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )
    Base.metadata.create_all(bind=engine)
    yield engine
    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db(test_engine) -> Session:
    """Fresh session per test; every table is emptied afterwards."""
    TestingSessionLocal = sessionmaker(
        autocommit=False, autoflush=False, bind=test_engine, expire_on_commit=False
    )
    session = TestingSessionLocal()
    try:
        yield session
    finally:
        session.rollback()
        session.close()
        with test_engine.begin() as conn:
            for table in reversed(Base.metadata.sorted_tables):
                conn.execute(table.delete())


@pytest.fixture(autouse=True)
def _no_redis(monkeypatch: pytest.MonkeyPatch):
    """Locks fail open without Redis; skip the connection attempt entirely."""
    monkeypatch.setattr("app.core.booking_lock._get_sync_redis", lambda: None)
    yield


# ============================================================================
# Provider and customer fixtures
# ============================================================================


@pytest.fixture
def customer_id() -> str:
    return new_id()


@pytest.fixture
def provider_id() -> str:
    return new_id()


@pytest.fixture
def provider_profile(db: Session, provider_id: str) -> ProviderProfile:
    profile = ProviderProfile(user_id=provider_id, business_name="Test Cleaning Co")
    db.add(profile)
    db.commit()
    return profile


@pytest.fixture
def provider_service(db: Session, provider_id: str) -> ProviderService:
    service = ProviderService(
        provider_id=provider_id,
        name="Deep Clean",
        base_price=Decimal("100.00"),
        duration_minutes=60,
        is_active=True,
    )
    db.add(service)
    db.commit()
    return service


@pytest.fixture
def provider_schedule(db: Session, provider_id: str) -> ProviderSchedule:
    schedule = ProviderSchedule(provider_id=provider_id, weekly_schedule=dict(WEEKDAY_SCHEDULE))
    db.add(schedule)
    db.commit()
    return schedule


@pytest.fixture
def connected_account(db: Session, provider_id: str) -> ConnectedAccount:
    account = ConnectedAccount(
        provider_id=provider_id,
        stripe_account_id="acct_test_provider",
        charges_enabled=True,
        details_submitted=True,
        onboarding_completed=True,
        requirements=[],
    )
    db.add(account)
    db.commit()
    return account


@pytest.fixture
def mock_gateway() -> MagicMock:
    """PaymentGateway double; the static fee/amount helpers stay real."""
    gateway = MagicMock(spec=PaymentGateway)
    gateway.refund_intent.return_value = {"id": "re_test_1", "status": "succeeded"}
    gateway.resolve_charge_id.return_value = "ch_test_1"
    gateway.capture_held_funds.return_value = "ch_test_1"
    gateway.transfer_to_provider.return_value = {"id": "tr_test_1", "object": "transfer"}
    gateway.retrieve_account.return_value = {
        "id": "acct_test_provider",
        "charges_enabled": True,
        "details_submitted": True,
        "requirements": {"currently_due": [], "past_due": [], "pending_verification": []},
    }
    return gateway


# ============================================================================
# HTTP client and auth
# ============================================================================


@pytest.fixture
def client(db: Session) -> TestClient:
    """Client bound to the test session. Stripe stays real unless a test overrides the gateway."""

    def override_get_db():
        yield db

    app.dependency_overrides[get_db] = override_get_db
    with TestClient(app) as test_client:
        yield test_client
    app.dependency_overrides.clear()


@pytest.fixture
def client_with_gateway(client: TestClient, mock_gateway: MagicMock) -> TestClient:
    app.dependency_overrides[get_payment_gateway] = lambda: mock_gateway
    yield client
    app.dependency_overrides.pop(get_payment_gateway, None)
