"""
Pytest configuration and fixtures
"""
import os
import sys
from pathlib import Path

import pytest
from fastapi.testclient import TestClient

# Add src to path
src_path = Path(__file__).parent.parent / "src"
sys.path.insert(0, str(src_path))

# Set test environment variables before importing
os.environ["ENV"] = "test"
os.environ["DATABASE_URL"] = "sqlite:///:memory:"
os.environ["RECONCILE_SECRET"] = "test-reconcile-secret"
os.environ["SUPABASE_JWT_SECRET"] = "test-supabase-jwt-secret-min-32-characters"
os.environ["STRIPE_WEBHOOK_SECRET"] = "whsec_test"
os.environ["ENABLE_SCHEDULER"] = "false"
os.environ["LOG_LEVEL"] = "WARNING"  # Reduce log noise in tests
os.environ.pop("REDIS_URL", None)

# Import after setting env vars
from riskmate.api_server import app
from riskmate.db.base import Base
from riskmate.db.engine import SessionLocal, engine, get_db
from riskmate.db.models import Organization, User, Subscription, Job
from riskmate.services.rate_limiter import FixedWindowRateLimiter, get_rate_limiter
from riskmate.services.storage_provider import LocalDiskStorageProvider, get_storage
from riskmate.services.stripe_gateway import get_stripe_gateway

from helpers import FakeStripeGateway, make_token


@pytest.fixture(scope="function")
def db_session():
    """Fresh schema and session for each test"""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    session = SessionLocal()

    def override_get_db():
        yield session

    app.dependency_overrides[get_db] = override_get_db

    yield session

    session.close()
    app.dependency_overrides.clear()


@pytest.fixture(scope="function")
def fake_gateway():
    gateway = FakeStripeGateway()
    app.dependency_overrides[get_stripe_gateway] = lambda: gateway
    return gateway


@pytest.fixture(scope="function")
def rate_limiter():
    limiter = FixedWindowRateLimiter()
    app.dependency_overrides[get_rate_limiter] = lambda: limiter
    return limiter


@pytest.fixture(scope="function")
def storage(tmp_path):
    provider = LocalDiskStorageProvider(base_path=str(tmp_path / "storage"))
    app.dependency_overrides[get_storage] = lambda: provider
    return provider


@pytest.fixture(scope="function")
def client(db_session, fake_gateway, rate_limiter, storage):
    """Test client with database, Stripe, limiter and storage overridden"""
    return TestClient(app)


@pytest.fixture(scope="function")
def organization(db_session):
    org = Organization(name="Acme Roofing")
    db_session.add(org)
    db_session.commit()
    return org


@pytest.fixture(scope="function")
def test_user(db_session, organization):
    user = User(
        organization_id=organization.id,
        email="owner@acme.test",
        full_name="Olivia Owner",
        role="owner",
    )
    db_session.add(user)
    db_session.commit()
    return user


@pytest.fixture(scope="function")
def auth_headers(test_user):
    return {"Authorization": f"Bearer {make_token(test_user.id)}"}


@pytest.fixture(scope="function")
def active_subscription(db_session, organization):
    subscription = Subscription(
        organization_id=organization.id,
        tier="business",
        status="active",
        stripe_subscription_id="sub_active",
        stripe_customer_id="cus_123",
        seats_limit=None,
        jobs_limit=None,
    )
    db_session.add(subscription)
    db_session.commit()
    return subscription


@pytest.fixture(scope="function")
def job(db_session, organization, test_user):
    record = Job(
        organization_id=organization.id,
        client_name="Harbor Warehouse",
        job_type="roofing",
        location="12 Dock St",
        status="active",
        created_by=test_user.id,
    )
    db_session.add(record)
    db_session.commit()
    return record
