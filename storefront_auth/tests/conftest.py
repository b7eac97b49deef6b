"""
Pytest configuration for storefront_auth. In-memory SQLite and fixed secrets, set before any
storefront_auth module is imported.
"""
import os

os.environ["STOREFRONT_DATABASE_URL"] = "sqlite:///:memory:"
os.environ["STOREFRONT_CARRIER_SECRET"] = "test-carrier-secret-0123456789abcdef0123456789"
os.environ["STOREFRONT_API_SECRET"] = "test-api-secret"
os.environ["STOREFRONT_API_KEY"] = "test-api-key"
os.environ["STOREFRONT_HANDSHAKE_TTL_SECONDS"] = "600"
os.environ["STOREFRONT_RATE_LIMIT_INITIATE_PER_MINUTE"] = "1000"
os.environ.pop("STOREFRONT_TENANT_DOMAIN_SUFFIX", None)

import pytest

from storefront_auth import services
from storefront_auth.database import SessionLocal, engine
from storefront_auth.models import Base


class FakeClock:
    """Wall-clock stand-in shared by the nonce store, carrier, and coordinator."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


@pytest.fixture(autouse=True)
def fresh_db():
    """Every test starts with empty tables and freshly built services."""
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    services.reset_services()
    yield
    services.reset_services()


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def db():
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()
