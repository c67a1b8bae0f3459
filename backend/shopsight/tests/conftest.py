"""
Root test configuration and fixtures.

Provides:
- db_engine / db_session: fresh in-memory SQLite database per test
- make_tenant: factory for tenants (optionally connected to the mock shop)
- mock_shopify / client_factory: Shopify Admin API faked with httpx.MockTransport
- isolated settings and encryption key per test
"""

import os
import uuid
from typing import Generator

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import sessionmaker, Session
from sqlalchemy.pool import StaticPool

from shopsight.config.settings import reset_ingestion_settings
from shopsight.platform.secrets import encrypt_secret, reset_secrets_manager
from shopsight.tests.mocks.mock_shopify import MockShopifyServer

# Set test environment
os.environ.setdefault("ENV", "test")

_ENV_VARS_CLEARED = (
    "SHOPIFY_WEBHOOK_SECRET",
    "SHOPIFY_API_VERSION",
    "SYNC_INTERVAL_SECONDS",
    "SYNC_SCHEDULER_ENABLED",
    "SYNC_LEASE_MINUTES",
)


@pytest.fixture(autouse=True)
def _isolated_settings(monkeypatch):
    """Fresh settings singleton and encryption key for every test."""
    for name in _ENV_VARS_CLEARED:
        monkeypatch.delenv(name, raising=False)
    monkeypatch.setenv("ENCRYPTION_KEY", "test-encryption-key")
    reset_ingestion_settings()
    reset_secrets_manager()
    yield
    reset_ingestion_settings()
    reset_secrets_manager()


@pytest.fixture
def db_engine():
    """In-memory SQLite engine with all tables created."""
    engine = create_engine(
        "sqlite:///:memory:",
        connect_args={"check_same_thread": False},
        poolclass=StaticPool,
    )

    from shopsight.db_base import Base
    import shopsight.models  # noqa: F401 - registers all tables

    Base.metadata.create_all(bind=engine)

    yield engine

    Base.metadata.drop_all(bind=engine)
    engine.dispose()


@pytest.fixture
def db_session(db_engine) -> Generator[Session, None, None]:
    """
    Session bound to a per-test database.

    Services commit and roll back freely; the database is discarded after
    the test.
    """
    SessionLocal = sessionmaker(
        autocommit=False,
        autoflush=False,
        expire_on_commit=False,
        bind=db_engine,
    )
    session = SessionLocal()
    yield session
    session.close()


@pytest.fixture
def mock_shopify() -> MockShopifyServer:
    return MockShopifyServer()


@pytest.fixture
def client_factory(mock_shopify):
    """Catalog client factory routed to the mock shop, with no backoff sleeps."""
    from shopsight.integrations.shopify.client import ShopifyCatalogClient

    def _factory(shop_domain, access_token, api_version=None):
        return ShopifyCatalogClient(
            shop_domain,
            access_token,
            api_version=api_version,
            transport=mock_shopify.get_mock_transport(),
            sleep=lambda _seconds: None,
        )

    return _factory


@pytest.fixture
def make_tenant(db_session, mock_shopify):
    """
    Factory fixture creating a tenant.

    Usage:
        tenant = make_tenant()                    # connected to mock_shopify
        other = make_tenant(connected=False)
    """
    from shopsight.models.tenant import Tenant

    def _make(connected: bool = True, shop_domain=None, access_token=None, **kwargs) -> Tenant:
        tenant = Tenant(
            id=kwargs.pop("id", f"tenant-{uuid.uuid4().hex[:8]}"),
            name=kwargs.pop("name", "Test Tenant"),
            **kwargs,
        )
        if connected:
            tenant.shop_domain = shop_domain or mock_shopify.shop
            tenant.shopify_access_token_encrypted = encrypt_secret(access_token or mock_shopify.access_token)
            tenant.shopify_api_version = "2024-01"
            tenant.shopify_connected = True
        elif shop_domain:
            tenant.shop_domain = shop_domain
        db_session.add(tenant)
        db_session.commit()
        return tenant

    return _make


# =============================================================================
# Markers
# =============================================================================

def pytest_configure(config):
    """Register custom markers."""
    config.addinivalue_line("markers", "security: mark test as security-focused")
    config.addinivalue_line("markers", "slow: mark test as slow-running")
