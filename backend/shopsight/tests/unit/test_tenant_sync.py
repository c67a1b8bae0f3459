"""
Unit tests for TenantSyncService and the periodic tenant scan.

Tests cover:
- connect(): verification, encrypted token storage, failure paths
- sync_all_data(): staged paging, success message and counts
- Failure at a stage keeps earlier stages and records FAILED
- Sync lease: live IN_PROGRESS rejected, expired lease taken over
- select_tenants_for_sync eligibility
"""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from shopsight.models.customer import Customer
from shopsight.models.order import Order, OrderItem
from shopsight.models.product import Product
from shopsight.models.tenant import SyncStatus, as_utc
from shopsight.platform.secrets import decrypt_secret
from shopsight.services.tenant_sync import (
    ShopifyConnectionFailedError,
    ShopifyNotConnectedError,
    SyncAlreadyInProgressError,
    TenantNotFoundError,
    TenantSyncService,
    format_success_message,
    select_tenants_for_sync,
)
from shopsight.tests.mocks.mock_shopify import (
    customer_payload,
    line_item_payload,
    order_payload,
    product_payload,
)

NOW = datetime(2024, 3, 15, 12, 0, tzinfo=timezone.utc)


@pytest.fixture
def seeded_shop(mock_shopify):
    mock_shopify.setup_records("customers", [customer_payload(1), customer_payload(2)])
    mock_shopify.setup_records("products", [product_payload(10), product_payload(11), product_payload(12)])
    mock_shopify.setup_records("orders", [
        order_payload(100, customer_id=1, line_items=[line_item_payload(1000, 10, quantity=2)]),
    ])
    return mock_shopify


def _service(db_session, tenant_id, client_factory, **kwargs):
    return TenantSyncService(db_session, tenant_id, client_factory=client_factory, clock=lambda: NOW, **kwargs)


class TestServiceConstruction:
    def test_requires_tenant_id(self, db_session):
        with pytest.raises(ValueError):
            TenantSyncService(db_session, "")

    def test_unknown_tenant(self, db_session, client_factory):
        service = _service(db_session, "missing", client_factory)
        with pytest.raises(TenantNotFoundError):
            service.get_connection_status()


class TestConnect:
    def test_valid_credential_is_stored_encrypted(self, db_session, make_tenant, client_factory, mock_shopify):
        tenant = make_tenant(connected=False)
        service = _service(db_session, tenant.id, client_factory)

        service.connect("https://Test-Store.myshopify.com/", mock_shopify.access_token)

        db_session.refresh(tenant)
        assert tenant.shopify_connected is True
        assert tenant.shop_domain == mock_shopify.shop
        assert tenant.shopify_access_token_encrypted != mock_shopify.access_token
        assert decrypt_secret(tenant.shopify_access_token_encrypted) == mock_shopify.access_token
        assert tenant.shopify_api_version == "2024-01"

    def test_rejected_credential_leaves_tenant_unchanged(self, db_session, make_tenant, client_factory, mock_shopify):
        tenant = make_tenant(connected=False)
        service = _service(db_session, tenant.id, client_factory)

        with pytest.raises(ShopifyConnectionFailedError) as exc_info:
            service.connect(mock_shopify.shop, "shpat_wrong")

        assert "Failed to connect to Shopify" in str(exc_info.value)
        db_session.refresh(tenant)
        assert tenant.shopify_connected is False
        assert tenant.shopify_access_token_encrypted is None

    def test_invalid_domain(self, db_session, make_tenant, client_factory):
        tenant = make_tenant(connected=False)
        with pytest.raises(ShopifyConnectionFailedError):
            _service(db_session, tenant.id, client_factory).connect("not a domain", "shpat_x")

    def test_empty_token(self, db_session, make_tenant, client_factory, mock_shopify):
        tenant = make_tenant(connected=False)
        with pytest.raises(ShopifyConnectionFailedError):
            _service(db_session, tenant.id, client_factory).connect(mock_shopify.shop, "")

    def test_domain_owned_by_another_tenant(self, db_session, make_tenant, client_factory, mock_shopify):
        make_tenant()  # owns the mock shop
        tenant = make_tenant(connected=False)

        with pytest.raises(ShopifyConnectionFailedError) as exc_info:
            _service(db_session, tenant.id, client_factory).connect(mock_shopify.shop, mock_shopify.access_token)

        assert "already connected" in str(exc_info.value)
        assert mock_shopify.requests_for("shop") == []

    def test_status_reflects_connection(self, db_session, make_tenant, client_factory, mock_shopify):
        tenant = make_tenant()
        status = _service(db_session, tenant.id, client_factory).get_connection_status()

        assert status.connected is True
        assert status.shop_domain == mock_shopify.shop
        assert status.sync_status == SyncStatus.NEVER
        assert status.last_sync_at is None
        assert status.counts == {"customers": 0, "products": 0, "orders": 0}


class TestSyncAllData:
    def test_full_sync_completes(self, db_session, make_tenant, client_factory, seeded_shop):
        tenant = make_tenant()

        result = _service(db_session, tenant.id, client_factory).sync_all_data()

        assert result.success is True
        assert result.counts == {"customers": 2, "products": 3, "orders": 1}
        assert result.message == "Successfully synced 2 customers, 3 products, 1 orders"
        assert result.completed_at == NOW

        db_session.refresh(tenant)
        assert tenant.sync_status == SyncStatus.COMPLETED
        assert tenant.sync_message == result.message
        assert as_utc(tenant.last_sync_at) == NOW
        assert tenant.sync_started_at is None

        order = db_session.query(Order).filter(Order.tenant_id == tenant.id).one()
        assert order.customer_id is not None
        item = db_session.query(OrderItem).filter(OrderItem.order_id == order.id).one()
        assert item.product_id is not None

    def test_stages_run_in_order(self, db_session, make_tenant, client_factory, seeded_shop):
        tenant = make_tenant()

        _service(db_session, tenant.id, client_factory).sync_all_data()

        paths = [r.url.path.rsplit("/", 1)[-1] for r in seeded_shop.requests]
        assert paths == ["customers.json", "products.json", "orders.json"]

    def test_multi_page_sync(self, db_session, make_tenant, client_factory, mock_shopify, monkeypatch):
        mock_shopify.setup_records("customers", [customer_payload(i) for i in range(1, 8)])
        tenant = make_tenant()
        service = _service(db_session, tenant.id, client_factory)
        monkeypatch.setitem(service.settings._values, "page_size", 3)

        result = service.sync_all_data()

        assert result.counts["customers"] == 7
        assert len(mock_shopify.requests_for("customers")) == 3
        assert db_session.query(Customer).filter(Customer.tenant_id == tenant.id).count() == 7

    def test_resync_is_idempotent(self, db_session, make_tenant, client_factory, seeded_shop):
        tenant = make_tenant()
        service = _service(db_session, tenant.id, client_factory)

        service.sync_all_data()
        result = service.sync_all_data()

        assert result.success is True
        assert db_session.query(Product).count() == 3
        assert db_session.query(OrderItem).count() == 1

    def test_unmappable_records_are_skipped(self, db_session, make_tenant, client_factory, mock_shopify):
        mock_shopify.setup_records("customers", [customer_payload(1), {"id": None}, "junk"])
        tenant = make_tenant()

        result = _service(db_session, tenant.id, client_factory).sync_all_data()

        assert result.success is True
        assert result.counts["customers"] == 1

    def test_out_of_range_money_does_not_fail_stage(self, db_session, make_tenant, client_factory, mock_shopify):
        mock_shopify.setup_records("orders", [
            order_payload(99, total_price="1e30"),
            order_payload(100, total_price="12.50"),
        ])
        tenant = make_tenant()

        result = _service(db_session, tenant.id, client_factory).sync_all_data()

        assert result.success is True
        assert result.counts["orders"] == 2
        stored = db_session.query(Order).filter(Order.shopify_order_id == 99).one()
        assert Decimal(str(stored.total_price)) == Decimal("0.00")

    def test_failure_at_orders_keeps_earlier_stages(self, db_session, make_tenant, client_factory, seeded_shop):
        seeded_shop.fail("orders", 401)
        tenant = make_tenant()

        result = _service(db_session, tenant.id, client_factory).sync_all_data()

        assert result.success is False
        assert result.failed_stage == "orders"
        assert "orders" in result.message
        db_session.refresh(tenant)
        assert tenant.sync_status == SyncStatus.FAILED
        assert "orders" in tenant.sync_message
        assert tenant.sync_started_at is None
        assert tenant.last_sync_at is None
        assert db_session.query(Customer).count() == 2
        assert db_session.query(Product).count() == 3
        assert db_session.query(Order).count() == 0

    def test_transient_errors_exhausted_fail_stage(self, db_session, make_tenant, client_factory, seeded_shop):
        seeded_shop.fail("products", 503)
        tenant = make_tenant()

        result = _service(db_session, tenant.id, client_factory).sync_all_data()

        assert result.failed_stage == "products"
        assert db_session.query(Customer).count() == 2
        assert len(seeded_shop.requests_for("products")) == 4

    def test_undecryptable_token_fails_setup(self, db_session, make_tenant, client_factory):
        tenant = make_tenant()
        tenant.shopify_access_token_encrypted = "not-a-fernet-token"
        db_session.commit()

        result = _service(db_session, tenant.id, client_factory).sync_all_data()

        assert result.success is False
        assert result.failed_stage == "setup"

    def test_not_connected(self, db_session, make_tenant, client_factory):
        tenant = make_tenant(connected=False)
        with pytest.raises(ShopifyNotConnectedError):
            _service(db_session, tenant.id, client_factory).sync_all_data()

    def test_status_after_sync_counts_rows(self, db_session, make_tenant, client_factory, seeded_shop):
        tenant = make_tenant()
        service = _service(db_session, tenant.id, client_factory)
        service.sync_all_data()

        status = service.get_connection_status()

        assert status.sync_status == SyncStatus.COMPLETED
        assert status.last_sync_at == NOW
        assert status.counts == {"customers": 2, "products": 3, "orders": 1}


class TestSyncLease:
    def test_live_lease_rejects_second_sync(self, db_session, make_tenant, client_factory, seeded_shop):
        tenant = make_tenant(
            sync_status=SyncStatus.IN_PROGRESS,
            sync_started_at=NOW - timedelta(minutes=5),
        )

        with pytest.raises(SyncAlreadyInProgressError):
            _service(db_session, tenant.id, client_factory).sync_all_data()

        assert seeded_shop.requests == []
        db_session.refresh(tenant)
        assert tenant.sync_status == SyncStatus.IN_PROGRESS

    def test_expired_lease_is_taken_over(self, db_session, make_tenant, client_factory, seeded_shop):
        tenant = make_tenant(
            sync_status=SyncStatus.IN_PROGRESS,
            sync_started_at=NOW - timedelta(hours=3),
        )

        result = _service(db_session, tenant.id, client_factory).sync_all_data()

        assert result.success is True

    def test_in_progress_without_start_time_is_eligible(self, db_session, make_tenant, client_factory, seeded_shop):
        tenant = make_tenant(sync_status=SyncStatus.IN_PROGRESS, sync_started_at=None)

        assert _service(db_session, tenant.id, client_factory).sync_all_data().success is True

    def test_failed_tenant_can_sync_again(self, db_session, make_tenant, client_factory, seeded_shop):
        tenant = make_tenant(sync_status=SyncStatus.FAILED, sync_message="Sync failed at orders stage: x")

        assert _service(db_session, tenant.id, client_factory).sync_all_data().success is True


class TestSelectTenantsForSync:
    def test_eligibility(self, db_session, make_tenant):
        idle = make_tenant(id="t-idle", shop_domain="idle.myshopify.com")
        done = make_tenant(id="t-done", shop_domain="done.myshopify.com", sync_status=SyncStatus.COMPLETED)
        stale = make_tenant(
            id="t-stale", shop_domain="stale.myshopify.com",
            sync_status=SyncStatus.IN_PROGRESS, sync_started_at=NOW - timedelta(hours=5),
        )
        make_tenant(
            id="t-live", shop_domain="live.myshopify.com",
            sync_status=SyncStatus.IN_PROGRESS, sync_started_at=NOW - timedelta(minutes=10),
        )
        make_tenant(id="t-inactive", shop_domain="inactive.myshopify.com", is_active=False)
        make_tenant(id="t-unconnected", connected=False)

        selected = select_tenants_for_sync(db_session, now=NOW, lease_minutes=120)

        assert selected == sorted([idle.id, done.id, stale.id])

    def test_empty(self, db_session):
        assert select_tenants_for_sync(db_session, now=NOW) == []


class TestFormatSuccessMessage:
    def test_missing_kinds_count_as_zero(self):
        assert format_success_message({"orders": 4}) == "Successfully synced 0 customers, 0 products, 4 orders"
