"""
Unit tests for the ingestion reconciler.

Tests cover:
- Idempotent upsert (same local id, identical stored values, full overwrite)
- Unique-key insert race retried once as an update
- One row per (tenant, shopify id)
- Order item replacement and item_count
- Customer/product links resolved only when the target already exists
- Tenant isolation
- Keyed lock registry cleanup
"""

import threading
from decimal import Decimal

import pytest
from sqlalchemy.exc import IntegrityError

from shopsight.ingestion.field_mapper import map_customer, map_order, map_product
from shopsight.ingestion.kinds import EntityKind
from shopsight.ingestion.reconciler import IngestionReconciler, KeyedLockRegistry
from shopsight.models.customer import Customer
from shopsight.models.order import Order, OrderItem
from shopsight.models.product import Product
from shopsight.tests.mocks.mock_shopify import (
    customer_payload,
    line_item_payload,
    order_payload,
    product_payload,
)


@pytest.fixture
def tenant(make_tenant):
    return make_tenant(connected=False)


@pytest.fixture
def reconciler(db_session, tenant):
    return IngestionReconciler(db_session, tenant.id, lock_registry=KeyedLockRegistry())


def _items(db_session, order_id):
    return (
        db_session.query(OrderItem)
        .filter(OrderItem.order_id == order_id)
        .order_by(OrderItem.position)
        .all()
    )


def _order_snapshot(db_session, order_id):
    """Stored header columns (minus timestamps) and item tuples."""
    order = db_session.get(Order, order_id)
    db_session.refresh(order)
    header = {
        column.name: getattr(order, column.name)
        for column in Order.__table__.columns
        if column.name not in ("created_at", "updated_at")
    }
    items = [
        (i.title, i.quantity, Decimal(str(i.price)), Decimal(str(i.total_discount)), i.product_id)
        for i in _items(db_session, order_id)
    ]
    return header, items


class TestReconcilerConstruction:
    def test_requires_tenant_id(self, db_session):
        with pytest.raises(ValueError):
            IngestionReconciler(db_session, "")

    def test_rejects_mismatched_record_type(self, reconciler):
        with pytest.raises(TypeError):
            reconciler.upsert(EntityKind.ORDERS, map_customer(customer_payload(1)))


class TestIdempotentUpsert:
    """Repeated upserts of the same Shopify id converge on one row."""

    def test_same_payload_twice_keeps_one_row_and_id(self, db_session, reconciler):
        mapped = map_customer(customer_payload(1, total_spent="50.00"))

        first_id = reconciler.upsert(EntityKind.CUSTOMERS, mapped)
        second_id = reconciler.upsert(EntityKind.CUSTOMERS, mapped)

        assert first_id == second_id
        assert db_session.query(Customer).count() == 1

    def test_second_upsert_overwrites_fields(self, db_session, reconciler):
        reconciler.upsert(EntityKind.PRODUCTS, map_product(product_payload(7, title="Old", price="5.00")))
        local_id = reconciler.upsert(
            EntityKind.PRODUCTS,
            map_product({"id": 7, "title": "New"}),
        )

        product = db_session.get(Product, local_id)
        db_session.refresh(product)
        assert product.title == "New"
        # full overwrite, not merge
        assert product.vendor is None
        assert Decimal(product.price) == Decimal("0.00")
        assert db_session.query(Product).count() == 1

    def test_returns_stored_row_id(self, db_session, reconciler):
        local_id = reconciler.upsert(EntityKind.CUSTOMERS, map_customer(customer_payload(3)))

        customer = db_session.get(Customer, local_id)
        assert customer.shopify_customer_id == 3
        assert customer.tenant_id == reconciler.tenant_id

    def test_same_order_twice_stores_identical_values(self, db_session, reconciler):
        reconciler.upsert(EntityKind.CUSTOMERS, map_customer(customer_payload(42)))
        reconciler.upsert(EntityKind.PRODUCTS, map_product(product_payload(5)))
        mapped = map_order(order_payload(
            1,
            customer_id=42,
            line_items=[
                line_item_payload(10, 5, quantity=2, price="12.50", title="Lamp"),
                line_item_payload(11, None, quantity=1, price="3.00", title="Custom"),
            ],
        ))

        first_id = reconciler.upsert(EntityKind.ORDERS, mapped)
        first = _order_snapshot(db_session, first_id)
        second_id = reconciler.upsert(EntityKind.ORDERS, mapped)
        second = _order_snapshot(db_session, second_id)

        assert first_id == second_id
        assert first == second
        header, items = second
        assert header["item_count"] == 3
        assert header["customer_id"] is not None
        assert [i[:2] for i in items] == [("Lamp", 2), ("Custom", 1)]


class TestInsertRace:
    """A first insert that loses the unique-key race is retried as an update."""

    def test_duplicate_insert_retried_as_update(self, db_session, reconciler, monkeypatch):
        existing_id = reconciler.upsert(
            EntityKind.CUSTOMERS, map_customer(customer_payload(1, total_spent="10.00")),
        )
        real_locate = reconciler._locate
        calls = []

        def stale_locate(*args):
            calls.append(args)
            # first lookup misses the row another writer just committed
            return None if len(calls) == 1 else real_locate(*args)

        monkeypatch.setattr(reconciler, "_locate", stale_locate)

        local_id = reconciler.upsert(
            EntityKind.CUSTOMERS, map_customer(customer_payload(1, total_spent="25.00")),
        )

        assert local_id == existing_id
        assert len(calls) == 2
        assert db_session.query(Customer).count() == 1
        customer = db_session.get(Customer, existing_id)
        db_session.refresh(customer)
        assert Decimal(str(customer.total_spent)) == Decimal("25.00")

    def test_second_conflict_is_raised(self, db_session, reconciler, monkeypatch):
        reconciler.upsert(EntityKind.CUSTOMERS, map_customer(customer_payload(1)))
        monkeypatch.setattr(reconciler, "_locate", lambda *args: None)

        with pytest.raises(IntegrityError):
            reconciler.upsert(EntityKind.CUSTOMERS, map_customer(customer_payload(1)))

        assert db_session.query(Customer).count() == 1


class TestOrderItems:
    def test_items_created_in_payload_order(self, db_session, reconciler):
        local_id = reconciler.upsert(EntityKind.ORDERS, map_order(order_payload(
            1,
            line_items=[
                line_item_payload(10, 100, quantity=2, title="A"),
                line_item_payload(11, 101, quantity=1, title="B"),
            ],
        )))

        items = _items(db_session, local_id)
        assert [i.title for i in items] == ["A", "B"]
        assert [i.position for i in items] == [0, 1]
        assert all(i.tenant_id == reconciler.tenant_id for i in items)

        order = db_session.get(Order, local_id)
        assert order.item_count == 3

    def test_item_set_fully_replaced(self, db_session, reconciler):
        reconciler.upsert(EntityKind.ORDERS, map_order(order_payload(
            1,
            line_items=[
                line_item_payload(10, 100, quantity=2, title="A"),
                line_item_payload(11, 101, quantity=4, title="B"),
            ],
        )))
        local_id = reconciler.upsert(EntityKind.ORDERS, map_order(order_payload(
            1,
            line_items=[line_item_payload(12, 102, quantity=5, title="C")],
        )))

        items = _items(db_session, local_id)
        assert [i.title for i in items] == ["C"]
        assert db_session.query(OrderItem).count() == 1

        order = db_session.get(Order, local_id)
        db_session.refresh(order)
        assert order.item_count == 5
        assert [i.title for i in order.items] == ["C"]

    def test_order_without_items(self, db_session, reconciler):
        local_id = reconciler.upsert(EntityKind.ORDERS, map_order(order_payload(2)))

        assert _items(db_session, local_id) == []
        assert db_session.get(Order, local_id).item_count == 0


class TestLinkResolution:
    def test_links_resolved_when_targets_exist(self, db_session, reconciler):
        customer_id = reconciler.upsert(EntityKind.CUSTOMERS, map_customer(customer_payload(42)))
        product_id = reconciler.upsert(EntityKind.PRODUCTS, map_product(product_payload(5)))

        order_id = reconciler.upsert(EntityKind.ORDERS, map_order(order_payload(
            1, customer_id=42, line_items=[line_item_payload(10, 5)],
        )))

        order = db_session.get(Order, order_id)
        assert order.customer_id == customer_id
        assert _items(db_session, order_id)[0].product_id == product_id

    def test_links_absent_when_targets_missing(self, db_session, reconciler):
        order_id = reconciler.upsert(EntityKind.ORDERS, map_order(order_payload(
            1, customer_id=42, line_items=[line_item_payload(10, 5)],
        )))

        order = db_session.get(Order, order_id)
        item = _items(db_session, order_id)[0]
        assert order.customer_id is None
        assert order.shopify_customer_id == 42
        assert item.product_id is None
        assert item.shopify_product_id == 5

    def test_links_not_backfilled_when_target_arrives_later(self, db_session, reconciler):
        order_id = reconciler.upsert(EntityKind.ORDERS, map_order(order_payload(1, customer_id=42)))
        reconciler.upsert(EntityKind.CUSTOMERS, map_customer(customer_payload(42)))

        order = db_session.get(Order, order_id)
        db_session.refresh(order)
        assert order.customer_id is None

    def test_links_never_cross_tenants(self, db_session, make_tenant, reconciler):
        other = make_tenant(connected=False)
        IngestionReconciler(db_session, other.id).upsert(
            EntityKind.CUSTOMERS, map_customer(customer_payload(42)),
        )

        order_id = reconciler.upsert(EntityKind.ORDERS, map_order(order_payload(1, customer_id=42)))

        assert db_session.get(Order, order_id).customer_id is None


class TestTenantIsolation:
    def test_same_shopify_id_in_two_tenants(self, db_session, make_tenant, reconciler):
        other = make_tenant(connected=False)
        other_reconciler = IngestionReconciler(db_session, other.id)

        a = reconciler.upsert(EntityKind.CUSTOMERS, map_customer(customer_payload(1, total_spent="10.00")))
        b = other_reconciler.upsert(EntityKind.CUSTOMERS, map_customer(customer_payload(1, total_spent="99.00")))

        assert a != b
        assert db_session.query(Customer).count() == 2
        mine = db_session.get(Customer, a)
        db_session.refresh(mine)
        assert Decimal(mine.total_spent) == Decimal("10.00")


class TestKeyedLockRegistry:
    def test_entries_released_after_use(self):
        registry = KeyedLockRegistry()

        with registry.hold(("t1", "orders", 1)):
            assert len(registry) == 1
        assert len(registry) == 0

    def test_entry_released_on_error(self):
        registry = KeyedLockRegistry()

        with pytest.raises(RuntimeError):
            with registry.hold("key"):
                raise RuntimeError("boom")
        assert len(registry) == 0

    def test_same_key_is_serialized(self):
        registry = KeyedLockRegistry()
        entered = threading.Event()
        release = threading.Event()
        order = []

        def first():
            with registry.hold("k"):
                entered.set()
                release.wait(timeout=5)
                order.append("first")

        def second():
            entered.wait(timeout=5)
            with registry.hold("k"):
                order.append("second")

        t1 = threading.Thread(target=first)
        t2 = threading.Thread(target=second)
        t1.start()
        t2.start()
        entered.wait(timeout=5)
        release.set()
        t1.join(timeout=5)
        t2.join(timeout=5)

        assert order == ["first", "second"]
        assert len(registry) == 0
