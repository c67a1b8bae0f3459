"""
Ingestion reconciler: tenant-scoped idempotent upsert of mapped records.

Both update paths (full sync and webhooks) write through `upsert`, so it is
the single place that enforces:
- one row per (tenant_id, shopify id) per entity kind
- full overwrite of mapped fields (not a merge)
- order items fully replaced on every order upsert, in the same transaction
  as the order header
- item_count == sum of item quantities
- customer/product links resolved by lookup at write time only

Same-key upserts are serialized with an in-process keyed lock plus
SELECT ... FOR UPDATE on the row lookup; a concurrent first insert that loses
the unique-constraint race is retried once as an update.
"""

import logging
import threading
from contextlib import contextmanager
from dataclasses import fields
from typing import Dict, Hashable, Iterator, List, Optional

from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from shopsight.ingestion.field_mapper import (
    MappedCustomer,
    MappedOrder,
    MappedProduct,
    MappedRecord,
)
from shopsight.ingestion.kinds import EntityKind
from shopsight.models.base import generate_uuid
from shopsight.models.customer import Customer
from shopsight.models.order import Order, OrderItem
from shopsight.models.product import Product

logger = logging.getLogger(__name__)

_MAPPED_TYPES = {
    EntityKind.CUSTOMERS: MappedCustomer,
    EntityKind.PRODUCTS: MappedProduct,
    EntityKind.ORDERS: MappedOrder,
}


class KeyedLockRegistry:
    """Reference-counted per-key locks; entries are dropped when unused."""

    def __init__(self):
        self._guard = threading.Lock()
        self._locks: Dict[Hashable, List] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._locks.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._locks[key] = entry
            entry[1] += 1

        entry[0].acquire()
        try:
            yield
        finally:
            entry[0].release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._locks.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._locks)


# Shared by every reconciler in the process
_upsert_locks = KeyedLockRegistry()


class IngestionReconciler:
    """
    Idempotent upsert of customers, products and orders for one tenant.

    SECURITY: tenant_id comes from the resolved tenant (sync) or the shop
    domain lookup (webhooks), never from the payload.
    """

    def __init__(
        self,
        db_session: Session,
        tenant_id: str,
        lock_registry: Optional[KeyedLockRegistry] = None,
    ):
        if not tenant_id:
            raise ValueError("tenant_id is required")
        self.db = db_session
        self.tenant_id = tenant_id
        self._locks = lock_registry or _upsert_locks

    def upsert(self, kind: EntityKind, mapped: MappedRecord) -> str:
        """
        Create or update the record keyed by (tenant_id, shopify id).

        Commits on success; rolls back and re-raises on failure.

        Returns:
            Local id of the stored record (stable across repeated upserts)
        """
        kind = EntityKind(kind)
        expected = _MAPPED_TYPES[kind]
        if not isinstance(mapped, expected):
            raise TypeError(f"{kind.value} upsert expects {expected.__name__}, got {type(mapped).__name__}")

        key = (self.tenant_id, kind.value, mapped.external_id)
        writer = {
            EntityKind.CUSTOMERS: self._write_customer,
            EntityKind.PRODUCTS: self._write_product,
            EntityKind.ORDERS: self._write_order,
        }[kind]

        with self._locks.hold(key):
            attempt = 0
            while True:
                try:
                    local_id = writer(mapped)
                    self.db.commit()
                    return local_id
                except IntegrityError:
                    self.db.rollback()
                    if attempt > 0:
                        raise
                    attempt += 1
                    logger.info(
                        "Concurrent insert detected, retrying upsert as update",
                        extra={
                            "tenant_id": self.tenant_id,
                            "entity_kind": kind.value,
                            "external_id": mapped.external_id,
                        },
                    )
                except Exception:
                    self.db.rollback()
                    raise

    # ------------------------------------------------------------------
    # Writers (no commit)
    # ------------------------------------------------------------------

    def _write_customer(self, mapped: MappedCustomer) -> str:
        customer = self._locate(Customer, Customer.shopify_customer_id, mapped.shopify_customer_id)
        if customer is None:
            customer = Customer(id=generate_uuid(), tenant_id=self.tenant_id)
            self.db.add(customer)
        _apply(customer, mapped)
        self.db.flush()
        return customer.id

    def _write_product(self, mapped: MappedProduct) -> str:
        product = self._locate(Product, Product.shopify_product_id, mapped.shopify_product_id)
        if product is None:
            product = Product(id=generate_uuid(), tenant_id=self.tenant_id)
            self.db.add(product)
        _apply(product, mapped)
        self.db.flush()
        return product.id

    def _write_order(self, mapped: MappedOrder) -> str:
        order = self._locate(Order, Order.shopify_order_id, mapped.shopify_order_id)
        if order is None:
            order = Order(id=generate_uuid(), tenant_id=self.tenant_id)
            self.db.add(order)
        _apply(order, mapped, skip=("line_items",))
        order.customer_id = self._resolve_customer_id(mapped.shopify_customer_id)
        order.item_count = mapped.item_count
        self.db.flush()

        # Replace the item set: delete range, insert range
        self.db.query(OrderItem).filter(
            OrderItem.order_id == order.id,
        ).delete(synchronize_session="fetch")

        for position, item in enumerate(mapped.line_items):
            self.db.add(OrderItem(
                id=generate_uuid(),
                tenant_id=self.tenant_id,
                order_id=order.id,
                position=position,
                shopify_line_item_id=item.shopify_line_item_id,
                shopify_product_id=item.shopify_product_id,
                shopify_variant_id=item.shopify_variant_id,
                product_id=self._resolve_product_id(item.shopify_product_id),
                title=item.title,
                variant_title=item.variant_title,
                sku=item.sku,
                quantity=item.quantity,
                price=item.price,
                total_discount=item.total_discount,
            ))
        self.db.flush()
        self.db.expire(order, ["items"])
        return order.id

    # ------------------------------------------------------------------
    # Lookups
    # ------------------------------------------------------------------

    def _locate(self, model, external_column, external_id: int):
        return (
            self.db.query(model)
            .filter(model.tenant_id == self.tenant_id, external_column == external_id)
            .with_for_update()
            .one_or_none()
        )

    def _resolve_customer_id(self, shopify_customer_id: Optional[int]) -> Optional[str]:
        if shopify_customer_id is None:
            return None
        return (
            self.db.query(Customer.id)
            .filter(
                Customer.tenant_id == self.tenant_id,
                Customer.shopify_customer_id == shopify_customer_id,
            )
            .scalar()
        )

    def _resolve_product_id(self, shopify_product_id: Optional[int]) -> Optional[str]:
        if shopify_product_id is None:
            return None
        return (
            self.db.query(Product.id)
            .filter(
                Product.tenant_id == self.tenant_id,
                Product.shopify_product_id == shopify_product_id,
            )
            .scalar()
        )


def _apply(row, mapped, skip=()) -> None:
    """Overwrite every mapped field on the row."""
    for f in fields(mapped):
        if f.name in skip:
            continue
        setattr(row, f.name, getattr(mapped, f.name))
