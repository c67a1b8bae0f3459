"""
Order and OrderItem models.

An Order exclusively owns its items. The reconciler replaces the whole item
set on every upsert (delete range by order_id, then insert range) inside the
same transaction as the order header, so readers never see a header and an
item set from different versions.

OrderItem.shopify_product_id is a weak reference: the product may not exist
locally yet, so it is a plain column resolved by lookup, never a foreign key
to products.
"""

import enum

from sqlalchemy import (
    Column, String, Text, Integer, BigInteger, Boolean, DateTime, Enum,
    ForeignKey, UniqueConstraint, Index,
)
from sqlalchemy.orm import relationship

from shopsight.db_base import Base
from shopsight.models.base import MONEY, TimestampMixin, TenantScopedMixin, generate_uuid


def _enum_values(enum_cls):
    return [m.value for m in enum_cls]


class FinancialStatus(str, enum.Enum):
    PENDING = "pending"
    AUTHORIZED = "authorized"
    PARTIALLY_PAID = "partially_paid"
    PAID = "paid"
    PARTIALLY_REFUNDED = "partially_refunded"
    REFUNDED = "refunded"
    VOIDED = "voided"


class FulfillmentStatus(str, enum.Enum):
    UNFULFILLED = "unfulfilled"
    PARTIAL = "partial"
    FULFILLED = "fulfilled"
    RESTOCKED = "restocked"


class Order(Base, TimestampMixin, TenantScopedMixin):
    """Ingested Shopify order header."""

    __tablename__ = "orders"

    id = Column(String(36), primary_key=True, default=generate_uuid)

    shopify_order_id = Column(
        BigInteger,
        nullable=False,
        comment="Shopify order id"
    )
    order_number = Column(String(64), nullable=True)

    # Monetary totals (never null, default zero)
    total_price = Column(MONEY, nullable=False, default=0)
    subtotal_price = Column(MONEY, nullable=False, default=0)
    total_tax = Column(MONEY, nullable=False, default=0)
    total_discounts = Column(MONEY, nullable=False, default=0)
    total_shipping = Column(MONEY, nullable=False, default=0)
    currency = Column(String(8), nullable=True)

    financial_status = Column(
        Enum(FinancialStatus, name="order_financial_status", values_callable=_enum_values),
        nullable=False,
        default=FinancialStatus.PENDING,
    )
    fulfillment_status = Column(
        Enum(FulfillmentStatus, name="order_fulfillment_status", values_callable=_enum_values),
        nullable=True,
        comment="Absent until fulfillment begins"
    )

    note = Column(Text, nullable=True)
    tags = Column(Text, nullable=True)
    source_name = Column(String(64), nullable=True)
    confirmed = Column(Boolean, nullable=False, default=False)

    cancelled = Column(Boolean, nullable=False, default=False)
    cancelled_at = Column(DateTime(timezone=True), nullable=True)
    cancel_reason = Column(String(255), nullable=True)

    # Customer link (best-effort, resolved at upsert time only)
    customer_id = Column(
        String(36),
        ForeignKey("customers.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )
    shopify_customer_id = Column(BigInteger, nullable=True)
    customer_email = Column(String(255), nullable=True)

    item_count = Column(Integer, nullable=False, default=0, comment="Sum of item quantities")

    processed_at = Column(DateTime(timezone=True), nullable=True)
    shopify_created_at = Column(DateTime(timezone=True), nullable=True)
    shopify_updated_at = Column(DateTime(timezone=True), nullable=True)

    items = relationship(
        "OrderItem",
        back_populates="order",
        order_by="OrderItem.position",
        passive_deletes=True,
    )
    customer = relationship("Customer")

    __table_args__ = (
        UniqueConstraint("tenant_id", "shopify_order_id", name="uq_orders_tenant_shopify_id"),
        Index("ix_orders_tenant_processed_at", "tenant_id", "processed_at"),
    )

    def __repr__(self) -> str:
        return f"<Order(id={self.id}, tenant_id={self.tenant_id}, shopify_order_id={self.shopify_order_id})>"


class OrderItem(Base, TenantScopedMixin):
    """Line item owned by exactly one order."""

    __tablename__ = "order_items"

    id = Column(String(36), primary_key=True, default=generate_uuid)

    order_id = Column(
        String(36),
        ForeignKey("orders.id", ondelete="CASCADE"),
        nullable=False,
        index=True,
    )
    position = Column(Integer, nullable=False, default=0, comment="Index within the order payload")

    shopify_line_item_id = Column(BigInteger, nullable=True)
    shopify_product_id = Column(BigInteger, nullable=True, comment="Weak reference, not a foreign key")
    shopify_variant_id = Column(BigInteger, nullable=True)
    product_id = Column(
        String(36),
        ForeignKey("products.id", ondelete="SET NULL"),
        nullable=True,
        index=True,
    )

    title = Column(String(512), nullable=True)
    variant_title = Column(String(512), nullable=True)
    sku = Column(String(255), nullable=True)

    quantity = Column(Integer, nullable=False, default=0)
    price = Column(MONEY, nullable=False, default=0)
    total_discount = Column(MONEY, nullable=False, default=0)

    order = relationship("Order", back_populates="items")

    def __repr__(self) -> str:
        return f"<OrderItem(id={self.id}, order_id={self.order_id}, quantity={self.quantity})>"
