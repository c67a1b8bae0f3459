"""
Product model - Shopify products ingested per tenant.

Only the first variant and first image of a product are denormalized onto
the row; (tenant_id, shopify_product_id) is unique.
"""

import enum

from sqlalchemy import (
    Column, String, Text, Integer, BigInteger, Numeric, DateTime, Enum,
    UniqueConstraint,
)

from shopsight.db_base import Base
from shopsight.models.base import MONEY, TimestampMixin, TenantScopedMixin, generate_uuid


class ProductStatus(str, enum.Enum):
    ACTIVE = "active"
    DRAFT = "draft"
    ARCHIVED = "archived"


class Product(Base, TimestampMixin, TenantScopedMixin):
    """Ingested Shopify product."""

    __tablename__ = "products"

    id = Column(String(36), primary_key=True, default=generate_uuid)

    shopify_product_id = Column(
        BigInteger,
        nullable=False,
        comment="Shopify product id"
    )

    title = Column(String(512), nullable=True)
    description = Column(Text, nullable=True, comment="body_html from Shopify")
    vendor = Column(String(255), nullable=True)
    product_type = Column(String(255), nullable=True)
    handle = Column(String(512), nullable=True)
    tags = Column(Text, nullable=True)

    status = Column(
        Enum(ProductStatus, name="product_status", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
        default=ProductStatus.ACTIVE,
    )

    # First variant
    shopify_variant_id = Column(BigInteger, nullable=True)
    price = Column(MONEY, nullable=False, default=0)
    compare_at_price = Column(MONEY, nullable=False, default=0)
    sku = Column(String(255), nullable=True)
    inventory_quantity = Column(Integer, nullable=False, default=0)
    weight = Column(Numeric(12, 3), nullable=False, default=0)
    weight_unit = Column(String(16), nullable=True)

    image_url = Column(Text, nullable=True)

    shopify_created_at = Column(DateTime(timezone=True), nullable=True)
    shopify_updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "shopify_product_id", name="uq_products_tenant_shopify_id"),
    )

    def __repr__(self) -> str:
        return f"<Product(id={self.id}, tenant_id={self.tenant_id}, shopify_product_id={self.shopify_product_id})>"
