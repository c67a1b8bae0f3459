"""
Customer model - Shopify customers ingested per tenant.

Rows are created and updated only by the ingestion reconciler.
(tenant_id, shopify_customer_id) is unique.
"""

from sqlalchemy import (
    Column, String, Text, Integer, BigInteger, Boolean, DateTime,
    UniqueConstraint, Index,
)

from shopsight.db_base import Base
from shopsight.models.base import MONEY, TimestampMixin, TenantScopedMixin, generate_uuid


class Customer(Base, TimestampMixin, TenantScopedMixin):
    """Ingested Shopify customer."""

    __tablename__ = "customers"

    id = Column(String(36), primary_key=True, default=generate_uuid)

    shopify_customer_id = Column(
        BigInteger,
        nullable=False,
        comment="Shopify customer id"
    )

    email = Column(String(255), nullable=True)
    first_name = Column(String(255), nullable=True)
    last_name = Column(String(255), nullable=True)
    phone = Column(String(64), nullable=True)

    total_spent = Column(MONEY, nullable=False, default=0)
    orders_count = Column(Integer, nullable=False, default=0)
    accepts_marketing = Column(Boolean, nullable=False, default=False)

    tags = Column(Text, nullable=True)
    note = Column(Text, nullable=True)

    # Default address
    address1 = Column(String(255), nullable=True)
    city = Column(String(255), nullable=True)
    state = Column(String(255), nullable=True)
    country = Column(String(255), nullable=True)
    zip_code = Column(String(32), nullable=True)

    shopify_created_at = Column(DateTime(timezone=True), nullable=True)
    shopify_updated_at = Column(DateTime(timezone=True), nullable=True)

    __table_args__ = (
        UniqueConstraint("tenant_id", "shopify_customer_id", name="uq_customers_tenant_shopify_id"),
        Index("ix_customers_tenant_total_spent", "tenant_id", "total_spent"),
    )

    @property
    def full_name(self) -> str:
        return " ".join(p for p in (self.first_name, self.last_name) if p)

    def __repr__(self) -> str:
        return f"<Customer(id={self.id}, tenant_id={self.tenant_id}, shopify_customer_id={self.shopify_customer_id})>"
