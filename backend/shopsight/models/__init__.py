"""
Database models for the ingestion store.

Importing this package registers every table on Base.metadata.
"""

from shopsight.models.base import Base, TimestampMixin, TenantScopedMixin, generate_uuid
from shopsight.models.tenant import Tenant, SyncStatus
from shopsight.models.customer import Customer
from shopsight.models.product import Product, ProductStatus
from shopsight.models.order import Order, OrderItem, FinancialStatus, FulfillmentStatus
from shopsight.models.webhook_event import WebhookEvent, WebhookOutcome

__all__ = [
    "Base",
    "TimestampMixin",
    "TenantScopedMixin",
    "generate_uuid",
    "Tenant",
    "SyncStatus",
    "Customer",
    "Product",
    "ProductStatus",
    "Order",
    "OrderItem",
    "FinancialStatus",
    "FulfillmentStatus",
    "WebhookEvent",
    "WebhookOutcome",
]
