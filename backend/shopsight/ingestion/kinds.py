"""Entity kinds handled by the ingestion pipeline."""

from enum import Enum


class EntityKind(str, Enum):
    """
    Shopify resource kinds, in full-sync order.

    Customers and products must be reconciled before orders so order and
    line-item links can be resolved.
    """
    CUSTOMERS = "customers"
    PRODUCTS = "products"
    ORDERS = "orders"


SYNC_ORDER = (EntityKind.CUSTOMERS, EntityKind.PRODUCTS, EntityKind.ORDERS)
