"""shopsight: Shopify catalog ingestion and per-tenant storefront analytics."""

__version__ = "1.0.0"
