"""
Ingestion pipeline: field mapping, retry policy and idempotent reconciliation
of Shopify customers, products and orders into the tenant store.
"""
