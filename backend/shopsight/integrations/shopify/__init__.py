"""
Shopify Admin API integration.

Submodules:
- client: ShopifyCatalogClient (credential verification, paginated fetches)
- exceptions: error hierarchy separating auth failures from transient ones
"""
