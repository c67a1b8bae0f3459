"""
Shopify Admin REST API client for catalog ingestion.

This client handles:
- Credential verification against /shop.json
- Cursor-paginated page fetches for customers, products and orders

It carries no business logic: it returns raw records and an opaque
continuation cursor. Pagination follows the `Link: <...>; rel="next"`
header (page_info cursor), never offsets.

Documentation: https://shopify.dev/docs/api/admin-rest
"""

import logging
import re
import time
from dataclasses import dataclass, field
from typing import Any, Callable, Dict, List, Optional

import httpx

from shopsight.config.settings import MAX_PAGE_SIZE, IngestionSettings, get_ingestion_settings
from shopsight.ingestion.kinds import EntityKind
from shopsight.ingestion.retry import RetryPolicy, call_with_retry
from shopsight.integrations.shopify.exceptions import (
    ShopifyAPIError,
    ShopifyAuthenticationError,
    ShopifyConnectionError,
    ShopifyRateLimitError,
    ShopifyServerError,
)

logger = logging.getLogger(__name__)

ACCESS_TOKEN_HEADER = "X-Shopify-Access-Token"

SHOP_DOMAIN_REGEX = re.compile(r"^[a-zA-Z0-9][a-zA-Z0-9\-]*(\.[a-zA-Z0-9\-]+)+$")


def normalize_shop_domain(shop_domain: str) -> str:
    """
    Normalize a shop domain: lowercase, strip protocol and trailing slash.

    Raises:
        ValueError: empty or malformed domain
    """
    domain = (shop_domain or "").strip().lower()
    domain = domain.replace("https://", "").replace("http://", "")
    domain = domain.rstrip("/")
    if not domain or not SHOP_DOMAIN_REGEX.match(domain):
        raise ValueError(f"Invalid shop domain: {shop_domain!r}")
    return domain


@dataclass
class CatalogPage:
    """One page of raw records plus the cursor for the next page (None = last)."""
    records: List[Dict[str, Any]] = field(default_factory=list)
    next_cursor: Optional[str] = None


class ShopifyCatalogClient:
    """
    Synchronous client for the Shopify Admin REST API.

    SECURITY: the access token must never be logged.
    """

    def __init__(
        self,
        shop_domain: str,
        access_token: str,
        api_version: Optional[str] = None,
        settings: Optional[IngestionSettings] = None,
        transport: Optional[httpx.BaseTransport] = None,
        sleep: Callable[[float], None] = time.sleep,
    ):
        """
        Initialize the catalog client.

        Args:
            shop_domain: mystore.myshopify.com (normalized here)
            access_token: Admin API access token
            api_version: Admin API version (default: from settings)
            settings: Ingestion settings (default: singleton)
            transport: httpx transport override (tests)
            sleep: Backoff sleep function (tests)
        """
        if not access_token:
            raise ValueError("Shopify access token is required")

        settings = settings or get_ingestion_settings()
        self.shop_domain = normalize_shop_domain(shop_domain)
        self.api_version = api_version or settings.api_version
        self.base_url = f"https://{self.shop_domain}/admin/api/{self.api_version}"
        self.retry_policy: RetryPolicy = settings.retry_policy()
        self._sleep = sleep

        self._client = httpx.Client(
            timeout=httpx.Timeout(
                settings.request_timeout_seconds,
                connect=settings.connect_timeout_seconds,
            ),
            headers={
                "Accept": "application/json",
                ACCESS_TOKEN_HEADER: access_token,
            },
            transport=transport,
        )

    def close(self) -> None:
        """Close the HTTP client."""
        self._client.close()

    def __enter__(self) -> "ShopifyCatalogClient":
        return self

    def __exit__(self, exc_type, exc_val, exc_tb) -> None:
        self.close()

    def _request(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        """
        GET an Admin API endpoint once.

        Raises:
            ShopifyAPIError: On API errors (subclass per failure class)
        """
        url = f"{self.base_url}/{endpoint.lstrip('/')}"
        log_extra = {"shop_domain": self.shop_domain, "endpoint": endpoint}

        try:
            response = self._client.get(url, params=params)
        except httpx.TimeoutException as e:
            logger.error("Shopify API timeout", extra={**log_extra, "error": str(e)})
            raise ShopifyConnectionError(f"Request timeout: {e}")
        except httpx.RequestError as e:
            logger.error("Shopify API connection error", extra={**log_extra, "error": str(e)})
            raise ShopifyConnectionError(f"Connection error: {e}")

        if response.status_code in (401, 403):
            logger.error(
                "Shopify API authentication failed",
                extra={**log_extra, "status_code": response.status_code},
            )
            raise ShopifyAuthenticationError(status_code=response.status_code)

        if response.status_code == 404:
            # Unknown shop domain or API version
            raise ShopifyAuthenticationError(
                message=f"Shop not found: {self.shop_domain}",
                status_code=404,
            )

        if response.status_code == 429:
            retry_after = response.headers.get("Retry-After")
            logger.warning(
                "Shopify API rate limited",
                extra={**log_extra, "retry_after": retry_after},
            )
            try:
                retry_seconds = float(retry_after) if retry_after else None
            except ValueError:
                retry_seconds = None
            raise ShopifyRateLimitError(retry_after=retry_seconds)

        if response.status_code >= 500:
            logger.error(
                "Shopify API server error",
                extra={**log_extra, "status_code": response.status_code},
            )
            raise ShopifyServerError(
                message=f"Shopify API error: {response.status_code}",
                status_code=response.status_code,
            )

        if response.status_code >= 400:
            raise ShopifyAPIError(
                message=f"Shopify API error: {response.status_code} {response.text[:200]}",
                status_code=response.status_code,
            )

        return response

    def _get(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> httpx.Response:
        return call_with_retry(
            lambda: self._request(endpoint, params),
            policy=self.retry_policy,
            sleep=self._sleep,
            log_context={"shop_domain": self.shop_domain, "endpoint": endpoint},
        )

    def verify_connection(self) -> Dict[str, Any]:
        """
        Verify the credential by reading the shop resource.

        Returns:
            The `shop` object from /shop.json

        Raises:
            ShopifyAuthenticationError: bad domain or token
        """
        response = self._get("shop.json")
        return response.json().get("shop", {})

    def fetch_page(
        self,
        kind: EntityKind,
        cursor: Optional[str] = None,
        page_size: int = MAX_PAGE_SIZE,
    ) -> CatalogPage:
        """
        Fetch one page of raw records for an entity kind.

        Args:
            kind: customers, products or orders
            cursor: Continuation cursor from the previous page (None = first page)
            page_size: Records per page, capped at 250

        Returns:
            CatalogPage with the records and next cursor (None on the last page)
        """
        kind = EntityKind(kind)
        limit = max(1, min(int(page_size), MAX_PAGE_SIZE))

        params: Dict[str, Any] = {"limit": limit}
        if cursor:
            # Shopify rejects filters alongside page_info
            params["page_info"] = cursor
        elif kind == EntityKind.ORDERS:
            params["status"] = "any"

        response = self._get(f"{kind.value}.json", params)
        records = response.json().get(kind.value, []) or []

        return CatalogPage(records=records, next_cursor=self._next_cursor(response))

    @staticmethod
    def _next_cursor(response: httpx.Response) -> Optional[str]:
        next_link = response.links.get("next")
        if not next_link or not next_link.get("url"):
            return None
        return httpx.URL(next_link["url"]).params.get("page_info") or None
