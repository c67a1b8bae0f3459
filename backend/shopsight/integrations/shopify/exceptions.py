"""
Shopify Admin API exceptions for error handling.

Authentication errors are surfaced distinctly from transient failures
(rate limit, 5xx, network) so callers can fail fast on bad credentials and
retry the rest.
"""

from typing import Optional, Dict, Any


class ShopifyAPIError(Exception):
    """Base exception for Shopify Admin API errors."""

    def __init__(
        self,
        message: str,
        status_code: Optional[int] = None,
        response: Optional[Dict[str, Any]] = None,
    ):
        super().__init__(message)
        self.message = message
        self.status_code = status_code
        self.response = response or {}

    def __repr__(self) -> str:
        return f"{self.__class__.__name__}(message={self.message!r}, status_code={self.status_code})"


class ShopifyAuthenticationError(ShopifyAPIError):
    """Raised for bad domain or token (401/403/404 on the shop)."""

    def __init__(
        self,
        message: str = "Authentication failed - access token may be invalid or revoked",
        status_code: int = 401,
        **kwargs,
    ):
        super().__init__(message, status_code=status_code, **kwargs)


class ShopifyRateLimitError(ShopifyAPIError):
    """Raised when the API rate limit is exceeded (429)."""

    def __init__(
        self,
        message: str = "Rate limit exceeded - please retry after a delay",
        retry_after: Optional[float] = None,
        **kwargs,
    ):
        super().__init__(message, status_code=429, **kwargs)
        self.retry_after = retry_after


class ShopifyServerError(ShopifyAPIError):
    """Raised on 5xx responses."""

    def __init__(self, message: str = "Shopify server error", status_code: int = 500, **kwargs):
        super().__init__(message, status_code=status_code, **kwargs)


class ShopifyConnectionError(ShopifyAPIError):
    """Raised when network/connection errors or timeouts occur."""

    def __init__(
        self,
        message: str = "Connection error - unable to reach Shopify",
        **kwargs,
    ):
        super().__init__(message, **kwargs)
