"""
Retry policy and backoff calculation for Shopify catalog calls.

Implements error-aware retry logic at the catalog client boundary:
- 401/403/404 auth errors -> fail immediately (no retry)
- 429 rate limit -> retry with backoff (respect Retry-After)
- 5xx server errors -> retry with exponential backoff + jitter
- timeouts / connection errors -> retry with exponential backoff + jitter
- After max retries -> the last error propagates to the sync stage

Backoff formula: base_delay * (2^attempt) +/- jitter, capped at max_delay
"""

import logging
import random
import time
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Optional, TypeVar

from shopsight.integrations.shopify.exceptions import (
    ShopifyAPIError,
    ShopifyAuthenticationError,
    ShopifyConnectionError,
    ShopifyRateLimitError,
    ShopifyServerError,
)

logger = logging.getLogger(__name__)

T = TypeVar("T")

MAX_RETRIES = 3
BASE_DELAY_SECONDS = 1.0
MAX_DELAY_SECONDS = 30.0
JITTER_FACTOR = 0.25  # +/- 25% jitter


class ErrorCategory(str, Enum):
    """Error classification for retry decisions."""
    AUTH_ERROR = "auth_error"  # 401, 403, 404 - no retry
    RATE_LIMIT = "rate_limit"  # 429 - retry with Retry-After
    SERVER_ERROR = "server_error"  # 5xx - retry with backoff
    CONNECTION = "connection"  # Timeout / network errors - retry
    CLIENT_ERROR = "client_error"  # Other 4xx - no retry
    UNKNOWN = "unknown"


@dataclass(frozen=True)
class RetryPolicy:
    """
    Retry policy configuration.

    Attributes:
        max_retries: Retries after the first attempt
        base_delay_seconds: Initial delay between retries
        max_delay_seconds: Maximum delay cap
        jitter_factor: Random jitter factor (0.25 = +/- 25%)
    """
    max_retries: int = MAX_RETRIES
    base_delay_seconds: float = BASE_DELAY_SECONDS
    max_delay_seconds: float = MAX_DELAY_SECONDS
    jitter_factor: float = JITTER_FACTOR


@dataclass
class RetryDecision:
    should_retry: bool
    delay_seconds: float
    reason: str


def categorize_error(error: Exception) -> ErrorCategory:
    """Categorize a catalog client exception for retry decisions."""
    if isinstance(error, ShopifyAuthenticationError):
        return ErrorCategory.AUTH_ERROR
    if isinstance(error, ShopifyRateLimitError):
        return ErrorCategory.RATE_LIMIT
    if isinstance(error, ShopifyServerError):
        return ErrorCategory.SERVER_ERROR
    if isinstance(error, ShopifyConnectionError):
        return ErrorCategory.CONNECTION
    if isinstance(error, ShopifyAPIError):
        return ErrorCategory.CLIENT_ERROR
    return ErrorCategory.UNKNOWN


def calculate_backoff(
    attempt: int,
    policy: RetryPolicy = RetryPolicy(),
    retry_after: Optional[float] = None,
) -> float:
    """
    Calculate backoff delay with exponential growth and jitter.

    Args:
        attempt: Current attempt number (0-indexed)
        policy: Retry policy configuration
        retry_after: Server-specified retry delay (overrides calculation)

    Returns:
        Delay in seconds before next retry (never negative)
    """
    if retry_after is not None and retry_after > 0:
        return min(float(retry_after), policy.max_delay_seconds)

    delay = policy.base_delay_seconds * (2 ** attempt)

    jitter_range = delay * policy.jitter_factor
    delay = delay + random.uniform(-jitter_range, jitter_range)

    delay = min(delay, policy.max_delay_seconds)
    return max(delay, 0.0)


def should_retry(
    error_category: ErrorCategory,
    retry_count: int,
    policy: RetryPolicy = RetryPolicy(),
    retry_after: Optional[float] = None,
) -> RetryDecision:
    """
    Determine if a failed call should be retried.

    Args:
        error_category: Classified error type
        retry_count: Retries already performed
        policy: Retry policy configuration
        retry_after: Server-specified retry delay in seconds
    """
    if error_category in (ErrorCategory.AUTH_ERROR, ErrorCategory.CLIENT_ERROR, ErrorCategory.UNKNOWN):
        return RetryDecision(
            should_retry=False,
            delay_seconds=0,
            reason=f"Non-transient error ({error_category.value})",
        )

    if retry_count >= policy.max_retries:
        return RetryDecision(
            should_retry=False,
            delay_seconds=0,
            reason=f"Max retries ({policy.max_retries}) exceeded",
        )

    delay = calculate_backoff(attempt=retry_count, policy=policy, retry_after=retry_after)
    return RetryDecision(
        should_retry=True,
        delay_seconds=delay,
        reason=(
            f"Transient error ({error_category.value}) - retry in {delay:.1f}s "
            f"(attempt {retry_count + 1}/{policy.max_retries})"
        ),
    )


def call_with_retry(
    operation: Callable[[], T],
    policy: RetryPolicy = RetryPolicy(),
    sleep: Callable[[float], None] = time.sleep,
    log_context: Optional[dict] = None,
) -> T:
    """
    Run `operation`, retrying transient Shopify errors per `policy`.

    Non-transient errors and the last transient error after exhaustion
    propagate unchanged.
    """
    retry_count = 0
    while True:
        try:
            return operation()
        except ShopifyAPIError as e:
            category = categorize_error(e)
            decision = should_retry(
                category,
                retry_count,
                policy,
                retry_after=getattr(e, "retry_after", None),
            )
            extra = dict(log_context or {})
            extra.update({
                "error_category": category.value,
                "status_code": e.status_code,
                "retry_count": retry_count,
                "reason": decision.reason,
            })
            if not decision.should_retry:
                logger.warning("Shopify call failed without retry", extra=extra)
                raise
            logger.info("Shopify call scheduled for retry", extra=extra)
            sleep(decision.delay_seconds)
            retry_count += 1
