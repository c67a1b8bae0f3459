"""
Tenant context for request handling.

CRITICAL SECURITY REQUIREMENTS:
- tenant_id is ALWAYS extracted from the verified JWT, NEVER from request body/query
- Requests without a valid tenant context are rejected (401/403)
- The context is passed explicitly into services; there is no ambient
  per-thread tenant state

Tokens are HS256 JWTs signed with JWT_SECRET and carry a `tenant_id` claim
(and optionally `sub` for the user).
"""

import logging
import os
from dataclasses import dataclass
from typing import Optional

import jwt
from fastapi import Depends, HTTPException, status
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials
from jwt.exceptions import InvalidTokenError

logger = logging.getLogger(__name__)

JWT_ALGORITHM = "HS256"

_bearer = HTTPBearer(auto_error=False)


@dataclass(frozen=True)
class TenantContext:
    """Verified tenant identity for one request."""
    tenant_id: str
    user_id: Optional[str] = None


def _get_jwt_secret() -> str:
    secret = os.getenv("JWT_SECRET")
    if not secret:
        raise HTTPException(
            status_code=status.HTTP_503_SERVICE_UNAVAILABLE,
            detail="Authentication not configured",
        )
    return secret


def decode_tenant_token(token: str, secret: str) -> TenantContext:
    """
    Verify a bearer token and build the tenant context.

    Raises:
        InvalidTokenError: signature/expiry invalid or tenant_id claim missing
    """
    claims = jwt.decode(token, secret, algorithms=[JWT_ALGORITHM])
    tenant_id = claims.get("tenant_id")
    if not tenant_id:
        raise InvalidTokenError("Token has no tenant_id claim")
    return TenantContext(tenant_id=str(tenant_id), user_id=claims.get("sub"))


def get_tenant_context(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(_bearer),
) -> TenantContext:
    """FastAPI dependency resolving the TenantContext from the bearer token."""
    if credentials is None or not credentials.credentials:
        logger.warning("Request without bearer token")
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Missing authentication token",
        )

    try:
        return decode_tenant_token(credentials.credentials, _get_jwt_secret())
    except InvalidTokenError as e:
        logger.warning("Invalid tenant token", extra={"error": str(e)})
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Invalid tenant context",
        )


def issue_tenant_token(tenant_id: str, secret: str, user_id: Optional[str] = None) -> str:
    """Mint a token for tooling and tests. Login/issuance lives elsewhere."""
    claims = {"tenant_id": tenant_id}
    if user_id:
        claims["sub"] = user_id
    return jwt.encode(claims, secret, algorithm=JWT_ALGORITHM)
