"""
Shopify connection and manual sync routes.

SECURITY: All routes require valid tenant context from JWT.
The tenant is never taken from the request body.

Routes are plain `def`: the sync runs blocking HTTP calls to Shopify and is
executed in FastAPI's threadpool.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, status
from sqlalchemy.orm import Session

from shopsight.api.schemas.shopify import (
    ConnectRequest,
    ConnectionStatusResponse,
    SyncResultResponse,
)
from shopsight.database.session import get_db_session
from shopsight.platform.tenant_context import TenantContext, get_tenant_context
from shopsight.services.tenant_sync import (
    ShopifyConnectionFailedError,
    ShopifyNotConnectedError,
    SyncAlreadyInProgressError,
    TenantNotFoundError,
    TenantSyncService,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/api/shopify", tags=["shopify"])


def get_tenant_sync_service(
    tenant_ctx: TenantContext = Depends(get_tenant_context),
    db_session: Session = Depends(get_db_session),
) -> TenantSyncService:
    """Tenant sync service scoped to the current tenant."""
    return TenantSyncService(db_session, tenant_ctx.tenant_id)


@router.put("/connect", response_model=ConnectionStatusResponse)
def connect_store(
    body: ConnectRequest,
    service: TenantSyncService = Depends(get_tenant_sync_service),
):
    """
    Verify Shopify credentials and connect the store.

    The access token is validated against Shopify before it is stored
    (encrypted).
    """
    try:
        service.connect(body.shop_domain, body.access_token)
    except TenantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ShopifyConnectionFailedError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))

    return ConnectionStatusResponse.from_status(service.get_connection_status())


@router.get("/status", response_model=ConnectionStatusResponse)
def connection_status(service: TenantSyncService = Depends(get_tenant_sync_service)):
    try:
        return ConnectionStatusResponse.from_status(service.get_connection_status())
    except TenantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))


@router.post("/sync", response_model=SyncResultResponse)
def sync_all_data(service: TenantSyncService = Depends(get_tenant_sync_service)):
    """
    Run a full sync (customers, products, orders) now.

    A failing stage is reported in the body (success=false), not as an
    HTTP error; earlier stages stay committed.
    """
    try:
        result = service.sync_all_data()
    except TenantNotFoundError as e:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail=str(e))
    except ShopifyNotConnectedError as e:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=str(e))
    except SyncAlreadyInProgressError as e:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail=str(e))

    logger.info(
        "Manual sync finished",
        extra={"tenant_id": service.tenant_id, "success": result.success},
    )
    return SyncResultResponse.from_result(result)
