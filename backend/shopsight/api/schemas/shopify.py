"""
Request/response schemas for the Shopify connection and sync API.
"""

from datetime import datetime
from typing import Dict, Optional

from pydantic import BaseModel, Field

from shopsight.services.tenant_sync import ConnectionStatus, SyncResult


class ConnectRequest(BaseModel):
    """Credentials for connecting a Shopify store."""
    shop_domain: str = Field(..., min_length=3, max_length=255, description="mystore.myshopify.com")
    access_token: str = Field(..., min_length=1, description="Admin API access token")


class ConnectionStatusResponse(BaseModel):
    connected: bool
    shop_domain: Optional[str]
    sync_status: str
    last_sync_at: Optional[datetime]
    sync_message: Optional[str]
    counts: Dict[str, int]

    @classmethod
    def from_status(cls, status: ConnectionStatus) -> "ConnectionStatusResponse":
        return cls(
            connected=status.connected,
            shop_domain=status.shop_domain,
            sync_status=status.sync_status.value,
            last_sync_at=status.last_sync_at,
            sync_message=status.sync_message,
            counts=status.counts,
        )


class SyncResultResponse(BaseModel):
    """Result of a manual full sync."""
    success: bool
    message: str
    counts: Dict[str, int]
    completed_at: Optional[datetime]
    failed_stage: Optional[str] = None

    @classmethod
    def from_result(cls, result: SyncResult) -> "SyncResultResponse":
        return cls(
            success=result.success,
            message=result.message,
            counts=result.counts,
            completed_at=result.completed_at,
            failed_stage=result.failed_stage,
        )
