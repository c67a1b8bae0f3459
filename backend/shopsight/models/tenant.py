"""
Tenant model for the multi-tenant ingestion platform.

A Tenant is an isolated merchant account. Tenant.id is the tenant_id used
by every tenant-scoped model (customers, products, orders, webhook events).

The tenant also carries the Shopify connection (domain + encrypted access
token) and the sync state machine:

    NEVER -> IN_PROGRESS -> {COMPLETED, FAILED}
    COMPLETED | FAILED -> IN_PROGRESS   (next trigger)

Tenants are never hard-deleted by the ingestion core.
"""

import enum
import uuid
from datetime import datetime, timezone
from typing import Optional

from sqlalchemy import Column, String, Text, Boolean, DateTime, Enum, Index

from shopsight.db_base import Base
from shopsight.models.base import TimestampMixin


class SyncStatus(str, enum.Enum):
    """Per-tenant sync status."""
    NEVER = "NEVER"
    IN_PROGRESS = "IN_PROGRESS"
    COMPLETED = "COMPLETED"
    FAILED = "FAILED"


def as_utc(value: Optional[datetime]) -> Optional[datetime]:
    """Attach UTC to naive datetimes read back from SQLite."""
    if value is None:
        return None
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class Tenant(Base, TimestampMixin):
    """
    Merchant account with its Shopify connection and sync state.

    SECURITY:
    - shopify_access_token_encrypted is Fernet-encrypted; decrypt only
      right before calling the Shopify API
    - shop_domain is unique: one tenant per Shopify store
    """

    __tablename__ = "tenants"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key - this IS the tenant_id used across all models"
    )

    name = Column(
        String(255),
        nullable=False,
        comment="Display name"
    )

    is_active = Column(
        Boolean,
        nullable=False,
        default=True,
        comment="Inactive tenants are skipped by the periodic sync"
    )

    # Shopify connection
    shop_domain = Column(
        String(255),
        nullable=True,
        unique=True,
        comment="Shopify store domain (mystore.myshopify.com)"
    )
    shopify_access_token_encrypted = Column(
        Text,
        nullable=True,
        comment="Encrypted Shopify Admin API access token"
    )
    shopify_api_version = Column(
        String(20),
        nullable=True,
        comment="Admin API version the connection was verified against"
    )
    shopify_connected = Column(
        Boolean,
        nullable=False,
        default=False,
        comment="True once the credential was verified against Shopify"
    )

    # Sync state machine
    sync_status = Column(
        Enum(SyncStatus, name="tenant_sync_status"),
        nullable=False,
        default=SyncStatus.NEVER,
        comment="NEVER, IN_PROGRESS, COMPLETED, FAILED"
    )
    sync_message = Column(
        Text,
        nullable=True,
        comment="Human-readable outcome of the last sync attempt"
    )
    sync_started_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="Lease start of the running sync (None when idle)"
    )
    last_sync_at = Column(
        DateTime(timezone=True),
        nullable=True,
        comment="Completion time of the last successful sync"
    )

    __table_args__ = (
        Index("ix_tenants_sync_scan", "is_active", "shopify_connected", "sync_status"),
    )

    def __repr__(self) -> str:
        return (
            f"<Tenant(id={self.id}, shop_domain={self.shop_domain}, "
            f"sync_status={self.sync_status.value if self.sync_status else None})>"
        )
