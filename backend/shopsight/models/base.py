"""
Base mixins for database models.

Provides common functionality:
- TimestampMixin: created_at, updated_at timestamps
- TenantScopedMixin: tenant_id for multi-tenant isolation
- generate_uuid: UUID generation for primary keys
- MONEY: fixed-scale decimal type for monetary columns
"""

import uuid

from sqlalchemy import Column, String, DateTime, Numeric, func
from sqlalchemy.orm import declared_attr

from shopsight.db_base import Base

# Two-decimal display scale for every monetary column
MONEY = Numeric(12, 2)


def generate_uuid() -> str:
    """Generate a UUID4 string for use as a primary key default."""
    return str(uuid.uuid4())


class TimestampMixin:
    """Mixin that adds created_at and updated_at timestamp columns."""

    created_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        comment="Timestamp when record was created"
    )

    updated_at = Column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
        comment="Timestamp when record was last updated"
    )


class TenantScopedMixin:
    """
    Mixin that adds tenant_id column for multi-tenant isolation.

    SECURITY: tenant_id is ONLY taken from the verified tenant context
    (JWT) or from a tenant resolved server-side. NEVER from client input.
    """

    @declared_attr
    def tenant_id(cls):
        return Column(
            String(255),
            nullable=False,
            index=True,
            comment="Owning tenant. NEVER from client input."
        )


__all__ = ["Base", "MONEY", "generate_uuid", "TimestampMixin", "TenantScopedMixin"]
