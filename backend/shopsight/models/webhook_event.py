"""
WebhookEvent model recording every Shopify webhook intake.

Webhooks are always acknowledged to Shopify, so this table is where the
actual outcome becomes visible: applied, rejected (bad signature), ignored
(unknown shop) or failed (processing error).
"""

import enum
import uuid
from datetime import datetime, timezone

from sqlalchemy import Column, String, Text, DateTime, Enum, Index

from shopsight.db_base import Base


class WebhookOutcome(str, enum.Enum):
    APPLIED = "applied"
    REJECTED = "rejected"
    IGNORED = "ignored"
    FAILED = "failed"


class WebhookEvent(Base):
    """One received Shopify webhook and what happened to it."""

    __tablename__ = "webhook_events"

    id = Column(
        String(255),
        primary_key=True,
        default=lambda: str(uuid.uuid4()),
        comment="Primary key (UUID)"
    )

    tenant_id = Column(
        String(255),
        nullable=True,
        index=True,
        comment="Resolved tenant; null when the shop domain is unknown"
    )

    topic = Column(
        String(255),
        nullable=False,
        index=True,
        comment="Webhook topic (e.g., orders/create)"
    )

    shop_domain = Column(
        String(255),
        nullable=True,
        index=True,
        comment="Shop domain from X-Shopify-Shop-Domain"
    )

    outcome = Column(
        Enum(WebhookOutcome, name="webhook_outcome", values_callable=lambda e: [m.value for m in e]),
        nullable=False,
    )

    external_id = Column(
        String(64),
        nullable=True,
        comment="Shopify id of the entity in the payload"
    )

    error = Column(Text, nullable=True)

    payload_hash = Column(
        String(64),
        nullable=True,
        comment="SHA-256 hash of payload for debugging"
    )

    processed_at = Column(
        DateTime(timezone=True),
        nullable=False,
        default=lambda: datetime.now(timezone.utc),
        comment="When the webhook was processed"
    )

    __table_args__ = (
        Index(
            "idx_webhook_events_tenant_topic",
            "tenant_id",
            "topic"
        ),
    )

    def __repr__(self) -> str:
        return f"<WebhookEvent(topic={self.topic}, shop_domain={self.shop_domain}, outcome={self.outcome})>"
