"""
Shopify webhook intake for customers, products and orders.

SECURITY: When SHOPIFY_WEBHOOK_SECRET is configured, every webhook MUST pass
HMAC-SHA256 verification over the raw body before anything is applied.

The processor always acknowledges ("OK") so Shopify does not retry; the
real outcome is logged and recorded in webhook_events:
- rejected: signature missing or mismatched
- ignored:  shop domain does not belong to a known tenant
- applied:  payload mapped and upserted
- failed:   payload could not be decoded, mapped or stored

Documentation: https://shopify.dev/docs/apps/webhooks/configuration/https
"""

import base64
import hashlib
import hmac
import json
import logging
from dataclasses import dataclass
from typing import Optional

from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.orm import Session

from shopsight.config.settings import get_webhook_secret
from shopsight.ingestion.field_mapper import map_record
from shopsight.ingestion.kinds import EntityKind
from shopsight.ingestion.reconciler import IngestionReconciler
from shopsight.models.tenant import Tenant
from shopsight.models.webhook_event import WebhookEvent, WebhookOutcome

logger = logging.getLogger(__name__)

SHOP_DOMAIN_HEADER = "X-Shopify-Shop-Domain"
HMAC_HEADER = "X-Shopify-Hmac-Sha256"

WEBHOOK_ACTIONS = ("create", "updated")

ACK_BODY = "OK"


def verify_shopify_webhook(data: bytes, hmac_header: Optional[str], secret: str) -> bool:
    """
    Verify a Shopify webhook HMAC signature.

    Args:
        data: Raw request body bytes
        hmac_header: X-Shopify-Hmac-Sha256 header value (base64)
        secret: Webhook signing secret

    Returns:
        True if signature is valid, False otherwise
    """
    if not hmac_header or not secret:
        return False

    computed_digest = compute_webhook_hmac(data, secret)

    # Constant-time comparison to prevent timing attacks
    return hmac.compare_digest(computed_digest.encode("utf-8"), hmac_header.strip().encode("utf-8"))


def compute_webhook_hmac(data: bytes, secret: str) -> str:
    """Base64 HMAC-SHA256 of `data`, as Shopify sends it."""
    return base64.b64encode(hmac.new(secret.encode("utf-8"), data, hashlib.sha256).digest()).decode("utf-8")


@dataclass(frozen=True)
class WebhookAck:
    """Acknowledgement returned to Shopify plus the internal outcome."""
    outcome: WebhookOutcome
    body: str = ACK_BODY
    local_id: Optional[str] = None


class WebhookProcessor:
    """
    Authenticates, decodes and applies one webhook.

    Not tenant-scoped at construction: the tenant is resolved from the
    shop domain header of each webhook.
    """

    def __init__(self, db_session: Session, webhook_secret: Optional[str] = None):
        self.db = db_session
        self.webhook_secret = get_webhook_secret() if webhook_secret is None else webhook_secret

    def handle(
        self,
        shop_domain: Optional[str],
        signature: Optional[str],
        raw_body: bytes,
        entity_kind: EntityKind,
        topic: Optional[str] = None,
    ) -> WebhookAck:
        """
        Process a webhook. Never raises.

        Args:
            shop_domain: X-Shopify-Shop-Domain header
            signature: X-Shopify-Hmac-Sha256 header
            raw_body: Raw request body
            entity_kind: customers, products or orders
            topic: Webhook topic for the event log (default: "<kind>/create")
        """
        kind = EntityKind(entity_kind)
        topic = topic or f"{kind.value}/create"
        domain = (shop_domain or "").strip().lower() or None
        payload_hash = hashlib.sha256(raw_body or b"").hexdigest()
        log_extra = {"shop_domain": domain, "topic": topic}

        if self.webhook_secret and not verify_shopify_webhook(raw_body, signature, self.webhook_secret):
            logger.warning("Webhook signature verification failed", extra=log_extra)
            self._record(None, topic, domain, WebhookOutcome.REJECTED, payload_hash, error="invalid signature")
            return WebhookAck(outcome=WebhookOutcome.REJECTED)

        tenant_id = self._resolve_tenant_id(domain)
        if tenant_id is None:
            logger.info("Webhook for unknown shop ignored", extra=log_extra)
            self._record(None, topic, domain, WebhookOutcome.IGNORED, payload_hash)
            return WebhookAck(outcome=WebhookOutcome.IGNORED)

        log_extra["tenant_id"] = tenant_id
        external_id = None
        try:
            payload = json.loads(raw_body)
            if isinstance(payload, dict) and payload.get("id") is not None:
                external_id = str(payload.get("id"))
            mapped = map_record(kind, payload)
            local_id = IngestionReconciler(self.db, tenant_id).upsert(kind, mapped)
        except Exception as e:
            self.db.rollback()
            logger.error(
                "Webhook processing failed",
                extra={**log_extra, "external_id": external_id, "error": str(e)},
            )
            self._record(
                tenant_id, topic, domain, WebhookOutcome.FAILED, payload_hash,
                external_id=external_id, error=str(e)[:1000],
            )
            return WebhookAck(outcome=WebhookOutcome.FAILED)

        logger.info("Webhook applied", extra={**log_extra, "external_id": external_id})
        self._record(tenant_id, topic, domain, WebhookOutcome.APPLIED, payload_hash, external_id=external_id)
        return WebhookAck(outcome=WebhookOutcome.APPLIED, local_id=local_id)

    def _resolve_tenant_id(self, domain: Optional[str]) -> Optional[str]:
        if not domain:
            return None
        try:
            row = self.db.query(Tenant.id).filter(Tenant.shop_domain == domain).first()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error("Tenant lookup failed for webhook", extra={"shop_domain": domain, "error": str(e)})
            return None
        return row[0] if row else None

    def _record(
        self,
        tenant_id: Optional[str],
        topic: str,
        shop_domain: Optional[str],
        outcome: WebhookOutcome,
        payload_hash: str,
        external_id: Optional[str] = None,
        error: Optional[str] = None,
    ) -> None:
        """Persist the intake outcome; a failure here is logged only."""
        try:
            self.db.add(WebhookEvent(
                tenant_id=tenant_id,
                topic=topic,
                shop_domain=shop_domain,
                outcome=outcome,
                external_id=external_id,
                error=error,
                payload_hash=payload_hash,
            ))
            self.db.commit()
        except SQLAlchemyError as e:
            self.db.rollback()
            logger.error(
                "Failed to record webhook event",
                extra={"topic": topic, "shop_domain": shop_domain, "error": str(e)},
            )
