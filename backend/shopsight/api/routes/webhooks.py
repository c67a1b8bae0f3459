"""
Shopify data webhooks: customers, products and orders, create and updated.

SECURITY: HMAC verification happens inside WebhookProcessor on every call
when SHOPIFY_WEBHOOK_SECRET is set. The response is always 200 "OK" so
Shopify never retries; outcomes are logged and stored in webhook_events.
"""

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, status
from fastapi.concurrency import run_in_threadpool
from fastapi.responses import PlainTextResponse
from sqlalchemy.orm import Session

from shopsight.database.session import get_db_session
from shopsight.ingestion.kinds import EntityKind
from shopsight.services.webhook_processor import (
    HMAC_HEADER,
    SHOP_DOMAIN_HEADER,
    WEBHOOK_ACTIONS,
    WebhookProcessor,
)

logger = logging.getLogger(__name__)

router = APIRouter(prefix="/webhooks", tags=["webhooks"])


def get_webhook_processor(db_session: Session = Depends(get_db_session)) -> WebhookProcessor:
    return WebhookProcessor(db_session)


@router.post("/{kind}/{action}", response_class=PlainTextResponse)
async def receive_webhook(
    kind: str,
    action: str,
    request: Request,
    processor: WebhookProcessor = Depends(get_webhook_processor),
):
    """Receive a Shopify webhook and acknowledge it."""
    if kind not in {k.value for k in EntityKind} or action not in WEBHOOK_ACTIONS:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Unknown webhook topic")

    raw_body = await request.body()
    # Database work runs off the event loop
    ack = await run_in_threadpool(
        processor.handle,
        shop_domain=request.headers.get(SHOP_DOMAIN_HEADER),
        signature=request.headers.get(HMAC_HEADER),
        raw_body=raw_body,
        entity_kind=EntityKind(kind),
        topic=f"{kind}/{action}",
    )
    return PlainTextResponse(ack.body, status_code=status.HTTP_200_OK)
