"""Inbound webhooks from the locker provider and the commerce platform."""

import hashlib
import hmac
import json
from typing import Optional

from fastapi import APIRouter, Depends, Header, HTTPException, Request, status
from libs.common.config import get_settings
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.lockers_service.dependencies import get_dispatcher, get_harbor_client
from services.lockers_service.harbor_client import HarborClient
from services.lockers_service.models import Store
from services.lockers_service.schemas import IngestResponse
from services.lockers_service.services.ingestion import ingest
from services.lockers_service.services.notifications import NotificationDispatcher
from services.lockers_service.services.orders import (
    create_order,
    intake_from_shopify_order,
    try_allocate,
)
from services.lockers_service.shopify_client import verify_webhook_hmac
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/webhooks", tags=["webhooks"])
logger = get_logger(__name__)


def _verify_harbor_signature(raw_body: bytes, signature: Optional[str]) -> bool:
    secret = get_settings().HARBOR_WEBHOOK_SECRET
    if not secret:
        logger.warning("HARBOR_WEBHOOK_SECRET not set, skipping signature verification")
        return True
    if not signature:
        return False
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).hexdigest()
    return hmac.compare_digest(digest, signature)


def _parse_json(raw: bytes) -> dict:
    try:
        payload = json.loads(raw.decode("utf-8") or "{}")
    except (UnicodeDecodeError, ValueError):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Invalid JSON body"
        )
    if not isinstance(payload, dict):
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Expected a JSON object"
        )
    return payload


@router.post("/harbor", response_model=IngestResponse)
async def harbor_webhook(
    request: Request,
    x_harbor_signature: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_async_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """
    Harbor delivery-status webhook (no auth; verified by X-Harbor-Signature
    when a webhook secret is configured).
    """
    raw = await request.body()
    if not _verify_harbor_signature(raw, x_harbor_signature):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature"
        )

    payload = _parse_json(raw)
    result = await ingest(db, payload, dispatcher)
    return IngestResponse(received=True, outcome=result.outcome)


@router.post("/shopify/orders-create")
async def shopify_orders_create(
    request: Request,
    x_shopify_hmac_sha256: Optional[str] = Header(None),
    x_shopify_shop_domain: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_async_db),
    harbor: HarborClient = Depends(get_harbor_client),
):
    """orders/create webhook: start fulfillment for orders that chose a locker."""
    raw = await request.body()
    if not verify_webhook_hmac(raw, x_shopify_hmac_sha256):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid signature"
        )

    payload = _parse_json(raw)
    shop = x_shopify_shop_domain
    if not shop:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST, detail="Missing shop domain"
        )

    intake = intake_from_shopify_order(payload)
    if intake is None:
        return {"received": True, "locker_order": False}

    store = (
        await db.execute(select(Store).where(Store.shop == shop))
    ).scalar_one_or_none()
    if store is None or not store.is_active:
        logger.warning("Locker order %s for inactive shop %s", intake.external_order_id, shop)
        return {"received": True, "locker_order": False}

    order, created = await create_order(db, shop, intake)
    allocation_status, _ = await try_allocate(db, harbor, order)

    return {
        "received": True,
        "locker_order": True,
        "order_id": str(order.id),
        "created": created,
        "allocation_status": allocation_status,
    }
