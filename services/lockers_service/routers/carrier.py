"""Carrier-service rate callback."""

from typing import Optional

from fastapi import APIRouter, Depends, Header, Request
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.lockers_service.dependencies import get_eligibility_cache
from services.lockers_service.services.rate_quote import (
    no_rates,
    ShopEligibilityCache,
    quote_rates,
)
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(tags=["carrier"])
logger = get_logger(__name__)


@router.post("/carrier/rates")
async def carrier_rates(
    request: Request,
    x_shopify_shop_domain: Optional[str] = Header(None),
    db: AsyncSession = Depends(get_async_db),
    cache: ShopEligibilityCache = Depends(get_eligibility_cache),
):
    """
    Rate request from checkout. Always answers 200; an empty list means
    the locker option is not offered.
    """
    try:
        payload = await request.json()
    except ValueError:
        logger.warning("Malformed rate request from %s", x_shopify_shop_domain)
        return no_rates()
    if not isinstance(payload, dict):
        return no_rates()

    return await quote_rates(db, x_shopify_shop_domain, payload, cache=cache)
