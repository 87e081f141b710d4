"""Carrier-service rate quotes for checkout.

Answers from local data only, within a fixed time budget. Any failure means
the locker option is simply not offered.
"""

import asyncio
import time
from typing import Callable, Optional

from libs.common.config import get_settings
from libs.common.logging import get_logger
from services.lockers_service.models import LockerPreference, Store
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


def no_rates() -> dict:
    return {"rates": []}


class ShopEligibilityCache:
    """Short-lived per-shop answer to "can this shop offer locker pickup"."""

    def __init__(
        self,
        ttl_seconds: Optional[float] = None,
        clock: Callable[[], float] = time.monotonic,
    ):
        self.ttl_seconds = (
            ttl_seconds
            if ttl_seconds is not None
            else get_settings().SHOP_ELIGIBILITY_TTL_SECONDS
        )
        self._clock = clock
        self._entries: dict[str, tuple[float, bool]] = {}

    async def is_eligible(self, db: AsyncSession, shop: str) -> bool:
        entry = self._entries.get(shop)
        if entry and entry[0] > self._clock():
            return entry[1]

        eligible = await _shop_is_eligible(db, shop)
        self._entries[shop] = (self._clock() + self.ttl_seconds, eligible)
        return eligible

    def invalidate(self, shop: Optional[str] = None) -> None:
        if shop is None:
            self._entries.clear()
        else:
            self._entries.pop(shop, None)


async def _shop_is_eligible(db: AsyncSession, shop: str) -> bool:
    is_active = (
        await db.execute(select(Store.is_active).where(Store.shop == shop))
    ).scalar_one_or_none()
    if not is_active:
        return False

    pref = (
        await db.execute(
            select(LockerPreference.id)
            .where(
                LockerPreference.shop == shop,
                LockerPreference.is_enabled.is_(True),
            )
            .limit(1)
        )
    ).first()
    return pref is not None


eligibility_cache = ShopEligibilityCache()


def locker_rate() -> dict:
    settings = get_settings()
    return {
        "service_name": settings.LOCKER_SERVICE_NAME,
        "service_code": settings.LOCKER_SERVICE_CODE,
        # Carrier-service prices are strings in minor units
        "total_price": str(settings.LOCKER_RATE_PRICE_CENTS),
        "currency": settings.LOCKER_RATE_CURRENCY,
        "description": settings.LOCKER_RATE_DESCRIPTION,
    }


async def _compute_rates(
    db: AsyncSession, shop: Optional[str], payload: dict, cache: ShopEligibilityCache
) -> dict:
    settings = get_settings()
    rate = payload.get("rate") or {}
    destination = rate.get("destination") or {}
    country = (destination.get("country") or "").upper()

    if not shop or country not in settings.SERVICE_COUNTRIES:
        return no_rates()

    if not await cache.is_eligible(db, shop):
        return no_rates()

    return {"rates": [locker_rate()]}


async def quote_rates(
    db: AsyncSession,
    shop: Optional[str],
    payload: dict,
    cache: Optional[ShopEligibilityCache] = None,
    timeout: Optional[float] = None,
) -> dict:
    """Return the locker rate for this checkout, or no rates."""
    budget = timeout if timeout is not None else get_settings().RATE_QUOTE_TIMEOUT_SECONDS
    try:
        return await asyncio.wait_for(
            _compute_rates(db, shop, payload, cache or eligibility_cache),
            timeout=budget,
        )
    except asyncio.TimeoutError:
        logger.warning("Rate quote for %s exceeded %.2fs budget", shop, budget)
        return no_rates()
    except Exception:
        logger.exception("Rate quote for %s failed", shop)
        return no_rates()
