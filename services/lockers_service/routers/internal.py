"""Internal endpoints called by the install/uninstall handshake."""

from fastapi import APIRouter, Depends, HTTPException, status
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.lockers_service.dependencies import get_eligibility_cache
from services.lockers_service.models import Store
from services.lockers_service.schemas import StoreInstall, StoreResponse
from services.lockers_service.services.rate_quote import ShopEligibilityCache
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/internal", tags=["internal"])
logger = get_logger(__name__)


@router.post("/stores", response_model=StoreResponse)
async def install_store(
    payload: StoreInstall,
    db: AsyncSession = Depends(get_async_db),
    cache: ShopEligibilityCache = Depends(get_eligibility_cache),
):
    """Record an install. Reinstalling reactivates the existing row."""
    store = (
        await db.execute(select(Store).where(Store.shop == payload.shop))
    ).scalar_one_or_none()

    now = utc_now()
    if store is None:
        store = Store(
            shop=payload.shop,
            access_token=payload.access_token,
            is_active=True,
            installed_at=now,
        )
        db.add(store)
    else:
        store.is_active = True
        store.installed_at = now
        store.uninstalled_at = None
        if payload.access_token:
            store.access_token = payload.access_token

    await db.commit()
    await db.refresh(store)
    cache.invalidate(payload.shop)
    logger.info("Store installed: %s", payload.shop)
    return store


@router.post("/stores/{shop}/uninstall", response_model=StoreResponse)
async def uninstall_store(
    shop: str,
    db: AsyncSession = Depends(get_async_db),
    cache: ShopEligibilityCache = Depends(get_eligibility_cache),
):
    """Soft-disable a store; its orders and history are kept."""
    store = (
        await db.execute(select(Store).where(Store.shop == shop))
    ).scalar_one_or_none()
    if store is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Store not found"
        )

    store.is_active = False
    store.uninstalled_at = utc_now()
    await db.commit()
    await db.refresh(store)
    cache.invalidate(shop)
    logger.info("Store uninstalled: %s", shop)
    return store
