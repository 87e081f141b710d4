"""Merchant dashboard API."""

from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from libs.db.session import get_async_db
from services.lockers_service.dependencies import (
    get_dispatcher,
    get_eligibility_cache,
    get_harbor_client,
    http_error_for,
    require_active_store,
)
from services.lockers_service.errors import CredentialError, ProviderError
from services.lockers_service.harbor_client import HarborClient
from services.lockers_service.models import (
    LockerOrder,
    LockerPreference,
    NotificationKind,
    OrderStatus,
    Store,
)
from services.lockers_service.schemas import (
    CancelRequest,
    DashboardStats,
    LockerOrderDetail,
    LockerOrderResponse,
    LockerPreferenceResponse,
    PreferencesUpdate,
    ProviderLocationResponse,
)
from services.lockers_service.services.allocation import haversine_km
from services.lockers_service.services.lifecycle import OrderSnapshot
from services.lockers_service.services.notifications import NotificationDispatcher
from services.lockers_service.services.orders import cancel_order, get_latest_order
from services.lockers_service.services.rate_quote import ShopEligibilityCache
from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession
from sqlalchemy.orm import selectinload

router = APIRouter(prefix="/admin/api", tags=["admin"])
logger = get_logger(__name__)


# ---------------------------------------------------------------------------
# Stats
# ---------------------------------------------------------------------------


@router.get("/stats/{shop}", response_model=DashboardStats)
async def dashboard_stats(
    store: Store = Depends(require_active_store),
    db: AsyncSession = Depends(get_async_db),
):
    counts = dict(
        (
            await db.execute(
                select(LockerOrder.status, func.count(LockerOrder.id))
                .where(LockerOrder.shop == store.shop)
                .group_by(LockerOrder.status)
            )
        ).all()
    )

    week_ago = utc_now() - timedelta(days=7)
    completed_this_week = (
        await db.execute(
            select(func.count(LockerOrder.id)).where(
                LockerOrder.shop == store.shop,
                LockerOrder.status == OrderStatus.COMPLETED,
                LockerOrder.completed_at >= week_ago,
            )
        )
    ).scalar_one()

    pending_allocation = (
        await db.execute(
            select(func.count(LockerOrder.id)).where(
                LockerOrder.shop == store.shop,
                LockerOrder.status == OrderStatus.PENDING_DROPOFF,
                LockerOrder.dropoff_request_id.is_(None),
            )
        )
    ).scalar_one()

    active_lockers = (
        await db.execute(
            select(func.count(LockerPreference.id)).where(
                LockerPreference.shop == store.shop,
                LockerPreference.is_enabled.is_(True),
            )
        )
    ).scalar_one()

    return DashboardStats(
        pending_dropoffs=counts.get(OrderStatus.PENDING_DROPOFF, 0),
        ready_for_pickup=counts.get(OrderStatus.READY_FOR_PICKUP, 0),
        completed_this_week=completed_this_week,
        active_lockers=active_lockers,
        pending_allocation=pending_allocation,
    )


# ---------------------------------------------------------------------------
# Orders
# ---------------------------------------------------------------------------


@router.get("/orders/{shop}", response_model=list[LockerOrderResponse])
async def list_orders(
    status_filter: Optional[OrderStatus] = Query(None, alias="status"),
    limit: int = Query(50, ge=1, le=200),
    offset: int = Query(0, ge=0),
    store: Store = Depends(require_active_store),
    db: AsyncSession = Depends(get_async_db),
):
    query = select(LockerOrder).where(LockerOrder.shop == store.shop)
    if status_filter:
        query = query.where(LockerOrder.status == status_filter)
    query = query.order_by(LockerOrder.created_at.desc()).offset(offset).limit(limit)
    result = await db.execute(query)
    return result.scalars().all()


@router.get(
    "/orders/{shop}/pending-allocation", response_model=list[LockerOrderResponse]
)
async def list_pending_allocation(
    store: Store = Depends(require_active_store),
    db: AsyncSession = Depends(get_async_db),
):
    """Orders still waiting for a locker, e.g. after provider outages."""
    query = (
        select(LockerOrder)
        .where(
            LockerOrder.shop == store.shop,
            LockerOrder.status == OrderStatus.PENDING_DROPOFF,
            LockerOrder.dropoff_request_id.is_(None),
        )
        .order_by(LockerOrder.created_at.asc())
    )
    result = await db.execute(query)
    return result.scalars().all()


@router.get("/orders/{shop}/{external_order_id}", response_model=LockerOrderDetail)
async def get_order_detail(
    external_order_id: str,
    store: Store = Depends(require_active_store),
    db: AsyncSession = Depends(get_async_db),
):
    order = await get_latest_order(db, external_order_id, shop=store.shop)
    if order is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Order not found"
        )
    query = (
        select(LockerOrder)
        .where(LockerOrder.id == order.id)
        .options(selectinload(LockerOrder.events))
        .execution_options(populate_existing=True)
    )
    order = (await db.execute(query)).scalar_one()
    return order


@router.post(
    "/orders/{shop}/{external_order_id}/cancel", response_model=LockerOrderResponse
)
async def cancel_locker_order(
    external_order_id: str,
    payload: Optional[CancelRequest] = None,
    store: Store = Depends(require_active_store),
    db: AsyncSession = Depends(get_async_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Cancel the locker fulfillment. The provider reservation is left to lapse."""
    result = await cancel_order(
        db,
        store.shop,
        external_order_id,
        dispatcher,
        reason=payload.reason if payload else None,
    )
    if result is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Order not found"
        )
    if not result.applied:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"Order is already {result.order.status.value}",
        )

    order = await db.get(LockerOrder, result.order.id, populate_existing=True)
    return order


@router.post("/orders/{shop}/{external_order_id}/resend-pickup")
async def resend_pickup_notification(
    external_order_id: str,
    store: Store = Depends(require_active_store),
    db: AsyncSession = Depends(get_async_db),
    dispatcher: NotificationDispatcher = Depends(get_dispatcher),
):
    """Send the pickup-ready message again."""
    order = await get_latest_order(db, external_order_id, shop=store.shop)
    if order is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Order not found"
        )
    if order.status != OrderStatus.READY_FOR_PICKUP:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Order is not ready for pickup",
        )

    snapshot = OrderSnapshot.from_order(order)
    await db.commit()
    report = await dispatcher.dispatch(NotificationKind.PICKUP_READY, snapshot)
    return {"success": bool(report.sent), "sent": report.sent, "failed": report.failed}


# ---------------------------------------------------------------------------
# Locker preferences
# ---------------------------------------------------------------------------


async def _preferences(db: AsyncSession, shop: str) -> list[LockerPreference]:
    query = (
        select(LockerPreference)
        .where(LockerPreference.shop == shop)
        .order_by(LockerPreference.location_name, LockerPreference.location_id)
    )
    return list((await db.execute(query)).scalars().all())


@router.get("/lockers/{shop}")
async def list_lockers(
    lat: Optional[float] = Query(None, ge=-90, le=90),
    lon: Optional[float] = Query(None, ge=-180, le=180),
    store: Store = Depends(require_active_store),
    db: AsyncSession = Depends(get_async_db),
    harbor: HarborClient = Depends(get_harbor_client),
):
    """
    The shop's locker preferences, plus provider locations near (lat, lon)
    when a point is given so the merchant can enable new ones.
    """
    preferences = await _preferences(db, store.shop)
    enabled = {p.location_id for p in preferences if p.is_enabled}
    await db.commit()

    nearby = []
    if lat is not None and lon is not None:
        try:
            locations = await harbor.search_locations(lat, lon)
        except (CredentialError, ProviderError) as e:
            raise http_error_for(e)
        for loc in locations:
            distance = loc.distance_km
            if distance is None and loc.latitude is not None and loc.longitude is not None:
                distance = round(haversine_km(lat, lon, loc.latitude, loc.longitude), 3)
            nearby.append(
                ProviderLocationResponse(
                    location_id=loc.location_id,
                    name=loc.name,
                    address=loc.address,
                    distance_km=distance,
                    is_enabled=loc.location_id in enabled,
                )
            )

    return {
        "preferences": [
            LockerPreferenceResponse.model_validate(p) for p in preferences
        ],
        "nearby": nearby,
    }


@router.put(
    "/lockers/{shop}/preferences", response_model=list[LockerPreferenceResponse]
)
async def update_preferences(
    payload: PreferencesUpdate,
    store: Store = Depends(require_active_store),
    db: AsyncSession = Depends(get_async_db),
    cache: ShopEligibilityCache = Depends(get_eligibility_cache),
):
    """Enable or disable locker locations for the shop."""
    existing = {p.location_id: p for p in await _preferences(db, store.shop)}

    for item in payload.preferences:
        pref = existing.get(item.location_id)
        if pref is None:
            pref = LockerPreference(
                shop=store.shop,
                location_id=item.location_id,
                location_name=item.location_name,
                is_enabled=item.is_enabled,
            )
            db.add(pref)
            existing[item.location_id] = pref
        else:
            pref.is_enabled = item.is_enabled
            if item.location_name is not None:
                pref.location_name = item.location_name

    await db.commit()
    cache.invalidate(store.shop)
    logger.info(
        "Updated %d locker preferences for %s", len(payload.preferences), store.shop
    )

    preferences = await _preferences(db, store.shop)
    return preferences
