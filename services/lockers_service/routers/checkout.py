"""Storefront-facing endpoints: checkout locker search, order intake, status blocks."""

from datetime import timedelta
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, Request, status
from libs.common.config import get_settings
from libs.common.datetime_utils import ensure_utc
from libs.common.logging import get_logger
from libs.common.rate_limit import checkout_limit
from libs.db.session import get_async_db
from services.lockers_service.dependencies import (
    get_harbor_client,
    http_error_for,
    require_active_store,
)
from services.lockers_service.errors import (
    AllocationError,
    CredentialError,
    OfferUnavailable,
    ProviderError,
)
from services.lockers_service.harbor_client import HarborClient
from services.lockers_service.models import OrderStatus, SizeClass, Store
from services.lockers_service.schemas import (
    AllocateRequest,
    CandidateResponse,
    CheckoutLockersResponse,
    CustomerOrderStatus,
    LockerOrderResponse,
    MerchantOrderBlock,
    OrderCreate,
    OrderCreateResponse,
    ReservationResponse,
)
from services.lockers_service.services.allocation import find_candidates
from services.lockers_service.services.orders import (
    OrderIntake,
    allocate_at_location,
    create_order,
    get_latest_order,
    get_live_order,
    try_allocate,
)
from sqlalchemy.ext.asyncio import AsyncSession

router = APIRouter(prefix="/api", tags=["checkout"])
logger = get_logger(__name__)

CHECKOUT_RESULT_LIMIT = 5


@router.get("/checkout/lockers", response_model=CheckoutLockersResponse)
@checkout_limit
async def checkout_lockers(
    request: Request,
    shop: str = Query(...),
    lat: float = Query(..., ge=-90, le=90),
    lon: float = Query(..., ge=-180, le=180),
    size: SizeClass = Query(SizeClass.SMALL),
    db: AsyncSession = Depends(get_async_db),
    harbor: HarborClient = Depends(get_harbor_client),
):
    """Nearest lockers the shop offers that can hold an order of `size`."""
    try:
        candidates = await find_candidates(db, harbor, shop, (lat, lon), size)
    except OfferUnavailable as e:
        return CheckoutLockersResponse(required_size=size, reason=e.reason)
    except (CredentialError, ProviderError) as e:
        logger.warning("Locker search for %s failed: %s", shop, e)
        return CheckoutLockersResponse(required_size=size, reason="unavailable")

    return CheckoutLockersResponse(
        lockers=[
            CandidateResponse(
                location_id=c.location_id,
                name=c.name,
                address=c.address,
                distance_km=c.distance_km,
                available_count=c.available_count,
            )
            for c in candidates[:CHECKOUT_RESULT_LIMIT]
        ],
        required_size=size,
    )


@router.post(
    "/orders/{shop}",
    response_model=OrderCreateResponse,
    status_code=status.HTTP_201_CREATED,
)
async def create_locker_order(
    payload: OrderCreate,
    store: Store = Depends(require_active_store),
    db: AsyncSession = Depends(get_async_db),
    harbor: HarborClient = Depends(get_harbor_client),
):
    """Create a locker order and try to allocate it at the chosen location."""
    intake = OrderIntake(
        external_order_id=payload.external_order_id,
        order_number=payload.order_number,
        customer_name=payload.customer_name,
        customer_email=payload.customer_email,
        customer_phone=payload.customer_phone,
        requested_location_id=payload.location_id,
        items=[item.model_dump() for item in payload.items],
    )
    order, created = await create_order(db, store.shop, intake)

    allocation_status, error = "not_requested", None
    if payload.allocate:
        allocation_status, error = await try_allocate(db, harbor, order)

    await db.refresh(order)
    return OrderCreateResponse(
        order=LockerOrderResponse.model_validate(order),
        created=created,
        allocation_status=allocation_status,
        allocation_error=error,
    )


@router.post(
    "/orders/{shop}/{external_order_id}/allocate",
    response_model=ReservationResponse,
)
async def allocate_order(
    external_order_id: str,
    payload: Optional[AllocateRequest] = None,
    store: Store = Depends(require_active_store),
    db: AsyncSession = Depends(get_async_db),
    harbor: HarborClient = Depends(get_harbor_client),
):
    """Allocate (or re-allocate after a failure) a locker for an order."""
    order = await get_live_order(db, external_order_id, shop=store.shop)
    if order is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Order not found"
        )

    location_id = (payload.location_id if payload else None) or (
        order.location_id or order.requested_location_id
    )
    if not location_id:
        raise HTTPException(
            status_code=status.HTTP_400_BAD_REQUEST,
            detail="No locker location chosen for this order",
        )

    try:
        reservation = await allocate_at_location(
            db, harbor, order.id, store.shop, location_id
        )
    except (AllocationError, CredentialError, ProviderError) as e:
        raise http_error_for(e)

    return ReservationResponse(
        order_id=reservation.order_id,
        location_id=reservation.location_id,
        location_name=reservation.location_name,
        locker_id=reservation.locker_id,
        tower_id=reservation.tower_id,
        dropoff_request_id=reservation.dropoff_request_id,
        dropoff_link=reservation.dropoff_link,
        created=reservation.created,
    )


@router.get(
    "/customer/order-status/{external_order_id}",
    response_model=CustomerOrderStatus,
)
async def customer_order_status(
    external_order_id: str,
    db: AsyncSession = Depends(get_async_db),
):
    """Pickup status block for the order status page."""
    order = await get_latest_order(db, external_order_id)
    if order is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="Order not found"
        )

    ready_at = ensure_utc(order.ready_at)
    deadline = None
    if ready_at is not None:
        deadline = ready_at + timedelta(days=get_settings().PICKUP_HOLD_DAYS)

    return CustomerOrderStatus(
        external_order_id=order.external_order_id,
        order_number=order.order_number,
        status=order.status,
        locker_name=order.location_name,
        # Access link only once the order is ready
        pickup_link=(
            order.pickup_link
            if order.status == OrderStatus.READY_FOR_PICKUP
            else None
        ),
        ready_at=ready_at,
        pickup_deadline=deadline,
    )


@router.get(
    "/order-locker-data/{external_order_id}",
    response_model=MerchantOrderBlock,
)
async def order_locker_data(
    external_order_id: str,
    db: AsyncSession = Depends(get_async_db),
):
    """Locker block shown on the merchant's order page."""
    order = await get_latest_order(db, external_order_id)
    if order is None:
        raise HTTPException(
            status_code=status.HTTP_404_NOT_FOUND, detail="No locker data for order"
        )

    return MerchantOrderBlock(
        shop=order.shop,
        external_order_id=order.external_order_id,
        order_number=order.order_number,
        status=order.status,
        location_name=order.location_name,
        locker_id=order.locker_id,
        dropoff_link=order.dropoff_link,
        pickup_link=order.pickup_link,
        allocation_error=order.allocation_error,
        created_at=order.created_at,
    )
