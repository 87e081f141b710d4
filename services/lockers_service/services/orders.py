"""Locker order intake and merchant actions."""

from dataclasses import dataclass, field
from typing import Optional

from libs.common.config import get_settings
from libs.common.logging import get_logger
from services.lockers_service.errors import (
    AllocationError,
    CredentialError,
    ProviderError,
    ProviderUnavailable,
)
from services.lockers_service.harbor_client import HarborClient
from services.lockers_service.models import (
    EventSource,
    EventType,
    LockerOrder,
    OrderStatus,
)
from services.lockers_service.services.allocation import (
    Reservation,
    allocate,
    candidate_for_location,
    required_size,
)
from services.lockers_service.services.lifecycle import (
    LifecycleEvent,
    TransitionResult,
    apply_event,
)
from services.lockers_service.services.notifications import NotificationDispatcher
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

LOCATION_ATTRIBUTE = "lockerdrop_location_id"


@dataclass
class OrderIntake:
    external_order_id: str
    order_number: Optional[str] = None
    customer_name: Optional[str] = None
    customer_email: Optional[str] = None
    customer_phone: Optional[str] = None
    requested_location_id: Optional[str] = None
    items: list[dict] = field(default_factory=list)


def _locker_shipping_line(order: dict) -> Optional[dict]:
    code = get_settings().LOCKER_SERVICE_CODE
    for line in order.get("shipping_lines") or []:
        line_code = line.get("code") or ""
        if line_code == code or line_code.startswith(f"{code}:"):
            return line
    return None


def intake_from_shopify_order(order: dict) -> Optional[OrderIntake]:
    """Build an intake from an orders/create webhook, or None if not a locker order."""
    line = _locker_shipping_line(order)
    if line is None:
        return None

    attributes = {
        attr.get("name"): attr.get("value")
        for attr in order.get("note_attributes") or []
        if isinstance(attr, dict)
    }
    location_id = attributes.get(LOCATION_ATTRIBUTE)
    code = line.get("code") or ""
    if not location_id and ":" in code:
        location_id = code.split(":", 1)[1] or None

    customer = order.get("customer") or {}
    shipping = order.get("shipping_address") or {}
    name = " ".join(
        part
        for part in (customer.get("first_name"), customer.get("last_name"))
        if part
    ) or shipping.get("name")

    items = [
        {
            "grams": item.get("grams"),
            "size_class": _item_property(item, "size_class"),
        }
        for item in order.get("line_items") or []
    ]

    return OrderIntake(
        external_order_id=str(order.get("id")),
        order_number=_str_or_none(order.get("order_number") or order.get("name")),
        customer_name=name or None,
        customer_email=order.get("email") or customer.get("email"),
        customer_phone=order.get("phone")
        or customer.get("phone")
        or shipping.get("phone"),
        requested_location_id=location_id,
        items=items,
    )


def _item_property(item: dict, name: str):
    for prop in item.get("properties") or []:
        if isinstance(prop, dict) and prop.get("name") == name:
            return prop.get("value")
    return item.get(name)


def _str_or_none(value) -> Optional[str]:
    return str(value).lstrip("#") if value is not None else None


async def get_live_order(
    db: AsyncSession, external_order_id: str, shop: Optional[str] = None
) -> Optional[LockerOrder]:
    query = select(LockerOrder).where(
        LockerOrder.external_order_id == external_order_id,
        LockerOrder.status != OrderStatus.CANCELLED,
    )
    if shop:
        query = query.where(LockerOrder.shop == shop)
    return (await db.execute(query)).scalar_one_or_none()


async def get_latest_order(
    db: AsyncSession, external_order_id: str, shop: Optional[str] = None
) -> Optional[LockerOrder]:
    """Live order if there is one, otherwise the most recent cancelled one."""
    query = select(LockerOrder).where(
        LockerOrder.external_order_id == external_order_id
    )
    if shop:
        query = query.where(LockerOrder.shop == shop)
    orders = (await db.execute(query)).scalars().all()
    if not orders:
        return None
    live = [o for o in orders if o.status != OrderStatus.CANCELLED]
    if live:
        return live[0]
    return max(orders, key=lambda o: o.created_at)


async def create_order(
    db: AsyncSession, shop: str, intake: OrderIntake
) -> tuple[LockerOrder, bool]:
    """
    Create a locker order awaiting allocation.

    Idempotent per commerce order: returns (existing, False) when a live
    order already exists.
    """
    existing = await get_live_order(db, intake.external_order_id)
    if existing is not None:
        await db.commit()
        return existing, False

    order = LockerOrder(
        shop=shop,
        external_order_id=intake.external_order_id,
        order_number=intake.order_number,
        customer_name=intake.customer_name,
        customer_email=intake.customer_email,
        customer_phone=intake.customer_phone,
        requested_location_id=intake.requested_location_id,
        required_size=required_size(intake.items),
        status=OrderStatus.PENDING_DROPOFF,
    )
    db.add(order)
    try:
        await db.commit()
    except IntegrityError:
        # Lost a race with another delivery of the same order
        await db.rollback()
        existing = await get_live_order(db, intake.external_order_id)
        if existing is None:
            raise
        await db.commit()
        return existing, False

    logger.info(
        "Created locker order %s for %s (size %s)",
        order.external_order_id,
        shop,
        order.required_size.value,
    )
    return order, True


async def cancel_order(
    db: AsyncSession,
    shop: str,
    external_order_id: str,
    dispatcher: NotificationDispatcher,
    reason: Optional[str] = None,
) -> Optional[TransitionResult]:
    """Merchant cancellation; goes through the lifecycle like any other event.

    Returns None if the shop has no live order with that id.
    """
    order = await get_live_order(db, external_order_id, shop=shop)
    if order is None:
        return None
    order_id = order.id
    await db.commit()

    result = await apply_event(
        db,
        order_id,
        LifecycleEvent(
            event_type=EventType.CANCELLED,
            source=EventSource.MERCHANT,
            raw_event_type="merchant_cancel",
            payload={"reason": reason} if reason else None,
        ),
    )
    if result.notification is not None:
        await dispatcher.dispatch_safely(result.notification, result.order)
    return result


async def allocate_at_location(
    db: AsyncSession, client: HarborClient, order_id, shop: str, location_id: str
) -> Reservation:
    candidate = await candidate_for_location(db, shop, location_id)
    await db.commit()
    if candidate is None:
        raise AllocationError(f"Location {location_id} is not enabled for {shop}")
    return await allocate(db, client, order_id, candidate)


async def try_allocate(
    db: AsyncSession, client: HarborClient, order: LockerOrder
) -> tuple[str, Optional[str]]:
    """
    Allocate a freshly created order at its requested location.

    Returns (allocation_status, error). Provider trouble leaves the order
    pending for the background retry instead of failing the request.
    """
    if order.dropoff_request_id:
        return "allocated", None
    if not order.requested_location_id:
        return "not_requested", None

    try:
        await allocate_at_location(
            db, client, order.id, order.shop, order.requested_location_id
        )
    except (ProviderUnavailable, CredentialError) as e:
        logger.warning(
            "Allocation for %s deferred to retry: %s", order.external_order_id, e
        )
        return "pending_retry", str(e)
    except (AllocationError, ProviderError) as e:
        logger.warning("Allocation for %s failed: %s", order.external_order_id, e)
        return "failed", str(e)
    return "allocated", None
