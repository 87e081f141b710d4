"""Locker search and allocation.

Search filters the provider's nearby locations down to the ones the merchant
has enabled and that can hold the order. Allocation reserves a compartment
with the provider and records it on the order, once per order.
"""

import asyncio
import math
import uuid
from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.lockers_service.errors import (
    AllocationError,
    CredentialError,
    NoCapacity,
    NoLocationsNearby,
    ProviderError,
    ProviderUnavailable,
)
from services.lockers_service.harbor_client import HarborClient, parse_size
from services.lockers_service.models import (
    LockerOrder,
    LockerPreference,
    OrderStatus,
    SizeClass,
    Store,
)
from services.lockers_service.shopify_client import ShopifyClient, ShopifyError
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

# Background retry rounds before an order is left for the merchant to handle
MAX_ALLOCATION_ROUNDS = 8

# ---------------------------------------------------------------------------
# Size policy
# ---------------------------------------------------------------------------

_WEIGHT_LIMITS_GRAMS = [
    (1_000, SizeClass.SMALL),
    (5_000, SizeClass.MEDIUM),
    (15_000, SizeClass.LARGE),
]


def size_for_item(item: dict) -> SizeClass:
    """An item's explicit size class, otherwise one derived from its weight."""
    explicit = parse_size(item.get("size_class"))
    if explicit is not None:
        return explicit

    grams = item.get("grams") or 0
    try:
        grams = float(grams)
    except (TypeError, ValueError):
        grams = 0
    for limit, size in _WEIGHT_LIMITS_GRAMS:
        if grams <= limit:
            return size
    return SizeClass.X_LARGE


def required_size(items: Iterable[dict]) -> SizeClass:
    """Smallest compartment that fits every item of an order."""
    sizes = [size_for_item(item) for item in items or []]
    if not sizes:
        return SizeClass.SMALL
    return max(sizes, key=lambda size: size.rank)


# ---------------------------------------------------------------------------
# Search
# ---------------------------------------------------------------------------

EARTH_RADIUS_KM = 6371.0


def haversine_km(lat1: float, lon1: float, lat2: float, lon2: float) -> float:
    lat1, lon1, lat2, lon2 = map(math.radians, (lat1, lon1, lat2, lon2))
    dlat = lat2 - lat1
    dlon = lon2 - lon1
    a = (
        math.sin(dlat / 2) ** 2
        + math.cos(lat1) * math.cos(lat2) * math.sin(dlon / 2) ** 2
    )
    return 2 * EARTH_RADIUS_KM * math.asin(math.sqrt(a))


@dataclass
class LockerCandidate:
    location_id: str
    name: str
    address: str = ""
    distance_km: Optional[float] = None
    available_count: int = 0


async def enabled_locations(db: AsyncSession, shop: str) -> dict[str, LockerPreference]:
    query = select(LockerPreference).where(
        LockerPreference.shop == shop,
        LockerPreference.is_enabled.is_(True),
    )
    result = await db.execute(query)
    return {pref.location_id: pref for pref in result.scalars().all()}


async def find_candidates(
    db: AsyncSession,
    client: HarborClient,
    shop: str,
    coords: tuple[float, float],
    size_class: SizeClass,
    radius_m: Optional[int] = None,
) -> list[LockerCandidate]:
    """
    Enabled locations near `coords` with room for `size_class`.

    Sorted nearest first, ties broken by more free compartments.

    Raises:
        NoLocationsNearby: none of the shop's enabled locations is in range
        NoCapacity: enabled locations are in range but all are full
    """
    enabled = await enabled_locations(db, shop)
    if not enabled:
        raise NoLocationsNearby(f"{shop} has no enabled locker locations")

    latitude, longitude = coords
    locations = await client.search_locations(latitude, longitude, radius_m=radius_m)

    nearby = [loc for loc in locations if loc.location_id in enabled]
    if not nearby:
        raise NoLocationsNearby("No enabled locker locations in range")

    candidates = []
    for loc in nearby:
        available = loc.available_for(size_class)
        if available <= 0:
            continue
        distance = loc.distance_km
        if distance is None and loc.latitude is not None and loc.longitude is not None:
            distance = haversine_km(latitude, longitude, loc.latitude, loc.longitude)
        candidates.append(
            LockerCandidate(
                location_id=loc.location_id,
                name=loc.name or enabled[loc.location_id].location_name or "",
                address=loc.address,
                distance_km=round(distance, 3) if distance is not None else None,
                available_count=available,
            )
        )

    if not candidates:
        raise NoCapacity(f"No {size_class.value} compartments free nearby")

    candidates.sort(
        key=lambda c: (
            c.distance_km if c.distance_km is not None else math.inf,
            -c.available_count,
        )
    )
    return candidates


# ---------------------------------------------------------------------------
# Allocation
# ---------------------------------------------------------------------------


@dataclass
class Reservation:
    order_id: uuid.UUID
    location_id: Optional[str]
    location_name: Optional[str]
    locker_id: Optional[str]
    tower_id: Optional[str]
    dropoff_request_id: str
    dropoff_link: Optional[str]
    created: bool = True

    @classmethod
    def from_order(cls, order: LockerOrder, created: bool = False) -> "Reservation":
        return cls(
            order_id=order.id,
            location_id=order.location_id,
            location_name=order.location_name,
            locker_id=order.locker_id,
            tower_id=order.tower_id,
            dropoff_request_id=order.dropoff_request_id,
            dropoff_link=order.dropoff_link,
            created=created,
        )


def _next_retry_time(attempts: int) -> datetime:
    # Exponential backoff capped at 60 minutes.
    base = get_settings().ALLOCATION_RETRY_BASE_MINUTES
    delay = min(60, base * (2 ** max(attempts - 1, 0)))
    return utc_now() + timedelta(minutes=delay)


async def _lock_order(db: AsyncSession, order_id: uuid.UUID) -> Optional[LockerOrder]:
    query = (
        select(LockerOrder)
        .where(LockerOrder.id == order_id)
        .with_for_update()
        .execution_options(populate_existing=True)
    )
    return (await db.execute(query)).scalar_one_or_none()


async def _record_failure(
    db: AsyncSession, order_id: uuid.UUID, error: Exception, retryable: bool = True
) -> None:
    """Store the failure on the order and schedule the next background round.

    Non-retryable failures (provider rejections) get no next round; the order
    stays on the dashboard's pending list with the error for the merchant.
    """
    order = await _lock_order(db, order_id)
    if order is None:
        await db.rollback()
        return
    order.allocation_attempts = (order.allocation_attempts or 0) + 1
    order.allocation_error = str(error)[:1000]
    if not retryable or order.allocation_attempts >= MAX_ALLOCATION_ROUNDS:
        order.next_allocation_at = None
    else:
        order.next_allocation_at = _next_retry_time(order.allocation_attempts)
    await db.commit()

    logger.warning(
        "Allocation failed for order %s (round %d/%d): %s",
        order.external_order_id,
        order.allocation_attempts,
        MAX_ALLOCATION_ROUNDS,
        error,
    )


async def _create_with_backoff(
    client: HarborClient, order: LockerOrder, candidate: LockerCandidate
):
    settings = get_settings()
    attempts = max(1, settings.ALLOCATION_MAX_ATTEMPTS)
    customer = {
        "name": order.customer_name,
        "email": order.customer_email,
        "phone": order.customer_phone,
    }
    customer = {k: v for k, v in customer.items() if v}

    for attempt in range(1, attempts + 1):
        try:
            return await client.create_delivery(
                location_id=candidate.location_id,
                size=order.required_size or SizeClass.SMALL,
                reference=str(order.id),
                customer=customer or None,
            )
        except ProviderUnavailable as e:
            if attempt == attempts:
                raise
            delay = settings.ALLOCATION_BACKOFF_SECONDS * (2 ** (attempt - 1))
            logger.info(
                "Harbor unavailable for order %s (attempt %d/%d), retrying in %.2fs: %s",
                order.external_order_id,
                attempt,
                attempts,
                delay,
                e,
            )
            await asyncio.sleep(delay)


async def allocate(
    db: AsyncSession,
    client: HarborClient,
    order_id: uuid.UUID,
    candidate: LockerCandidate,
) -> Reservation:
    """
    Reserve a compartment for an order at the candidate location.

    Returns the existing reservation if the order already has one. The
    provider is called with no transaction open; the order row is only
    locked to write the result.

    Raises:
        AllocationError: order missing, terminal, or location not enabled
        ProviderUnavailable: provider still failing after retries
        ProviderError: provider rejected the delivery (not retried)
        CredentialError: token exchange failed
    """
    order = await db.get(LockerOrder, order_id, populate_existing=True)
    if order is None:
        raise AllocationError(f"Order {order_id} not found")
    if order.dropoff_request_id:
        reservation = Reservation.from_order(order)
        await db.commit()
        return reservation
    if order.status.is_terminal:
        raise AllocationError(
            f"Order {order.external_order_id} is {order.status.value}"
        )

    enabled = await enabled_locations(db, order.shop)
    if candidate.location_id not in enabled:
        raise AllocationError(
            f"Location {candidate.location_id} is not enabled for {order.shop}"
        )
    # Release the read transaction before calling out
    await db.commit()

    try:
        delivery = await _create_with_backoff(client, order, candidate)
    except ProviderUnavailable as e:
        await _record_failure(db, order_id, e)
        raise
    except ProviderError as e:
        await _record_failure(db, order_id, e, retryable=False)
        raise

    try:
        locked = await _lock_order(db, order_id)
        if locked.dropoff_request_id:
            logger.warning(
                "Order %s was allocated concurrently; Harbor delivery %s is orphaned",
                locked.external_order_id,
                delivery.request_id,
            )
            reservation = Reservation.from_order(locked)
            await db.commit()
            return reservation
        if locked.status.is_terminal:
            logger.warning(
                "Order %s became %s during allocation; Harbor delivery %s is orphaned",
                locked.external_order_id,
                locked.status.value,
                delivery.request_id,
            )
            await db.rollback()
            raise AllocationError(
                f"Order {locked.external_order_id} is {locked.status.value}"
            )

        locked.location_id = delivery.location_id or candidate.location_id
        locked.location_name = candidate.name or locked.location_name
        locked.locker_id = delivery.locker_id
        locked.tower_id = delivery.tower_id
        locked.dropoff_request_id = delivery.request_id
        locked.dropoff_link = delivery.dropoff_link
        locked.status = OrderStatus.PENDING_DROPOFF
        locked.allocation_error = None
        locked.next_allocation_at = None
        reservation = Reservation.from_order(locked, created=True)
        shop = locked.shop
        external_order_id = locked.external_order_id
        await db.commit()
    except AllocationError:
        raise
    except Exception:
        await db.rollback()
        raise

    logger.info(
        "Allocated order %s to %s (delivery %s)",
        external_order_id,
        reservation.location_id,
        reservation.dropoff_request_id,
        extra={
            "extra_fields": {
                "order_id": str(order_id),
                "locker_id": reservation.locker_id,
                "tower_id": reservation.tower_id,
            }
        },
    )

    await write_back_note_attributes(db, shop, external_order_id, reservation)
    return reservation


def note_attributes(reservation: Reservation) -> dict[str, str]:
    return {
        "lockerdrop_location_id": reservation.location_id,
        "lockerdrop_location_name": reservation.location_name,
        "lockerdrop_locker_id": reservation.locker_id,
        "lockerdrop_dropoff_link": reservation.dropoff_link,
    }


async def write_back_note_attributes(
    db: AsyncSession, shop: str, external_order_id: str, reservation: Reservation
) -> bool:
    """Copy the reservation onto the commerce order. Failures are only logged."""
    store = (
        await db.execute(select(Store).where(Store.shop == shop))
    ).scalar_one_or_none()
    await db.commit()
    if store is None or not store.access_token:
        logger.debug("No access token for %s; skipping note attributes", shop)
        return False

    client = ShopifyClient(shop=shop, access_token=store.access_token)
    try:
        await client.set_note_attributes(
            external_order_id, note_attributes(reservation)
        )
    except ShopifyError as e:
        logger.warning(
            "Could not write locker details to %s order %s: %s",
            shop,
            external_order_id,
            e,
        )
        return False
    return True


# ---------------------------------------------------------------------------
# Background retry
# ---------------------------------------------------------------------------


async def candidate_for_location(
    db: AsyncSession, shop: str, location_id: str
) -> Optional[LockerCandidate]:
    enabled = await enabled_locations(db, shop)
    pref = enabled.get(location_id)
    if pref is None:
        return None
    return LockerCandidate(location_id=pref.location_id, name=pref.location_name or "")


async def retry_pending_allocations(
    db: AsyncSession, client: HarborClient, limit: int = 200
) -> dict:
    """Re-attempt allocation for orders whose earlier attempt failed."""
    now = utc_now()
    query = (
        select(LockerOrder.id, LockerOrder.shop, LockerOrder.requested_location_id)
        .where(
            LockerOrder.status == OrderStatus.PENDING_DROPOFF,
            LockerOrder.dropoff_request_id.is_(None),
            LockerOrder.requested_location_id.is_not(None),
            or_(
                LockerOrder.allocation_attempts == 0,
                LockerOrder.next_allocation_at <= now,
            ),
        )
        .order_by(LockerOrder.created_at.asc())
        .limit(limit)
    )
    rows = (await db.execute(query)).all()
    await db.commit()

    summary = {"checked": len(rows), "allocated": 0, "failed": 0, "skipped": 0}
    for order_id, shop, location_id in rows:
        candidate = await candidate_for_location(db, shop, location_id)
        await db.commit()
        if candidate is None:
            summary["skipped"] += 1
            continue
        try:
            reservation = await allocate(db, client, order_id, candidate)
        except CredentialError as e:
            logger.error("Allocation retry stopped, Harbor credentials rejected: %s", e)
            summary["failed"] += 1
            break
        except ProviderError:
            summary["failed"] += 1
            continue
        except AllocationError as e:
            logger.info("Skipping allocation retry for %s: %s", order_id, e)
            summary["skipped"] += 1
            continue
        except Exception:
            await db.rollback()
            logger.exception("Unexpected error retrying allocation for %s", order_id)
            summary["failed"] += 1
            continue
        if reservation.created:
            summary["allocated"] += 1

    return summary
