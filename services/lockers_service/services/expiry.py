"""Expire orders left in a locker past the hold period."""

from datetime import timedelta
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import utc_now
from libs.common.logging import get_logger
from services.lockers_service.models import (
    EventOutcome,
    EventSource,
    EventType,
    LockerOrder,
    OrderStatus,
)
from services.lockers_service.services.lifecycle import LifecycleEvent, apply_event
from services.lockers_service.services.notifications import NotificationDispatcher
from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)


async def expire_stale_pickups(
    db: AsyncSession,
    dispatcher: NotificationDispatcher,
    hold_days: Optional[int] = None,
    limit: int = 200,
) -> dict:
    """Move ready_for_pickup orders older than the hold period to expired."""
    days = hold_days if hold_days is not None else get_settings().PICKUP_HOLD_DAYS
    cutoff = utc_now() - timedelta(days=days)

    query = (
        select(LockerOrder.id)
        .where(
            LockerOrder.status == OrderStatus.READY_FOR_PICKUP,
            LockerOrder.ready_at < cutoff,
        )
        .order_by(LockerOrder.ready_at.asc())
        .limit(limit)
    )
    order_ids = list((await db.execute(query)).scalars().all())
    await db.commit()

    expired = 0
    for order_id in order_ids:
        result = await apply_event(
            db,
            order_id,
            LifecycleEvent(
                event_type=EventType.EXPIRED,
                source=EventSource.SYSTEM,
                raw_event_type="pickup_hold_elapsed",
                payload={"hold_days": days},
            ),
        )
        if result.outcome == EventOutcome.APPLIED:
            expired += 1
            await dispatcher.dispatch_safely(result.notification, result.order)

    if order_ids:
        logger.info("Expiry sweep: %d/%d orders expired", expired, len(order_ids))
    return {"checked": len(order_ids), "expired": expired}
