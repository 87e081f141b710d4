"""Order lifecycle state machine.

Every lifecycle event for an order, whatever its source, goes through
`apply_event`. Status only moves forward along

    pending_dropoff -> dropped_off -> ready_for_pickup -> completed

with `cancelled` and `expired` reachable from any non-terminal status.
Each call appends exactly one LockerEvent row recording what happened.
Notifications are returned to the caller and sent after commit.
"""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from libs.common.config import get_settings
from libs.common.datetime_utils import ensure_utc, utc_now
from libs.common.logging import get_logger
from services.lockers_service.models import (
    STATUS_RANK,
    EventOutcome,
    EventSource,
    EventType,
    LockerEvent,
    LockerOrder,
    NotificationKind,
    OrderStatus,
)
from sqlalchemy import select, update
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

# ---------------------------------------------------------------------------
# Transition table
# ---------------------------------------------------------------------------

EVENT_TARGETS: dict[EventType, OrderStatus] = {
    EventType.DROPOFF_COMPLETED: OrderStatus.DROPPED_OFF,
    EventType.PICKUP_READY: OrderStatus.READY_FOR_PICKUP,
    EventType.PICKUP_COMPLETED: OrderStatus.COMPLETED,
    EventType.CANCELLED: OrderStatus.CANCELLED,
    EventType.EXPIRED: OrderStatus.EXPIRED,
}

_SIDE_BRANCHES = frozenset({OrderStatus.CANCELLED, OrderStatus.EXPIRED})

_TIMESTAMP_COLUMNS = {
    OrderStatus.READY_FOR_PICKUP: "ready_at",
    OrderStatus.COMPLETED: "completed_at",
    OrderStatus.CANCELLED: "cancelled_at",
    OrderStatus.EXPIRED: "expired_at",
}


def notification_for(target: OrderStatus) -> Optional[NotificationKind]:
    if target == OrderStatus.READY_FOR_PICKUP:
        return NotificationKind.PICKUP_READY
    if target == OrderStatus.COMPLETED:
        if get_settings().NOTIFY_ON_PICKUP_COMPLETED:
            return NotificationKind.PICKED_UP
        return None
    if target == OrderStatus.CANCELLED:
        return NotificationKind.CANCELLED
    if target == OrderStatus.EXPIRED:
        return NotificationKind.EXPIRED
    return None


def decide(
    current: OrderStatus, event_type: EventType
) -> tuple[EventOutcome, Optional[OrderStatus]]:
    """Pure transition rule: what an event does to an order in `current`."""
    target = EVENT_TARGETS.get(event_type)
    if target is None:
        return EventOutcome.IGNORED, None
    if current.is_terminal:
        return EventOutcome.TERMINAL, target
    if target in _SIDE_BRANCHES:
        return EventOutcome.APPLIED, target
    if STATUS_RANK[target] > STATUS_RANK[current]:
        return EventOutcome.APPLIED, target
    return EventOutcome.ALREADY_APPLIED, target


# ---------------------------------------------------------------------------
# Data carriers
# ---------------------------------------------------------------------------


@dataclass
class LifecycleEvent:
    """A lifecycle event ready to be applied to a known order."""

    event_type: EventType
    source: EventSource = EventSource.PROVIDER
    raw_event_type: Optional[str] = None
    locker_id: Optional[str] = None
    tower_id: Optional[str] = None
    provider_timestamp: Optional[datetime] = None
    pickup_request_id: Optional[str] = None
    pickup_link: Optional[str] = None
    payload: Optional[dict] = None


@dataclass
class OrderSnapshot:
    """Detached copy of the order fields notifications and callers need."""

    id: uuid.UUID
    shop: str
    external_order_id: str
    order_number: Optional[str]
    status: OrderStatus
    customer_name: Optional[str]
    customer_email: Optional[str]
    customer_phone: Optional[str]
    location_name: Optional[str]
    locker_id: Optional[str]
    pickup_link: Optional[str]
    ready_at: Optional[datetime]

    @classmethod
    def from_order(cls, order: LockerOrder) -> "OrderSnapshot":
        return cls(
            id=order.id,
            shop=order.shop,
            external_order_id=order.external_order_id,
            order_number=order.order_number,
            status=order.status,
            customer_name=order.customer_name,
            customer_email=order.customer_email,
            customer_phone=order.customer_phone,
            location_name=order.location_name,
            locker_id=order.locker_id,
            pickup_link=order.pickup_link,
            ready_at=ensure_utc(order.ready_at),
        )


@dataclass
class TransitionResult:
    outcome: EventOutcome
    event_id: uuid.UUID
    from_status: Optional[OrderStatus] = None
    to_status: Optional[OrderStatus] = None
    notification: Optional[NotificationKind] = None
    order: Optional[OrderSnapshot] = None

    @property
    def applied(self) -> bool:
        return self.outcome == EventOutcome.APPLIED


# ---------------------------------------------------------------------------
# Persistence
# ---------------------------------------------------------------------------


async def _is_duplicate(
    db: AsyncSession, order_id: uuid.UUID, event: LifecycleEvent
) -> bool:
    if event.provider_timestamp is None:
        return False
    query = (
        select(LockerEvent.id)
        .where(
            LockerEvent.order_id == order_id,
            LockerEvent.event_type == event.event_type,
            LockerEvent.provider_timestamp == ensure_utc(event.provider_timestamp),
        )
        .limit(1)
    )
    result = await db.execute(query)
    return result.first() is not None


def _event_row(
    order_id: Optional[uuid.UUID],
    event: LifecycleEvent,
    outcome: EventOutcome,
    from_status: Optional[OrderStatus] = None,
    to_status: Optional[OrderStatus] = None,
) -> LockerEvent:
    return LockerEvent(
        id=uuid.uuid4(),
        order_id=order_id,
        event_type=event.event_type,
        raw_event_type=event.raw_event_type,
        source=event.source,
        locker_id=event.locker_id,
        tower_id=event.tower_id,
        provider_timestamp=ensure_utc(event.provider_timestamp),
        payload=event.payload,
        outcome=outcome,
        from_status=from_status.value if from_status else None,
        to_status=to_status.value if to_status else None,
        received_at=utc_now(),
    )


async def record_unmatched(db: AsyncSession, event: LifecycleEvent) -> TransitionResult:
    """Store an event no order could be found for."""
    row = _event_row(None, event, EventOutcome.UNMATCHED)
    db.add(row)
    await db.commit()
    logger.warning(
        "Unmatched %s event stored",
        event.event_type.value,
        extra={
            "extra_fields": {
                "event_id": str(row.id),
                "raw_event_type": event.raw_event_type,
                "locker_id": event.locker_id,
            }
        },
    )
    return TransitionResult(outcome=EventOutcome.UNMATCHED, event_id=row.id)


async def apply_event(
    db: AsyncSession, order_id: uuid.UUID, event: LifecycleEvent
) -> TransitionResult:
    """
    Apply one lifecycle event to an order and commit.

    The order row is locked for the read-decide-write step and the status
    update is conditional on the status that was read, so concurrent
    deliveries of the same event produce one applied transition.
    """
    try:
        query = (
            select(LockerOrder)
            .where(LockerOrder.id == order_id)
            .with_for_update()
            .execution_options(populate_existing=True)
        )
        result = await db.execute(query)
        order = result.scalar_one_or_none()
        if order is None:
            await db.rollback()
            return await record_unmatched(db, event)

        read_status = order.status

        if await _is_duplicate(db, order.id, event):
            outcome = EventOutcome.DUPLICATE
            target = EVENT_TARGETS.get(event.event_type)
        else:
            outcome, target = decide(read_status, event.event_type)

        if outcome == EventOutcome.APPLIED:
            now = utc_now()
            values = {"status": target, "updated_at": now}
            column = _TIMESTAMP_COLUMNS.get(target)
            if column:
                values[column] = now
            if target == OrderStatus.READY_FOR_PICKUP:
                if event.pickup_request_id:
                    values["pickup_request_id"] = event.pickup_request_id
                if event.pickup_link:
                    values["pickup_link"] = event.pickup_link

            stmt = (
                update(LockerOrder)
                .where(LockerOrder.id == order.id, LockerOrder.status == read_status)
                .values(**values)
                .execution_options(synchronize_session=False)
            )
            updated = await db.execute(stmt)
            if updated.rowcount == 0:
                # Another writer moved the order between our read and write
                outcome = EventOutcome.ALREADY_APPLIED
            else:
                await db.refresh(order)

        row = _event_row(
            order.id,
            event,
            outcome,
            from_status=read_status,
            to_status=target if outcome == EventOutcome.APPLIED else None,
        )
        db.add(row)
        snapshot = OrderSnapshot.from_order(order)
        await db.commit()
    except Exception:
        await db.rollback()
        raise

    applied = outcome == EventOutcome.APPLIED
    log = logger.info if applied else logger.debug
    log(
        "Order %s: %s event -> %s",
        snapshot.external_order_id,
        event.event_type.value,
        outcome.value,
        extra={
            "extra_fields": {
                "order_id": str(snapshot.id),
                "from_status": read_status.value,
                "to_status": target.value if target else None,
                "source": event.source.value,
            }
        },
    )

    return TransitionResult(
        outcome=outcome,
        event_id=row.id,
        from_status=read_status,
        to_status=target if applied else None,
        notification=notification_for(target) if applied else None,
        order=snapshot,
    )
