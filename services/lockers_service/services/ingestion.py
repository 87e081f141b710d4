"""Provider webhook ingestion: normalize, resolve the order, apply."""

import uuid
from dataclasses import dataclass
from datetime import datetime
from typing import Optional

from libs.common.datetime_utils import parse_timestamp, utc_now
from libs.common.logging import get_logger
from services.lockers_service.models import (
    TERMINAL_STATUSES,
    EventOutcome,
    EventSource,
    EventType,
    LockerOrder,
)
from services.lockers_service.services.lifecycle import (
    LifecycleEvent,
    apply_event,
    record_unmatched,
)
from services.lockers_service.services.notifications import NotificationDispatcher
from sqlalchemy import or_, select
from sqlalchemy.ext.asyncio import AsyncSession

logger = get_logger(__name__)

IngestOutcome = EventOutcome

# Provider event names seen in the wild, after lower-casing and
# replacing "." and "-" with "_".
_EVENT_ALIASES = {
    "dropoff_completed": EventType.DROPOFF_COMPLETED,
    "dropoff_complete": EventType.DROPOFF_COMPLETED,
    "dropped_off": EventType.DROPOFF_COMPLETED,
    "delivery_dropped_off": EventType.DROPOFF_COMPLETED,
    "deposit_completed": EventType.DROPOFF_COMPLETED,
    "pickup_ready": EventType.PICKUP_READY,
    "ready_for_pickup": EventType.PICKUP_READY,
    "delivery_ready": EventType.PICKUP_READY,
    "pickup_link_created": EventType.PICKUP_READY,
    "pickup_completed": EventType.PICKUP_COMPLETED,
    "pickup_complete": EventType.PICKUP_COMPLETED,
    "picked_up": EventType.PICKUP_COMPLETED,
    "delivery_picked_up": EventType.PICKUP_COMPLETED,
    "delivery_completed": EventType.PICKUP_COMPLETED,
    "cancelled": EventType.CANCELLED,
    "canceled": EventType.CANCELLED,
    "delivery_cancelled": EventType.CANCELLED,
    "delivery_canceled": EventType.CANCELLED,
    "expired": EventType.EXPIRED,
    "delivery_expired": EventType.EXPIRED,
    "pickup_expired": EventType.EXPIRED,
}


def parse_event_type(raw: Optional[str]) -> EventType:
    if not raw:
        return EventType.UNKNOWN
    key = str(raw).strip().lower().replace(".", "_").replace("-", "_")
    return _EVENT_ALIASES.get(key, EventType.UNKNOWN)


@dataclass
class NormalizedEvent:
    event_type: EventType
    raw_event_type: Optional[str]
    request_id: Optional[str]
    locker_id: Optional[str]
    tower_id: Optional[str]
    provider_timestamp: Optional[datetime]
    pickup_request_id: Optional[str]
    pickup_link: Optional[str]
    payload: dict

    def to_lifecycle_event(self) -> LifecycleEvent:
        return LifecycleEvent(
            event_type=self.event_type,
            source=EventSource.PROVIDER,
            raw_event_type=self.raw_event_type,
            locker_id=self.locker_id,
            tower_id=self.tower_id,
            provider_timestamp=self.provider_timestamp,
            pickup_request_id=self.pickup_request_id,
            pickup_link=self.pickup_link,
            payload=self.payload,
        )


def _first(sources: list[dict], *keys):
    for source in sources:
        for key in keys:
            value = source.get(key)
            if value not in (None, ""):
                return value
    return None


def _as_str(value) -> Optional[str]:
    return str(value) if value is not None else None


def normalize(payload: dict) -> NormalizedEvent:
    """Map a provider webhook body onto NormalizedEvent."""
    data = payload.get("data") if isinstance(payload.get("data"), dict) else {}
    locker = data.get("locker") if isinstance(data.get("locker"), dict) else {}
    sources = [payload, data, locker]

    raw_type = _first([payload, data], "event", "type", "event_type")
    return NormalizedEvent(
        event_type=parse_event_type(raw_type),
        raw_event_type=_as_str(raw_type),
        request_id=_as_str(
            _first([data, payload], "request_id", "delivery_id") or data.get("id")
        ),
        locker_id=_as_str(_first(sources, "locker_id")),
        tower_id=_as_str(_first(sources, "tower_id")),
        provider_timestamp=parse_timestamp(
            _first([payload, data], "timestamp", "occurred_at", "created_at")
        ),
        pickup_request_id=_as_str(_first([data, payload], "pickup_request_id")),
        pickup_link=_first([data, payload], "pickup_link", "link"),
        payload=payload,
    )


async def resolve_order(
    db: AsyncSession, event: NormalizedEvent
) -> Optional[uuid.UUID]:
    """
    Find the order an event belongs to.

    By delivery request id (drop-off or pickup) when the event carries one;
    an unknown request id resolves to nothing. Events without one go to the
    most recently created live order on the same locker that existed when
    the event happened.
    """
    if event.request_id:
        query = (
            select(LockerOrder.id)
            .where(
                or_(
                    LockerOrder.dropoff_request_id == event.request_id,
                    LockerOrder.pickup_request_id == event.request_id,
                )
            )
            .order_by(LockerOrder.created_at.desc())
            .limit(1)
        )
        order_id = (await db.execute(query)).scalar_one_or_none()
        if order_id is None:
            logger.info("No order for delivery request %s", event.request_id)
        return order_id

    if event.locker_id:
        logger.debug("Correlating event on locker %s", event.locker_id)
        cutoff = event.provider_timestamp or utc_now()
        query = select(LockerOrder.id).where(
            LockerOrder.locker_id == event.locker_id,
            LockerOrder.status.notin_(TERMINAL_STATUSES),
            LockerOrder.created_at <= cutoff,
        )
        if event.tower_id:
            query = query.where(LockerOrder.tower_id == event.tower_id)
        query = query.order_by(LockerOrder.created_at.desc()).limit(1)
        return (await db.execute(query)).scalar_one_or_none()

    return None


@dataclass
class IngestResult:
    outcome: EventOutcome
    event_id: uuid.UUID
    order_id: Optional[uuid.UUID] = None
    notified: bool = False


async def ingest(
    db: AsyncSession, payload: dict, dispatcher: NotificationDispatcher
) -> IngestResult:
    """Record a provider event and advance its order. Never raises for unknown orders."""
    event = normalize(payload)
    order_id = await resolve_order(db, event)

    if order_id is None:
        result = await record_unmatched(db, event.to_lifecycle_event())
        return IngestResult(outcome=result.outcome, event_id=result.event_id)

    result = await apply_event(db, order_id, event.to_lifecycle_event())

    notified = False
    if result.notification is not None:
        report = await dispatcher.dispatch_safely(result.notification, result.order)
        notified = bool(report and report.sent)

    return IngestResult(
        outcome=result.outcome,
        event_id=result.event_id,
        order_id=order_id,
        notified=notified,
    )
