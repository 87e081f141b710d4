"""Unit tests for provider webhook ingestion."""

from datetime import datetime, timedelta, timezone

import pytest
from services.lockers_service.models import (
    EventOutcome,
    EventType,
    LockerEvent,
    LockerOrder,
    OrderStatus,
)
from services.lockers_service.services.ingestion import (
    ingest,
    normalize,
    parse_event_type,
)
from sqlalchemy import select
from tests.factories import OrderFactory, StoreFactory


async def _seed(db, **overrides):
    store = StoreFactory.create()
    order = OrderFactory.allocated(store.shop, **overrides)
    db.add_all([store, order])
    await db.commit()
    return order


# ---------------------------------------------------------------------------
# Normalization
# ---------------------------------------------------------------------------


@pytest.mark.unit
@pytest.mark.parametrize(
    "raw, expected",
    [
        ("dropoff_completed", EventType.DROPOFF_COMPLETED),
        ("delivery.dropped-off", EventType.DROPOFF_COMPLETED),
        ("READY_FOR_PICKUP", EventType.PICKUP_READY),
        ("pickup-link-created", EventType.PICKUP_READY),
        ("delivery.picked_up", EventType.PICKUP_COMPLETED),
        ("canceled", EventType.CANCELLED),
        ("pickup_expired", EventType.EXPIRED),
        ("locker.door_opened", EventType.UNKNOWN),
        (None, EventType.UNKNOWN),
    ],
)
def test_parse_event_type(raw, expected):
    assert parse_event_type(raw) == expected


@pytest.mark.unit
def test_normalize_nested_payload():
    event = normalize(
        {
            "id": "evt-1",
            "event": "delivery.ready",
            "timestamp": "2026-03-01T12:00:00Z",
            "data": {
                "request_id": "req-9",
                "pickup_request_id": "pick-9",
                "pickup_link": "https://harbor.test/p/pick-9",
                "locker": {"locker_id": 12, "tower_id": "T-1"},
            },
        }
    )

    assert event.event_type == EventType.PICKUP_READY
    assert event.raw_event_type == "delivery.ready"
    # The webhook's own id is not the delivery request id
    assert event.request_id == "req-9"
    assert event.locker_id == "12"
    assert event.tower_id == "T-1"
    assert event.pickup_request_id == "pick-9"
    assert event.provider_timestamp == datetime(2026, 3, 1, 12, tzinfo=timezone.utc)


@pytest.mark.unit
def test_normalize_flat_payload_with_epoch_timestamp():
    event = normalize(
        {
            "type": "dropoff_completed",
            "delivery_id": 77,
            "locker_id": "4",
            "occurred_at": 1772366400,
        }
    )

    assert event.event_type == EventType.DROPOFF_COMPLETED
    assert event.request_id == "77"
    assert event.locker_id == "4"
    assert event.provider_timestamp == datetime.fromtimestamp(
        1772366400, tz=timezone.utc
    )


# ---------------------------------------------------------------------------
# Resolution and application
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_event_resolves_by_dropoff_request_id(db_session, dispatcher, outbox):
    order = await _seed(db_session, dropoff_request_id="req-1")

    result = await ingest(
        db_session,
        {"event": "dropoff_completed", "request_id": "req-1"},
        dispatcher,
    )

    assert result.outcome == EventOutcome.APPLIED
    assert result.order_id == order.id
    assert not result.notified
    assert outbox.count == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_event_resolves_by_pickup_request_id(db_session, dispatcher, outbox):
    order = await _seed(
        db_session,
        status=OrderStatus.READY_FOR_PICKUP,
        pickup_request_id="pick-1",
    )

    result = await ingest(
        db_session,
        {"event": "pickup_completed", "data": {"request_id": "pick-1"}},
        dispatcher,
    )

    assert result.outcome == EventOutcome.APPLIED
    assert result.order_id == order.id
    assert result.notified
    assert len(outbox.sms) == 1 and "picked up" in outbox.sms[0][1]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unresolvable_event_is_stored_unmatched(db_session, dispatcher, outbox):
    order = await _seed(db_session, dropoff_request_id="req-1")

    result = await ingest(
        db_session,
        {"event": "pickup_ready", "request_id": "req-unknown"},
        dispatcher,
    )

    assert result.outcome == EventOutcome.UNMATCHED
    assert result.order_id is None
    row = await db_session.get(LockerEvent, result.event_id)
    assert row.order_id is None
    assert row.payload["request_id"] == "req-unknown"

    untouched = await db_session.get(LockerOrder, order.id, populate_existing=True)
    assert untouched.status == OrderStatus.PENDING_DROPOFF
    assert outbox.count == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_locker_fallback_picks_latest_live_order(db_session, dispatcher):
    now = datetime.now(timezone.utc)
    store = StoreFactory.create()
    older = OrderFactory.allocated(
        store.shop,
        locker_id="locker-5",
        tower_id="T-1",
        created_at=now - timedelta(days=3),
    )
    done = OrderFactory.allocated(
        store.shop,
        locker_id="locker-5",
        tower_id="T-1",
        status=OrderStatus.COMPLETED,
        created_at=now - timedelta(hours=2),
    )
    other_tower = OrderFactory.allocated(
        store.shop,
        locker_id="locker-5",
        tower_id="T-2",
        created_at=now - timedelta(hours=1),
    )
    db_session.add_all([store, older, done, other_tower])
    await db_session.commit()

    result = await ingest(
        db_session,
        {
            "event": "dropoff_completed",
            "locker_id": "locker-5",
            "tower_id": "T-1",
            "timestamp": now.isoformat(),
        },
        dispatcher,
    )

    assert result.outcome == EventOutcome.APPLIED
    assert result.order_id == older.id


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_request_id_does_not_fall_back_to_locker(
    db_session, dispatcher, outbox
):
    order = await _seed(
        db_session,
        status=OrderStatus.READY_FOR_PICKUP,
        locker_id="locker-9",
        tower_id="T-1",
        dropoff_request_id="req-live",
    )

    result = await ingest(
        db_session,
        {
            "event": "cancelled",
            "request_id": "req-stale-unknown",
            "locker_id": "locker-9",
            "tower_id": "T-1",
        },
        dispatcher,
    )

    assert result.outcome == EventOutcome.UNMATCHED
    assert result.order_id is None
    untouched = await db_session.get(LockerOrder, order.id, populate_existing=True)
    assert untouched.status == OrderStatus.READY_FOR_PICKUP
    assert untouched.cancelled_at is None
    assert outbox.count == 0


@pytest.mark.asyncio
@pytest.mark.unit
async def test_locker_fallback_ignores_orders_created_after_event(db_session, dispatcher):
    now = datetime.now(timezone.utc)
    await _seed(db_session, locker_id="locker-8", created_at=now)

    result = await ingest(
        db_session,
        {
            "event": "dropoff_completed",
            "locker_id": "locker-8",
            "timestamp": (now - timedelta(days=1)).isoformat(),
        },
        dispatcher,
    )

    assert result.outcome == EventOutcome.UNMATCHED


@pytest.mark.asyncio
@pytest.mark.unit
async def test_redelivered_ready_event_notifies_once(db_session, dispatcher, outbox):
    order = await _seed(
        db_session, status=OrderStatus.DROPPED_OFF, dropoff_request_id="req-3"
    )
    payload = {
        "event": "pickup_ready",
        "request_id": "req-3",
        "timestamp": "2026-03-01T12:00:00Z",
        "pickup_link": "https://harbor.test/p/3",
    }

    first = await ingest(db_session, payload, dispatcher)
    second = await ingest(db_session, payload, dispatcher)

    assert first.outcome == EventOutcome.APPLIED and first.notified
    assert second.outcome == EventOutcome.DUPLICATE and not second.notified
    assert len(outbox.sms) == 1
    assert len(outbox.emails) == 1

    rows = (
        await db_session.execute(
            select(LockerEvent).where(LockerEvent.order_id == order.id)
        )
    ).scalars().all()
    assert len(rows) == 2
