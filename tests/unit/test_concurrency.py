"""Concurrent deliveries of the same event for one order.

Each racer gets its own session, as separate webhook requests would.
"""

import asyncio

import pytest
from services.lockers_service.models import (
    EventOutcome,
    LockerEvent,
    LockerOrder,
    OrderStatus,
)
from services.lockers_service.services.allocation import LockerCandidate, allocate
from services.lockers_service.services.ingestion import ingest
from sqlalchemy import select
from tests.factories import OrderFactory, PreferenceFactory, StoreFactory
from tests.fakes import FakeHarbor


async def _ingest_in_own_session(session_factory, payload, dispatcher):
    async with session_factory() as session:
        return await ingest(session, payload, dispatcher)


@pytest.mark.asyncio
@pytest.mark.unit
async def test_racing_ready_events_apply_once_and_notify_once(
    db_session, session_factory, dispatcher, outbox
):
    store = StoreFactory.create()
    order = OrderFactory.allocated(
        store.shop, status=OrderStatus.DROPPED_OFF, dropoff_request_id="req-race"
    )
    db_session.add_all([store, order])
    await db_session.commit()

    # No provider timestamp, so none of these is a dedup hit
    payload = {"event": "pickup_ready", "request_id": "req-race"}
    results = await asyncio.gather(
        *(
            _ingest_in_own_session(session_factory, payload, dispatcher)
            for _ in range(5)
        )
    )

    outcomes = sorted(r.outcome.value for r in results)
    assert outcomes.count(EventOutcome.APPLIED.value) == 1
    assert outcomes.count(EventOutcome.ALREADY_APPLIED.value) == 4
    assert sum(r.notified for r in results) == 1
    assert len(outbox.sms) == 1 and len(outbox.emails) == 1

    rows = (
        await db_session.execute(
            select(LockerEvent).where(LockerEvent.order_id == order.id)
        )
    ).scalars().all()
    assert len(rows) == 5
    reloaded = await db_session.get(LockerOrder, order.id, populate_existing=True)
    assert reloaded.status == OrderStatus.READY_FOR_PICKUP


@pytest.mark.asyncio
@pytest.mark.unit
async def test_racing_duplicate_deliveries_apply_once(
    db_session, session_factory, dispatcher, outbox
):
    store = StoreFactory.create()
    order = OrderFactory.allocated(
        store.shop, status=OrderStatus.DROPPED_OFF, dropoff_request_id="req-dup"
    )
    db_session.add_all([store, order])
    await db_session.commit()

    payload = {
        "event": "pickup_ready",
        "request_id": "req-dup",
        "timestamp": "2026-03-01T12:00:00Z",
    }
    results = await asyncio.gather(
        *(
            _ingest_in_own_session(session_factory, payload, dispatcher)
            for _ in range(3)
        )
    )

    outcomes = [r.outcome for r in results]
    assert outcomes.count(EventOutcome.APPLIED) == 1
    assert outcomes.count(EventOutcome.DUPLICATE) == 2
    assert len(outbox.sms) == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_racing_allocations_keep_first_reservation(db_session, session_factory):
    store = StoreFactory.create()
    db_session.add_all([store, PreferenceFactory.create(store.shop)])
    order = OrderFactory.create(store.shop)
    db_session.add(order)
    await db_session.commit()
    harbor = FakeHarbor()
    candidate = LockerCandidate(location_id="loc-1", name="Main St Lockers")

    async def _allocate():
        async with session_factory() as session:
            return await allocate(session, harbor, order.id, candidate)

    first, second = await asyncio.gather(_allocate(), _allocate())

    # Both callers see the same committed reservation
    assert first.dropoff_request_id == second.dropoff_request_id
    assert sum(r.created for r in (first, second)) == 1
    reloaded = await db_session.get(LockerOrder, order.id, populate_existing=True)
    assert reloaded.dropoff_request_id == first.dropoff_request_id
