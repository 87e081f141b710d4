"""Integration tests for the carrier callback and storefront endpoints."""

from datetime import timedelta

import pytest
from libs.common.datetime_utils import utc_now
from services.lockers_service.models import OrderStatus
from tests.factories import OrderFactory, PreferenceFactory, StoreFactory
from tests.fakes import make_location, provider_down


async def _seed_store(db, locations=("loc-1",), is_active=True):
    store = StoreFactory.create(is_active=is_active)
    db.add(store)
    for location_id in locations:
        db.add(PreferenceFactory.create(store.shop, location_id=location_id))
    await db.commit()
    return store.shop


def _rate_request(country="US"):
    return {
        "rate": {
            "destination": {"country": country, "postal_code": "10002"},
            "items": [{"grams": 500, "quantity": 1}],
        }
    }


# ---------------------------------------------------------------------------
# Carrier rates
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_carrier_rates_for_eligible_shop(client, db_session):
    shop = await _seed_store(db_session)

    response = await client.post(
        "/carrier/rates",
        json=_rate_request(),
        headers={"X-Shopify-Shop-Domain": shop},
    )

    assert response.status_code == 200
    rates = response.json()["rates"]
    assert len(rates) == 1
    assert rates[0]["service_code"] == "lockerdrop_pickup"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_carrier_rates_outside_service_area(client, db_session):
    shop = await _seed_store(db_session)

    response = await client.post(
        "/carrier/rates",
        json=_rate_request(country="DE"),
        headers={"X-Shopify-Shop-Domain": shop},
    )

    assert response.status_code == 200
    assert response.json() == {"rates": []}


@pytest.mark.asyncio
@pytest.mark.integration
async def test_carrier_rates_malformed_body_still_200(client):
    response = await client.post(
        "/carrier/rates",
        content=b"{oops",
        headers={"X-Shopify-Shop-Domain": "a.myshopify.com"},
    )

    assert response.status_code == 200
    assert response.json() == {"rates": []}


# ---------------------------------------------------------------------------
# Checkout locker search
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_checkout_lockers_returns_top_five(client, db_session, harbor):
    locations = [f"loc-{i}" for i in range(7)]
    shop = await _seed_store(db_session, locations=locations)
    harbor.locations = [
        make_location(location_id, distance_km=float(i), small=1)
        for i, location_id in enumerate(reversed(locations))
    ]

    response = await client.get(
        "/api/checkout/lockers",
        params={"shop": shop, "lat": 40.7, "lon": -74.0, "size": "small"},
    )

    assert response.status_code == 200, response.text
    data = response.json()
    assert data["reason"] is None
    assert [locker["location_id"] for locker in data["lockers"]] == [
        "loc-6",
        "loc-5",
        "loc-4",
        "loc-3",
        "loc-2",
    ]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_checkout_lockers_reports_no_capacity(client, db_session, harbor):
    shop = await _seed_store(db_session)
    harbor.locations = [make_location("loc-1", small=0, medium=0)]

    response = await client.get(
        "/api/checkout/lockers",
        params={"shop": shop, "lat": 40.7, "lon": -74.0},
    )

    assert response.json() == {
        "lockers": [],
        "required_size": "small",
        "reason": "no_capacity",
    }


@pytest.mark.asyncio
@pytest.mark.integration
async def test_checkout_lockers_degrades_when_provider_down(client, db_session, harbor):
    shop = await _seed_store(db_session)
    harbor.search_error = provider_down()

    response = await client.get(
        "/api/checkout/lockers",
        params={"shop": shop, "lat": 40.7, "lon": -74.0},
    )

    assert response.status_code == 200
    assert response.json()["reason"] == "unavailable"


# ---------------------------------------------------------------------------
# Order intake and allocation
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_create_order_allocates(client, db_session, harbor):
    shop = await _seed_store(db_session)

    response = await client.post(
        f"/api/orders/{shop}",
        json={
            "external_order_id": "A-500",
            "customer_email": "ada@example.com",
            "location_id": "loc-1",
            "items": [{"grams": 2500}],
        },
    )

    assert response.status_code == 201, response.text
    data = response.json()
    assert data["created"] is True
    assert data["allocation_status"] == "allocated"
    assert data["order"]["required_size"] == "medium"
    assert data["order"]["dropoff_request_id"] == "req-1"


@pytest.mark.asyncio
@pytest.mark.integration
async def test_create_order_with_provider_down_is_pending_retry(client, db_session, harbor):
    shop = await _seed_store(db_session)
    harbor.create_errors = [provider_down()] * 3

    response = await client.post(
        f"/api/orders/{shop}",
        json={"external_order_id": "A-501", "location_id": "loc-1"},
    )

    assert response.status_code == 201
    data = response.json()
    assert data["allocation_status"] == "pending_retry"
    assert data["order"]["status"] == "pending_dropoff"
    assert data["order"]["allocation_attempts"] == 1

    pending = await client.get(f"/admin/api/orders/{shop}/pending-allocation")
    assert [o["external_order_id"] for o in pending.json()] == ["A-501"]


@pytest.mark.asyncio
@pytest.mark.integration
async def test_create_order_for_inactive_store_is_forbidden(client, db_session):
    shop = await _seed_store(db_session, is_active=False)

    response = await client.post(
        f"/api/orders/{shop}", json={"external_order_id": "A-502"}
    )

    assert response.status_code == 403


@pytest.mark.asyncio
@pytest.mark.integration
async def test_manual_allocate_is_idempotent(client, db_session, harbor):
    shop = await _seed_store(db_session)
    await client.post(
        f"/api/orders/{shop}",
        json={"external_order_id": "A-503", "location_id": "loc-1", "allocate": False},
    )

    first = await client.post(f"/api/orders/{shop}/A-503/allocate")
    second = await client.post(f"/api/orders/{shop}/A-503/allocate")

    assert first.status_code == 200, first.text
    assert first.json()["created"] is True
    assert second.json()["created"] is False
    assert second.json()["dropoff_request_id"] == first.json()["dropoff_request_id"]
    assert len(harbor.create_calls) == 1


@pytest.mark.asyncio
@pytest.mark.integration
async def test_manual_allocate_with_provider_down_is_503(client, db_session, harbor):
    shop = await _seed_store(db_session)
    await client.post(
        f"/api/orders/{shop}",
        json={"external_order_id": "A-504", "location_id": "loc-1", "allocate": False},
    )
    harbor.create_errors = [provider_down()] * 3

    response = await client.post(f"/api/orders/{shop}/A-504/allocate")

    assert response.status_code == 503


@pytest.mark.asyncio
@pytest.mark.integration
async def test_manual_allocate_at_disabled_location_is_409(client, db_session):
    shop = await _seed_store(db_session)
    await client.post(
        f"/api/orders/{shop}",
        json={"external_order_id": "A-505", "allocate": False},
    )

    response = await client.post(
        f"/api/orders/{shop}/A-505/allocate", json={"location_id": "loc-99"}
    )

    assert response.status_code == 409


# ---------------------------------------------------------------------------
# Status blocks
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.integration
async def test_customer_status_shows_link_only_when_ready(client, db_session):
    shop = await _seed_store(db_session)
    ready_at = utc_now() - timedelta(days=1)
    db_session.add_all(
        [
            OrderFactory.allocated(
                shop,
                external_order_id="A-600",
                status=OrderStatus.READY_FOR_PICKUP,
                pickup_link="https://harbor.test/p/600",
                ready_at=ready_at,
            ),
            OrderFactory.allocated(
                shop,
                external_order_id="A-601",
                status=OrderStatus.COMPLETED,
                pickup_link="https://harbor.test/p/601",
            ),
        ]
    )
    await db_session.commit()

    ready = (await client.get("/api/customer/order-status/A-600")).json()
    done = (await client.get("/api/customer/order-status/A-601")).json()

    assert ready["status"] == "ready_for_pickup"
    assert ready["pickup_link"] == "https://harbor.test/p/600"
    assert ready["pickup_deadline"] is not None
    assert done["pickup_link"] is None


@pytest.mark.asyncio
@pytest.mark.integration
async def test_order_locker_data(client, db_session):
    shop = await _seed_store(db_session)
    db_session.add(OrderFactory.allocated(shop, external_order_id="A-700"))
    await db_session.commit()

    response = await client.get("/api/order-locker-data/A-700")
    missing = await client.get("/api/order-locker-data/nope")

    assert response.status_code == 200
    assert response.json()["locker_id"] == "locker-7"
    assert missing.status_code == 404
