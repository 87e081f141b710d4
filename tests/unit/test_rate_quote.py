"""Unit tests for the carrier-service rate quote."""

import asyncio
import time

import pytest
from services.lockers_service.services import rate_quote
from services.lockers_service.services.rate_quote import (
    no_rates,
    ShopEligibilityCache,
    quote_rates,
)
from tests.factories import PreferenceFactory, StoreFactory


def _rate_request(country="US"):
    return {
        "rate": {
            "origin": {"country": "US", "postal_code": "10001"},
            "destination": {"country": country, "postal_code": "10002"},
            "items": [{"name": "Mug", "grams": 400, "quantity": 1}],
            "currency": "USD",
        }
    }


async def _eligible_shop(db, is_active=True, enabled=True):
    store = StoreFactory.create(is_active=is_active)
    db.add_all([store, PreferenceFactory.create(store.shop, is_enabled=enabled)])
    await db.commit()
    return store.shop


class FakeClock:
    def __init__(self):
        self.now = 0.0

    def __call__(self):
        return self.now


# ---------------------------------------------------------------------------
# quote_rates
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_eligible_shop_gets_one_locker_rate(db_session):
    shop = await _eligible_shop(db_session)

    result = await quote_rates(
        db_session, shop, _rate_request(), cache=ShopEligibilityCache()
    )

    assert len(result["rates"]) == 1
    rate = result["rates"][0]
    assert rate["service_code"] == "lockerdrop_pickup"
    assert rate["total_price"] == "0"
    assert rate["currency"] == "USD"
    assert rate["service_name"]
    assert rate["description"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_destination_outside_service_country_gets_no_rates(db_session):
    shop = await _eligible_shop(db_session)

    started = time.monotonic()
    result = await quote_rates(
        db_session, shop, _rate_request(country="CA"), cache=ShopEligibilityCache()
    )

    assert result == no_rates()
    assert time.monotonic() - started < 1.5


@pytest.mark.asyncio
@pytest.mark.unit
@pytest.mark.parametrize(
    "is_active, enabled", [(False, True), (True, False)]
)
async def test_ineligible_shop_gets_no_rates(db_session, is_active, enabled):
    shop = await _eligible_shop(db_session, is_active=is_active, enabled=enabled)

    result = await quote_rates(
        db_session, shop, _rate_request(), cache=ShopEligibilityCache()
    )

    assert result == no_rates()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_unknown_shop_or_missing_destination_gets_no_rates(db_session):
    cache = ShopEligibilityCache()

    assert await quote_rates(db_session, "nobody.myshopify.com", _rate_request(), cache=cache) == no_rates()
    assert await quote_rates(db_session, None, _rate_request(), cache=cache) == no_rates()
    assert await quote_rates(db_session, "x", {"rate": {}}, cache=cache) == no_rates()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_slow_lookup_times_out_to_no_rates(db_session, monkeypatch):
    async def slow(db, shop):
        await asyncio.sleep(5)
        return True

    monkeypatch.setattr(rate_quote, "_shop_is_eligible", slow)

    started = time.monotonic()
    result = await quote_rates(
        db_session,
        "slow.myshopify.com",
        _rate_request(),
        cache=ShopEligibilityCache(),
        timeout=0.05,
    )

    assert result == no_rates()
    assert time.monotonic() - started < 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_internal_error_returns_no_rates(db_session, monkeypatch):
    async def broken(db, shop):
        raise RuntimeError("database is on fire")

    monkeypatch.setattr(rate_quote, "_shop_is_eligible", broken)

    result = await quote_rates(
        db_session, "x.myshopify.com", _rate_request(), cache=ShopEligibilityCache()
    )

    assert result == no_rates()


# ---------------------------------------------------------------------------
# ShopEligibilityCache
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_eligibility_is_cached_until_ttl(db_session, monkeypatch):
    lookups = []

    async def counting(db, shop):
        lookups.append(shop)
        return True

    monkeypatch.setattr(rate_quote, "_shop_is_eligible", counting)
    clock = FakeClock()
    cache = ShopEligibilityCache(ttl_seconds=60, clock=clock)

    assert await cache.is_eligible(db_session, "a")
    clock.now = 59
    assert await cache.is_eligible(db_session, "a")
    assert lookups == ["a"]

    clock.now = 61
    await cache.is_eligible(db_session, "a")
    assert lookups == ["a", "a"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_invalidate_drops_cached_answer(db_session, monkeypatch):
    answers = [False, True]

    async def flipping(db, shop):
        return answers.pop(0)

    monkeypatch.setattr(rate_quote, "_shop_is_eligible", flipping)
    cache = ShopEligibilityCache(ttl_seconds=60)

    assert not await cache.is_eligible(db_session, "a")
    cache.invalidate("a")
    assert await cache.is_eligible(db_session, "a")


@pytest.mark.asyncio
@pytest.mark.unit
async def test_empty_answers_are_independent(db_session):
    cache = ShopEligibilityCache()

    first = await quote_rates(db_session, None, _rate_request(), cache=cache)
    first["rates"].append({"service_code": "leaked"})
    second = await quote_rates(db_session, None, _rate_request(), cache=cache)

    assert second == {"rates": []}
    assert no_rates() == {"rates": []}
