"""Unit tests for the Harbor bearer token cache.

The token endpoint is an httpx.MockTransport; time comes from a fake clock.
"""

import asyncio
from urllib.parse import parse_qs

import httpx
import pytest
from services.lockers_service.errors import CredentialError
from services.lockers_service.token_cache import HarborTokenCache

TOKEN_URL = "https://accounts.harbor.test/token"


class FakeClock:
    def __init__(self, now: float = 1000.0):
        self.now = now

    def __call__(self) -> float:
        return self.now


class TokenEndpoint:
    """Issues token-1, token-2, ... and counts exchanges."""

    def __init__(self, status_code=200, body=None, delay=0.0):
        self.status_code = status_code
        self.body = body
        self.delay = delay
        self.calls = 0
        self.forms: list[dict] = []

    async def __call__(self, request: httpx.Request) -> httpx.Response:
        self.calls += 1
        self.forms.append(parse_qs(request.content.decode()))
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.status_code != 200:
            return httpx.Response(self.status_code, json={"error": "invalid_client"})
        body = self.body or {"access_token": f"token-{self.calls}", "expires_in": 300}
        return httpx.Response(200, json=body)


def _cache(endpoint, clock=None, client_id="client", client_secret="secret"):
    return HarborTokenCache(
        token_url=TOKEN_URL,
        client_id=client_id,
        client_secret=client_secret,
        safety_margin_seconds=60,
        transport=httpx.MockTransport(endpoint),
        clock=clock or FakeClock(),
    )


# ---------------------------------------------------------------------------
# Caching and expiry
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_token_is_reused_until_safety_margin():
    """A 300s token is served from cache for its first 240s."""
    endpoint = TokenEndpoint()
    clock = FakeClock()
    cache = _cache(endpoint, clock)

    assert await cache.get_token() == "token-1"
    clock.now += 239
    assert await cache.get_token() == "token-1"
    assert endpoint.calls == 1

    clock.now += 2
    assert await cache.get_token() == "token-2"
    assert endpoint.calls == 2


@pytest.mark.asyncio
@pytest.mark.unit
async def test_exchange_sends_client_credentials():
    endpoint = TokenEndpoint()
    cache = _cache(endpoint)

    await cache.get_token()

    form = endpoint.forms[0]
    assert form["grant_type"] == ["client_credentials"]
    assert form["client_id"] == ["client"]
    assert form["client_secret"] == ["secret"]
    assert form["scope"] == ["service_provider"]


@pytest.mark.asyncio
@pytest.mark.unit
async def test_missing_expires_in_defaults_to_five_minutes():
    endpoint = TokenEndpoint(body={"access_token": "abc"})
    clock = FakeClock()
    cache = _cache(endpoint, clock)

    await cache.get_token()
    clock.now += 200
    assert cache.is_fresh()
    clock.now += 50
    assert not cache.is_fresh()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_invalidate_forces_new_exchange():
    endpoint = TokenEndpoint()
    cache = _cache(endpoint)

    await cache.get_token()
    cache.invalidate()

    assert await cache.get_token() == "token-2"
    assert endpoint.calls == 2


# ---------------------------------------------------------------------------
# Single-flight refresh
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_callers_share_one_exchange():
    endpoint = TokenEndpoint(delay=0.05)
    cache = _cache(endpoint)

    tokens = await asyncio.gather(*(cache.get_token() for _ in range(10)))

    assert set(tokens) == {"token-1"}
    assert endpoint.calls == 1


@pytest.mark.asyncio
@pytest.mark.unit
async def test_cancelled_caller_does_not_cancel_shared_exchange():
    endpoint = TokenEndpoint(delay=0.05)
    cache = _cache(endpoint)

    first = asyncio.create_task(cache.get_token())
    await asyncio.sleep(0.01)
    second = asyncio.create_task(cache.get_token())
    first.cancel()

    assert await second == "token-1"
    assert endpoint.calls == 1
    with pytest.raises(asyncio.CancelledError):
        await first


@pytest.mark.asyncio
@pytest.mark.unit
async def test_concurrent_callers_all_see_exchange_failure():
    endpoint = TokenEndpoint(status_code=401, delay=0.02)
    cache = _cache(endpoint)

    results = await asyncio.gather(
        *(cache.get_token() for _ in range(5)), return_exceptions=True
    )

    assert all(isinstance(r, CredentialError) for r in results)
    assert endpoint.calls == 1


# ---------------------------------------------------------------------------
# Failures
# ---------------------------------------------------------------------------


@pytest.mark.asyncio
@pytest.mark.unit
async def test_rejected_exchange_raises_and_is_not_cached():
    """A failed exchange is not remembered; the next call tries again."""
    endpoint = TokenEndpoint(status_code=401)
    cache = _cache(endpoint)

    with pytest.raises(CredentialError):
        await cache.get_token()
    with pytest.raises(CredentialError):
        await cache.get_token()

    assert endpoint.calls == 2
    assert not cache.is_fresh()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_response_without_token_raises():
    endpoint = TokenEndpoint(body={"token_type": "bearer"})
    cache = _cache(endpoint)

    with pytest.raises(CredentialError):
        await cache.get_token()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_network_error_raises_credential_error():
    def _boom(request):
        raise httpx.ConnectError("connection refused", request=request)

    cache = HarborTokenCache(
        token_url=TOKEN_URL,
        client_id="client",
        client_secret="secret",
        transport=httpx.MockTransport(_boom),
    )

    with pytest.raises(CredentialError):
        await cache.get_token()


@pytest.mark.asyncio
@pytest.mark.unit
async def test_missing_credentials_fail_without_calling_out():
    endpoint = TokenEndpoint()
    cache = _cache(endpoint, client_id="", client_secret="")

    with pytest.raises(CredentialError):
        await cache.get_token()
    assert endpoint.calls == 0
