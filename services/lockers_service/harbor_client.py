"""
Harbor Lockers API client.

Provides async methods for:
- Searching locker locations near a point
- Fetching a single location
- Creating a drop-off delivery (reserves a compartment)
- Fetching delivery status
"""

from dataclasses import dataclass, field
from typing import Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger
from services.lockers_service.errors import (
    CredentialError,
    ProviderError,
    ProviderUnavailable,
)
from services.lockers_service.models.enums import SizeClass
from services.lockers_service.token_cache import TokenProvider, get_token_cache

logger = get_logger(__name__)

_SIZE_ALIASES = {
    "s": SizeClass.SMALL,
    "small": SizeClass.SMALL,
    "m": SizeClass.MEDIUM,
    "medium": SizeClass.MEDIUM,
    "l": SizeClass.LARGE,
    "large": SizeClass.LARGE,
    "xl": SizeClass.X_LARGE,
    "x_large": SizeClass.X_LARGE,
    "xlarge": SizeClass.X_LARGE,
    "extra_large": SizeClass.X_LARGE,
}


def parse_size(value) -> Optional[SizeClass]:
    """Map a provider size label ("Small", "X-Large", ...) onto SizeClass."""
    if value is None:
        return None
    key = str(value).strip().lower().replace("-", "_").replace(" ", "_")
    return _SIZE_ALIASES.get(key)


@dataclass
class HarborLocation:
    """A locker location returned by Harbor."""

    location_id: str
    name: str
    address: str
    latitude: Optional[float] = None
    longitude: Optional[float] = None
    distance_km: Optional[float] = None
    availability: dict[SizeClass, int] = field(default_factory=dict)

    def available_for(self, size: SizeClass) -> int:
        """Free compartments of the given size class or larger."""
        return sum(
            count
            for compartment_size, count in self.availability.items()
            if compartment_size.rank >= size.rank
        )


@dataclass
class Delivery:
    """A Harbor delivery request (drop-off reservation)."""

    request_id: str
    location_id: Optional[str]
    locker_id: Optional[str]
    tower_id: Optional[str]
    dropoff_link: Optional[str]
    status: Optional[str] = None
    pickup_request_id: Optional[str] = None
    pickup_link: Optional[str] = None


def _unwrap(data):
    if isinstance(data, dict):
        for key in ("data", "items", "results", "locations"):
            if key in data:
                return data[key]
    return data


def _format_address(raw) -> str:
    if isinstance(raw, dict):
        parts = [
            raw.get("street") or raw.get("address1") or raw.get("line1"),
            raw.get("city"),
            " ".join(p for p in (raw.get("state"), raw.get("zip")) if p),
        ]
        return ", ".join(p for p in parts if p)
    return raw or ""


def _parse_availability(item: dict) -> dict[SizeClass, int]:
    availability: dict[SizeClass, int] = {}

    raw = item.get("availability") or item.get("available_lockers")
    if isinstance(raw, dict):
        for label, count in raw.items():
            size = parse_size(label)
            if size is not None:
                availability[size] = availability.get(size, 0) + int(count or 0)
    elif isinstance(raw, list):
        for entry in raw:
            if not isinstance(entry, dict):
                continue
            size = parse_size(entry.get("size") or entry.get("locker_size"))
            if size is not None:
                count = entry.get("available", entry.get("count", 1))
                availability[size] = availability.get(size, 0) + int(count or 0)

    return availability


def _parse_location(item: dict) -> HarborLocation:
    distance_km = None
    if item.get("distance_km") is not None:
        distance_km = float(item["distance_km"])
    elif item.get("distance") is not None:
        # Harbor reports distance in meters
        distance_km = float(item["distance"]) / 1000

    lat = item.get("latitude", item.get("lat"))
    lon = item.get("longitude", item.get("lon", item.get("lng")))

    return HarborLocation(
        location_id=str(item.get("id") or item.get("location_id")),
        name=item.get("name") or "",
        address=_format_address(item.get("address")),
        latitude=float(lat) if lat is not None else None,
        longitude=float(lon) if lon is not None else None,
        distance_km=distance_km,
        availability=_parse_availability(item),
    )


def _parse_delivery(item: dict) -> Delivery:
    locker = item.get("locker") or {}
    return Delivery(
        request_id=str(item.get("id") or item.get("request_id")),
        location_id=_str_or_none(item.get("location_id")),
        locker_id=_str_or_none(item.get("locker_id") or locker.get("id")),
        tower_id=_str_or_none(item.get("tower_id") or locker.get("tower_id")),
        dropoff_link=item.get("dropoff_link") or item.get("link"),
        status=item.get("status"),
        pickup_request_id=_str_or_none(item.get("pickup_request_id")),
        pickup_link=item.get("pickup_link"),
    )


def _str_or_none(value) -> Optional[str]:
    return str(value) if value is not None else None


class HarborClient:
    """Async client for the Harbor Lockers service-provider API."""

    def __init__(
        self,
        token_provider: TokenProvider,
        base_url: Optional[str] = None,
        timeout: Optional[float] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        settings = get_settings()
        self.token_provider = token_provider
        self.base_url = (base_url or settings.HARBOR_API_URL).rstrip("/")
        self.timeout = timeout if timeout is not None else settings.HARBOR_TIMEOUT_SECONDS
        self._transport = transport

    async def _send(self, method: str, url: str, token: str, **kwargs):
        headers = {
            "Authorization": f"Bearer {token}",
            "Accept": "application/json",
        }
        try:
            async with httpx.AsyncClient(
                timeout=self.timeout, transport=self._transport
            ) as client:
                return await client.request(method, url, headers=headers, **kwargs)
        except httpx.HTTPError as e:
            logger.warning("Harbor %s %s failed: %s", method, url, e)
            raise ProviderUnavailable(f"Harbor request failed: {e}") from e

    async def _request(
        self,
        method: str,
        endpoint: str,
        params: dict = None,
        json_data: dict = None,
    ):
        """Make an authenticated request to the Harbor API."""
        url = f"{self.base_url}{endpoint}"

        token = await self.token_provider.get_token()
        response = await self._send(method, url, token, params=params, json=json_data)

        if response.status_code == 401:
            # Token revoked early; exchange once more before giving up
            self.token_provider.invalidate()
            token = await self.token_provider.get_token()
            response = await self._send(
                method, url, token, params=params, json=json_data
            )
            if response.status_code == 401:
                self.token_provider.invalidate()
                raise CredentialError("Harbor rejected a freshly issued token")

        try:
            data = response.json()
        except ValueError:
            data = {"raw": response.text[:500]}

        if response.status_code >= 500:
            logger.error("Harbor API error: %s - %s", response.status_code, data)
            raise ProviderUnavailable(
                f"Harbor returned {response.status_code}",
                status_code=response.status_code,
                response_data=data if isinstance(data, dict) else {"data": data},
            )

        if not response.is_success:
            logger.error("Harbor API error: %s - %s", response.status_code, data)
            message = "Unknown Harbor error"
            if isinstance(data, dict):
                message = data.get("message") or data.get("detail") or message
            raise ProviderError(
                message=message,
                status_code=response.status_code,
                response_data=data if isinstance(data, dict) else {"data": data},
            )

        return data

    # =========================================================================
    # Location Methods
    # =========================================================================

    async def search_locations(
        self,
        latitude: float,
        longitude: float,
        radius_m: Optional[int] = None,
        limit: Optional[int] = None,
    ) -> list[HarborLocation]:
        """
        Search locker locations around a point.

        Args:
            latitude, longitude: Search centre
            radius_m: Search radius in meters
            limit: Provider page size

        Returns:
            List of HarborLocation in provider order
        """
        settings = get_settings()
        params = {
            "latitude": latitude,
            "longitude": longitude,
            "radius": radius_m or settings.HARBOR_SEARCH_RADIUS_METERS,
            "limit": limit or settings.HARBOR_SEARCH_PAGE_LIMIT,
        }
        data = await self._request("GET", "/api/v1/locations/search", params=params)

        items = _unwrap(data) or []
        return [_parse_location(item) for item in items if isinstance(item, dict)]

    async def get_location(self, location_id: str) -> HarborLocation:
        data = await self._request("GET", f"/api/v1/locations/{location_id}")
        item = _unwrap(data)
        return _parse_location(item if isinstance(item, dict) else data)

    # =========================================================================
    # Delivery Methods
    # =========================================================================

    async def create_delivery(
        self,
        location_id: str,
        size: SizeClass,
        reference: str,
        customer: Optional[dict] = None,
    ) -> Delivery:
        """
        Reserve a compartment at a location for a seller drop-off.

        Args:
            location_id: Harbor location id
            size: Minimum compartment size
            reference: Our order reference, echoed back in webhooks
            customer: Optional name/email/phone for the pickup

        Returns:
            Delivery with the drop-off request id and access link
        """
        payload = {
            "location_id": location_id,
            "locker_size": size.value,
            "reference": reference,
        }
        if customer:
            payload["customer"] = customer

        data = await self._request("POST", "/api/v1/deliveries", json_data=payload)
        item = _unwrap(data)
        delivery = _parse_delivery(item if isinstance(item, dict) else data)
        if delivery.location_id is None:
            delivery.location_id = location_id

        logger.info(
            "Created Harbor delivery %s at location %s",
            delivery.request_id,
            location_id,
        )
        return delivery

    async def get_delivery(self, request_id: str) -> Delivery:
        data = await self._request("GET", f"/api/v1/deliveries/{request_id}")
        item = _unwrap(data)
        return _parse_delivery(item if isinstance(item, dict) else data)


def get_harbor_client() -> HarborClient:
    """Get a HarborClient bound to the process-wide token cache."""
    return HarborClient(token_provider=get_token_cache())
