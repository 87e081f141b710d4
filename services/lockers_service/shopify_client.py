"""
Shopify Admin API client and webhook helpers.

Only the pieces the locker flow needs: writing the allocated locker back to
the order as note attributes and verifying webhook signatures.
"""

import base64
import hashlib
import hmac
from typing import Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)


class ShopifyError(Exception):
    """Shopify Admin API returned an error or could not be reached."""

    def __init__(
        self, message: str, status_code: int = None, response_data: dict = None
    ):
        self.message = message
        self.status_code = status_code
        self.response_data = response_data or {}
        super().__init__(message)


def verify_webhook_hmac(raw_body: bytes, signature: Optional[str]) -> bool:
    """Check X-Shopify-Hmac-Sha256 (base64 HMAC-SHA256 of the raw body)."""
    secret = get_settings().SHOPIFY_API_SECRET
    if not secret:
        logger.warning("SHOPIFY_API_SECRET not set, skipping webhook verification")
        return True
    if not signature:
        return False
    digest = hmac.new(secret.encode("utf-8"), raw_body, hashlib.sha256).digest()
    expected = base64.b64encode(digest).decode("utf-8")
    return hmac.compare_digest(expected, signature)


class ShopifyClient:
    """Async client for one shop's Admin REST API."""

    def __init__(
        self,
        shop: str,
        access_token: str,
        api_version: Optional[str] = None,
        transport: Optional[httpx.AsyncBaseTransport] = None,
    ):
        self.shop = shop
        self.access_token = access_token
        self.api_version = api_version or get_settings().SHOPIFY_API_VERSION
        self._transport = transport

    def _url(self, endpoint: str) -> str:
        return f"https://{self.shop}/admin/api/{self.api_version}/{endpoint}"

    async def _request(self, method: str, endpoint: str, json_data: dict = None):
        headers = {
            "X-Shopify-Access-Token": self.access_token,
            "Content-Type": "application/json",
        }
        try:
            async with httpx.AsyncClient(
                timeout=10.0, transport=self._transport
            ) as client:
                response = await client.request(
                    method, self._url(endpoint), headers=headers, json=json_data
                )
        except httpx.HTTPError as e:
            raise ShopifyError(f"Shopify request failed: {e}") from e

        if not response.is_success:
            logger.error(
                "Shopify API error for %s: %s - %s",
                self.shop,
                response.status_code,
                response.text[:200],
            )
            raise ShopifyError(
                f"Shopify returned {response.status_code}",
                status_code=response.status_code,
            )
        return response.json() if response.content else {}

    async def set_note_attributes(
        self, order_id: str, attributes: dict[str, str]
    ) -> None:
        """Replace the order's note attributes with the given name/value pairs."""
        payload = {
            "order": {
                "id": order_id,
                "note_attributes": [
                    {"name": name, "value": value}
                    for name, value in attributes.items()
                    if value is not None
                ],
            }
        }
        await self._request("PUT", f"orders/{order_id}.json", json_data=payload)
        logger.info("Wrote locker note attributes to %s order %s", self.shop, order_id)
