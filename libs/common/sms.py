"""
SMS sending through the Twilio REST API.
"""

from typing import Optional

import httpx
from libs.common.config import get_settings
from libs.common.logging import get_logger

logger = get_logger(__name__)

TWILIO_API_URL = "https://api.twilio.com/2010-04-01"


class SmsDeliveryError(Exception):
    """Twilio refused the message or could not be reached."""


async def send_sms(
    to: str,
    body: str,
    transport: Optional[httpx.AsyncBaseTransport] = None,
) -> bool:
    """
    Send a text message.

    Returns:
        True if Twilio accepted the message, False if SMS is not configured

    Raises:
        SmsDeliveryError: Twilio rejected the request or was unreachable
    """
    settings = get_settings()
    if not (
        settings.TWILIO_ACCOUNT_SID
        and settings.TWILIO_AUTH_TOKEN
        and settings.TWILIO_FROM_NUMBER
    ):
        logger.warning("Twilio not configured - SMS not sent")
        logger.info("Would have sent SMS to %s", to)
        return False

    url = f"{TWILIO_API_URL}/Accounts/{settings.TWILIO_ACCOUNT_SID}/Messages.json"
    form = {"To": to, "From": settings.TWILIO_FROM_NUMBER, "Body": body}

    try:
        async with httpx.AsyncClient(timeout=10.0, transport=transport) as client:
            response = await client.post(
                url,
                data=form,
                auth=(settings.TWILIO_ACCOUNT_SID, settings.TWILIO_AUTH_TOKEN),
            )
    except httpx.HTTPError as e:
        logger.error("Twilio request failed: %s", e)
        raise SmsDeliveryError(f"Twilio request failed: {e}") from e

    if not response.is_success:
        logger.error("Twilio error: %s - %s", response.status_code, response.text[:200])
        raise SmsDeliveryError(f"Twilio returned {response.status_code}")

    logger.info("SMS sent to %s", to)
    return True
