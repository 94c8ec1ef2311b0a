"""SMS and WhatsApp delivery through the Twilio Messages REST API.

Uses httpx with Basic authentication for raw Twilio API calls. One
``TwilioClient`` is shared by both channels; WhatsApp only differs by the
``whatsapp:`` address prefix and its sender number.
"""

from __future__ import annotations

import asyncio
import logging

import httpx

from eventweather.core.errors import NotificationDeliveryError
from eventweather.core.types import AlertChannel, OutboundMessage, RecipientUser, SendResult

logger = logging.getLogger(__name__)

_API_BASE = "https://api.twilio.com/2010-04-01"

# Twilio caps a single message body at 1600 characters
_MAX_BODY_CHARS = 1600

_DEFAULT_RETRY_AFTER_S = 1.0


class TwilioClient:
    """Async client for the Twilio Messages resource."""

    def __init__(
        self,
        account_sid: str,
        auth_token: str,
        client: httpx.AsyncClient | None = None,
        timeout: float = 30.0,
    ) -> None:
        self._url = f"{_API_BASE}/Accounts/{account_sid}/Messages.json"
        self._owns_client = client is None
        self._client = client or httpx.AsyncClient(timeout=timeout)
        self._auth = (account_sid, auth_token)

    async def send_message(self, from_number: str, to_number: str, body: str) -> SendResult:
        """Create a message. Twilio answers ``201`` with the message ``sid``.

        A ``429`` is retried once after the advertised ``Retry-After`` delay.
        """
        form_data = {
            "From": from_number,
            "To": to_number,
            "Body": body[:_MAX_BODY_CHARS],
        }

        try:
            response = await self._client.post(self._url, data=form_data, auth=self._auth)
            if response.status_code == 429:
                retry_after = _retry_after(response)
                logger.warning("Twilio rate limited for to=%s, retry_after=%.1fs", to_number, retry_after)
                await asyncio.sleep(retry_after)
                response = await self._client.post(self._url, data=form_data, auth=self._auth)
        except httpx.HTTPError as exc:
            logger.error("Twilio HTTP error for to=%s: %s", to_number, exc)
            return SendResult(success=False, error=str(exc))

        if response.status_code == 201:
            sid = response.json().get("sid")
            logger.info("Twilio message %s sent to %s", sid, to_number)
            return SendResult(success=True, sid=sid)

        error = _error_message(response)
        logger.error(
            "Twilio send failed: to=%s, status=%d, error=%s",
            to_number,
            response.status_code,
            error,
        )
        return SendResult(success=False, error=error)

    async def close(self) -> None:
        """Close the underlying httpx client if this instance created it."""
        if self._owns_client:
            await self._client.aclose()


def _retry_after(response: httpx.Response) -> float:
    try:
        return float(response.headers.get("Retry-After", _DEFAULT_RETRY_AFTER_S))
    except ValueError:
        return _DEFAULT_RETRY_AFTER_S


def _error_message(response: httpx.Response) -> str:
    try:
        message = response.json().get("message")
    except ValueError:
        message = None
    return message or f"HTTP {response.status_code}"


class SMSChannel:
    """Plain SMS to the recipient's phone number."""

    channel = AlertChannel.SMS

    def __init__(self, client: TwilioClient, from_number: str) -> None:
        self._client = client
        self._from_number = from_number

    async def send(self, recipient: RecipientUser, message: OutboundMessage) -> SendResult:
        if not recipient.phone:
            raise NotificationDeliveryError("Recipient has no phone number", user_id=recipient.user_id)
        return await self._client.send_message(self._from_number, recipient.phone, message.text)


class WhatsAppChannel:
    """WhatsApp message via Twilio using ``whatsapp:`` prefixed numbers."""

    channel = AlertChannel.WHATSAPP

    def __init__(self, client: TwilioClient, from_number: str) -> None:
        self._client = client
        self._from_number = from_number

    async def send(self, recipient: RecipientUser, message: OutboundMessage) -> SendResult:
        if not recipient.phone:
            raise NotificationDeliveryError("Recipient has no phone number", user_id=recipient.user_id)
        return await self._client.send_message(
            _whatsapp_address(self._from_number),
            _whatsapp_address(recipient.phone),
            message.text,
        )


def _whatsapp_address(number: str) -> str:
    if number.startswith("whatsapp:"):
        return number
    return f"whatsapp:{number}"
