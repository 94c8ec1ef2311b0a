"""Notification dispatcher: fans a rendered alert out across channels.

Each enabled channel runs concurrently; within a channel, recipients are sent
one at a time with isolate-and-continue semantics so a single failure never
aborts the remaining deliveries. The result is a ``DeliveryLog`` ready to be
embedded into an alert log row.

Imports from ``core/`` only. Concrete channels live in ``alerts/email`` and
``alerts/twilio``.
"""

from __future__ import annotations

import asyncio
import logging
from typing import Protocol

from eventweather.core.rules import ChannelSettings, NotificationSettings
from eventweather.core.types import (
    AlertChannel,
    ChannelDelivery,
    DeliveryLog,
    DeliveryOutcome,
    DeliveryStatus,
    OutboundMessage,
    RecipientUser,
    SendResult,
    utcnow,
)

logger = logging.getLogger(__name__)

_NOT_CONFIGURED = "service not configured"


class Channel(Protocol):
    """A delivery transport for one ``AlertChannel``."""

    channel: AlertChannel

    async def send(self, recipient: RecipientUser, message: OutboundMessage) -> SendResult:
        ...


def is_eligible(recipient: RecipientUser, channel: AlertChannel, settings: ChannelSettings) -> bool:
    """Role flagged for the channel, not opted out, and reachable on it."""
    if not settings.recipients.allows(recipient.role):
        return False
    if recipient.opted_out(channel):
        return False
    return bool(recipient.address_for(channel))


class NotificationDispatcher:
    """Sends one message to resolved recipients over every enabled channel.

    Channels missing from *channels* (e.g. SMTP not configured) still count
    every eligible recipient as ``failed`` so the gap shows up in the log.
    """

    def __init__(self, channels: dict[AlertChannel, Channel], timeout: float = 30.0) -> None:
        self._channels = channels
        self._timeout = timeout

    async def dispatch(
        self,
        recipients: list[RecipientUser],
        message: OutboundMessage,
        settings: NotificationSettings,
    ) -> DeliveryLog:
        log = DeliveryLog()
        enabled = settings.enabled_channels()
        if not enabled:
            return log

        results = await asyncio.gather(
            *(
                self._dispatch_channel(channel, recipients, message, settings.for_channel(channel))
                for channel in enabled
            )
        )
        for channel, delivery in zip(enabled, results):
            target = log.for_channel(channel)
            target.sent = delivery.sent
            target.failed = delivery.failed
            target.recipients = delivery.recipients

        logger.info(
            "Dispatched alert: sent=%d failed=%d (email %d/%d, sms %d/%d, whatsapp %d/%d)",
            log.total_sent,
            log.total_failed,
            log.email.sent,
            log.email.failed,
            log.sms.sent,
            log.sms.failed,
            log.whatsapp.sent,
            log.whatsapp.failed,
        )
        return log

    async def _dispatch_channel(
        self,
        channel: AlertChannel,
        recipients: list[RecipientUser],
        message: OutboundMessage,
        settings: ChannelSettings,
    ) -> ChannelDelivery:
        delivery = ChannelDelivery()
        transport = self._channels.get(channel)

        for recipient in recipients:
            if not is_eligible(recipient, channel, settings):
                continue
            address = recipient.address_for(channel) or ""

            if transport is None:
                logger.warning("%s channel not configured; skipping %s", channel.value, address)
                delivery.record(
                    DeliveryOutcome(
                        address=address,
                        role=recipient.role,
                        status=DeliveryStatus.FAILED,
                        sent_at=utcnow(),
                        error=_NOT_CONFIGURED,
                    )
                )
                continue

            delivery.record(await self._send_one(transport, recipient, address, message))

        return delivery

    async def _send_one(
        self,
        transport: Channel,
        recipient: RecipientUser,
        address: str,
        message: OutboundMessage,
    ) -> DeliveryOutcome:
        try:
            result = await asyncio.wait_for(transport.send(recipient, message), self._timeout)
        except TimeoutError:
            logger.error("%s delivery to %s timed out", transport.channel.value, address)
            return DeliveryOutcome(
                address=address,
                role=recipient.role,
                status=DeliveryStatus.FAILED,
                sent_at=utcnow(),
                error=f"timed out after {self._timeout:g}s",
            )
        except Exception as exc:
            logger.error("%s delivery to %s failed: %s", transport.channel.value, address, exc)
            return DeliveryOutcome(
                address=address,
                role=recipient.role,
                status=DeliveryStatus.FAILED,
                sent_at=utcnow(),
                error=str(exc),
            )

        if result.success:
            return DeliveryOutcome(
                address=address,
                role=recipient.role,
                status=DeliveryStatus.SENT,
                sent_at=utcnow(),
            )

        logger.error("%s delivery to %s failed: %s", transport.channel.value, address, result.error)
        return DeliveryOutcome(
            address=address,
            role=recipient.role,
            status=DeliveryStatus.FAILED,
            sent_at=utcnow(),
            error=result.error or "provider reported failure",
        )
