"""Email delivery over SMTP.

Builds a multipart (plain + HTML) message with ``email.mime`` and sends it with
``smtplib`` in a worker thread so the event loop is never blocked.
"""

from __future__ import annotations

import asyncio
import logging
import smtplib
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

from eventweather.core.errors import NotificationDeliveryError
from eventweather.core.types import AlertChannel, OutboundMessage, RecipientUser, SendResult

logger = logging.getLogger(__name__)


class SMTPMailer:
    """Synchronous SMTP sender with STARTTLS and optional login."""

    def __init__(
        self,
        host: str,
        port: int,
        sender: str,
        username: str = "",
        password: str = "",
        timeout: float = 30.0,
    ) -> None:
        self._host = host
        self._port = port
        self._sender = sender
        self._username = username
        self._password = password
        self._timeout = timeout

    def build(self, to_address: str, message: OutboundMessage) -> MIMEMultipart:
        msg = MIMEMultipart("alternative")
        msg["Subject"] = message.subject
        msg["From"] = self._sender
        msg["To"] = to_address
        msg.attach(MIMEText(message.text, "plain", "utf-8"))
        msg.attach(MIMEText(message.html, "html", "utf-8"))
        return msg

    def send(self, to_address: str, message: OutboundMessage) -> None:
        """Send one email. Raises ``smtplib.SMTPException`` or ``OSError``."""
        msg = self.build(to_address, message)
        with smtplib.SMTP(self._host, self._port, timeout=self._timeout) as server:
            server.starttls()
            if self._username:
                server.login(self._username, self._password)
            server.sendmail(self._sender, [to_address], msg.as_string())


class EmailChannel:
    """Email channel adapter for the notification dispatcher."""

    channel = AlertChannel.EMAIL

    def __init__(self, mailer: SMTPMailer) -> None:
        self._mailer = mailer

    async def send(self, recipient: RecipientUser, message: OutboundMessage) -> SendResult:
        if not recipient.email:
            raise NotificationDeliveryError("Recipient has no email address", user_id=recipient.user_id)
        try:
            await asyncio.to_thread(self._mailer.send, recipient.email, message)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("Email send failed for %s: %s", recipient.email, exc)
            return SendResult(success=False, error=str(exc))
        logger.info("Weather alert email sent to %s", recipient.email)
        return SendResult(success=True)
