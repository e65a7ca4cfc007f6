"""
Receipt emails for completed payments.

Sent over SMTP from a worker thread so the event loop never blocks. Delivery
is fire-and-forget: failures are logged and never reach the caller.
"""
import asyncio
import logging
import smtplib
from decimal import Decimal
from email.mime.text import MIMEText

from ..config import Settings

logger = logging.getLogger(__name__)


class ReceiptSender:
    def __init__(self, settings: Settings):
        self.host = settings.mail_smtp_host
        self.port = settings.mail_smtp_port
        self.username = settings.mail_username
        self.password = settings.mail_password
        self.from_address = settings.mail_from_address or settings.mail_username
        self.from_name = settings.mail_from_name

    @property
    def enabled(self) -> bool:
        return bool(self.host and self.username and self.password)

    def _build(self, to: str, amount: Decimal, reference: str, status: str) -> MIMEText:
        body = (
            f"Thank you for your payment.\n\n"
            f"Amount: R{amount:.2f}\n"
            f"Reference: {reference}\n"
            f"Status: {status}\n"
        )
        msg = MIMEText(body, "plain", "utf-8")
        msg["Subject"] = f"Payment receipt {reference}"
        msg["From"] = f"{self.from_name} <{self.from_address}>"
        msg["To"] = to
        return msg

    def _send_smtp(self, msg: MIMEText) -> None:
        with smtplib.SMTP(self.host, self.port, timeout=30) as server:
            server.ehlo()
            server.starttls()
            server.ehlo()
            server.login(self.username, self.password)
            server.send_message(msg)

    async def send(self, to: str, amount: Decimal, reference: str, status: str) -> bool:
        if not self.enabled:
            logger.warning("receipt not sent, SMTP not configured reference=%s", reference)
            return False
        msg = self._build(to, amount, reference, status)
        try:
            await asyncio.to_thread(self._send_smtp, msg)
        except (smtplib.SMTPException, OSError) as exc:
            logger.error("receipt to %s failed reference=%s: %r", to, reference, exc)
            return False
        logger.info("receipt sent to %s reference=%s", to, reference)
        return True
