"""
Email Delivery channel
"""
import logging
from email.message import EmailMessage
from email.utils import make_msgid

import aiosmtplib

from nycping.delivery.base import DeliveryChannel, DeliveryResult

logger = logging.getLogger(__name__)


class EmailDelivery(DeliveryChannel):
    name = "email"

    def __init__(
        self,
        *,
        smtp_host: str,
        smtp_port: int,
        username: str,
        password: str,
        sender: str,
    ):
        self.smtp_host = smtp_host
        self.smtp_port = smtp_port
        self.username = username
        self.password = password
        self.sender = sender

    async def send_email(self, *, to: str, subject: str, html: str, text: str) -> DeliveryResult:
        message_id = make_msgid(domain="nycping")
        msg = EmailMessage()
        msg["From"] = self.sender
        msg["To"] = to
        msg["Subject"] = subject
        msg["Message-ID"] = message_id

        # Plain text first, HTML as the preferred alternative
        msg.set_content(text)
        msg.add_alternative(html, subtype="html")

        try:
            await aiosmtplib.send(
                msg,
                hostname=self.smtp_host,
                port=self.smtp_port,
                username=self.username,
                password=self.password,
                start_tls=True,
            )
        except (aiosmtplib.SMTPException, OSError) as e:
            logger.error(f"Failed to send email to {to}: {e}")
            return DeliveryResult(success=False, error=str(e))

        logger.info(f"Email sent to {to}")
        return DeliveryResult(success=True, id=message_id)
