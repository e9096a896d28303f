import logging
import uuid
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText
from html import escape

import aiosmtplib

from core.breaker import CircuitBreaker
from core.notification import SendResult
from core.settings import settings

logger = logging.getLogger(__name__)


class EmailService:
    def __init__(self, subject: str = "Rent Payment Reminder"):
        self.subject = subject
        self.breaker = CircuitBreaker(failure_threshold=5)

    def _build(self, email: str, body: str) -> MIMEMultipart:
        paragraphs = "".join(
            f"<p>{escape(line)}</p>" for line in body.splitlines() if line.strip()
        )
        html_content = f"""
        <html>
        <body style="font-family: Arial, sans-serif; line-height: 1.6;">
            <h2>{escape(self.subject)}</h2>
            {paragraphs}
            <p>Best regards,<br>Your Property Management Team</p>
        </body>
        </html>
        """

        message = MIMEMultipart("alternative")
        message["Subject"] = self.subject
        message["From"] = settings.EMAIL_USER
        message["To"] = email
        message["Message-ID"] = f"<{uuid.uuid4()}@{settings.EMAIL_SERVER or 'localhost'}>"
        message.attach(MIMEText(body, "plain"))
        message.attach(MIMEText(html_content, "html"))
        return message

    async def send(self, recipient: str, message: str) -> SendResult:
        if not recipient:
            return SendResult.failed("No email address on record")
        if not settings.EMAIL_SERVER:
            return SendResult.failed("Email server is not configured")

        mime = self._build(recipient, message)

        async def handler():
            await aiosmtplib.send(
                mime,
                hostname=settings.EMAIL_SERVER,
                port=settings.EMAIL_PORT,
                username=settings.EMAIL_USER,
                password=settings.EMAIL_PASSWORD,
                start_tls=settings.EMAIL_USE_TLS,
            )

        try:
            await self.breaker.call(handler)
        except Exception as e:
            logger.error(f"Error sending reminder email to {recipient}: {e}")
            return SendResult.failed(f"Email delivery failed: {e}")

        return SendResult.ok(message_id=mime["Message-ID"])
