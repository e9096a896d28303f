import logging

import httpx

from core.notification import SendResult
from core.settings import settings

logger = logging.getLogger(__name__)


class TermiiClient:
    def __init__(
        self,
        base_url: str | None = None,
        api_key: str | None = None,
        sender_id: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        self.base_url = base_url or settings.TERMII_BASE_URL
        self.api_key = api_key or settings.TERMII_API_KEY
        self.sender_id = sender_id or settings.TERMII_SENDER_ID
        self.transport = transport
        self.client: httpx.AsyncClient | None = None

    async def connect(self):
        self.client = httpx.AsyncClient(
            base_url=self.base_url, timeout=10, transport=self.transport
        )
        logger.info("Termii client ready")

    async def close(self):
        if self.client:
            await self.client.aclose()
            self.client = None
            logger.info("Termii connection closed")

    async def ping(self) -> bool:
        if not self.client:
            raise RuntimeError("Termii client not connected")

        try:
            response = await self.client.get(
                "/api/get-balance", params={"api_key": self.api_key}
            )
            if response.status_code == 200:
                logger.info("Termii API ping successful")
                return True
            logger.warning(f"Termii API ping returned {response.status_code}")
            return False
        except httpx.HTTPError as e:
            logger.warning(f"Termii ping error: {e}")
            return False

    async def send(self, recipient: str, message: str) -> SendResult:
        if not recipient:
            return SendResult.failed("No phone number on record")

        if not self.client:
            await self.connect()

        payload = {
            "to": recipient.lstrip("+"),
            "from": self.sender_id,
            "sms": message,
            "type": "plain",
            "channel": "generic",
            "api_key": self.api_key,
        }

        try:
            response = await self.client.post("/api/sms/send", json=payload)
        except httpx.HTTPError as e:
            logger.error(f"SMS to {recipient} failed: {e}")
            return SendResult.failed(f"SMS provider unreachable: {e}")

        try:
            data = response.json()
        except ValueError:
            data = {}

        if response.status_code >= 400:
            reason = data.get("message") or f"HTTP {response.status_code}"
            logger.warning(f"SMS to {recipient} rejected: {reason}")
            return SendResult.failed(str(reason))

        return SendResult.ok(message_id=data.get("message_id"))


send_sms = TermiiClient()
