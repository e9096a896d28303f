import base64
import logging
import re
import time
from dataclasses import dataclass, field
from decimal import ROUND_HALF_UP, Decimal

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from core.breaker import CircuitBreaker, CircuitOpenError
from core.date_helper import gateway_timestamp
from core.errors import ExternalServiceFailure
from core.settings import settings

logger = logging.getLogger("mpesa.client")

STILL_PROCESSING_MARKER = "being processed"


def normalize_msisdn(phone: str | None) -> str | None:
    """07XXXXXXXX, +2547XXXXXXXX and 7XXXXXXXX all become 2547XXXXXXXX."""
    if not phone:
        return None
    digits = re.sub(r"\D", "", phone)
    if digits.startswith("0") and len(digits) == 10:
        return "254" + digits[1:]
    if len(digits) == 9 and digits[0] in "17":
        return "254" + digits
    return digits


def whole_shillings(amount) -> int:
    return int(Decimal(str(amount)).quantize(Decimal("1"), rounding=ROUND_HALF_UP))


@dataclass
class GatewayResponse:
    accepted: bool
    request: dict = field(default_factory=dict)
    data: dict = field(default_factory=dict)
    description: str | None = None


class MpesaClient:
    TOKEN_PATH = "/oauth/v1/generate?grant_type=client_credentials"
    STK_PUSH_PATH = "/mpesa/stkpush/v1/processrequest"
    STK_QUERY_PATH = "/mpesa/stkpushquery/v1/query"
    B2C_PATH = "/mpesa/b2c/v1/paymentrequest"

    def __init__(
        self,
        base_url: str | None = None,
        consumer_key: str | None = None,
        consumer_secret: str | None = None,
        shortcode: str | None = None,
        passkey: str | None = None,
        callback_base_url: str | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        breaker: CircuitBreaker | None = None,
    ):
        self.base_url = (base_url or settings.MPESA_BASE_URL).rstrip("/")
        self.consumer_key = consumer_key or settings.MPESA_CONSUMER_KEY
        self.consumer_secret = consumer_secret or settings.MPESA_CONSUMER_SECRET
        self.shortcode = shortcode or settings.MPESA_SHORTCODE
        self.passkey = passkey or settings.MPESA_PASSKEY
        self.callback_base_url = (
            callback_base_url or settings.MPESA_CALLBACK_BASE_URL
        ).rstrip("/")
        self.transport = transport
        self.breaker = breaker or gateway_breaker
        self._token: str | None = None
        self._token_expires_at = 0.0

    def _client(self) -> httpx.AsyncClient:
        return httpx.AsyncClient(
            base_url=self.base_url,
            timeout=settings.MPESA_REQUEST_TIMEOUT_SECONDS,
            transport=self.transport,
        )

    def _password(self, timestamp: str) -> str:
        raw = f"{self.shortcode}{self.passkey}{timestamp}"
        return base64.b64encode(raw.encode()).decode()

    @retry(
        retry=retry_if_exception_type(httpx.TransportError),
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=8),
        reraise=True,
    )
    async def _fetch_token(self) -> dict:
        async with self._client() as client:
            res = await client.get(
                self.TOKEN_PATH, auth=(self.consumer_key or "", self.consumer_secret or "")
            )
        res.raise_for_status()
        return res.json()

    async def get_access_token(self) -> str:
        if self._token and time.monotonic() < self._token_expires_at:
            return self._token

        try:
            data = await self._fetch_token()
        except httpx.HTTPError as e:
            raise ExternalServiceFailure("Could not obtain M-Pesa access token") from e

        token = data.get("access_token")
        if not token:
            raise ExternalServiceFailure("M-Pesa token response had no access_token")

        expires_in = int(data.get("expires_in", 3599))
        self._token = token
        # refresh a minute early
        self._token_expires_at = time.monotonic() + max(expires_in - 60, 0)
        return token

    async def _post(self, path: str, payload: dict) -> httpx.Response:
        async def handler():
            token = await self.get_access_token()
            async with self._client() as client:
                res = await client.post(
                    path,
                    json=payload,
                    headers={"Authorization": f"Bearer {token}"},
                )
            if res.status_code >= 500 and not _is_still_processing(res):
                res.raise_for_status()
            return res

        try:
            return await self.breaker.call(handler)
        except (httpx.HTTPError, CircuitOpenError) as e:
            raise ExternalServiceFailure(
                f"M-Pesa request to {path} failed", error=str(e)
            ) from e

    async def initiate_push_payment(
        self,
        phone_number: str,
        amount,
        account_reference: str,
        description: str = "Rent Payment",
    ) -> GatewayResponse:
        timestamp = gateway_timestamp()
        msisdn = normalize_msisdn(phone_number)
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "TransactionType": "CustomerPayBillOnline",
            "Amount": whole_shillings(amount),
            "PartyA": msisdn,
            "PartyB": self.shortcode,
            "PhoneNumber": msisdn,
            "CallBackURL": f"{self.callback_base_url}/mpesa/stkpush/callback",
            "AccountReference": account_reference[:12],
            "TransactionDesc": description[:13],
        }

        res = await self._post(self.STK_PUSH_PATH, payload)
        data = _json(res)
        audit = {k: v for k, v in payload.items() if k != "Password"}

        accepted = res.status_code == 200 and str(data.get("ResponseCode")) == "0"
        description = data.get("ResponseDescription") or data.get("errorMessage")
        if not accepted:
            logger.warning(f"STK push rejected for {account_reference}: {description}")
        return GatewayResponse(accepted, audit, data, description)

    async def initiate_disbursement(
        self,
        phone_number: str,
        amount,
        remarks: str,
        occasion: str | None = None,
    ) -> GatewayResponse:
        payload = {
            "InitiatorName": settings.MPESA_B2C_INITIATOR_NAME,
            "SecurityCredential": settings.MPESA_B2C_SECURITY_CREDENTIAL,
            "CommandID": "BusinessPayment",
            "Amount": whole_shillings(amount),
            "PartyA": settings.MPESA_B2C_SHORTCODE or self.shortcode,
            "PartyB": normalize_msisdn(phone_number),
            "Remarks": remarks[:100],
            "QueueTimeOutURL": f"{self.callback_base_url}/mpesa/b2c/timeout",
            "ResultURL": f"{self.callback_base_url}/mpesa/b2c/result",
            "Occasion": (occasion or "")[:100],
        }

        res = await self._post(self.B2C_PATH, payload)
        data = _json(res)
        audit = {k: v for k, v in payload.items() if k != "SecurityCredential"}

        accepted = res.status_code == 200 and str(data.get("ResponseCode")) == "0"
        description = data.get("ResponseDescription") or data.get("errorMessage")
        if not accepted:
            logger.warning(f"B2C request rejected: {description}")
        return GatewayResponse(accepted, audit, data, description)

    async def query_status(self, checkout_request_id: str) -> dict:
        """Current outcome of a push payment.

        Returns the gateway body. While the customer has not answered the
        prompt there is no ``ResultCode`` in it.
        """
        timestamp = gateway_timestamp()
        payload = {
            "BusinessShortCode": self.shortcode,
            "Password": self._password(timestamp),
            "Timestamp": timestamp,
            "CheckoutRequestID": checkout_request_id,
        }

        res = await self._post(self.STK_QUERY_PATH, payload)
        data = _json(res)

        if _is_still_processing(res):
            return {
                "ResultCode": None,
                "ResultDesc": data.get("errorMessage") or "Still processing",
            }

        if res.status_code >= 400:
            raise ExternalServiceFailure(
                "M-Pesa status query rejected",
                checkout_request_id=checkout_request_id,
                status=res.status_code,
                error=data.get("errorMessage"),
            )
        return data


def _json(res: httpx.Response) -> dict:
    try:
        data = res.json()
    except ValueError:
        return {}
    return data if isinstance(data, dict) else {}


def _is_still_processing(res: httpx.Response) -> bool:
    if res.status_code < 400:
        return False
    message = str(_json(res).get("errorMessage", "")).lower()
    return STILL_PROCESSING_MARKER in message


gateway_breaker = CircuitBreaker(name="mpesa", failure_threshold=5)
