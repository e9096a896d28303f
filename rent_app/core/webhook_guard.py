import hmac
import logging
from ipaddress import ip_address, ip_network
from typing import List

from fastapi import HTTPException, Request, status

from .errors import AuthorizationFailure
from .settings import settings

logger = logging.getLogger("mpesa.webhooks")

TOKEN_HEADER = "X-MPesa-Token"


class MpesaCallbackGuard:
    """FastAPI dependency that admits only trusted gateway callbacks.

    An empty allowlist admits every address. Entries may be single
    addresses or CIDR ranges. The shared token is required unless the
    app runs in development mode with no token configured.
    """

    def __init__(
        self,
        allowed_ips: List[str] | None = None,
        token: str | None = None,
        development: bool | None = None,
        trust_forwarded_for: bool | None = None,
    ):
        self.allowed_ips = allowed_ips
        self.token = token
        self.development = development
        self.trust_forwarded_for = trust_forwarded_for

    @property
    def _allowed_ips(self) -> List[str]:
        if self.allowed_ips is not None:
            return self.allowed_ips
        return settings.MPESA_ALLOWED_CALLBACK_IPS

    @property
    def _token(self) -> str | None:
        return self.token if self.token is not None else settings.MPESA_WEBHOOK_TOKEN

    @property
    def _development(self) -> bool:
        if self.development is not None:
            return self.development
        return settings.IS_DEVELOPMENT

    @property
    def _trust_forwarded_for(self) -> bool:
        if self.trust_forwarded_for is not None:
            return self.trust_forwarded_for
        return settings.MPESA_TRUST_FORWARDED_FOR

    def client_ip(self, request: Request) -> str:
        if self._trust_forwarded_for:
            forwarded = request.headers.get("x-forwarded-for")
            if forwarded:
                return forwarded.split(",")[0].strip()
        return request.client.host if request.client else "unknown"

    def check_ip(self, client_ip: str):
        allowed = self._allowed_ips
        if not allowed:
            return
        try:
            address = ip_address(client_ip)
        except ValueError:
            raise AuthorizationFailure("Unparseable callback source", ip=client_ip)

        for entry in allowed:
            try:
                if address in ip_network(entry, strict=False):
                    return
            except ValueError:
                logger.warning(f"Ignoring malformed allowlist entry {entry!r}")
        raise AuthorizationFailure("Callback source not allowlisted", ip=client_ip)

    def check_token(self, supplied: str | None):
        expected = self._token
        if not expected:
            if self._development:
                return
            raise AuthorizationFailure("Webhook token is not configured")
        if not supplied or not hmac.compare_digest(supplied, expected):
            raise AuthorizationFailure("Missing or invalid webhook token")

    async def __call__(self, request: Request):
        client_ip = self.client_ip(request)
        try:
            self.check_ip(client_ip)
            self.check_token(request.headers.get(TOKEN_HEADER))
        except AuthorizationFailure as e:
            logger.warning(f"Rejected callback to {request.url.path}: {e}")
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED, detail="Unauthorized"
            )


verify_mpesa_callback = MpesaCallbackGuard()
