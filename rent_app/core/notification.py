from dataclasses import dataclass
from typing import Optional, Protocol


@dataclass(frozen=True)
class SendResult:
    success: bool
    reason: Optional[str] = None
    message_id: Optional[str] = None

    @classmethod
    def ok(cls, message_id: Optional[str] = None) -> "SendResult":
        return cls(success=True, message_id=message_id)

    @classmethod
    def failed(cls, reason: str) -> "SendResult":
        return cls(success=False, reason=reason)


class NotificationChannel(Protocol):
    async def send(self, recipient: str, message: str) -> SendResult: ...
