from typing import Protocol, runtime_checkable
from pydantic import BaseModel

class SendResult(BaseModel):
    ok: bool
    provider_response: dict | str | None = None

@runtime_checkable
class MessagingGatewayPort(Protocol):
    async def send(self, instance: str, phone_number: str, text: str) -> SendResult: ...
