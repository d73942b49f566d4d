import logging
from leadflow.platform.ports.messaging import MessagingGatewayPort, SendResult

log = logging.getLogger("messaging.noop")

class NoopMessagingGateway(MessagingGatewayPort):
    async def send(self, instance: str, phone_number: str, text: str) -> SendResult:
        log.info(f"[NOOP MESSAGING] instance={instance} to={phone_number} chars={len(text)}")
        return SendResult(ok=True, provider_response={"delivered": False, "provider": "noop"})
