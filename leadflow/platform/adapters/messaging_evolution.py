import re
import logging
import httpx
from leadflow.core.config import settings
from leadflow.platform.ports.messaging import MessagingGatewayPort, SendResult

log = logging.getLogger("messaging.evolution")


def normalize_phone_number(phone: str, country_code: str | None = None) -> str:
    """
    Normalizes a phone number to digits with an international prefix.

    Numbers that already carry the country code (12+ digits) pass through;
    national numbers of 10-11 digits get the default country code prepended.
    Anything else is returned as bare digits.
    """
    cc = country_code if country_code is not None else settings.DEFAULT_PHONE_COUNTRY_CODE
    digits = re.sub(r"\D", "", phone or "")
    if cc and digits.startswith(cc) and len(digits) >= 12:
        return digits
    if 10 <= len(digits) <= 11:
        return f"{cc}{digits}"
    return digits


class EvolutionMessagingGateway(MessagingGatewayPort):
    """Sends text messages through an Evolution API server (one instance per connected number)."""

    def __init__(self, base_url: str | None = None, api_key: str | None = None, timeout: float | None = None, transport: httpx.AsyncBaseTransport | None = None):
        self.base_url = (base_url or settings.EVOLUTION_API_URL or "").rstrip("/")
        self.api_key = api_key or settings.EVOLUTION_API_KEY
        if not self.base_url or not self.api_key:
            raise RuntimeError("EVOLUTION_API_URL / EVOLUTION_API_KEY not configured")
        self.timeout = timeout or settings.MESSAGING_TIMEOUT_SECONDS
        self.transport = transport

    async def send(self, instance: str, phone_number: str, text: str) -> SendResult:
        url = f"{self.base_url}/message/sendText/{instance}"
        body = {"number": normalize_phone_number(phone_number), "text": text}
        try:
            async with httpx.AsyncClient(timeout=self.timeout, transport=self.transport) as client:
                response = await client.post(url, json=body, headers={"apikey": self.api_key})
                response.raise_for_status()
        except httpx.HTTPStatusError as e:
            log.error(f"Evolution API rejected message for instance {instance}: {e.response.text}")
            return SendResult(ok=False, provider_response=e.response.text)
        except httpx.HTTPError as e:
            log.error(f"Evolution API unreachable for instance {instance}: {e}")
            return SendResult(ok=False, provider_response=str(e))

        try:
            payload = response.json()
        except ValueError:
            payload = response.text
        return SendResult(ok=True, provider_response=payload)
