from typing import Protocol, runtime_checkable

LEAD_EVENTS_TOPIC = "leadflow.events"

@runtime_checkable
class EventBusPort(Protocol):
    """Publishes domain events relayed from the outbox (lead assigned, automation finished, ...)."""
    async def publish(self, topic: str, key: str, value: dict, headers: dict | None = None) -> None: ...
